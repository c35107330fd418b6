import asyncio

from langchain_core.messages import HumanMessage

from snapedit.sessions import SessionStore


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_sessions_are_kept_per_id():
    store = SessionStore(ttl_seconds=60, clock=FakeClock())
    store.get_or_create("a").messages.append(HumanMessage(content="hi"))

    assert len(store.get_or_create("a").messages) == 1
    assert store.get_or_create("b").messages == []
    assert len(store) == 2


def test_idle_sessions_expire():
    clock = FakeClock()
    store = SessionStore(ttl_seconds=60, clock=clock)
    store.get_or_create("a").messages.append(HumanMessage(content="hi"))
    store.get_or_create("b")

    clock.now = 30
    store.get_or_create("b")
    clock.now = 61

    assert store.evict_expired() == 1
    assert "a" not in store
    assert "b" in store


def test_expired_session_is_replaced_on_access():
    clock = FakeClock()
    store = SessionStore(ttl_seconds=60, clock=clock)
    store.get_or_create("a").messages.append(HumanMessage(content="hi"))

    clock.now = 100
    assert store.get_or_create("a").messages == []


def test_reset_drops_session():
    store = SessionStore(ttl_seconds=60, clock=FakeClock())
    store.get_or_create("a")
    store.reset("a")
    store.reset("missing")

    assert len(store) == 0


def test_run_eviction_sweeps_on_each_tick():
    clock = FakeClock()
    store = SessionStore(ttl_seconds=10, clock=clock)
    store.get_or_create("a")
    ticks: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        ticks.append(seconds)
        clock.now += seconds
        if len(ticks) == 3:
            raise asyncio.CancelledError

    async def _run():
        try:
            await store.run_eviction(5, sleep=fake_sleep)
        except asyncio.CancelledError:
            pass

    asyncio.run(_run())

    assert ticks == [5, 5, 5]
    assert len(store) == 0

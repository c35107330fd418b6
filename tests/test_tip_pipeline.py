import asyncio

from snapedit.client.backend import TipStreamError
from snapedit.client.tips import PreviewMode, PreviewPolicy, TipPipeline
from snapedit.domain import TipCategory
from tests.conftest import FakeBackend, make_tip

ENHANCE, CREATIVE, WILD = TipCategory.ENHANCE, TipCategory.CREATIVE, TipCategory.WILD


def collect(pipeline: TipPipeline, image: str = "img") -> list[str]:
    async def _run():
        return [tip.label async for tip in pipeline.stream(image)]

    return asyncio.run(_run())


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def test_tips_from_all_categories_are_merged():
    backend = FakeBackend(
        tips={
            ENHANCE: [[make_tip("e1"), make_tip("e2")]],
            CREATIVE: [[make_tip("c1", CREATIVE)]],
            WILD: [[make_tip("w1", WILD), make_tip("w2", WILD)]],
        }
    )

    labels = collect(TipPipeline(backend))

    assert sorted(labels) == ["c1", "e1", "e2", "w1", "w2"]
    assert labels.index("e1") < labels.index("e2")
    assert labels.index("w1") < labels.index("w2")
    assert sorted(c.value for _, c in backend.tip_calls) == ["creative", "enhance", "wild"]


def test_retry_skips_tips_already_delivered():
    backend = FakeBackend(
        tips={
            ENHANCE: [
                [make_tip("e1"), TipStreamError("connection reset")],
                [make_tip("e1"), make_tip("e2")],
            ]
        }
    )
    sleep = SleepRecorder()

    labels = collect(TipPipeline(backend, categories=[ENHANCE], sleep=sleep))

    assert labels == ["e1", "e2"]
    assert sleep.delays == [1.0]


def test_failing_category_is_abandoned_without_affecting_others():
    backend = FakeBackend(
        tips={
            ENHANCE: [[TipStreamError("HTTP 500")]],
            WILD: [[make_tip("w1", WILD)]],
        }
    )
    sleep = SleepRecorder()

    labels = collect(TipPipeline(backend, categories=[ENHANCE, WILD], sleep=sleep))

    assert labels == ["w1"]
    assert [c for _, c in backend.tip_calls].count(ENHANCE) == 3
    assert sleep.delays == [1.0, 2.0]


def test_closing_stream_cancels_category_requests():
    async def _run():
        gate = asyncio.Event()
        backend = FakeBackend(tips={ENHANCE: [[make_tip("e1")]]})

        async def slow_tips(image, category, metadata=None):
            if category is ENHANCE:
                yield make_tip("e1")
            await gate.wait()
            yield make_tip("never", category)

        backend.stream_tips = slow_tips
        stream = TipPipeline(backend).stream("img")
        first = await stream.__anext__()
        await stream.aclose()
        return first.label

    assert asyncio.run(_run()) == "e1"


def test_preview_policy():
    full = PreviewPolicy(PreviewMode.FULL)
    assert full.wants_preview(make_tip("a")) and full.wants_preview(make_tip("b"))

    none = PreviewPolicy(PreviewMode.NONE)
    assert not none.wants_preview(make_tip("a"))

    selective = PreviewPolicy(PreviewMode.SELECTIVE)
    decisions = [
        selective.wants_preview(tip)
        for tip in (
            make_tip("e1"),
            make_tip("c1", CREATIVE),
            make_tip("e2"),
            make_tip("w1", WILD),
            make_tip("w2", WILD),
        )
    ]
    assert decisions == [True, False, False, True, False]

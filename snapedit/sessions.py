"""In-memory chat sessions with idle expiry."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from langchain_core.messages import BaseMessage

from snapedit.logging import get_logger

logger = get_logger("sessions")


@dataclass
class ChatSession:
    messages: list[BaseMessage] = field(default_factory=list)
    last_used: float = 0.0


class SessionStore:
    """Keyed session map; entries idle longer than ``ttl_seconds`` are evicted."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, ChatSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get_or_create(self, session_id: str) -> ChatSession:
        """Return the session, touching its idle timer."""
        now = self._clock()
        session = self._sessions.get(session_id)
        if session is None or now - session.last_used >= self.ttl_seconds:
            session = ChatSession()
            self._sessions[session_id] = session
        session.last_used = now
        return session

    def reset(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def evict_expired(self) -> int:
        now = self._clock()
        expired = [
            sid for sid, s in self._sessions.items() if now - s.last_used >= self.ttl_seconds
        ]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)

    async def run_eviction(
        self,
        interval_seconds: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Sweep forever; cancel the task to stop."""
        while True:
            await sleep(interval_seconds)
            evicted = self.evict_expired()
            if evicted:
                logger.info(f"evicted {evicted} idle chat session(s), {len(self)} left")

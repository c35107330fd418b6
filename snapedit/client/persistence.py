"""Durable storage seam, called without waiting for the result."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Protocol, Sequence

from snapedit.domain import Message, Snapshot, Tip
from snapedit.logging import get_logger

logger = get_logger("client.persistence")


class Persistence(Protocol):
    async def save_snapshot(self, project_id: str, snapshot: Snapshot, index: int) -> None:
        """Store one snapshot at its timeline position."""

    async def save_message(self, project_id: str, message: Message) -> None:
        """Store one chat message."""

    async def update_tips(self, project_id: str, snapshot_id: str, tips: Sequence[Tip]) -> None:
        """Replace the tips stored for a snapshot."""

    async def update_description(
        self, project_id: str, snapshot_id: str, description: str
    ) -> None:
        """Store the analysis text of a snapshot."""


class NullPersistence(Persistence):
    async def save_snapshot(self, project_id: str, snapshot: Snapshot, index: int) -> None:
        return None

    async def save_message(self, project_id: str, message: Message) -> None:
        return None

    async def update_tips(self, project_id: str, snapshot_id: str, tips: Sequence[Tip]) -> None:
        return None

    async def update_description(
        self, project_id: str, snapshot_id: str, description: str
    ) -> None:
        return None


class FireAndForget:
    """Runs persistence calls as background tasks; failures are logged only."""

    def __init__(self, persistence: Persistence, project_id: str):
        self.persistence = persistence
        self.project_id = project_id
        self._tasks: set[asyncio.Task] = set()

    def save_snapshot(self, snapshot: Snapshot, index: int) -> None:
        self._spawn("save_snapshot", self.persistence.save_snapshot(self.project_id, snapshot, index))

    def save_message(self, message: Message) -> None:
        self._spawn("save_message", self.persistence.save_message(self.project_id, message))

    def update_tips(self, snapshot_id: str, tips: Sequence[Tip]) -> None:
        self._spawn(
            "update_tips", self.persistence.update_tips(self.project_id, snapshot_id, tuple(tips))
        )

    def update_description(self, snapshot_id: str, description: str) -> None:
        self._spawn(
            "update_description",
            self.persistence.update_description(self.project_id, snapshot_id, description),
        )

    @property
    def busy(self) -> bool:
        return bool(self._tasks)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, name: str, call: Awaitable[None]) -> None:
        task = asyncio.create_task(self._guard(name, call))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _guard(self, name: str, call: Awaitable[None]) -> None:
        try:
            await call
        except Exception as e:
            logger.error(f"[{self.project_id}] {name} failed: {e}")

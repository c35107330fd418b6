"""Speculative rendering of tip previews.

Results are routed by ``(snapshot_id, edit_prompt)``. Every request belongs to a
``PreviewBatch``; once a batch is cancelled nothing it started may touch the
store again.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from snapedit.client.backend import BackendError, EditorBackend
from snapedit.client.store import (
    EditorStore,
    count_previews,
    find_snapshot,
    set_baseline,
    set_preview,
)
from snapedit.domain import UNSETTLED_STATUSES, PreviewStatus, Tip, new_id
from snapedit.logging import get_logger

logger = get_logger("client.previews")


class PreviewBatch:
    """Cancellation token shared by previews started together. Never reused."""

    def __init__(self) -> None:
        self.id = new_id()[:8]
        self.cancelled = False
        self.keys: set[tuple[str, str]] = set()
        self.tasks: set[asyncio.Task] = set()


class PreviewQueue:
    def __init__(
        self,
        store: EditorStore,
        backend: EditorBackend,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_settled: Callable[[str], None] | None = None,
    ):
        self.store = store
        self.backend = backend
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep
        self._on_settled = on_settled
        self.batch = PreviewBatch()
        self._tasks: set[asyncio.Task] = set()

    def start_batch(self, snapshot_id: str | None = None) -> PreviewBatch:
        """Open a fresh batch, cancelling the one it replaces.

        The progress baseline is the snapshot's current done count.
        """
        self.cancel()
        self.batch = PreviewBatch()
        if snapshot_id is not None:
            self._record_baseline(snapshot_id)
        return self.batch

    def cancel(self) -> None:
        """Cancel the current batch; its unsettled tips end up ``cancelled``."""
        batch = self.batch
        if batch.cancelled:
            return
        batch.cancelled = True
        for snapshot_id, edit_prompt in sorted(batch.keys):
            self.store.apply(set_preview, snapshot_id, edit_prompt, PreviewStatus.CANCELLED)
        for task in list(batch.tasks):
            task.cancel()
        if batch.keys:
            logger.info(f"cancelled preview batch {batch.id} ({len(batch.tasks)} in flight)")

    def enqueue(
        self, snapshot_id: str, tip: Tip, batch: PreviewBatch | None = None
    ) -> asyncio.Task | None:
        """Render a preview for ``tip`` in ``batch`` (default: the current batch).

        Nothing happens when the given batch was already cancelled.
        """
        if batch is None:
            if self.batch.cancelled:
                self.start_batch()
            batch = self.batch
        if batch.cancelled:
            return None
        current = self._tip(snapshot_id, tip.edit_prompt)
        if current is None or current.preview_status in UNSETTLED_STATUSES:
            return None
        self.store.apply(set_preview, snapshot_id, tip.edit_prompt, PreviewStatus.PENDING)
        current = self._tip(snapshot_id, tip.edit_prompt)
        if current is None or current.preview_status != PreviewStatus.PENDING:
            return None

        batch.keys.add((snapshot_id, tip.edit_prompt))
        task = asyncio.create_task(self._render(batch, snapshot_id, current))
        batch.tasks.add(task)
        task.add_done_callback(batch.tasks.discard)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def request(self, snapshot_id: str, tip: Tip) -> asyncio.Task | None:
        """User asked for a preview that was never rendered or was cancelled."""
        self._record_baseline(snapshot_id)
        return self.enqueue(snapshot_id, tip)

    def retry(self, snapshot_id: str, tip_index: int) -> asyncio.Task | None:
        """Retry a failed preview; progress is counted from the current done count."""
        found = find_snapshot(self.store.state, snapshot_id)
        if found is None:
            return None
        _, snapshot = found
        if not 0 <= tip_index < len(snapshot.tips):
            return None
        tip = snapshot.tips[tip_index]
        if tip.preview_status != PreviewStatus.ERROR:
            return None
        self._record_baseline(snapshot_id)
        return self.enqueue(snapshot_id, tip)

    @property
    def busy(self) -> bool:
        return bool(self._tasks)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _render(self, batch: PreviewBatch, snapshot_id: str, tip: Tip) -> None:
        found = find_snapshot(self.store.state, snapshot_id)
        if found is None or batch.cancelled:
            return
        parent_image = found[1].image
        if not self._apply(batch, snapshot_id, tip.edit_prompt, PreviewStatus.GENERATING):
            return

        for attempt in range(self.max_attempts):
            try:
                image = await self.backend.render_preview(
                    parent_image, tip.edit_prompt, tip.aspect_ratio
                )
            except Exception as e:
                # Any failure counts as an attempt; the tip must not stay generating.
                if not isinstance(e, BackendError):
                    logger.exception(f"unexpected error rendering preview '{tip.label}'")
                logger.warning(
                    f"preview '{tip.label}' attempt {attempt + 1}/{self.max_attempts} failed: {e}"
                )
                if attempt + 1 < self.max_attempts:
                    await self._sleep(self.base_delay * 2**attempt)
                continue
            if self._apply(batch, snapshot_id, tip.edit_prompt, PreviewStatus.DONE, image):
                if self._on_settled is not None:
                    self._on_settled(snapshot_id)
            return

        self._apply(batch, snapshot_id, tip.edit_prompt, PreviewStatus.ERROR)

    def _apply(
        self,
        batch: PreviewBatch,
        snapshot_id: str,
        edit_prompt: str,
        status: PreviewStatus,
        image: str | None = None,
    ) -> bool:
        if batch.cancelled:
            logger.debug(f"discarding {status.value} from cancelled batch {batch.id}")
            return False
        self.store.apply(set_preview, snapshot_id, edit_prompt, status, image)
        return True

    def _tip(self, snapshot_id: str, edit_prompt: str) -> Tip | None:
        found = find_snapshot(self.store.state, snapshot_id)
        if found is None:
            return None
        for tip in found[1].tips:
            if tip.edit_prompt == edit_prompt:
                return tip
        return None

    def _record_baseline(self, snapshot_id: str) -> None:
        found = find_snapshot(self.store.state, snapshot_id)
        if found is not None:
            done = count_previews(found[1], PreviewStatus.DONE)
            self.store.apply(set_baseline, snapshot_id, done)

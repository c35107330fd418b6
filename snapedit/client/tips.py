"""Concurrent per-category tip streams, merged as tips arrive."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Sequence

from snapedit.client.backend import BackendError, EditorBackend
from snapedit.domain import PhotoMetadata, Tip, TipCategory
from snapedit.logging import get_logger

logger = get_logger("client.tips")

_CATEGORY_FINISHED = object()


class PreviewMode(str, Enum):
    FULL = "full"
    # First enhance tip and first wild tip only.
    SELECTIVE = "selective"
    NONE = "none"


_SELECTIVE_CATEGORIES = frozenset({TipCategory.ENHANCE, TipCategory.WILD})


@dataclass
class PreviewPolicy:
    """Decides, tip by tip, which previews to render speculatively."""

    mode: PreviewMode
    _seen: set[TipCategory] = field(default_factory=set)

    def wants_preview(self, tip: Tip) -> bool:
        if self.mode is PreviewMode.FULL:
            return True
        if self.mode is PreviewMode.NONE:
            return False
        if tip.category not in _SELECTIVE_CATEGORIES or tip.category in self._seen:
            return False
        self._seen.add(tip.category)
        return True


class TipPipeline:
    def __init__(
        self,
        backend: EditorBackend,
        *,
        categories: Sequence[TipCategory] = tuple(TipCategory),
        max_retries: int = 2,
        retry_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.backend = backend
        self.categories = tuple(categories)
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep

    async def stream(
        self, image: str, metadata: PhotoMetadata | None = None
    ) -> AsyncIterator[Tip]:
        """Yield tips from all categories in arrival order.

        Ends when every category has finished or been abandoned. Closing the
        iterator early cancels the category requests still running.
        """
        queue: asyncio.Queue = asyncio.Queue()
        tasks = [
            asyncio.create_task(self._run_category(image, category, metadata, queue))
            for category in self.categories
        ]
        remaining = len(tasks)
        try:
            while remaining:
                item = await queue.get()
                if item is _CATEGORY_FINISHED:
                    remaining -= 1
                    continue
                yield item
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_category(
        self,
        image: str,
        category: TipCategory,
        metadata: PhotoMetadata | None,
        queue: asyncio.Queue,
    ) -> None:
        seen: set[str] = set()
        try:
            for attempt in range(self.max_retries + 1):
                try:
                    async for tip in self.backend.stream_tips(image, category, metadata):
                        # A retry re-sends tips the failed attempt already delivered.
                        if tip.edit_prompt in seen:
                            continue
                        seen.add(tip.edit_prompt)
                        queue.put_nowait(tip)
                    return
                except BackendError as e:
                    logger.warning(
                        f"{category.value} tips attempt {attempt + 1}/{self.max_retries + 1} "
                        f"failed: {e}"
                    )
                    if attempt < self.max_retries:
                        await self._sleep(self.retry_delay * (attempt + 1))
            logger.error(f"giving up on {category.value} tips after {len(seen)} tip(s)")
        finally:
            queue.put_nowait(_CATEGORY_FINISHED)

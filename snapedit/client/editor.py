"""Editing session controller.

Connects user actions to the agent stream, tip pipeline and preview queue, and
feeds everything they produce into the ``EditorStore``.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Coroutine, Literal

from snapedit.agents.photo.events import (
    AgentEvent,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    ImageEvent,
    NewTurnEvent,
    StatusEvent,
    ToolCallEvent,
)
from snapedit.agents.photo.prompts import reaction_prompt
from snapedit.agents.photo.state import AgentMode
from snapedit.agents.photo.tools import GENERATE_IMAGE
from snapedit.client import store as transitions
from snapedit.client.backend import BackendError, EditorBackend
from snapedit.client.persistence import FireAndForget, NullPersistence, Persistence
from snapedit.client.previews import PreviewQueue
from snapedit.client.status import derive_status
from snapedit.client.store import (
    EditorState,
    EditorStore,
    Selection,
    classify_selection,
    find_snapshot,
    is_viewing_draft,
    tips_source_index,
    viewed_image,
    viewed_snapshot,
)
from snapedit.client.tips import PreviewMode, PreviewPolicy, TipPipeline
from snapedit.domain import Message, PhotoMetadata, Snapshot, new_id
from snapedit.logging import get_logger

logger = get_logger("client.editor")

AGENT_FALLBACK_MESSAGE = "Something went wrong, please try again"
THINKING_STATUS = "Thinking..."
ANALYZING_STATUS = "Analyzing the photo..."
HISTORY_LIMIT = 30
HISTORY_CHARS = 500


@dataclass
class _AgentRun:
    # Assistant message receiving content; None for silent runs.
    message_id: str | None
    create_snapshots: bool
    message_ids: list[str] = field(default_factory=list)
    text: list[str] = field(default_factory=list)
    edit_prompt: str | None = None
    new_snapshots: list[Snapshot] = field(default_factory=list)
    failed: bool = False
    cancelled: bool = False
    # Session generation the run was requested in.
    generation: int = 0


def build_agent_prompt(state: EditorState, text: str) -> str:
    """Prompt for a chat run: context blocks followed by the user request."""
    sections: list[str] = []
    index = tips_source_index(state)
    total = len(state.snapshots)
    if index < total - 1:
        sections.append(
            f"[Note]\nThe user is editing version {index + 1} of {total}, not the latest. "
            "The conversation below may describe other versions; trust the current image."
        )

    metadata = state.snapshots[0].metadata if state.snapshots else None
    if metadata and (metadata.taken_at or metadata.location):
        lines = ["[Photo metadata]"]
        if metadata.taken_at:
            lines.append(f"Taken at: {metadata.taken_at}")
        if metadata.location:
            lines.append(f"Location: {metadata.location}")
        sections.append("\n".join(lines))

    snapshot = state.snapshots[index] if state.snapshots else None
    # A draft can look very different from its parent's analysis.
    if snapshot and snapshot.description and not is_viewing_draft(state):
        sections.append(f"[Image analysis]\n{snapshot.description}")

    if snapshot and snapshot.tips:
        tips = "\n".join(
            f"- [{t.category.value}] {t.emoji} {t.label}: {t.desc}" for t in snapshot.tips
        )
        sections.append(f"[Current suggestions]\n{tips}")

    history = [m for m in state.messages if m.content][-HISTORY_LIMIT:]
    if history:
        lines = [
            f"[{'User' if m.role == 'user' else 'Assistant'}] {m.content[:HISTORY_CHARS]}"
            for m in history
        ]
        sections.append("[Conversation]\n" + "\n".join(lines))

    sections.append(f"[Current request]\n{text}")
    return "\n\n".join(sections)


class EditorSession:
    def __init__(
        self,
        backend: EditorBackend,
        *,
        project_id: str = "local",
        persistence: Persistence | None = None,
        store: EditorStore | None = None,
        pipeline: TipPipeline | None = None,
        previews: PreviewQueue | None = None,
    ):
        self.backend = backend
        self.store = store or EditorStore()
        self.persist = FireAndForget(persistence or NullPersistence(), project_id)
        self.pipeline = pipeline or TipPipeline(backend)
        self.previews = previews or PreviewQueue(
            self.store, backend, on_settled=self._persist_tips
        )
        self._background: set[asyncio.Task] = set()
        self._agent_lock = asyncio.Lock()
        self._agent_task: asyncio.Task | None = None
        self._agent_cancel_requested = False
        # Bumped by every upload; work from older sessions must not touch the store.
        self._generation = 0

    @property
    def state(self) -> EditorState:
        return self.store.state

    @property
    def status(self) -> str:
        return derive_status(self.store.state)

    def upload(self, image: str, metadata: PhotoMetadata | None = None) -> Snapshot:
        """Start over with ``image`` as the first snapshot.

        Agent runs, tip streams and previews of the previous session are abandoned.
        """
        self._abandon_session()
        snapshot = Snapshot(id=new_id(), image=image, metadata=metadata)
        self.store.apply(transitions.start_session, snapshot)
        self.persist.save_snapshot(snapshot, 0)
        self._spawn(self._fetch_tips(snapshot, PreviewMode.FULL))
        self._spawn(self._analyze(snapshot.id, image, "initial"))
        return snapshot

    async def send_message(self, text: str) -> None:
        state = self.store.state
        image = viewed_image(state)
        if image is None:
            logger.warning("send_message before any upload ignored")
            return

        prompt = build_agent_prompt(state, text)
        user = Message(id=new_id(), role="user", content=text)
        assistant = Message(id=new_id(), role="assistant")
        self.store.apply(transitions.add_message, user)
        self.store.apply(transitions.add_message, assistant)
        self.persist.save_message(user)

        run = await self._run_agent(
            _AgentRun(message_id=assistant.id, create_snapshots=True),
            prompt=prompt,
            image=image,
            original_image=state.snapshots[0].image,
            mode=AgentMode.CHAT,
            status=THINKING_STATUS,
        )
        if run.cancelled or run.failed:
            return
        for snapshot in run.new_snapshots:
            self._spawn(self._analyze(snapshot.id, snapshot.image, "post-edit"))

    def select_tip(self, tip_index: int) -> Selection:
        state = self.store.state
        selection = classify_selection(state, tip_index)
        snapshot = viewed_snapshot(state)
        if selection is Selection.COMMIT:
            self._commit_draft()
        elif selection is Selection.DRAFT:
            self.store.apply(transitions.select_draft, tip_index)
        elif selection is Selection.REQUEST_PREVIEW:
            self.previews.request(snapshot.id, snapshot.tips[tip_index])
        return selection

    def retry_preview(self, tip_index: int) -> bool:
        snapshot = viewed_snapshot(self.store.state)
        if snapshot is None:
            return False
        return self.previews.retry(snapshot.id, tip_index) is not None

    def dismiss_draft(self) -> None:
        self.store.apply(transitions.dismiss_draft)

    def navigate(self, index: int) -> None:
        self.store.apply(transitions.navigate, index)

    def cancel_agent(self) -> None:
        """Stop consuming the current agent run; applied effects stay."""
        task = self._agent_task
        if task is not None and not task.done():
            self._agent_cancel_requested = True
            task.cancel()

    async def wait_idle(self) -> None:
        """Wait until no background work is left."""
        while self._background or self.previews.busy or self.persist.busy:
            await asyncio.gather(*list(self._background), return_exceptions=True)
            await self.previews.drain()
            await self.persist.drain()

    async def aclose(self) -> None:
        self._abandon_session()
        await asyncio.gather(*list(self._background), return_exceptions=True)
        await self.persist.drain()

    def _abandon_session(self) -> None:
        self._generation += 1
        self.cancel_agent()
        self.previews.cancel()
        for task in list(self._background):
            task.cancel()

    def _is_stale(self, run: _AgentRun) -> bool:
        return run.generation != self._generation

    def _commit_draft(self) -> None:
        state = self.store.state
        draft = state.draft
        parent = state.snapshots[draft.parent_index]
        tip = parent.tips[draft.tip_index]

        self.previews.cancel()
        user = Message(id=new_id(), role="user", content=tip.label)
        assistant = Message(
            id=new_id(),
            role="assistant",
            image=tip.preview_image,
            edit_prompt=tip.edit_prompt,
        )
        snapshot = Snapshot(id=new_id(), image=tip.preview_image, message_id=assistant.id)
        self.store.apply(transitions.add_message, user)
        self.store.apply(transitions.add_message, assistant)
        self.store.apply(transitions.add_snapshot, snapshot)
        self.persist.save_message(user)
        self.persist.save_message(assistant)
        self.persist.save_snapshot(snapshot, len(self.store.state.snapshots) - 1)
        logger.info(f"committed tip '{tip.label}' as snapshot {len(self.store.state.snapshots)}")

        self._spawn(self._fetch_tips(snapshot, PreviewMode.SELECTIVE))
        siblings = [t.summary() for i, t in enumerate(parent.tips) if i != draft.tip_index]
        self._spawn(self._react(tip.summary(), siblings, snapshot.image))

    async def _fetch_tips(self, snapshot: Snapshot, mode: PreviewMode) -> None:
        policy = PreviewPolicy(mode)
        batch = self.previews.start_batch(snapshot.id) if mode is not PreviewMode.NONE else None
        self.store.apply(transitions.set_tips_fetching, snapshot.id, True)
        try:
            async for tip in self.pipeline.stream(snapshot.image, snapshot.metadata):
                self.store.apply(transitions.add_tip, snapshot.id, tip)
                if batch is not None and policy.wants_preview(tip):
                    self.previews.enqueue(snapshot.id, tip, batch)
        finally:
            self.store.apply(transitions.set_tips_fetching, snapshot.id, False)
        self._persist_tips(snapshot.id)

    async def _analyze(
        self,
        snapshot_id: str,
        image: str,
        context: Literal["initial", "post-edit"],
    ) -> None:
        message_id = None
        if context == "initial":
            message = Message(id=new_id(), role="assistant")
            self.store.apply(transitions.add_message, message)
            message_id = message.id

        run = await self._run_agent(
            _AgentRun(message_id=message_id, create_snapshots=False),
            prompt="",
            image=image,
            mode=AgentMode.ANALYSIS,
            analysis_context=context,
            status=ANALYZING_STATUS,
        )
        description = "".join(run.text).strip()
        if description and not run.failed and not run.cancelled:
            self.store.apply(transitions.set_description, snapshot_id, description)
            self.persist.update_description(snapshot_id, description)

    async def _react(self, committed: dict, siblings: list[dict], image: str) -> None:
        message = Message(id=new_id(), role="assistant")
        self.store.apply(transitions.add_message, message)
        await self._run_agent(
            _AgentRun(message_id=message.id, create_snapshots=False),
            prompt=reaction_prompt(committed, siblings),
            image=image,
            mode=AgentMode.REACTION,
            status=THINKING_STATUS,
        )

    async def _run_agent(
        self,
        run: _AgentRun,
        *,
        prompt: str,
        image: str,
        mode: AgentMode,
        status: str,
        original_image: str | None = None,
        analysis_context: Literal["initial", "post-edit"] = "initial",
    ) -> _AgentRun:
        """Run one agent request; runs never overlap."""
        run.generation = self._generation
        if run.message_id:
            run.message_ids.append(run.message_id)
        async with self._agent_lock:
            if self._is_stale(run):
                # Queued behind the lock while a new image was uploaded.
                run.cancelled = True
                logger.info(f"dropping {mode.value} run from a previous session")
                return run
            self.store.apply(transitions.set_agent, True, status)
            task = asyncio.create_task(
                self._consume(
                    run,
                    prompt=prompt,
                    image=image,
                    original_image=original_image,
                    mode=mode,
                    analysis_context=analysis_context,
                )
            )
            self._agent_task = task
            try:
                await task
            except asyncio.CancelledError:
                if not self._agent_cancel_requested:
                    raise
                run.cancelled = True
                logger.info(f"{mode.value} run cancelled")
            finally:
                self._agent_task = None
                self._agent_cancel_requested = False
                self.store.apply(transitions.set_agent, False)

        for message in self.store.state.messages:
            if message.id in run.message_ids and (message.content or message.image):
                self.persist.save_message(message)
        return run

    async def _consume(
        self,
        run: _AgentRun,
        *,
        prompt: str,
        image: str,
        original_image: str | None,
        mode: AgentMode,
        analysis_context: Literal["initial", "post-edit"],
    ) -> None:
        events = self.backend.run_agent(
            prompt=prompt,
            image=image,
            original_image=original_image,
            mode=mode,
            analysis_context=analysis_context,
        )
        try:
            async with aclosing(events):
                async for event in events:
                    if self._is_stale(run):
                        run.cancelled = True
                        return
                    if isinstance(event, (DoneEvent, ErrorEvent)):
                        if isinstance(event, ErrorEvent):
                            logger.error(f"{mode.value} run failed: {event.message}")
                            self._fail(run)
                        return
                    self._handle_event(run, event)
        except BackendError as e:
            logger.error(f"{mode.value} stream failed: {e}")
            self._fail(run)
            return
        logger.error(f"{mode.value} stream ended without a terminal event")
        self._fail(run)

    def _handle_event(self, run: _AgentRun, event: AgentEvent) -> None:
        if isinstance(event, StatusEvent):
            self.store.apply(transitions.set_agent, True, event.text)
        elif isinstance(event, NewTurnEvent):
            if run.message_id is not None:
                message = Message(id=new_id(), role="assistant")
                self.store.apply(transitions.add_message, message)
                run.message_id = message.id
                run.message_ids.append(message.id)
        elif isinstance(event, ContentEvent):
            run.text.append(event.text)
            if run.message_id is not None:
                self.store.apply(transitions.append_content, run.message_id, event.text)
        elif isinstance(event, ToolCallEvent):
            edit_prompt = event.input.get("editPrompt")
            if event.tool == GENERATE_IMAGE and isinstance(edit_prompt, str):
                run.edit_prompt = edit_prompt
        elif isinstance(event, ImageEvent):
            if run.create_snapshots:
                self._add_agent_snapshot(run, event.image)

    def _add_agent_snapshot(self, run: _AgentRun, image: str) -> None:
        snapshot = Snapshot(id=new_id(), image=image, message_id=run.message_id or "")
        self.store.apply(transitions.add_snapshot, snapshot)
        self.persist.save_snapshot(snapshot, len(self.store.state.snapshots) - 1)
        if run.message_id is not None:
            self.store.apply(
                transitions.update_message,
                run.message_id,
                image=image,
                edit_prompt=run.edit_prompt,
                snapshot_id=snapshot.id,
            )
        run.edit_prompt = None
        run.new_snapshots.append(snapshot)
        self._spawn(self._fetch_tips(snapshot, PreviewMode.NONE))

    def _fail(self, run: _AgentRun) -> None:
        run.failed = True
        if run.message_id is None:
            return
        message = next((m for m in self.store.state.messages if m.id == run.message_id), None)
        if message is not None and not message.content:
            self.store.apply(
                transitions.update_message, run.message_id, content=AGENT_FALLBACK_MESSAGE
            )

    def _persist_tips(self, snapshot_id: str) -> None:
        found = find_snapshot(self.store.state, snapshot_id)
        if found is not None:
            self.persist.update_tips(snapshot_id, found[1].tips)

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background_done)
        return task

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"background task failed: {task.exception()}")

"""Snapshot/draft state of one editing session.

Every mutation is a pure function ``EditorState -> EditorState``. ``EditorStore``
applies them synchronously, so async completions that interleave on the event
loop always start from the latest state.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Concatenate, ParamSpec

from snapedit.domain import (
    Message,
    PreviewStatus,
    Snapshot,
    Tip,
    can_transition,
)
from snapedit.logging import get_logger

logger = get_logger("client.store")

P = ParamSpec("P")


@dataclass(frozen=True)
class Draft:
    """Virtual, uncommitted snapshot: a tip preview applied over ``parent_index``."""

    parent_index: int
    tip_index: int


@dataclass(frozen=True)
class EditorState:
    snapshots: tuple[Snapshot, ...] = ()
    messages: tuple[Message, ...] = ()
    # Index into the timeline; ``len(snapshots)`` addresses the draft.
    view_index: int = 0
    draft: Draft | None = None
    agent_active: bool = False
    agent_status: str = ""
    # Snapshot ids whose tip streams are still running.
    tips_fetching: frozenset[str] = frozenset()
    # Per snapshot id: done-count recorded when the current preview batch started.
    preview_baseline: dict[str, int] = field(default_factory=dict)


class Selection(str, Enum):
    COMMIT = "commit"
    DRAFT = "draft"
    REQUEST_PREVIEW = "request_preview"
    IGNORED = "ignored"


# Derived views


def timeline(state: EditorState) -> list[str]:
    images = [s.image for s in state.snapshots]
    image = draft_image(state)
    if image is not None:
        images.append(image)
    return images


def is_viewing_draft(state: EditorState) -> bool:
    return state.draft is not None and state.view_index == len(state.snapshots)


def tips_source_index(state: EditorState) -> int:
    """Snapshot whose tips are shown: the draft's parent while viewing the draft."""
    if is_viewing_draft(state):
        return state.draft.parent_index
    return state.view_index


def draft_tip(state: EditorState) -> Tip | None:
    if state.draft is None:
        return None
    return state.snapshots[state.draft.parent_index].tips[state.draft.tip_index]


def draft_image(state: EditorState) -> str | None:
    if state.draft is None:
        return None
    tip = draft_tip(state)
    if tip.preview_status == PreviewStatus.DONE and tip.preview_image:
        return tip.preview_image
    return state.snapshots[state.draft.parent_index].image


def viewed_image(state: EditorState) -> str | None:
    if not state.snapshots:
        return None
    if is_viewing_draft(state):
        return draft_image(state)
    return state.snapshots[state.view_index].image


def viewed_snapshot(state: EditorState) -> Snapshot | None:
    """Committed snapshot whose tips are on screen."""
    if not state.snapshots:
        return None
    return state.snapshots[tips_source_index(state)]


def find_snapshot(state: EditorState, snapshot_id: str) -> tuple[int, Snapshot] | None:
    for i, snapshot in enumerate(state.snapshots):
        if snapshot.id == snapshot_id:
            return i, snapshot
    return None


def count_previews(snapshot: Snapshot, *statuses: PreviewStatus) -> int:
    return sum(1 for tip in snapshot.tips if tip.preview_status in statuses)


def classify_selection(state: EditorState, tip_index: int) -> Selection:
    """Decide what selecting tip ``tip_index`` of the visible tip set means."""
    snapshot = viewed_snapshot(state)
    if snapshot is None or not 0 <= tip_index < len(snapshot.tips):
        return Selection.IGNORED
    if is_viewing_draft(state) and state.draft.tip_index == tip_index:
        return Selection.COMMIT
    status = snapshot.tips[tip_index].preview_status
    if status == PreviewStatus.DONE:
        return Selection.DRAFT
    if status in (PreviewStatus.NONE, PreviewStatus.CANCELLED):
        return Selection.REQUEST_PREVIEW
    return Selection.IGNORED


# Transitions


def start_session(state: EditorState, snapshot: Snapshot) -> EditorState:
    """Empty (or any state) -> one committed snapshot."""
    return EditorState(snapshots=(snapshot,), view_index=0)


def add_snapshot(state: EditorState, snapshot: Snapshot) -> EditorState:
    snapshots = state.snapshots + (snapshot,)
    return replace(state, snapshots=snapshots, draft=None, view_index=len(snapshots) - 1)


def add_message(state: EditorState, message: Message) -> EditorState:
    return replace(state, messages=state.messages + (message,))


def update_message(state: EditorState, message_id: str, **changes) -> EditorState:
    messages = tuple(
        m.model_copy(update=changes) if m.id == message_id else m for m in state.messages
    )
    return replace(state, messages=messages)


def append_content(state: EditorState, message_id: str, text: str) -> EditorState:
    messages = tuple(
        m.model_copy(update={"content": m.content + text}) if m.id == message_id else m
        for m in state.messages
    )
    return replace(state, messages=messages)


def set_description(state: EditorState, snapshot_id: str, description: str) -> EditorState:
    return _replace_snapshot(
        state, snapshot_id, lambda s: s.model_copy(update={"description": description})
    )


def add_tip(state: EditorState, snapshot_id: str, tip: Tip) -> EditorState:
    """Append a tip; a tip whose edit prompt is already present is ignored."""

    def _add(snapshot: Snapshot) -> Snapshot:
        if any(t.edit_prompt == tip.edit_prompt for t in snapshot.tips):
            return snapshot
        return snapshot.model_copy(update={"tips": snapshot.tips + (tip,)})

    return _replace_snapshot(state, snapshot_id, _add)


def set_preview(
    state: EditorState,
    snapshot_id: str,
    edit_prompt: str,
    status: PreviewStatus,
    image: str | None = None,
) -> EditorState:
    """Move one tip's preview forward; illegal transitions leave the state unchanged."""

    def _update(snapshot: Snapshot) -> Snapshot:
        tips = list(snapshot.tips)
        for i, tip in enumerate(tips):
            if tip.edit_prompt != edit_prompt:
                continue
            if not can_transition(tip.preview_status, status):
                logger.debug(
                    f"ignoring preview transition {tip.preview_status.value} -> {status.value}"
                )
                return snapshot
            update: dict = {"preview_status": status}
            if image is not None:
                update["preview_image"] = image
            tips[i] = tip.model_copy(update=update)
            return snapshot.model_copy(update={"tips": tuple(tips)})
        return snapshot

    return _replace_snapshot(state, snapshot_id, _update)


def set_tips_fetching(state: EditorState, snapshot_id: str, fetching: bool) -> EditorState:
    if fetching:
        return replace(state, tips_fetching=state.tips_fetching | {snapshot_id})
    return replace(state, tips_fetching=state.tips_fetching - {snapshot_id})


def set_baseline(state: EditorState, snapshot_id: str, value: int) -> EditorState:
    return replace(state, preview_baseline={**state.preview_baseline, snapshot_id: value})


def select_draft(state: EditorState, tip_index: int) -> EditorState:
    """Create or retarget the draft over the snapshot whose tips are visible."""
    parent = tips_source_index(state)
    return replace(
        state,
        draft=Draft(parent_index=parent, tip_index=tip_index),
        view_index=len(state.snapshots),
    )


def dismiss_draft(state: EditorState) -> EditorState:
    if state.draft is None:
        return state
    view_index = state.view_index
    if view_index >= len(state.snapshots):
        view_index = state.draft.parent_index
    return replace(state, draft=None, view_index=view_index)


def navigate(state: EditorState, index: int) -> EditorState:
    last = len(timeline(state)) - 1
    return replace(state, view_index=max(0, min(index, last)))


def set_agent(state: EditorState, active: bool, status: str = "") -> EditorState:
    return replace(state, agent_active=active, agent_status=status if active else "")


def _replace_snapshot(
    state: EditorState,
    snapshot_id: str,
    update: Callable[[Snapshot], Snapshot],
) -> EditorState:
    snapshots = tuple(update(s) if s.id == snapshot_id else s for s in state.snapshots)
    return replace(state, snapshots=snapshots)


class EditorStore:
    """Single authoritative holder of ``EditorState``."""

    def __init__(self, state: EditorState | None = None):
        self._state = state or EditorState()
        self._listeners: list[Callable[[EditorState], None]] = []

    @property
    def state(self) -> EditorState:
        return self._state

    def apply(
        self,
        transition: Callable[Concatenate[EditorState, P], EditorState],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> EditorState:
        self._state = transition(self._state, *args, **kwargs)
        for listener in list(self._listeners):
            listener(self._state)
        return self._state

    def subscribe(self, listener: Callable[[EditorState], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

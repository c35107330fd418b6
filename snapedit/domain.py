"""Domain records shared by the service and the editor client."""

import time
import uuid
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class TipCategory(str, Enum):
    ENHANCE = "enhance"
    CREATIVE = "creative"
    WILD = "wild"


class PreviewStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    GENERATING = "generating"
    DONE = "done"
    ERROR = "error"
    # Terminal state for previews abandoned by a batch cancellation.
    CANCELLED = "cancelled"


PREVIEW_TRANSITIONS: dict[PreviewStatus, frozenset[PreviewStatus]] = {
    PreviewStatus.NONE: frozenset({PreviewStatus.PENDING}),
    PreviewStatus.PENDING: frozenset(
        {PreviewStatus.GENERATING, PreviewStatus.ERROR, PreviewStatus.CANCELLED}
    ),
    PreviewStatus.GENERATING: frozenset(
        {PreviewStatus.DONE, PreviewStatus.ERROR, PreviewStatus.CANCELLED}
    ),
    PreviewStatus.DONE: frozenset(),
    # error -> pending only through an explicit retry.
    PreviewStatus.ERROR: frozenset({PreviewStatus.PENDING}),
    PreviewStatus.CANCELLED: frozenset({PreviewStatus.PENDING}),
}

UNSETTLED_STATUSES = frozenset({PreviewStatus.PENDING, PreviewStatus.GENERATING})


def can_transition(current: PreviewStatus, target: PreviewStatus) -> bool:
    """Return whether a tip preview may move from ``current`` to ``target``."""
    return target in PREVIEW_TRANSITIONS[current]


def new_id() -> str:
    return uuid.uuid4().hex


class Tip(BaseModel):
    """One candidate edit. Everything except the preview fields is fixed."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    emoji: str = ""
    label: str = Field(min_length=1)
    desc: str = ""
    edit_prompt: str = Field(alias="editPrompt", min_length=1)
    category: TipCategory
    aspect_ratio: str | None = Field(default=None, alias="aspectRatio")
    preview_status: PreviewStatus = Field(default=PreviewStatus.NONE, alias="previewStatus")
    preview_image: str | None = Field(default=None, alias="previewImage")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def summary(self) -> dict[str, str]:
        """The user-facing part of the tip, without prompts or previews."""
        return {
            "emoji": self.emoji,
            "label": self.label,
            "desc": self.desc,
            "category": self.category.value,
        }


class PhotoMetadata(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    taken_at: str | None = Field(default=None, alias="takenAt")
    location: str | None = None


class Snapshot(BaseModel):
    """One committed image version in the timeline."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    image: str
    tips: tuple[Tip, ...] = ()
    message_id: str = Field(default="", alias="messageId")
    description: str | None = None
    metadata: PhotoMetadata | None = None


class Message(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    role: Literal["user", "assistant"]
    content: str = ""
    image: str | None = None
    edit_prompt: str | None = Field(default=None, alias="editPrompt")
    snapshot_id: str | None = Field(default=None, alias="snapshotId")
    timestamp: float = Field(default_factory=time.time)

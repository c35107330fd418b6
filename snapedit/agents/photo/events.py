"""Events emitted by the photo agent run loop.

Every event serializes to a JSON object tagged by ``type``. Consumers must
ignore tags they do not know, so ``parse_event`` returns None for them.
"""

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class StatusEvent(_Event):
    type: Literal["status"] = "status"
    text: str


class ContentEvent(_Event):
    type: Literal["content"] = "content"
    text: str


class NewTurnEvent(_Event):
    type: Literal["new_turn"] = "new_turn"


class ImageEvent(_Event):
    type: Literal["image"] = "image"
    image: str


class ToolCallEvent(_Event):
    type: Literal["tool_call"] = "tool_call"
    tool: str
    input: dict[str, Any] = Field(default_factory=dict)
    # Input images handed to the image service for this call.
    images: list[str] | None = None


class DoneEvent(_Event):
    type: Literal["done"] = "done"


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    message: str


AgentEvent = Annotated[
    Union[
        StatusEvent,
        ContentEvent,
        NewTurnEvent,
        ImageEvent,
        ToolCallEvent,
        DoneEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

TERMINAL_EVENT_TYPES = frozenset({"done", "error"})

_adapter: TypeAdapter[AgentEvent] = TypeAdapter(AgentEvent)


def parse_event(data: str | dict[str, Any]) -> AgentEvent | None:
    """Decode one wire record; unknown tags and malformed records yield None."""
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError:
            return None
    if not isinstance(data, dict):
        return None
    try:
        return _adapter.validate_python(data)
    except ValidationError:
        return None


def is_terminal(event: AgentEvent) -> bool:
    return event.type in TERMINAL_EVENT_TYPES

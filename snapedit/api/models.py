import json
from typing import Any, Literal
from pydantic import BaseModel, ConfigDict, Field

from snapedit.agents.photo.state import AgentMode
from snapedit.domain import PhotoMetadata, TipCategory


class AgentRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)
    prompt: str = ""
    image: str = ""
    original_image: str | None = Field(default=None, alias="originalImage")
    project_id: str | None = Field(default=None, alias="projectId")
    mode: AgentMode = AgentMode.CHAT
    analysis_context: Literal["initial", "post-edit"] = Field(
        default="initial", alias="analysisContext"
    )


class TipsRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    image: str = ""
    category: TipCategory
    metadata: PhotoMetadata | None = None


class PreviewRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)
    image: str = ""
    edit_prompt: str = Field(default="", alias="editPrompt")
    aspect_ratio: str | None = Field(default=None, alias="aspectRatio")


class PreviewResponse(BaseModel):
    image: str


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)
    session_id: str = Field(default="", alias="sessionId")
    message: str = ""
    image: str | None = None
    want_image: bool = Field(default=False, alias="wantImage")
    aspect_ratio: str | None = Field(default=None, alias="aspectRatio")
    reset: bool = False


def sse_event(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

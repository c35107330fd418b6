"""Editor-side access to the snapedit service."""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Literal, Protocol

import httpx

from snapedit.agents.photo.events import AgentEvent, parse_event
from snapedit.agents.photo.state import AgentMode
from snapedit.client.stream import iter_sse_records
from snapedit.domain import PhotoMetadata, Tip, TipCategory
from snapedit.logging import get_logger
from snapedit.tips.parser import parse_tip

logger = get_logger("client.backend")


class BackendError(Exception):
    """A service call failed at the transport or protocol level."""


class AgentStreamError(BackendError):
    pass


class TipStreamError(BackendError):
    pass


class PreviewError(BackendError):
    pass


class EditorBackend(Protocol):
    def run_agent(
        self,
        *,
        prompt: str,
        image: str,
        original_image: str | None = None,
        mode: AgentMode = AgentMode.CHAT,
        analysis_context: Literal["initial", "post-edit"] = "initial",
    ) -> AsyncIterator[AgentEvent]:
        """Yield decoded agent events; unknown records are skipped."""

    def stream_tips(
        self,
        image: str,
        category: TipCategory,
        metadata: PhotoMetadata | None = None,
    ) -> AsyncIterator[Tip]:
        """Yield tips of one category; raise ``TipStreamError`` if the stream fails."""

    async def render_preview(
        self, image: str, edit_prompt: str, aspect_ratio: str | None = None
    ) -> str:
        """Return the preview image; raise ``PreviewError`` on failure."""


class HttpEditorBackend(EditorBackend):
    def __init__(self, client: httpx.AsyncClient, project_id: str | None = None):
        self.client = client
        self.project_id = project_id

    async def run_agent(
        self,
        *,
        prompt: str,
        image: str,
        original_image: str | None = None,
        mode: AgentMode = AgentMode.CHAT,
        analysis_context: Literal["initial", "post-edit"] = "initial",
    ) -> AsyncIterator[AgentEvent]:
        payload = {
            "prompt": prompt,
            "image": image,
            "originalImage": original_image,
            "projectId": self.project_id,
            "mode": mode.value,
            "analysisContext": analysis_context,
        }
        try:
            async with self.client.stream("POST", "/agent", json=payload) as response:
                if response.status_code != 200:
                    await response.aread()
                    raise AgentStreamError(f"agent request failed: HTTP {response.status_code}")
                async for _, data in iter_sse_records(response.aiter_lines()):
                    event = parse_event(data)
                    if event is None:
                        logger.debug("skipping unknown agent record")
                        continue
                    yield event
        except httpx.HTTPError as e:
            raise AgentStreamError(f"agent stream failed: {e}") from e

    async def stream_tips(
        self,
        image: str,
        category: TipCategory,
        metadata: PhotoMetadata | None = None,
    ) -> AsyncIterator[Tip]:
        payload: dict[str, Any] = {"image": image, "category": category.value}
        if metadata is not None:
            payload["metadata"] = metadata.model_dump(by_alias=True, exclude_none=True)
        try:
            async with self.client.stream("POST", "/tips", json=payload) as response:
                if response.status_code != 200:
                    await response.aread()
                    raise TipStreamError(f"tips request failed: HTTP {response.status_code}")
                async for event, data in iter_sse_records(response.aiter_lines()):
                    if event == "done":
                        return
                    if event == "error":
                        raise TipStreamError(_error_message(data))
                    if event != "tip":
                        continue
                    try:
                        obj = json.loads(data)
                    except json.JSONDecodeError:
                        continue
                    tip = parse_tip(obj) if isinstance(obj, dict) else None
                    if tip is not None:
                        yield tip
        except httpx.HTTPError as e:
            raise TipStreamError(f"tips stream failed: {e}") from e
        raise TipStreamError("tips stream ended without done")

    async def render_preview(
        self, image: str, edit_prompt: str, aspect_ratio: str | None = None
    ) -> str:
        payload = {"image": image, "editPrompt": edit_prompt, "aspectRatio": aspect_ratio}
        try:
            response = await self.client.post("/preview", json=payload)
        except httpx.HTTPError as e:
            raise PreviewError(f"preview request failed: {e}") from e
        if response.status_code != 200:
            raise PreviewError(f"preview request failed: HTTP {response.status_code}")
        try:
            image_out = response.json().get("image")
        except (ValueError, AttributeError) as e:
            raise PreviewError(f"malformed preview response: {e}") from e
        if not image_out or not isinstance(image_out, str):
            raise PreviewError("preview response has no image")
        return image_out


def _error_message(data: str) -> str:
    try:
        return json.loads(data).get("message") or "tips stream error"
    except (json.JSONDecodeError, AttributeError):
        return "tips stream error"

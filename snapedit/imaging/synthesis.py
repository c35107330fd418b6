"""Image-synthesis service backed by Gemini image models."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from google import genai
from google.genai import types

from snapedit.imaging.data_urls import split_data_url, to_data_url
from snapedit.logging import get_logger

logger = get_logger("synthesis")


class ImageSynthesizer(Protocol):
    """Interface for instruction-driven image editing."""

    async def edit(
        self,
        images: Sequence[str],
        instruction: str,
        aspect_ratio: str | None = None,
    ) -> str | None:
        """Return the edited image as a data URL, or None when no image came back.

        ``images[0]`` is the edit base; any further images are references.
        Transport failures raise.
        """


@dataclass
class GeminiImageSynthesizer(ImageSynthesizer):
    client: genai.Client
    model: str

    @classmethod
    def create(cls, api_key: str, model: str) -> "GeminiImageSynthesizer":
        return cls(client=genai.Client(api_key=api_key), model=model)

    async def edit(
        self,
        images: Sequence[str],
        instruction: str,
        aspect_ratio: str | None = None,
    ) -> str | None:
        if not images:
            raise ValueError("at least one image is required")
        parts: list[types.Part] = []
        for image in images:
            mime_type, data = split_data_url(image)
            parts.append(types.Part(inline_data=types.Blob(data=data, mime_type=mime_type)))
        parts.append(types.Part(text=instruction))

        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=[types.Content(role="user", parts=parts)],
            config=_build_content_config(aspect_ratio),
        )
        image = _first_image(getattr(response, "candidates", None) or [])
        if image is None:
            logger.warning(f"{self.model} returned no image for {len(images)} input image(s)")
        return image


def _build_content_config(aspect_ratio: str | None) -> types.GenerateContentConfig:
    config_kwargs: dict[str, Any] = {"response_modalities": ["IMAGE"]}
    if aspect_ratio:
        config_kwargs["image_config"] = types.ImageConfig(aspect_ratio=aspect_ratio)
    return types.GenerateContentConfig(**config_kwargs)


def _first_image(candidates: Sequence[Any]) -> str | None:
    for candidate in candidates:
        content = getattr(candidate, "content", None)
        parts = getattr(content, "parts", None) or []
        for part in parts:
            inline_data = getattr(part, "inline_data", None)
            data = getattr(inline_data, "data", None) if inline_data else None
            if not data:
                continue
            if isinstance(data, str):
                data = base64.b64decode(data)
            return to_data_url(bytes(data), getattr(inline_data, "mime_type", None) or "image/png")
    return None

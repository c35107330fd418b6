from __future__ import annotations

from typing import AsyncIterator

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import SystemMessage

from snapedit.agents.photo.vision import build_human_message
from snapedit.domain import PhotoMetadata, Tip, TipCategory
from snapedit.logging import get_logger
from snapedit.tips.parser import extract_json_objects, parse_tip

logger = get_logger("tips")

TIPS_PER_CATEGORY = 2

TIPS_SYSTEM_PROMPT = """You suggest edits for a photo. Each suggestion has a short label,
a one-sentence description for the user, and a detailed English editPrompt for an
image-editing model. Keep every person's identity unchanged. For small faces (group or
wide shots) never edit faces."""

CATEGORY_GUIDES: dict[TipCategory, str] = {
    TipCategory.ENHANCE: (
        "enhance: improve the photo while keeping it realistic. Lighting, color grading, "
        "sharpness, background cleanup, composition crops."
    ),
    TipCategory.CREATIVE: (
        "creative: add one believable element that fits the scene and its mood, "
        "e.g. an animal, weather, props related to objects already in the photo."
    ),
    TipCategory.WILD: (
        "wild: transform the whole scene into something surprising, such as a miniature "
        "world, a painting style or an underwater scene. Subjects stay recognizable."
    ),
}

JSON_FORMAT_SUFFIX = """

Output one JSON object per suggestion, nothing else:
{"emoji": "...", "label": "...", "desc": "...", "editPrompt": "...", "category": "%s", "aspectRatio": "optional, e.g. 4:5"}"""


def build_tips_prompt(category: TipCategory, metadata: PhotoMetadata | None = None) -> str:
    lines: list[str] = []
    if metadata and (metadata.taken_at or metadata.location):
        lines.append("[Photo metadata]")
        if metadata.taken_at:
            lines.append(f"Taken at: {metadata.taken_at}")
        if metadata.location:
            lines.append(f"Location: {metadata.location}")
        lines.append("Use the time and place to make the suggestions more specific.")
        lines.append("")
    lines.append(
        "Before suggesting, look at the photo: how large the faces are, which concrete "
        "objects appear, and the overall mood."
    )
    lines.append(f"Then give {TIPS_PER_CATEGORY} suggestions of this kind:")
    lines.append(CATEGORY_GUIDES[category])
    return "\n".join(lines) + JSON_FORMAT_SUFFIX % category.value


class TipGenerator:
    """Streams validated tips for one category as the model writes them."""

    def __init__(self, llm: BaseChatModel):
        self.llm = llm

    async def stream(
        self,
        image: str,
        category: TipCategory,
        metadata: PhotoMetadata | None = None,
    ) -> AsyncIterator[Tip]:
        messages = [
            SystemMessage(content=TIPS_SYSTEM_PROMPT),
            build_human_message(build_tips_prompt(category, metadata), [image]),
        ]
        text = ""
        emitted = 0
        produced = 0
        async for chunk in self.llm.astream(messages):
            if not isinstance(chunk.content, str) or not chunk.content:
                continue
            text += chunk.content
            objects, emitted = extract_json_objects(text, emitted)
            for obj in objects:
                tip = parse_tip(obj)
                if tip is not None:
                    produced += 1
                    yield tip

        if produced == 0:
            logger.warning(f"no valid {category.value} tips in {emitted} object(s)")

"""Tools the photo agent can call, and the run-local context they operate on.

Executors never capture state: each takes the current ``RunContext`` and returns
the outcome together with the (possibly) updated context.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from typing import Any, Sequence, Union

from langchain_core.messages import BaseMessage, ToolMessage
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from typing_extensions import assert_never

from snapedit.agents.photo.prompts import labelled_reference_prompt
from snapedit.agents.photo.vision import build_human_message
from snapedit.imaging.synthesis import ImageSynthesizer
from snapedit.logging import get_logger

logger = get_logger("tools")

GENERATE_IMAGE = "generate_image"
ANALYZE_IMAGE = "analyze_image"


class GenerateImageArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    edit_prompt: str = Field(
        alias="editPrompt",
        min_length=1,
        description="Detailed English prompt describing the desired edits",
    )
    aspect_ratio: str | None = Field(
        default=None,
        alias="aspectRatio",
        description='Target aspect ratio e.g. "4:5", "1:1", "16:9"',
    )
    use_original_as_reference: bool = Field(
        default=False,
        alias="useOriginalAsReference",
        description="Also send the original upload so faces and details can be restored",
    )


class AnalyzeImageArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    question: str | None = Field(default=None, description="Optional focus area for the analysis")


@dataclass(frozen=True)
class GenerateImageCall:
    id: str
    args: GenerateImageArgs

    @property
    def name(self) -> str:
        return GENERATE_IMAGE

    @property
    def status_text(self) -> str:
        return "Generating image..."


@dataclass(frozen=True)
class AnalyzeImageCall:
    id: str
    args: AnalyzeImageArgs

    @property
    def name(self) -> str:
        return ANALYZE_IMAGE

    @property
    def status_text(self) -> str:
        question = self.args.question
        return f"Analyzing image: {question[:25]}" if question else "Analyzing image"


ToolCall = Union[GenerateImageCall, AnalyzeImageCall]

_TOOL_DESCRIPTIONS = {
    GENERATE_IMAGE: (
        "Edit the current photo. Takes a detailed English editing prompt and produces an "
        "edited image. The result is automatically shown to the user."
    ),
    ANALYZE_IMAGE: (
        "See and analyze the current photo. Returns the image so you can view it directly "
        "with your vision capabilities."
    ),
}

_TOOL_ARGS: dict[str, type[BaseModel]] = {
    GENERATE_IMAGE: GenerateImageArgs,
    ANALYZE_IMAGE: AnalyzeImageArgs,
}


def tool_schemas(names: Sequence[str]) -> list[dict[str, Any]]:
    """OpenAI function schemas for the given tool names, in order."""
    return [
        {
            "type": "function",
            "function": {
                "name": name,
                "description": _TOOL_DESCRIPTIONS[name],
                "parameters": _TOOL_ARGS[name].model_json_schema(by_alias=True),
            },
        }
        for name in names
    ]


class ToolCallError(Exception):
    """A tool call the loop cannot execute; the message is fed back to the model."""


def parse_tool_call(raw: dict[str, Any], allowed: frozenset[str]) -> ToolCall:
    name = raw.get("name")
    call_id = raw.get("id") or ""
    args = raw.get("args") or {}
    if name not in allowed:
        raise ToolCallError(f"Unknown tool: {name}")
    try:
        if name == GENERATE_IMAGE:
            return GenerateImageCall(id=call_id, args=GenerateImageArgs.model_validate(args))
        return AnalyzeImageCall(id=call_id, args=AnalyzeImageArgs.model_validate(args))
    except ValidationError as exc:
        raise ToolCallError(f"Invalid arguments for {name}: {exc.error_count()} error(s)") from exc


@dataclass(frozen=True)
class RunContext:
    """Ephemeral state of one agent run."""

    current_image: str | None
    # Never updated; optional identity reference for generate_image.
    original_image: str | None = None
    generated_images: tuple[str, ...] = ()
    # How many generated images have already been emitted as events.
    emitted: int = 0
    turn: int = 0

    def with_generated(self, image: str) -> "RunContext":
        return replace(
            self,
            current_image=image,
            generated_images=self.generated_images + (image,),
        )

    def unemitted(self) -> tuple[str, ...]:
        return self.generated_images[self.emitted :]

    def mark_emitted(self) -> "RunContext":
        return replace(self, emitted=len(self.generated_images))


@dataclass(frozen=True)
class ToolOutcome:
    tool_message: ToolMessage
    # Messages that must follow all tool results of the turn (e.g. image input).
    followups: tuple[BaseMessage, ...] = ()
    image: str | None = None
    success: bool = True
    # The two-image reference edit failed and a single-image edit was used.
    fell_back: bool = False


def input_images(context: RunContext, call: ToolCall) -> list[str] | None:
    """Images the call will send to the image service."""
    if not isinstance(call, GenerateImageCall) or not context.current_image:
        return None
    if _uses_reference(context, call.args):
        return [context.current_image, context.original_image]
    return [context.current_image]


async def execute_tool(
    context: RunContext,
    call: ToolCall,
    synthesizer: ImageSynthesizer,
) -> tuple[ToolOutcome, RunContext]:
    if isinstance(call, GenerateImageCall):
        return await generate_image(context, call, synthesizer)
    if isinstance(call, AnalyzeImageCall):
        return analyze_image(context, call)
    assert_never(call)


async def generate_image(
    context: RunContext,
    call: GenerateImageCall,
    synthesizer: ImageSynthesizer,
) -> tuple[ToolOutcome, RunContext]:
    args = call.args
    base = context.current_image
    if not base:
        return _failure(call.id, "There is no current image to edit."), context

    image: str | None = None
    fell_back = False
    if _uses_reference(context, args):
        image = await _safe_edit(
            synthesizer,
            [base, context.original_image],
            labelled_reference_prompt(args.edit_prompt),
            args.aspect_ratio,
        )
        if image is None:
            fell_back = True
            logger.warning("reference edit failed, falling back to the current image only")
    if image is None:
        image = await _safe_edit(synthesizer, [base], args.edit_prompt, args.aspect_ratio)

    if image is None:
        outcome = _failure(call.id, "Image generation failed. Try a different prompt.")
        return replace(outcome, fell_back=fell_back), context

    outcome = ToolOutcome(
        tool_message=_result_message(
            call.id, True, "Image generated successfully and shown to the user."
        ),
        image=image,
        fell_back=fell_back,
    )
    return outcome, context.with_generated(image)


def analyze_image(context: RunContext, call: AnalyzeImageCall) -> tuple[ToolOutcome, RunContext]:
    if not context.current_image:
        return _failure(call.id, "There is no current image to analyze."), context

    question = call.args.question
    focus = (
        f"Analyze the attached image, focusing on: {question}"
        if question
        else "Analyze the attached image in detail for photo editing purposes."
    )
    outcome = ToolOutcome(
        tool_message=ToolMessage(
            content="The current image is attached in the next message.",
            tool_call_id=call.id,
        ),
        followups=(build_human_message(focus, [context.current_image]),),
    )
    return outcome, context


def rejected_call_message(raw: dict[str, Any], reason: str) -> ToolMessage:
    """Tool result for a call the loop refused to execute."""
    return ToolMessage(
        content=json.dumps({"success": False, "message": reason}),
        tool_call_id=raw.get("id") or "",
        status="error",
    )


def _uses_reference(context: RunContext, args: GenerateImageArgs) -> bool:
    return bool(
        args.use_original_as_reference
        and context.original_image
        and context.original_image != context.current_image
    )


async def _safe_edit(
    synthesizer: ImageSynthesizer,
    images: list[str],
    instruction: str,
    aspect_ratio: str | None,
) -> str | None:
    try:
        return await synthesizer.edit(images, instruction, aspect_ratio)
    except Exception as exc:
        logger.error(f"image service error ({len(images)} image(s)): {exc}")
        return None


def _result_message(call_id: str, success: bool, message: str) -> ToolMessage:
    return ToolMessage(
        content=json.dumps({"success": success, "message": message}),
        tool_call_id=call_id,
        status="success" if success else "error",
    )


def _failure(call_id: str, message: str) -> ToolOutcome:
    return ToolOutcome(tool_message=_result_message(call_id, False, message), success=False)

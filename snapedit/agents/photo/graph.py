from __future__ import annotations

from dataclasses import replace
from typing import Any, AsyncIterator, Literal

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, SystemMessage
from langgraph.graph import END, START, StateGraph
from langgraph.types import StreamWriter

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
from snapedit.agents.photo.prompts import (
    ANALYSIS_PROMPT_INITIAL,
    ANALYSIS_PROMPT_POST_EDIT,
    SYSTEM_PROMPT,
)
from snapedit.agents.photo.state import MODE_PROFILES, AgentMode, PhotoAgentState
from snapedit.agents.photo.tools import (
    RunContext,
    ToolCallError,
    execute_tool,
    input_images,
    parse_tool_call,
    rejected_call_message,
    tool_schemas,
)
from snapedit.agents.photo.vision import build_human_message
from snapedit.imaging.synthesis import ImageSynthesizer
from snapedit.logging import get_logger

logger = get_logger("agent")

FALLBACK_STATUS = "Reference edit failed, edited the current image only"


def build_photo_graph(llm: BaseChatModel, synthesizer: ImageSynthesizer, mode: AgentMode):
    """Tool loop with an explicit turn budget.

    agent (stream one model turn) -> tools -> agent ... -> finish (flush + done)
    Nodes push ``AgentEvent`` objects through the custom stream writer.
    """

    profile = MODE_PROFILES[mode]
    allowed = frozenset(profile.tools)
    model = llm.bind_tools(tool_schemas(profile.tools)) if profile.tools else llm

    async def agent_node(state: PhotoAgentState, writer: StreamWriter) -> dict:
        context = replace(state["context"], turn=state["context"].turn + 1)
        if context.turn > 1:
            writer(NewTurnEvent())

        final = None
        async for chunk in model.astream(state["messages"]):
            text = _chunk_text(chunk.content)
            if text:
                writer(ContentEvent(text=text))
            final = chunk if final is None else final + chunk

        message = final if final is not None else AIMessage(content="")
        pending = list(getattr(message, "tool_calls", None) or [])
        return {"messages": [message], "context": context, "pending": pending}

    async def tools_node(state: PhotoAgentState, writer: StreamWriter) -> dict:
        context = state["context"]
        results: list[BaseMessage] = []
        # Image inputs go in user turns, after every tool result of this turn.
        followups: list[BaseMessage] = []

        for raw in state["pending"]:
            try:
                call = parse_tool_call(raw, allowed)
            except ToolCallError as exc:
                logger.warning(f"rejected tool call in {mode.value} mode: {exc}")
                results.append(rejected_call_message(raw, str(exc)))
                continue

            writer(StatusEvent(text=call.status_text))
            writer(
                ToolCallEvent(
                    tool=call.name,
                    input=raw.get("args") or {},
                    images=input_images(context, call),
                )
            )
            outcome, context = await execute_tool(context, call, synthesizer)
            if outcome.fell_back:
                writer(StatusEvent(text=FALLBACK_STATUS))
            if outcome.image:
                writer(ImageEvent(image=outcome.image))
                context = context.mark_emitted()
            results.append(outcome.tool_message)
            followups.extend(outcome.followups)

        return {"messages": results + followups, "context": context, "pending": []}

    def finish_node(state: PhotoAgentState, writer: StreamWriter) -> dict:
        context = state["context"]
        for image in context.unemitted():
            writer(ImageEvent(image=image))
        writer(DoneEvent())
        return {"context": context.mark_emitted()}

    def after_agent(state: PhotoAgentState) -> Literal["tools", "finish"]:
        return "tools" if state["pending"] else "finish"

    def after_tools(state: PhotoAgentState) -> Literal["agent", "finish"]:
        if state["context"].turn >= profile.max_turns:
            logger.info(f"turn budget of {profile.max_turns} reached in {mode.value} mode")
            return "finish"
        return "agent"

    graph = StateGraph(PhotoAgentState)

    graph.add_node("agent", agent_node)
    graph.add_node("tools", tools_node)
    graph.add_node("finish", finish_node)

    graph.add_edge(START, "agent")
    graph.add_conditional_edges("agent", after_agent, {"tools": "tools", "finish": "finish"})
    graph.add_conditional_edges("tools", after_tools, {"agent": "agent", "finish": "finish"})
    graph.add_edge("finish", END)

    return graph.compile()


def effective_prompt(
    mode: AgentMode,
    prompt: str,
    analysis_context: Literal["initial", "post-edit"] = "initial",
) -> str:
    if mode is AgentMode.ANALYSIS:
        return ANALYSIS_PROMPT_POST_EDIT if analysis_context == "post-edit" else ANALYSIS_PROMPT_INITIAL
    return prompt


async def run_photo_agent(
    llm: BaseChatModel,
    synthesizer: ImageSynthesizer,
    *,
    prompt: str,
    image: str | None,
    original_image: str | None = None,
    mode: AgentMode = AgentMode.CHAT,
    analysis_context: Literal["initial", "post-edit"] = "initial",
    request_id: str = "-",
) -> AsyncIterator[AgentEvent]:
    """Run one agent request and yield its events.

    The stream always ends with exactly one ``done`` or ``error`` event.
    Cancellation propagates to the caller.
    """
    profile = MODE_PROFILES[mode]
    graph = build_photo_graph(llm, synthesizer, mode)
    state: PhotoAgentState = {
        "messages": [
            SystemMessage(content=SYSTEM_PROMPT),
            build_human_message(effective_prompt(mode, prompt, analysis_context), []),
        ],
        "context": RunContext(current_image=image, original_image=original_image),
        "pending": [],
    }
    # Two supersteps per turn plus finish.
    config: dict[str, Any] = {"recursion_limit": 2 * profile.max_turns + 2}

    try:
        async for event in graph.astream(state, config=config, stream_mode="custom"):
            yield event
    except Exception as e:
        logger.error(f"[{request_id}] agent run failed: {e}")
        yield ErrorEvent(message=str(e) or type(e).__name__)


def _chunk_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part.get("text", "")
            for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        )
    return ""

import operator
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any
from typing_extensions import TypedDict
from langchain_core.messages import BaseMessage

from snapedit.agents.photo.tools import ANALYZE_IMAGE, GENERATE_IMAGE, RunContext

class AgentMode(str, Enum):
    # Short remark after a tip was applied; no tools.
    REACTION = "reaction"
    ANALYSIS = "analysis"
    CHAT = "chat"

@dataclass(frozen=True)
class ModeProfile:
    tools: tuple[str, ...]
    max_turns: int

MODE_PROFILES: dict[AgentMode, ModeProfile] = {
    AgentMode.REACTION: ModeProfile(tools=(), max_turns=1),
    AgentMode.ANALYSIS: ModeProfile(tools=(ANALYZE_IMAGE,), max_turns=2),
    AgentMode.CHAT: ModeProfile(tools=(GENERATE_IMAGE, ANALYZE_IMAGE), max_turns=5),
}

class PhotoAgentState(TypedDict):
    messages: Annotated[list[BaseMessage], operator.add]
    context: RunContext
    # Raw tool calls of the latest model turn, in model order.
    pending: list[dict[str, Any]]

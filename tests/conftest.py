import os

os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("GOOGLE_API_KEY", "test-google-key")
os.environ.setdefault("CORS_ORIGINS", "http://localhost:3000")

import asyncio
import base64
import json
from typing import Any, Sequence

import pytest
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessageChunk

from snapedit.agents.photo.events import DoneEvent
from snapedit.agents.photo.state import AgentMode
from snapedit.api.deps import get_services
from snapedit.domain import Tip, TipCategory
from snapedit.main import app
from snapedit.services import Services
from snapedit.sessions import SessionStore
from snapedit.tips.generator import TipGenerator

ORIGINAL = "data:image/jpeg;base64," + base64.b64encode(b"\xff\xd8\xff original").decode()


def image_url(name: str) -> str:
    return "data:image/png;base64," + base64.b64encode(name.encode()).decode()


def text_turn(*parts: str) -> list[AIMessageChunk]:
    return [AIMessageChunk(content=p) for p in parts]


def tool_turn(*calls: tuple[str, dict], text: str = "", first_id: int = 1) -> list[AIMessageChunk]:
    chunks = text_turn(text) if text else []
    chunks.append(
        AIMessageChunk(
            content="",
            tool_call_chunks=[
                {
                    "name": name,
                    "args": json.dumps(args),
                    "id": f"call_{first_id + i}",
                    "index": i,
                }
                for i, (name, args) in enumerate(calls)
            ],
        )
    )
    return chunks


def tip_json(label: str, category: str, edit_prompt: str | None = None) -> str:
    return json.dumps(
        {
            "emoji": "*",
            "label": label,
            "desc": f"{label} desc",
            "editPrompt": edit_prompt or f"Apply {label}",
            "category": category,
        }
    )


class ScriptedChatModel:
    """Chat model double: each ``astream`` call plays the next scripted turn."""

    def __init__(self, turns: Sequence[Any] = ()):
        self.turns = list(turns)
        self.calls: list[list] = []
        self.bound_tools: list[dict] | None = None

    def bind_tools(self, tools, **kwargs):
        self.bound_tools = list(tools)
        return self

    async def astream(self, messages, **kwargs):
        self.calls.append(list(messages))
        if not self.turns:
            raise AssertionError("model called more often than scripted")
        turn = self.turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        for chunk in turn:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


class FakeSynthesizer:
    """Image service double; scripted results are images, None or exceptions."""

    def __init__(self, results: Sequence[Any] = ()):
        self.results = list(results)
        self.calls: list[tuple[list[str], str, str | None]] = []

    async def edit(self, images, instruction, aspect_ratio=None):
        self.calls.append((list(images), instruction, aspect_ratio))
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return image_url(f"edit-{len(self.calls)}")


def parse_sse(lines) -> list[tuple[str, dict]]:
    events = []
    current_event = None
    for line in lines:
        if isinstance(line, bytes):
            line = line.decode("utf-8")
        if line.startswith("event:"):
            current_event = line.split(":", 1)[1].strip()
        elif line.startswith("data:"):
            data = json.loads(line.split(":", 1)[1].strip())
            if current_event:
                events.append((current_event, data))
                current_event = None
    return events


def build_test_services(
    agent_llm: ScriptedChatModel | None = None,
    chat_llm: ScriptedChatModel | None = None,
    tips_llm: ScriptedChatModel | None = None,
    synthesizer: FakeSynthesizer | None = None,
) -> Services:
    return Services(
        agent_llm=agent_llm or ScriptedChatModel(),
        chat_llm=chat_llm or ScriptedChatModel(),
        synthesizer=synthesizer or FakeSynthesizer(),
        tip_generator=TipGenerator(tips_llm or ScriptedChatModel()),
        sessions=SessionStore(ttl_seconds=1800),
    )


@pytest.fixture
def services():
    return build_test_services()


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


class FakeBackend:
    """Editor backend double.

    ``agent_runs`` maps a mode to scripted runs; ``tips`` maps a category to
    scripted attempts (the last one repeats); ``previews`` maps an edit prompt
    to scripted results. Items that are exceptions are raised, and an
    ``asyncio.Event`` item blocks the stream until set.
    """

    def __init__(self, agent_runs=None, tips=None, previews=None):
        self.agent_runs = {mode: list(runs) for mode, runs in (agent_runs or {}).items()}
        self.tips = {category: list(attempts) for category, attempts in (tips or {}).items()}
        self.previews = {prompt: list(results) for prompt, results in (previews or {}).items()}
        self.agent_calls: list[dict] = []
        self.tip_calls: list[tuple[str, TipCategory]] = []
        self.preview_calls: list[tuple[str, str]] = []
        self.preview_gate: asyncio.Event | None = None

    async def run_agent(
        self,
        *,
        prompt,
        image,
        original_image=None,
        mode=AgentMode.CHAT,
        analysis_context="initial",
    ):
        self.agent_calls.append(
            {
                "prompt": prompt,
                "image": image,
                "original_image": original_image,
                "mode": mode,
                "analysis_context": analysis_context,
            }
        )
        runs = self.agent_runs.get(mode)
        script = runs.pop(0) if runs else [DoneEvent()]
        for item in script:
            if isinstance(item, asyncio.Event):
                await item.wait()
            elif isinstance(item, Exception):
                raise item
            else:
                yield item

    async def stream_tips(self, image, category, metadata=None):
        self.tip_calls.append((image, category))
        attempts = self.tips.get(category) or [[]]
        attempt = attempts.pop(0) if len(attempts) > 1 else attempts[0]
        for item in attempt:
            if isinstance(item, asyncio.Event):
                await item.wait()
            elif isinstance(item, Exception):
                raise item
            else:
                yield item

    async def render_preview(self, image, edit_prompt, aspect_ratio=None):
        self.preview_calls.append((image, edit_prompt))
        if self.preview_gate is not None:
            await self.preview_gate.wait()
        results = self.previews.get(edit_prompt)
        if results:
            result = results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return image_url(f"preview:{edit_prompt}")


def make_tip(label: str, category: TipCategory = TipCategory.ENHANCE, **kwargs) -> Tip:
    return Tip(label=label, edit_prompt=f"Apply {label}", category=category, **kwargs)


async def no_sleep(seconds: float) -> None:
    await asyncio.sleep(0)

"""Wiring of the model clients and in-memory state used by the routes."""

from dataclasses import dataclass

from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI

from snapedit.config import Settings
from snapedit.imaging.synthesis import GeminiImageSynthesizer, ImageSynthesizer
from snapedit.sessions import SessionStore
from snapedit.tips.generator import TipGenerator


@dataclass
class Services:
    """Holds application-wide dependencies."""

    agent_llm: BaseChatModel
    chat_llm: BaseChatModel
    synthesizer: ImageSynthesizer
    tip_generator: TipGenerator
    sessions: SessionStore


def build_services(settings: Settings) -> Services:
    return Services(
        agent_llm=ChatOpenAI(model=settings.AGENT_MODEL, streaming=True),
        chat_llm=ChatOpenAI(model=settings.CHAT_MODEL, streaming=True),
        synthesizer=GeminiImageSynthesizer.create(settings.GOOGLE_API_KEY, settings.IMAGE_MODEL),
        tip_generator=TipGenerator(ChatOpenAI(model=settings.TIPS_MODEL, streaming=True)),
        sessions=SessionStore(ttl_seconds=settings.SESSION_TTL_SECONDS),
    )

import os
from dataclasses import dataclass
from typing import List
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    AGENT_MODEL: str
    TIPS_MODEL: str
    CHAT_MODEL: str
    IMAGE_MODEL: str
    GOOGLE_API_KEY: str
    CORS_ORIGINS: List[str]
    # Chat sessions idle longer than this are evicted by the sweeper.
    SESSION_TTL_SECONDS: int
    SESSION_SWEEP_SECONDS: int
    LOG_LEVEL: str

def _required(name: str) -> str:
    v = os.getenv(name)
    if not v:
        raise ValueError(f"{name} required")
    return v

def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer")

def _load_settings() -> Settings:
    # ChatOpenAI reads the key from the environment itself.
    if not os.getenv("OPENAI_API_KEY"):
        raise ValueError("OPENAI_API_KEY required")

    cors_origins_str = _required("CORS_ORIGINS")
    cors_origins = [o.strip() for o in cors_origins_str.split(",") if o.strip()]

    return Settings(
        AGENT_MODEL=os.getenv("AGENT_MODEL", "gpt-4o"),
        TIPS_MODEL=os.getenv("TIPS_MODEL", "gpt-4o-mini"),
        CHAT_MODEL=os.getenv("CHAT_MODEL", "gpt-4o"),
        IMAGE_MODEL=os.getenv("IMAGE_MODEL", "gemini-3-pro-image-preview"),
        GOOGLE_API_KEY=_required("GOOGLE_API_KEY"),
        CORS_ORIGINS=cors_origins,
        SESSION_TTL_SECONDS=_int("SESSION_TTL_SECONDS", 30 * 60),
        SESSION_SWEEP_SECONDS=_int("SESSION_SWEEP_SECONDS", 5 * 60),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )

settings = _load_settings()

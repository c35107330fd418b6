import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from snapedit.api.agent import router as agent_router
from snapedit.api.chat import router as chat_router
from snapedit.api.preview import router as preview_router
from snapedit.api.tips import router as tips_router
from snapedit.config import settings
from snapedit.logging import configure_logging
from snapedit.services import build_services


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    app.state.services = build_services(settings)
    sweeper = asyncio.create_task(
        app.state.services.sessions.run_eviction(settings.SESSION_SWEEP_SECONDS)
    )
    yield
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass


app = FastAPI(title="Snapedit", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["Content-Type"],
)

app.include_router(agent_router)
app.include_router(tips_router)
app.include_router(preview_router)
app.include_router(chat_router)


@app.get("/health")
def health():
    return {"status": "ok"}

import asyncio
import time
import uuid
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from snapedit.agents.photo.graph import run_photo_agent
from snapedit.api.deps import get_services
from snapedit.api.models import SSE_HEADERS, AgentRequest, sse_event
from snapedit.logging import get_logger
from snapedit.services import Services

router = APIRouter()
logger = get_logger("api.agent")


async def stream_agent(
    request: AgentRequest,
    services: Services,
    request_id: str,
) -> AsyncGenerator[str, None]:
    start_time = time.time()
    counts: dict[str, int] = {}
    try:
        async for event in run_photo_agent(
            services.agent_llm,
            services.synthesizer,
            prompt=request.prompt,
            image=request.image,
            original_image=request.original_image,
            mode=request.mode,
            analysis_context=request.analysis_context,
            request_id=request_id,
        ):
            counts[event.type] = counts.get(event.type, 0) + 1
            yield sse_event(event.type, event.to_wire())
    except asyncio.CancelledError:
        logger.info(f"[{request_id}] client disconnected")
        raise

    elapsed = time.time() - start_time
    logger.info(
        f"[{request_id}] complete | mode={request.mode.value} | elapsed={elapsed:.2f}s | "
        f"content={counts.get('content', 0)} images={counts.get('image', 0)}"
    )


@router.post("/agent")
async def agent(request: AgentRequest, services: Services = Depends(get_services)):
    if not request.image:
        raise HTTPException(status_code=400, detail="image is required")

    request_id = str(uuid.uuid4())[:8]
    logger.info(
        f"[{request_id}] request | mode={request.mode.value} | "
        f"project_id={request.project_id} | "
        f"original_image={'yes' if request.original_image else 'no'}"
    )
    return StreamingResponse(
        stream_agent(request, services, request_id),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )

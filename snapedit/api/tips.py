import asyncio
import uuid
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from snapedit.api.deps import get_services
from snapedit.api.models import SSE_HEADERS, TipsRequest, sse_event
from snapedit.logging import get_logger
from snapedit.services import Services

router = APIRouter()
logger = get_logger("api.tips")


async def stream_tips(
    request: TipsRequest,
    services: Services,
    request_id: str,
) -> AsyncGenerator[str, None]:
    count = 0
    try:
        async for tip in services.tip_generator.stream(
            request.image, request.category, request.metadata
        ):
            count += 1
            yield sse_event("tip", tip.to_wire())
    except asyncio.CancelledError:
        logger.info(f"[{request_id}] client disconnected")
        raise
    except Exception as e:
        logger.error(f"[{request_id}] tips error: {e}")
        yield sse_event("error", {"type": "error", "message": str(e) or "tip generation failed"})
        return

    logger.info(f"[{request_id}] {request.category.value} complete | tips={count}")
    yield sse_event("done", {"type": "done"})


@router.post("/tips")
async def tips(request: TipsRequest, services: Services = Depends(get_services)):
    if not request.image:
        raise HTTPException(status_code=400, detail="image is required")

    request_id = str(uuid.uuid4())[:8]
    return StreamingResponse(
        stream_tips(request, services, request_id),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )

import asyncio
import time
import uuid
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from snapedit.agents.photo.events import ContentEvent, DoneEvent, ErrorEvent, ImageEvent
from snapedit.agents.photo.prompts import CHAT_SYSTEM_PROMPT
from snapedit.agents.photo.vision import build_human_message
from snapedit.api.deps import get_services
from snapedit.api.models import SSE_HEADERS, ChatRequest, sse_event
from snapedit.logging import get_logger
from snapedit.services import Services

router = APIRouter()
logger = get_logger("api.chat")


async def stream_chat(
    request: ChatRequest,
    services: Services,
    request_id: str,
) -> AsyncGenerator[str, None]:
    start_time = time.time()
    session = services.sessions.get_or_create(request.session_id)
    images = [request.image] if request.image else []
    messages = (
        [SystemMessage(content=CHAT_SYSTEM_PROMPT)]
        + session.messages
        + [build_human_message(request.message, images)]
    )
    full_content_parts: list[str] = []

    try:
        async for chunk in services.chat_llm.astream(messages):
            content = chunk.content if isinstance(chunk.content, str) else ""
            if content:
                full_content_parts.append(content)
                event = ContentEvent(text=content)
                yield sse_event(event.type, event.to_wire())

        if request.want_image and request.image:
            edited = await services.synthesizer.edit(
                [request.image], request.message, request.aspect_ratio
            )
            if edited:
                event = ImageEvent(image=edited)
                yield sse_event(event.type, event.to_wire())
            else:
                logger.warning(f"[{request_id}] image requested but none returned")
    except asyncio.CancelledError:
        logger.info(f"[{request_id}] client disconnected")
        raise
    except Exception as e:
        logger.error(f"[{request_id}] error: {e}")
        event = ErrorEvent(message="Failed to process chat request")
        yield sse_event(event.type, event.to_wire())
        return

    # Images are not kept in the history; only the text of each exchange.
    session.messages.append(HumanMessage(content=request.message))
    session.messages.append(AIMessage(content="".join(full_content_parts)))

    elapsed = time.time() - start_time
    logger.info(
        f"[{request_id}] complete | elapsed={elapsed:.2f}s | history={len(session.messages)}"
    )
    event = DoneEvent()
    yield sse_event(event.type, event.to_wire())


@router.post("/chat")
async def chat(request: ChatRequest, services: Services = Depends(get_services)):
    if not request.session_id or not request.message:
        raise HTTPException(status_code=400, detail="sessionId and message are required")

    if request.reset:
        services.sessions.reset(request.session_id)

    request_id = str(uuid.uuid4())[:8]
    logger.info(
        f"[{request_id}] request | session_id={request.session_id} | "
        f"image={'yes' if request.image else 'no'} | want_image={request.want_image}"
    )
    return StreamingResponse(
        stream_chat(request, services, request_id),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )

import uuid

from fastapi import APIRouter, Depends, HTTPException

from snapedit.api.deps import get_services
from snapedit.api.models import PreviewRequest, PreviewResponse
from snapedit.logging import get_logger
from snapedit.services import Services

router = APIRouter()
logger = get_logger("api.preview")


@router.post("/preview", response_model=PreviewResponse)
async def preview(request: PreviewRequest, services: Services = Depends(get_services)):
    if not request.image or not request.edit_prompt:
        raise HTTPException(status_code=400, detail="image and editPrompt are required")

    request_id = str(uuid.uuid4())[:8]
    try:
        image = await services.synthesizer.edit(
            [request.image], request.edit_prompt, request.aspect_ratio
        )
    except Exception as e:
        logger.error(f"[{request_id}] preview error: {e}")
        raise HTTPException(status_code=502, detail="Failed to generate preview")

    if not image:
        logger.warning(f"[{request_id}] image service returned no preview")
        raise HTTPException(status_code=502, detail="Failed to generate preview")
    return PreviewResponse(image=image)

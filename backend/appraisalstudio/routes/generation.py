"""Generation Routes

Endpoints:
- POST /api/generate - Generate listing copy (counts against the plan's quota)
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
import logging

from appraisalstudio.errors import AppraisalStudioError
from appraisalstudio.models.generations import GenerateRequest, GenerateResponse
from appraisalstudio.routes.deps import get_services, http_error, store_unavailable
from appraisalstudio.services import GenerationStatus, Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Generation"])


@router.post("/generate", response_model=GenerateResponse)
async def generate_content(request: GenerateRequest, services: Services = Depends(get_services)):
    """Generate content for one property.

    Quota exhausted is answered with 402 and needs_upgrade=true; nothing is
    generated or recorded in that case.
    """
    try:
        result = await services.pipeline.run(
            account_id=request.account_id,
            property_data=request.property_data,
            content_type=request.content_type,
        )
    except AppraisalStudioError as e:
        logger.error(f"Generation failed for account {request.account_id}: {e.message}")
        raise http_error(e)
    except PyMongoError as e:
        raise store_unavailable(e)
    except Exception as e:
        logger.exception(f"Unexpected generation error for account {request.account_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to generate content")

    if result.status == GenerationStatus.LIMIT_REACHED:
        body = GenerateResponse(
            success=False,
            remaining=result.remaining,
            needs_upgrade=True,
            error="Usage limit reached. Please upgrade your plan to continue generating content.",
        )
        return JSONResponse(status_code=402, content=body.model_dump())

    return GenerateResponse(
        success=True,
        content=result.content,
        generation_id=result.generation_id,
        remaining=result.remaining,
    )

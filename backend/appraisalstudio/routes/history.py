"""Content History Routes

Endpoints:
- GET /api/content-history - Paged history with type filter and search
- DELETE /api/content-history - Delete one generation (owner only)
- GET /api/recent-properties - Distinct recent properties for form prefill
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from pymongo.errors import PyMongoError
import logging

from appraisalstudio.errors import AppraisalStudioError
from appraisalstudio.models.generations import DeleteGenerationRequest, HistoryPage
from appraisalstudio.routes.deps import get_services, http_error, store_unavailable
from appraisalstudio.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Content History"])


@router.get("/content-history", response_model=HistoryPage)
async def get_content_history(
    account_id: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    content_type: Optional[str] = None,
    search: Optional[str] = None,
    services: Services = Depends(get_services),
):
    try:
        return await services.history.list_history(
            account_id=account_id,
            limit=limit,
            offset=offset,
            content_type=content_type,
            search_term=search,
        )
    except AppraisalStudioError as e:
        raise http_error(e)
    except PyMongoError as e:
        raise store_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to fetch content history: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch content history")


@router.delete("/content-history")
async def delete_content_history(
    request: DeleteGenerationRequest,
    services: Services = Depends(get_services),
):
    try:
        await services.history.delete_generation(request.id, request.account_id)
    except AppraisalStudioError as e:
        raise http_error(e)
    except PyMongoError as e:
        raise store_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to delete content {request.id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete content")
    return {"success": True, "message": "Content deleted successfully"}


@router.get("/recent-properties")
async def get_recent_properties(
    account_id: str = Query(..., min_length=1),
    limit: int = Query(10, ge=1, le=50),
    services: Services = Depends(get_services),
):
    try:
        properties = await services.history.recent_properties(account_id, limit=limit)
    except AppraisalStudioError as e:
        raise http_error(e)
    except PyMongoError as e:
        raise store_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to fetch recent properties: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch recent properties")
    return {"recent_properties": properties, "total": len(properties)}

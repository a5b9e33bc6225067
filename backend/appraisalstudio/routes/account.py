"""Account Routes

Endpoints:
- GET /api/user/account - Plan, usage and billing summary
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo.errors import PyMongoError
import logging

from appraisalstudio.errors import AppraisalStudioError
from appraisalstudio.models.billing import AccountSummary
from appraisalstudio.routes.deps import get_services, http_error, store_unavailable
from appraisalstudio.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["Account"])


@router.get("/account", response_model=AccountSummary)
async def get_account(
    account_id: str = Query(..., min_length=1),
    services: Services = Depends(get_services),
):
    """Account summary. A first-time account is created on the free plan."""
    try:
        return await services.accounts.project_account(account_id)
    except AppraisalStudioError as e:
        raise http_error(e)
    except PyMongoError as e:
        raise store_unavailable(e)
    except Exception as e:
        logger.error(f"Error fetching account data for {account_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch account data")

"""Stripe Billing Routes

Endpoints:
- POST /api/stripe/create-checkout-session - Start a subscription checkout
- POST /api/stripe/customer-portal - Open the Stripe billing portal
"""

from fastapi import APIRouter, Depends, HTTPException
from pymongo.errors import PyMongoError
import logging

from appraisalstudio.errors import AppraisalStudioError
from appraisalstudio.models.billing import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    PortalSessionRequest,
    PortalSessionResponse,
)
from appraisalstudio.routes.deps import get_services, http_error, store_unavailable
from appraisalstudio.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["Billing"])


@router.post("/create-checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    request: CheckoutSessionRequest,
    services: Services = Depends(get_services),
):
    try:
        return await services.billing.create_checkout_session(
            plan_id=request.plan_id,
            account_id=request.account_id,
            account_email=request.account_email,
            return_url=request.return_url,
        )
    except AppraisalStudioError as e:
        raise http_error(e)
    except PyMongoError as e:
        raise store_unavailable(e)
    except Exception as e:
        logger.exception(f"Checkout session error for account {request.account_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to create checkout session")


@router.post("/customer-portal", response_model=PortalSessionResponse)
async def create_customer_portal(
    request: PortalSessionRequest,
    services: Services = Depends(get_services),
):
    try:
        return await services.billing.create_portal_session(
            account_id=request.account_id,
            return_url=request.return_url,
        )
    except AppraisalStudioError as e:
        raise http_error(e)
    except PyMongoError as e:
        raise store_unavailable(e)
    except Exception as e:
        logger.exception(f"Customer portal error for account {request.account_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to create customer portal session")

"""Stripe Webhook Route

Raw body + Stripe-Signature header go straight to the reconciler, which
verifies the signature before parsing. A verified event is acknowledged
with 200: handler failures are recorded on the billing_events row, and
Stripe cannot act on them. Only an unreachable document store yields a
non-2xx, so Stripe redelivers later.
"""

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from typing import Optional
from pymongo.errors import PyMongoError
import logging

from appraisalstudio.routes.deps import get_services, store_unavailable
from appraisalstudio.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["Stripe Webhooks"])


@router.post("/webhook")
async def handle_stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    services: Services = Depends(get_services),
):
    payload = await request.body()

    try:
        verified, message, details = await services.reconciler.process_webhook(payload, stripe_signature)
    except PyMongoError as e:
        # Non-2xx so Stripe redelivers once the store is back
        raise store_unavailable(e)
    if not verified:
        raise HTTPException(status_code=400, detail="Webhook signature verification failed")

    return {"received": True, "message": message, "event_id": (details or {}).get("event_id")}

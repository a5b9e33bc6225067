"""AppraisalStudio Billing Models

- Billing event audit log (webhook deliveries and processor actions)
- Checkout / portal session request + response bodies
- Account summary projection
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, EmailStr, Field

from appraisalstudio.models.plans import RemainingQuota


class BillingEventStatus(str, Enum):
    """Processing status of a billing event record"""
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"  # Applied to the account record
    IGNORED = "IGNORED"      # Logged and dropped (unknown account / price, stale, unhandled type)
    FAILED = "FAILED"        # Handler raised; may be reprocessed on redelivery
    RECORDED = "RECORDED"    # Processor action we initiated (checkout, portal)


class BillingEventRecord(BaseModel):
    """Append-only audit record. event_id is the dedupe key for webhooks."""
    event_id: Optional[str] = None
    type: str  # "webhook_received", "checkout_session_created", "customer_portal_accessed"
    event_type: Optional[str] = None  # Stripe event type for webhooks
    account_id: Optional[str] = None
    customer_ref: Optional[str] = None
    subscription_ref: Optional[str] = None
    session_id: Optional[str] = None
    plan_id: Optional[str] = None
    status: BillingEventStatus = BillingEventStatus.RECORDED
    reason: Optional[str] = None
    error: Optional[str] = None
    event_created_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None  # set when a delivery starts processing
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    processed_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump(mode="python", exclude_none=True)
        doc["status"] = self.status.value
        return doc


class CheckoutSessionRequest(BaseModel):
    plan_id: str
    account_id: str
    account_email: EmailStr
    return_url: Optional[str] = None


class CheckoutSessionResponse(BaseModel):
    checkout_url: str
    session_id: str


class PortalSessionRequest(BaseModel):
    account_id: str
    return_url: Optional[str] = None


class PortalSessionResponse(BaseModel):
    portal_url: str


class AccountSummary(BaseModel):
    """Read-only account view for the dashboard."""
    account_type: str
    plan: str
    subscription_status: str
    usage_limit: int
    usage_count: int
    remaining_credits: RemainingQuota
    total_generations: int
    this_month: int
    has_active_subscription: bool
    has_billing_customer: bool
    billing_customer_ref: Optional[str] = None
    subscription_ref: Optional[str] = None
    billing_period_start: Optional[datetime] = None
    billing_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    cancellation_date: Optional[datetime] = None
    last_payment_succeeded: Optional[datetime] = None
    member_since: Optional[datetime] = None

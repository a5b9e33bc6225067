"""AppraisalStudio Account Record

One document per account in the `users` collection, keyed by account_id.

Field ownership:
- usage_count is written by the usage tracker ($inc only) and reset by the
  subscription reconciler on plan change / billing-period rollover
- plan, usage_limit, subscription_status and every billing_* / period /
  cancellation field are written by the subscription reconciler only
- billing_customer_ref may also be attached by checkout-session creation
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from appraisalstudio.models.plans import FREE_USAGE_LIMIT, Plan, SubscriptionStatus


class UserRecord(BaseModel):
    """Persisted entitlement and billing state for one account."""
    account_id: str
    email: Optional[str] = None

    # Entitlement
    plan: Plan = Plan.FREE
    subscription_status: SubscriptionStatus = SubscriptionStatus.INACTIVE
    usage_count: int = Field(default=0, ge=0)
    usage_limit: int = FREE_USAGE_LIMIT  # -1 = unlimited

    # Stripe references
    billing_customer_ref: Optional[str] = None
    subscription_ref: Optional[str] = None

    # Billing period
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    cancellation_date: Optional[datetime] = None

    # Billing bookkeeping
    last_checkout_session_id: Optional[str] = None
    checkout_completed_at: Optional[datetime] = None
    subscription_created_at: Optional[datetime] = None
    subscription_canceled_at: Optional[datetime] = None
    last_payment_succeeded_at: Optional[datetime] = None
    last_invoice_id: Optional[str] = None
    last_payment_failed_at: Optional[datetime] = None
    last_failed_invoice_id: Optional[str] = None
    payment_failure_count: int = 0
    last_billing_event_at: Optional[datetime] = None

    # Timestamps
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}


def default_user_document(account_id: str, email: Optional[str] = None) -> Dict[str, Any]:
    """Free-tier baseline written on first touch of an account."""
    record = UserRecord(account_id=account_id, email=email)
    doc = record.model_dump(mode="python", exclude_none=True)
    doc["plan"] = record.plan.value
    doc["subscription_status"] = record.subscription_status.value
    return doc

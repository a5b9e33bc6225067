"""AppraisalStudio Plan Registry

Single source of truth for:
- Plan codes and usage limits
- Account type labels
- Stripe price ID <-> plan mapping

Plan Structure:
- free: 5 generations, no subscription
- professional: 100 generations per billing period
- agency: unlimited (usage_limit = -1)

The plan is derived from the subscription's price_id ONLY. An unknown
price_id resolves to None; callers treat that as a configuration error and
must not grant or revoke anything because of it.
"""

from enum import Enum
from typing import Dict, Optional, Union

from pydantic import BaseModel


class Plan(str, Enum):
    """Subscription tiers"""
    FREE = "free"
    PROFESSIONAL = "professional"
    AGENCY = "agency"


class SubscriptionStatus(str, Enum):
    """Local subscription status (independent of Stripe's wider vocabulary)"""
    INACTIVE = "inactive"
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"


UNLIMITED = -1                     # usage_limit value for unlimited plans
UNLIMITED_REMAINING = "unlimited"  # remaining() sentinel
FREE_USAGE_LIMIT = 5

RemainingQuota = Union[int, str]


class PlanDetails(BaseModel):
    """Per-plan quota and account label"""
    plan: Plan
    account_type: str
    usage_limit: int


PLAN_DEFINITIONS: Dict[Plan, PlanDetails] = {
    Plan.FREE: PlanDetails(plan=Plan.FREE, account_type="Free Plan", usage_limit=FREE_USAGE_LIMIT),
    Plan.PROFESSIONAL: PlanDetails(plan=Plan.PROFESSIONAL, account_type="Professional Plan", usage_limit=100),
    Plan.AGENCY: PlanDetails(plan=Plan.AGENCY, account_type="Agency Plan", usage_limit=UNLIMITED),
}

# Stripe subscription statuses -> local status
STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "incomplete": SubscriptionStatus.INACTIVE,
    "paused": SubscriptionStatus.INACTIVE,
}


def map_stripe_status(stripe_status: Optional[str]) -> SubscriptionStatus:
    """Map a Stripe subscription status to the local enum (unknown -> inactive)."""
    return STRIPE_STATUS_MAP.get((stripe_status or "").lower(), SubscriptionStatus.INACTIVE)


class PlanRegistry:
    """Plan lookups plus the Stripe price table for this deployment."""

    def __init__(
        self,
        professional_price_id: Optional[str] = None,
        agency_price_id: Optional[str] = None,
    ):
        self._plan_to_price: Dict[Plan, Optional[str]] = {
            Plan.PROFESSIONAL: professional_price_id,
            Plan.AGENCY: agency_price_id,
        }
        self._price_to_plan: Dict[str, Plan] = {
            price_id: plan for plan, price_id in self._plan_to_price.items() if price_id
        }

    @classmethod
    def from_settings(cls, settings) -> "PlanRegistry":
        return cls(
            professional_price_id=settings.stripe_professional_price_id,
            agency_price_id=settings.stripe_agency_price_id,
        )


    def usage_limit_for(self, plan: Plan) -> int:
        return PLAN_DEFINITIONS[plan].usage_limit

    def account_type_label(self, plan_str: Optional[str]) -> str:
        try:
            return PLAN_DEFINITIONS[Plan(plan_str)].account_type
        except ValueError:
            return PLAN_DEFINITIONS[Plan.FREE].account_type

    def resolve_paid_plan(self, plan_id: Optional[str]) -> Optional[Plan]:
        """Plan for a checkout request; None for free or unknown ids."""
        try:
            plan = Plan((plan_id or "").strip().lower())
        except ValueError:
            return None
        return plan if plan in self._plan_to_price else None

    def get_price_id(self, plan: Plan) -> Optional[str]:
        return self._plan_to_price.get(plan)

    def get_plan_from_price_id(self, price_id: Optional[str]) -> Optional[Plan]:
        """
        Derive plan from a Stripe subscription price_id.
        This is the ONLY valid way to determine plan from Stripe.
        """
        if not price_id:
            return None
        return self._price_to_plan.get(price_id)

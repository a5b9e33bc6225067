"""Entitlement Engine.

Pure decisions over an account record: may this account generate, and how
much quota is left. No I/O. Call it on a freshly read record right before
generating; never cache the answer across the (slow) generation call.

A missing record (None) is the free-tier baseline: plan free, limit 5,
count 0. Materializing that record is the document store's job
(get_or_create_default_user), not this module's.
"""

from typing import Any, Dict, Optional

from appraisalstudio.models.plans import (
    FREE_USAGE_LIMIT,
    Plan,
    RemainingQuota,
    UNLIMITED_REMAINING,
)

DEFAULT_ENTITLEMENT = {
    "plan": Plan.FREE.value,
    "usage_limit": FREE_USAGE_LIMIT,
    "usage_count": 0,
}


def _effective(user: Optional[Dict[str, Any]]):
    user = user or DEFAULT_ENTITLEMENT
    plan = user.get("plan") or Plan.FREE.value
    if isinstance(plan, Plan):
        plan = plan.value
    usage_limit = user.get("usage_limit")
    if usage_limit is None:
        usage_limit = FREE_USAGE_LIMIT
    usage_count = user.get("usage_count") or 0
    return plan, int(usage_limit), int(usage_count)


def can_generate(user: Optional[Dict[str, Any]]) -> bool:
    """True iff plan is agency or usage_count < usage_limit."""
    plan, usage_limit, usage_count = _effective(user)
    if plan == Plan.AGENCY.value:
        return True
    return usage_count < usage_limit


def remaining(user: Optional[Dict[str, Any]]) -> RemainingQuota:
    """'unlimited' for agency, else max(0, usage_limit - usage_count)."""
    plan, usage_limit, usage_count = _effective(user)
    if plan == Plan.AGENCY.value:
        return UNLIMITED_REMAINING
    return max(0, usage_limit - usage_count)

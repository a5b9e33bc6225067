"""Account Projection

Read model for the account dashboard: the stored account record plus
generation counts (this calendar month, all time). A count that cannot be
read degrades to the stored usage_count instead of failing the request.
"""

from datetime import datetime, timezone
from typing import Optional, Tuple
import logging

from pymongo.errors import PyMongoError

from appraisalstudio.errors import ValidationFailed
from appraisalstudio.models.billing import AccountSummary
from appraisalstudio.models.plans import FREE_USAGE_LIMIT, PlanRegistry, SubscriptionStatus
from appraisalstudio.services import entitlement
from appraisalstudio.services.document_store import DocumentStore

logger = logging.getLogger(__name__)


def month_bounds(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """[first instant of this UTC month, first instant of next month)"""
    now = now or datetime.now(timezone.utc)
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return start, end


class AccountService:
    def __init__(self, store: DocumentStore, plan_registry: PlanRegistry):
        self.store = store
        self.plan_registry = plan_registry

    async def _count_or_fallback(self, query, fallback: int, label: str) -> int:
        try:
            return await self.store.count_generations(query)
        except PyMongoError as e:
            logger.error(f"Error counting {label} generations: {e}")
            return fallback

    async def project_account(self, account_id: str, now: Optional[datetime] = None) -> AccountSummary:
        """Side effect: a first-time account is materialized with free-tier defaults."""
        if not account_id:
            raise ValidationFailed("User ID is required")

        user, created = await self.store.get_or_create_default_user(account_id)
        plan = user.get("plan") or "free"
        usage_count = user.get("usage_count") or 0
        usage_limit = user.get("usage_limit")
        if usage_limit is None:
            usage_limit = FREE_USAGE_LIMIT

        if created:
            total_generations = this_month = 0
        else:
            start, end = month_bounds(now)
            this_month = await self._count_or_fallback(
                {"account_id": account_id, "timestamp": {"$gte": start, "$lt": end}},
                usage_count, "monthly",
            )
            total_generations = await self._count_or_fallback(
                {"account_id": account_id}, usage_count, "total",
            )

        status = user.get("subscription_status") or SubscriptionStatus.INACTIVE.value
        return AccountSummary(
            account_type=self.plan_registry.account_type_label(plan),
            plan=plan,
            subscription_status=status,
            usage_limit=usage_limit,
            usage_count=usage_count,
            remaining_credits=entitlement.remaining(user),
            total_generations=total_generations,
            this_month=this_month,
            has_active_subscription=status == SubscriptionStatus.ACTIVE.value,
            has_billing_customer=bool(user.get("billing_customer_ref")),
            billing_customer_ref=user.get("billing_customer_ref"),
            subscription_ref=user.get("subscription_ref"),
            billing_period_start=user.get("current_period_start"),
            billing_period_end=user.get("current_period_end"),
            cancel_at_period_end=bool(user.get("cancel_at_period_end")),
            cancellation_date=user.get("cancellation_date"),
            last_payment_succeeded=user.get("last_payment_succeeded_at"),
            member_since=user.get("created_at"),
        )

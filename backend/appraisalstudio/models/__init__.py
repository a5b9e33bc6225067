"""AppraisalStudio Data Models"""

from .plans import (
    Plan,
    PlanDetails,
    PlanRegistry,
    SubscriptionStatus,
    FREE_USAGE_LIMIT,
    UNLIMITED,
    UNLIMITED_REMAINING,
    map_stripe_status,
)
from .user import UserRecord, default_user_document
from .generations import (
    ContentType,
    PropertyFields,
    GenerationRecord,
    GenerationSummary,
    HistoryPage,
    RecentProperty,
)
from .billing import (
    AccountSummary,
    BillingEventRecord,
    BillingEventStatus,
    CheckoutSessionResponse,
    PortalSessionResponse,
)

__all__ = [
    # Plans
    "Plan",
    "PlanDetails",
    "PlanRegistry",
    "SubscriptionStatus",
    "FREE_USAGE_LIMIT",
    "UNLIMITED",
    "UNLIMITED_REMAINING",
    "map_stripe_status",
    # Account
    "UserRecord",
    "default_user_document",
    # Generations
    "ContentType",
    "PropertyFields",
    "GenerationRecord",
    "GenerationSummary",
    "HistoryPage",
    "RecentProperty",
    # Billing
    "AccountSummary",
    "BillingEventRecord",
    "BillingEventStatus",
    "CheckoutSessionResponse",
    "PortalSessionResponse",
]

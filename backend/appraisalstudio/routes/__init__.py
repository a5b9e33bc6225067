"""AppraisalStudio Routes"""

from .generation import router as generation_router
from .history import router as history_router
from .account import router as account_router
from .stripe_billing import router as stripe_billing_router
from .webhooks import router as webhooks_router

__all__ = [
    "generation_router",
    "history_router",
    "account_router",
    "stripe_billing_router",
    "webhooks_router",
]

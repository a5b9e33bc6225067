"""AppraisalStudio Services

Every service receives its store and settings explicitly; build_services()
wires one set per process (see server.lifespan) and tests wire their own
around an in-memory store.
"""

from dataclasses import dataclass
from typing import Optional

from appraisalstudio.models.plans import PlanRegistry

from . import entitlement
from .document_store import DocumentStore
from .usage_tracker import UsageTracker, UsageRecordResult
from .content_generator import ContentGenerator
from .generation_pipeline import Generator, GenerationPipeline, GenerationResult, GenerationStatus, PermissionCheck
from .subscription_reconciler import SubscriptionReconciler
from .billing_service import BillingService
from .account_service import AccountService
from .history_service import HistoryService


@dataclass
class Services:
    store: DocumentStore
    usage_tracker: UsageTracker
    pipeline: GenerationPipeline
    reconciler: SubscriptionReconciler
    billing: BillingService
    accounts: AccountService
    history: HistoryService


def build_services(settings, store: DocumentStore, generator: Optional[Generator] = None) -> Services:
    """Wire the service graph. generator defaults to the Gemini-backed ContentGenerator."""
    plan_registry = PlanRegistry.from_settings(settings)
    usage_tracker = UsageTracker(store)
    if generator is None:
        generator = ContentGenerator(settings.llm_api_key, settings.llm_model)

    return Services(
        store=store,
        usage_tracker=usage_tracker,
        pipeline=GenerationPipeline(store, usage_tracker, generator),
        reconciler=SubscriptionReconciler(
            store,
            plan_registry,
            settings.stripe_webhook_secret,
            reject_stale_events=settings.reject_stale_billing_events,
        ),
        billing=BillingService(
            store,
            plan_registry,
            settings.stripe_secret_key,
            frontend_url=settings.frontend_url,
        ),
        accounts=AccountService(store, plan_registry),
        history=HistoryService(store),
    )


__all__ = [
    "entitlement",
    "DocumentStore",
    "UsageTracker",
    "UsageRecordResult",
    "ContentGenerator",
    "GenerationPipeline",
    "GenerationResult",
    "GenerationStatus",
    "PermissionCheck",
    "SubscriptionReconciler",
    "BillingService",
    "AccountService",
    "HistoryService",
    "Services",
    "build_services",
]

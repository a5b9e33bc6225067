"""Subscription Reconciler - Stripe webhook handling with idempotency.

Applies Stripe subscription lifecycle events to the account record.

Key Principles:
1. Signature verification happens before anything is parsed or written
2. Idempotency: the Stripe event id is the dedupe key in billing_events
3. Plan is derived from the subscription price_id ONLY
4. Field-scoped writes: a handler only touches the fields it owns
5. Unknown account or unknown price: logged and dropped, no mutation

Events Handled:
- checkout.session.completed (attach billing customer ref)
- customer.subscription.created
- customer.subscription.updated
- customer.subscription.deleted
- invoice.payment_succeeded (and invoice.paid)
- invoice.payment_failed

Ordering: Stripe does not guarantee delivery order. Every applied event
moves last_billing_event_at forward; with reject_stale_events on, events
created before that stamp are dropped. Off by default, in which case a
late older event can regress state (accepted limitation).
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple
import json
import logging

import stripe

from appraisalstudio.models.billing import BillingEventRecord, BillingEventStatus
from appraisalstudio.models.plans import (
    FREE_USAGE_LIMIT,
    Plan,
    PlanRegistry,
    SubscriptionStatus,
    map_stripe_status,
)
from appraisalstudio.services.document_store import DocumentStore

logger = logging.getLogger(__name__)

# Terminal statuses: a redelivery of one of these is a no-op
_DONE_STATUSES = (BillingEventStatus.PROCESSED.value, BillingEventStatus.IGNORED.value)

# A PROCESSING claim older than this is treated as abandoned and may be retaken
PROCESSING_LEASE = timedelta(minutes=5)


def _ts(value: Any) -> Optional[datetime]:
    """Stripe unix seconds -> aware datetime."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _ref(value: Any) -> Optional[str]:
    """Stripe fields are either an id string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _metadata_account_id(obj: Dict[str, Any]) -> Optional[str]:
    """account_id from the object's metadata, or the subscription metadata copied onto invoices."""
    candidates = [
        obj.get("metadata"),
        (obj.get("subscription_details") or {}).get("metadata"),
        ((obj.get("parent") or {}).get("subscription_details") or {}).get("metadata"),
    ]
    for metadata in candidates:
        if metadata and metadata.get("account_id"):
            return metadata["account_id"]
    return None


def _first_item(subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _period_bounds(subscription: Dict[str, Any]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Period start/end live on the subscription in older API versions, on the item in newer ones."""
    item = _first_item(subscription)
    start = subscription.get("current_period_start") or item.get("current_period_start")
    end = subscription.get("current_period_end") or item.get("current_period_end")
    return _ts(start), _ts(end)


def _extract_webhook_context(event: Dict[str, Any]) -> Dict[str, Any]:
    """Safe fields for structured logging."""
    obj = (event.get("data") or {}).get("object") or {}
    return {
        "event_id": event.get("id"),
        "event_type": event.get("type"),
        "livemode": event.get("livemode"),
        "account_id": _metadata_account_id(obj),
        "customer_ref": _ref(obj.get("customer")),
    }


class SubscriptionReconciler:
    """Verifies, dedupes and applies Stripe webhook events."""

    def __init__(
        self,
        store: DocumentStore,
        plan_registry: PlanRegistry,
        webhook_secret: Optional[str],
        reject_stale_events: bool = False,
        processing_lease: timedelta = PROCESSING_LEASE,
    ):
        self.store = store
        self.plan_registry = plan_registry
        self.webhook_secret = webhook_secret
        self.reject_stale_events = reject_stale_events
        self.processing_lease = processing_lease

    # =========================================================================
    # Event Processing Entry Point
    # =========================================================================

    async def process_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> Tuple[bool, str, Optional[Dict]]:
        """
        Main webhook entry point.

        Returns:
            (verified, message, details). verified=False means the request
            must be answered with 400 and nothing was written.
        """
        if not self.webhook_secret:
            logger.error("Webhook rejected: STRIPE_WEBHOOK_SECRET is not configured")
            return False, "Webhook secret not configured", None

        try:
            stripe.Webhook.construct_event(payload, signature or "", self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.error("Webhook signature verification failed: %s", e)
            return False, "Invalid signature", None
        except ValueError as e:
            logger.error("Webhook parse error: %s", e)
            return False, "Invalid payload", None

        event = json.loads(payload)
        if not event.get("id") or not event.get("type"):
            logger.error("Webhook payload missing id or type")
            return False, "Invalid payload", None

        message, details = await self.apply_event(event)
        return True, message, details

    async def apply_event(self, event: Dict[str, Any]) -> Tuple[str, Dict]:
        """Dedupe on event id, dispatch, record the outcome. Never raises for handler errors."""
        event_id = event["id"]
        event_type = event["type"]
        ctx = _extract_webhook_context(event)
        logger.info(
            "WEBHOOK_RECEIVED event_id=%s event_type=%s livemode=%s account_id=%s customer_ref=%s",
            event_id, event_type, ctx.get("livemode"), ctx.get("account_id"), ctx.get("customer_ref"),
        )

        existing = await self.store.find_billing_event(event_id)
        if existing and existing.get("status") in _DONE_STATUSES:
            logger.info(f"Event {event_id} already processed - skipping")
            return "Already processed", {"event_id": event_id}

        now = datetime.now(timezone.utc)
        record = BillingEventRecord(
            event_id=event_id,
            type="webhook_received",
            event_type=event_type,
            status=BillingEventStatus.PROCESSING,
            event_created_at=_ts(event.get("created")),
            claimed_at=now,
        ).to_document()

        if existing:
            # FAILED, or PROCESSING past its lease (crashed delivery): reclaim atomically
            claimed = await self.store.claim_billing_event(
                event_id,
                stale_before=now - self.processing_lease,
                set_fields={**record, "error": None},
            )
            if not claimed:
                logger.info(f"Event {event_id} is being processed by another delivery - skipping")
                return "Already processing", {"event_id": event_id}
            logger.info(f"Event {event_id} reclaimed from status {existing.get('status')}")
        elif not await self.store.insert_billing_event(record):
            logger.info(f"Event {event_id} duplicate insert (race) - skipping")
            return "Already processed", {"event_id": event_id}

        try:
            result = await self._handle_event(event)
        except Exception as e:
            logger.exception(
                "WEBHOOK_PROCESSING_FAILED event_id=%s event_type=%s error=%s",
                event_id, event_type, str(e),
            )
            await self.store.update_billing_event(event_id, {
                "status": BillingEventStatus.FAILED.value,
                "processed_at": datetime.now(timezone.utc),
                "error": str(e),
            })
            # Stripe cannot act on our failures; acknowledge and keep the record
            return "Event logged with error", {"event_id": event_id, "error": str(e)}

        status = BillingEventStatus.PROCESSED if result.get("handled") else BillingEventStatus.IGNORED
        outcome = {
            "status": status.value,
            "processed_at": datetime.now(timezone.utc),
        }
        for field in ("account_id", "customer_ref", "subscription_ref", "session_id", "plan_id", "reason"):
            if result.get(field):
                outcome[field] = result[field]
        await self.store.update_billing_event(event_id, outcome)

        logger.info(
            "WEBHOOK_PROCESSED_OK event_id=%s event_type=%s status=%s account_id=%s",
            event_id, event_type, status.value, result.get("account_id"),
        )
        return ("Processed" if result.get("handled") else "Ignored"), {"event_id": event_id, **result}

    # =========================================================================
    # Event Handlers
    # =========================================================================

    async def _handle_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """Route event to appropriate handler."""
        event_type = event.get("type")
        data = (event.get("data") or {}).get("object") or {}

        handlers = {
            "checkout.session.completed": self._handle_checkout_completed,
            "customer.subscription.created": self._handle_subscription_created,
            "customer.subscription.updated": self._handle_subscription_updated,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.payment_succeeded": self._handle_payment_succeeded,
            "invoice.paid": self._handle_payment_succeeded,
            "invoice.payment_failed": self._handle_payment_failed,
        }

        handler = handlers.get(event_type)
        if handler:
            return await handler(data, event)

        logger.info(f"Ignoring unhandled event type: {event_type}")
        return {"handled": False, "reason": "unhandled_event_type"}

    async def _resolve_account(self, obj: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """metadata.account_id first, then reverse lookup by billing_customer_ref."""
        account_id = _metadata_account_id(obj)
        if account_id:
            user = await self.store.get_user(account_id)
            if user:
                return user
            logger.warning(f"metadata.account_id={account_id} has no account record")

        customer_ref = _ref(obj.get("customer"))
        if customer_ref:
            return await self.store.find_user_by_field("billing_customer_ref", customer_ref)
        return None

    def _is_stale(self, user: Dict[str, Any], event: Dict[str, Any]) -> bool:
        if not self.reject_stale_events:
            return False
        created = _ts(event.get("created"))
        last_applied = _ts(user.get("last_billing_event_at"))
        if created is None or last_applied is None:
            return False
        return created < last_applied

    def _plan_from_subscription(self, subscription: Dict[str, Any]) -> Tuple[Optional[Plan], Optional[str]]:
        """(plan, first price id). Plan is None when no line item maps to a known price."""
        items = (subscription.get("items") or {}).get("data") or []
        first_price_id = None
        for item in items:
            price_id = _ref(item.get("price"))
            first_price_id = first_price_id or price_id
            plan = self.plan_registry.get_plan_from_price_id(price_id)
            if plan:
                return plan, price_id
        return None, first_price_id

    async def _apply(
        self,
        account_id: str,
        event: Dict[str, Any],
        set_fields: Dict[str, Any],
        unset_fields=None,
        inc_fields=None,
    ) -> None:
        created = _ts(event.get("created"))
        await self.store.update_user_fields(
            account_id,
            set_fields=set_fields,
            unset_fields=unset_fields,
            inc_fields=inc_fields,
            max_fields={"last_billing_event_at": created} if created else None,
        )

    def _ignored(self, event_type: str, reason: str, **details) -> Dict[str, Any]:
        logger.warning(
            "HANDLER_END event.type=%s outcome=ignored reason=%s details=%s",
            event_type, reason, details,
        )
        return {"handled": False, "reason": reason, **details}

    async def _guard(self, event_type: str, obj: Dict[str, Any], event: Dict[str, Any]):
        """Resolve the account and apply the staleness rule. Returns (user, ignored_result)."""
        user = await self._resolve_account(obj)
        if not user:
            return None, self._ignored(
                event_type, "account_not_found",
                customer_ref=_ref(obj.get("customer")),
            )
        if self._is_stale(user, event):
            return None, self._ignored(event_type, "stale_event", account_id=user["account_id"])
        return user, None

    async def _handle_checkout_completed(self, session: Dict, event: Dict) -> Dict:
        """Attach the billing customer ref. Plan changes arrive via subscription events."""
        event_type = "checkout.session.completed"
        session_id = session.get("id")
        customer_ref = _ref(session.get("customer"))
        logger.info(
            "HANDLER_START event.type=%s customer_ref=%s checkout_session_id=%s metadata.account_id=%s",
            event_type, customer_ref, session_id, _metadata_account_id(session),
        )

        user, ignored = await self._guard(event_type, session, event)
        if ignored:
            return ignored
        account_id = user["account_id"]

        set_fields = {
            "last_checkout_session_id": session_id,
            "checkout_completed_at": datetime.now(timezone.utc),
        }
        stored_ref = user.get("billing_customer_ref")
        if not stored_ref and customer_ref:
            set_fields["billing_customer_ref"] = customer_ref
        elif stored_ref and customer_ref and stored_ref != customer_ref:
            logger.warning(
                f"Checkout {session_id} customer {customer_ref} differs from stored "
                f"customer {stored_ref} for account {account_id}; keeping stored ref"
            )

        await self._apply(account_id, event, set_fields)
        logger.info("HANDLER_END event.type=%s account_id=%s outcome=processed", event_type, account_id)
        return {
            "handled": True,
            "account_id": account_id,
            "customer_ref": customer_ref,
            "session_id": session_id,
        }

    async def _handle_subscription_created(self, subscription: Dict, event: Dict) -> Dict:
        event_type = "customer.subscription.created"
        subscription_ref = subscription.get("id")
        logger.info(
            "HANDLER_START event.type=%s subscription_ref=%s status=%s metadata.account_id=%s",
            event_type, subscription_ref, subscription.get("status"), _metadata_account_id(subscription),
        )

        plan, price_id = self._plan_from_subscription(subscription)
        if plan is None:
            logger.error(f"Unknown price ID {price_id} on subscription {subscription_ref}")
            return self._ignored(event_type, "unknown_price", subscription_ref=subscription_ref)

        user, ignored = await self._guard(event_type, subscription, event)
        if ignored:
            return ignored
        account_id = user["account_id"]

        period_start, period_end = _period_bounds(subscription)
        set_fields = {
            "plan": plan.value,
            "usage_limit": self.plan_registry.usage_limit_for(plan),
            "subscription_status": SubscriptionStatus.ACTIVE.value,
            "subscription_ref": subscription_ref,
            "current_period_start": period_start,
            "current_period_end": period_end,
            "subscription_created_at": datetime.now(timezone.utc),
            # New subscription starts a fresh quota
            "usage_count": 0,
        }
        customer_ref = _ref(subscription.get("customer"))
        if customer_ref and not user.get("billing_customer_ref"):
            set_fields["billing_customer_ref"] = customer_ref

        await self._apply(account_id, event, set_fields)
        logger.info(
            "HANDLER_END event.type=%s account_id=%s plan=%s outcome=processed",
            event_type, account_id, plan.value,
        )
        return {
            "handled": True,
            "account_id": account_id,
            "subscription_ref": subscription_ref,
            "plan_id": plan.value,
        }

    async def _handle_subscription_updated(self, subscription: Dict, event: Dict) -> Dict:
        """Plan changes, renewals, status changes and scheduled cancellation."""
        event_type = "customer.subscription.updated"
        subscription_ref = subscription.get("id")
        logger.info(
            "HANDLER_START event.type=%s subscription_ref=%s status=%s cancel_at_period_end=%s",
            event_type, subscription_ref, subscription.get("status"), subscription.get("cancel_at_period_end"),
        )

        plan, price_id = self._plan_from_subscription(subscription)
        if plan is None:
            logger.error(f"Unknown price ID {price_id} on subscription {subscription_ref}")
            return self._ignored(event_type, "unknown_price", subscription_ref=subscription_ref)

        user, ignored = await self._guard(event_type, subscription, event)
        if ignored:
            return ignored
        account_id = user["account_id"]

        stored_ref = user.get("subscription_ref")
        if stored_ref and stored_ref != subscription_ref:
            return self._ignored(
                event_type, "subscription_mismatch",
                account_id=account_id, subscription_ref=subscription_ref,
            )

        period_start, period_end = _period_bounds(subscription)
        set_fields = {
            "plan": plan.value,
            "usage_limit": self.plan_registry.usage_limit_for(plan),
            "subscription_status": map_stripe_status(subscription.get("status")).value,
            "subscription_ref": subscription_ref,
            "current_period_start": period_start,
            "current_period_end": period_end,
        }
        if user.get("plan") != plan.value:
            set_fields["usage_count"] = 0

        unset_fields = []
        if subscription.get("cancel_at_period_end"):
            set_fields["cancel_at_period_end"] = True
            set_fields["cancellation_date"] = period_end or _ts(subscription.get("cancel_at"))
        else:
            set_fields["cancel_at_period_end"] = False
            unset_fields.append("cancellation_date")

        await self._apply(account_id, event, set_fields, unset_fields=unset_fields)
        logger.info(
            "HANDLER_END event.type=%s account_id=%s plan=%s status=%s outcome=processed",
            event_type, account_id, plan.value, set_fields["subscription_status"],
        )
        return {
            "handled": True,
            "account_id": account_id,
            "subscription_ref": subscription_ref,
            "plan_id": plan.value,
        }

    async def _handle_subscription_deleted(self, subscription: Dict, event: Dict) -> Dict:
        """Revert to the free plan."""
        event_type = "customer.subscription.deleted"
        subscription_ref = subscription.get("id")
        logger.info(
            "HANDLER_START event.type=%s subscription_ref=%s metadata.account_id=%s",
            event_type, subscription_ref, _metadata_account_id(subscription),
        )

        user, ignored = await self._guard(event_type, subscription, event)
        if ignored:
            return ignored
        account_id = user["account_id"]

        stored_ref = user.get("subscription_ref")
        if stored_ref and stored_ref != subscription_ref:
            logger.warning(
                f"Deleted subscription {subscription_ref} is not the stored subscription "
                f"{stored_ref} for account {account_id}; reverting to free anyway"
            )

        await self._apply(
            account_id,
            event,
            {
                "plan": Plan.FREE.value,
                "usage_limit": FREE_USAGE_LIMIT,
                "subscription_status": SubscriptionStatus.CANCELED.value,
                "subscription_canceled_at": datetime.now(timezone.utc),
                "cancel_at_period_end": False,
            },
            unset_fields=["cancellation_date"],
        )
        logger.info("HANDLER_END event.type=%s account_id=%s outcome=processed", event_type, account_id)
        return {"handled": True, "account_id": account_id, "subscription_ref": subscription_ref}

    async def _handle_payment_succeeded(self, invoice: Dict, event: Dict) -> Dict:
        """Marks the subscription active and starts a new billing period's quota."""
        event_type = event.get("type")
        customer_ref = _ref(invoice.get("customer"))
        logger.info(
            "HANDLER_START event.type=%s invoice_id=%s customer_ref=%s",
            event_type, invoice.get("id"), customer_ref,
        )

        user, ignored = await self._guard(event_type, invoice, event)
        if ignored:
            return ignored
        account_id = user["account_id"]

        await self._apply(account_id, event, {
            "subscription_status": SubscriptionStatus.ACTIVE.value,
            "last_payment_succeeded_at": datetime.now(timezone.utc),
            "last_invoice_id": invoice.get("id"),
            "usage_count": 0,
        })
        logger.info("HANDLER_END event.type=%s account_id=%s outcome=processed", event_type, account_id)
        return {"handled": True, "account_id": account_id, "customer_ref": customer_ref}

    async def _handle_payment_failed(self, invoice: Dict, event: Dict) -> Dict:
        """Counts the failure. Status changes arrive via customer.subscription.updated."""
        event_type = "invoice.payment_failed"
        customer_ref = _ref(invoice.get("customer"))
        logger.info(
            "HANDLER_START event.type=%s invoice_id=%s customer_ref=%s attempt_count=%s",
            event_type, invoice.get("id"), customer_ref, invoice.get("attempt_count"),
        )

        user, ignored = await self._guard(event_type, invoice, event)
        if ignored:
            return ignored
        account_id = user["account_id"]

        await self._apply(
            account_id,
            event,
            {
                "last_payment_failed_at": datetime.now(timezone.utc),
                "last_failed_invoice_id": invoice.get("id"),
            },
            inc_fields={"payment_failure_count": 1},
        )
        logger.info("HANDLER_END event.type=%s account_id=%s outcome=processed", event_type, account_id)
        return {"handled": True, "account_id": account_id, "customer_ref": customer_ref}

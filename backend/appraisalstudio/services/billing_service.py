"""Billing Service - Stripe checkout and customer portal sessions.

This service handles:
- Creating checkout sessions for new subscriptions
- Billing portal access for existing customers

Key Principles:
- PlanRegistry is the single source of truth for price ids
- Session and subscription metadata carry account_id for webhook tracing
- Every session created is appended to billing_events
- Plan/entitlement changes never happen here; the subscription
  reconciler applies them when Stripe confirms
"""
import logging
from typing import Any, Dict, Optional

import stripe

from appraisalstudio.errors import (
    AccountNotFound,
    BillingNotConfigured,
    ExternalServiceError,
    ValidationFailed,
)
from appraisalstudio.models.billing import (
    BillingEventRecord,
    CheckoutSessionResponse,
    PortalSessionResponse,
)
from appraisalstudio.models.plans import PlanRegistry
from appraisalstudio.services.document_store import DocumentStore

logger = logging.getLogger(__name__)


class BillingService:
    """Stripe billing operations service."""

    def __init__(
        self,
        store: DocumentStore,
        plan_registry: PlanRegistry,
        stripe_api_key: Optional[str],
        frontend_url: str = "http://localhost:3000",
    ):
        self.store = store
        self.plan_registry = plan_registry
        self.stripe_api_key = stripe_api_key
        self.frontend_url = frontend_url

    def _redirect_base(self, return_url: Optional[str]) -> str:
        base = (return_url or self.frontend_url or "").strip().rstrip("/")
        if not base.startswith("http://") and not base.startswith("https://"):
            raise ValidationFailed("Invalid return URL: must be an http or https base URL")
        return base

    def _require_api_key(self) -> str:
        if not self.stripe_api_key:
            logger.error("Stripe API key is not configured")
            raise BillingNotConfigured("Billing is not configured. Please contact support.")
        return self.stripe_api_key

    def _create_customer(self, email: str, account_id: str, plan_id: str, previous_ref: Optional[str] = None):
        metadata = {"account_id": account_id, "plan_type": plan_id}
        if previous_ref:
            metadata["original_customer_ref"] = previous_ref
        return stripe.Customer.create(
            email=email,
            metadata=metadata,
            api_key=self.stripe_api_key,
        )

    async def _ensure_customer(self, user: Dict[str, Any], email: str, plan_id: str) -> str:
        """Return a customer ref valid in the current Stripe mode, creating one if needed."""
        account_id = user["account_id"]
        customer_ref = user.get("billing_customer_ref")

        if customer_ref:
            try:
                existing = stripe.Customer.retrieve(customer_ref, api_key=self.stripe_api_key)
                # StripeObject is not a dict; deleted customers carry deleted=True
                if not getattr(existing, "deleted", False):
                    return customer_ref
                logger.info(f"Stripe customer {customer_ref} was deleted; creating a new one for {account_id}")
            except stripe.InvalidRequestError as e:
                if getattr(e, "code", None) != "resource_missing":
                    raise
                # Typically a test-mode customer seen by a live key, or vice versa
                logger.info(f"Stripe customer {customer_ref} missing in current mode; creating a new one for {account_id}")

        customer = self._create_customer(email, account_id, plan_id, previous_ref=customer_ref)
        await self.store.update_user_fields(account_id, set_fields={"billing_customer_ref": customer.id})
        logger.info(f"Created Stripe customer {customer.id} for account {account_id}")
        return customer.id

    async def create_checkout_session(
        self,
        plan_id: str,
        account_id: str,
        account_email: str,
        return_url: Optional[str] = None,
    ) -> CheckoutSessionResponse:
        """
        Create Stripe checkout session for a new subscription.

        Args:
            plan_id: "professional" or "agency"
            account_id: Internal account id (MANDATORY for webhook)
            account_email: Customer email for a newly created Stripe customer
            return_url: Base URL for success/cancel redirects (defaults to FRONTEND_URL)

        Returns:
            CheckoutSessionResponse with checkout_url and session_id
        """
        if not plan_id or not account_id or not account_email:
            raise ValidationFailed("Missing required fields: plan_id, account_id, account_email")

        plan = self.plan_registry.resolve_paid_plan(plan_id)
        if plan is None:
            raise ValidationFailed('Invalid plan ID. Must be "professional" or "agency"')

        price_id = self.plan_registry.get_price_id(plan)
        if not price_id:
            logger.error(f"No Stripe price configured for plan {plan.value}")
            raise BillingNotConfigured(f"Price not configured for the {plan.value} plan")

        base = self._redirect_base(return_url)
        self._require_api_key()

        user, _ = await self.store.get_or_create_default_user(account_id, email=account_email)

        try:
            customer_ref = await self._ensure_customer(user, account_email, plan.value)

            metadata = {"account_id": account_id, "plan_type": plan.value}
            session = stripe.checkout.Session.create(
                customer=customer_ref,
                mode="subscription",
                billing_address_collection="auto",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=f"{base}/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{base}/pricing",
                metadata=metadata,
                subscription_data={"metadata": metadata},
                customer_update={"address": "auto", "name": "auto"},
                allow_promotion_codes=True,
                api_key=self.stripe_api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout error for account {account_id}: {e}")
            raise ExternalServiceError("Failed to create checkout session") from e

        await self.store.add_billing_event(BillingEventRecord(
            type="checkout_session_created",
            account_id=account_id,
            plan_id=plan.value,
            session_id=session.id,
            customer_ref=customer_ref,
        ).to_document())

        logger.info(f"Checkout session created for account {account_id}: {session.id}")
        return CheckoutSessionResponse(checkout_url=session.url, session_id=session.id)

    async def create_portal_session(
        self,
        account_id: str,
        return_url: Optional[str] = None,
    ) -> PortalSessionResponse:
        """Billing portal session for an account that already has a Stripe customer."""
        if not account_id:
            raise ValidationFailed("Account ID is required")

        base = self._redirect_base(return_url)

        user = await self.store.get_user(account_id)
        if not user:
            raise AccountNotFound("User not found")

        customer_ref = user.get("billing_customer_ref")
        if not customer_ref:
            raise BillingNotConfigured("No billing customer found. Subscribe to a plan first.")

        self._require_api_key()
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_ref,
                return_url=f"{base}/account",
                api_key=self.stripe_api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe portal error for account {account_id}: {e}")
            raise ExternalServiceError("Failed to create customer portal session") from e

        await self.store.add_billing_event(BillingEventRecord(
            type="customer_portal_accessed",
            account_id=account_id,
            customer_ref=customer_ref,
            session_id=session.id,
        ).to_document())

        logger.info(f"Billing portal session created for account {account_id}")
        return PortalSessionResponse(portal_url=session.url)

"""
Checkout and billing-portal session creation with the Stripe SDK patched.
"""
from unittest.mock import MagicMock, patch

import pytest
import stripe

from appraisalstudio.errors import (
    AccountNotFound,
    BillingNotConfigured,
    ExternalServiceError,
    ValidationFailed,
)
from appraisalstudio.models.plans import PlanRegistry
from appraisalstudio.services import BillingService
from conftest import PROFESSIONAL_PRICE

pytestmark = pytest.mark.asyncio

SVC = "appraisalstudio.services.billing_service.stripe"


def _session(session_id="cs_test_1", url="https://checkout.stripe.com/c/pay/cs_test_1"):
    return MagicMock(id=session_id, url=url)


class TestCheckoutValidation:

    @pytest.mark.parametrize("plan_id", ["free", "enterprise", ""])
    async def test_rejects_free_and_unmapped_plans_before_io(self, services, store, plan_id):
        with patch(f"{SVC}.checkout.Session.create") as create:
            with pytest.raises(ValidationFailed):
                await services.billing.create_checkout_session(plan_id, "acct-1", "agent@realtyco.com")
        create.assert_not_called()
        assert store.users == {}

    async def test_missing_fields_rejected(self, services, store):
        with pytest.raises(ValidationFailed):
            await services.billing.create_checkout_session("professional", "", "agent@realtyco.com")
        with pytest.raises(ValidationFailed):
            await services.billing.create_checkout_session("professional", "acct-1", "")
        assert store.users == {}

    async def test_unconfigured_price_rejected(self, store):
        billing = BillingService(store, PlanRegistry(professional_price_id=PROFESSIONAL_PRICE), "sk_test_dummy")
        with pytest.raises(BillingNotConfigured):
            await billing.create_checkout_session("agency", "acct-1", "agent@realtyco.com")
        assert store.users == {}

    async def test_missing_api_key_rejected(self, services):
        services.billing.stripe_api_key = None
        with pytest.raises(BillingNotConfigured):
            await services.billing.create_checkout_session("professional", "acct-1", "agent@realtyco.com")


class TestCheckoutSession:

    async def test_new_account_gets_customer_and_session(self, services, store):
        with patch(f"{SVC}.Customer.create", return_value=MagicMock(id="cus_new")) as create_customer, \
             patch(f"{SVC}.checkout.Session.create", return_value=_session()) as create_session:
            result = await services.billing.create_checkout_session(
                "professional", "acct-1", "agent@realtyco.com", return_url="https://app.example.com/",
            )

        assert result.checkout_url == "https://checkout.stripe.com/c/pay/cs_test_1"
        assert result.session_id == "cs_test_1"
        assert store.users["acct-1"]["billing_customer_ref"] == "cus_new"
        assert create_customer.call_args.kwargs["metadata"]["account_id"] == "acct-1"

        params = create_session.call_args.kwargs
        assert params["customer"] == "cus_new"
        assert params["mode"] == "subscription"
        assert params["line_items"] == [{"price": PROFESSIONAL_PRICE, "quantity": 1}]
        assert params["success_url"] == "https://app.example.com/success?session_id={CHECKOUT_SESSION_ID}"
        assert params["cancel_url"] == "https://app.example.com/pricing"
        assert params["metadata"]["account_id"] == "acct-1"
        assert params["subscription_data"]["metadata"]["account_id"] == "acct-1"

        # Plan is not granted until Stripe confirms
        assert store.users["acct-1"]["plan"] == "free"
        event = store.billing_events[-1]
        assert event["type"] == "checkout_session_created"
        assert event["session_id"] == "cs_test_1"
        assert event["plan_id"] == "professional"

    async def test_existing_customer_is_reused(self, services, store):
        store.seed_user("acct-1", billing_customer_ref="cus_existing")
        existing = stripe.Customer.construct_from({"id": "cus_existing", "object": "customer"}, "sk_test_dummy")
        with patch(f"{SVC}.Customer.retrieve", return_value=existing), \
             patch(f"{SVC}.Customer.create") as create_customer, \
             patch(f"{SVC}.checkout.Session.create", return_value=_session()) as create_session:
            await services.billing.create_checkout_session("agency", "acct-1", "agent@realtyco.com")

        create_customer.assert_not_called()
        assert create_session.call_args.kwargs["customer"] == "cus_existing"
        # Default redirect base comes from FRONTEND_URL
        assert create_session.call_args.kwargs["cancel_url"] == "https://app.example.com/pricing"

    async def test_deleted_customer_is_recreated(self, services, store):
        store.seed_user("acct-1", billing_customer_ref="cus_gone")
        deleted = stripe.Customer.construct_from(
            {"id": "cus_gone", "object": "customer", "deleted": True}, "sk_test_dummy",
        )
        with patch(f"{SVC}.Customer.retrieve", return_value=deleted), \
             patch(f"{SVC}.Customer.create", return_value=MagicMock(id="cus_fresh")) as create_customer, \
             patch(f"{SVC}.checkout.Session.create", return_value=_session()) as create_session:
            await services.billing.create_checkout_session("professional", "acct-1", "agent@realtyco.com")

        assert create_session.call_args.kwargs["customer"] == "cus_fresh"
        assert store.users["acct-1"]["billing_customer_ref"] == "cus_fresh"
        assert create_customer.call_args.kwargs["metadata"]["original_customer_ref"] == "cus_gone"

    async def test_customer_missing_in_current_mode_is_recreated(self, services, store):
        store.seed_user("acct-1", billing_customer_ref="cus_livemode")
        missing = stripe.InvalidRequestError("No such customer", "id", code="resource_missing")
        with patch(f"{SVC}.Customer.retrieve", side_effect=missing), \
             patch(f"{SVC}.Customer.create", return_value=MagicMock(id="cus_testmode")) as create_customer, \
             patch(f"{SVC}.checkout.Session.create", return_value=_session()):
            await services.billing.create_checkout_session("professional", "acct-1", "agent@realtyco.com")

        assert store.users["acct-1"]["billing_customer_ref"] == "cus_testmode"
        assert create_customer.call_args.kwargs["metadata"]["original_customer_ref"] == "cus_livemode"

    async def test_stripe_failure_is_retryable_error(self, services, store):
        with patch(f"{SVC}.Customer.create", return_value=MagicMock(id="cus_new")), \
             patch(f"{SVC}.checkout.Session.create", side_effect=stripe.APIConnectionError("network down")):
            with pytest.raises(ExternalServiceError):
                await services.billing.create_checkout_session("professional", "acct-1", "agent@realtyco.com")
        assert all(e["type"] != "checkout_session_created" for e in store.billing_events)


class TestPortalSession:

    async def test_portal_for_existing_customer(self, services, store):
        store.seed_user("acct-1", billing_customer_ref="cus_123")
        portal = MagicMock(id="bps_1", url="https://billing.stripe.com/p/session/bps_1")
        with patch(f"{SVC}.billing_portal.Session.create", return_value=portal) as create:
            result = await services.billing.create_portal_session("acct-1")

        assert result.portal_url == "https://billing.stripe.com/p/session/bps_1"
        assert create.call_args.kwargs["customer"] == "cus_123"
        assert create.call_args.kwargs["return_url"] == "https://app.example.com/account"
        assert store.billing_events[-1]["type"] == "customer_portal_accessed"

    async def test_account_without_customer_rejected(self, services, store):
        store.seed_user("acct-1")
        with patch(f"{SVC}.billing_portal.Session.create") as create:
            with pytest.raises(BillingNotConfigured):
                await services.billing.create_portal_session("acct-1")
        create.assert_not_called()

    async def test_unknown_account_not_found(self, services, store):
        with pytest.raises(AccountNotFound):
            await services.billing.create_portal_session("ghost")
        assert store.users == {}

"""
HTTP layer: status codes, response shapes and error mapping via TestClient.
"""
from unittest.mock import MagicMock, patch

from pymongo.errors import ServerSelectionTimeoutError

from conftest import make_event, sign_payload

PROPERTY = {"address": "5 Bay St", "price": "350000", "bedrooms": "2"}


class TestHealth:

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestGenerate:

    def test_generate_success(self, client, store):
        response = client.post("/api/generate", json={
            "account_id": "acct-1",
            "property_data": PROPERTY,
            "content_type": "email_alert",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["remaining"] == 4
        assert body["generation_id"].startswith("GEN-")
        assert store.users["acct-1"]["usage_count"] == 1

    def test_generate_limit_reached_is_402(self, client, store):
        store.seed_user("acct-1", usage_count=5, usage_limit=5)

        response = client.post("/api/generate", json={"account_id": "acct-1", "property_data": PROPERTY})

        assert response.status_code == 402
        body = response.json()
        assert body["success"] is False
        assert body["needs_upgrade"] is True
        assert body["remaining"] == 0

    def test_generate_missing_price_is_422(self, client, store):
        response = client.post("/api/generate", json={
            "account_id": "acct-1",
            "property_data": {"address": "5 Bay St"},
        })
        assert response.status_code == 422
        assert store.users == {}

    def test_generator_failure_is_generic_502(self, client, generator):
        generator.error = RuntimeError("upstream said: invalid key sk-abc")

        response = client.post("/api/generate", json={"account_id": "acct-1", "property_data": PROPERTY})

        assert response.status_code == 502
        assert "sk-abc" not in response.text


class TestHistoryRoutes:

    def test_list_and_delete(self, client, store):
        doc = store.seed_generation("acct-1", "1 A St")

        listed = client.get("/api/content-history", params={"account_id": "acct-1"})
        assert listed.status_code == 200
        assert listed.json()["history"][0]["id"] == doc["generation_id"]

        deleted = client.request("DELETE", "/api/content-history",
                                 json={"id": doc["generation_id"], "account_id": "acct-1"})
        assert deleted.status_code == 200
        assert deleted.json()["success"] is True

    def test_delete_by_non_owner_is_403(self, client, store):
        doc = store.seed_generation("acct-1", "1 A St")

        response = client.request("DELETE", "/api/content-history",
                                  json={"id": doc["generation_id"], "account_id": "intruder"})

        assert response.status_code == 403
        assert doc["generation_id"] in store.generations

    def test_delete_unknown_is_404(self, client):
        response = client.request("DELETE", "/api/content-history", json={"id": "GEN-X", "account_id": "a"})
        assert response.status_code == 404

    def test_recent_properties(self, client, store):
        store.seed_generation("acct-1", "1 A St")

        response = client.get("/api/recent-properties", params={"account_id": "acct-1"})

        assert response.status_code == 200
        assert response.json()["recent_properties"][0]["address"] == "1 A St"


class TestAccountRoute:

    def test_new_account_projection(self, client):
        response = client.get("/api/user/account", params={"account_id": "fresh"})

        assert response.status_code == 200
        body = response.json()
        assert body["account_type"] == "Free Plan"
        assert body["remaining_credits"] == 5
        assert body["has_active_subscription"] is False

    def test_account_id_required(self, client):
        assert client.get("/api/user/account").status_code == 422


class TestBillingRoutes:

    def test_checkout_free_plan_is_400(self, client):
        response = client.post("/api/stripe/create-checkout-session", json={
            "plan_id": "free", "account_id": "acct-1", "account_email": "agent@realtyco.com",
        })
        assert response.status_code == 400

    def test_checkout_success(self, client):
        session = MagicMock(id="cs_1", url="https://checkout.stripe.com/cs_1")
        with patch("appraisalstudio.services.billing_service.stripe.Customer.create", return_value=MagicMock(id="cus_1")), \
             patch("appraisalstudio.services.billing_service.stripe.checkout.Session.create", return_value=session):
            response = client.post("/api/stripe/create-checkout-session", json={
                "plan_id": "professional", "account_id": "acct-1", "account_email": "agent@realtyco.com",
            })

        assert response.status_code == 200
        assert response.json() == {"checkout_url": "https://checkout.stripe.com/cs_1", "session_id": "cs_1"}

    def test_portal_without_customer_is_400(self, client, store):
        store.seed_user("acct-1")
        response = client.post("/api/stripe/customer-portal", json={"account_id": "acct-1"})
        assert response.status_code == 400

    def test_portal_unknown_account_is_404(self, client):
        response = client.post("/api/stripe/customer-portal", json={"account_id": "ghost"})
        assert response.status_code == 404


class TestWebhookRoute:

    def test_bad_signature_is_400(self, client, store):
        payload = make_event("evt_1", "invoice.payment_failed", {"id": "in_1", "customer": "cus_1"})

        response = client.post(
            "/api/stripe/webhook",
            content=payload,
            headers={"Stripe-Signature": sign_payload(payload, secret="whsec_wrong")},
        )

        assert response.status_code == 400
        assert store.billing_events == []

    def test_verified_event_is_acknowledged(self, client, store):
        store.seed_user("acct-1", billing_customer_ref="cus_1")
        payload = make_event("evt_2", "invoice.payment_failed", {"id": "in_1", "customer": "cus_1"})

        response = client.post(
            "/api/stripe/webhook",
            content=payload,
            headers={"Stripe-Signature": sign_payload(payload), "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json()["received"] is True
        assert store.users["acct-1"]["payment_failure_count"] == 1

    def test_unresolvable_event_still_200(self, client):
        payload = make_event("evt_3", "invoice.payment_failed", {"id": "in_1", "customer": "cus_nobody"})

        response = client.post("/api/stripe/webhook", content=payload,
                               headers={"Stripe-Signature": sign_payload(payload)})

        assert response.status_code == 200


class TestStoreUnavailable:

    @staticmethod
    def _break(store, monkeypatch, method):
        async def unavailable(*args, **kwargs):
            raise ServerSelectionTimeoutError("mongo-0:27017: connection refused")
        monkeypatch.setattr(store, method, unavailable)

    def test_account_route_is_retryable_502(self, client, store, monkeypatch):
        self._break(store, monkeypatch, "get_or_create_default_user")

        response = client.get("/api/user/account", params={"account_id": "acct-1"})

        assert response.status_code == 502
        assert "mongo-0" not in response.text

    def test_generate_route_is_retryable_502(self, client, store, generator, monkeypatch):
        self._break(store, monkeypatch, "get_or_create_default_user")

        response = client.post("/api/generate", json={"account_id": "acct-1", "property_data": PROPERTY})

        assert response.status_code == 502
        assert generator.calls == []

    def test_history_route_is_retryable_502(self, client, store, monkeypatch):
        self._break(store, monkeypatch, "find_generations")

        response = client.get("/api/content-history", params={"account_id": "acct-1"})

        assert response.status_code == 502

    def test_webhook_is_not_acknowledged_while_store_is_down(self, client, store, monkeypatch):
        self._break(store, monkeypatch, "find_billing_event")
        payload = make_event("evt_down", "invoice.payment_failed", {"id": "in_1", "customer": "cus_1"})

        response = client.post("/api/stripe/webhook", content=payload,
                               headers={"Stripe-Signature": sign_payload(payload)})

        assert response.status_code == 502

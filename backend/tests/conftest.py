"""
Pytest configuration and shared fixtures for backend tests.

Services are wired around InMemoryDocumentStore and a fake content
generator; no MongoDB, Stripe or LLM access is needed.
"""
import hashlib
import hmac
import json
import time

import pytest
from fastapi.testclient import TestClient

from appraisalstudio.config import Settings
from appraisalstudio.models.plans import PlanRegistry
from appraisalstudio.services import build_services
from in_memory_store import InMemoryDocumentStore

WEBHOOK_SECRET = "whsec_test_secret"
PROFESSIONAL_PRICE = "price_professional_test"
AGENCY_PRICE = "price_agency_test"


class FakeGenerator:
    """Records calls; returns canned copy or raises the configured error."""

    def __init__(self, text="Charming three-bedroom home with an updated kitchen."):
        self.text = text
        self.error = None
        self.calls = []

    async def __call__(self, property_data, content_type):
        self.calls.append((property_data, content_type))
        if self.error:
            raise self.error
        return self.text


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Stripe-Signature header value for payload (v1 scheme)."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_id: str, event_type: str, obj: dict, created: int = None) -> bytes:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": created or int(time.time()),
        "livemode": False,
        "data": {"object": obj},
    }).encode("utf-8")


@pytest.fixture
def settings():
    return Settings(
        stripe_secret_key="sk_test_dummy",
        stripe_webhook_secret=WEBHOOK_SECRET,
        stripe_professional_price_id=PROFESSIONAL_PRICE,
        stripe_agency_price_id=AGENCY_PRICE,
        llm_api_key="test-llm-key",
        frontend_url="https://app.example.com",
    )


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def registry(settings):
    return PlanRegistry.from_settings(settings)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def services(settings, store, generator):
    return build_services(settings, store, generator=generator)


@pytest.fixture
def client(services):
    """TestClient for server:app with services swapped for the in-memory set (lifespan not run)."""
    from server import app
    from appraisalstudio.routes.deps import get_services

    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()

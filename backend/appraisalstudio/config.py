"""AppraisalStudio configuration.

All settings come from the environment (optionally via backend/.env).
The Settings object is built once at startup and handed to each service;
nothing below reads os.environ after that.
"""

from pathlib import Path
from typing import List, Optional
import logging
import os

from dotenv import load_dotenv
from pydantic import BaseModel

BACKEND_DIR = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value or default


def _env_flag(name: str, default: bool = False) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Runtime settings. Secrets are never logged or returned in responses."""

    # Document store
    mongo_url: str = "mongodb://localhost:27017"
    db_name: str = "appraisal_studio"

    # Stripe
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_professional_price_id: Optional[str] = None
    stripe_agency_price_id: Optional[str] = None
    reject_stale_billing_events: bool = False

    # Content generation
    llm_api_key: Optional[str] = None
    llm_model: str = "gemini-2.0-flash"

    # HTTP
    frontend_url: str = "http://localhost:3000"
    cors_origins: List[str] = ["*"]
    environment: str = "development"

    model_config = {"extra": "ignore"}

    @property
    def stripe_mode(self) -> str:
        """test / live / unknown, derived from the key prefix."""
        key = self.stripe_secret_key or ""
        if key.startswith("sk_test_"):
            return "test"
        if key.startswith("sk_live_"):
            return "live"
        return "unknown"


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Build Settings from the environment, loading backend/.env first."""
    load_dotenv(env_file or BACKEND_DIR / ".env")

    settings = Settings(
        mongo_url=_env("MONGO_URL", "mongodb://localhost:27017"),
        db_name=_env("DB_NAME", "appraisal_studio"),
        stripe_secret_key=_env("STRIPE_SECRET_KEY") or _env("STRIPE_API_KEY"),
        stripe_webhook_secret=_env("STRIPE_WEBHOOK_SECRET"),
        stripe_professional_price_id=_env("STRIPE_PROFESSIONAL_PRICE_ID"),
        stripe_agency_price_id=_env("STRIPE_AGENCY_PRICE_ID"),
        reject_stale_billing_events=_env_flag("REJECT_STALE_BILLING_EVENTS"),
        llm_api_key=_env("LLM_API_KEY"),
        llm_model=_env("LLM_MODEL", "gemini-2.0-flash"),
        frontend_url=_env("FRONTEND_URL", "http://localhost:3000"),
        cors_origins=[o.strip() for o in _env("CORS_ORIGINS", "*").split(",") if o.strip()],
        environment=_env("ENVIRONMENT", "development"),
    )

    if not settings.stripe_secret_key:
        logger.error("STRIPE_SECRET_KEY / STRIPE_API_KEY is not set. Checkout and billing portal will fail.")
    else:
        logger.info("STRIPE_MODE = %s (from Stripe key prefix)", settings.stripe_mode)
    if not settings.stripe_webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not set. All webhook deliveries will be rejected.")
    for plan, price_id in (
        ("professional", settings.stripe_professional_price_id),
        ("agency", settings.stripe_agency_price_id),
    ):
        if not price_id:
            logger.warning("No Stripe price configured for plan %s", plan)
    return settings

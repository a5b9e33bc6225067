"""AppraisalStudio Generation Models

Six content kinds, all generated from the same property fields:
1. description - MLS / marketing description
2. social_listing - Facebook / Instagram listing post
3. email_alert - new-listing email to clients
4. marketing_flyer - key selling points for flyers
5. just_listed - "just listed" celebration post
6. open_house - open house invitation

Generation records are append-only. Deleting one (history management)
never decrements the account's usage_count.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import uuid

from pydantic import BaseModel, Field, field_validator

from appraisalstudio.models.plans import RemainingQuota


class ContentType(str, Enum):
    """Content kinds"""
    DESCRIPTION = "description"
    SOCIAL_LISTING = "social_listing"
    EMAIL_ALERT = "email_alert"
    MARKETING_FLYER = "marketing_flyer"
    JUST_LISTED = "just_listed"
    OPEN_HOUSE = "open_house"


CONTENT_TYPE_CONFIG = {
    ContentType.DESCRIPTION: {
        "name": "Property Description",
        "description": "Professional MLS/marketing descriptions",
        "instructions": (
            "Write a professional property description suitable for MLS listings "
            "or marketing materials, approximately 100-200 words."
        ),
    },
    ContentType.SOCIAL_LISTING: {
        "name": "Social Media Post",
        "description": "Facebook/Instagram listing announcements",
        "instructions": (
            "Write an engaging social media post announcing this listing. Keep it under "
            "120 words and end with a short call to action and a few relevant hashtags."
        ),
    },
    ContentType.EMAIL_ALERT: {
        "name": "Email Template",
        "description": "New listing alerts for clients",
        "instructions": (
            "Write a new-listing alert email to prospective buyers, with a subject line, "
            "a short introduction, the key details and a call to schedule a showing."
        ),
    },
    ContentType.MARKETING_FLYER: {
        "name": "Marketing Highlights",
        "description": "Key selling points for flyers",
        "instructions": (
            "Write a headline followed by 5-8 concise bullet points with the key "
            "selling points, suitable for a printed flyer."
        ),
    },
    ContentType.JUST_LISTED: {
        "name": "Just Listed Post",
        "description": "Celebration announcement posts",
        "instructions": (
            "Write a short, upbeat 'Just Listed' announcement post, under 80 words."
        ),
    },
    ContentType.OPEN_HOUSE: {
        "name": "Open House Invite",
        "description": "Open house event announcements",
        "instructions": (
            "Write an open house invitation highlighting the property's best features. "
            "Leave clear placeholders for the date and time, e.g. [DATE] and [TIME]."
        ),
    },
}


class PropertyFields(BaseModel):
    """Property data entered by the agent. Only address and price are required."""
    address: str
    price: Union[str, int, float]
    property_type: Optional[str] = None
    bedrooms: Optional[Union[str, int, float]] = None
    bathrooms: Optional[Union[str, int, float]] = None
    sqft: Optional[Union[str, int, float]] = None
    year_built: Optional[Union[str, int]] = None
    lot_size: Optional[str] = None
    parking: Optional[str] = None
    condition: Optional[str] = None
    school_district: Optional[str] = None
    features: Optional[str] = None
    neighborhood: Optional[str] = None
    special_features: Dict[str, bool] = Field(default_factory=dict)

    model_config = {"extra": "ignore"}

    @field_validator("address")
    @classmethod
    def address_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("address is required")
        return v.strip()

    @field_validator("price")
    @classmethod
    def price_not_blank(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError("price is required")
        return v


class GenerationRecord(BaseModel):
    """One logged generation event (append-only)."""
    generation_id: str = Field(default_factory=lambda: f"GEN-{uuid.uuid4().hex[:12].upper()}")
    account_id: str
    content_type: ContentType
    content: str
    property_data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}


class GenerationSummary(BaseModel):
    """History list item"""
    id: str
    content: str
    content_type: str
    property_address: str
    word_count: int
    created_at: Optional[datetime] = None


class HistoryPage(BaseModel):
    history: List[GenerationSummary]
    total: int
    message: Optional[str] = None


class RecentProperty(BaseModel):
    """Distinct property from recent generations, used to prefill the form."""
    id: str
    address: str
    property_data: Dict[str, Any]
    last_used: Optional[datetime] = None


class GenerateRequest(BaseModel):
    account_id: str
    property_data: PropertyFields
    content_type: ContentType = ContentType.DESCRIPTION


class GenerateResponse(BaseModel):
    success: bool
    content: Optional[str] = None
    generation_id: Optional[str] = None
    remaining: Optional[RemainingQuota] = None
    needs_upgrade: bool = False
    error: Optional[str] = None


class DeleteGenerationRequest(BaseModel):
    id: str
    account_id: str

"""
Listing copy generation using Google Generative AI (Gemini).

The model only ever sees the fields the agent actually filled in; the
system prompt forbids inventing schools, amenities or neighbourhood details.
"""
import asyncio
import logging
import re
from typing import Optional

from appraisalstudio.errors import ExternalServiceError
from appraisalstudio.models.generations import CONTENT_TYPE_CONFIG, ContentType, PropertyFields

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a professional real estate copywriter. Create compelling but factual "
    "marketing copy based ONLY on the information provided. Do not make assumptions "
    "or add details not specified. Keep the copy professional, accurate, and engaging "
    "for potential buyers."
)

_OPTIONAL_FIELDS = (
    ("bedrooms", "Bedrooms"),
    ("bathrooms", "Bathrooms"),
    ("sqft", "Square Feet"),
    ("year_built", "Year Built"),
    ("lot_size", "Lot Size"),
    ("parking", "Parking"),
    ("condition", "Property Condition"),
    ("school_district", "School District"),
)


def humanize_feature(name: str) -> str:
    """hardwoodFloors / hardwood_floors -> 'hardwood floors'"""
    spaced = re.sub(r"([A-Z])", r" \1", name).replace("_", " ")
    return " ".join(spaced.split()).lower()


def build_prompt(property_data: PropertyFields, content_type: ContentType) -> str:
    config = CONTENT_TYPE_CONFIG[content_type]
    lines = [
        f"Create a {config['name'].lower()} for the following property:",
        "",
        f"Address: {property_data.address}",
    ]
    if property_data.property_type:
        lines.append(f"Property Type: {property_data.property_type}")
    lines.append(f"Price: ${property_data.price}")

    for field, label in _OPTIONAL_FIELDS:
        value = getattr(property_data, field)
        if value not in (None, ""):
            lines.append(f"{label}: {value}")

    features = []
    if property_data.features and property_data.features.strip():
        features.append(property_data.features.strip())
    features.extend(
        humanize_feature(name) for name, selected in property_data.special_features.items() if selected
    )
    if features:
        lines.append(f"Key Features: {', '.join(features)}")

    if property_data.neighborhood and property_data.neighborhood.strip():
        lines.append(f"Neighborhood: {property_data.neighborhood.strip()}")

    lines.extend([
        "",
        config["instructions"],
        "Use ONLY the information provided above and stay factual.",
        "Do not add details about schools, nearby amenities, or neighborhood "
        "characteristics unless specifically mentioned above.",
    ])
    return "\n".join(lines)


class ContentGenerator:
    """Callable generate(property_data, content_type) -> text, backed by Gemini."""

    def __init__(self, api_key: Optional[str], model: str = "gemini-2.0-flash"):
        self.api_key = api_key
        self.model = model if model and "gemini" in model else "gemini-2.0-flash"

    def _sync_chat(self, user_text: str) -> str:
        import google.generativeai as genai
        if not self.api_key:
            raise ValueError("LLM_API_KEY not found in environment")
        genai.configure(api_key=self.api_key)
        gemini = genai.GenerativeModel(
            self.model,
            system_instruction=SYSTEM_PROMPT,
        )
        response = gemini.generate_content(user_text)
        if not response or not response.text:
            raise ValueError("Empty response from LLM")
        return response.text

    async def __call__(self, property_data: PropertyFields, content_type: ContentType) -> str:
        """Runs the sync SDK in the default thread pool."""
        prompt = build_prompt(property_data, content_type)
        loop = asyncio.get_running_loop()
        try:
            text = await loop.run_in_executor(None, lambda: self._sync_chat(prompt))
        except Exception as e:
            logger.error(f"Content generation failed ({content_type.value}): {e}")
            raise ExternalServiceError("Failed to generate content. Please try again.") from e
        return text.strip()

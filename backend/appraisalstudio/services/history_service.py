"""Content history: list, search, delete, and recent properties for form prefill.

Deleting a generation never touches usage_count; quota is consumed at
generation time.
"""

from typing import Any, Dict, List, Optional
import logging
import re

from appraisalstudio.errors import GenerationNotFound, NotOwner, ValidationFailed
from appraisalstudio.models.generations import (
    ContentType,
    GenerationSummary,
    HistoryPage,
    RecentProperty,
)
from appraisalstudio.services.document_store import DocumentStore

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 100
MAX_RECENT_PROPERTIES = 50


def word_count(text: Optional[str]) -> int:
    return len((text or "").split())


def normalize_address(address: str) -> str:
    return " ".join(address.split()).lower()


def _summary(doc: Dict[str, Any]) -> GenerationSummary:
    content = doc.get("content") or ""
    return GenerationSummary(
        id=doc["generation_id"],
        content=content,
        content_type=doc.get("content_type") or "unknown",
        property_address=(doc.get("property_data") or {}).get("address") or "Unknown Address",
        word_count=word_count(content),
        created_at=doc.get("timestamp"),
    )


class HistoryService:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def list_history(
        self,
        account_id: str,
        limit: int = 50,
        offset: int = 0,
        content_type: Optional[str] = None,
        search_term: Optional[str] = None,
    ) -> HistoryPage:
        """Most recent first. total counts every match, not just this page."""
        if not account_id:
            raise ValidationFailed("User ID is required")
        if limit < 1 or offset < 0:
            raise ValidationFailed("limit must be positive and offset non-negative")
        limit = min(limit, MAX_HISTORY_LIMIT)

        query: Dict[str, Any] = {"account_id": account_id}
        if content_type and content_type != "all":
            try:
                query["content_type"] = ContentType(content_type).value
            except ValueError:
                raise ValidationFailed(f"Invalid content type: {content_type}")

        if search_term and search_term.strip():
            pattern = re.escape(search_term.strip())
            query["$or"] = [
                {"content": {"$regex": pattern, "$options": "i"}},
                {"property_data.address": {"$regex": pattern, "$options": "i"}},
            ]

        docs = await self.store.find_generations(query, skip=offset, limit=limit)
        total = await self.store.count_generations(query)
        history = [_summary(doc) for doc in docs]

        if not history and offset == 0:
            return HistoryPage(history=[], total=0, message="No content history found")
        return HistoryPage(history=history, total=total)

    async def delete_generation(self, generation_id: str, account_id: str) -> None:
        """Owner-only delete. usage_count is left as is."""
        if not generation_id or not account_id:
            raise ValidationFailed("Document ID and User ID are required")

        doc = await self.store.get_generation(generation_id)
        if not doc:
            raise GenerationNotFound("Content not found")
        if doc.get("account_id") != account_id:
            logger.warning(f"Account {account_id} attempted to delete generation {generation_id} it does not own")
            raise NotOwner("Unauthorized to delete this content")

        await self.store.delete_generation(generation_id)
        logger.info(f"Deleted generation {generation_id} for account {account_id}")

    async def recent_properties(self, account_id: str, limit: int = 10) -> List[RecentProperty]:
        """Latest distinct properties (by normalized address)."""
        if not account_id:
            raise ValidationFailed("User ID is required")
        limit = max(1, min(limit, MAX_RECENT_PROPERTIES))

        # Over-fetch: the same property is usually generated several times in a row
        docs = await self.store.find_generations({"account_id": account_id}, limit=limit * 3)

        seen = set()
        properties: List[RecentProperty] = []
        for doc in docs:
            property_data = doc.get("property_data") or {}
            address = (property_data.get("address") or "").strip()
            if not address:
                continue
            key = normalize_address(address)
            if key in seen:
                continue
            seen.add(key)
            properties.append(RecentProperty(
                id=f"{account_id}_{re.sub(r'[^a-z0-9]', '_', key)}",
                address=address,
                property_data=property_data,
                last_used=doc.get("timestamp"),
            ))
            if len(properties) >= limit:
                break
        return properties

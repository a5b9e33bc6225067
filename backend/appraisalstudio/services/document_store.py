"""AppraisalStudio Document Store Adapter

Thin wrapper over the Motor database for the three collections the core
uses:
- users: one record per account (field-level updates only)
- generations: append-only generation log
- billing_events: append-only billing audit log / webhook dedupe

Every user mutation goes through $set / $unset / $inc so that the usage
tracker and the subscription reconciler never clobber each other's fields.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
import logging

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from appraisalstudio.models.billing import BillingEventStatus
from appraisalstudio.models.plans import Plan
from appraisalstudio.models.user import default_user_document

logger = logging.getLogger(__name__)


class DocumentStore:
    """Collection-level operations on users, generations and billing_events."""

    def __init__(self, db):
        self.db = db

    # -------------------------------------------------------------------------
    # users
    # -------------------------------------------------------------------------

    async def get_user(self, account_id: str) -> Optional[Dict[str, Any]]:
        return await self.db.users.find_one({"account_id": account_id}, {"_id": 0})

    async def get_or_create_default_user(
        self, account_id: str, email: Optional[str] = None
    ) -> Tuple[Dict[str, Any], bool]:
        """Return (record, created).

        Side effect: a missing account is materialized with the free-tier
        defaults. $setOnInsert keeps a concurrent first touch from
        overwriting a record another request already created.
        """
        existing = await self.get_user(account_id)
        if existing:
            return existing, False

        defaults = default_user_document(account_id, email=email)
        defaults.pop("account_id", None)
        result = await self.db.users.update_one(
            {"account_id": account_id},
            {"$setOnInsert": defaults},
            upsert=True,
        )
        created = getattr(result, "upserted_id", None) is not None
        if created:
            logger.info(f"Materialized default account record for {account_id}")
        user = await self.get_user(account_id)
        return user, created

    async def update_user_fields(
        self,
        account_id: str,
        set_fields: Optional[Dict[str, Any]] = None,
        unset_fields: Optional[List[str]] = None,
        inc_fields: Optional[Dict[str, int]] = None,
        max_fields: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Field-scoped update. Always stamps updated_at. Returns True if a record matched.

        max_fields only ever move forward ($max), e.g. last_billing_event_at.
        """
        update: Dict[str, Any] = {
            "$set": {**(set_fields or {}), "updated_at": datetime.now(timezone.utc)},
        }
        if unset_fields:
            update["$unset"] = {field: "" for field in unset_fields}
        if inc_fields:
            update["$inc"] = dict(inc_fields)
        if max_fields:
            update["$max"] = dict(max_fields)

        result = await self.db.users.update_one({"account_id": account_id}, update)
        return getattr(result, "matched_count", 0) > 0

    async def find_user_by_field(self, field: str, value: Any) -> Optional[Dict[str, Any]]:
        return await self.db.users.find_one({field: value}, {"_id": 0})

    async def increment_usage_if_allowed(self, account_id: str) -> Optional[Dict[str, Any]]:
        """Conditional atomic increment of usage_count.

        Matches only when the account may still generate (agency plan, or
        usage_count < usage_limit), so two racing requests cannot both take
        the last unit. Returns the updated record, or None if rejected.
        """
        return await self.db.users.find_one_and_update(
            {
                "account_id": account_id,
                "$or": [
                    {"plan": Plan.AGENCY.value},
                    {"$expr": {"$lt": ["$usage_count", "$usage_limit"]}},
                ],
            },
            {
                "$inc": {"usage_count": 1},
                "$set": {"updated_at": datetime.now(timezone.utc)},
            },
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )

    # -------------------------------------------------------------------------
    # generations
    # -------------------------------------------------------------------------

    async def add_generation(self, doc: Dict[str, Any]) -> str:
        await self.db.generations.insert_one(dict(doc))
        return doc["generation_id"]

    async def get_generation(self, generation_id: str) -> Optional[Dict[str, Any]]:
        return await self.db.generations.find_one({"generation_id": generation_id}, {"_id": 0})

    async def delete_generation(self, generation_id: str) -> bool:
        result = await self.db.generations.delete_one({"generation_id": generation_id})
        return getattr(result, "deleted_count", 0) > 0

    async def find_generations(
        self,
        query: Dict[str, Any],
        skip: int = 0,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Most recent first."""
        cursor = self.db.generations.find(query, {"_id": 0}).sort("timestamp", DESCENDING)
        if skip:
            cursor = cursor.skip(skip)
        cursor = cursor.limit(limit)
        return await cursor.to_list(limit)

    async def count_generations(self, query: Dict[str, Any]) -> int:
        return await self.db.generations.count_documents(query)

    # -------------------------------------------------------------------------
    # billing_events
    # -------------------------------------------------------------------------

    async def find_billing_event(self, event_id: str) -> Optional[Dict[str, Any]]:
        return await self.db.billing_events.find_one({"event_id": event_id}, {"_id": 0})

    async def insert_billing_event(self, doc: Dict[str, Any]) -> bool:
        """Insert a webhook event record. False if the event_id is already recorded."""
        try:
            await self.db.billing_events.insert_one(dict(doc))
        except DuplicateKeyError:
            return False
        return True

    async def claim_billing_event(
        self,
        event_id: str,
        stale_before: datetime,
        set_fields: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """Atomically take over a FAILED event, or a PROCESSING one whose claim
        is older than stale_before. Returns the claimed record, or None if
        another delivery holds it (or it has already finished).
        """
        return await self.db.billing_events.find_one_and_update(
            {
                "event_id": event_id,
                "$or": [
                    {"status": BillingEventStatus.FAILED.value},
                    {"status": BillingEventStatus.PROCESSING.value, "claimed_at": {"$lt": stale_before}},
                    {"status": BillingEventStatus.PROCESSING.value, "claimed_at": {"$exists": False}},
                ],
            },
            {"$set": set_fields},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )

    async def update_billing_event(self, event_id: str, set_fields: Dict[str, Any]) -> None:
        await self.db.billing_events.update_one({"event_id": event_id}, {"$set": set_fields})

    async def add_billing_event(self, doc: Dict[str, Any]) -> None:
        """Append a processor-action record (no dedupe key)."""
        await self.db.billing_events.insert_one(dict(doc))

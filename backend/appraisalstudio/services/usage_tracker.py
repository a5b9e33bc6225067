"""AppraisalStudio Usage Tracker

Records one generation and counts it against the account's quota:
1. Re-read the stored account record (never a client-cached copy)
2. Entitlement check - rejected calls perform no writes
3. Append the generation record
4. Conditional atomic increment of usage_count
5. If the increment is refused (a concurrent request took the last unit),
   remove the record appended in step 3 and report the rejection

Success is only reported once both the record and the increment exist.
"""

from typing import Any, Dict, Optional, Union
import logging

from pydantic import BaseModel

from appraisalstudio.errors import ValidationFailed
from appraisalstudio.models.generations import ContentType, GenerationRecord, PropertyFields
from appraisalstudio.models.plans import RemainingQuota
from appraisalstudio.services import entitlement
from appraisalstudio.services.document_store import DocumentStore

logger = logging.getLogger(__name__)


class UsageRecordResult(BaseModel):
    """Outcome of record_generation."""
    accepted: bool
    remaining: Optional[RemainingQuota] = None
    usage_count: Optional[int] = None
    generation_id: Optional[str] = None
    needs_upgrade: bool = False


class UsageTracker:
    """Appends generation records and meters usage."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def record_generation(
        self,
        account_id: str,
        content_type: Union[ContentType, str],
        content: str,
        property_data: Union[PropertyFields, Dict[str, Any]],
    ) -> UsageRecordResult:
        if not account_id:
            raise ValidationFailed("Account ID is required")
        try:
            content_type = ContentType(content_type)
        except ValueError:
            raise ValidationFailed(f"Invalid content type: {content_type}")

        if isinstance(property_data, PropertyFields):
            snapshot = property_data.model_dump(exclude_none=True)
        else:
            snapshot = dict(property_data or {})

        user, _ = await self.store.get_or_create_default_user(account_id)

        if not entitlement.can_generate(user):
            logger.info(
                "Usage limit reached for account %s (%s/%s)",
                account_id, user.get("usage_count"), user.get("usage_limit"),
            )
            return UsageRecordResult(
                accepted=False,
                remaining=entitlement.remaining(user),
                usage_count=user.get("usage_count", 0),
                needs_upgrade=True,
            )

        record = GenerationRecord(
            account_id=account_id,
            content_type=content_type,
            content=content,
            property_data=snapshot,
        )
        doc = record.model_dump(mode="python")
        doc["content_type"] = content_type.value
        await self.store.add_generation(doc)

        updated = await self.store.increment_usage_if_allowed(account_id)
        if updated is None:
            # Lost the race for the last unit: undo the append
            logger.warning(
                "Conditional usage increment refused for account %s; removing generation %s",
                account_id, record.generation_id,
            )
            await self.store.delete_generation(record.generation_id)
            latest = await self.store.get_user(account_id)
            return UsageRecordResult(
                accepted=False,
                remaining=entitlement.remaining(latest),
                usage_count=(latest or {}).get("usage_count", 0),
                needs_upgrade=True,
            )

        logger.info(
            "Recorded generation %s (%s) for account %s; usage %s/%s",
            record.generation_id, content_type.value, account_id,
            updated.get("usage_count"), updated.get("usage_limit"),
        )
        return UsageRecordResult(
            accepted=True,
            remaining=entitlement.remaining(updated),
            usage_count=updated.get("usage_count"),
            generation_id=record.generation_id,
        )

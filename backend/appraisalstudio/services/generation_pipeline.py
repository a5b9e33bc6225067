"""AppraisalStudio Generation Pipeline

Sequential stages, each with a typed result:
1. PermissionCheck - entitlement against the freshly stored record
2. generate() - external content model (opaque, may fail)
3. UsageRecordResult - append + conditional increment

A failing stage stops the pipeline before any later stage writes. The
usage tracker re-checks entitlement itself, so a billing event landing
between stages 1 and 3 is still honoured.
"""

from enum import Enum
from typing import Awaitable, Callable, Optional
import logging

from pydantic import BaseModel

from appraisalstudio.errors import ExternalServiceError, ValidationFailed
from appraisalstudio.models.generations import ContentType, PropertyFields
from appraisalstudio.models.plans import RemainingQuota
from appraisalstudio.services import entitlement
from appraisalstudio.services.document_store import DocumentStore
from appraisalstudio.services.usage_tracker import UsageTracker

logger = logging.getLogger(__name__)

Generator = Callable[[PropertyFields, ContentType], Awaitable[str]]


class PermissionCheck(BaseModel):
    allowed: bool
    remaining: RemainingQuota


class GenerationStatus(str, Enum):
    GENERATED = "GENERATED"
    LIMIT_REACHED = "LIMIT_REACHED"


class GenerationResult(BaseModel):
    status: GenerationStatus
    content: Optional[str] = None
    generation_id: Optional[str] = None
    remaining: Optional[RemainingQuota] = None
    needs_upgrade: bool = False


class GenerationPipeline:
    """check -> generate -> record"""

    def __init__(self, store: DocumentStore, usage_tracker: UsageTracker, generate: Generator):
        self.store = store
        self.usage_tracker = usage_tracker
        self.generate = generate

    async def check_permission(self, account_id: str) -> PermissionCheck:
        user, _ = await self.store.get_or_create_default_user(account_id)
        return PermissionCheck(
            allowed=entitlement.can_generate(user),
            remaining=entitlement.remaining(user),
        )

    async def run(
        self,
        account_id: str,
        property_data: PropertyFields,
        content_type: ContentType,
    ) -> GenerationResult:
        if not account_id:
            raise ValidationFailed("Account ID is required")

        permission = await self.check_permission(account_id)
        if not permission.allowed:
            return GenerationResult(
                status=GenerationStatus.LIMIT_REACHED,
                remaining=permission.remaining,
                needs_upgrade=True,
            )

        try:
            content = await self.generate(property_data, content_type)
        except ExternalServiceError:
            raise
        except Exception as e:
            logger.error(f"Generator failed for account {account_id}: {e}")
            raise ExternalServiceError("Failed to generate content. Please try again.") from e

        if not content:
            raise ExternalServiceError("Failed to generate content. Please try again.")

        recorded = await self.usage_tracker.record_generation(
            account_id=account_id,
            content_type=content_type,
            content=content,
            property_data=property_data,
        )
        if not recorded.accepted:
            # Quota ran out while the model was generating; content is discarded
            return GenerationResult(
                status=GenerationStatus.LIMIT_REACHED,
                remaining=recorded.remaining,
                needs_upgrade=True,
            )

        return GenerationResult(
            status=GenerationStatus.GENERATED,
            content=content,
            generation_id=recorded.generation_id,
            remaining=recorded.remaining,
        )

"""
Usage tracker: append + conditional increment, rejection without writes,
and the race for the last unit of quota.
"""
import asyncio

import pytest

from appraisalstudio.errors import ValidationFailed
from appraisalstudio.models.generations import PropertyFields
from appraisalstudio.services.usage_tracker import UsageTracker

pytestmark = pytest.mark.asyncio

PROPERTY = PropertyFields(address="12 Elm Street, Springfield", price="450000", bedrooms="3")


async def _record(tracker, account_id="acct-1", content="Great home"):
    return await tracker.record_generation(
        account_id=account_id,
        content_type="description",
        content=content,
        property_data=PROPERTY,
    )


async def test_fresh_account_counts_up_to_limit_then_rejects(store):
    tracker = UsageTracker(store)

    for n in range(1, 6):
        result = await _record(tracker)
        assert result.accepted is True
        assert result.usage_count == n
        assert result.remaining == 5 - n
        assert store.users["acct-1"]["usage_count"] == n

    rejected = await _record(tracker)
    assert rejected.accepted is False
    assert rejected.needs_upgrade is True
    assert rejected.remaining == 0
    assert store.users["acct-1"]["usage_count"] == 5
    assert len(store.generations) == 5


async def test_generation_record_snapshots_property(store):
    tracker = UsageTracker(store)
    result = await _record(tracker)

    doc = store.generations[result.generation_id]
    assert doc["account_id"] == "acct-1"
    assert doc["content_type"] == "description"
    assert doc["property_data"]["address"] == "12 Elm Street, Springfield"
    assert doc["timestamp"] is not None


async def test_rejected_call_performs_no_writes(store):
    store.seed_user("acct-1", usage_count=5, usage_limit=5)
    tracker = UsageTracker(store)

    result = await _record(tracker)

    assert result.accepted is False
    assert store.generations == {}
    assert store.users["acct-1"]["usage_count"] == 5


async def test_agency_is_never_capped(store):
    store.seed_user("acct-1", plan="agency", usage_limit=-1, usage_count=250)
    tracker = UsageTracker(store)

    result = await _record(tracker)

    assert result.accepted is True
    assert result.remaining == "unlimited"
    assert store.users["acct-1"]["usage_count"] == 251


async def test_concurrent_calls_for_last_unit_accept_exactly_one(store):
    store.seed_user("acct-1", usage_count=4, usage_limit=5)
    tracker = UsageTracker(store)

    results = await asyncio.gather(
        _record(tracker, content="first"),
        _record(tracker, content="second"),
    )

    accepted = [r for r in results if r.accepted]
    rejected = [r for r in results if not r.accepted]
    assert len(accepted) == 1
    assert len(rejected) == 1
    assert rejected[0].needs_upgrade is True
    assert store.users["acct-1"]["usage_count"] == 5
    # The losing request's appended record is removed again
    assert list(store.generations) == [accepted[0].generation_id]


async def test_missing_account_id_rejected_before_io(store):
    tracker = UsageTracker(store)
    with pytest.raises(ValidationFailed):
        await _record(tracker, account_id="")
    assert store.users == {}


async def test_unknown_content_type_rejected(store):
    tracker = UsageTracker(store)
    with pytest.raises(ValidationFailed):
        await tracker.record_generation("acct-1", "haiku", "text", PROPERTY)
    assert store.generations == {}

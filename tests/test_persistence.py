"""Tests for the draft persistence gateway."""

import asyncio
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from takaful_quote.database.postgres import PostgresDB
from takaful_quote.quote.errors import AggregateLockedError, InvalidStatusTransition, PersistenceFailure
from takaful_quote.quote.models import InsuranceType, QuoteSource, QuoteStatus
from takaful_quote.quote.persistence import DraftHandle, DraftPersistenceGateway, merge_partial
from takaful_quote.quote.validation import FormValidationError


class FlakyStore(PostgresDB):
    """Draft store whose writes fail while `failing` is set."""

    def __init__(self):
        super().__init__()
        self.failing = False

    def save_quote_draft(self, document):
        if self.failing:
            raise ConnectionError("database unavailable")
        return super().save_quote_draft(document)


@pytest.fixture
def gateway(db, cache):
    return DraftPersistenceGateway(db, cache)


@pytest.fixture
def handle():
    return DraftHandle("sess-1", agent_id="agent-1", agent_name="Agent One")


@pytest.mark.asyncio
async def test_first_write_assigns_identity(gateway, handle, db):
    quote = await gateway.persist(handle, {"customer": {"cpr": "880101234"}})

    assert quote.id
    assert quote.quote_reference == f"Q-{datetime.utcnow().year}-0001"
    assert quote.status == QuoteStatus.DRAFT
    assert quote.source == QuoteSource.AGENT_PORTAL
    assert quote.agent_id == "agent-1"
    assert quote.agent_name == "Agent One"
    assert isinstance(quote.created_at, datetime)
    assert db.get_quote_draft(quote.id)["customer"]["cpr"] == "880101234"


@pytest.mark.asyncio
async def test_identity_fields_are_never_reassigned(gateway, handle):
    first = await gateway.persist(handle, {})
    second = await gateway.persist(handle, {"id": "other", "quote_reference": "Q-1999-9999", "agent_id": "intruder"})

    assert second.id == first.id
    assert second.quote_reference == first.quote_reference
    assert second.agent_id == "agent-1"
    assert second.created_at == first.created_at


@pytest.mark.asyncio
async def test_repeated_identical_write_is_a_no_op(gateway, handle, db):
    quote = await gateway.persist(handle, {"customer": {"cpr": "880101234"}})
    again = await gateway.persist(handle, {"customer": {"cpr": "880101234"}})
    await gateway.persist(handle, {})

    assert again == quote
    assert len(db.list_quote_drafts()) == 1
    assert [e.action for e in db.get_audit_log(quote.id)] == ["QUOTE_CREATED"]
    assert db.generate_quote_reference().endswith("-0002")


@pytest.mark.asyncio
async def test_nested_objects_merge_key_by_key(gateway, handle):
    await gateway.persist(handle, {"customer": {"cpr": "880101234", "full_name": "Sara"}})
    quote = await gateway.persist(handle, {"customer": {"mobile": "33112233"}})

    assert quote.customer.cpr == "880101234"
    assert quote.customer.full_name == "Sara"
    assert quote.customer.mobile == "33112233"


@pytest.mark.asyncio
async def test_explicit_none_clears_a_field(gateway, handle):
    await gateway.persist(handle, {"discount_code": "ZA15MO125", "discount_percent": 15})
    quote = await gateway.persist(handle, {"discount_code": None, "discount_percent": None})

    assert quote.discount_code is None
    assert quote.discount_percent == 0


@pytest.mark.asyncio
async def test_switching_insurance_type_drops_the_other_type_details(gateway, handle):
    await gateway.persist(handle, {"vehicle": {"plate_number": "123456"}, "risk_factors": {"age_under_24": True}})
    quote = await gateway.persist(handle, {"insurance_type": "TRAVEL", "travel_criteria": {"destination": "SCHENGEN"}})

    assert quote.insurance_type == InsuranceType.TRAVEL
    assert quote.vehicle is None
    assert quote.risk_factors is None
    assert quote.travel_criteria.destination.value == "SCHENGEN"


@pytest.mark.asyncio
async def test_model_invariants_surface_as_validation_errors(gateway, handle):
    with pytest.raises(FormValidationError):
        await gateway.persist(handle, {"discount_code": "ZA15MO125"})
    with pytest.raises(FormValidationError):
        await gateway.persist(handle, {"insurance_type": "TRAVEL", "vehicle": {"plate_number": "1"}})
    with pytest.raises(FormValidationError) as exc:
        await gateway.persist(handle, {"status": "ARCHIVED"})
    assert "status" in exc.value.field_errors
    # Rejected writes leave the aggregate untouched
    assert handle.aggregate.id is None


@pytest.mark.asyncio
async def test_status_never_downgrades_when_not_requested(gateway, handle):
    await gateway.persist(handle, {"status": "PENDING_APPROVAL"})
    quote = await gateway.persist(handle, {"customer": {"full_name": "Sara"}})
    assert quote.status == QuoteStatus.PENDING_APPROVAL

    quote = await gateway.persist(handle, {"status": None})
    assert quote.status == QuoteStatus.PENDING_APPROVAL


@pytest.mark.asyncio
async def test_forbidden_transition_is_rejected(gateway, handle):
    await gateway.persist(handle, {})
    with pytest.raises(InvalidStatusTransition) as exc:
        await gateway.persist(handle, {"status": "ISSUED"})
    assert exc.value.current == QuoteStatus.DRAFT
    assert handle.aggregate.status == QuoteStatus.DRAFT


@pytest.mark.asyncio
async def test_issued_quote_is_locked(gateway, handle):
    await gateway.persist(handle, {"status": "PAYMENT_PENDING"})
    await gateway.persist(handle, {"status": "ISSUED"})

    with pytest.raises(AggregateLockedError):
        await gateway.persist(handle, {"customer": {"full_name": "Changed"}})
    with pytest.raises(AggregateLockedError):
        await gateway.persist(handle, {})


@pytest.mark.asyncio
async def test_failed_durable_write_keeps_the_change_and_flush_retries(cache, handle):
    store = FlakyStore()
    gateway = DraftPersistenceGateway(store, cache)
    store.failing = True

    with pytest.raises(PersistenceFailure):
        await gateway.persist(handle, {"customer": {"cpr": "880101234"}})

    assert handle.pending_write is True
    assert handle.aggregate.customer.cpr == "880101234"
    reference = handle.aggregate.quote_reference
    assert reference
    assert cache.load_quote_snapshot("sess-1")["customer"]["cpr"] == "880101234"
    assert store.get_quote_draft(handle.aggregate.id) is None

    store.failing = False
    quote = await gateway.flush(handle)

    assert handle.pending_write is False
    assert quote.quote_reference == reference
    assert store.get_quote_draft(quote.id)["quote_reference"] == reference


@pytest.mark.asyncio
async def test_identical_write_after_failure_still_retries(cache, handle):
    store = FlakyStore()
    gateway = DraftPersistenceGateway(store, cache)
    store.failing = True
    with pytest.raises(PersistenceFailure):
        await gateway.persist(handle, {"customer": {"cpr": "880101234"}})

    store.failing = False
    await gateway.persist(handle, {"customer": {"cpr": "880101234"}})
    assert handle.pending_write is False
    assert store.get_quote_draft(handle.aggregate.id) is not None


@pytest.mark.asyncio
async def test_session_cache_failure_is_not_fatal(db, handle):
    cache = MagicMock()
    cache.save_quote_snapshot.side_effect = RuntimeError("redis down")
    gateway = DraftPersistenceGateway(db, cache)

    quote = await gateway.persist(handle, {"customer": {"cpr": "880101234"}})

    assert handle.pending_write is False
    assert db.get_quote_draft(quote.id) is not None


@pytest.mark.asyncio
async def test_overlapping_writes_all_land_on_one_aggregate(gateway, handle, db):
    await asyncio.gather(
        gateway.persist(handle, {"customer": {"cpr": "880101234"}}),
        gateway.persist(handle, {"subscriber_number": "33112233"}),
        gateway.persist(handle, {"customer": {"full_name": "Sara"}}),
        gateway.persist(handle, {"contact_number_for_link": "33112233"}),
    )

    quote = handle.aggregate
    assert quote.customer.cpr == "880101234"
    assert quote.customer.full_name == "Sara"
    assert quote.subscriber_number == "33112233"
    assert quote.contact_number_for_link == "33112233"
    assert len(db.list_quote_drafts()) == 1
    assert db.get_quote_draft(quote.id)["customer"]["full_name"] == "Sara"


@pytest.mark.asyncio
async def test_audit_trail_records_business_changes(gateway, handle, db):
    await gateway.persist(handle, {"vehicle": {"plate_number": "123456", "value": 15000}})
    await gateway.persist(handle, {"vehicle": {"value": 16000}})
    await gateway.persist(handle, {"selected_plan_id": "zain-super"})
    quote = await gateway.persist(handle, {"status": "PENDING_APPROVAL"})

    entries = db.get_audit_log(quote.id)
    assert [e.action for e in entries] == ["QUOTE_CREATED", "VEHICLE_UPDATE", "PLAN_CHANGE", "STATUS_CHANGE"]
    assert entries[1].details == {"from": 15000.0, "to": 16000.0}
    assert entries[3].details == {"from": "DRAFT", "to": "PENDING_APPROVAL"}
    assert all(e.actor == "Agent One" for e in entries)


@pytest.mark.asyncio
async def test_reads_by_id_reference_and_subscriber(gateway, handle):
    quote = await gateway.persist(handle, {"subscriber_number": "33112233"})

    assert gateway.load(quote.id) == quote
    assert gateway.load_by_reference(quote.quote_reference).id == quote.id
    assert gateway.find_open_draft("33112233").id == quote.id
    assert gateway.find_open_draft("39000000") is None
    assert gateway.find_open_draft("33112233", InsuranceType.MOTOR).id == quote.id
    assert gateway.find_open_draft("33112233", InsuranceType.TRAVEL) is None
    assert gateway.load_session_draft("sess-1").id == quote.id

    gateway.discard_session_draft("sess-1")
    assert gateway.load_session_draft("sess-1") is None


@pytest.mark.asyncio
async def test_adopt_replaces_the_session_aggregate(gateway, handle):
    stored = await gateway.persist(DraftHandle("other"), {"subscriber_number": "33112233"})

    await gateway.adopt(handle, stored)

    assert handle.aggregate.id == stored.id
    assert handle.pending_write is False
    assert gateway.load_session_draft("sess-1").id == stored.id


def test_merge_partial_ignores_set_identity_fields():
    merged = merge_partial({"id": "a", "customer": {"cpr": "1"}}, {"id": "b", "customer": {"email": None, "mobile": "2"}})
    assert merged == {"id": "a", "customer": {"cpr": "1", "mobile": "2"}}


@pytest.mark.asyncio
async def test_release_forgets_idle_locks(gateway, handle):
    await gateway.persist(handle, {"subscriber_number": "33112233"})
    assert set(gateway._locks) == {handle.quote_id, "draft:sess-1"}

    gateway.release(handle)
    assert gateway._locks == {}

    # A held lock stays until its writer is done
    other = DraftHandle("sess-2")
    await gateway.persist(other, {"subscriber_number": "39000000"})
    lock = gateway._locks[other.quote_id]
    async with lock:
        gateway.release(other)
        assert other.quote_id in gateway._locks
    gateway.release(other)
    assert gateway._locks == {}

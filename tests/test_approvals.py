"""Tests for the exception approval desk."""

import asyncio

import pytest

from takaful_quote.quote.approvals import ApprovalDesk, decision_message
from takaful_quote.quote.errors import InvalidStatusTransition, NotFoundError
from takaful_quote.quote.models import QuoteRequest, QuoteStatus


def _store_quote(db, quote_id="q-1", status=QuoteStatus.PENDING_APPROVAL, agent_id="agent-9"):
    quote = QuoteRequest(
        id=quote_id,
        quote_reference=db.generate_quote_reference(2025),
        status=status,
        agent_id=agent_id,
        selected_plan_id="zain-super",
        provider="GIG",
        plan_name="Zain Super",
    )
    db.save_quote_draft(quote.model_dump(mode="json"))
    return quote


def test_open_ticket_needs_a_saved_quote(db):
    with pytest.raises(ValueError):
        ApprovalDesk(db).open_ticket(QuoteRequest())


def test_open_ticket_is_reused_while_open(db):
    desk = ApprovalDesk(db)
    quote = _store_quote(db)

    first = desk.open_ticket(quote)
    second = desk.open_ticket(quote)

    assert second is first
    assert first.provider == "GIG"
    assert desk.list_open() == [first]
    assert desk.open_ticket_for("q-1") is first


@pytest.mark.asyncio
async def test_resolve_without_session_updates_stored_quote(db):
    desk = ApprovalDesk(db)
    quote = _store_quote(db)
    ticket = desk.open_ticket(quote)

    resolved = await desk.resolve(ticket.ticket_id, approved=True)

    assert resolved.approved is True
    assert resolved.decided_by == "Credit Control"
    stored = db.get_quote_draft("q-1")
    assert stored["status"] == "APPROVAL_GRANTED"
    assert stored["approval_handled_at"]
    actions = [e.action for e in db.get_audit_log("q-1")]
    assert actions[-2:] == ["STATUS_CHANGE", "APPROVAL_GRANTED"]
    notes = db.get_notifications("agent-9")
    assert [n.kind for n in notes] == ["APPROVAL_GRANTED"]
    assert quote.quote_reference in notes[0].message


@pytest.mark.asyncio
async def test_callback_receives_the_decision(db):
    desk = ApprovalDesk(db)
    quote = _store_quote(db)
    received = []

    async def on_decision(ticket):
        received.append(ticket)

    ticket = desk.open_ticket(quote, on_decision=on_decision)
    await desk.resolve(ticket.ticket_id, approved=False, decided_by="Fatima")

    assert received == [ticket]
    assert ticket.approved is False
    assert ticket.decided_by == "Fatima"
    # The live session persists the decision, storage is left to it
    assert db.get_quote_draft("q-1")["status"] == "PENDING_APPROVAL"


@pytest.mark.asyncio
async def test_detached_ticket_falls_back_to_storage(db):
    desk = ApprovalDesk(db)
    quote = _store_quote(db)

    async def on_decision(ticket):
        raise AssertionError("detached callback must not run")

    ticket = desk.open_ticket(quote, on_decision=on_decision)
    desk.detach("q-1")
    await desk.resolve(ticket.ticket_id, approved=False)

    assert db.get_quote_draft("q-1")["status"] == "APPROVAL_REJECTED"


@pytest.mark.asyncio
async def test_unknown_and_decided_tickets(db):
    desk = ApprovalDesk(db)
    with pytest.raises(NotFoundError):
        await desk.resolve("missing", approved=True)

    ticket = desk.open_ticket(_store_quote(db))
    await desk.resolve(ticket.ticket_id, approved=True)
    with pytest.raises(InvalidStatusTransition):
        await desk.resolve(ticket.ticket_id, approved=False)


@pytest.mark.asyncio
async def test_process_approval_without_an_open_ticket(db):
    desk = ApprovalDesk(db)
    _store_quote(db)

    ticket = await desk.process_approval("q-1", approved=False, decided_by="Fatima")

    assert ticket.approved is False
    assert db.get_quote_draft("q-1")["status"] == "APPROVAL_REJECTED"
    assert "can still pay in cash" in decision_message(ticket)


@pytest.mark.asyncio
async def test_process_approval_rejects_unknown_or_wrong_status(db):
    desk = ApprovalDesk(db)
    with pytest.raises(NotFoundError):
        await desk.process_approval("missing", approved=True)

    _store_quote(db, quote_id="q-2", status=QuoteStatus.DRAFT)
    with pytest.raises(InvalidStatusTransition):
        await desk.process_approval("q-2", approved=True)


@pytest.mark.asyncio
async def test_process_approval_uses_the_open_ticket(db):
    desk = ApprovalDesk(db)
    ticket = desk.open_ticket(_store_quote(db))

    resolved = await desk.process_approval("q-1", approved=True)
    assert resolved is ticket


@pytest.mark.asyncio
async def test_simulated_adjudicator_grants(db):
    desk = ApprovalDesk(db, simulate="grant", simulate_delay_seconds=0)
    ticket = desk.open_ticket(_store_quote(db))

    for _ in range(5):
        await asyncio.sleep(0)

    assert ticket.approved is True
    assert db.get_quote_draft("q-1")["status"] == "APPROVAL_GRANTED"
    await desk.shutdown()


@pytest.mark.asyncio
async def test_shutdown_cancels_pending_simulations(db):
    desk = ApprovalDesk(db, simulate="reject", simulate_delay_seconds=60)
    ticket = desk.open_ticket(_store_quote(db))

    await desk.shutdown()

    assert ticket.is_open
    assert db.get_quote_draft("q-1")["status"] == "PENDING_APPROVAL"

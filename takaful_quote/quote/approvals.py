"""
Exception approval desk

An installment exception is a ticket opened when the agent requests it and
resolved later by Credit Control (an API call or, for demos, a simulated
adjudicator). Resolution hands the decision to the session that opened the
ticket; quotes without a live session are updated in durable storage directly.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Set

from takaful_quote.quote.errors import InvalidStatusTransition, NotFoundError
from takaful_quote.quote.models import QuoteRequest, QuoteStatus, can_transition

logger = logging.getLogger(__name__)

TICKET_OPEN = "OPEN"
TICKET_GRANTED = "GRANTED"
TICKET_REJECTED = "REJECTED"


@dataclass
class ApprovalTicket:
    ticket_id: str
    quote_id: str
    quote_reference: Optional[str]
    agent_id: Optional[str]
    provider: Optional[str]
    plan_name: Optional[str]
    state: str = TICKET_OPEN
    decided_by: Optional[str] = None
    opened_at: datetime = field(default_factory=datetime.utcnow)
    decided_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.state == TICKET_OPEN

    @property
    def approved(self) -> Optional[bool]:
        if self.is_open:
            return None
        return self.state == TICKET_GRANTED


# Called with the resolved ticket; persists the decision on the live aggregate.
DecisionCallback = Callable[[ApprovalTicket], Awaitable[None]]


def decision_status(approved: bool) -> QuoteStatus:
    return QuoteStatus.APPROVAL_GRANTED if approved else QuoteStatus.APPROVAL_REJECTED


def decision_message(ticket: ApprovalTicket) -> str:
    ref = ticket.quote_reference or ticket.quote_id
    if ticket.approved:
        return f"Installment exception approved for quote {ref}. You can now send the installment payment link."
    return f"Installment exception rejected for quote {ref}. The customer can still pay in cash."


class ApprovalDesk:
    def __init__(
        self,
        draft_store,
        *,
        decided_by: str = "Credit Control",
        simulate: Optional[str] = None,
        simulate_delay_seconds: float = 1.2,
    ):
        self.draft_store = draft_store
        self.decided_by = decided_by
        self.simulate = simulate
        self.simulate_delay_seconds = simulate_delay_seconds
        self._tickets: Dict[str, ApprovalTicket] = {}
        self._callbacks: Dict[str, DecisionCallback] = {}
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------ #
    # Tickets
    # ------------------------------------------------------------------ #
    def open_ticket(self, quote: QuoteRequest, on_decision: Optional[DecisionCallback] = None) -> ApprovalTicket:
        if not quote.id:
            raise ValueError("Cannot open an approval ticket for an unsaved quote")

        existing = self.open_ticket_for(quote.id)
        if existing is not None:
            if on_decision is not None:
                self._callbacks[existing.ticket_id] = on_decision
            return existing

        ticket = ApprovalTicket(
            ticket_id=str(uuid.uuid4()),
            quote_id=quote.id,
            quote_reference=quote.quote_reference,
            agent_id=quote.agent_id,
            provider=quote.provider,
            plan_name=quote.plan_name,
        )
        self._tickets[ticket.ticket_id] = ticket
        if on_decision is not None:
            self._callbacks[ticket.ticket_id] = on_decision
        logger.info("[Approvals] Opened ticket %s for quote %s", ticket.ticket_id, quote.quote_reference or quote.id)

        if self.simulate:
            self._schedule_simulation(ticket)
        return ticket

    def get_ticket(self, ticket_id: str) -> Optional[ApprovalTicket]:
        return self._tickets.get(ticket_id)

    def open_ticket_for(self, quote_id: str) -> Optional[ApprovalTicket]:
        for ticket in self._tickets.values():
            if ticket.quote_id == quote_id and ticket.is_open:
                return ticket
        return None

    def list_open(self) -> List[ApprovalTicket]:
        return [t for t in self._tickets.values() if t.is_open]

    def detach(self, quote_id: str) -> None:
        """Forget the live-session callback for a quote; later decisions go to storage."""
        for ticket_id, ticket in self._tickets.items():
            if ticket.quote_id == quote_id:
                self._callbacks.pop(ticket_id, None)

    # ------------------------------------------------------------------ #
    # Decisions
    # ------------------------------------------------------------------ #
    async def resolve(self, ticket_id: str, approved: bool, decided_by: Optional[str] = None) -> ApprovalTicket:
        """
        Record Credit Control's decision on a ticket.

        Raises:
            NotFoundError: unknown ticket
            InvalidStatusTransition: the ticket was already decided
        """
        ticket = self._tickets.get(ticket_id)
        if ticket is None:
            raise NotFoundError(f"Approval ticket {ticket_id} not found", details={"ticket_id": ticket_id})
        if not ticket.is_open:
            raise InvalidStatusTransition(ticket.state, TICKET_GRANTED if approved else TICKET_REJECTED)

        ticket.state = TICKET_GRANTED if approved else TICKET_REJECTED
        ticket.decided_by = decided_by or self.decided_by
        ticket.decided_at = datetime.utcnow()
        logger.info("[Approvals] Ticket %s %s by %s", ticket.ticket_id, ticket.state, ticket.decided_by)

        callback = self._callbacks.pop(ticket.ticket_id, None)
        if callback is not None:
            await callback(ticket)
        else:
            self._apply_to_stored_quote(ticket)

        self._record(ticket)
        return ticket

    async def process_approval(self, quote_id: str, approved: bool, decided_by: Optional[str] = None) -> ApprovalTicket:
        """Decide on a quote by id, whether or not a ticket is open in this process."""
        ticket = self.open_ticket_for(quote_id)
        if ticket is not None:
            return await self.resolve(ticket.ticket_id, approved, decided_by)

        doc = self.draft_store.get_quote_draft(quote_id)
        if doc is None:
            raise NotFoundError(f"Quote {quote_id} not found", details={"quote_id": quote_id})
        quote = QuoteRequest.model_validate(doc)
        if quote.status != QuoteStatus.PENDING_APPROVAL:
            raise InvalidStatusTransition(quote.effective_status, decision_status(approved))

        ticket = ApprovalTicket(
            ticket_id=str(uuid.uuid4()),
            quote_id=quote_id,
            quote_reference=quote.quote_reference,
            agent_id=quote.agent_id,
            provider=quote.provider,
            plan_name=quote.plan_name,
        )
        self._tickets[ticket.ticket_id] = ticket
        return await self.resolve(ticket.ticket_id, approved, decided_by)

    def _apply_to_stored_quote(self, ticket: ApprovalTicket) -> None:
        doc = self.draft_store.get_quote_draft(ticket.quote_id)
        if doc is None:
            raise NotFoundError(f"Quote {ticket.quote_id} not found", details={"quote_id": ticket.quote_id})

        quote = QuoteRequest.model_validate(doc)
        status = decision_status(bool(ticket.approved))
        if not can_transition(quote.status, status):
            raise InvalidStatusTransition(quote.effective_status, status)

        updated = quote.model_copy(update={"status": status, "approval_handled_at": ticket.decided_at})
        self.draft_store.save_quote_draft(updated.model_dump(mode="json"))

    def _record(self, ticket: ApprovalTicket) -> None:
        action = "APPROVAL_GRANTED" if ticket.approved else "APPROVAL_REJECTED"
        self.draft_store.add_audit_entry(
            ticket.quote_id,
            action,
            ticket.decided_by,
            {"ticket_id": ticket.ticket_id, "provider": ticket.provider, "plan_name": ticket.plan_name},
        )
        if ticket.agent_id:
            self.draft_store.add_notification(ticket.agent_id, ticket.quote_id, action, decision_message(ticket))

    # ------------------------------------------------------------------ #
    # Simulated adjudicator
    # ------------------------------------------------------------------ #
    def _schedule_simulation(self, ticket: ApprovalTicket) -> None:
        task = asyncio.get_running_loop().create_task(self._simulate_decision(ticket.ticket_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _simulate_decision(self, ticket_id: str) -> None:
        await asyncio.sleep(self.simulate_delay_seconds)
        ticket = self._tickets.get(ticket_id)
        if ticket is None or not ticket.is_open:
            return
        try:
            await self.resolve(ticket_id, self.simulate == "grant", decided_by=self.decided_by)
        except Exception:
            logger.exception("[Approvals] Simulated decision failed for ticket %s", ticket_id)

    async def shutdown(self) -> None:
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

"""
Quick quote API

One `StepController` per agent session. Every session endpoint returns the
controller snapshot (step, aggregate, priced plans, gating flags, notices).
"""

import inspect
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from takaful_quote.quote.errors import AggregateLockedError, InvalidStatusTransition, NotFoundError, QuoteFlowError
from takaful_quote.quote.session import QuoteSessionManager
from takaful_quote.quote.validation import FormValidationError

logger = logging.getLogger(__name__)

router = APIRouter()

# Will be set by main.py after import
session_manager: QuoteSessionManager = None


def get_session_manager() -> QuoteSessionManager:
    """Dependency for the session manager"""
    if session_manager is None:
        raise HTTPException(status_code=503, detail="Quote service is not initialised")
    return session_manager


# ============================================================================
# REQUEST MODELS
# ============================================================================

class CreateSessionRequest(BaseModel):
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    insurance_type: Optional[str] = None
    quote_id: Optional[str] = None


class CustomerSearchRequest(BaseModel):
    cpr: str = ""


class FieldsRequest(BaseModel):
    fields: Dict[str, Any] = Field(default_factory=dict)


class InsuranceTypeRequest(BaseModel):
    insurance_type: str


class VehicleLookupRequest(BaseModel):
    plate_number: Optional[str] = None
    refresh: bool = False


class PlanRequest(BaseModel):
    plan_id: str


class PaymentMethodRequest(BaseModel):
    payment_method: str


class AddonsRequest(BaseModel):
    addon_ids: List[str] = Field(default_factory=list)


class DiscountRequest(BaseModel):
    code: str = ""


class DecisionRequest(BaseModel):
    approved: bool
    decided_by: Optional[str] = None


# ============================================================================
# ERROR MAPPING
# ============================================================================

def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, FormValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"error": "validation_error", "message": e.message, "field_errors": e.field_errors},
        )
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    if isinstance(e, (AggregateLockedError, InvalidStatusTransition)):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": type(e).__name__, "message": e.message, "details": e.details},
        )
    if isinstance(e, QuoteFlowError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    logger.error("Error processing quote request: %s", e, exc_info=True)
    return HTTPException(status_code=500, detail=str(e))


async def _run(manager: QuoteSessionManager, session_id: str, action: str, call) -> Dict[str, Any]:
    """Look up the session's controller, run one action and refresh the session metadata."""
    try:
        controller = await manager.get_controller(session_id)
        result = call(controller)
        if inspect.isawaitable(result):
            result = await result
        manager.touch(session_id, controller)
        return {"session_id": session_id, **result}
    except HTTPException:
        raise
    except Exception as e:
        logger.debug("Quote action %s failed for session %s", action, session_id)
        raise _http_error(e)


# ============================================================================
# SESSIONS
# ============================================================================

@router.post("/quote-sessions", tags=["Quote Sessions"])
async def create_quote_session(body: CreateSessionRequest, manager: QuoteSessionManager = Depends(get_session_manager)):
    """Start a quick quote session, optionally resuming a stored quote."""
    try:
        session_id, controller = await manager.create_session(
            agent_id=body.agent_id,
            agent_name=body.agent_name,
            insurance_type=body.insurance_type,
            quote_id=body.quote_id,
        )
        return {"session_id": session_id, **controller.snapshot()}
    except Exception as e:
        raise _http_error(e)


@router.get("/quote-sessions/{session_id}", tags=["Quote Sessions"])
async def get_quote_session(session_id: str, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "snapshot", lambda c: c.snapshot())


# Step 1 ---------------------------------------------------------------------

@router.post("/quote-sessions/{session_id}/customer/search", tags=["Quote Sessions"])
async def search_customer(session_id: str, body: CustomerSearchRequest, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "customer_search", lambda c: c.search_customer(body.cpr))


@router.patch("/quote-sessions/{session_id}/customer", tags=["Quote Sessions"])
async def update_customer(session_id: str, body: FieldsRequest, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "update_customer", lambda c: c.update_customer(body.fields))


@router.patch("/quote-sessions/{session_id}/subscriber", tags=["Quote Sessions"])
async def update_subscriber(session_id: str, body: FieldsRequest, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "update_subscriber", lambda c: c.update_subscriber(body.fields))


@router.post("/quote-sessions/{session_id}/eligibility", tags=["Quote Sessions"])
async def check_eligibility(session_id: str, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "eligibility", lambda c: c.check_eligibility())


@router.post("/quote-sessions/{session_id}/drafts/continue", tags=["Quote Sessions"])
async def continue_draft(session_id: str, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "continue_draft", lambda c: c.continue_draft())


@router.post("/quote-sessions/{session_id}/drafts/start-new", tags=["Quote Sessions"])
async def start_new_draft(session_id: str, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "start_new", lambda c: c.start_new())


@router.post("/quote-sessions/{session_id}/next", tags=["Quote Sessions"])
async def next_step(session_id: str, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "next", lambda c: c.next())


@router.post("/quote-sessions/{session_id}/back", tags=["Quote Sessions"])
async def previous_step(session_id: str, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "back", lambda c: c.back())


# Step 2 ---------------------------------------------------------------------

@router.post("/quote-sessions/{session_id}/insurance-type", tags=["Quote Sessions"])
async def set_insurance_type(session_id: str, body: InsuranceTypeRequest, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "insurance_type", lambda c: c.set_insurance_type(body.insurance_type))


@router.patch("/quote-sessions/{session_id}/motor", tags=["Quote Sessions"])
async def update_motor(session_id: str, body: FieldsRequest, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "update_motor", lambda c: c.update_motor(body.fields))


@router.post("/quote-sessions/{session_id}/vehicle-lookup", tags=["Quote Sessions"])
async def lookup_vehicle(session_id: str, body: VehicleLookupRequest, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "vehicle_lookup", lambda c: c.lookup_vehicle(body.plate_number, refresh=body.refresh))


@router.post("/quote-sessions/{session_id}/motor/submit", tags=["Quote Sessions"])
async def submit_motor(session_id: str, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "submit_motor", lambda c: c.submit_motor())


@router.patch("/quote-sessions/{session_id}/travel", tags=["Quote Sessions"])
async def update_travel(session_id: str, body: FieldsRequest, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "update_travel", lambda c: c.update_travel(body.fields))


@router.post("/quote-sessions/{session_id}/travel/submit", tags=["Quote Sessions"])
async def submit_travel(session_id: str, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "submit_travel", lambda c: c.submit_travel())


# Step 3 ---------------------------------------------------------------------

@router.post("/quote-sessions/{session_id}/plan", tags=["Quote Sessions"])
async def select_plan(session_id: str, body: PlanRequest, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "select_plan", lambda c: c.select_plan(body.plan_id))


@router.post("/quote-sessions/{session_id}/payment-method", tags=["Quote Sessions"])
async def set_payment_method(session_id: str, body: PaymentMethodRequest, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "payment_method", lambda c: c.set_payment_method(body.payment_method))


@router.post("/quote-sessions/{session_id}/addons", tags=["Quote Sessions"])
async def set_addons(session_id: str, body: AddonsRequest, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "addons", lambda c: c.set_addons(body.addon_ids))


@router.post("/quote-sessions/{session_id}/discount", tags=["Quote Sessions"])
async def apply_discount(session_id: str, body: DiscountRequest, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "apply_discount", lambda c: c.apply_discount(body.code))


@router.delete("/quote-sessions/{session_id}/discount", tags=["Quote Sessions"])
async def remove_discount(session_id: str, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "remove_discount", lambda c: c.remove_discount())


@router.post("/quote-sessions/{session_id}/exception", tags=["Quote Sessions"])
async def request_exception(session_id: str, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "request_exception", lambda c: c.request_exception())


@router.post("/quote-sessions/{session_id}/send-link", tags=["Quote Sessions"])
async def send_link(session_id: str, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "send_link", lambda c: c.send_link())


@router.post("/quote-sessions/{session_id}/retry-save", tags=["Quote Sessions"])
async def retry_save(session_id: str, manager: QuoteSessionManager = Depends(get_session_manager)):
    return await _run(manager, session_id, "retry_save", lambda c: c.retry_save())


@router.post("/quote-sessions/{session_id}/save-exit", tags=["Quote Sessions"])
async def save_and_exit(session_id: str, manager: QuoteSessionManager = Depends(get_session_manager)):
    try:
        snapshot = await manager.end_session(session_id)
        return {"session_id": session_id, **snapshot}
    except Exception as e:
        raise _http_error(e)


# ============================================================================
# EVENTS AND READS
# ============================================================================

@router.post("/approvals/{ticket_id}/decision", tags=["Approvals"])
async def decide_ticket(ticket_id: str, body: DecisionRequest, manager: QuoteSessionManager = Depends(get_session_manager)):
    """Credit Control decision on an open exception ticket."""
    try:
        ticket = await manager.services.approvals.resolve(ticket_id, body.approved, body.decided_by)
    except Exception as e:
        raise _http_error(e)
    return {"ticket_id": ticket.ticket_id, "quote_id": ticket.quote_id, "state": ticket.state, "decided_by": ticket.decided_by}


@router.get("/approvals", tags=["Approvals"])
async def list_open_tickets(manager: QuoteSessionManager = Depends(get_session_manager)):
    return [
        {
            "ticket_id": t.ticket_id,
            "quote_id": t.quote_id,
            "quote_reference": t.quote_reference,
            "provider": t.provider,
            "plan_name": t.plan_name,
            "opened_at": t.opened_at.isoformat(),
        }
        for t in manager.services.approvals.list_open()
    ]


@router.post("/quotes/{quote_id}/approval", tags=["Approvals"])
async def process_approval(quote_id: str, body: DecisionRequest, manager: QuoteSessionManager = Depends(get_session_manager)):
    """Decide on a quote by id, with or without a live session."""
    try:
        ticket = await manager.services.approvals.process_approval(quote_id, body.approved, body.decided_by)
    except Exception as e:
        raise _http_error(e)
    return {"ticket_id": ticket.ticket_id, "quote_id": quote_id, "state": ticket.state, "decided_by": ticket.decided_by}


@router.post("/quotes/{quote_id}/payment-confirmed", tags=["Quotes"])
async def payment_confirmed(quote_id: str, manager: QuoteSessionManager = Depends(get_session_manager)):
    """Payment gateway callback: issue the policy."""
    try:
        return await manager.confirm_payment(quote_id)
    except Exception as e:
        raise _http_error(e)


@router.get("/quotes/{quote_id}", tags=["Quotes"])
async def get_quote(quote_id: str, manager: QuoteSessionManager = Depends(get_session_manager)):
    quote = manager.services.gateway.load(quote_id)
    if quote is None:
        quote = manager.services.gateway.load_by_reference(quote_id)
    if quote is None:
        raise HTTPException(status_code=404, detail="Quote not found")
    return quote.model_dump(mode="json")


@router.get("/quotes/{quote_id}/audit", tags=["Quotes"])
async def get_quote_audit(quote_id: str, manager: QuoteSessionManager = Depends(get_session_manager)):
    store = manager.services.gateway.draft_store
    if store.get_quote_draft(quote_id) is None:
        raise HTTPException(status_code=404, detail="Quote not found")
    return [
        {
            "action": entry.action,
            "actor": entry.actor,
            "details": entry.details,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry in store.get_audit_log(quote_id)
    ]


@router.get("/agents/{agent_id}/notifications", tags=["Agents"])
async def get_agent_notifications(agent_id: str, unread_only: bool = False, manager: QuoteSessionManager = Depends(get_session_manager)):
    store = manager.services.gateway.draft_store
    return [
        {
            "id": note.id,
            "quote_id": note.quote_id,
            "kind": note.kind,
            "message": note.message,
            "read": note.read,
            "created_at": note.created_at.isoformat() if note.created_at else None,
        }
        for note in store.get_notifications(agent_id, unread_only=unread_only)
    ]


@router.post("/agents/{agent_id}/notifications/{notification_id}/read", tags=["Agents"])
async def mark_agent_notification_read(agent_id: str, notification_id: str, manager: QuoteSessionManager = Depends(get_session_manager)):
    store = manager.services.gateway.draft_store
    if not store.mark_notification_read(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"id": notification_id, "read": True}


@router.get("/agents/{agent_id}/quotes", tags=["Agents"])
async def list_agent_quotes(
    agent_id: str,
    quote_status: Optional[str] = Query(None, alias="status"),
    manager: QuoteSessionManager = Depends(get_session_manager),
):
    """Stored quotes of one agent, newest first."""
    store = manager.services.gateway.draft_store
    return store.list_quote_drafts(agent_id=agent_id, status=quote_status)

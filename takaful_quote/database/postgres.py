"""
Lightweight in-memory PostgresDB replacement for local development.

This provides the subset of the durable draft store used by the persistence
gateway, the approval desk and the API so the system can run without a real
database. It is NOT intended for production use.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import uuid

OPEN_DRAFT_EXCLUDED_STATUSES = ("ISSUED",)


@dataclass
class QuoteDraft:
    id: str
    quote_reference: str
    status: str
    insurance_type: str
    subscriber_number: Optional[str]
    agent_id: Optional[str]
    document: Dict[str, Any]
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class QuoteAuditEntry:
    id: str
    quote_id: str
    action: str
    actor: str
    details: Dict[str, Any]
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class AgentNotification:
    id: str
    agent_id: str
    quote_id: str
    kind: str
    message: str
    read: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)


def format_quote_reference(year: int, sequence: int) -> str:
    return f"Q-{year}-{sequence:04d}"


def audit_actions_for(previous: Optional[Dict[str, Any]], current: Dict[str, Any]) -> List[Tuple[str, Dict[str, Any]]]:
    """Business audit entries implied by replacing `previous` with `current`."""
    if previous is None:
        return [
            (
                "QUOTE_CREATED",
                {
                    "quote_reference": current.get("quote_reference"),
                    "insurance_type": current.get("insurance_type"),
                    "status": current.get("status"),
                },
            )
        ]

    actions: List[Tuple[str, Dict[str, Any]]] = []
    if previous.get("status") != current.get("status"):
        actions.append(("STATUS_CHANGE", {"from": previous.get("status"), "to": current.get("status")}))

    old_value = (previous.get("vehicle") or {}).get("value")
    new_value = (current.get("vehicle") or {}).get("value")
    if old_value != new_value and new_value is not None:
        actions.append(("VEHICLE_UPDATE", {"from": old_value, "to": new_value}))

    if previous.get("selected_plan_id") != current.get("selected_plan_id"):
        actions.append(
            (
                "PLAN_CHANGE",
                {"from": previous.get("selected_plan_id"), "to": current.get("selected_plan_id")},
            )
        )

    if previous.get("approval_handled_at") and not current.get("approval_handled_at"):
        actions.append(("APPROVAL_RESET", {"previous": previous.get("approval_handled_at")}))
    return actions


def audit_actor(document: Dict[str, Any]) -> str:
    return document.get("agent_name") or document.get("agent_id") or "system"


class PostgresDB:
    """
    In-memory stand-in for the Postgres-backed draft store.

    Documents are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._drafts: Dict[str, QuoteDraft] = {}
        self._by_reference: Dict[str, str] = {}
        self._reference_counters: Dict[int, int] = {}
        self._audit: List[QuoteAuditEntry] = []
        self._notifications: List[AgentNotification] = []

    # ------------------------------------------------------------------ #
    # Schema / lifecycle
    # ------------------------------------------------------------------ #
    def create_tables(self) -> None:
        """
        No-op for the in-memory implementation. Kept for compatibility
        with the startup hook in `takaful_quote/api/main.py`.
        """
        return None

    # ------------------------------------------------------------------ #
    # Quote drafts
    # ------------------------------------------------------------------ #
    def generate_quote_reference(self, year: Optional[int] = None) -> str:
        year = year or datetime.utcnow().year
        sequence = self._reference_counters.get(year, 0) + 1
        self._reference_counters[year] = sequence
        return format_quote_reference(year, sequence)

    def save_quote_draft(self, document: Dict[str, Any]) -> bool:
        """Upsert a draft document keyed by its id. Returns True when created."""
        quote_id = str(document["id"])
        reference = document.get("quote_reference")
        if not reference:
            raise ValueError("quote_reference is required to save a draft")

        owner = self._by_reference.get(reference)
        if owner is not None and owner != quote_id:
            raise ValueError(f"quote_reference {reference} already belongs to another draft")

        existing = self._drafts.get(quote_id)
        previous = existing.document if existing else None
        now = datetime.utcnow()
        stored = copy.deepcopy(document)

        if existing is None:
            self._drafts[quote_id] = QuoteDraft(
                id=quote_id,
                quote_reference=reference,
                status=stored.get("status") or "DRAFT",
                insurance_type=stored.get("insurance_type") or "MOTOR",
                subscriber_number=stored.get("subscriber_number"),
                agent_id=stored.get("agent_id"),
                document=stored,
                created_at=now,
                updated_at=now,
            )
            self._by_reference[reference] = quote_id
        else:
            existing.status = stored.get("status") or existing.status
            existing.insurance_type = stored.get("insurance_type") or existing.insurance_type
            existing.subscriber_number = stored.get("subscriber_number")
            existing.document = stored
            existing.updated_at = now

        for action, details in audit_actions_for(previous, stored):
            self.add_audit_entry(quote_id, action, audit_actor(stored), details)
        return existing is None

    def get_quote_draft(self, quote_id: str) -> Optional[Dict[str, Any]]:
        draft = self._drafts.get(str(quote_id))
        return copy.deepcopy(draft.document) if draft else None

    def get_quote_draft_by_reference(self, quote_reference: str) -> Optional[Dict[str, Any]]:
        quote_id = self._by_reference.get(quote_reference)
        return self.get_quote_draft(quote_id) if quote_id else None

    def find_open_draft(self, subscriber_number: str, insurance_type: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Most recently updated non-issued draft for a subscriber, optionally of one insurance type."""
        candidates = [
            d for d in self._drafts.values()
            if d.subscriber_number == subscriber_number
            and d.status not in OPEN_DRAFT_EXCLUDED_STATUSES
            and (insurance_type is None or d.insurance_type == insurance_type)
        ]
        if not candidates:
            return None
        latest = max(candidates, key=lambda d: d.updated_at)
        return copy.deepcopy(latest.document)

    def list_quote_drafts(self, agent_id: Optional[str] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
        drafts = list(self._drafts.values())
        if agent_id:
            drafts = [d for d in drafts if d.agent_id == agent_id]
        if status:
            drafts = [d for d in drafts if d.status == status]
        drafts.sort(key=lambda d: d.updated_at, reverse=True)
        return [copy.deepcopy(d.document) for d in drafts]

    # ------------------------------------------------------------------ #
    # Audit trail
    # ------------------------------------------------------------------ #
    def add_audit_entry(
        self,
        quote_id: str,
        action: str,
        actor: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> QuoteAuditEntry:
        entry = QuoteAuditEntry(
            id=str(uuid.uuid4()),
            quote_id=str(quote_id),
            action=action,
            actor=actor,
            details=details or {},
        )
        self._audit.append(entry)
        return entry

    def get_audit_log(self, quote_id: str) -> List[QuoteAuditEntry]:
        return [e for e in self._audit if e.quote_id == str(quote_id)]

    # ------------------------------------------------------------------ #
    # Agent notifications
    # ------------------------------------------------------------------ #
    def add_notification(self, agent_id: str, quote_id: str, kind: str, message: str) -> AgentNotification:
        note = AgentNotification(
            id=str(uuid.uuid4()),
            agent_id=agent_id,
            quote_id=str(quote_id),
            kind=kind,
            message=message,
        )
        self._notifications.append(note)
        return note

    def get_notifications(self, agent_id: str, unread_only: bool = False) -> List[AgentNotification]:
        notes = [n for n in self._notifications if n.agent_id == agent_id]
        if unread_only:
            notes = [n for n in notes if not n.read]
        # Newest first
        notes.sort(key=lambda n: n.created_at, reverse=True)
        return notes

    def mark_notification_read(self, notification_id: str) -> bool:
        for note in self._notifications:
            if note.id == notification_id:
                note.read = True
                return True
        return False

"""
Real Postgres-backed draft store for production when USE_POSTGRES_DRAFTS and DATABASE_URL are set.
Implements the same interface as takaful_quote.database.postgres (in-memory stub).
"""

from __future__ import annotations

import copy
import re
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from takaful_quote.database.models import (
    AgentNotification,
    Base,
    QuoteAuditEntry,
    QuoteDraft,
    QuoteReferenceCounter,
)
from takaful_quote.database.postgres import (
    OPEN_DRAFT_EXCLUDED_STATUSES,
    audit_actions_for,
    audit_actor,
    format_quote_reference,
)


def _normalize_connection_string(s: str) -> str:
    """Strip common mistakes: 'psql \'...\'', extra quotes, whitespace."""
    s = s.strip()
    if re.match(r"^psql\s+", s, re.IGNORECASE):
        s = re.sub(r"^psql\s+", "", s, flags=re.IGNORECASE).strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ("'", '"'):
        s = s[1:-1].strip()
    return s


class PostgresDB:
    """
    Postgres draft store using SQLAlchemy. Use when DATABASE_URL is set and
    USE_POSTGRES_DRAFTS=true.
    """

    def __init__(self, connection_string: str) -> None:
        connection_string = _normalize_connection_string(connection_string)
        self.engine = create_engine(connection_string, pool_pre_ping=True, pool_size=5, max_overflow=10)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine, expire_on_commit=False)

    def create_tables(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def _session(self) -> Session:
        s = self.SessionLocal()
        try:
            yield s
            s.commit()
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()

    # ------------------------------------------------------------------ #
    # Quote drafts
    # ------------------------------------------------------------------ #
    def generate_quote_reference(self, year: Optional[int] = None) -> str:
        year = year or datetime.utcnow().year
        with self._session() as s:
            stmt = select(QuoteReferenceCounter).where(QuoteReferenceCounter.year == year).with_for_update()
            counter = s.execute(stmt).scalar_one_or_none()
            if counter is None:
                counter = QuoteReferenceCounter(year=year, last_value=0)
                s.add(counter)
            counter.last_value += 1
            s.flush()
            return format_quote_reference(year, counter.last_value)

    def save_quote_draft(self, document: Dict[str, Any]) -> bool:
        quote_id = str(document["id"])
        reference = document.get("quote_reference")
        if not reference:
            raise ValueError("quote_reference is required to save a draft")

        stored = copy.deepcopy(document)
        now = datetime.utcnow()
        with self._session() as s:
            stmt = select(QuoteDraft).where(QuoteDraft.id == quote_id)
            draft = s.execute(stmt).scalar_one_or_none()
            previous = copy.deepcopy(draft.document) if draft else None

            if draft is None:
                draft = QuoteDraft(
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
            else:
                draft.status = stored.get("status") or draft.status
                draft.insurance_type = stored.get("insurance_type") or draft.insurance_type
                draft.subscriber_number = stored.get("subscriber_number")
                draft.document = stored
                draft.updated_at = now
            s.add(draft)

            for action, details in audit_actions_for(previous, stored):
                s.add(
                    QuoteAuditEntry(
                        id=str(uuid4()),
                        quote_id=quote_id,
                        action=action,
                        actor=audit_actor(stored),
                        details=details,
                        created_at=now,
                    )
                )
            return previous is None

    def get_quote_draft(self, quote_id: str) -> Optional[Dict[str, Any]]:
        with self._session() as s:
            stmt = select(QuoteDraft).where(QuoteDraft.id == str(quote_id))
            draft = s.execute(stmt).scalar_one_or_none()
            return copy.deepcopy(draft.document) if draft else None

    def get_quote_draft_by_reference(self, quote_reference: str) -> Optional[Dict[str, Any]]:
        with self._session() as s:
            stmt = select(QuoteDraft).where(QuoteDraft.quote_reference == quote_reference)
            draft = s.execute(stmt).scalar_one_or_none()
            return copy.deepcopy(draft.document) if draft else None

    def find_open_draft(self, subscriber_number: str, insurance_type: Optional[str] = None) -> Optional[Dict[str, Any]]:
        with self._session() as s:
            stmt = (
                select(QuoteDraft)
                .where(QuoteDraft.subscriber_number == subscriber_number)
                .where(QuoteDraft.status.notin_(OPEN_DRAFT_EXCLUDED_STATUSES))
            )
            if insurance_type:
                stmt = stmt.where(QuoteDraft.insurance_type == insurance_type)
            stmt = stmt.order_by(QuoteDraft.updated_at.desc()).limit(1)
            draft = s.execute(stmt).scalar_one_or_none()
            return copy.deepcopy(draft.document) if draft else None

    def list_quote_drafts(self, agent_id: Optional[str] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._session() as s:
            stmt = select(QuoteDraft)
            if agent_id:
                stmt = stmt.where(QuoteDraft.agent_id == agent_id)
            if status:
                stmt = stmt.where(QuoteDraft.status == status)
            stmt = stmt.order_by(QuoteDraft.updated_at.desc())
            return [copy.deepcopy(d.document) for d in s.execute(stmt).scalars().all()]

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
        with self._session() as s:
            entry = QuoteAuditEntry(
                id=str(uuid4()),
                quote_id=str(quote_id),
                action=action,
                actor=actor,
                details=details or {},
                created_at=datetime.utcnow(),
            )
            s.add(entry)
            s.flush()
            s.refresh(entry)
            return entry

    def get_audit_log(self, quote_id: str) -> List[QuoteAuditEntry]:
        with self._session() as s:
            stmt = (
                select(QuoteAuditEntry)
                .where(QuoteAuditEntry.quote_id == str(quote_id))
                .order_by(QuoteAuditEntry.created_at.asc())
            )
            return list(s.execute(stmt).scalars().all())

    # ------------------------------------------------------------------ #
    # Agent notifications
    # ------------------------------------------------------------------ #
    def add_notification(self, agent_id: str, quote_id: str, kind: str, message: str) -> AgentNotification:
        with self._session() as s:
            note = AgentNotification(
                id=str(uuid4()),
                agent_id=agent_id,
                quote_id=str(quote_id),
                kind=kind,
                message=message,
                read=False,
                created_at=datetime.utcnow(),
            )
            s.add(note)
            s.flush()
            s.refresh(note)
            return note

    def get_notifications(self, agent_id: str, unread_only: bool = False) -> List[AgentNotification]:
        with self._session() as s:
            stmt = select(AgentNotification).where(AgentNotification.agent_id == agent_id)
            if unread_only:
                stmt = stmt.where(AgentNotification.read.is_(False))
            stmt = stmt.order_by(AgentNotification.created_at.desc())
            return list(s.execute(stmt).scalars().all())

    def mark_notification_read(self, notification_id: str) -> bool:
        with self._session() as s:
            stmt = select(AgentNotification).where(AgentNotification.id == notification_id)
            note = s.execute(stmt).scalar_one_or_none()
            if not note:
                return False
            note.read = True
            s.add(note)
            return True

"""Draft persistence gateway.

Every change to a quote goes through `DraftPersistenceGateway.persist`, which
merges a partial update into the session's aggregate, fills in identity and
provenance fields the first time, and writes the result to the session cache
(Redis form draft) and the durable draft store (Postgres).

Writes for one aggregate are serialised with an asyncio lock keyed by the
aggregate id (or by the session draft key until an id exists), so overlapping
calls queue instead of losing each other's fields.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ValidationError

from takaful_quote.quote.errors import AggregateLockedError, InvalidStatusTransition, PersistenceFailure
from takaful_quote.quote.models import InsuranceType, QuoteRequest, QuoteSource, QuoteStatus, can_transition
from takaful_quote.quote.validation import FormValidationError

logger = logging.getLogger(__name__)

# Assigned once, ignored in later partials
IDENTITY_FIELDS = ("id", "quote_reference", "created_at", "agent_id", "agent_name", "source")
# Merged key by key
NESTED_FIELDS = ("customer", "vehicle", "travel_criteria", "risk_factors")

_TYPE_DETAIL_FIELDS = {
    InsuranceType.MOTOR: ("vehicle", "risk_factors"),
    InsuranceType.TRAVEL: ("travel_criteria",),
}


class DraftHandle:
    """The aggregate owned by one session, plus its write state."""

    def __init__(
        self,
        draft_key: str,
        *,
        agent_id: Optional[str] = None,
        agent_name: Optional[str] = None,
        aggregate: Optional[QuoteRequest] = None,
    ) -> None:
        self.draft_key = draft_key
        self.agent_id = agent_id
        self.agent_name = agent_name
        self.aggregate = aggregate or QuoteRequest()
        self.pending_write = False

    @property
    def quote_id(self) -> Optional[str]:
        return self.aggregate.id


def merge_partial(current: Dict[str, Any], partial: Dict[str, Any]) -> Dict[str, Any]:
    """Field-level merge of a partial update into a dumped aggregate.

    Nested objects merge key by key. An explicit None clears a field back to
    its default. Identity fields that are already set are left alone.
    """
    merged = dict(current)

    new_type = partial.get("insurance_type")
    if new_type is not None and InsuranceType(new_type) != InsuranceType(merged.get("insurance_type") or InsuranceType.MOTOR):
        for other_type, fields in _TYPE_DETAIL_FIELDS.items():
            if other_type != InsuranceType(new_type):
                for name in fields:
                    merged[name] = None

    for key, value in partial.items():
        if key in IDENTITY_FIELDS and merged.get(key) is not None:
            continue
        if key in NESTED_FIELDS and isinstance(value, dict):
            nested = dict(merged.get(key) or {})
            for sub_key, sub_value in value.items():
                if sub_value is None:
                    nested.pop(sub_key, None)
                else:
                    nested[sub_key] = sub_value
            merged[key] = nested
        elif value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


def validation_errors(exc: ValidationError) -> FormValidationError:
    field_errors: Dict[str, str] = {}
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "quote"
        field_errors.setdefault(loc, err.get("msg", "Invalid value"))
    return FormValidationError(field_errors=field_errors, message="Quote data is not valid")


class DraftPersistenceGateway:
    def __init__(self, draft_store, cache, *, draft_ttl: int = 604800) -> None:
        self.draft_store = draft_store
        self.cache = cache
        self.draft_ttl = draft_ttl
        self._locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------ #
    # Locking
    # ------------------------------------------------------------------ #
    def _lock_for(self, handle: DraftHandle) -> asyncio.Lock:
        key = handle.aggregate.id or f"draft:{handle.draft_key}"
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #
    async def persist(self, handle: DraftHandle, partial: Optional[Dict[str, Any]] = None) -> QuoteRequest:
        """Merge `partial` into the handle's aggregate and write it through.

        Raises:
            AggregateLockedError: the quote is ISSUED.
            InvalidStatusTransition: `partial` asks for a status the lifecycle forbids.
            FormValidationError: the merged aggregate breaks a model invariant.
            PersistenceFailure: the durable write failed; the merged aggregate
                is still committed on the handle and `flush` retries the write.
        """
        partial = dict(partial or {})
        lock = self._lock_for(handle)
        async with lock:
            current = handle.aggregate
            if current.is_issued:
                raise AggregateLockedError(
                    "This quote has been issued and can no longer be changed.",
                    details={"quote_id": current.id},
                )

            requested = partial.get("status")
            if requested is not None:
                try:
                    requested = QuoteStatus(requested)
                except ValueError:
                    raise FormValidationError(field_errors={"status": f"Unknown status {requested!r}"})
                if not can_transition(current.status, requested):
                    raise InvalidStatusTransition(current.effective_status, requested)
            else:
                # Never downgrade a status the caller did not set
                partial.pop("status", None)

            merged = merge_partial(current.model_dump(mode="python"), partial)
            self._assign_identity(merged, handle)

            try:
                updated = QuoteRequest.model_validate(merged)
            except ValidationError as exc:
                raise validation_errors(exc) from exc

            if updated == current and not handle.pending_write and current.quote_reference:
                return current

            handle.aggregate = updated
            if updated.id:
                self._locks.setdefault(updated.id, lock)
            await self._write_through(handle)
            return handle.aggregate

    async def flush(self, handle: DraftHandle) -> QuoteRequest:
        """Retry a durable write that previously failed."""
        async with self._lock_for(handle):
            if handle.pending_write:
                await self._write_through(handle)
            return handle.aggregate

    async def adopt(self, handle: DraftHandle, aggregate: QuoteRequest) -> QuoteRequest:
        """Make an already-stored aggregate the session's aggregate."""
        async with self._lock_for(handle):
            handle.aggregate = aggregate
            handle.pending_write = False
            self._write_session_cache(handle)
            return aggregate

    def release(self, handle: DraftHandle) -> None:
        """Forget the write locks of a handle whose session has ended."""
        for key in (handle.aggregate.id, f"draft:{handle.draft_key}"):
            lock = self._locks.get(key) if key else None
            if lock is not None and not lock.locked():
                del self._locks[key]

    def _assign_identity(self, merged: Dict[str, Any], handle: DraftHandle) -> None:
        if not merged.get("id"):
            merged["id"] = str(uuid.uuid4())
        if not merged.get("created_at"):
            merged["created_at"] = datetime.utcnow()
        if not merged.get("agent_id") and handle.agent_id:
            merged["agent_id"] = handle.agent_id
        if not merged.get("agent_name") and handle.agent_name:
            merged["agent_name"] = handle.agent_name
        if not merged.get("source"):
            merged["source"] = QuoteSource.AGENT_PORTAL
        if not merged.get("status"):
            merged["status"] = QuoteStatus.DRAFT

    async def _write_through(self, handle: DraftHandle) -> None:
        failure: Optional[Exception] = None
        try:
            self._write_durable(handle)
        except Exception as e:
            failure = e
        self._write_session_cache(handle)

        if failure is not None:
            handle.pending_write = True
            logger.error("Durable draft write failed for quote %s: %s", handle.aggregate.id, failure)
            raise PersistenceFailure(
                "Your changes are kept but could not be saved yet. Please retry.",
                details={"quote_id": handle.aggregate.id, "error": str(failure)},
            ) from failure
        handle.pending_write = False

    def _write_durable(self, handle: DraftHandle) -> None:
        aggregate = handle.aggregate
        if not aggregate.quote_reference:
            reference = self.draft_store.generate_quote_reference()
            aggregate = aggregate.model_copy(update={"quote_reference": reference})
            handle.aggregate = aggregate
        created = self.draft_store.save_quote_draft(aggregate.model_dump(mode="json"))
        if created:
            logger.info("Created quote draft %s (%s)", aggregate.quote_reference, aggregate.id)

    def _write_session_cache(self, handle: DraftHandle) -> None:
        try:
            self.cache.save_quote_snapshot(
                handle.draft_key, handle.aggregate.model_dump(mode="json"), ttl=self.draft_ttl
            )
        except Exception as e:
            # Session cache is a convenience copy; the durable write decides success.
            logger.warning("Session draft cache write failed for %s: %s", handle.draft_key, e)

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #
    def load(self, quote_id: str) -> Optional[QuoteRequest]:
        doc = self.draft_store.get_quote_draft(quote_id)
        return QuoteRequest.model_validate(doc) if doc else None

    def load_by_reference(self, quote_reference: str) -> Optional[QuoteRequest]:
        doc = self.draft_store.get_quote_draft_by_reference(quote_reference)
        return QuoteRequest.model_validate(doc) if doc else None

    def find_open_draft(
        self, subscriber_number: str, insurance_type: Optional[InsuranceType] = None
    ) -> Optional[QuoteRequest]:
        doc = self.draft_store.find_open_draft(
            subscriber_number, insurance_type.value if insurance_type is not None else None
        )
        return QuoteRequest.model_validate(doc) if doc else None

    def load_session_draft(self, draft_key: str) -> Optional[QuoteRequest]:
        doc = self.cache.load_quote_snapshot(draft_key)
        return QuoteRequest.model_validate(doc) if doc else None

    def discard_session_draft(self, draft_key: str) -> None:
        self.cache.delete_quote_snapshot(draft_key)

"""Error taxonomy for the quote flow.

Validation problems are reported with `FormValidationError` (see
`takaful_quote.quote.validation`). Everything here describes collaborator or
lifecycle faults that the controller catches at the call site.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class QuoteFlowError(Exception):
    """Base class for quote-flow faults that should reach the agent as a message."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class LookupFailure(QuoteFlowError):
    """A lookup collaborator returned no data or an error string."""


class PersistenceFailure(QuoteFlowError):
    """The durable draft write failed; the in-memory aggregate is still valid."""


class DiscountInvalid(QuoteFlowError):
    """The discount authority rejected a code."""


class AggregateLockedError(QuoteFlowError):
    """The quote has been issued and can no longer be changed."""


class InvalidStatusTransition(QuoteFlowError):
    def __init__(self, current: Any, requested: Any) -> None:
        super().__init__(
            f"Cannot move quote from {current} to {requested}",
            details={"current": str(current), "requested": str(requested)},
        )
        self.current = current
        self.requested = requested


class NotFoundError(QuoteFlowError):
    """An unknown session, quote or approval ticket."""

"""Error handling helpers for the quote flow's collaborator call sites."""
from typing import Any, Dict
import logging

from takaful_quote.quote.errors import QuoteFlowError

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "Something went wrong while contacting an external service. Please try again or continue manually."


class ErrorHandler:
    def handle_exception(self, exc: Exception, context: Dict[str, Any] = None) -> Dict[str, Any]:
        context = context or {}
        if isinstance(exc, QuoteFlowError):
            logger.warning("Quote flow fault during %s: %s", context.get("operation", "operation"), exc.message)
            message = exc.message
        else:
            logger.error("Unhandled exception in quote flow: %s", exc, exc_info=True)
            message = GENERIC_MESSAGE
        return {
            "message": message,
            "fallback": True,
            "metadata": {"error": str(exc), "error_type": type(exc).__name__, "context": context},
        }

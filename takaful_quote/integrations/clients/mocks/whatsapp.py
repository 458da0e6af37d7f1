"""
WhatsApp link dispatch — MOCK client.

⚠️  Logs the message instead of sending it and returns a fake message id.
    Set `fail_with` to make every send fail with that error string.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from takaful_quote.integrations.clients.real_http.whatsapp import build_quote_link_message
from takaful_quote.integrations.contracts.interfaces import LinkDispatcher, LinkDispatchResult
from takaful_quote.quote.validation import normalize_phone_bh

logger = logging.getLogger(__name__)


@dataclass
class SentLink:
    recipient: str
    mode: str
    body: str
    message_id: str


class MockLinkDispatcher(LinkDispatcher):
    def __init__(self, fail_with: Optional[str] = None) -> None:
        self.fail_with = fail_with
        self.sent: List[SentLink] = []

    async def send_quote_link(
        self,
        contact_number: str,
        mode: str,
        *,
        quote_reference: Optional[str] = None,
        agent_name: Optional[str] = None,
    ) -> LinkDispatchResult:
        if self.fail_with:
            logger.warning("[WHATSAPP MOCK] Simulated send failure: %s", self.fail_with)
            return LinkDispatchResult(success=False, error=self.fail_with)

        recipient = normalize_phone_bh(contact_number)
        if not recipient:
            return LinkDispatchResult(success=False, error="No contact number for the payment link.")

        message_id = f"mock_{uuid.uuid4().hex[:12]}"
        body = build_quote_link_message(mode, quote_reference, agent_name)
        self.sent.append(SentLink(recipient=recipient, mode=mode, body=body, message_id=message_id))
        logger.info("[WHATSAPP MOCK] Sending to %s: %s", recipient, body.splitlines()[0])
        return LinkDispatchResult(
            success=True,
            message_id=message_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

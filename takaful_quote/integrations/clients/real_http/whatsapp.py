"""
Real WhatsApp Business link dispatcher.

Used when WhatsApp credentials are configured. Sends the payment link message
to the customer's number; failures are returned, never retried here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from takaful_quote.integrations.contracts.interfaces import LinkDispatcher, LinkDispatchResult
from takaful_quote.quote.validation import normalize_phone_bh
from takaful_quote.utils.config_loader import WhatsAppConfig

logger = logging.getLogger(__name__)


def build_quote_link_message(mode: str, quote_reference: Optional[str], agent_name: Optional[str]) -> str:
    greeting = "Welcome back to Zain Takaful!" if mode == "EXISTING" else "Welcome to Zain Takaful!"
    lines = [greeting]
    if quote_reference:
        lines.append(f"Your insurance quote {quote_reference} is ready.")
    else:
        lines.append("Your insurance quote is ready.")
    lines.append("Open the secure link we sent to review your plan, upload documents and complete payment.")
    if agent_name:
        lines.append(f"Your agent: {agent_name}")
    return "\n".join(lines)


class WhatsAppLinkDispatcher(LinkDispatcher):
    def __init__(self, config: Optional[WhatsAppConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.config = config or WhatsAppConfig()
        self._transport = transport

    async def send_quote_link(
        self,
        contact_number: str,
        mode: str,
        *,
        quote_reference: Optional[str] = None,
        agent_name: Optional[str] = None,
    ) -> LinkDispatchResult:
        if not self.config.phone_number_id or not self.config.access_token:
            return LinkDispatchResult(success=False, error="WhatsApp credentials are not configured.")

        recipient = normalize_phone_bh(contact_number)
        if not recipient:
            return LinkDispatchResult(success=False, error="No contact number for the payment link.")

        payload: Dict[str, Any] = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient,
            "type": "text",
            "text": {"preview_url": False, "body": build_quote_link_message(mode, quote_reference, agent_name)},
        }
        headers = {
            "Authorization": f"Bearer {self.config.access_token}",
            "Content-Type": "application/json",
        }
        url = f"{self.config.api_url.rstrip('/')}/{self.config.phone_number_id}/messages"

        logger.info("[WhatsApp] Sending quote link to %s", recipient)
        try:
            async with httpx.AsyncClient(timeout=self.config.timeout_seconds, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json() if response.content else {}
        except httpx.HTTPStatusError as exc:
            message = _graph_error(exc.response) or f"HTTP {exc.response.status_code}"
            logger.warning("[WhatsApp] Send failed: %s", message)
            return LinkDispatchResult(success=False, error=message)
        except httpx.HTTPError as exc:
            logger.warning("[WhatsApp] Send failed: %s", exc)
            return LinkDispatchResult(success=False, error=str(exc) or "Failed to send WhatsApp message")

        messages = data.get("messages") or [{}]
        return LinkDispatchResult(
            success=True,
            message_id=messages[0].get("id"),
            timestamp=datetime.now(timezone.utc).isoformat(),
        )


def _graph_error(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message")
    return None

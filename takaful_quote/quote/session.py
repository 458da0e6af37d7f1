"""
Session and controller management for the quick quote flow
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from takaful_quote.error_handler import ErrorHandler
from takaful_quote.integrations.contracts.interfaces import LinkDispatcher, VehicleDataClient
from takaful_quote.quote.approvals import ApprovalDesk
from takaful_quote.quote.controller import StepController
from takaful_quote.quote.discounts import DiscountValidator
from takaful_quote.quote.eligibility import EligibilityResolver
from takaful_quote.quote.errors import NotFoundError
from takaful_quote.quote.lookups import VehicleLookupService
from takaful_quote.quote.models import QuoteStatus
from takaful_quote.quote.persistence import DraftHandle, DraftPersistenceGateway
from takaful_quote.quote.plans import PlanSource
from takaful_quote.quote.pricing import DEFAULT_INSTALLMENT_MONTHS, DEFAULT_VAT_RATE

logger = logging.getLogger(__name__)


@dataclass
class QuoteServices:
    """Collaborators shared by every session's controller."""

    gateway: DraftPersistenceGateway
    eligibility: EligibilityResolver
    vehicle_client: VehicleDataClient
    registry_client: Any
    plan_source: PlanSource
    discounts: DiscountValidator
    dispatcher: LinkDispatcher
    approvals: ApprovalDesk
    vat_rate: Decimal = DEFAULT_VAT_RATE
    installment_months: int = DEFAULT_INSTALLMENT_MONTHS
    error_handler: ErrorHandler = field(default_factory=ErrorHandler)

    def controller_for(self, handle: DraftHandle) -> StepController:
        # Vehicle lookup cache is per session
        lookups = VehicleLookupService(self.vehicle_client, self.registry_client)
        return StepController(
            handle,
            gateway=self.gateway,
            eligibility=self.eligibility,
            lookups=lookups,
            vehicle_client=self.vehicle_client,
            plan_source=self.plan_source,
            discounts=self.discounts,
            dispatcher=self.dispatcher,
            approvals=self.approvals,
            vat_rate=self.vat_rate,
            installment_months=self.installment_months,
            error_handler=self.error_handler,
        )


class QuoteSessionManager:
    def __init__(self, services: QuoteServices, redis_cache, session_ttl: int = 1800):
        self.services = services
        self.redis = redis_cache
        self.session_ttl = session_ttl
        self._controllers: Dict[str, StepController] = {}

    async def create_session(
        self,
        agent_id: Optional[str] = None,
        agent_name: Optional[str] = None,
        insurance_type: Optional[str] = None,
        quote_id: Optional[str] = None,
    ) -> Tuple[str, StepController]:
        """Start a session, optionally resuming a stored quote."""
        session_id = str(uuid.uuid4())
        handle = DraftHandle(session_id, agent_id=agent_id, agent_name=agent_name)

        if quote_id:
            quote = self.services.gateway.load(quote_id)
            if quote is None:
                raise NotFoundError(f"Quote {quote_id} not found", details={"quote_id": quote_id})
            await self.services.gateway.adopt(handle, quote)

        controller = self.services.controller_for(handle)
        if insurance_type and not quote_id:
            await controller.set_insurance_type(insurance_type)
        await controller.resume()

        self._controllers[session_id] = controller
        self.redis.set_session(
            session_id,
            {
                "session_id": session_id,
                "agent_id": agent_id,
                "agent_name": agent_name,
                "quote_id": controller.quote.id,
                "step": controller.step,
                "created_at": datetime.utcnow().isoformat(),
            },
            ttl=self.session_ttl,
        )
        logger.info("Started quote session %s (quote %s)", session_id, controller.quote.id)
        return session_id, controller

    async def get_controller(self, session_id: str) -> StepController:
        controller = self._controllers.get(session_id)
        if controller is not None:
            return controller

        # Process restarted: rebuild from the session cache
        session = self.redis.get_session(session_id)
        if not session:
            raise NotFoundError(f"Quote session {session_id} not found", details={"session_id": session_id})

        handle = DraftHandle(session_id, agent_id=session.get("agent_id"), agent_name=session.get("agent_name"))
        quote = self.services.gateway.load_session_draft(session_id)
        if quote is None and session.get("quote_id"):
            quote = self.services.gateway.load(session["quote_id"])
        if quote is not None:
            await self.services.gateway.adopt(handle, quote)

        controller = self.services.controller_for(handle)
        await controller.resume()
        self._controllers[session_id] = controller
        logger.info("Restored quote session %s at step %s", session_id, controller.step)
        return controller

    def touch(self, session_id: str, controller: StepController) -> None:
        """Refresh the session metadata after an action."""
        self.redis.update_session(session_id, {"quote_id": controller.quote.id, "step": controller.step})

    async def end_session(self, session_id: str) -> Dict[str, Any]:
        """Save and exit: write the aggregate, then drop the session."""
        controller = await self.get_controller(session_id)
        snapshot = await controller.save_and_exit()
        if controller.handle.pending_write:
            # Keep the session so the agent can retry the save
            return snapshot

        if controller.quote.id:
            self.services.approvals.detach(controller.quote.id)
        self._controllers.pop(session_id, None)
        self.services.gateway.discard_session_draft(session_id)
        self.services.gateway.release(controller.handle)
        self.redis.delete_session(session_id)
        logger.info("Closed quote session %s", session_id)
        return snapshot

    def controller_for_quote(self, quote_id: str) -> Optional[StepController]:
        for controller in self._controllers.values():
            if controller.quote.id == quote_id:
                return controller
        return None

    async def confirm_payment(self, quote_id: str) -> Dict[str, Any]:
        """Payment gateway event for a quote, with or without a live session."""
        controller = self.controller_for_quote(quote_id)
        if controller is not None:
            return await controller.confirm_payment()

        gateway = self.services.gateway
        quote = gateway.load(quote_id)
        if quote is None:
            raise NotFoundError(f"Quote {quote_id} not found", details={"quote_id": quote_id})

        # Short-lived handle: no session, controller or plan fetch
        handle = DraftHandle(f"payment:{quote_id}", agent_id=quote.agent_id, agent_name=quote.agent_name, aggregate=quote)
        try:
            issued = await gateway.persist(handle, {"status": QuoteStatus.ISSUED.value})
        finally:
            gateway.discard_session_draft(handle.draft_key)
            gateway.release(handle)
        logger.info("Issued quote %s from payment confirmation", issued.quote_reference)
        return {
            "quote": issued.model_dump(mode="json"),
            "views": {"quote_sent": True, "policy_issued": True, "read_only": True},
        }

"""
Quick quote step controller

Sequences one agent session through Customer (1) -> Details (2) -> Quote (3).

The controller holds two tiers of state:
- ephemeral input buffers (subscriber form, motor form, travel form) that may
  hold invalid values while the agent types
- the committed aggregate on the `DraftHandle`, changed only through
  `DraftPersistenceGateway.persist`

Every collaborator call takes a `FetchGuard` token so a late, superseded
response is dropped instead of applied. Collaborator faults become a notice on
the snapshot; validation errors are raised as `FormValidationError`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from takaful_quote.error_handler import ErrorHandler
from takaful_quote.integrations.contracts.interfaces import EligibilityCheckResult, LinkDispatcher, VehicleDataClient
from takaful_quote.quote.approvals import ApprovalDesk, ApprovalTicket, decision_status
from takaful_quote.quote.derived import derive_motor_values, models_for_make
from takaful_quote.quote.discounts import DiscountValidator
from takaful_quote.quote.eligibility import (
    EligibilityResolver,
    SubscriberCheck,
    SubscriberOutcome,
    can_request_exception,
    can_send_link,
    resolve_eligibility,
    subscriber_draft_data,
    travel_criteria_from_partner_draft,
)
from takaful_quote.quote.errors import AggregateLockedError, DiscountInvalid, LookupFailure, PersistenceFailure
from takaful_quote.quote.guards import FetchGuard
from takaful_quote.quote.lookups import VehicleLookupService
from takaful_quote.quote.models import (
    ENABLED_INSURANCE_TYPES,
    CustomerType,
    InsurancePlan,
    InsuranceType,
    PaymentMethod,
    QuoteRequest,
    QuoteStatus,
    TravelDestination,
    TravelType,
)
from takaful_quote.quote.persistence import DraftHandle, DraftPersistenceGateway
from takaful_quote.quote.plans import PlanSource
from takaful_quote.quote.pricing import DEFAULT_INSTALLMENT_MONTHS, DEFAULT_VAT_RATE, price_plan
from takaful_quote.quote.validation import (
    FormValidationError,
    raise_if_errors,
    validate_customer_fields,
    validate_customer_step,
    validate_motor_details,
    validate_subscriber_details,
    validate_travel_details,
)

logger = logging.getLogger(__name__)

STEP_CUSTOMER = 1
STEP_DETAILS = 2
STEP_QUOTE = 3

# Fetch targets owned by each step; leaving the step cancels them.
STEP_FETCH_TARGETS = {
    STEP_CUSTOMER: ("customer_search", "eligibility"),
    STEP_DETAILS: ("vehicle_lookup", "models"),
    STEP_QUOTE: ("plans", "discount"),
}

_SENT_STATUSES = (QuoteStatus.LINK_SENT, QuoteStatus.PAYMENT_PENDING, QuoteStatus.ISSUED)
_EXCEPTION_STATUSES = (QuoteStatus.PENDING_APPROVAL, QuoteStatus.APPROVAL_GRANTED, QuoteStatus.APPROVAL_REJECTED)

_VEHICLE_FIELDS = (
    "plate_number",
    "chassis_number",
    "make",
    "model",
    "year",
    "value",
    "body_type",
    "engine_size",
    "is_brand_new",
    "has_existing_insurance",
    "existing_policy_expiry",
    "policy_end_date",
)
_RISK_FIELDS = ("age_under_24", "license_under_1_year")


def resume_step(quote: QuoteRequest) -> int:
    """Starting step for an aggregate loaded mid-flow."""
    if quote.selected_plan_id or quote.effective_status != QuoteStatus.DRAFT:
        return STEP_QUOTE
    if quote.vehicle is not None and quote.vehicle.plate_number:
        return STEP_DETAILS
    if quote.travel_criteria is not None and quote.travel_criteria.departure_date:
        return STEP_DETAILS
    return STEP_CUSTOMER


def motor_buffer_from(quote: QuoteRequest) -> Dict[str, Any]:
    buffer: Dict[str, Any] = {}
    if quote.vehicle is not None:
        buffer.update(quote.vehicle.model_dump(mode="json"))
    if quote.risk_factors is not None:
        buffer.update(quote.risk_factors.model_dump(mode="json"))
    if quote.start_date is not None:
        buffer["start_date"] = quote.start_date.isoformat()
    return buffer


def travel_buffer_from(quote: QuoteRequest) -> Dict[str, Any]:
    if quote.travel_criteria is not None:
        return quote.travel_criteria.model_dump(mode="json")
    return {
        "type": TravelType.INDIVIDUAL.value,
        "destination": TravelDestination.WORLDWIDE.value,
        "adults_count": 1,
        "children_count": 0,
    }


class StepController:
    def __init__(
        self,
        handle: DraftHandle,
        *,
        gateway: DraftPersistenceGateway,
        eligibility: EligibilityResolver,
        lookups: VehicleLookupService,
        vehicle_client: VehicleDataClient,
        plan_source: PlanSource,
        discounts: DiscountValidator,
        dispatcher: LinkDispatcher,
        approvals: ApprovalDesk,
        vat_rate=DEFAULT_VAT_RATE,
        installment_months: int = DEFAULT_INSTALLMENT_MONTHS,
        error_handler: Optional[ErrorHandler] = None,
    ):
        self.handle = handle
        self.gateway = gateway
        self.eligibility = eligibility
        self.lookups = lookups
        self.vehicle_client = vehicle_client
        self.plan_source = plan_source
        self.discounts = discounts
        self.dispatcher = dispatcher
        self.approvals = approvals
        self.vat_rate = vat_rate
        self.installment_months = installment_months
        self.error_handler = error_handler or ErrorHandler()
        self.guard = FetchGuard()

        self.step = STEP_CUSTOMER
        self.quote_sent = False
        self.policy_issued = False
        self.exception_sent = False
        self.show_subscriber_input = False
        self.show_draft_popup = False

        self.search_cpr = ""
        self.subscriber_buffer: Dict[str, Any] = {}
        self.motor_buffer: Dict[str, Any] = {}
        self.travel_buffer: Dict[str, Any] = {}
        self.registration_month: Optional[int] = None
        self.model_options: List[str] = []
        self.plans: List[InsurancePlan] = []
        self.plan_notice: Optional[str] = None
        self.discount_owner: Optional[str] = None
        self.discount_error: Optional[str] = None
        self.notice: Optional[str] = None
        self.pending_draft: Optional[SubscriberCheck] = None
        self.ticket: Optional[ApprovalTicket] = None

        self._rehydrate()

    @property
    def quote(self) -> QuoteRequest:
        return self.handle.aggregate

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _ensure_editable(self) -> None:
        if self.quote.is_issued:
            raise AggregateLockedError(
                "This quote has been issued and can no longer be changed.",
                details={"quote_id": self.quote.id},
            )

    async def _commit(self, partial: Optional[Dict[str, Any]] = None) -> bool:
        """Persist a partial update. A failed durable write becomes a notice."""
        try:
            await self.gateway.persist(self.handle, partial)
        except PersistenceFailure as e:
            self.notice = e.message
            return False
        return True

    def _rehydrate(self) -> None:
        """Reload the editable buffers from the committed aggregate."""
        self.motor_buffer = motor_buffer_from(self.quote)
        self.travel_buffer = travel_buffer_from(self.quote)
        if self.quote.customer is not None:
            self.search_cpr = self.quote.customer.cpr or self.search_cpr
            self.registration_month = self.quote.customer.registration_month or self.registration_month

    def _plan_by_id(self, plan_id: Optional[str]) -> Optional[InsurancePlan]:
        for plan in self.plans:
            if plan.id == plan_id:
                return plan
        return None

    def _fault(self, exc: Exception, operation: str) -> None:
        payload = self.error_handler.handle_exception(exc, {"operation": operation, "quote_id": self.quote.id})
        self.notice = payload["message"]

    def _leave_step(self, step: int) -> None:
        self.guard.cancel(STEP_FETCH_TARGETS.get(step, ()))

    # ------------------------------------------------------------------ #
    # Resumption
    # ------------------------------------------------------------------ #
    async def resume(self) -> Dict[str, Any]:
        """Compute the starting step from the aggregate and restore the sub-views."""
        quote = self.quote
        status = quote.effective_status
        self.quote_sent = status in _SENT_STATUSES
        self.policy_issued = status == QuoteStatus.ISSUED
        self.exception_sent = status in _EXCEPTION_STATUSES
        self.show_subscriber_input = False
        self.show_draft_popup = False
        self._rehydrate()

        self.step = resume_step(quote)
        if self.step == STEP_QUOTE:
            await self._generate_plans()
        if status == QuoteStatus.PENDING_APPROVAL and quote.id:
            self.ticket = self.approvals.open_ticket(quote, on_decision=self._on_approval_decision)
        return self.snapshot()

    # ------------------------------------------------------------------ #
    # Step 1: customer
    # ------------------------------------------------------------------ #
    async def search_customer(self, cpr: str) -> Dict[str, Any]:
        self._ensure_editable()
        cpr = (cpr or "").strip()
        raise_if_errors({"cpr": "CPR is required"} if not cpr else {})

        self.search_cpr = cpr
        self.notice = None
        token = self.guard.begin("customer_search")
        result = await self.eligibility.search_customer(cpr)
        if not self.guard.finish(token):
            return self.snapshot()

        if result.found:
            await self._commit(result.draft_data)
            self.show_subscriber_input = False
        else:
            await self._commit({"customer": {"cpr": cpr}})
            self.show_subscriber_input = True
            self.subscriber_buffer.setdefault("subscriber_number", "")
            if result.message:
                self.notice = result.message
        return self.snapshot()

    async def update_customer(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Commit customer fields as the agent leaves each input."""
        self._ensure_editable()
        cleaned = validate_customer_fields(fields)
        await self._commit({"customer": cleaned})
        return self.snapshot()

    def update_subscriber(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_editable()
        self.subscriber_buffer.update(fields)
        return self.snapshot()

    async def check_eligibility(self) -> Dict[str, Any]:
        self._ensure_editable()
        insurance_type = self.quote.insurance_type
        details = validate_subscriber_details(
            self.subscriber_buffer,
            vehicle_required=insurance_type != InsuranceType.TRAVEL,
        )
        cpr = (self.quote.customer.cpr if self.quote.customer else "") or self.search_cpr
        raise_if_errors({"cpr": "CPR is required"} if not cpr else {})

        self.notice = None
        token = self.guard.begin("eligibility")
        check = await self.eligibility.check_subscriber(cpr, details, insurance_type)
        if not self.guard.finish(token):
            return self.snapshot()

        if check.outcome == SubscriberOutcome.DRAFT_FOUND:
            self.pending_draft = check
            self.show_draft_popup = True
            self.notice = check.message
            return self.snapshot()

        if check.outcome == SubscriberOutcome.LOOKUP_FAILED:
            # Keep the entered details so the agent can continue manually
            fallback = EligibilityCheckResult(success=False, is_eligible=False)
            await self._commit(subscriber_draft_data(cpr, details, fallback, insurance_type, eligible=False))
            self.notice = check.message
            return self.snapshot()

        if not await self._commit(check.draft_data):
            return self.snapshot()
        self.show_subscriber_input = False
        self.notice = check.message
        self._rehydrate()
        if check.outcome == SubscriberOutcome.ELIGIBLE and insurance_type == InsuranceType.TRAVEL:
            self._leave_step(STEP_CUSTOMER)
            self.step = STEP_DETAILS
        return self.snapshot()

    async def continue_draft(self) -> Dict[str, Any]:
        """Resume the subscriber's existing draft, then apply the confirmed details."""
        self._ensure_editable()
        check = self._take_pending_draft()
        self.lookups.clear_cache()

        partial = dict(check.draft_data)
        subscriber = partial.get("subscriber_number")
        insurance_type = self.quote.insurance_type
        existing = self.gateway.find_open_draft(subscriber, insurance_type) if subscriber else None
        if existing is not None and existing.id != self.quote.id and existing.insurance_type == insurance_type:
            logger.info("Continuing draft %s for subscriber %s", existing.quote_reference, subscriber)
            await self.gateway.adopt(self.handle, existing)
            if "vehicle" in partial:
                # Keep the resumed vehicle details; only the plate is confirmed again
                partial["vehicle"] = {"plate_number": partial["vehicle"].get("plate_number")}
        if check.travel_draft:
            criteria = travel_criteria_from_partner_draft(check.travel_draft)
            if criteria and self.quote.insurance_type == InsuranceType.TRAVEL:
                partial["travel_criteria"] = criteria
        return await self._enter_details_from_draft(partial)

    async def start_new(self) -> Dict[str, Any]:
        """Ignore the found draft and continue with the freshly entered details."""
        self._ensure_editable()
        check = self._take_pending_draft()
        self.lookups.clear_cache()
        return await self._enter_details_from_draft(dict(check.draft_data))

    def _take_pending_draft(self) -> SubscriberCheck:
        if self.pending_draft is None:
            raise FormValidationError(field_errors={"draft": "There is no draft prompt to answer"})
        check = self.pending_draft
        self.pending_draft = None
        self.show_draft_popup = False
        return check

    async def _enter_details_from_draft(self, partial: Dict[str, Any]) -> Dict[str, Any]:
        if not await self._commit(partial):
            return self.snapshot()
        self.show_subscriber_input = False
        self._rehydrate()
        self._leave_step(STEP_CUSTOMER)
        self.step = STEP_DETAILS
        return self.snapshot()

    # ------------------------------------------------------------------ #
    # Navigation
    # ------------------------------------------------------------------ #
    async def next(self) -> Dict[str, Any]:
        self._ensure_editable()
        if self.step == STEP_CUSTOMER:
            customer = self.quote.customer.model_dump(mode="json") if self.quote.customer else {}
            validate_customer_step(customer)
            if not await self._commit({}):
                return self.snapshot()
            self._leave_step(STEP_CUSTOMER)
            self._rehydrate()
            self.step = STEP_DETAILS
            return self.snapshot()
        if self.step == STEP_DETAILS:
            if self.quote.insurance_type == InsuranceType.TRAVEL:
                return await self.submit_travel()
            return await self.submit_motor()
        raise FormValidationError(field_errors={"step": "Already on the quote step"})

    async def back(self) -> Dict[str, Any]:
        """Step back without discarding anything that was committed."""
        if self.step > STEP_CUSTOMER:
            self._leave_step(self.step)
            # A plan fetch started by submitting the details belongs to the details step too
            self.guard.cancel(("plans",))
            self.step -= 1
            self._rehydrate()
        return self.snapshot()

    async def set_insurance_type(self, insurance_type: str) -> Dict[str, Any]:
        self._ensure_editable()
        try:
            chosen = InsuranceType(str(insurance_type).upper())
        except ValueError:
            raise FormValidationError(field_errors={"insurance_type": "Unknown insurance type"})
        if chosen not in ENABLED_INSURANCE_TYPES:
            raise FormValidationError(field_errors={"insurance_type": f"{chosen.value.title()} insurance is not available yet"})

        if chosen != self.quote.insurance_type:
            self.guard.cancel(STEP_FETCH_TARGETS[STEP_DETAILS] + STEP_FETCH_TARGETS[STEP_QUOTE])
            self.plans = []
            await self._commit({"insurance_type": chosen.value})
            self._rehydrate()
        return self.snapshot()

    # ------------------------------------------------------------------ #
    # Step 2: motor
    # ------------------------------------------------------------------ #
    async def update_motor(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_editable()
        self.motor_buffer.update(fields)
        self.motor_buffer.update(derive_motor_values(self.motor_buffer, fields.keys()))
        if "make" in fields:
            await self._refresh_models()
        return self.snapshot()

    async def _refresh_models(self) -> None:
        token = self.guard.begin("models")
        try:
            models = await models_for_make(self.vehicle_client, self.motor_buffer.get("make"))
        except Exception as e:
            if self.guard.finish(token):
                self._fault(e, "get_models_for_make")
                self.model_options = []
            return
        if self.guard.finish(token):
            self.model_options = models

    async def lookup_vehicle(self, plate_number: Optional[str] = None, *, refresh: bool = False) -> Dict[str, Any]:
        self._ensure_editable()
        plate = (plate_number or self.motor_buffer.get("plate_number") or "").strip().upper()
        if plate:
            self.motor_buffer["plate_number"] = plate

        self.notice = None
        token = self.guard.begin("vehicle_lookup")
        try:
            result = await self.lookups.lookup(plate, use_cache=not refresh)
        except LookupFailure as e:
            if self.guard.finish(token):
                self.notice = e.message
            return self.snapshot()
        except Exception as e:
            if self.guard.finish(token):
                self._fault(e, "vehicle_lookup")
            return self.snapshot()

        if not self.guard.finish(token):
            logger.info("Discarding superseded vehicle lookup for %s", plate)
            return self.snapshot()

        self.motor_buffer.update(result.buffer_updates())
        if result.registration_month:
            self.registration_month = result.registration_month
        if result.notices:
            self.notice = " ".join(result.notices)
        await self._refresh_models()
        return self.snapshot()

    async def submit_motor(self) -> Dict[str, Any]:
        self._ensure_editable()
        origin = self.step
        cleaned = validate_motor_details(self.motor_buffer)
        partial: Dict[str, Any] = {
            "insurance_type": InsuranceType.MOTOR.value,
            "vehicle": {k: cleaned[k] for k in _VEHICLE_FIELDS},
            "risk_factors": {k: cleaned[k] for k in _RISK_FIELDS},
            "start_date": cleaned["start_date"],
        }
        if self.registration_month and self.quote.customer is not None:
            partial["customer"] = {"registration_month": self.registration_month}
        if not await self._commit(partial):
            return self.snapshot()
        return await self._enter_quote_step(origin)

    # ------------------------------------------------------------------ #
    # Step 2: travel
    # ------------------------------------------------------------------ #
    def update_travel(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_editable()
        self.travel_buffer.update(fields)
        return self.snapshot()

    async def submit_travel(self) -> Dict[str, Any]:
        self._ensure_editable()
        origin = self.step
        cleaned = validate_travel_details(
            self.travel_buffer,
            destinations=[d.value for d in TravelDestination],
            travel_types=[t.value for t in TravelType],
        )
        partial = {"insurance_type": InsuranceType.TRAVEL.value, "travel_criteria": cleaned}
        if not await self._commit(partial):
            return self.snapshot()
        return await self._enter_quote_step(origin)

    async def _enter_quote_step(self, origin: int) -> Dict[str, Any]:
        self._leave_step(STEP_DETAILS)
        if await self._generate_plans() and self.step == origin:
            self.step = STEP_QUOTE
        return self.snapshot()

    async def _generate_plans(self) -> bool:
        token = self.guard.begin("plans")
        generation = await self.plan_source.generate(self.quote)
        if not self.guard.finish(token):
            return False
        self.plans = generation.plans
        self.plan_notice = generation.notice
        return True

    # ------------------------------------------------------------------ #
    # Step 3: quote
    # ------------------------------------------------------------------ #
    async def select_plan(self, plan_id: str) -> Dict[str, Any]:
        self._ensure_editable()
        plan = self._plan_by_id(plan_id)
        if plan is None:
            raise FormValidationError(field_errors={"selected_plan_id": "Select one of the offered plans"})

        offered = {addon.id for addon in plan.add_ons}
        await self._commit(
            {
                "selected_plan_id": plan.id,
                "provider": plan.provider,
                "plan_name": plan.name,
                "selected_addons": [a for a in self.quote.selected_addons if a in offered],
            }
        )
        return self.snapshot()

    async def set_payment_method(self, method: str) -> Dict[str, Any]:
        """Either method may be chosen; installment checkout is gated in `send_link`."""
        self._ensure_editable()
        try:
            chosen = PaymentMethod(str(method).upper())
        except ValueError:
            raise FormValidationError(field_errors={"payment_method": "Choose CASH or INSTALLMENT"})
        await self._commit({"payment_method": chosen.value})
        return self.snapshot()

    async def set_addons(self, addon_ids: Iterable[str]) -> Dict[str, Any]:
        self._ensure_editable()
        plan = self._plan_by_id(self.quote.selected_plan_id)
        if plan is None:
            raise FormValidationError(field_errors={"selected_plan_id": "Select a plan before choosing add-ons"})
        offered = {addon.id for addon in plan.add_ons}
        chosen = list(dict.fromkeys(addon_ids))
        unknown = [a for a in chosen if a not in offered]
        if unknown:
            raise FormValidationError(field_errors={"selected_addons": f"Not offered by {plan.name}: {', '.join(unknown)}"})
        await self._commit({"selected_addons": chosen})
        return self.snapshot()

    async def apply_discount(self, code: str) -> Dict[str, Any]:
        self._ensure_editable()
        self.discount_error = None
        token = self.guard.begin("discount")
        try:
            applied = await self.discounts.validate(code)
        except FormValidationError:
            self.guard.finish(token)
            raise
        except DiscountInvalid as e:
            if self.guard.finish(token):
                # The previously applied discount stays in place
                self.discount_error = e.message
            return self.snapshot()

        if not self.guard.finish(token):
            return self.snapshot()
        if await self._commit({"discount_code": applied.code, "discount_percent": applied.percent}):
            self.discount_owner = applied.owner_label
        return self.snapshot()

    async def remove_discount(self) -> Dict[str, Any]:
        self._ensure_editable()
        self.guard.cancel(["discount"])
        self.discount_error = None
        await self._commit({"discount_code": None, "discount_percent": None})
        self.discount_owner = None
        return self.snapshot()

    async def request_exception(self) -> Dict[str, Any]:
        self._ensure_editable()
        if not can_request_exception(self.quote):
            raise FormValidationError(
                field_errors={"exception": "An exception can only be requested for a selected plan when the customer is not eligible for installments"}
            )
        if not await self._commit(
            {
                "status": QuoteStatus.PENDING_APPROVAL.value,
                "provider": self.quote.provider,
                "plan_name": self.quote.plan_name,
            }
        ):
            return self.snapshot()

        self.exception_sent = True
        self.ticket = self.approvals.open_ticket(self.quote, on_decision=self._on_approval_decision)
        self.notice = "Exception request sent to Credit Control."
        return self.snapshot()

    async def _on_approval_decision(self, ticket: ApprovalTicket) -> None:
        if self.quote.status != QuoteStatus.PENDING_APPROVAL:
            logger.warning(
                "Ignoring approval decision for quote %s in status %s",
                self.quote.id,
                self.quote.effective_status.value,
            )
            return
        status = decision_status(bool(ticket.approved))
        await self.gateway.persist(
            self.handle,
            {"status": status.value, "approval_handled_at": ticket.decided_at.isoformat() if ticket.decided_at else None},
        )
        self.notice = "Installment exception approved." if ticket.approved else "Installment exception rejected."

    async def send_link(self) -> Dict[str, Any]:
        self._ensure_editable()
        if not can_send_link(self.quote):
            if self.quote.payment_method == PaymentMethod.INSTALLMENT and self.quote.selected_plan_id:
                message = "Installment payment needs an approved exception"
            else:
                message = "Select a plan before sending the payment link"
            raise FormValidationError(field_errors={"send_link": message})

        customer = self.quote.customer
        contact = self.quote.contact_number_for_link or (customer.mobile if customer else "")
        raise_if_errors({"contact_number_for_link": "A contact number is required to send the link"} if not contact else {})

        if not await self._commit(
            {
                "status": QuoteStatus.PAYMENT_PENDING.value,
                "provider": self.quote.provider,
                "plan_name": self.quote.plan_name,
            }
        ):
            return self.snapshot()

        mode = CustomerType.EXISTING.value if customer and customer.type == CustomerType.EXISTING else CustomerType.NEW.value
        try:
            result = await self.dispatcher.send_quote_link(
                contact,
                mode,
                quote_reference=self.quote.quote_reference,
                agent_name=self.quote.agent_name,
            )
        except Exception as e:
            self._fault(e, "send_quote_link")
            return self.snapshot()

        if not result.success:
            logger.warning("Payment link dispatch failed for quote %s: %s", self.quote.id, result.error)
            self.notice = f"Failed to send the payment link: {result.error or 'unknown error'}"
            return self.snapshot()

        self.quote_sent = True
        self.notice = "Payment link sent to the customer."
        if self.quote.discount_code:
            await self.discounts.redeem(
                self.quote.discount_code,
                customer.full_name if customer else "",
                contact,
                self.quote.id,
            )
        return self.snapshot()

    async def save_and_exit(self) -> Dict[str, Any]:
        """Write the aggregate as it stands; the status is left untouched."""
        if not self.quote.is_issued:
            await self._commit({})
        return self.snapshot()

    async def retry_save(self) -> Dict[str, Any]:
        try:
            await self.gateway.flush(self.handle)
        except PersistenceFailure as e:
            self.notice = e.message
        else:
            self.notice = None
        return self.snapshot()

    async def confirm_payment(self) -> Dict[str, Any]:
        """Payment gateway event: the policy is issued and the quote becomes read only."""
        await self.gateway.persist(self.handle, {"status": QuoteStatus.ISSUED.value})
        self.policy_issued = True
        self.quote_sent = True
        self.step = STEP_QUOTE
        return self.snapshot()

    # ------------------------------------------------------------------ #
    # Snapshot
    # ------------------------------------------------------------------ #
    def priced_plans(self) -> List[Dict[str, Any]]:
        quote = self.quote
        cards = []
        for plan in self.plans:
            selected = plan.id == quote.selected_plan_id
            addons = quote.selected_addons if selected else ()
            cards.append(
                {
                    "plan": plan.model_dump(mode="json"),
                    "selected": selected,
                    "cash": price_plan(
                        plan,
                        quote.discount_percent,
                        PaymentMethod.CASH,
                        selected_addons=addons,
                        vat_rate=self.vat_rate,
                        installment_count=self.installment_months,
                    ).to_display(),
                    "installment": price_plan(
                        plan,
                        quote.discount_percent,
                        PaymentMethod.INSTALLMENT,
                        selected_addons=addons,
                        vat_rate=self.vat_rate,
                        installment_count=self.installment_months,
                    ).to_display(),
                }
            )
        return cards

    def snapshot(self) -> Dict[str, Any]:
        quote = self.quote
        view = resolve_eligibility(quote)
        return {
            "step": self.step,
            "quote": quote.model_dump(mode="json"),
            "views": {
                "quote_sent": self.quote_sent,
                "policy_issued": self.policy_issued,
                "exception_sent": self.exception_sent,
                "show_subscriber_input": self.show_subscriber_input,
                "show_draft_popup": self.show_draft_popup,
                "read_only": quote.is_issued,
            },
            "eligibility": {
                "is_naturally_eligible": view.is_naturally_eligible,
                "is_exception_granted": view.is_exception_granted,
                "is_eligible_for_installment": view.is_eligible_for_installment,
                "is_pending_approval": view.is_pending_approval,
                "is_exception_rejected": view.is_exception_rejected,
            },
            "gates": {
                "can_request_exception": can_request_exception(quote),
                "can_send_link": can_send_link(quote),
                "installment_checkout_enabled": view.is_eligible_for_installment,
            },
            "buffers": {
                "search_cpr": self.search_cpr,
                "subscriber": dict(self.subscriber_buffer),
                "motor": dict(self.motor_buffer),
                "travel": dict(self.travel_buffer),
            },
            "model_options": list(self.model_options),
            "vehicle_lookup_cached": self.lookups.cached(self.motor_buffer.get("plate_number") or "") is not None,
            "plans": self.priced_plans(),
            "plan_notice": self.plan_notice,
            "discount": {
                "code": quote.discount_code,
                "percent": quote.discount_percent,
                "owner_label": self.discount_owner,
                "error": self.discount_error,
            },
            "draft_prompt": self.pending_draft.message if self.pending_draft else None,
            "approval_ticket_id": self.ticket.ticket_id if self.ticket else None,
            "notice": self.notice,
            "pending_write": self.handle.pending_write,
            "in_flight": sorted(self.guard.in_flight),
        }

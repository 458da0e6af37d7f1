"""Installment eligibility and the subscriber identification sub-flow.

Eligibility facts are derived from the aggregate on demand and never stored:

    naturally eligible     customer.is_eligible_for_installments
    exception granted      status == APPROVAL_GRANTED
    eligible               naturally eligible OR exception granted

Identification outcomes (`SubscriberOutcome`) are business results, not
errors: a denied subscriber can still be quoted, a failed lookup leaves the
form open for manual continuation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional

from takaful_quote.integrations.contracts.interfaces import (
    CustomerDirectory,
    EligibilityCheckResult,
    EligibilityClient,
)
from takaful_quote.quote.models import (
    CustomerType,
    InsuranceType,
    PaymentMethod,
    QuoteRequest,
    QuoteStatus,
    ZainPlan,
)

logger = logging.getLogger(__name__)

DRAFT_SIGNALS = ("draft", "already have")
NEW_CUSTOMER_CREDIT_SCORE = 700
DENIED_NOTICE = (
    "Subscriber is not eligible for Zain Takaful installments. "
    "You can continue with cash payment or request an exception."
)


# ---------------------------------------------------------------------------
# Derived eligibility
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EligibilityView:
    is_naturally_eligible: bool
    is_exception_granted: bool
    is_pending_approval: bool
    is_exception_rejected: bool

    @property
    def is_eligible_for_installment(self) -> bool:
        return self.is_naturally_eligible or self.is_exception_granted


def resolve_eligibility(quote: QuoteRequest) -> EligibilityView:
    customer = quote.customer
    return EligibilityView(
        is_naturally_eligible=bool(customer and customer.is_eligible_for_installments),
        is_exception_granted=quote.status == QuoteStatus.APPROVAL_GRANTED,
        is_pending_approval=quote.status == QuoteStatus.PENDING_APPROVAL,
        is_exception_rejected=quote.status == QuoteStatus.APPROVAL_REJECTED,
    )


def can_request_exception(quote: QuoteRequest) -> bool:
    """A plan is selected, the customer is not naturally eligible and no exception is on file."""
    if not quote.selected_plan_id:
        return False
    if resolve_eligibility(quote).is_naturally_eligible:
        return False
    return quote.effective_status == QuoteStatus.DRAFT


def can_send_link(quote: QuoteRequest) -> bool:
    if not quote.selected_plan_id or quote.is_issued:
        return False
    if quote.status in (QuoteStatus.LINK_SENT, QuoteStatus.PAYMENT_PENDING):
        # Resending a link that already went out
        return True
    if quote.payment_method == PaymentMethod.INSTALLMENT:
        return resolve_eligibility(quote).is_eligible_for_installment
    return True


# ---------------------------------------------------------------------------
# Subscriber identification
# ---------------------------------------------------------------------------

class SubscriberOutcome(str, Enum):
    ELIGIBLE = "ELIGIBLE"
    DRAFT_FOUND = "DRAFT_FOUND"
    DENIED = "DENIED"
    LOOKUP_FAILED = "LOOKUP_FAILED"


@dataclass
class SubscriberCheck:
    outcome: SubscriberOutcome
    draft_data: Dict[str, Any] = field(default_factory=dict)
    message: Optional[str] = None
    travel_draft: Optional[Dict[str, Any]] = None


@dataclass
class CustomerSearch:
    found: bool
    draft_data: Dict[str, Any] = field(default_factory=dict)
    message: Optional[str] = None


def has_draft_signal(message: Optional[str]) -> bool:
    text = (message or "").lower()
    return any(signal in text for signal in DRAFT_SIGNALS)


def _zain_plan(value: Optional[str]) -> Optional[str]:
    plan = (value or "").strip().upper()
    return plan if plan in (ZainPlan.POST.value, ZainPlan.PRE.value) else None


def subscriber_draft_data(
    cpr: str,
    details: Dict[str, str],
    result: EligibilityCheckResult,
    insurance_type: InsuranceType,
    *,
    eligible: bool = True,
) -> Dict[str, Any]:
    """The partial update recorded once a subscriber has been checked."""
    plan = _zain_plan(result.plan)
    if not eligible:
        installments = False
    elif result.is_eligible_for_installment is not None:
        installments = bool(result.is_eligible_for_installment)
    else:
        installments = plan == ZainPlan.POST.value

    subscriber = details["subscriber_number"]
    mobile = result.mobile or details["mobile"]
    data: Dict[str, Any] = {
        "customer": {
            "cpr": cpr,
            "full_name": result.name or details["full_name"],
            "mobile": mobile,
            "email": result.email or details["email"],
            "type": CustomerType.NEW.value,
            "zain_plan": plan,
            "is_eligible_for_zain": eligible,
            "is_eligible_for_installments": installments,
            "credit_score": NEW_CUSTOMER_CREDIT_SCORE,
            "active_lines": [subscriber],
        },
        "subscriber_number": subscriber,
        "contact_number_for_link": mobile,
    }
    if insurance_type == InsuranceType.MOTOR:
        data["vehicle"] = {
            "plate_number": details.get("vehicle_number") or "",
            "chassis_number": "",
            "make": "",
            "model": "",
            "year": str(date.today().year),
            "value": 0,
        }
    return data


class EligibilityResolver:
    def __init__(
        self,
        eligibility_client: EligibilityClient,
        customer_directory: Optional[CustomerDirectory] = None,
        *,
        customer_lookup_enabled: bool = False,
    ) -> None:
        self.eligibility_client = eligibility_client
        self.customer_directory = customer_directory
        self.customer_lookup_enabled = customer_lookup_enabled and customer_directory is not None

    async def search_customer(self, cpr: str) -> CustomerSearch:
        """CRM lookup by CPR. Disabled by configuration: every customer is new."""
        if not self.customer_lookup_enabled:
            return CustomerSearch(found=False)

        try:
            record = await self.customer_directory.fetch_customer_by_cpr(cpr)
        except Exception as e:
            logger.warning("CRM lookup failed for CPR %s: %s", cpr, e)
            return CustomerSearch(found=False, message="Customer lookup is unavailable. Enter the subscriber details.")
        if record is None:
            return CustomerSearch(found=False)

        try:
            eligibility = await self.eligibility_client.check_eligibility(cpr)
        except Exception as e:
            logger.warning("Eligibility check failed for CPR %s: %s", cpr, e)
            return CustomerSearch(found=False, message="Eligibility check failed. Enter the subscriber details.")

        if not (eligibility.success and eligibility.is_eligible):
            return CustomerSearch(
                found=False,
                message=eligibility.error or "Customer is not eligible for Zain Takaful service",
            )

        plan = _zain_plan(eligibility.plan) or _zain_plan(record.zain_plan)
        return CustomerSearch(
            found=True,
            draft_data={
                "customer": {
                    "cpr": record.cpr,
                    "full_name": record.full_name,
                    "mobile": record.mobile,
                    "email": record.email,
                    "type": CustomerType.EXISTING.value,
                    "zain_plan": plan,
                    "is_eligible_for_zain": True,
                    "is_eligible_for_installments": plan == ZainPlan.POST.value,
                    "credit_score": record.credit_score,
                },
                "subscriber_number": cpr,
                "contact_number_for_link": record.mobile,
            },
        )

    async def check_subscriber(self, cpr: str, details: Dict[str, str], insurance_type: InsuranceType) -> SubscriberCheck:
        if insurance_type == InsuranceType.TRAVEL:
            return await self._check_travel(cpr, details)
        return await self._check_motor(cpr, details)

    async def _check_motor(self, cpr: str, details: Dict[str, str]) -> SubscriberCheck:
        subscriber = details["subscriber_number"]
        try:
            result = await self.eligibility_client.check_eligibility(
                subscriber,
                full_name=details["full_name"],
                phone_number=details["mobile"],
                email=details["email"],
                vehicle_number=details.get("vehicle_number"),
            )
        except Exception as e:
            logger.warning("Eligibility check raised for %s: %s", subscriber, e)
            return SubscriberCheck(SubscriberOutcome.LOOKUP_FAILED, message=f"Failed to check eligibility: {e}")

        if not result.success:
            return SubscriberCheck(SubscriberOutcome.LOOKUP_FAILED, message=result.error or "Failed to check eligibility")

        if has_draft_signal(result.message):
            return SubscriberCheck(
                SubscriberOutcome.DRAFT_FOUND,
                draft_data=subscriber_draft_data(cpr, details, result, InsuranceType.MOTOR),
                message=result.message,
            )
        return self._decide(cpr, details, result, InsuranceType.MOTOR)

    async def _check_travel(self, cpr: str, details: Dict[str, str]) -> SubscriberCheck:
        subscriber = details["subscriber_number"]
        try:
            result = await self.eligibility_client.check_travel_eligibility(subscriber, details["email"])
        except Exception as e:
            logger.warning("Travel eligibility check raised for %s: %s", subscriber, e)
            return SubscriberCheck(SubscriberOutcome.LOOKUP_FAILED, message=f"Failed to check eligibility: {e}")

        if not result.success:
            return SubscriberCheck(SubscriberOutcome.LOOKUP_FAILED, message=result.error or "Failed to check eligibility")

        try:
            draft = await self.eligibility_client.get_draft_travel_application(details["email"])
        except Exception as e:
            logger.warning("Travel draft lookup raised for %s: %s", details["email"], e)
            draft = None
        if draft is not None and draft.success and draft.draft:
            draft_id = draft.draft.get("id") or draft.draft.get("applicationId")
            return SubscriberCheck(
                SubscriberOutcome.DRAFT_FOUND,
                draft_data=subscriber_draft_data(cpr, details, result, InsuranceType.TRAVEL),
                message=f"You have an existing draft travel application (ID: {draft_id}). Would you like to continue with it?",
                travel_draft=draft.draft,
            )
        return self._decide(cpr, details, result, InsuranceType.TRAVEL)

    def _decide(
        self,
        cpr: str,
        details: Dict[str, str],
        result: EligibilityCheckResult,
        insurance_type: InsuranceType,
    ) -> SubscriberCheck:
        if result.is_eligible:
            return SubscriberCheck(
                SubscriberOutcome.ELIGIBLE,
                draft_data=subscriber_draft_data(cpr, details, result, insurance_type),
                message=result.message,
            )
        logger.info("Subscriber %s is not eligible: %s", details["subscriber_number"], result.message)
        return SubscriberCheck(
            SubscriberOutcome.DENIED,
            draft_data=subscriber_draft_data(cpr, details, result, insurance_type, eligible=False),
            message=DENIED_NOTICE,
        )


def travel_criteria_from_partner_draft(draft: Dict[str, Any]) -> Dict[str, Any]:
    """Map a partner travel draft onto the travel criteria fields it carries."""
    aliases = {
        "destination": ("destination",),
        "type": ("travelType", "type"),
        "departure_date": ("departureDate", "departure_date"),
        "return_date": ("returnDate", "return_date"),
        "adults_count": ("adultsCount", "adults_count"),
        "children_count": ("childrenCount", "children_count"),
        "individual_dob": ("individualDob", "individual_dob", "dob"),
    }
    criteria: Dict[str, Any] = {}
    for target, keys in aliases.items():
        for key in keys:
            value = draft.get(key)
            if value not in (None, ""):
                criteria[target] = value
                break
    return criteria

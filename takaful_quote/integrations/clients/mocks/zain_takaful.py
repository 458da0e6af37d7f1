"""
Zain Takaful partner API — MOCK client.

⚠️  This is a mock implementation for development and testing.
    It answers every eligibility, vehicle, registry and plan call with
    realistic-looking fake data. Failure scenarios are configurable per
    operation via the constructor so the quote flow's degraded paths can be
    exercised without the partner.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from takaful_quote.integrations.contracts.interfaces import (
    EligibilityCheckResult,
    EligibilityClient,
    MotorData,
    MotorDataResult,
    MotorPlansRequest,
    MotorPlansResult,
    PartnerMotorPlan,
    PartnerTravelPlan,
    PlanBenefit,
    PlanClient,
    RegistryClient,
    RegistryData,
    RegistryDataResult,
    TravelDraftResult,
    TravelPlansRequest,
    TravelPlansResult,
    VehicleDataClient,
)
from takaful_quote.integrations.clients.real_http.zain_takaful import MODEL_CATALOGUE
from takaful_quote.quote.derived import policy_end_date

logger = logging.getLogger(__name__)

POSTPAID_PREFIXES = ("39", "36")
DRAFT_EXISTS_MESSAGE = "You already have a draft application for this vehicle"


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

_COMPREHENSIVE_BENEFITS = [
    "Third Party Property Damage",
    "Loss or Damage of Vehicle",
    "Road Assist Cover",
    "Agency Repair",
    "Emergency Treatment Cover",
    "Windows Cover",
]

_MOCK_MOTOR_PLANS: List[PartnerMotorPlan] = [
    PartnerMotorPlan(
        id="zain-super",
        name="Zain Super",
        policy_price=Decimal("242.000"),
        upfront=Decimal("26.000"),
        installment_price=Decimal("18.000"),
        benefits=[PlanBenefit(name) for name in _COMPREHENSIVE_BENEFITS]
        + [
            PlanBenefit("Car Replacement Cover"),
            PlanBenefit("Natural Perils"),
            PlanBenefit("VIP"),
            PlanBenefit("Third Party Bodily Injury"),
        ],
    ),
    PartnerMotorPlan(
        id="zain-economy",
        name="Zain Economy",
        policy_price=Decimal("220.000"),
        upfront=Decimal("28.000"),
        installment_price=Decimal("16.000"),
        benefits=[PlanBenefit(name) for name in _COMPREHENSIVE_BENEFITS]
        + [
            PlanBenefit("Car Replacement Cover", included=False),
            PlanBenefit("Third Party Bodily Injury"),
        ],
    ),
    PartnerMotorPlan(
        id="third-party",
        name="Third Party",
        policy_price=Decimal("64.900"),
        upfront=Decimal("6.100"),
        installment_price=Decimal("4.900"),
        benefits=[PlanBenefit("Third Party Property Damage"), PlanBenefit("Third Party Bodily Injury")],
    ),
]

_MOCK_TRAVEL_PLANS: List[PartnerTravelPlan] = [
    PartnerTravelPlan(
        id="travel-plan-1",
        name="Basic Travel",
        premium=Decimal("25"),
        features=["Medical Emergency", "Trip Cancellation"],
    ),
    PartnerTravelPlan(
        id="travel-plan-2",
        name="Premium Travel",
        premium=Decimal("50"),
        features=["Medical Emergency", "Trip Cancellation", "Lost Luggage", "24/7 Support"],
    ),
]


# ---------------------------------------------------------------------------
# Mock client
# ---------------------------------------------------------------------------

class MockZainTakafulClient(EligibilityClient, VehicleDataClient, RegistryClient, PlanClient):
    """
    Mock Zain Takaful client.

    Parameters
    ----------
    failing_operations : iterable of str
        Method names that return a `success=False` result, e.g.
        {"get_motor_data", "get_motor_plans"}.
    draft_subscribers : iterable of str
        Subscriber numbers whose motor eligibility response reports an
        existing draft application.
    ineligible_subscribers : iterable of str
        Subscriber numbers answered with success=True, isEligible=False.
    travel_drafts : dict
        email -> partner travel draft returned by the draft lookup.
    empty_plans : bool
        If True, plan calls succeed with no plans (exercises fallbacks).
    """

    def __init__(
        self,
        failing_operations: Optional[Iterable[str]] = None,
        draft_subscribers: Optional[Iterable[str]] = None,
        ineligible_subscribers: Optional[Iterable[str]] = None,
        travel_drafts: Optional[Dict[str, Dict[str, Any]]] = None,
        empty_plans: bool = False,
    ):
        self.failing_operations = set(failing_operations or [])
        self.draft_subscribers = set(draft_subscribers or [])
        self.ineligible_subscribers = set(ineligible_subscribers or [])
        self.travel_drafts: Dict[str, Dict[str, Any]] = dict(travel_drafts or {})
        self.empty_plans = empty_plans

        # Call log for assertions: (operation, key argument)
        self.calls: List[tuple] = []

        logger.info("[ZAIN MOCK] Client initialised (failing=%s)", sorted(self.failing_operations) or "none")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _record(self, operation: str, key: Any) -> bool:
        """Log the call and report whether it should fail."""
        self.calls.append((operation, key))
        return operation in self.failing_operations

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------

    async def check_eligibility(
        self,
        subscriber_number: str,
        *,
        full_name: Optional[str] = None,
        phone_number: Optional[str] = None,
        email: Optional[str] = None,
        vehicle_number: Optional[str] = None,
    ) -> EligibilityCheckResult:
        if self._record("check_eligibility", subscriber_number):
            return EligibilityCheckResult(success=False, is_eligible=False, error="Eligibility service unavailable")

        is_postpaid = subscriber_number.startswith(POSTPAID_PREFIXES)
        plan = "POST" if is_postpaid else "PRE"

        if subscriber_number in self.ineligible_subscribers:
            logger.info("[ZAIN MOCK] Subscriber %s not eligible", subscriber_number)
            return EligibilityCheckResult(
                success=True,
                is_eligible=False,
                subscriber_number=subscriber_number,
                plan=plan,
                message="Subscriber is not eligible for Zain Takaful",
            )

        message = f"Mock eligibility check successful ({'Postpaid' if is_postpaid else 'Prepaid'})"
        if subscriber_number in self.draft_subscribers:
            message = DRAFT_EXISTS_MESSAGE

        logger.info("[ZAIN MOCK] Subscriber %s eligible (%s)", subscriber_number, plan)
        return EligibilityCheckResult(
            success=True,
            is_eligible=True,
            subscriber_number=subscriber_number,
            plan=plan,
            message=message,
            mobile=phone_number,
            email=email,
            name=full_name,
        )

    async def check_travel_eligibility(self, zain_number: str, email: str) -> EligibilityCheckResult:
        if self._record("check_travel_eligibility", zain_number):
            return EligibilityCheckResult(success=False, is_eligible=False, error="Travel eligibility service unavailable")
        return EligibilityCheckResult(
            success=True,
            is_eligible=zain_number not in self.ineligible_subscribers,
            subscriber_number=zain_number,
            plan="POST",
            message="Customer is eligible for travel insurance",
            is_eligible_for_installment=True,
            email=email,
        )

    async def get_draft_travel_application(self, email: str) -> TravelDraftResult:
        if self._record("get_draft_travel_application", email):
            return TravelDraftResult(success=False, error="Travel draft lookup unavailable")
        return TravelDraftResult(success=True, draft=self.travel_drafts.get(email))

    # ------------------------------------------------------------------
    # Vehicle data
    # ------------------------------------------------------------------

    async def get_motor_data(self, plate_number: str, *, eligible: bool = True) -> MotorDataResult:
        if self._record("get_motor_data", plate_number):
            return MotorDataResult(success=False, error="Vehicle not found")
        return MotorDataResult(
            success=True,
            data=MotorData(
                plate_number=plate_number,
                chassis_number=f"CH{plate_number}ABC",
                make="Toyota",
                model="Camry",
                year="2022",
                body_type="Sedan",
                engine_size="2.5L",
                registration_month=3,
            ),
            message="Mock vehicle data retrieved",
        )

    async def get_models_for_make(self, make: str) -> List[str]:
        self._record("get_models_for_make", make)
        return list(MODEL_CATALOGUE.get((make or "").strip().upper(), []))

    async def get_vehicle_details(self, plate_number: str, chassis_number: Optional[str] = None) -> RegistryDataResult:
        if self._record("get_vehicle_details", plate_number):
            return RegistryDataResult(success=False, error="Registry service unavailable")
        today = date.today()
        return RegistryDataResult(
            success=True,
            data=RegistryData(
                plate_number=plate_number,
                registration_month=3,
                policy_start_date=today.isoformat(),
                policy_end_date=policy_end_date(today).isoformat(),
                vehicle_value=15000,
            ),
            message="Mock registry data retrieved",
        )

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    async def get_motor_plans(self, request: MotorPlansRequest) -> MotorPlansResult:
        if self._record("get_motor_plans", request.plate_number):
            return MotorPlansResult(success=False, error="Plan service unavailable")
        if self.empty_plans:
            return MotorPlansResult(success=True, plans=[], message="No plans available")
        return MotorPlansResult(success=True, plans=list(_MOCK_MOTOR_PLANS), message="Mock plans retrieved successfully")

    async def get_travel_plans(self, request: TravelPlansRequest) -> TravelPlansResult:
        if self._record("get_travel_plans", request.destination):
            return TravelPlansResult(success=False, error="Travel plan service unavailable")
        if self.empty_plans:
            return TravelPlansResult(success=True, plans=[])
        return TravelPlansResult(success=True, plans=list(_MOCK_TRAVEL_PLANS))

"""Plan generation for the quote step.

Plans are recomputed from the aggregate's risk inputs every time the quote
step is entered. Partner plans are preferred; an empty or failed partner
response falls back to locally generated plans so the step always has
something to price.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from takaful_quote.error_handler import ErrorHandler
from takaful_quote.integrations.contracts.interfaces import (
    MotorPlansRequest,
    PartnerMotorPlan,
    PartnerTravelPlan,
    PlanClient,
    TravelPlansRequest,
)
from takaful_quote.quote.derived import policy_end_date
from takaful_quote.quote.models import InsurancePlan, InsuranceType, PlanAddon, QuoteRequest
from takaful_quote.quote.pricing import DEFAULT_VAT_RATE, money

logger = logging.getLogger(__name__)

FALLBACK_RATE = Decimal("0.03")
PARTNER_PROVIDER = "GIG"
FALLBACK_NOTICE = "Live plans are unavailable; showing indicative plans."


@dataclass
class PlanGeneration:
    plans: List[InsurancePlan]
    source: str
    notice: Optional[str] = None


def _round_half_up(value: Decimal) -> Decimal:
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def fallback_motor_plans(vehicle_value: float) -> List[InsurancePlan]:
    base = _round_half_up(Decimal(str(vehicle_value or 0)) * FALLBACK_RATE)
    return [
        InsurancePlan(
            id="plan_gig_1",
            provider="GIG",
            name="Comprehensive",
            base_premium=base,
            features=["Roadside", "Agency Repair (3 Years)", "Zero Dep. (Option)"],
        ),
        InsurancePlan(
            id="plan_snic_1",
            provider="SNIC",
            name="Smart Drive",
            base_premium=_round_half_up(base * Decimal("0.9")),
            features=["Roadside", "Car Replacement"],
        ),
        InsurancePlan(
            id="plan_tisur_1",
            provider="TISUR",
            name="Economy",
            base_premium=_round_half_up(base * Decimal("0.4")),
            features=["Third Party Liability"],
        ),
    ]


def fallback_travel_plans() -> List[InsurancePlan]:
    return [
        InsurancePlan(
            id="vip",
            provider=PARTNER_PROVIDER,
            name="VIP",
            base_premium=Decimal("25.360"),
            features=[
                "Medical Transport or Repatriation up to USD 250,000",
                "Medical Expenses Abroad up to USD 150,000",
                "Personal Liability up to USD 100,000",
                "Compensation for Baggage Delay up to USD 500",
                "Cancellation Expenses up to USD 500",
            ],
            add_ons=[
                PlanAddon(id="winter-sports", name="Winter Sports Up to USD 200", price=Decimal("47.410")),
                PlanAddon(id="hazardous-sports", name="Hazardous Sports Up to USD 200", price=Decimal("47.410")),
                PlanAddon(id="business-cover", name="Business Cover", price=Decimal("30.800")),
            ],
        ),
        InsurancePlan(
            id="roamer",
            provider=PARTNER_PROVIDER,
            name="Roamer",
            base_premium=Decimal("20.360"),
            features=[
                "Medical Transport or Repatriation up to USD 30,000",
                "Medical Expenses Abroad up to USD 30,000",
                "Transport or Repatriation of the Deceased Insured up to USD 25,000",
                "Compensation for Baggage Delay",
            ],
            add_ons=[
                PlanAddon(id="winter-sports", name="Winter Sports Up to USD 200", price=Decimal("60.720")),
                PlanAddon(id="hazardous-sports", name="Hazardous Sports Up to USD 200", price=Decimal("60.720")),
                PlanAddon(id="business-cover", name="Business Cover", price=Decimal("28.480")),
            ],
        ),
    ]


def motor_plan_from_partner(plan: PartnerMotorPlan, vat_rate: Decimal = DEFAULT_VAT_RATE) -> InsurancePlan:
    # Partner prices include VAT; pricing adds it back on the discounted base.
    base = plan.policy_price / (Decimal(1) + vat_rate) if plan.vat_included else plan.policy_price
    return InsurancePlan(
        id=plan.id,
        provider=PARTNER_PROVIDER,
        name=plan.name,
        base_premium=money(base),
        features=[b.name for b in plan.benefits if b.included],
    )


def travel_plan_from_partner(plan: PartnerTravelPlan) -> InsurancePlan:
    add_ons = []
    for raw in plan.add_ons:
        addon_id = raw.get("id") or raw.get("name")
        if not addon_id:
            continue
        add_ons.append(
            PlanAddon(
                id=str(addon_id),
                name=str(raw.get("name") or addon_id),
                price=Decimal(str(raw.get("price") or 0)),
            )
        )
    return InsurancePlan(
        id=plan.id,
        provider=plan.provider or PARTNER_PROVIDER,
        name=plan.name,
        base_premium=plan.premium,
        features=list(plan.features),
        add_ons=add_ons,
    )


class PlanSource:
    """Turns an aggregate's risk inputs into an ordered, non-empty plan list.

    Generation has no side effects beyond its return value; calling it again
    with the same inputs yields the same plans.
    """

    def __init__(
        self,
        plan_client: PlanClient,
        *,
        vat_rate: Decimal = DEFAULT_VAT_RATE,
        error_handler: Optional[ErrorHandler] = None,
    ) -> None:
        self.plan_client = plan_client
        self.vat_rate = Decimal(str(vat_rate))
        self.error_handler = error_handler or ErrorHandler()

    async def generate(self, quote: QuoteRequest) -> PlanGeneration:
        if quote.insurance_type == InsuranceType.TRAVEL:
            return await self.travel_plans(quote)
        return await self.motor_plans(quote)

    async def motor_plans(self, quote: QuoteRequest) -> PlanGeneration:
        vehicle = quote.vehicle
        value = vehicle.value if vehicle else 0
        if vehicle is None or not vehicle.plate_number:
            return PlanGeneration(plans=fallback_motor_plans(value), source="fallback", notice=FALLBACK_NOTICE)

        start = quote.start_date
        end = vehicle.policy_end_date or (policy_end_date(start) if start else None)
        risk = quote.risk_factors
        request = MotorPlansRequest(
            plate_number=vehicle.plate_number,
            vehicle_value=value,
            policy_start_date=start.isoformat() if start else "",
            policy_end_date=end.isoformat() if end else "",
            registration_month=quote.customer.registration_month if quote.customer else None,
            subscriber_number=quote.subscriber_number,
            make=vehicle.make or None,
            model=vehicle.model or None,
            year=vehicle.year or None,
            chassis_number=vehicle.chassis_number or None,
            body_type=vehicle.body_type,
            engine_size=vehicle.engine_size,
            age_under_24=bool(risk and risk.age_under_24),
            license_under_1_year=bool(risk and risk.license_under_1_year),
        )

        try:
            result = await self.plan_client.get_motor_plans(request)
        except Exception as e:
            self.error_handler.handle_exception(e, {"operation": "get_motor_plans", "plate_number": vehicle.plate_number})
            return PlanGeneration(plans=fallback_motor_plans(value), source="fallback", notice=FALLBACK_NOTICE)

        if not result.success or not result.plans:
            logger.warning("Motor plans unavailable (%s); using fallback plans", result.error or "empty response")
            return PlanGeneration(plans=fallback_motor_plans(value), source="fallback", notice=FALLBACK_NOTICE)

        return PlanGeneration(
            plans=[motor_plan_from_partner(p, self.vat_rate) for p in result.plans],
            source="partner",
        )

    async def travel_plans(self, quote: QuoteRequest) -> PlanGeneration:
        criteria = quote.travel_criteria
        if criteria is None or not criteria.departure_date or not criteria.return_date:
            return PlanGeneration(plans=fallback_travel_plans(), source="fallback", notice=FALLBACK_NOTICE)

        request = TravelPlansRequest(
            destination=criteria.destination.value,
            departure_date=criteria.departure_date.isoformat(),
            return_date=criteria.return_date.isoformat(),
            travel_type=criteria.type.value,
            adults_count=criteria.adults_count,
            children_count=criteria.children_count,
        )
        try:
            result = await self.plan_client.get_travel_plans(request)
        except Exception as e:
            self.error_handler.handle_exception(e, {"operation": "get_travel_plans"})
            return PlanGeneration(plans=fallback_travel_plans(), source="fallback", notice=FALLBACK_NOTICE)

        if not result.success or not result.plans:
            logger.warning("Travel plans unavailable (%s); using fallback plans", result.error or "empty response")
            return PlanGeneration(plans=fallback_travel_plans(), source="fallback", notice=FALLBACK_NOTICE)

        return PlanGeneration(plans=[travel_plan_from_partner(p) for p in result.plans], source="partner")

"""
Contracts (data models).

This folder defines the request/response shapes for external integrations:
- Zain subscriber eligibility (motor and travel) and travel draft lookups
- Vehicle data and traffic registry lookups
- Motor and travel plan generation
- Staff discount code validation
- Payment link dispatch and CRM customer lookup

Why this exists:
- Ensures consistent data structures across mock and real clients
- Prevents "guessing" payload formats in multiple places
- Makes integration safer: the quote flow relies on stable models, not on ad-hoc dicts

Both mock and real HTTP clients should use these contracts.
"""

from .interfaces import (
    CustomerDirectory,
    CustomerRecord,
    DiscountAuthority,
    DiscountValidationResult,
    EligibilityCheckResult,
    EligibilityClient,
    LinkDispatcher,
    LinkDispatchResult,
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

__all__ = [
    "CustomerDirectory",
    "CustomerRecord",
    "DiscountAuthority",
    "DiscountValidationResult",
    "EligibilityCheckResult",
    "EligibilityClient",
    "LinkDispatcher",
    "LinkDispatchResult",
    "MotorData",
    "MotorDataResult",
    "MotorPlansRequest",
    "MotorPlansResult",
    "PartnerMotorPlan",
    "PartnerTravelPlan",
    "PlanBenefit",
    "PlanClient",
    "RegistryClient",
    "RegistryData",
    "RegistryDataResult",
    "TravelDraftResult",
    "TravelPlansRequest",
    "TravelPlansResult",
    "VehicleDataClient",
]

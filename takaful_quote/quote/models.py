"""
Quote aggregate and sub-entities.

`QuoteRequest` is the document that the persistence gateway stores. It has no
behaviour beyond construction-time invariants; every mutation goes through
`DraftPersistenceGateway.persist`.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class QuoteStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVAL_GRANTED = "APPROVAL_GRANTED"
    APPROVAL_REJECTED = "APPROVAL_REJECTED"
    LINK_SENT = "LINK_SENT"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    ISSUED = "ISSUED"


class InsuranceType(str, Enum):
    MOTOR = "MOTOR"
    TRAVEL = "TRAVEL"
    HEALTH = "HEALTH"
    LIFE = "LIFE"
    CYBER = "CYBER"
    HOME = "HOME"
    PERSONAL_ACCIDENT = "PERSONAL_ACCIDENT"


ENABLED_INSURANCE_TYPES: FrozenSet[InsuranceType] = frozenset({InsuranceType.MOTOR, InsuranceType.TRAVEL})


class CustomerType(str, Enum):
    NEW = "NEW"
    EXISTING = "EXISTING"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    INSTALLMENT = "INSTALLMENT"


class TravelType(str, Enum):
    INDIVIDUAL = "INDIVIDUAL"
    FAMILY = "FAMILY"


class TravelDestination(str, Enum):
    WORLDWIDE = "WORLDWIDE"
    WORLDWIDE_EXCL_US_CA = "WORLDWIDE_EXCL_US_CA"
    SCHENGEN = "SCHENGEN"


class QuoteSource(str, Enum):
    AGENT_PORTAL = "AGENT_PORTAL"
    CUSTOMER_PORTAL = "CUSTOMER_PORTAL"


class ZainPlan(str, Enum):
    POST = "POST"
    PRE = "PRE"


# Same-status writes are always allowed and are not listed here.
_ALLOWED_TRANSITIONS: Dict[QuoteStatus, FrozenSet[QuoteStatus]] = {
    QuoteStatus.DRAFT: frozenset({QuoteStatus.PENDING_APPROVAL, QuoteStatus.LINK_SENT, QuoteStatus.PAYMENT_PENDING}),
    QuoteStatus.PENDING_APPROVAL: frozenset(
        {
            QuoteStatus.APPROVAL_GRANTED,
            QuoteStatus.APPROVAL_REJECTED,
            QuoteStatus.LINK_SENT,
            QuoteStatus.PAYMENT_PENDING,
        }
    ),
    QuoteStatus.APPROVAL_GRANTED: frozenset({QuoteStatus.LINK_SENT, QuoteStatus.PAYMENT_PENDING}),
    QuoteStatus.APPROVAL_REJECTED: frozenset({QuoteStatus.LINK_SENT, QuoteStatus.PAYMENT_PENDING}),
    QuoteStatus.LINK_SENT: frozenset({QuoteStatus.PAYMENT_PENDING}),
    QuoteStatus.PAYMENT_PENDING: frozenset({QuoteStatus.ISSUED}),
    QuoteStatus.ISSUED: frozenset(),
}


def can_transition(current: Optional[QuoteStatus], requested: QuoteStatus) -> bool:
    if current is None or current == requested:
        return True
    return requested in _ALLOWED_TRANSITIONS.get(current, frozenset())


class Customer(BaseModel):
    cpr: str = ""
    full_name: str = ""
    mobile: str = ""
    email: str = ""
    type: CustomerType = CustomerType.NEW
    zain_plan: Optional[ZainPlan] = None
    is_eligible_for_zain: bool = False
    is_eligible_for_installments: bool = False
    credit_score: int = 0
    active_lines: List[str] = Field(default_factory=list)
    registration_month: Optional[int] = None


class Vehicle(BaseModel):
    plate_number: str = ""
    chassis_number: str = ""
    make: str = ""
    model: str = ""
    year: str = ""
    value: float = 0
    body_type: Optional[str] = None
    engine_size: Optional[str] = None
    is_brand_new: bool = False
    has_existing_insurance: bool = False
    existing_policy_expiry: Optional[date] = None
    policy_end_date: Optional[date] = None


class RiskFactors(BaseModel):
    age_under_24: bool = False
    license_under_1_year: bool = False


class TravelCriteria(BaseModel):
    type: TravelType = TravelType.INDIVIDUAL
    destination: TravelDestination = TravelDestination.WORLDWIDE
    departure_date: Optional[date] = None
    return_date: Optional[date] = None
    adults_count: int = 1
    children_count: int = 0
    individual_dob: Optional[date] = None


class PlanAddon(BaseModel):
    id: str
    name: str
    price: Decimal = Decimal("0")


class InsurancePlan(BaseModel):
    """A priced option. Generated from risk inputs, never stored on its own."""

    model_config = ConfigDict(frozen=True)

    id: str
    provider: str
    name: str
    base_premium: Decimal
    features: List[str] = Field(default_factory=list)
    add_ons: List[PlanAddon] = Field(default_factory=list)


class QuoteRequest(BaseModel):
    id: Optional[str] = None
    quote_reference: Optional[str] = None
    status: Optional[QuoteStatus] = None
    insurance_type: InsuranceType = InsuranceType.MOTOR

    customer: Optional[Customer] = None
    vehicle: Optional[Vehicle] = None
    travel_criteria: Optional[TravelCriteria] = None
    risk_factors: Optional[RiskFactors] = None
    start_date: Optional[date] = None
    subscriber_number: Optional[str] = None

    selected_plan_id: Optional[str] = None
    selected_addons: List[str] = Field(default_factory=list)
    provider: Optional[str] = None
    plan_name: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    discount_code: Optional[str] = None
    discount_percent: float = Field(default=0, ge=0, le=100)
    contact_number_for_link: Optional[str] = None

    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    source: Optional[QuoteSource] = None
    created_at: Optional[datetime] = None
    approval_handled_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_invariants(self) -> "QuoteRequest":
        if self.vehicle is not None and self.travel_criteria is not None:
            raise ValueError("a quote carries either vehicle or travel details, not both")
        if self.vehicle is not None and self.insurance_type != InsuranceType.MOTOR:
            raise ValueError("vehicle details require insurance_type MOTOR")
        if self.travel_criteria is not None and self.insurance_type != InsuranceType.TRAVEL:
            raise ValueError("travel details require insurance_type TRAVEL")
        if bool(self.discount_code) != (self.discount_percent > 0):
            raise ValueError("discount_code and discount_percent must be set together")
        return self

    @property
    def effective_status(self) -> QuoteStatus:
        return self.status or QuoteStatus.DRAFT

    @property
    def is_issued(self) -> bool:
        return self.status == QuoteStatus.ISSUED

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------

@dataclass
class EligibilityCheckResult:
    success: bool
    is_eligible: bool
    subscriber_number: Optional[str] = None
    plan: Optional[str] = None                    # "POST" (postpaid) or "PRE" (prepaid)
    message: Optional[str] = None
    error: Optional[str] = None
    quotation_id: Optional[int] = None
    quotation_status: Optional[int] = None
    is_eligible_for_installment: Optional[bool] = None
    mobile: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None


@dataclass
class TravelDraftResult:
    success: bool
    draft: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Vehicle / registry lookups
# ---------------------------------------------------------------------------

@dataclass
class MotorData:
    plate_number: str
    chassis_number: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[str] = None
    body_type: Optional[str] = None
    engine_size: Optional[str] = None
    registration_month: Optional[int] = None


@dataclass
class MotorDataResult:
    success: bool
    data: Optional[MotorData] = None
    message: Optional[str] = None
    error: Optional[str] = None


@dataclass
class RegistryData:
    plate_number: str
    registration_month: Optional[int] = None
    policy_start_date: Optional[str] = None
    policy_end_date: Optional[str] = None
    vehicle_value: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RegistryDataResult:
    success: bool
    data: Optional[RegistryData] = None
    message: Optional[str] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------

@dataclass
class MotorPlansRequest:
    plate_number: str
    vehicle_value: float
    policy_start_date: str
    policy_end_date: str
    registration_month: Optional[int] = None
    subscriber_number: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[str] = None
    chassis_number: Optional[str] = None
    body_type: Optional[str] = None
    engine_size: Optional[str] = None
    age_under_24: bool = False
    license_under_1_year: bool = False


@dataclass
class PlanBenefit:
    name: str
    included: bool = True


@dataclass
class PartnerMotorPlan:
    id: str
    name: str
    policy_price: Decimal                 # total price including VAT
    upfront: Decimal = Decimal("0")
    installment_price: Decimal = Decimal("0")
    vat_included: bool = True
    benefits: List[PlanBenefit] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MotorPlansResult:
    success: bool
    plans: List[PartnerMotorPlan] = field(default_factory=list)
    message: Optional[str] = None
    error: Optional[str] = None


@dataclass
class TravelPlansRequest:
    destination: str
    departure_date: str
    return_date: str
    travel_type: str
    adults_count: int = 1
    children_count: int = 0


@dataclass
class PartnerTravelPlan:
    id: str
    name: str
    premium: Decimal
    provider: str = "GIG"
    features: List[str] = field(default_factory=list)
    add_ons: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class TravelPlansResult:
    success: bool
    plans: List[PartnerTravelPlan] = field(default_factory=list)
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Discounts, dispatch, CRM
# ---------------------------------------------------------------------------

@dataclass
class DiscountValidationResult:
    is_valid: bool
    discount_percent: float = 0
    owner_label: Optional[str] = None
    error: Optional[str] = None


@dataclass
class LinkDispatchResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: Optional[str] = None


@dataclass
class CustomerRecord:
    cpr: str
    full_name: str
    mobile: str
    email: str
    zain_plan: Optional[str] = None
    is_eligible_for_zain: bool = False
    is_eligible_for_installments: bool = False
    credit_score: int = 0
    address: Optional[str] = None


# ---------------------------------------------------------------------------
# Abstract collaborator interfaces
# Mock and real HTTP clients both implement these.
# ---------------------------------------------------------------------------

class EligibilityClient(ABC):
    """Zain subscriber eligibility for Takaful products."""

    @abstractmethod
    async def check_eligibility(
        self,
        subscriber_number: str,
        *,
        full_name: Optional[str] = None,
        phone_number: Optional[str] = None,
        email: Optional[str] = None,
        vehicle_number: Optional[str] = None,
    ) -> EligibilityCheckResult:
        """Motor eligibility. A draft-exists signal arrives in `message`."""

    @abstractmethod
    async def check_travel_eligibility(self, zain_number: str, email: str) -> EligibilityCheckResult:
        """Travel eligibility."""

    @abstractmethod
    async def get_draft_travel_application(self, email: str) -> TravelDraftResult:
        """Existing in-flight travel application for this email, if any."""


class VehicleDataClient(ABC):

    @abstractmethod
    async def get_motor_data(self, plate_number: str, *, eligible: bool = True) -> MotorDataResult:
        """Make/model/year/chassis for a plate."""

    @abstractmethod
    async def get_models_for_make(self, make: str) -> List[str]:
        """Model names offered for a make."""


class RegistryClient(ABC):

    @abstractmethod
    async def get_vehicle_details(self, plate_number: str, chassis_number: Optional[str] = None) -> RegistryDataResult:
        """Policy dates and insured value from the traffic registry."""


class PlanClient(ABC):

    @abstractmethod
    async def get_motor_plans(self, request: MotorPlansRequest) -> MotorPlansResult:
        """Motor plans priced by the partner (prices include VAT)."""

    @abstractmethod
    async def get_travel_plans(self, request: TravelPlansRequest) -> TravelPlansResult:
        """Travel plans for a trip."""


class DiscountAuthority(ABC):

    @abstractmethod
    async def validate_code(self, code: str) -> DiscountValidationResult:
        """Check a normalised (upper-case) code."""

    @abstractmethod
    async def mark_code_used(self, code: str, customer_name: str, customer_contact: str, quote_id: str) -> bool:
        """Redeem a code against a quote."""


class LinkDispatcher(ABC):

    @abstractmethod
    async def send_quote_link(
        self,
        contact_number: str,
        mode: str,
        *,
        quote_reference: Optional[str] = None,
        agent_name: Optional[str] = None,
    ) -> LinkDispatchResult:
        """Send the payment link to the customer. `mode` is NEW or EXISTING."""


class CustomerDirectory(ABC):

    @abstractmethod
    async def fetch_customer_by_cpr(self, cpr: str) -> Optional[CustomerRecord]:
        """CRM lookup. None when the CPR is unknown."""

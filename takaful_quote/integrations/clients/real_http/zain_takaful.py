"""
Real Zain Takaful HTTP Client.

Used when INTEGRATIONS_MODE=real (or ZAIN_TAKAFUL_API_URL is configured).
Covers the motor endpoints (eligibility, motor data, traffic registry, plans)
and the travel application endpoints.

Every method returns a contract result; transport errors and non-2xx
responses become `success=False` with an `error` string, never an exception.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

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
from takaful_quote.integrations.policy.response_wrappers import (
    IntegrationResponseError,
    normalize_eligibility_response,
    normalize_motor_data_response,
    normalize_motor_plans_response,
    normalize_registry_response,
    normalize_travel_plans_response,
)
from takaful_quote.utils.config_loader import ZainApiConfig

logger = logging.getLogger(__name__)

# The partner exposes no model catalogue endpoint.
MODEL_CATALOGUE: Dict[str, List[str]] = {
    "TOYOTA": ["Camry", "Corolla", "Land Cruiser", "Prado", "Yaris"],
    "NISSAN": ["Altima", "Patrol", "Sunny", "X-Trail"],
    "HONDA": ["Accord", "City", "Civic", "CR-V"],
    "BMW": ["3 Series", "5 Series", "X5"],
    "HYUNDAI": ["Accent", "Elantra", "Tucson"],
    "FORD": ["Explorer", "F-150", "Mustang"],
    "CHEVROLET": ["Malibu", "Tahoe"],
    "MERCEDES": ["C-Class", "E-Class", "S-Class"],
    "LEXUS": ["ES", "LX", "RX"],
}


class PartnerAPIError(Exception):
    pass


class ZainTakafulClient(EligibilityClient, VehicleDataClient, RegistryClient, PlanClient):
    def __init__(self, config: Optional[ZainApiConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.config = config or ZainApiConfig()
        self.base_url = self.config.base_url.rstrip("/")
        self.travel_base_url = self.config.travel_base_url.rstrip("/")
        self.timeout_seconds = self.config.timeout_seconds
        self._transport = transport

    # ------------------------------------------------------------------ #
    # Plumbing
    # ------------------------------------------------------------------ #
    def _headers(self, *, json_body: bool = True) -> Dict[str, str]:
        headers: Dict[str, str] = {"Accept": "application/json"}
        if json_body:
            headers["Content-Type"] = "application/json"
        if self.config.session_token:
            headers["x-session-token"] = self.config.session_token
        if self.config.auth_token:
            headers["Authorization"] = self.config.auth_token
        return headers

    def _travel_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "x-device-id": self.config.device_id,
            "x-platform": self.config.platform,
        }

    async def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            response = await client.request(method, url, **kwargs)
        if response.status_code >= 400:
            raise PartnerAPIError(_error_message(response))
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise PartnerAPIError(f"Invalid JSON response from {url}") from exc
        return data if isinstance(data, dict) else {"data": data}

    # ------------------------------------------------------------------ #
    # Eligibility
    # ------------------------------------------------------------------ #
    async def check_eligibility(
        self,
        subscriber_number: str,
        *,
        full_name: Optional[str] = None,
        phone_number: Optional[str] = None,
        email: Optional[str] = None,
        vehicle_number: Optional[str] = None,
    ) -> EligibilityCheckResult:
        body: Dict[str, Any] = {"subscriberNumber": subscriber_number.strip()}
        if full_name:
            body["fullName"] = full_name
        if phone_number:
            body["phoneNumber"] = phone_number
        if email:
            body["email"] = email
        if vehicle_number:
            body["vehicleNumber"] = vehicle_number

        logger.info("[ZainAPI] Checking eligibility for subscriber %s", subscriber_number)
        try:
            raw = await self._request("POST", f"{self.base_url}/takaful-zain-eligibility-check", json=body, headers=self._headers())
            normalized = normalize_eligibility_response(raw)
        except (httpx.HTTPError, PartnerAPIError, IntegrationResponseError) as exc:
            logger.warning("[ZainAPI] Eligibility check failed: %s", exc)
            return EligibilityCheckResult(success=False, is_eligible=False, error=str(exc) or "Failed to check eligibility")

        return EligibilityCheckResult(
            success=normalized.success,
            is_eligible=normalized.is_eligible,
            subscriber_number=subscriber_number,
            plan=normalized.plan,
            message=normalized.message,
            quotation_id=normalized.quotation_id,
            quotation_status=normalized.quotation_status,
            is_eligible_for_installment=normalized.is_eligible_for_installment,
            mobile=normalized.mobile,
            email=normalized.email,
            name=normalized.name,
        )

    async def check_travel_eligibility(self, zain_number: str, email: str) -> EligibilityCheckResult:
        logger.info("[ZainAPI] Checking travel eligibility for %s", zain_number)
        try:
            raw = await self._request(
                "POST",
                f"{self.travel_base_url}/travel_application/checkEligibility",
                data={"zainNumber": zain_number, "email": email},
                headers=self._travel_headers(),
            )
        except (httpx.HTTPError, PartnerAPIError) as exc:
            logger.warning("[ZainAPI] Travel eligibility check failed: %s", exc)
            return EligibilityCheckResult(success=False, is_eligible=False, error=str(exc) or "Failed to check travel eligibility")

        data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
        return EligibilityCheckResult(
            success=True,
            is_eligible=bool(data.get("isEligible", True)),
            subscriber_number=zain_number,
            plan="POST",
            message=data.get("message") or raw.get("message"),
            is_eligible_for_installment=True,
            email=email,
        )

    async def get_draft_travel_application(self, email: str) -> TravelDraftResult:
        try:
            raw = await self._request(
                "GET",
                f"{self.travel_base_url}/travel_application/getDraftTravelApplicationByEmail",
                params={"email": email},
                headers=self._travel_headers(),
            )
        except (httpx.HTTPError, PartnerAPIError) as exc:
            logger.warning("[ZainAPI] Travel draft lookup failed: %s", exc)
            return TravelDraftResult(success=False, error=str(exc) or "Failed to fetch travel draft")
        draft = raw.get("data")
        return TravelDraftResult(success=True, draft=draft if isinstance(draft, dict) and draft else None)

    # ------------------------------------------------------------------ #
    # Vehicle data
    # ------------------------------------------------------------------ #
    async def get_motor_data(self, plate_number: str, *, eligible: bool = True) -> MotorDataResult:
        body = {
            "plateNumber": plate_number.strip(),
            "collaboration": "zain",
            "eligible": eligible,
            "product": "motor",
        }
        logger.info("[ZainAPI] Fetching motor data for plate %s", plate_number)
        try:
            raw = await self._request("POST", f"{self.base_url}/takaful-zain-motor-data", json=body, headers=self._headers())
            normalized = normalize_motor_data_response(raw, plate_number=plate_number)
        except (httpx.HTTPError, PartnerAPIError, IntegrationResponseError) as exc:
            logger.warning("[ZainAPI] Motor data fetch failed: %s", exc)
            return MotorDataResult(success=False, error=str(exc) or "Failed to fetch motor data")

        success = raw.get("success")
        return MotorDataResult(
            success=True if success is None else bool(success),
            data=MotorData(**normalized.model_dump(exclude={"raw"})),
            message=raw.get("message") or raw.get("message_en"),
        )

    async def get_models_for_make(self, make: str) -> List[str]:
        return list(MODEL_CATALOGUE.get((make or "").strip().upper(), []))

    async def get_vehicle_details(self, plate_number: str, chassis_number: Optional[str] = None) -> RegistryDataResult:
        # Registry endpoint takes multipart form data.
        form = {"plateNumber": plate_number.strip()}
        if chassis_number:
            form["chassisNumber"] = chassis_number.strip()
        try:
            raw = await self._request("POST", f"{self.base_url}/gdt-get-vehicle-details", data=form, headers=self._headers(json_body=False))
            normalized = normalize_registry_response(raw, plate_number=plate_number)
        except (httpx.HTTPError, PartnerAPIError, IntegrationResponseError) as exc:
            logger.warning("[ZainAPI] Registry details fetch failed: %s", exc)
            return RegistryDataResult(success=False, error=str(exc) or "Failed to fetch registry vehicle details")

        return RegistryDataResult(
            success=True,
            data=RegistryData(
                plate_number=normalized.plate_number,
                registration_month=normalized.registration_month,
                policy_start_date=normalized.policy_start_date,
                policy_end_date=normalized.policy_end_date,
                vehicle_value=normalized.vehicle_value,
                extra=raw,
            ),
            message=raw.get("message"),
        )

    # ------------------------------------------------------------------ #
    # Plans
    # ------------------------------------------------------------------ #
    async def get_motor_plans(self, request: MotorPlansRequest) -> MotorPlansResult:
        body = {
            "plateNumber": request.plate_number,
            "vehicleValue": request.vehicle_value,
            "policyStartDate": request.policy_start_date,
            "policyEndDate": request.policy_end_date,
            "registrationMonth": request.registration_month,
            "subscriberNumber": request.subscriber_number,
            "make": request.make,
            "model": request.model,
            "year": request.year,
            "chassisNumber": request.chassis_number,
            "bodyType": request.body_type,
            "engineSize": request.engine_size,
            "ageUnder24": request.age_under_24,
            "licenseUnder1Year": request.license_under_1_year,
        }
        try:
            raw = await self._request("POST", f"{self.base_url}/takaful-zain-motor-plans", json=body, headers=self._headers())
            normalized = normalize_motor_plans_response(raw)
        except (httpx.HTTPError, PartnerAPIError, IntegrationResponseError) as exc:
            logger.warning("[ZainAPI] Motor plans fetch failed: %s", exc)
            return MotorPlansResult(success=False, error=str(exc) or "Failed to fetch motor plans")

        plans = [
            PartnerMotorPlan(
                id=p.id,
                name=p.name,
                policy_price=p.policy_price,
                upfront=p.upfront,
                installment_price=p.installment_price,
                vat_included=p.vat_included,
                benefits=[PlanBenefit(name=b.name, included=b.included) for b in p.benefits],
                raw=p.raw,
            )
            for p in normalized
        ]
        return MotorPlansResult(success=True, plans=plans, message=raw.get("message"))

    async def get_travel_plans(self, request: TravelPlansRequest) -> TravelPlansResult:
        form = {
            "destination": request.destination,
            "departureDate": request.departure_date,
            "returnDate": request.return_date,
            "travelType": request.travel_type,
            "adultsCount": str(request.adults_count),
            "childrenCount": str(request.children_count),
        }
        try:
            raw = await self._request(
                "POST",
                f"{self.travel_base_url}/travel_application/getPlans",
                data=form,
                headers=self._travel_headers(),
            )
            normalized = normalize_travel_plans_response(raw)
        except (httpx.HTTPError, PartnerAPIError, IntegrationResponseError) as exc:
            logger.warning("[ZainAPI] Travel plans fetch failed: %s", exc)
            return TravelPlansResult(success=False, error=str(exc) or "Failed to fetch travel plans")

        return TravelPlansResult(
            success=True,
            plans=[PartnerTravelPlan(**p.model_dump()) for p in normalized],
        )


def _error_message(response: httpx.Response) -> str:
    """Partner errors carry either a field map under `errors` or a `message`."""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP error! status: {response.status_code}, body: {response.text}"
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, dict) and errors:
            parts = []
            for field, messages in errors.items():
                text = ", ".join(messages) if isinstance(messages, list) else str(messages)
                parts.append(f"{field}: {text}")
            return "Validation failed: " + "; ".join(parts)
        message = body.get("message") or body.get("message_en")
        if message:
            return str(message)
    return f"HTTP error! status: {response.status_code}"

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError


class IntegrationResponseError(ValueError):
    def __init__(self, message: str, *, payload: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.payload = payload or {}


class EligibilityResponseModel(BaseModel):
    success: bool = True
    is_eligible: bool = False
    plan: Optional[str] = None
    message: Optional[str] = None
    quotation_id: Optional[int] = None
    quotation_status: Optional[int] = None
    is_eligible_for_installment: Optional[bool] = None
    mobile: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class MotorDataResponseModel(BaseModel):
    plate_number: str
    chassis_number: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[str] = None
    body_type: Optional[str] = None
    engine_size: Optional[str] = None
    registration_month: Optional[int] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class RegistryResponseModel(BaseModel):
    plate_number: str
    registration_month: Optional[int] = None
    policy_start_date: str
    policy_end_date: Optional[str] = None
    vehicle_value: Optional[float] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class BenefitModel(BaseModel):
    name: str
    included: bool = True


class MotorPlanModel(BaseModel):
    id: str
    name: str
    policy_price: Decimal = Field(gt=0)
    upfront: Decimal = Decimal("0")
    installment_price: Decimal = Decimal("0")
    vat_included: bool = True
    benefits: List[BenefitModel] = Field(default_factory=list)
    raw: Dict[str, Any] = Field(default_factory=dict)


class TravelPlanModel(BaseModel):
    id: str
    name: str
    premium: Decimal = Field(gt=0)
    provider: str = "GIG"
    features: List[str] = Field(default_factory=list)
    add_ons: List[Dict[str, Any]] = Field(default_factory=list)


_VEHICLE_ENVELOPES = ("vehicle", "vehicleData", "motorData", "details")


def normalize_eligibility_response(raw: Dict[str, Any]) -> EligibilityResponseModel:
    """Partner eligibility payloads put business fields under `data` and the message on top."""
    api_data = raw.get("data") if isinstance(raw.get("data"), dict) else raw
    success = raw.get("success")
    return _build_model(
        EligibilityResponseModel,
        {
            "success": True if success is None else bool(success),
            "is_eligible": bool(api_data.get("isEligible", False)),
            "plan": _optional_str(_first_non_empty(api_data, "zainPlan", "plan", "planType", default="")),
            "message": _first_non_empty(raw, "message", "message_en", default="Eligibility check successful"),
            "quotation_id": api_data.get("quotationId"),
            "quotation_status": api_data.get("quotationStatus"),
            "is_eligible_for_installment": api_data.get("isEligibleForInstallment"),
            "mobile": api_data.get("mobile"),
            "email": api_data.get("email"),
            "name": api_data.get("name"),
            "raw": raw,
        },
        raw,
    )


def extract_vehicle_payload(raw: Dict[str, Any]) -> Dict[str, Any]:
    data = raw.get("data") if isinstance(raw.get("data"), dict) else raw
    for key in _VEHICLE_ENVELOPES:
        nested = data.get(key)
        if isinstance(nested, dict):
            data = nested
    return data


def normalize_motor_data_response(raw: Dict[str, Any], *, plate_number: str) -> MotorDataResponseModel:
    data = extract_vehicle_payload(raw)
    year = _first_non_empty(data, "year", "modelYear", "model_year", "year_of_manufacture", "Year", "ModelYear", default="")
    engine = _first_non_empty(
        data,
        "engineSize", "engine_size", "engineCapacity", "engine_capacity", "cc", "CC", "hp", "HP", "EngineSize",
        default="",
    )
    month = _first_non_empty(data, "registrationMonth", "registration_month", "regMonth", "RegistrationMonth", default="")
    return _build_model(
        MotorDataResponseModel,
        {
            "plate_number": str(_first_non_empty(data, "plateNumber", "plate_number", "PlateNumber", default=plate_number)),
            "chassis_number": _optional_str(_first_non_empty(data, "chassisNumber", "chassis_number", "ChassisNumber", "vin", "VIN", default="")),
            "make": _optional_str(_first_non_empty(data, "make", "manufacturer", "brand", "Make", "Manufacturer", default="")),
            "model": _optional_str(_first_non_empty(data, "model", "model_name", "Model", "ModelName", default="")),
            "year": _optional_str(year),
            "body_type": _optional_str(_first_non_empty(data, "bodyType", "body_type", "type", "vehicle_type", "BodyType", "Type", default="")),
            "engine_size": _optional_str(engine),
            "registration_month": _optional_int(month),
            "raw": raw,
        },
        raw,
    )


def normalize_registry_response(raw: Dict[str, Any], *, plate_number: str, today: Optional[date] = None) -> RegistryResponseModel:
    """Registry lookups return a flat document; the start date defaults to today."""
    today = today or date.today()
    value = _first_non_empty(raw, "vehicleValue", "value", default="")
    return _build_model(
        RegistryResponseModel,
        {
            "plate_number": str(_first_non_empty(raw, "plateNumber", default=plate_number)),
            "registration_month": _optional_int(_first_non_empty(raw, "registrationMonth", default="")),
            "policy_start_date": str(_first_non_empty(raw, "policyStartDate", default=today.isoformat())),
            "policy_end_date": _optional_str(_first_non_empty(raw, "policyEndDate", default="")),
            "vehicle_value": float(value) if value not in ("", None) else None,
            "raw": raw,
        },
        raw,
    )


def normalize_motor_plans_response(raw: Dict[str, Any]) -> List[MotorPlanModel]:
    items = raw.get("plans")
    if items is None and isinstance(raw.get("data"), dict):
        items = raw["data"].get("plans")
    if not isinstance(items, list):
        return []

    plans: List[MotorPlanModel] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise IntegrationResponseError("Motor plan entries must be objects.", payload=raw)
        name = str(_first_non_empty(item, "name", "planName", default="Unknown Plan"))
        plans.append(
            _build_model(
                MotorPlanModel,
                {
                    "id": str(_first_non_empty(item, "id", "planId", default=_plan_slug(name, index))),
                    "name": name,
                    "policy_price": _coerce_positive_amount(_first_non_empty(item, "policyPrice", "totalPrice", default=0), "policy price"),
                    "upfront": _coerce_amount(_first_non_empty(item, "upfront", "upfrontPrice", default=0)),
                    "installment_price": _coerce_amount(_first_non_empty(item, "installmentPrice", "monthlyPrice", default=0)),
                    "vat_included": item.get("vatIncluded") is not False,
                    "benefits": parse_benefits(item.get("benefits") or item.get("coverage") or []),
                    "raw": item,
                },
                raw,
            )
        )
    return plans


def normalize_travel_plans_response(raw: Dict[str, Any]) -> List[TravelPlanModel]:
    items = raw.get("plans")
    if items is None and isinstance(raw.get("data"), dict):
        items = raw["data"].get("plans")
    if not isinstance(items, list):
        return []

    plans: List[TravelPlanModel] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise IntegrationResponseError("Travel plan entries must be objects.", payload=raw)
        name = str(_first_non_empty(item, "name", "planName", default="Travel Plan"))
        features = item.get("features") or item.get("benefits") or []
        plans.append(
            _build_model(
                TravelPlanModel,
                {
                    "id": str(_first_non_empty(item, "id", "planId", default=_plan_slug(name, index))),
                    "name": name,
                    "premium": _coerce_positive_amount(_first_non_empty(item, "premium", "policyAmount", "price", default=0), "travel premium"),
                    "provider": str(_first_non_empty(item, "provider", default="GIG")),
                    "features": [str(f) for f in features if str(f).strip()],
                    "add_ons": [a for a in (item.get("addons") or item.get("addOns") or []) if isinstance(a, dict)],
                },
                raw,
            )
        )
    return plans


def parse_benefits(benefits: Any) -> List[Dict[str, Any]]:
    """Benefits come as strings, as {name, included} objects, or as a {key: bool} map."""
    if not benefits:
        return []
    if isinstance(benefits, list):
        parsed = []
        for benefit in benefits:
            if isinstance(benefit, str):
                parsed.append({"name": benefit, "included": True})
            elif isinstance(benefit, dict):
                parsed.append(
                    {
                        "name": str(_first_non_empty(benefit, "name", "title", default="Unknown Benefit")),
                        "included": benefit.get("included") is not False,
                    }
                )
        return parsed
    if isinstance(benefits, dict):
        return [{"name": format_benefit_name(key), "included": bool(value)} for key, value in benefits.items()]
    return []


def format_benefit_name(name: str) -> str:
    """`roadAssistCover` / `road_assist_cover` -> `Road Assist Cover`."""
    spaced = re.sub(r"([A-Z])", r" \1", name).replace("_", " ")
    spaced = re.sub(r"\s+", " ", spaced).strip()
    return " ".join(word[:1].upper() + word[1:] for word in spaced.split(" "))


def _plan_slug(name: str, index: int) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or f"plan-{index + 1}"


def _first_non_empty(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    if default is not None:
        return default
    raise IntegrationResponseError(f"Missing required field. Checked keys: {', '.join(keys)}", payload=data)


def _optional_str(value: Any) -> Optional[str]:
    s = "" if value is None else str(value).strip()
    return s or None


def _optional_int(value: Any) -> Optional[int]:
    if value in ("", None):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _coerce_amount(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise IntegrationResponseError(f"Invalid amount: {value!r}") from exc


def _coerce_positive_amount(value: Any, label: str) -> Decimal:
    amount = _coerce_amount(value)
    if amount <= 0:
        raise IntegrationResponseError(f"{label.capitalize()} must be > 0; got {amount}.")
    return amount


def _build_model(model_type, payload: Dict[str, Any], raw: Dict[str, Any]):
    try:
        return model_type(**payload)
    except ValidationError as exc:
        raise IntegrationResponseError(f"Response validation failed: {exc}", payload=raw) from exc

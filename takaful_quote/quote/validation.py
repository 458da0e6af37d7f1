"""Shared backend validation for quote-flow form submissions.

The agent portal submits step payloads as dictionaries (the local input buffer).
These validators ensure important fields are present and well-formed before
anything is committed to the quote aggregate or sent to a collaborator.

On validation failure, raise `FormValidationError` so the API can return HTTP 422
with structured `field_errors`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, Optional


@dataclass
class FormValidationError(Exception):
    """Exception raised for form validation failures.

    Attributes:
        field_errors: mapping of field name -> human-readable error message.
        message: optional top-level message.
    """

    field_errors: Dict[str, str]
    message: str = "Validation failed"

    def __str__(self) -> str:  # pragma: no cover
        return self.message


def _as_str(v: Any) -> str:
    return "" if v is None else str(v)


def _strip(v: Any) -> str:
    return _as_str(v).strip()


def add_error(errors: Dict[str, str], field: str, message: str) -> None:
    if field not in errors:
        errors[field] = message


def require_str(payload: Dict[str, Any], field: str, errors: Dict[str, str], *, label: Optional[str] = None, min_length: int = 1) -> str:
    value = _strip(payload.get(field))
    if not value:
        add_error(errors, field, f"{label or field} is required")
    elif len(value) < min_length:
        add_error(errors, field, f"{label or field} must be at least {min_length} characters")
    return value


def optional_str(payload: Dict[str, Any], field: str) -> str:
    return _strip(payload.get(field))


def parse_int(payload: Dict[str, Any], field: str, errors: Dict[str, str], *, min_value: Optional[int] = None, max_value: Optional[int] = None, required: bool = False) -> int:
    raw = payload.get(field)
    if raw is None or _strip(raw) == "":
        if required:
            add_error(errors, field, f"{field} is required")
        return 0
    try:
        val = int(str(raw))
    except ValueError:
        add_error(errors, field, f"{field} must be a whole number")
        return 0
    if min_value is not None and val < min_value:
        add_error(errors, field, f"{field} must be at least {min_value}")
    if max_value is not None and val > max_value:
        add_error(errors, field, f"{field} must be at most {max_value}")
    return val


def parse_number(payload: Dict[str, Any], field: str, errors: Dict[str, str], *, min_value: Optional[float] = None, max_value: Optional[float] = None, required: bool = False, label: Optional[str] = None) -> float:
    raw = _strip(payload.get(field))
    name = label or field
    if not raw:
        if required:
            add_error(errors, field, f"{name} is required")
        return 0.0
    try:
        val = float(raw)
    except ValueError:
        add_error(errors, field, f"{name} must be a number")
        return 0.0
    if min_value is not None and val < min_value:
        add_error(errors, field, f"{name} must be at least {min_value:g}")
    if max_value is not None and val > max_value:
        add_error(errors, field, f"{name} must be at most {max_value:g}")
    return val


def as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return _strip(value).lower() in ("true", "1", "yes", "y", "on")


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_email(value: str, errors: Dict[str, str], field: str = "email") -> str:
    value = _strip(value)
    if not value:
        add_error(errors, field, "Email is required")
        return value
    if not _EMAIL_RE.match(value):
        add_error(errors, field, "Email is not valid")
    return value


def normalize_phone_bh(value: str) -> str:
    """Normalize common Bahraini phone formats.

    Accepts:
    - XXXXXXXX (8 digit local number)
    - +973XXXXXXXX / 973XXXXXXXX
    - 00973XXXXXXXX

    Returns digits-only international form: 973XXXXXXXX when possible.
    """
    s = re.sub(r"\D", "", _strip(value))
    if not s:
        return ""
    if s.startswith("00973"):
        return s[2:]
    if s.startswith("973"):
        return s
    if len(s) == 8:
        return "973" + s
    return s


def validate_date_iso(value: str, errors: Dict[str, str], field: str, *, required: bool = True, not_future: bool = False) -> Optional[date]:
    raw = _strip(value)
    if not raw:
        if required:
            add_error(errors, field, f"{field} is required")
        return None
    try:
        d = date.fromisoformat(raw[:10])
    except ValueError:
        add_error(errors, field, f"{field} must be a valid date (YYYY-MM-DD)")
        return None
    if not_future and d > date.today():
        add_error(errors, field, f"{field} cannot be in the future")
    return d


def validate_in(value: str, allowed: Iterable[str], errors: Dict[str, str], field: str, *, required: bool = True) -> str:
    raw = _strip(value)
    if not raw:
        if required:
            add_error(errors, field, f"{field} is required")
        return raw
    if raw not in set(allowed):
        add_error(errors, field, f"{field} has an invalid value")
    return raw


def raise_if_errors(errors: Dict[str, str], message: str = "Please correct the highlighted fields") -> None:
    if errors:
        raise FormValidationError(field_errors=errors, message=message)


# ---------------------------------------------------------------------------
# Step validators
# ---------------------------------------------------------------------------

_YEAR_RE = re.compile(r"^\d{4}$")

MIN_VEHICLE_VALUE = 100
MAX_VEHICLE_VALUE = 100_000


def validate_customer_step(customer: Optional[Dict[str, Any]]) -> None:
    """Guard for leaving the customer step.

    A CPR is always required; a NEW customer also needs a name and a mobile.
    """
    customer = customer or {}
    errors: Dict[str, str] = {}
    require_str(customer, "cpr", errors, label="CPR")
    if _strip(customer.get("type") or "NEW").upper() == "NEW":
        require_str(customer, "full_name", errors, label="Full name")
        require_str(customer, "mobile", errors, label="Mobile number")
    raise_if_errors(errors)


CUSTOMER_EDITABLE_FIELDS = ("cpr", "full_name", "mobile", "email")


def validate_customer_fields(fields: Dict[str, Any]) -> Dict[str, str]:
    """Check customer fields edited on step 1 before they are committed.

    Only identity and contact fields are editable here; eligibility flags come
    from the eligibility check. A supplied CPR, name or mobile may not be blank.
    An empty email clears it.
    """
    errors: Dict[str, str] = {}
    out: Dict[str, str] = {}
    for name in fields:
        if name not in CUSTOMER_EDITABLE_FIELDS:
            add_error(errors, name, "This field cannot be edited")

    if "cpr" in fields:
        out["cpr"] = require_str(fields, "cpr", errors, label="CPR")
    if "full_name" in fields:
        out["full_name"] = require_str(fields, "full_name", errors, label="Full name")
    if "mobile" in fields:
        mobile = require_str(fields, "mobile", errors, label="Mobile number")
        normalized = normalize_phone_bh(mobile)
        if mobile and not (len(normalized) == 11 and normalized.startswith("973")):
            add_error(errors, "mobile", "Mobile number is not valid")
        out["mobile"] = mobile
    if "email" in fields:
        email = _strip(fields.get("email"))
        out["email"] = validate_email(email, errors) if email else ""

    raise_if_errors(errors)
    return out


def validate_subscriber_details(payload: Dict[str, Any], *, vehicle_required: bool) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    out = {
        "subscriber_number": require_str(payload, "subscriber_number", errors, label="Subscriber number"),
        "full_name": require_str(payload, "full_name", errors, label="Full name"),
        "mobile": require_str(payload, "mobile", errors, label="Phone number"),
        "email": validate_email(payload.get("email", ""), errors),
        "vehicle_number": optional_str(payload, "vehicle_number"),
    }
    if vehicle_required:
        require_str(payload, "vehicle_number", errors, label="Vehicle number")
    raise_if_errors(errors, message="Please fill in all required fields")
    return out


def validate_motor_details(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Validate the motor input buffer and return the cleaned values."""
    errors: Dict[str, str] = {}

    plate = require_str(payload, "plate_number", errors, label="Plate number")
    make = require_str(payload, "make", errors, label="Make", min_length=2)
    model = require_str(payload, "model", errors, label="Model", min_length=2)

    year = optional_str(payload, "year")
    if not year:
        add_error(errors, "year", "Year is required")
    elif not _YEAR_RE.match(year):
        add_error(errors, "year", "Year must be 4 digits")

    value = parse_number(
        payload,
        "value",
        errors,
        min_value=MIN_VEHICLE_VALUE,
        max_value=MAX_VEHICLE_VALUE,
        required=True,
        label="Vehicle value",
    )
    start = validate_date_iso(payload.get("start_date", ""), errors, "start_date")
    body_type = require_str(payload, "body_type", errors, label="Body type")

    existing_expiry = None
    has_existing = as_bool(payload.get("has_existing_insurance"))
    if has_existing:
        existing_expiry = validate_date_iso(payload.get("existing_policy_expiry", ""), errors, "existing_policy_expiry", required=False)
    policy_end = validate_date_iso(payload.get("policy_end_date", ""), errors, "policy_end_date", required=False)

    raise_if_errors(errors)

    return {
        "plate_number": plate,
        "chassis_number": optional_str(payload, "chassis_number"),
        "make": make,
        "model": model,
        "year": year,
        "value": value,
        "body_type": body_type,
        "engine_size": optional_str(payload, "engine_size"),
        "is_brand_new": as_bool(payload.get("is_brand_new")),
        "has_existing_insurance": has_existing,
        "existing_policy_expiry": existing_expiry.isoformat() if existing_expiry else None,
        "policy_end_date": policy_end.isoformat() if policy_end else None,
        "start_date": start.isoformat() if start else None,
        "age_under_24": as_bool(payload.get("age_under_24")),
        "license_under_1_year": as_bool(payload.get("license_under_1_year")),
    }


def validate_travel_details(payload: Dict[str, Any], *, destinations: Iterable[str], travel_types: Iterable[str]) -> Dict[str, Any]:
    errors: Dict[str, str] = {}

    destination = validate_in(payload.get("destination", ""), destinations, errors, "destination")
    travel_type = validate_in(payload.get("type", ""), travel_types, errors, "type")
    departure = validate_date_iso(payload.get("departure_date", ""), errors, "departure_date")
    ret = validate_date_iso(payload.get("return_date", ""), errors, "return_date")
    if departure and ret and ret < departure:
        add_error(errors, "return_date", "Return date cannot be before departure date")

    adults = parse_int(payload, "adults_count", errors, min_value=1, required=True)
    children = parse_int(payload, "children_count", errors, min_value=0)
    dob = validate_date_iso(payload.get("individual_dob", ""), errors, "individual_dob", required=False, not_future=True)

    raise_if_errors(errors)

    return {
        "destination": destination,
        "type": travel_type,
        "departure_date": departure.isoformat() if departure else None,
        "return_date": ret.isoformat() if ret else None,
        "adults_count": adults,
        "children_count": children,
        "individual_dob": dob.isoformat() if dob else None,
    }

"""
Staff discount codes — MOCK authority.

⚠️  This is a mock implementation for development and testing.
    Each staff member holds one 15% code, three 10% codes and three 5% codes
    for the year. Codes are `{ZA15|ZA10|ZA05}{first two letters of the name}{n}{yy}`.
    A few codes start out redeemed so the "already used" path can be exercised.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from takaful_quote.integrations.contracts.interfaces import DiscountAuthority, DiscountValidationResult

logger = logging.getLogger(__name__)

INVALID_CODE_ERROR = "Invalid discount code"
USED_CODE_ERROR = "This code has already been used"


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

_STAFF = [
    ("staff-1", "Ahmed Al-Salem"),
    ("staff-2", "Fatima Ali"),
    ("staff-3", "Sarah Johnson"),
    ("staff-4", "Mohamed Hassan"),
    ("staff-5", "Layla Ahmed"),
    ("staff-6", "Ali Abdullah"),
    ("staff-7", "Maryam Khalid"),
    ("staff-8", "Khalid Saleh"),
    ("staff-9", "Noura Ahmad"),
    ("staff-10", "Hassan Ibrahim"),
]

# Allocation order per staff member: index 0 is the 15% code, 1-3 the 10%
# codes and 4-6 the 5% codes.
_ALLOCATION = [("ZA15", 15, 1), ("ZA10", 10, 1), ("ZA10", 10, 2), ("ZA10", 10, 3), ("ZA05", 5, 1), ("ZA05", 5, 2), ("ZA05", 5, 3)]

_PRE_REDEEMED = {
    "staff-1": {0, 1, 2, 3},
    "staff-2": {0, 1},
    "staff-3": {0},
}


@dataclass
class StaffDiscountCode:
    code: str
    staff_id: str
    staff_name: str
    percent: int
    year: int
    is_used: bool = False
    used_at: Optional[datetime] = None
    used_by: Optional[str] = None
    used_by_contact: Optional[str] = None
    quote_id: Optional[str] = None


def staff_code(prefix: str, staff_name: str, index: int, year: int) -> str:
    return f"{prefix}{staff_name[:2].upper()}{index}{str(year)[-2:]}"


class StaffDiscountAuthority(DiscountAuthority):
    """In-memory staff code ledger. Redemptions are lost on restart."""

    def __init__(self, year: Optional[int] = None) -> None:
        self.year = year or datetime.utcnow().year
        self._codes: Dict[str, StaffDiscountCode] = {}
        for staff_id, staff_name in _STAFF:
            for position, (prefix, percent, index) in enumerate(_ALLOCATION):
                code = staff_code(prefix, staff_name, index, self.year)
                self._codes[code] = StaffDiscountCode(
                    code=code,
                    staff_id=staff_id,
                    staff_name=staff_name,
                    percent=percent,
                    year=self.year,
                    is_used=position in _PRE_REDEEMED.get(staff_id, set()),
                )
        logger.info("[DISCOUNT MOCK] %d staff codes allocated for %d", len(self._codes), self.year)

    def codes_for(self, staff_id: str) -> List[StaffDiscountCode]:
        return [c for c in self._codes.values() if c.staff_id == staff_id]

    async def validate_code(self, code: str) -> DiscountValidationResult:
        found = self._codes.get((code or "").strip().upper())
        if found is None:
            return DiscountValidationResult(is_valid=False, error=INVALID_CODE_ERROR)
        if found.is_used:
            return DiscountValidationResult(is_valid=False, error=USED_CODE_ERROR)
        return DiscountValidationResult(is_valid=True, discount_percent=found.percent, owner_label=found.staff_name)

    async def mark_code_used(self, code: str, customer_name: str, customer_contact: str, quote_id: str) -> bool:
        found = self._codes.get((code or "").strip().upper())
        if found is None:
            return False
        found.is_used = True
        found.used_at = datetime.utcnow()
        found.used_by = customer_name
        found.used_by_contact = customer_contact
        found.quote_id = quote_id
        logger.info("[DISCOUNT MOCK] Code %s redeemed for quote %s", found.code, quote_id)
        return True

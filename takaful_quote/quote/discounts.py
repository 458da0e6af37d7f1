"""Discount code validation and redemption."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from takaful_quote.integrations.contracts.interfaces import DiscountAuthority
from takaful_quote.quote.errors import DiscountInvalid
from takaful_quote.quote.validation import raise_if_errors

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppliedDiscount:
    code: str
    percent: float
    owner_label: Optional[str] = None


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


class DiscountValidator:
    def __init__(self, authority: DiscountAuthority) -> None:
        self.authority = authority

    async def validate(self, code: Optional[str]) -> AppliedDiscount:
        """Check a code with the authority.

        An empty code is a local validation error and never reaches the
        authority. A rejection raises `DiscountInvalid` with the authority's reason.
        """
        normalized = normalize_code(code)
        if not normalized:
            raise_if_errors({"discount_code": "Please enter a discount code"}, message="Please enter a discount code")

        try:
            result = await self.authority.validate_code(normalized)
        except Exception as e:
            logger.warning("Discount authority failed for %s: %s", normalized, e)
            raise DiscountInvalid("Could not validate the discount code. Please try again.", details={"code": normalized}) from e

        if not result.is_valid:
            raise DiscountInvalid(result.error or "Invalid discount code", details={"code": normalized})

        percent = float(result.discount_percent or 0)
        if percent <= 0 or percent > 100:
            raise DiscountInvalid("Invalid discount code", details={"code": normalized})
        return AppliedDiscount(code=normalized, percent=percent, owner_label=result.owner_label)

    async def redeem(self, code: str, customer_name: str, customer_contact: str, quote_id: str) -> bool:
        """Mark an applied code as used. Failure is logged, never raised."""
        try:
            redeemed = await self.authority.mark_code_used(normalize_code(code), customer_name, customer_contact, quote_id)
        except Exception as e:
            logger.warning("Failed to redeem discount code %s for quote %s: %s", code, quote_id, e)
            return False
        if not redeemed:
            logger.warning("Discount code %s was not redeemed for quote %s", code, quote_id)
        return redeemed

"""Plan pricing.

All figures for a plan come from the base premium captured when the plan was
generated, so a discount change only needs `price_plan` to run again.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, Optional, Union

from takaful_quote.quote.models import InsurancePlan, PaymentMethod

Number = Union[int, float, str, Decimal]

DEFAULT_VAT_RATE = Decimal("0.10")
DEFAULT_INSTALLMENT_MONTHS = 12
DISPLAY_QUANTUM = Decimal("0.001")


def _d(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value: Number) -> Decimal:
    """Round to fils (3 decimals) for display."""
    return _d(value).quantize(DISPLAY_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceBreakdown:
    base_premium: Decimal
    discount_percent: Decimal
    discounted: Decimal
    vat: Decimal
    total: Decimal
    monthly: Decimal
    upfront: Decimal
    original_total: Decimal
    installment_count: int
    payment_method: PaymentMethod

    @property
    def amount_due_now(self) -> Decimal:
        if self.payment_method == PaymentMethod.INSTALLMENT:
            return self.upfront
        return self.total

    @property
    def has_discount(self) -> bool:
        return self.discount_percent > 0

    def to_display(self) -> Dict[str, Any]:
        return {
            "base_premium": str(money(self.base_premium)),
            "discount_percent": float(self.discount_percent),
            "discounted": str(money(self.discounted)),
            "vat": str(money(self.vat)),
            "total": str(money(self.total)),
            "monthly": str(money(self.monthly)),
            "upfront": str(money(self.upfront)),
            "original_total": str(money(self.original_total)),
            "installment_count": self.installment_count,
            "amount_due_now": str(money(self.amount_due_now)),
            "payment_method": self.payment_method.value,
        }


def calculate_price(
    base_premium: Number,
    discount_percent: Number = 0,
    payment_method: PaymentMethod = PaymentMethod.CASH,
    *,
    vat_rate: Number = DEFAULT_VAT_RATE,
    installment_count: int = DEFAULT_INSTALLMENT_MONTHS,
) -> PriceBreakdown:
    """Compute the full breakdown for one plan.

    VAT is charged on the discounted premium and collected upfront whatever the
    payment method; the monthly figure spreads the discounted premium only.
    """
    base = _d(base_premium)
    pct = _d(discount_percent or 0)
    rate = _d(vat_rate)
    if base < 0:
        raise ValueError("base_premium must not be negative")
    if pct < 0 or pct > 100:
        raise ValueError("discount_percent must be between 0 and 100")
    if installment_count < 1:
        raise ValueError("installment_count must be at least 1")

    discounted = base * (Decimal(1) - pct / Decimal(100))
    vat = discounted * rate
    total = discounted + vat
    monthly = discounted / Decimal(installment_count)
    original_total = base + base * rate

    return PriceBreakdown(
        base_premium=base,
        discount_percent=pct,
        discounted=discounted,
        vat=vat,
        total=total,
        monthly=monthly,
        upfront=vat,
        original_total=original_total,
        installment_count=installment_count,
        payment_method=payment_method,
    )


def effective_base_premium(plan: InsurancePlan, selected_addons: Optional[Iterable[str]] = None) -> Decimal:
    """Base premium plus the prices of any selected add-ons offered by the plan."""
    chosen = set(selected_addons or [])
    extra = sum((addon.price for addon in plan.add_ons if addon.id in chosen), Decimal("0"))
    return plan.base_premium + extra


def price_plan(
    plan: InsurancePlan,
    discount_percent: Number = 0,
    payment_method: PaymentMethod = PaymentMethod.CASH,
    *,
    selected_addons: Optional[Iterable[str]] = None,
    vat_rate: Number = DEFAULT_VAT_RATE,
    installment_count: int = DEFAULT_INSTALLMENT_MONTHS,
) -> PriceBreakdown:
    return calculate_price(
        effective_base_premium(plan, selected_addons),
        discount_percent,
        payment_method,
        vat_rate=vat_rate,
        installment_count=installment_count,
    )


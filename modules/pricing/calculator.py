"""
Pricing Module - Calculator
=============================
Cart/order totals and payment fees. Pure functions: no database, no I/O.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence

from common.helpers import to_money

PERCENTAGE = "percentage"
FIXED = "fixed"


@dataclass(frozen=True)
class PricingResult:
    subtotal: Decimal
    discount: Decimal
    total_amount: Decimal


def normalize_promo_type(promo_type) -> str:
    """Map free-form promo types ("Fixed", "flat rate", "10%") onto percentage/fixed."""
    value = (promo_type or "").strip().lower()
    if PERCENTAGE in value or "%" in value:
        return PERCENTAGE
    if FIXED in value or "flat" in value:
        return FIXED
    return PERCENTAGE


def compute_coupon_discount(promo_type: str, discount_value, subtotal, already_applied=0) -> Decimal:
    """
    Discount for a single coupon against `subtotal`.

    Percentage coupons always take their share of the full subtotal. Fixed
    coupons are capped at what earlier coupons left of the subtotal.
    Unknown promo types are treated as percentage.
    """
    subtotal = to_money(subtotal)
    value = to_money(discount_value)

    if normalize_promo_type(promo_type) == FIXED:
        remaining = max(Decimal("0.00"), subtotal - to_money(already_applied))
        amount = min(value, remaining)
    else:
        amount = min(to_money(subtotal * value / Decimal(100)), subtotal)
    return max(Decimal("0.00"), amount)


def compute_totals(items: Iterable, applied_coupons: Sequence, delivery_fee=0, service_charge=0) -> PricingResult:
    """
    Recompute a cart or order.

    Args:
        items: line objects with unit_price and quantity; each line_total is rewritten
        applied_coupons: in application order; each discount_amount is rewritten
        delivery_fee: flat delivery charge
        service_charge: payment processing charge

    Returns:
        PricingResult(subtotal, discount, total_amount), total floored at zero
    """
    subtotal = Decimal("0.00")
    for item in items:
        item.line_total = to_money(to_money(item.unit_price) * int(item.quantity))
        subtotal += item.line_total

    discount = Decimal("0.00")
    for coupon in applied_coupons:
        coupon.discount_amount = compute_coupon_discount(
            coupon.promo_type, coupon.discount_value, subtotal, already_applied=discount,
        )
        discount += coupon.discount_amount

    total = subtotal + to_money(delivery_fee) + to_money(service_charge) - discount
    return PricingResult(
        subtotal=to_money(subtotal),
        discount=to_money(discount),
        total_amount=to_money(max(Decimal("0.00"), total)),
    )


def compute_order_total(subtotal, delivery_fee=0, service_charge=0, tax=0, discount=0) -> Decimal:
    """Order grand total: subtotal + fees + tax - discount, never negative."""
    total = (
        to_money(subtotal) + to_money(delivery_fee) + to_money(service_charge)
        + to_money(tax) - to_money(discount)
    )
    return to_money(max(Decimal("0.00"), total))


def compute_tax(subtotal, tax_percent) -> Decimal:
    if not tax_percent:
        return Decimal("0.00")
    return to_money(to_money(subtotal) * Decimal(str(tax_percent)) / Decimal(100))


def compute_provider_fee(amount, percentage, cap, fixed=0) -> int:
    """round(min(amount * percentage / 100, cap) + fixed), half-up."""
    d = lambda x: Decimal(str(x)) if x is not None else Decimal("0")
    fee = min(d(amount) * d(percentage) / Decimal(100), d(cap)) + d(fixed)
    return int(fee.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

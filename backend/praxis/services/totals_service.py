# Overview: Pure totals engine for financial documents (no I/O, no session access).

"""
Document totals engine.

    subtotal      = sum(item amounts, credits negative)   | manual override when no items
    discount      = subtotal * percent / 100   if percent > 0
                  = fixed amount               elif amount > 0
                  = 0
    after         = subtotal - discount
    tax (excl.)   = after * rate / 100          total = after + tax
    tax (incl.)   = after * rate / (100 + rate) total = after
    no tax rate   -> tax = 0,                   total = after

RULES:
- Percent and fixed discounts are mutually exclusive; percent wins.
- Every stored money value is quantized to cents (ROUND_HALF_UP).
- compute_totals is a pure function of its arguments. Callers must pass the
  document's FULL current item set every time; stored totals are never
  patched incrementally.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable


CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _positive(value) -> Decimal | None:
    if value is None:
        return None
    value = Decimal(value)
    return value if value > ZERO else None


@dataclass(frozen=True)
class DiscountSpec:
    percent: Decimal | None = None
    amount: Decimal | None = None


@dataclass(frozen=True)
class TaxSpec:
    rate: Decimal | None = None
    inclusive: bool = False


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    discount_value: Decimal
    tax_amount: Decimal
    total: Decimal

    def to_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "discount_value": str(self.discount_value),
            "tax_amount": str(self.tax_amount),
            "total": str(self.total),
        }


def resolve_discount(base: Decimal, percent=None, amount=None) -> Decimal:
    """Discount on `base`: percent wins over a fixed amount; neither -> 0."""
    pct = _positive(percent)
    if pct is not None:
        return quantize_money(Decimal(base) * pct / HUNDRED)
    fixed = _positive(amount)
    if fixed is not None:
        return quantize_money(fixed)
    return ZERO.quantize(CENT)


def line_amount(quantity, price, *, discount_percent=None, discount_amount=None) -> Decimal:
    """quantity x price minus the item-level discount, in cents."""
    base = Decimal(quantity) * Decimal(price)
    return quantize_money(base - resolve_discount(base, discount_percent, discount_amount))


def compute_totals(
    amounts: Iterable[Decimal],
    discount: DiscountSpec | None = None,
    tax: TaxSpec | None = None,
    *,
    subtotal_override: Decimal | None = None,
) -> Totals:
    amounts = [Decimal(a) for a in amounts]
    discount = discount or DiscountSpec()
    tax = tax or TaxSpec()

    if amounts:
        subtotal = quantize_money(sum(amounts, ZERO))
    elif subtotal_override is not None:
        subtotal = quantize_money(subtotal_override)
    else:
        subtotal = ZERO.quantize(CENT)

    discount_value = resolve_discount(subtotal, discount.percent, discount.amount)
    after_discount = subtotal - discount_value

    rate = _positive(tax.rate)
    if rate is None:
        tax_amount = ZERO.quantize(CENT)
        total = after_discount
    elif tax.inclusive:
        tax_amount = quantize_money(after_discount * rate / (HUNDRED + rate))
        total = after_discount
    else:
        tax_amount = quantize_money(after_discount * rate / HUNDRED)
        total = after_discount + tax_amount

    return Totals(
        subtotal=subtotal,
        discount_value=discount_value,
        tax_amount=tax_amount,
        total=quantize_money(total),
    )


def totals_for_document(document) -> Totals:
    """Run the engine over a document's full current item set and pricing fields."""
    return compute_totals(
        [item.signed_amount for item in document.items],
        DiscountSpec(percent=document.discount_percent, amount=document.discount_amount),
        TaxSpec(rate=document.tax_rate, inclusive=bool(document.tax_inclusive)),
        subtotal_override=document.manual_subtotal,
    )

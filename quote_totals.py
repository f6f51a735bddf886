from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping, Union

from quote_models import ONE, ZERO, QuoteStep, coerce_quantity, to_decimal

HUNDRED = Decimal("100")

StepLike = Union[QuoteStep, Mapping[str, Any]]


@dataclass(frozen=True)
class QuoteTotals:
    subtotal: Decimal
    total_tax: Decimal
    grand_total: Decimal


def _fields(step: StepLike) -> tuple[Decimal, Decimal, Decimal]:
    """
    (user_price, quantity, tax_rate) for a step object or a raw stored mapping.
    """
    if isinstance(step, QuoteStep):
        return (to_decimal(step.user_price), coerce_quantity(step.quantity), to_decimal(step.tax_rate))
    return (
        to_decimal(step.get("userPrice")),
        coerce_quantity(step.get("quantity")),
        to_decimal(step.get("taxRate")),
    )


def line_total(step: StepLike) -> Decimal:
    price, quantity, _ = _fields(step)
    return price * quantity


def line_tax(step: StepLike) -> Decimal:
    _, _, rate = _fields(step)
    return line_total(step) * rate / HUNDRED


def line_total_with_tax(step: StepLike) -> Decimal:
    _, _, rate = _fields(step)
    return line_total(step) * (ONE + rate / HUNDRED)


def compute_totals(steps: Iterable[StepLike]) -> QuoteTotals:
    subtotal = ZERO
    total_tax = ZERO
    for step in steps:
        subtotal += line_total(step)
        total_tax += line_tax(step)
    return QuoteTotals(subtotal=subtotal, total_tax=total_tax, grand_total=subtotal + total_tax)

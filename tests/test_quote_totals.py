from __future__ import annotations

import unittest
from decimal import Decimal

from quote_models import QuoteStep
from quote_totals import compute_totals, line_tax, line_total, line_total_with_tax


def _step(price: object, quantity: object, tax: object) -> QuoteStep:
    return QuoteStep(
        title="Step",
        description="",
        suggested_price=Decimal(str(price)),
        quantity=Decimal(str(quantity)),
        user_price=Decimal(str(price)),
        tax_rate=Decimal(str(tax)),
    )


class TestQuoteTotals(unittest.TestCase):
    def test_single_step_with_vat(self) -> None:
        step = _step(100, 2, 23)
        self.assertEqual(line_total(step), Decimal("200"))
        self.assertEqual(line_total_with_tax(step), Decimal("246"))

        totals = compute_totals([step])
        self.assertEqual(totals.subtotal, Decimal("200"))
        self.assertEqual(totals.total_tax, Decimal("46"))
        self.assertEqual(totals.grand_total, Decimal("246"))

    def test_two_steps(self) -> None:
        totals = compute_totals([_step(50, 1, 0), _step(30, 3, 10)])
        self.assertEqual(totals.subtotal, Decimal("140"))
        self.assertEqual(totals.total_tax, Decimal("9"))
        self.assertEqual(totals.grand_total, Decimal("149"))

    def test_grand_total_is_exact_sum(self) -> None:
        steps = [_step("19.99", 3, 23), _step("0.1", 7, 6), _step("1234.56", "0.5", 11)]
        totals = compute_totals(steps)
        self.assertEqual(totals.grand_total, totals.subtotal + totals.total_tax)
        self.assertEqual(line_tax(steps[1]), Decimal("0.042"))

    def test_recomputing_is_idempotent(self) -> None:
        steps = [_step("12.5", 4, 23), _step(80, 1, 6)]
        self.assertEqual(compute_totals(steps), compute_totals(steps))

    def test_empty_quote(self) -> None:
        totals = compute_totals([])
        self.assertEqual(totals.subtotal, Decimal("0"))
        self.assertEqual(totals.grand_total, Decimal("0"))

    def test_stored_mappings_are_accepted(self) -> None:
        steps = [
            {"userPrice": 100, "quantity": 2, "taxRate": 23},
            {"userPrice": "10", "taxRate": 0},  # legacy row without quantity
        ]
        totals = compute_totals(steps)
        self.assertEqual(totals.subtotal, Decimal("210"))
        self.assertEqual(totals.total_tax, Decimal("46"))
        self.assertEqual(totals.grand_total, Decimal("256"))

    def test_explicit_zero_quantity_is_kept(self) -> None:
        self.assertEqual(line_total({"userPrice": 100, "quantity": 0, "taxRate": 0}), Decimal("0"))

    def test_non_numeric_values_count_as_zero(self) -> None:
        self.assertEqual(line_total({"userPrice": "abc", "quantity": 2}), Decimal("0"))
        self.assertEqual(line_total({"userPrice": 5, "quantity": "lots"}), Decimal("0"))


if __name__ == "__main__":
    unittest.main()

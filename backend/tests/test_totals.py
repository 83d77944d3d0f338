"""
Totals engine tests.

Verifies:
- Tax-exclusive and tax-inclusive math
- Percent discount wins over a fixed discount
- Credits, manual subtotal override, cent rounding
- Determinism (same inputs, same output; item order irrelevant)
"""

from decimal import Decimal

import pytest

from praxis.services.totals_service import (
    DiscountSpec,
    TaxSpec,
    compute_totals,
    line_amount,
    resolve_discount,
)


D = Decimal


class TestTaxModes:

    def test_tax_exclusive_adds_tax_on_top(self):
        totals = compute_totals([D("600"), D("400")], tax=TaxSpec(rate=D("20"), inclusive=False))
        assert totals.subtotal == D("1000.00")
        assert totals.tax_amount == D("200.00")
        assert totals.total == D("1200.00")

    def test_tax_inclusive_extracts_tax_from_total(self):
        totals = compute_totals([D("1000")], tax=TaxSpec(rate=D("20"), inclusive=True))
        # 1000 * 20 / 120
        assert totals.tax_amount == D("166.67")
        assert totals.total == D("1000.00")

    def test_no_tax_rate_means_no_tax(self):
        totals = compute_totals([D("99.99")], tax=TaxSpec(rate=None, inclusive=True))
        assert totals.tax_amount == D("0.00")
        assert totals.total == D("99.99")

    def test_zero_tax_rate_means_no_tax(self):
        totals = compute_totals([D("10")], tax=TaxSpec(rate=D("0")))
        assert totals.tax_amount == D("0.00")
        assert totals.total == D("10.00")


class TestDiscounts:

    def test_percent_discount(self):
        totals = compute_totals([D("1000")], DiscountSpec(percent=D("10")))
        assert totals.discount_value == D("100.00")
        assert totals.total == D("900.00")

    def test_fixed_discount(self):
        totals = compute_totals([D("1000")], DiscountSpec(amount=D("50")))
        assert totals.discount_value == D("50.00")
        assert totals.total == D("950.00")

    def test_percent_wins_over_fixed_amount(self):
        totals = compute_totals([D("1000")], DiscountSpec(percent=D("10"), amount=D("50")))
        assert totals.discount_value == D("100.00")

    def test_zero_percent_falls_back_to_fixed_amount(self):
        assert resolve_discount(D("1000"), D("0"), D("50")) == D("50.00")

    def test_discount_applies_before_tax(self):
        totals = compute_totals(
            [D("1000")],
            DiscountSpec(percent=D("10")),
            TaxSpec(rate=D("20"), inclusive=False),
        )
        assert totals.tax_amount == D("180.00")
        assert totals.total == D("1080.00")


class TestSubtotal:

    def test_credits_reduce_subtotal(self):
        totals = compute_totals([D("500"), D("-120.50")])
        assert totals.subtotal == D("379.50")

    def test_override_used_only_without_items(self):
        assert compute_totals([], subtotal_override=D("750")).subtotal == D("750.00")
        assert compute_totals([D("10")], subtotal_override=D("750")).subtotal == D("10.00")

    def test_empty_document_totals_zero(self):
        totals = compute_totals([])
        assert (totals.subtotal, totals.discount_value, totals.tax_amount, totals.total) == (
            D("0.00"), D("0.00"), D("0.00"), D("0.00"),
        )

    def test_rounding_half_up_to_cents(self):
        totals = compute_totals([D("10.005")])
        assert totals.subtotal == D("10.01")


class TestDeterminism:

    def test_same_inputs_same_output(self):
        args = ([D("333.33"), D("0.01"), D("-12")], DiscountSpec(percent=D("7.5")), TaxSpec(rate=D("23")))
        assert compute_totals(*args) == compute_totals(*args)

    def test_item_order_does_not_matter(self):
        amounts = [D("19.99"), D("0.01"), D("250"), D("-5.55")]
        forward = compute_totals(amounts, tax=TaxSpec(rate=D("21"), inclusive=True))
        backward = compute_totals(list(reversed(amounts)), tax=TaxSpec(rate=D("21"), inclusive=True))
        assert forward == backward


class TestLineAmount:

    @pytest.mark.parametrize(
        "quantity,price,percent,amount,expected",
        [
            ("3", "100", None, None, "300.00"),
            ("1.5", "80", None, None, "120.00"),
            ("2", "100", "10", None, "180.00"),
            ("2", "100", None, "25", "175.00"),
            ("2", "100", "10", "25", "180.00"),
        ],
    )
    def test_line_amount(self, quantity, price, percent, amount, expected):
        result = line_amount(D(quantity), D(price), discount_percent=percent, discount_amount=amount)
        assert result == D(expected)

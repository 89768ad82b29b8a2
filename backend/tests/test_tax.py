"""GST split and rounding for single line items."""

from decimal import Decimal

import pytest

from salonbook.checkout.errors import CheckoutValidationError
from salonbook.checkout.tax import compute_tax, sum_tax


class TestComputeTax:
    def test_intra_state_splits_rate_between_cgst_and_sgst(self):
        tax = compute_tax(Decimal("1000.00"), Decimal("18"), is_igst=False)

        assert tax.cgst_rate == Decimal("9")
        assert tax.sgst_rate == Decimal("9")
        assert tax.cgst_amount == Decimal("90.00")
        assert tax.sgst_amount == Decimal("90.00")
        assert tax.igst_amount == Decimal("0.00")
        assert tax.total_tax == Decimal("180.00")

    def test_inter_state_uses_single_igst(self):
        tax = compute_tax(Decimal("1000.00"), Decimal("18"), is_igst=True)

        assert tax.igst_rate == Decimal("18")
        assert tax.igst_amount == Decimal("180.00")
        assert tax.cgst_amount == Decimal("0.00")
        assert tax.sgst_amount == Decimal("0.00")
        assert tax.total_tax == Decimal("180.00")

    def test_each_half_is_rounded_half_up(self):
        """0.005 on each half rounds up to a paisa."""
        tax = compute_tax(Decimal("1.00"), Decimal("1"), is_igst=False)

        assert tax.cgst_amount == Decimal("0.01")
        assert tax.sgst_amount == Decimal("0.01")
        assert tax.total_tax == Decimal("0.02")

    def test_halves_can_differ_from_igst_by_a_paisa(self):
        intra = compute_tax(Decimal("100.50"), Decimal("5"), is_igst=False)
        inter = compute_tax(Decimal("100.50"), Decimal("5"), is_igst=True)

        assert intra.cgst_amount == Decimal("2.51")
        assert intra.total_tax == Decimal("5.02")
        assert inter.igst_amount == Decimal("5.03")

    def test_zero_rate_and_zero_base(self):
        assert compute_tax(Decimal("500.00"), Decimal("0"), is_igst=False).total_tax == Decimal("0")
        assert compute_tax(Decimal("0.00"), Decimal("18"), is_igst=True).total_tax == Decimal("0")

    def test_negative_base_rejected(self):
        with pytest.raises(CheckoutValidationError) as exc_info:
            compute_tax(Decimal("-1.00"), Decimal("18"), is_igst=False)
        assert exc_info.value.code == "NEGATIVE_TAXABLE_BASE"

    @pytest.mark.parametrize("rate", ["-1", "100.01"])
    def test_rate_out_of_range_rejected(self, rate):
        with pytest.raises(CheckoutValidationError) as exc_info:
            compute_tax(Decimal("100.00"), Decimal(rate), is_igst=False)
        assert exc_info.value.code == "INVALID_TAX_RATE"


def test_sum_tax_adds_amounts_across_items():
    breakdowns = [
        compute_tax(Decimal("1000.00"), Decimal("18"), is_igst=False),
        compute_tax(Decimal("250.00"), Decimal("5"), is_igst=False),
    ]

    total = sum_tax(breakdowns)

    assert total.cgst_amount == Decimal("96.25")
    assert total.sgst_amount == Decimal("96.25")
    assert total.igst_amount == Decimal("0")
    assert total.total_tax == Decimal("192.50")

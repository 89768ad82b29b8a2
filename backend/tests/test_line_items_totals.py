"""Line item pricing, commission and the totals compositor."""

from decimal import Decimal

import pytest

from salonbook.checkout.errors import CheckoutValidationError
from salonbook.checkout.line_items import apply_tax, build_line_item, update_line_item
from salonbook.checkout.money import to_amount, to_quantity
from salonbook.checkout.totals import compute_totals, loyalty_value
from salonbook.checkout.types import PaymentEntry, PaymentMethod

from factories import make_entry, make_item


class TestLineItems:
    def test_gross_is_price_times_quantity(self):
        item = make_item(price="250.00", quantity=3)

        assert item.gross_amount == Decimal("750.00")
        assert item.taxable_amount == Decimal("750.00")
        assert item.discount_amount == Decimal("0.00")

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "abc", True])
    def test_invalid_quantity_rejected(self, quantity):
        with pytest.raises(CheckoutValidationError):
            build_line_item("i1", make_entry(), quantity)

    def test_percentage_commission(self):
        entry = make_entry(commission_type="percentage", commission_value=Decimal("10"))
        item = build_line_item("i1", entry, 2, stylist_id=7)

        assert item.stylist_id == 7
        assert item.commission_amount == Decimal("200.00")

    def test_flat_commission_is_per_unit(self):
        entry = make_entry(commission_type="flat", commission_value=Decimal("50"))
        item = build_line_item("i1", entry, 3)

        assert item.commission_amount == Decimal("150.00")

    def test_update_quantity_reprices(self):
        item = update_line_item(make_item(price="250.00"), {"quantity": 4})

        assert item.quantity == 4
        assert item.gross_amount == Decimal("1000.00")

    def test_update_rejects_price_change(self):
        with pytest.raises(CheckoutValidationError):
            update_line_item(make_item(), {"unit_price": "1.00"})

    def test_update_rejects_empty_changes(self):
        with pytest.raises(CheckoutValidationError):
            update_line_item(make_item(), {})

    def test_apply_tax_sets_net(self):
        (item,) = apply_tax((make_item(),), is_igst=False)

        assert item.cgst_amount == Decimal("90.00")
        assert item.sgst_amount == Decimal("90.00")
        assert item.net_amount == Decimal("1180.00")


class TestMoneyParsing:
    def test_amount_with_three_decimals_rejected(self):
        with pytest.raises(CheckoutValidationError):
            to_amount("10.005", "amount")

    def test_float_goes_through_str(self):
        assert to_amount(0.1, "amount") == Decimal("0.10")

    def test_quantity_digit_string(self):
        assert to_quantity("2") == 2


def _payment(method, amount, pid="p1"):
    return PaymentEntry(id=pid, payment_method=method, amount=Decimal(amount))


class TestComputeTotals:
    def test_basic_totals(self):
        items = apply_tax((make_item(),), is_igst=False)

        totals = compute_totals(items, (), ())

        assert totals.subtotal == Decimal("1000.00")
        assert totals.taxable_amount == Decimal("1000.00")
        assert totals.tax_total == Decimal("180.00")
        assert totals.grand_total == Decimal("1180.00")
        assert totals.amount_due == Decimal("1180.00")

    def test_tip_is_added_untaxed(self):
        items = apply_tax((make_item(),), is_igst=False)

        totals = compute_totals(items, (), (), tip_amount=Decimal("100.00"))

        assert totals.tax_total == Decimal("180.00")
        assert totals.grand_total == Decimal("1280.00")

    def test_loyalty_then_wallet_credit(self):
        items = apply_tax((make_item(),), is_igst=False)

        totals = compute_totals(
            items, (), (), loyalty_credit=Decimal("100.00"), wallet_requested=Decimal("80.00")
        )

        assert totals.loyalty_discount == Decimal("100.00")
        assert totals.wallet_used == Decimal("80.00")
        assert totals.grand_total == Decimal("1000.00")

    def test_credits_capped_at_amount_owed(self):
        items = apply_tax((make_item(price="100.00", tax_rate="0"),), is_igst=False)

        totals = compute_totals(
            items, (), (), loyalty_credit=Decimal("80.00"), wallet_requested=Decimal("500.00")
        )

        assert totals.loyalty_discount == Decimal("80.00")
        assert totals.wallet_used == Decimal("20.00")
        assert totals.grand_total == Decimal("0.00")

    def test_amount_due_never_negative(self):
        items = apply_tax((make_item(price="100.00", tax_rate="0"),), is_igst=False)

        totals = compute_totals(items, (), (_payment(PaymentMethod.CASH, "100.01"),))

        assert totals.amount_paid == Decimal("100.01")
        assert totals.amount_due == Decimal("0.00")


def test_loyalty_value_rounds_to_paise():
    assert loyalty_value(200, Decimal("0.5")) == Decimal("100.00")
    assert loyalty_value(3, Decimal("0.333")) == Decimal("1.00")

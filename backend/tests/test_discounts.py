"""Discount validation, ordering, caps and apportionment."""

from datetime import timedelta
from decimal import Decimal

import pytest

from salonbook.checkout.discounts import apply_discounts, apportion, build_discount
from salonbook.checkout.errors import CheckoutRuleError, CheckoutValidationError
from salonbook.checkout.types import AppliedTo, CalculationType, DiscountType

from factories import NOW, coupon, make_item, membership, package_credit


def _build(items, sequence=1, existing=(), customer_id=5, **request):
    request.setdefault("applied_to", "subtotal")
    return build_discount(
        discount_id=f"d{sequence}",
        sequence=sequence,
        line_items=items,
        existing=existing,
        customer_id=customer_id,
        now=NOW,
        **request,
    )


class TestApportion:
    def test_split_in_proportion_to_weights(self):
        assert apportion(Decimal("100.00"), [Decimal("1000.00"), Decimal("500.00")]) == [
            Decimal("66.67"),
            Decimal("33.33"),
        ]

    def test_leftover_paisa_goes_to_earliest_on_tie(self):
        shares = apportion(Decimal("10.00"), [Decimal("1.00")] * 3)

        assert shares == [Decimal("3.34"), Decimal("3.33"), Decimal("3.33")]
        assert sum(shares) == Decimal("10.00")

    def test_zero_weights_get_nothing(self):
        assert apportion(Decimal("5.00"), [Decimal("0.00"), Decimal("0.00")]) == [Decimal("0.00")] * 2


class TestBuildDiscount:
    def test_manual_requires_reason(self):
        items = (make_item(),)
        with pytest.raises(CheckoutValidationError):
            _build(items, discount_type="manual", calculation_type="flat", calculation_value="100")

    def test_manual_flat(self):
        items = (make_item(),)
        discount = _build(
            items, discount_type="manual", calculation_type="flat", calculation_value="100", reason="Regular client"
        )

        assert discount.discount_type == DiscountType.MANUAL
        assert discount.calculation_type == CalculationType.FLAT
        assert discount.calculation_value == Decimal("100.00")
        assert discount.amount == Decimal("0.00")
        assert discount.source_name == "manual"

    def test_empty_checkout_rejected(self):
        with pytest.raises(CheckoutRuleError) as exc_info:
            _build((), discount_type="manual", calculation_type="flat", calculation_value="10", reason="x")
        assert exc_info.value.code == "NO_ITEMS"

    @pytest.mark.parametrize("value", ["0", "-5", "100.01"])
    def test_percentage_bounds(self, value):
        items = (make_item(),)
        with pytest.raises(CheckoutValidationError):
            _build(items, discount_type="manual", calculation_type="percentage", calculation_value=value, reason="x")

    def test_unknown_discount_type_rejected(self):
        with pytest.raises(CheckoutValidationError):
            _build((make_item(),), discount_type="voucher", calculation_type="flat", calculation_value="10")

    def test_item_discount_needs_existing_item(self):
        items = (make_item(),)
        with pytest.raises(CheckoutRuleError) as exc_info:
            _build(
                items,
                discount_type="manual",
                applied_to="item",
                applied_item_id="missing",
                calculation_type="flat",
                calculation_value="10",
                reason="x",
            )
        assert exc_info.value.code == "DISCOUNT_TARGET_NOT_FOUND"

    def test_sourced_discount_requires_source(self):
        with pytest.raises(CheckoutValidationError):
            _build((make_item(),), discount_type="coupon", discount_source="FLAT50")

    def test_membership_takes_calculation_from_source(self):
        discount = _build((make_item(),), discount_type="membership", source=membership("15"))

        assert discount.calculation_type == CalculationType.PERCENTAGE
        assert discount.calculation_value == Decimal("15")
        assert discount.discount_source == "1"
        assert discount.source_name == "Gold Membership"

    def test_membership_of_another_customer_rejected(self):
        with pytest.raises(CheckoutRuleError) as exc_info:
            _build((make_item(),), discount_type="membership", source=membership(customer_id=99))
        assert exc_info.value.code == "SOURCE_CUSTOMER_MISMATCH"

    def test_expired_coupon_rejected(self):
        source = coupon(expires_at=NOW - timedelta(days=1))
        with pytest.raises(CheckoutRuleError) as exc_info:
            _build((make_item(),), discount_type="coupon", source=source)
        assert exc_info.value.code == "SOURCE_EXPIRED"

    def test_exhausted_coupon_rejected(self):
        with pytest.raises(CheckoutRuleError) as exc_info:
            _build((make_item(),), discount_type="coupon", source=coupon(remaining_uses=0))
        assert exc_info.value.code == "SOURCE_EXHAUSTED"

    def test_coupon_minimum_subtotal(self):
        source = coupon(min_subtotal=Decimal("1500.00"))
        with pytest.raises(CheckoutRuleError) as exc_info:
            _build((make_item(),), discount_type="coupon", source=source)
        assert exc_info.value.code == "MIN_SUBTOTAL_NOT_MET"

    def test_same_source_cannot_be_applied_twice(self):
        items = (make_item(),)
        first = _build(items, discount_type="coupon", source=coupon())
        with pytest.raises(CheckoutRuleError) as exc_info:
            _build(items, sequence=2, existing=(first,), discount_type="coupon", source=coupon())
        assert exc_info.value.code == "DISCOUNT_ALREADY_APPLIED"

    def test_coupon_cannot_be_reused_on_an_item(self):
        items = (make_item(),)
        on_bill = _build(items, discount_type="coupon", source=coupon())
        with pytest.raises(CheckoutRuleError) as exc_info:
            _build(
                items,
                sequence=2,
                existing=(on_bill,),
                discount_type="coupon",
                applied_to="item",
                applied_item_id="i1",
                source=coupon(),
            )
        assert exc_info.value.code == "DISCOUNT_ALREADY_APPLIED"

    def test_package_credit_cannot_cover_two_items(self):
        items = (make_item("i1"), make_item("i2"))
        first = _build(
            items, discount_type="package", applied_to="item", applied_item_id="i1", source=package_credit()
        )
        with pytest.raises(CheckoutRuleError) as exc_info:
            _build(
                items,
                sequence=2,
                existing=(first,),
                discount_type="package",
                applied_to="item",
                applied_item_id="i2",
                source=package_credit(),
            )
        assert exc_info.value.code == "DISCOUNT_ALREADY_APPLIED"

    def test_membership_may_apply_to_each_item(self):
        items = (make_item("i1"), make_item("i2"))
        first = _build(items, discount_type="membership", applied_to="item", applied_item_id="i1", source=membership())
        second = _build(
            items,
            sequence=2,
            existing=(first,),
            discount_type="membership",
            applied_to="item",
            applied_item_id="i2",
            source=membership(),
        )

        assert second.applied_item_id == "i2"

    def test_package_must_target_item(self):
        with pytest.raises(CheckoutRuleError) as exc_info:
            _build((make_item(),), discount_type="package", source=package_credit())
        assert exc_info.value.code == "SOURCE_REQUIRES_ITEM"

    def test_package_only_covers_its_service(self):
        items = (make_item("i1", reference_id=3),)
        with pytest.raises(CheckoutRuleError) as exc_info:
            _build(items, discount_type="package", applied_to="item", applied_item_id="i1", source=package_credit())
        assert exc_info.value.code == "SOURCE_NOT_APPLICABLE"

    def test_package_units_limited_by_remaining_credits(self):
        items = (make_item("i1", price="500.00", quantity=3),)
        discount = _build(
            items, discount_type="package", applied_to="item", applied_item_id="i1", source=package_credit(credits=2)
        )

        assert discount.calculation_type == CalculationType.FLAT
        assert discount.calculation_value == Decimal("500.00")
        assert discount.units == 2
        assert discount.applied_to == AppliedTo.ITEM


class TestApplyDiscounts:
    def test_priority_beats_insertion_order(self):
        """Membership is applied before an earlier manual discount."""
        items = (make_item(),)
        manual = _build(
            items, discount_type="manual", calculation_type="flat", calculation_value="100", reason="Birthday"
        )
        member = _build(items, sequence=2, discount_type="membership", source=membership("10"))

        new_items, discounts = apply_discounts(items, (manual, member))

        assert [d.id for d in discounts] == ["d1", "d2"]
        assert discounts[1].amount == Decimal("100.00")
        assert discounts[0].amount == Decimal("100.00")
        assert new_items[0].taxable_amount == Decimal("800.00")

    def test_sequential_reduction(self):
        items = (make_item(),)
        member = _build(items, discount_type="membership", source=membership("10"))
        flat = _build(items, sequence=2, discount_type="coupon", source=coupon(value="50"))

        new_items, discounts = apply_discounts(items, (member, flat))

        assert discounts[0].amount == Decimal("100.00")
        assert discounts[1].amount == Decimal("50.00")
        assert new_items[0].discount_amount == Decimal("150.00")
        assert new_items[0].taxable_amount == Decimal("850.00")

    def test_two_percentages_compound(self):
        items = (make_item(),)
        first = _build(
            items, discount_type="manual", calculation_type="percentage", calculation_value="10", reason="a"
        )
        second = _build(
            items, sequence=2, discount_type="manual", calculation_type="percentage", calculation_value="10", reason="b"
        )

        new_items, discounts = apply_discounts(items, (first, second))

        assert [d.amount for d in discounts] == [Decimal("100.00"), Decimal("90.00")]
        assert new_items[0].taxable_amount == Decimal("810.00")

    def test_max_discount_caps_percentage(self):
        items = (make_item(),)
        member = _build(items, discount_type="membership", source=membership("20", max_discount=Decimal("150.00")))

        _, discounts = apply_discounts(items, (member,))

        assert discounts[0].amount == Decimal("150.00")

    def test_flat_larger_than_item_is_capped(self):
        items = (make_item(),)
        flat = _build(
            items,
            discount_type="manual",
            applied_to="item",
            applied_item_id="i1",
            calculation_type="flat",
            calculation_value="1500",
            reason="Complimentary",
        )

        new_items, discounts = apply_discounts(items, (flat,))

        assert discounts[0].amount == Decimal("1000.00")
        assert new_items[0].taxable_amount == Decimal("0.00")

    def test_subtotal_discount_apportioned_across_items(self):
        items = (make_item("i1"), make_item("i2", price="500.00", reference_id=2))
        flat = _build(items, discount_type="manual", calculation_type="flat", calculation_value="100", reason="x")

        new_items, _ = apply_discounts(items, (flat,))

        assert [i.discount_amount for i in new_items] == [Decimal("66.67"), Decimal("33.33")]
        assert [i.taxable_amount for i in new_items] == [Decimal("933.33"), Decimal("466.67")]

    def test_package_credit_covers_units(self):
        items = (make_item("i1", price="500.00", quantity=3),)
        package = _build(
            items, discount_type="package", applied_to="item", applied_item_id="i1", source=package_credit(credits=2)
        )

        new_items, discounts = apply_discounts(items, (package,))

        assert discounts[0].amount == Decimal("1000.00")
        assert new_items[0].taxable_amount == Decimal("500.00")

    def test_package_units_follow_lowered_quantity(self):
        items = (make_item("i1", price="500.00", quantity=3),)
        package = _build(
            items, discount_type="package", applied_to="item", applied_item_id="i1", source=package_credit(credits=5)
        )

        _, discounts = apply_discounts((make_item("i1", price="500.00", quantity=1),), (package,))

        assert discounts[0].units == 1
        assert discounts[0].amount == Decimal("500.00")

    def test_package_units_bounded_by_credits_when_quantity_rises(self):
        items = (make_item("i1", price="500.00", quantity=1),)
        package = _build(
            items, discount_type="package", applied_to="item", applied_item_id="i1", source=package_credit(credits=2)
        )
        assert package.units == 1

        new_items, discounts = apply_discounts((make_item("i1", price="500.00", quantity=4),), (package,))

        assert discounts[0].units == 2
        assert discounts[0].amount == Decimal("1000.00")
        assert new_items[0].taxable_amount == Decimal("1000.00")

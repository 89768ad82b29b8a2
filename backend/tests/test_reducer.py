"""
Session reducer tests.

Each test feeds a sequence of events through reduce() and checks the
resulting totals and lifecycle state. No database involved.
"""

from decimal import Decimal

import pytest

from salonbook.checkout import reducer
from salonbook.checkout.errors import CheckoutNotFoundError, CheckoutRuleError, CheckoutStateError, CheckoutValidationError
from salonbook.checkout.money import PAYMENT_TOLERANCE, ZERO, money
from salonbook.checkout.payments import parse_payment
from salonbook.checkout.serialization import state_from_dict, state_to_dict
from salonbook.checkout.types import SessionStatus

from factories import NOW, coupon, make_customer, make_item, make_state, membership


def _run(state, *events):
    for event in events:
        state = reducer.reduce(state, event)
    return state


def _add(item_id="i1", price="1000.00", **kwargs):
    return reducer.AddItem(item=make_item(item_id, price=price, **kwargs))


def _pay(*entries):
    return reducer.AddPayments(payments=tuple(
        parse_payment(f"p{i}", {"payment_method": method, "amount": amount})
        for i, (method, amount) in enumerate(entries, start=1)
    ))


def _discount(discount_id, source=None, **request):
    request.setdefault("applied_to", "subtotal")
    return reducer.ApplyDiscount(discount_id=discount_id, request=request, source=source, now=NOW)


def assert_invariants(state):
    totals = state.totals
    for item in state.line_items:
        assert item.taxable_amount >= 0
        assert item.net_amount == money(item.taxable_amount + item.total_tax)
        if not state.is_igst:
            assert item.cgst_amount == item.sgst_amount
            assert item.igst_amount == ZERO
        else:
            assert item.cgst_amount == ZERO and item.sgst_amount == ZERO

    net = sum((i.net_amount for i in state.line_items), ZERO)
    expected = net + totals.tip_amount - totals.loyalty_discount - totals.wallet_used
    assert abs(expected - totals.grand_total) <= PAYMENT_TOLERANCE

    assert sum((p.amount for p in state.payments), ZERO) == totals.amount_paid
    assert totals.amount_due == max(ZERO, totals.grand_total - totals.amount_paid)


class TestScenarios:
    def test_single_item_intra_state(self):
        state = _run(make_state(), _add())

        (item,) = state.line_items
        assert item.cgst_amount == Decimal("90.00")
        assert item.sgst_amount == Decimal("90.00")
        assert item.total_tax == Decimal("180.00")
        assert item.net_amount == Decimal("1180.00")
        assert state.totals.grand_total == Decimal("1180.00")
        assert state.status == SessionStatus.OPEN
        assert_invariants(state)

    def test_split_payment_settles(self):
        state = _run(make_state(), _add(price="500.00", tax_rate="0"))
        assert state.totals.amount_due == Decimal("500.00")

        state = reducer.reduce(state, _pay(("cash", "300"), ("upi", "200")))

        assert state.totals.amount_paid == Decimal("500.00")
        assert state.totals.amount_due == Decimal("0.00")
        assert state.status == SessionStatus.SETTLED
        assert_invariants(state)

    def test_overpayment_leaves_state_unchanged(self):
        state = _run(make_state(), _add(price="500.00", tax_rate="0"), _pay(("cash", "500")))

        with pytest.raises(CheckoutRuleError) as exc_info:
            reducer.reduce(state, _pay(("cash", "50")))

        assert exc_info.value.code == "OVERPAYMENT"
        assert state.totals.amount_paid == Decimal("500.00")
        assert len(state.payments) == 1

    def test_removing_item_removes_its_discount(self):
        state = _run(
            make_state(),
            _add("i1"),
            _add("i2", price="500.00", reference_id=2),
            _discount(
                "d1",
                discount_type="manual",
                applied_to="item",
                applied_item_id="i1",
                calculation_type="flat",
                calculation_value="100",
                reason="Loyal client",
            ),
        )
        assert state.totals.discount_total == Decimal("100.00")

        state = reducer.reduce(state, reducer.RemoveItem(item_id="i1"))

        assert [i.id for i in state.line_items] == ["i2"]
        assert state.applied_discounts == ()
        assert state.totals.subtotal == Decimal("500.00")
        assert state.totals.discount_total == Decimal("0.00")
        assert state.totals.grand_total == Decimal("590.00")
        assert_invariants(state)

    def test_membership_then_coupon_progression(self):
        customer = make_customer()
        state = _run(
            make_state(customer=customer),
            _add(),
            _discount("d1", source=membership("10"), discount_type="membership"),
        )
        assert state.totals.taxable_amount == Decimal("900.00")

        state = reducer.reduce(state, _discount("d2", source=coupon(value="50"), discount_type="coupon"))

        assert state.totals.taxable_amount == Decimal("850.00")
        assert [d.amount for d in state.applied_discounts] == [Decimal("100.00"), Decimal("50.00")]
        assert_invariants(state)

    def test_percentage_after_percentage_uses_reduced_base(self):
        state = _run(
            make_state(),
            _add(),
            _discount("d1", discount_type="manual", calculation_type="percentage", calculation_value="10", reason="a"),
            _discount("d2", discount_type="manual", calculation_type="percentage", calculation_value="10", reason="b"),
        )

        assert state.totals.discount_total == Decimal("190.00")
        assert state.totals.taxable_amount == Decimal("810.00")
        assert state.next_sequence == 3

    def test_inter_state_tax_mode(self):
        state = _run(make_state(), _add(), reducer.SetTaxMode(is_igst=True))

        (item,) = state.line_items
        assert item.igst_amount == Decimal("180.00")
        assert state.totals.grand_total == Decimal("1180.00")
        assert_invariants(state)


class TestSettlementCredits:
    def test_loyalty_redemption_is_post_tax(self):
        state = _run(make_state(customer=make_customer()), _add(), reducer.RedeemLoyalty(points=200))

        assert state.totals.tax_total == Decimal("180.00")
        assert state.totals.loyalty_discount == Decimal("100.00")
        assert state.totals.grand_total == Decimal("1080.00")
        assert reducer.loyalty_points_used(state) == 200
        assert_invariants(state)

    def test_loyalty_credit_capped_at_bill(self):
        state = _run(
            make_state(customer=make_customer()),
            _add(price="100.00", tax_rate="0"),
            reducer.RedeemLoyalty(points=1000),
        )

        assert state.totals.loyalty_discount == Decimal("100.00")
        assert state.totals.grand_total == Decimal("0.00")
        assert state.status == SessionStatus.SETTLED
        assert reducer.loyalty_points_used(state) == 200

    def test_cannot_redeem_more_points_than_held(self):
        state = _run(make_state(customer=make_customer(points=100)), _add())

        with pytest.raises(CheckoutRuleError) as exc_info:
            reducer.reduce(state, reducer.RedeemLoyalty(points=101))
        assert exc_info.value.code == "INSUFFICIENT_LOYALTY_POINTS"

    def test_loyalty_requires_customer(self):
        state = _run(make_state(), _add())

        with pytest.raises(CheckoutRuleError) as exc_info:
            reducer.reduce(state, reducer.RedeemLoyalty(points=10))
        assert exc_info.value.code == "CUSTOMER_REQUIRED"

    def test_wallet_credit(self):
        state = _run(make_state(customer=make_customer()), _add(), reducer.UseWallet(amount="300.00"))

        assert state.totals.wallet_used == Decimal("300.00")
        assert state.totals.grand_total == Decimal("880.00")
        assert_invariants(state)

    def test_wallet_over_balance_rejected(self):
        state = _run(make_state(customer=make_customer(wallet="100.00")), _add())

        with pytest.raises(CheckoutRuleError) as exc_info:
            reducer.reduce(state, reducer.UseWallet(amount="100.01"))
        assert exc_info.value.code == "INSUFFICIENT_WALLET_BALANCE"

    def test_tip_added_after_tax(self):
        state = _run(make_state(), _add(), reducer.SetTip(amount="50"))

        assert state.totals.tip_amount == Decimal("50.00")
        assert state.totals.grand_total == Decimal("1230.00")
        assert_invariants(state)

    def test_negative_tip_rejected(self):
        state = _run(make_state(), _add())

        with pytest.raises(CheckoutValidationError):
            reducer.reduce(state, reducer.SetTip(amount="-1"))


class TestGuards:
    def test_discount_that_would_leave_session_overpaid_is_rejected(self):
        state = _run(make_state(), _add(price="500.00", tax_rate="0"), _pay(("cash", "500")))

        with pytest.raises(CheckoutRuleError) as exc_info:
            reducer.reduce(
                state,
                _discount("d1", discount_type="manual", calculation_type="flat", calculation_value="100", reason="x"),
            )
        assert exc_info.value.code == "PAYMENT_EXCEEDS_TOTAL"

    def test_removing_payment_reopens_session(self):
        state = _run(make_state(), _add(price="500.00", tax_rate="0"), _pay(("cash", "500")))
        assert state.status == SessionStatus.SETTLED

        state = reducer.reduce(state, reducer.RemovePayment(payment_id="p1"))

        assert state.status == SessionStatus.OPEN
        assert state.totals.amount_due == Decimal("500.00")

    def test_update_unknown_item(self):
        with pytest.raises(CheckoutNotFoundError) as exc_info:
            reducer.reduce(make_state(), reducer.UpdateItem(item_id="nope", changes={"quantity": 2}))
        assert exc_info.value.code == "ITEM_NOT_FOUND"

    def test_remove_unknown_discount(self):
        state = _run(make_state(), _add())
        with pytest.raises(CheckoutNotFoundError) as exc_info:
            reducer.reduce(state, reducer.RemoveDiscount(discount_id="nope"))
        assert exc_info.value.code == "DISCOUNT_NOT_FOUND"

    def test_empty_session_is_never_settled(self):
        assert make_state().status == SessionStatus.OPEN


class TestLifecycle:
    def test_complete_requires_settlement(self):
        state = _run(make_state(), _add())

        with pytest.raises(CheckoutStateError) as exc_info:
            reducer.reduce(state, reducer.Complete(invoice_id=1, at=NOW))
        assert exc_info.value.code == "NOT_SETTLED"
        assert exc_info.value.details["amount_due"] == "1180.00"

    def test_completed_session_rejects_events(self):
        state = _run(
            make_state(),
            _add(price="500.00", tax_rate="0"),
            _pay(("cash", "500")),
            reducer.Complete(invoice_id=42, at=NOW),
        )
        assert state.status == SessionStatus.COMPLETED
        assert state.invoice_id == 42

        with pytest.raises(CheckoutStateError) as exc_info:
            reducer.reduce(state, _add("i2"))
        assert exc_info.value.code == "SESSION_COMPLETED"

    def test_expired_session_rejects_events(self):
        state = _run(make_state(), _add(), reducer.Expire(at=NOW))
        assert state.status == SessionStatus.EXPIRED

        with pytest.raises(CheckoutStateError) as exc_info:
            reducer.reduce(state, reducer.SetTip(amount="10"))
        assert exc_info.value.code == "SESSION_EXPIRED"

    def test_unknown_event(self):
        with pytest.raises(TypeError):
            reducer.reduce(make_state(), object())


def test_state_survives_json_round_trip():
    state = _run(
        make_state(customer=make_customer()),
        _add(),
        _discount("d1", source=membership("10"), discount_type="membership"),
        reducer.RedeemLoyalty(points=20),
        _pay(("card", "500")),
    )

    restored = state_from_dict(state_to_dict(state))

    assert restored.totals == state.totals
    assert restored.line_items == state.line_items
    assert restored.applied_discounts == state.applied_discounts
    assert restored.payments == state.payments
    assert restored.customer == state.customer
    assert restored.status == state.status

"""
Invoice cancellation tests: credit notes, reversal of coupon, package, wallet
and loyalty settlement, and the cancellation/credit note routes.
"""

from decimal import Decimal

import pytest

from salonbook.checkout.errors import (
    CheckoutNotFoundError,
    CheckoutRuleError,
    CheckoutStateError,
    CheckoutValidationError,
)
from salonbook.extensions import db
from salonbook.models import (
    Coupon,
    CreditNote,
    Customer,
    CustomerPackage,
    Invoice,
    LoyaltyTransaction,
    PackageCredit,
    WalletTransaction,
)
from salonbook.services import checkout_service, invoice_service


def _bill(ctx, customer=None, items=(), payments=None, before_payment=None):
    state, _ = checkout_service.start_checkout(ctx, customer_id=customer.id if customer else None)
    for reference_id, item_type in items:
        state = checkout_service.add_item(state.id, ctx, {"item_type": item_type, "reference_id": reference_id})
    if before_payment is not None:
        state = before_payment(state)
    if state.totals.amount_due > 0:
        state = checkout_service.add_payments(
            state.id, ctx, payments or [{"payment_method": "cash", "amount": str(state.totals.amount_due)}]
        )
    _, invoice_id = checkout_service.complete_checkout(state.id, ctx)
    return invoice_id


def _cancel(ctx, invoice_id, reason="Billed twice", **kwargs):
    return invoice_service.cancel_invoice(
        invoice_id,
        tenant_id=ctx.tenant_id,
        branch_id=ctx.branch_id,
        user_id=ctx.user_id,
        reason=reason,
        **kwargs,
    )


class TestCancelInvoice:
    def test_cancellation_restores_wallet_and_points(self, ctx, customer, haircut):
        def redeem(state):
            checkout_service.redeem_loyalty(state.id, ctx, 200)
            return checkout_service.use_wallet(state.id, ctx, "80.00")

        invoice_id = _bill(
            ctx,
            customer=customer,
            items=[(haircut.id, "service")],
            before_payment=redeem,
            payments=[{"payment_method": "card", "amount": "1000.00", "card_last_four": "4242"}],
        )
        settled = db.session.get(Customer, customer.id)
        assert (settled.wallet_balance, settled.loyalty_points) == (Decimal("420.00"), 810)

        invoice, credit_note = _cancel(ctx, invoice_id)

        assert invoice.status == "cancelled"
        assert invoice.cancellation_reason == "Billed twice"
        assert invoice.cancelled_by_user_id == 1
        assert credit_note.credit_note_number.startswith("CN-")
        assert credit_note.credit_note_number.endswith("-0001")
        assert credit_note.total_amount == Decimal("1000.00")
        assert credit_note.refund_amount == Decimal("1000.00")
        assert credit_note.refund_method == "original_method"
        assert credit_note.wallet_restored == Decimal("80.00")
        assert credit_note.loyalty_points_restored == 200
        assert credit_note.loyalty_points_revoked == 10

        restored = db.session.get(Customer, customer.id)
        assert restored.wallet_balance == Decimal("500.00")
        assert restored.loyalty_points == 1000
        assert restored.total_visits == 0
        assert WalletTransaction.query.filter_by(customer_id=customer.id, transaction_type="CREDIT").count() == 1
        assert LoyaltyTransaction.query.filter_by(customer_id=customer.id, transaction_type="RESTORE").count() == 1
        assert LoyaltyTransaction.query.filter_by(customer_id=customer.id, transaction_type="REVOKE").count() == 1

    def test_cancelling_twice_is_rejected(self, ctx, haircut):
        invoice_id = _bill(ctx, items=[(haircut.id, "service")])
        _cancel(ctx, invoice_id)

        with pytest.raises(CheckoutStateError) as exc_info:
            _cancel(ctx, invoice_id)

        assert exc_info.value.code == "INVOICE_ALREADY_CANCELLED"
        assert CreditNote.query.count() == 1

    def test_coupon_and_package_credit_are_released(self, db_session, ctx, tenant, customer, haircut, shampoo):
        coupon = Coupon(
            tenant_id=tenant.id, code="FLAT50", discount_type="flat", discount_value=Decimal("50"), usage_limit=1
        )
        package = CustomerPackage(tenant_id=tenant.id, customer_id=customer.id, name="Haircut x5")
        db_session.add_all([coupon, package])
        db_session.flush()
        credit = PackageCredit(customer_package_id=package.id, catalog_item_id=haircut.id, total_credits=5)
        db_session.add(credit)
        db_session.commit()

        def discounts(state):
            checkout_service.apply_discount(state.id, ctx, {
                "discount_type": "package",
                "applied_to": "item",
                "applied_item_id": state.line_items[0].id,
                "discount_source": str(credit.id),
            })
            return checkout_service.apply_discount(
                state.id, ctx, {"discount_type": "coupon", "applied_to": "subtotal", "discount_source": "FLAT50"}
            )

        invoice_id = _bill(
            ctx,
            customer=customer,
            items=[(haircut.id, "service"), (shampoo.id, "product")],
            before_payment=discounts,
        )
        assert db.session.get(Invoice, invoice_id).grand_total == Decimal("236.00")
        assert db.session.get(Coupon, coupon.id).used_count == 1
        assert db.session.get(PackageCredit, credit.id).used_credits == 1

        _cancel(ctx, invoice_id)

        assert db.session.get(Coupon, coupon.id).used_count == 0
        assert db.session.get(PackageCredit, credit.id).used_credits == 0

    def test_refund_to_wallet(self, ctx, customer, haircut):
        invoice_id = _bill(ctx, customer=customer, items=[(haircut.id, "service")])

        _, credit_note = _cancel(ctx, invoice_id, refund_method="wallet")

        assert credit_note.refund_amount == Decimal("1180.00")
        assert credit_note.wallet_restored == Decimal("1180.00")
        assert db.session.get(Customer, customer.id).wallet_balance == Decimal("1680.00")

    def test_wallet_refund_needs_customer(self, ctx, haircut):
        invoice_id = _bill(ctx, items=[(haircut.id, "service")])

        with pytest.raises(CheckoutRuleError) as exc_info:
            _cancel(ctx, invoice_id, refund_method="wallet")

        assert exc_info.value.code == "CUSTOMER_REQUIRED"
        assert db.session.get(Invoice, invoice_id).status == "issued"
        assert CreditNote.query.count() == 0

    def test_spent_points_are_revoked_down_to_zero(self, db_session, ctx, customer, haircut):
        invoice_id = _bill(ctx, customer=customer, items=[(haircut.id, "service")])
        assert db.session.get(Invoice, invoice_id).loyalty_points_earned == 11
        db.session.get(Customer, customer.id).loyalty_points = 5
        db_session.commit()

        _, credit_note = _cancel(ctx, invoice_id)

        assert credit_note.loyalty_points_revoked == 5
        assert db.session.get(Customer, customer.id).loyalty_points == 0

    @pytest.mark.parametrize("kwargs", [{"reason": "  "}, {"refund_method": "cheque"}])
    def test_invalid_request(self, ctx, haircut, kwargs):
        invoice_id = _bill(ctx, items=[(haircut.id, "service")])

        with pytest.raises(CheckoutValidationError):
            _cancel(ctx, invoice_id, **{"reason": "Wrong customer", **kwargs})

        assert db.session.get(Invoice, invoice_id).status == "issued"

    def test_other_tenant_cannot_cancel(self, ctx, other_tenant, haircut):
        invoice_id = _bill(ctx, items=[(haircut.id, "service")])

        with pytest.raises(CheckoutNotFoundError):
            invoice_service.cancel_invoice(invoice_id, tenant_id=other_tenant.id, reason="Not ours")

        assert db.session.get(Invoice, invoice_id).status == "issued"


class TestCancellationRoutes:
    def test_cancel_and_read_credit_note(self, client, headers, ctx, haircut):
        invoice_id = _bill(ctx, items=[(haircut.id, "service")])

        response = client.post(
            f"/api/invoices/{invoice_id}/cancel", json={"reason": "Duplicate bill"}, headers=headers
        )
        assert response.status_code == 200
        body = response.get_json()
        assert body["invoice"]["status"] == "cancelled"
        credit_note = body["credit_note"]
        assert credit_note["total_amount"] == "1180.00"
        assert credit_note["refund_method"] == "original_method"
        assert credit_note["invoice_id"] == invoice_id

        response = client.get(f"/api/credit-notes/{credit_note['id']}", headers=headers)
        assert response.status_code == 200
        assert response.get_json()["credit_note"]["credit_note_number"] == credit_note["credit_note_number"]

        listing = client.get("/api/credit-notes", headers=headers).get_json()
        assert listing["total"] == 1

        response = client.get(f"/api/invoices/{invoice_id}", headers=headers)
        assert response.get_json()["invoice"]["cancellation_reason"] == "Duplicate bill"

    def test_second_cancel_is_409(self, client, headers, ctx, haircut):
        invoice_id = _bill(ctx, items=[(haircut.id, "service")])
        client.post(f"/api/invoices/{invoice_id}/cancel", json={"reason": "Duplicate bill"}, headers=headers)

        response = client.post(f"/api/invoices/{invoice_id}/cancel", json={"reason": "Again"}, headers=headers)

        assert response.status_code == 409
        assert response.get_json()["code"] == "INVOICE_ALREADY_CANCELLED"

    def test_missing_body_is_400(self, client, headers, ctx, haircut):
        invoice_id = _bill(ctx, items=[(haircut.id, "service")])

        response = client.post(f"/api/invoices/{invoice_id}/cancel", headers=headers)

        assert response.status_code == 400

    def test_read_only_role_cannot_cancel(self, client, headers, ctx, haircut):
        invoice_id = _bill(ctx, items=[(haircut.id, "service")])

        response = client.post(
            f"/api/invoices/{invoice_id}/cancel",
            json={"reason": "Duplicate bill"},
            headers={**headers, "X-User-Role": "accountant"},
        )

        assert response.status_code == 403
        assert response.get_json()["required_permission"] == "bills:write"

    def test_unknown_credit_note_is_404(self, client, headers):
        response = client.get("/api/credit-notes/999", headers=headers)

        assert response.status_code == 404
        assert response.get_json()["code"] == "CREDIT_NOTE_NOT_FOUND"

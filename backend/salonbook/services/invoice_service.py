# Overview: Service-layer operations for invoices; issue-time side effects, cancellation and reads.

"""
Invoice Service

issue_invoice() runs inside the completing checkout's transaction and never
commits: the caller commits the invoice, the side effects and the session
status together, or rolls all of them back.

SIDE EFFECTS ON ISSUE:
- coupon used_count incremented (usage limit re-checked under lock)
- package credits consumed
- customer wallet debited (wallet credit + wallet payments)
- loyalty points debited (redeemed points + loyalty payments) and earned
- appointment marked completed

A balance that dropped after the discount or credit was applied is a
business-rule error, not a silent partial debit.

cancel_invoice() undoes those side effects in its own transaction and
records the reversal as a CN-YYYYMM-NNNN credit note.
"""

from __future__ import annotations

import math
from decimal import Decimal

from flask import current_app

from ..checkout.errors import (
    CheckoutError,
    CheckoutNotFoundError,
    CheckoutRuleError,
    CheckoutStateError,
    CheckoutValidationError,
)
from ..checkout.money import ZERO, fmt
from ..checkout.reducer import loyalty_points_used
from ..checkout.serialization import state_from_dict, state_to_dict
from ..checkout.types import DiscountType, PaymentMethod, SessionState
from ..extensions import db
from ..models import (
    Appointment,
    CreditNote,
    Customer,
    Invoice,
    InvoiceLine,
    InvoicePayment,
    LoyaltyTransaction,
    PackageCredit,
    WalletTransaction,
)
from ..time_utils import utcnow
from .benefit_service import coupon_query, loyalty_settings
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_credit_note_number, next_invoice_number


def issue_invoice(
    state: SessionState,
    *,
    user_id: int | None,
    issued_at,
    send_receipt: bool = False,
    receipt_method: str | None = None,
) -> Invoice:
    totals = state.totals
    invoice = Invoice(
        tenant_id=state.tenant_id,
        branch_id=state.branch_id,
        session_id=state.id,
        invoice_number=next_invoice_number(branch_id=state.branch_id, issued_at=issued_at),
        customer_id=state.customer.id if state.customer else None,
        appointment_id=state.appointment_id,
        is_igst=state.is_igst,
        subtotal=totals.subtotal,
        discount_total=totals.discount_total,
        taxable_amount=totals.taxable_amount,
        cgst_amount=totals.cgst_amount,
        sgst_amount=totals.sgst_amount,
        igst_amount=totals.igst_amount,
        tax_total=totals.tax_total,
        loyalty_discount=totals.loyalty_discount,
        wallet_used=totals.wallet_used,
        tip_amount=totals.tip_amount,
        grand_total=totals.grand_total,
        amount_paid=totals.amount_paid,
        snapshot=state_to_dict(state),
        send_receipt=send_receipt,
        receipt_method=receipt_method,
        receipt_requested_at=issued_at if send_receipt else None,
        issued_by_user_id=user_id,
        issued_at=issued_at,
    )
    db.session.add(invoice)
    db.session.flush()

    for line_number, item in enumerate(state.line_items, start=1):
        db.session.add(InvoiceLine(
            invoice_id=invoice.id,
            line_number=line_number,
            item_type=item.item_type.value,
            reference_id=item.reference_id,
            name=item.name,
            hsn_sac_code=item.hsn_sac_code,
            quantity=item.quantity,
            unit_price=item.unit_price,
            gross_amount=item.gross_amount,
            discount_amount=item.discount_amount,
            taxable_amount=item.taxable_amount,
            tax_rate=item.tax_rate,
            cgst_amount=item.cgst_amount,
            sgst_amount=item.sgst_amount,
            igst_amount=item.igst_amount,
            net_amount=item.net_amount,
            stylist_id=item.stylist_id,
            commission_amount=item.commission_amount,
        ))

    for payment in state.payments:
        db.session.add(InvoicePayment(
            invoice_id=invoice.id,
            payment_method=payment.payment_method.value,
            amount=payment.amount,
            card_last_four=payment.card_last_four,
            card_type=payment.card_type.value if payment.card_type else None,
            upi_id=payment.upi_id,
            transaction_id=payment.transaction_id,
        ))

    _consume_benefits(state)
    _settle_customer(state, invoice, issued_at)
    _complete_appointment(state, issued_at)

    db.session.flush()
    return invoice


def _consume_benefits(state: SessionState) -> None:
    for discount in state.applied_discounts:
        if discount.discount_type == DiscountType.COUPON:
            coupon = lock_for_update(coupon_query(state.tenant_id, discount.discount_source)).first()
            if coupon is None:
                raise CheckoutNotFoundError(
                    "Coupon no longer exists",
                    code="DISCOUNT_SOURCE_NOT_FOUND",
                    details={"discount_source": discount.discount_source},
                )
            if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
                raise CheckoutRuleError(
                    f"{coupon.code} has reached its usage limit",
                    code="SOURCE_EXHAUSTED",
                    details={"discount_id": discount.id},
                )
            coupon.used_count += 1

        elif discount.discount_type == DiscountType.PACKAGE and discount.amount > 0:
            credit = lock_for_update(
                db.session.query(PackageCredit).filter_by(id=int(discount.discount_source))
            ).first()
            if credit is None:
                raise CheckoutNotFoundError(
                    "Package credit no longer exists",
                    code="DISCOUNT_SOURCE_NOT_FOUND",
                    details={"discount_source": discount.discount_source},
                )
            if credit.remaining_credits < discount.units:
                raise CheckoutRuleError(
                    "Package credits were used up since the discount was applied",
                    code="SOURCE_EXHAUSTED",
                    details={
                        "discount_id": discount.id,
                        "remaining_credits": credit.remaining_credits,
                        "required": discount.units,
                    },
                )
            credit.used_credits += discount.units


def _method_total(state: SessionState, method: PaymentMethod) -> Decimal:
    return sum((p.amount for p in state.payments if p.payment_method == method), ZERO)


def _settle_customer(state: SessionState, invoice: Invoice, issued_at) -> None:
    if state.customer is None:
        return

    customer = lock_for_update(db.session.query(Customer).filter_by(id=state.customer.id)).first()
    if customer is None:
        raise CheckoutNotFoundError("Customer not found", code="CUSTOMER_NOT_FOUND")

    wallet_debit = state.totals.wallet_used + _method_total(state, PaymentMethod.WALLET)
    if wallet_debit > 0:
        balance = Decimal(customer.wallet_balance)
        if wallet_debit > balance:
            raise CheckoutRuleError(
                "Insufficient wallet balance",
                code="INSUFFICIENT_WALLET_BALANCE",
                details={"available": fmt(balance), "required": fmt(wallet_debit)},
            )
        customer.wallet_balance = balance - wallet_debit
        db.session.add(WalletTransaction(
            tenant_id=state.tenant_id,
            customer_id=customer.id,
            transaction_type="DEBIT",
            amount=wallet_debit,
            balance_after=customer.wallet_balance,
            invoice_id=invoice.id,
            occurred_at=issued_at,
        ))

    enabled, points_per_unit, value_per_point = loyalty_settings(state.tenant_id)

    points_debit = loyalty_points_used(state)
    loyalty_paid = _method_total(state, PaymentMethod.LOYALTY)
    if loyalty_paid > 0 and value_per_point > 0:
        points_debit += math.ceil(loyalty_paid / value_per_point)

    if points_debit:
        if points_debit > customer.loyalty_points:
            raise CheckoutRuleError(
                "Insufficient loyalty points",
                code="INSUFFICIENT_LOYALTY_POINTS",
                details={"available": customer.loyalty_points, "required": points_debit},
            )
        customer.loyalty_points -= points_debit
        db.session.add(LoyaltyTransaction(
            tenant_id=state.tenant_id,
            customer_id=customer.id,
            transaction_type="REDEEM",
            points=-points_debit,
            balance_after=customer.loyalty_points,
            invoice_id=invoice.id,
            occurred_at=issued_at,
        ))

    points_earned = 0
    if enabled:
        points_earned = int(math.floor(state.totals.grand_total * points_per_unit))
    if points_earned > 0:
        customer.loyalty_points += points_earned
        db.session.add(LoyaltyTransaction(
            tenant_id=state.tenant_id,
            customer_id=customer.id,
            transaction_type="EARN",
            points=points_earned,
            balance_after=customer.loyalty_points,
            invoice_id=invoice.id,
            occurred_at=issued_at,
        ))

    customer.total_visits += 1
    customer.last_visit_at = issued_at

    invoice.loyalty_points_redeemed = points_debit
    invoice.loyalty_points_earned = points_earned


def _complete_appointment(state: SessionState, issued_at) -> None:
    if state.appointment_id is None:
        return
    appointment = lock_for_update(db.session.query(Appointment).filter_by(id=state.appointment_id)).first()
    if appointment is None:
        return
    appointment.status = "completed"
    appointment.completed_at = issued_at


# =============================================================================
# READS
# =============================================================================

def get_invoice(invoice_id: int, *, tenant_id: int, branch_id: int | None = None) -> Invoice:
    invoice = Invoice.query.filter_by(id=invoice_id, tenant_id=tenant_id).first()
    if invoice is None or (branch_id is not None and invoice.branch_id != branch_id):
        raise CheckoutNotFoundError("Invoice not found", code="INVOICE_NOT_FOUND", details={"invoice_id": invoice_id})
    return invoice


def list_invoices(
    *,
    tenant_id: int,
    branch_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Invoice], int]:
    query = Invoice.query.filter_by(tenant_id=tenant_id)
    if branch_id is not None:
        query = query.filter_by(branch_id=branch_id)
    total = query.count()
    invoices = query.order_by(Invoice.issued_at.desc(), Invoice.id.desc()).offset(offset).limit(limit).all()
    return invoices, total


# =============================================================================
# CANCELLATION
# =============================================================================

REFUND_METHODS = ("original_method", "wallet")
_EXTERNAL_METHODS = {
    PaymentMethod.CASH.value,
    PaymentMethod.CARD.value,
    PaymentMethod.UPI.value,
    PaymentMethod.BANK_TRANSFER.value,
    PaymentMethod.CHEQUE.value,
}


def cancel_invoice(
    invoice_id: int,
    *,
    tenant_id: int,
    branch_id: int | None = None,
    user_id: int | None = None,
    reason: str | None = None,
    refund_method: str | None = None,
) -> tuple[Invoice, CreditNote]:
    """
    Cancel an issued invoice and record the reversal as a credit note.

    REVERSES:
    - coupon used_count
    - package credits consumed by the bill
    - wallet debited by the bill (credited back)
    - loyalty points redeemed (restored) and earned (revoked, never below zero)

    Money paid by cash/card/UPI/bank transfer is refunded through the original
    tenders, or credited to the customer's wallet when refund_method="wallet".
    The appointment stays completed.

    Raises:
        CheckoutValidationError: missing reason, unknown refund_method
        CheckoutNotFoundError: invoice not found for this tenant/branch
        CheckoutStateError: invoice already cancelled
        CheckoutRuleError: wallet refund on an invoice without a customer
    """
    reason = (reason or "").strip()
    if not reason:
        raise CheckoutValidationError("A cancellation reason is required", details={"field": "reason"})
    if len(reason) > 255:
        raise CheckoutValidationError("reason must be at most 255 characters", details={"field": "reason"})
    refund_method = refund_method or "original_method"
    if refund_method not in REFUND_METHODS:
        raise CheckoutValidationError(
            f"refund_method must be one of {', '.join(REFUND_METHODS)}",
            details={"field": "refund_method", "value": refund_method},
        )

    def _op():
        now = utcnow()
        invoice = lock_for_update(
            db.session.query(Invoice).filter_by(id=invoice_id, tenant_id=tenant_id)
        ).first()
        if invoice is None or (branch_id is not None and invoice.branch_id != branch_id):
            raise CheckoutNotFoundError("Invoice not found", code="INVOICE_NOT_FOUND", details={"invoice_id": invoice_id})
        if invoice.status == "cancelled":
            raise CheckoutStateError(
                f"Invoice {invoice.invoice_number} is already cancelled",
                code="INVOICE_ALREADY_CANCELLED",
                details={"invoice_id": invoice.id},
            )
        if refund_method == "wallet" and invoice.customer_id is None:
            raise CheckoutRuleError(
                "A wallet refund needs a customer on the invoice",
                code="CUSTOMER_REQUIRED",
                details={"invoice_id": invoice.id},
            )

        state = state_from_dict(invoice.snapshot)
        refund_amount = sum(
            (Decimal(p.amount) for p in invoice.payments if p.payment_method in _EXTERNAL_METHODS),
            ZERO,
        )

        credit_note = CreditNote(
            tenant_id=invoice.tenant_id,
            branch_id=invoice.branch_id,
            invoice_id=invoice.id,
            credit_note_number=next_credit_note_number(branch_id=invoice.branch_id, issued_at=now),
            customer_id=invoice.customer_id,
            taxable_amount=invoice.taxable_amount,
            tax_total=invoice.tax_total,
            total_amount=invoice.grand_total,
            refund_amount=refund_amount,
            refund_method=refund_method,
            reason=reason,
            issued_by_user_id=user_id,
            issued_at=now,
        )
        db.session.add(credit_note)

        _restore_benefits(state)
        _restore_customer(invoice, credit_note, refund_amount if refund_method == "wallet" else ZERO, now)

        invoice.status = "cancelled"
        invoice.cancelled_at = now
        invoice.cancelled_by_user_id = user_id
        invoice.cancellation_reason = reason
        db.session.commit()

        current_app.logger.info(
            "Invoice %s cancelled with credit note %s (total=%s refund=%s via %s)",
            invoice.invoice_number, credit_note.credit_note_number,
            invoice.grand_total, refund_amount, refund_method,
        )
        return invoice, credit_note

    try:
        return run_with_retry(_op)
    except CheckoutError:
        db.session.rollback()
        raise


def _restore_benefits(state: SessionState) -> None:
    for discount in state.applied_discounts:
        if discount.discount_type == DiscountType.COUPON:
            coupon = lock_for_update(coupon_query(state.tenant_id, discount.discount_source)).first()
            if coupon is not None and coupon.used_count > 0:
                coupon.used_count -= 1

        elif discount.discount_type == DiscountType.PACKAGE and discount.amount > 0:
            credit = lock_for_update(
                db.session.query(PackageCredit).filter_by(id=int(discount.discount_source))
            ).first()
            if credit is not None:
                credit.used_credits = max(credit.used_credits - discount.units, 0)


def _restore_customer(invoice: Invoice, credit_note: CreditNote, wallet_refund: Decimal, now) -> None:
    if invoice.customer_id is None:
        return

    customer = lock_for_update(db.session.query(Customer).filter_by(id=invoice.customer_id)).first()
    if customer is None:
        raise CheckoutNotFoundError("Customer not found", code="CUSTOMER_NOT_FOUND")

    wallet_paid = sum(
        (Decimal(p.amount) for p in invoice.payments if p.payment_method == PaymentMethod.WALLET.value),
        ZERO,
    )
    wallet_credit = Decimal(invoice.wallet_used) + wallet_paid + wallet_refund
    if wallet_credit > 0:
        customer.wallet_balance = Decimal(customer.wallet_balance) + wallet_credit
        db.session.add(WalletTransaction(
            tenant_id=invoice.tenant_id,
            customer_id=customer.id,
            transaction_type="CREDIT",
            amount=wallet_credit,
            balance_after=customer.wallet_balance,
            invoice_id=invoice.id,
            occurred_at=now,
        ))
    credit_note.wallet_restored = wallet_credit

    restored = invoice.loyalty_points_redeemed or 0
    if restored:
        customer.loyalty_points += restored
        db.session.add(LoyaltyTransaction(
            tenant_id=invoice.tenant_id,
            customer_id=customer.id,
            transaction_type="RESTORE",
            points=restored,
            balance_after=customer.loyalty_points,
            invoice_id=invoice.id,
            occurred_at=now,
        ))

    # Points earned on this bill may already be spent
    revoked = min(invoice.loyalty_points_earned or 0, customer.loyalty_points)
    if revoked:
        customer.loyalty_points -= revoked
        db.session.add(LoyaltyTransaction(
            tenant_id=invoice.tenant_id,
            customer_id=customer.id,
            transaction_type="REVOKE",
            points=-revoked,
            balance_after=customer.loyalty_points,
            invoice_id=invoice.id,
            occurred_at=now,
        ))

    credit_note.loyalty_points_restored = restored
    credit_note.loyalty_points_revoked = revoked
    customer.total_visits = max(customer.total_visits - 1, 0)


# =============================================================================
# CREDIT NOTE READS
# =============================================================================

def get_credit_note(credit_note_id: int, *, tenant_id: int, branch_id: int | None = None) -> CreditNote:
    credit_note = CreditNote.query.filter_by(id=credit_note_id, tenant_id=tenant_id).first()
    if credit_note is None or (branch_id is not None and credit_note.branch_id != branch_id):
        raise CheckoutNotFoundError(
            "Credit note not found",
            code="CREDIT_NOTE_NOT_FOUND",
            details={"credit_note_id": credit_note_id},
        )
    return credit_note


def list_credit_notes(
    *,
    tenant_id: int,
    branch_id: int | None = None,
    customer_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[CreditNote], int]:
    query = CreditNote.query.filter_by(tenant_id=tenant_id)
    if branch_id is not None:
        query = query.filter_by(branch_id=branch_id)
    if customer_id is not None:
        query = query.filter_by(customer_id=customer_id)
    total = query.count()
    credit_notes = query.order_by(CreditNote.issued_at.desc(), CreditNote.id.desc()).offset(offset).limit(limit).all()
    return credit_notes, total

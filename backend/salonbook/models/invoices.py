from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


def _money(value):
    return str(value) if value is not None else None


class Invoice(db.Model):
    """
    Immutable invoice issued from a completed checkout session.

    IMMUTABLE: Never updated after issue, except for the receipt request
    fields and cancellation. A cancelled invoice keeps its number and amounts;
    the reversal is recorded as a CreditNote. snapshot holds the final session state exactly as billed;
    InvoiceLine / InvoicePayment rows exist for reporting queries.

    NUMBERING: INV-YYYYMM-NNNN, sequential per branch per month.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "invoice_number", name="uq_invoices_branch_number"),
        db.UniqueConstraint("session_id", name="uq_invoices_session"),
        db.Index("ix_invoices_branch_issued", "branch_id", "issued_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    session_id = db.Column(db.String(36), nullable=False)
    invoice_number = db.Column(db.String(32), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    appointment_id = db.Column(db.Integer, db.ForeignKey("appointments.id"), nullable=True, index=True)
    is_igst = db.Column(db.Boolean, nullable=False, default=False)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    discount_total = db.Column(db.Numeric(12, 2), nullable=False)
    taxable_amount = db.Column(db.Numeric(12, 2), nullable=False)
    cgst_amount = db.Column(db.Numeric(12, 2), nullable=False)
    sgst_amount = db.Column(db.Numeric(12, 2), nullable=False)
    igst_amount = db.Column(db.Numeric(12, 2), nullable=False)
    tax_total = db.Column(db.Numeric(12, 2), nullable=False)
    loyalty_discount = db.Column(db.Numeric(12, 2), nullable=False)
    wallet_used = db.Column(db.Numeric(12, 2), nullable=False)
    tip_amount = db.Column(db.Numeric(12, 2), nullable=False)
    grand_total = db.Column(db.Numeric(12, 2), nullable=False)
    amount_paid = db.Column(db.Numeric(12, 2), nullable=False)

    loyalty_points_redeemed = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_earned = db.Column(db.Integer, nullable=False, default=0)

    snapshot = db.Column(db.JSON, nullable=False)

    send_receipt = db.Column(db.Boolean, nullable=False, default=False)
    receipt_method = db.Column(db.String(16), nullable=True)  # whatsapp, email, print
    receipt_requested_at = db.Column(db.DateTime(timezone=True), nullable=True)

    issued_by_user_id = db.Column(db.Integer, nullable=True)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="issued")  # issued, cancelled
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number}>"

    def to_dict(self, include_snapshot: bool = True) -> dict:
        result = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "session_id": self.session_id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "appointment_id": self.appointment_id,
            "is_igst": self.is_igst,
            "subtotal": _money(self.subtotal),
            "discount_total": _money(self.discount_total),
            "taxable_amount": _money(self.taxable_amount),
            "cgst_amount": _money(self.cgst_amount),
            "sgst_amount": _money(self.sgst_amount),
            "igst_amount": _money(self.igst_amount),
            "tax_total": _money(self.tax_total),
            "loyalty_discount": _money(self.loyalty_discount),
            "wallet_used": _money(self.wallet_used),
            "tip_amount": _money(self.tip_amount),
            "grand_total": _money(self.grand_total),
            "amount_paid": _money(self.amount_paid),
            "loyalty_points_redeemed": self.loyalty_points_redeemed,
            "loyalty_points_earned": self.loyalty_points_earned,
            "send_receipt": self.send_receipt,
            "receipt_method": self.receipt_method,
            "receipt_requested_at": to_utc_z(self.receipt_requested_at),
            "issued_by_user_id": self.issued_by_user_id,
            "issued_at": to_utc_z(self.issued_at),
            "status": self.status,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancellation_reason": self.cancellation_reason,
        }
        if include_snapshot:
            result["snapshot"] = self.snapshot
        return result


class InvoiceLine(db.Model):
    __tablename__ = "invoice_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    item_type = db.Column(db.String(16), nullable=False)
    reference_id = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    hsn_sac_code = db.Column(db.String(16), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    gross_amount = db.Column(db.Numeric(12, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False)
    taxable_amount = db.Column(db.Numeric(12, 2), nullable=False)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False)
    cgst_amount = db.Column(db.Numeric(12, 2), nullable=False)
    sgst_amount = db.Column(db.Numeric(12, 2), nullable=False)
    igst_amount = db.Column(db.Numeric(12, 2), nullable=False)
    net_amount = db.Column(db.Numeric(12, 2), nullable=False)

    stylist_id = db.Column(db.Integer, nullable=True, index=True)
    commission_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    invoice = db.relationship("Invoice", backref=db.backref("lines", lazy=True, order_by="InvoiceLine.line_number"))

    def to_dict(self) -> dict:
        return {
            "line_number": self.line_number,
            "item_type": self.item_type,
            "reference_id": self.reference_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": _money(self.unit_price),
            "taxable_amount": _money(self.taxable_amount),
            "net_amount": _money(self.net_amount),
            "stylist_id": self.stylist_id,
            "commission_amount": _money(self.commission_amount),
        }


class InvoicePayment(db.Model):
    __tablename__ = "invoice_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    payment_method = db.Column(db.String(16), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    card_last_four = db.Column(db.String(4), nullable=True)
    card_type = db.Column(db.String(16), nullable=True)
    upi_id = db.Column(db.String(128), nullable=True)
    transaction_id = db.Column(db.String(128), nullable=True)

    invoice = db.relationship("Invoice", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "payment_method": self.payment_method,
            "amount": _money(self.amount),
            "card_last_four": self.card_last_four,
            "card_type": self.card_type,
            "upi_id": self.upi_id,
            "transaction_id": self.transaction_id,
        }


class CreditNote(db.Model):
    """
    Full reversal of a cancelled invoice.

    NUMBERING: CN-YYYYMM-NNNN, sequential per branch per month, separate from
    invoice numbers. One credit note per invoice.

    refund_amount is what was paid outside the customer's wallet and points
    (cash, card, UPI, bank transfer). refund_method says whether it went back
    through the original tenders or into the customer's wallet.
    """
    __tablename__ = "credit_notes"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "credit_note_number", name="uq_credit_notes_branch_number"),
        db.UniqueConstraint("invoice_id", name="uq_credit_notes_invoice"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False)
    credit_note_number = db.Column(db.String(32), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    taxable_amount = db.Column(db.Numeric(12, 2), nullable=False)
    tax_total = db.Column(db.Numeric(12, 2), nullable=False)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)
    refund_amount = db.Column(db.Numeric(12, 2), nullable=False)
    refund_method = db.Column(db.String(16), nullable=False)  # original_method, wallet
    wallet_restored = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    loyalty_points_restored = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_revoked = db.Column(db.Integer, nullable=False, default=0)

    reason = db.Column(db.String(255), nullable=False)
    issued_by_user_id = db.Column(db.Integer, nullable=True)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=False)

    invoice = db.relationship("Invoice", backref=db.backref("credit_note", uselist=False))

    def __repr__(self) -> str:
        return f"<CreditNote id={self.id} number={self.credit_note_number}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "invoice_id": self.invoice_id,
            "invoice_number": self.invoice.invoice_number if self.invoice else None,
            "credit_note_number": self.credit_note_number,
            "customer_id": self.customer_id,
            "taxable_amount": _money(self.taxable_amount),
            "tax_total": _money(self.tax_total),
            "total_amount": _money(self.total_amount),
            "refund_amount": _money(self.refund_amount),
            "refund_method": self.refund_method,
            "wallet_restored": _money(self.wallet_restored),
            "loyalty_points_restored": self.loyalty_points_restored,
            "loyalty_points_revoked": self.loyalty_points_revoked,
            "reason": self.reason,
            "issued_by_user_id": self.issued_by_user_id,
            "issued_at": to_utc_z(self.issued_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-branch document sequences.

    document_type carries the period for monthly numbering
    (e.g. "invoice:202610"), so each month restarts at 1.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "document_type", name="uq_doc_sequences_branch_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }

from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class CheckoutSession(db.Model):
    """
    Persisted checkout session.

    state_json holds the full engine state (items, discounts, payments,
    totals) and is the source of truth; status and the money columns are
    denormalized copies for listing and the expiry sweep.

    CONCURRENCY:
    - Mutations lock the row (SELECT ... FOR UPDATE) for the transaction
    - version_id catches writers that slipped past the lock (SQLite)
    """
    __tablename__ = "checkout_sessions"
    __table_args__ = (
        db.Index("ix_checkout_sessions_status_expires", "status", "expires_at"),
        db.Index("ix_checkout_sessions_branch_status", "branch_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    appointment_id = db.Column(db.Integer, db.ForeignKey("appointments.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="open")  # open, settled, completed, expired
    state_json = db.Column(db.JSON, nullable=False)

    grand_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    amount_due = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<CheckoutSession id={self.id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "appointment_id": self.appointment_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "grand_total": str(self.grand_total),
            "amount_due": str(self.amount_due),
            "invoice_id": self.invoice_id,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "completed_at": to_utc_z(self.completed_at),
            "version_id": self.version_id,
        }


class AppointmentCheckoutLock(db.Model):
    """
    At most one active checkout session per appointment.

    The appointment id is the primary key, so a concurrent second insert
    fails with IntegrityError instead of creating a duplicate session. The
    row is deleted when the session completes or expires.
    """
    __tablename__ = "checkout_appointment_locks"

    appointment_id = db.Column(db.Integer, db.ForeignKey("appointments.id"), primary_key=True, autoincrement=False)
    session_id = db.Column(db.String(36), db.ForeignKey("checkout_sessions.id"), nullable=False, unique=True)
    acquired_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "appointment_id": self.appointment_id,
            "session_id": self.session_id,
            "acquired_at": to_utc_z(self.acquired_at),
        }

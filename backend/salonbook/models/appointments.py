from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Appointment(db.Model):
    """
    Booked visit, owned by the scheduling module.

    Checkout only reads it (to pre-populate services) and marks it
    completed when the invoice is issued.

    STATUS: booked, confirmed, in_progress, completed, cancelled, no_show
    """
    __tablename__ = "appointments"
    __table_args__ = (
        db.Index("ix_appointments_branch_scheduled", "branch_id", "scheduled_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="booked")
    scheduled_at = db.Column(db.DateTime(timezone=True), nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "scheduled_at": to_utc_z(self.scheduled_at),
            "completed_at": to_utc_z(self.completed_at),
            "services": [s.to_dict() for s in self.services],
        }


class AppointmentService(db.Model):
    __tablename__ = "appointment_services"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    appointment_id = db.Column(db.Integer, db.ForeignKey("appointments.id"), nullable=False, index=True)
    catalog_item_id = db.Column(db.Integer, db.ForeignKey("catalog_items.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("catalog_variants.id"), nullable=True)
    stylist_id = db.Column(db.Integer, nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    appointment = db.relationship(
        "Appointment",
        backref=db.backref("services", lazy=True, order_by="AppointmentService.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "catalog_item_id": self.catalog_item_id,
            "variant_id": self.variant_id,
            "stylist_id": self.stylist_id,
            "quantity": self.quantity,
        }

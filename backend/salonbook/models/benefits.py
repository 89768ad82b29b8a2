from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class CustomerMembership(db.Model):
    """
    Membership held by a customer, granting a standing discount.

    STATUS: active, cancelled, expired

    applicable_item_ids restricts the benefit to specific catalog items;
    an empty list means the whole bill.
    """
    __tablename__ = "customer_memberships"
    __table_args__ = (
        db.Index("ix_memberships_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)

    name = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="active")
    starts_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    discount_type = db.Column(db.String(16), nullable=False, default="percentage")  # percentage, flat
    discount_value = db.Column(db.Numeric(12, 2), nullable=False)
    max_discount = db.Column(db.Numeric(12, 2), nullable=True)
    applicable_item_ids = db.Column(db.JSON, nullable=False, default=list)

    customer = db.relationship("Customer", backref=db.backref("memberships", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "name": self.name,
            "status": self.status,
            "starts_at": to_utc_z(self.starts_at),
            "expires_at": to_utc_z(self.expires_at),
            "discount_type": self.discount_type,
            "discount_value": str(self.discount_value),
            "max_discount": str(self.max_discount) if self.max_discount is not None else None,
            "applicable_item_ids": list(self.applicable_item_ids or []),
        }


class CustomerPackage(db.Model):
    """Prepaid service package bought by a customer; credits live in PackageCredit."""
    __tablename__ = "customer_packages"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="active")
    purchased_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer = db.relationship("Customer", backref=db.backref("packages", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "name": self.name,
            "status": self.status,
            "purchased_at": to_utc_z(self.purchased_at),
            "expires_at": to_utc_z(self.expires_at),
            "credits": [c.to_dict() for c in self.credits],
        }


class PackageCredit(db.Model):
    """Remaining uses of one service within a customer package."""
    __tablename__ = "package_credits"
    __table_args__ = (
        db.UniqueConstraint("customer_package_id", "catalog_item_id", name="uq_package_credits_package_item"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_package_id = db.Column(db.Integer, db.ForeignKey("customer_packages.id"), nullable=False, index=True)
    catalog_item_id = db.Column(db.Integer, db.ForeignKey("catalog_items.id"), nullable=False)

    total_credits = db.Column(db.Integer, nullable=False)
    used_credits = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    package = db.relationship("CustomerPackage", backref=db.backref("credits", lazy=True))
    catalog_item = db.relationship("CatalogItem")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def remaining_credits(self) -> int:
        return self.total_credits - self.used_credits

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_package_id": self.customer_package_id,
            "catalog_item_id": self.catalog_item_id,
            "total_credits": self.total_credits,
            "used_credits": self.used_credits,
            "remaining_credits": self.remaining_credits,
        }


class Coupon(db.Model):
    """
    Tenant-wide discount code.

    usage_limit NULL means unlimited; used_count is incremented when an
    invoice using the coupon is issued.
    """
    __tablename__ = "coupons"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code", name="uq_coupons_tenant_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(255), nullable=True)

    discount_type = db.Column(db.String(16), nullable=False, default="percentage")
    discount_value = db.Column(db.Numeric(12, 2), nullable=False)
    max_discount = db.Column(db.Numeric(12, 2), nullable=True)
    min_subtotal = db.Column(db.Numeric(12, 2), nullable=True)
    applicable_item_ids = db.Column(db.JSON, nullable=False, default=list)

    usage_limit = db.Column(db.Integer, nullable=True)
    used_count = db.Column(db.Integer, nullable=False, default=0)
    starts_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "discount_type": self.discount_type,
            "discount_value": str(self.discount_value),
            "max_discount": str(self.max_discount) if self.max_discount is not None else None,
            "min_subtotal": str(self.min_subtotal) if self.min_subtotal is not None else None,
            "usage_limit": self.usage_limit,
            "used_count": self.used_count,
            "starts_at": to_utc_z(self.starts_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_active": self.is_active,
        }

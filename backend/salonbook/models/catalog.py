from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class CatalogItem(db.Model):
    """
    Sellable service, product, combo or package.

    price is the tenant-wide list price; a BranchPrice row overrides it for
    one branch and a CatalogVariant (e.g. "Long hair") carries its own price.

    tax_rate is the combined GST percentage (e.g. 18 for 18%).
    """
    __tablename__ = "catalog_items"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "sku", name="uq_catalog_items_tenant_sku"),
        db.Index("ix_catalog_items_tenant_type", "tenant_id", "item_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False)

    item_type = db.Column(db.String(16), nullable=False)  # service, product, combo, package
    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    hsn_sac_code = db.Column(db.String(16), nullable=True)

    price = db.Column(db.Numeric(12, 2), nullable=False)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    # Stylist commission: "percentage" of gross or "flat" per unit
    commission_type = db.Column(db.String(16), nullable=True)
    commission_value = db.Column(db.Numeric(12, 2), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("catalog_items", lazy=True))

    def __repr__(self) -> str:
        return f"<CatalogItem id={self.id} type={self.item_type} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "item_type": self.item_type,
            "name": self.name,
            "sku": self.sku,
            "hsn_sac_code": self.hsn_sac_code,
            "price": str(self.price),
            "tax_rate": str(self.tax_rate),
            "commission_type": self.commission_type,
            "commission_value": str(self.commission_value) if self.commission_value is not None else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class CatalogVariant(db.Model):
    __tablename__ = "catalog_variants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    catalog_item_id = db.Column(db.Integer, db.ForeignKey("catalog_items.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    catalog_item = db.relationship("CatalogItem", backref=db.backref("variants", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "catalog_item_id": self.catalog_item_id,
            "name": self.name,
            "price": str(self.price),
            "is_active": self.is_active,
        }


class BranchPrice(db.Model):
    """Branch-level price override for a catalog item."""
    __tablename__ = "branch_prices"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "catalog_item_id", name="uq_branch_prices_branch_item"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    catalog_item_id = db.Column(db.Integer, db.ForeignKey("catalog_items.id"), nullable=False, index=True)
    price = db.Column(db.Numeric(12, 2), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "catalog_item_id": self.catalog_item_id,
            "price": str(self.price),
        }

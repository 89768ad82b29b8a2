from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data with wallet and loyalty balances.

    MULTI-TENANT: Customers are scoped to tenants via tenant_id.

    Balances are denormalized; every change is mirrored by a row in
    wallet_transactions / loyalty_transactions.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "phone", name="uq_customers_tenant_phone"),
        db.Index("ix_customers_tenant_id", "tenant_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    state_code = db.Column(db.String(8), nullable=True)

    wallet_balance = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    loyalty_points = db.Column(db.Integer, nullable=False, default=0)

    total_visits = db.Column(db.Integer, nullable=False, default=0)
    last_visit_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    tenant = db.relationship("Tenant", backref=db.backref("customers", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "state_code": self.state_code,
            "wallet_balance": str(self.wallet_balance),
            "loyalty_points": self.loyalty_points,
            "total_visits": self.total_visits,
            "last_visit_at": to_utc_z(self.last_visit_at) if self.last_visit_at else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class LoyaltyConfig(db.Model):
    """
    Per-tenant loyalty programme settings.

    points earned on a bill = floor(grand_total * points_per_unit)
    value of one redeemed point = redemption_value_per_point
    """
    __tablename__ = "loyalty_configs"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", name="uq_loyalty_configs_tenant"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False)
    is_enabled = db.Column(db.Boolean, nullable=False, default=True)
    points_per_unit = db.Column(db.Numeric(10, 4), nullable=False, default=Decimal("0.01"))
    redemption_value_per_point = db.Column(db.Numeric(10, 4), nullable=False, default=Decimal("0.5"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "is_enabled": self.is_enabled,
            "points_per_unit": str(self.points_per_unit),
            "redemption_value_per_point": str(self.redemption_value_per_point),
        }


class LoyaltyTransaction(db.Model):
    """
    Append-only ledger of loyalty point events.

    TRANSACTION TYPES:
    - EARN: points earned on a completed invoice
    - REDEEM: points spent at checkout (credit or loyalty payment)

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_txns_customer_occurred", "customer_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)  # EARN, REDEEM
    points = db.Column(db.Integer, nullable=False)  # Positive for earn, negative for redeem
    balance_after = db.Column(db.Integer, nullable=False)

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("loyalty_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "transaction_type": self.transaction_type,
            "points": self.points,
            "balance_after": self.balance_after,
            "invoice_id": self.invoice_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class WalletTransaction(db.Model):
    """Append-only ledger of wallet debits/credits."""
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        db.Index("ix_wallet_txns_customer_occurred", "customer_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)

    transaction_type = db.Column(db.String(16), nullable=False)  # DEBIT, CREDIT
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    balance_after = db.Column(db.Numeric(12, 2), nullable=False)

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("wallet_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "transaction_type": self.transaction_type,
            "amount": str(self.amount),
            "balance_after": str(self.balance_after),
            "invoice_id": self.invoice_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }

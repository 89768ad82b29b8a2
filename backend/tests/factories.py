"""Builders for pure checkout-engine tests (no database)."""

from datetime import datetime, timedelta
from decimal import Decimal

from salonbook.checkout.line_items import build_line_item
from salonbook.checkout.reducer import recompute
from salonbook.checkout.types import (
    CatalogEntry,
    CustomerSnapshot,
    DiscountSource,
    DiscountType,
    CalculationType,
    ItemType,
    SessionState,
)

NOW = datetime(2026, 10, 19, 10, 0, 0)


def make_entry(reference_id=1, price="1000.00", tax_rate="18", item_type=ItemType.SERVICE, name=None, **extra):
    return CatalogEntry(
        item_type=item_type,
        reference_id=reference_id,
        name=name or f"Item {reference_id}",
        unit_price=Decimal(price),
        tax_rate=Decimal(tax_rate),
        **extra,
    )


def make_item(item_id="i1", price="1000.00", quantity=1, tax_rate="18", reference_id=1, **extra):
    return build_line_item(item_id, make_entry(reference_id, price, tax_rate, **extra), quantity)


def make_customer(wallet="500.00", points=1000, point_value="0.5", customer_id=5):
    return CustomerSnapshot(
        id=customer_id,
        name="Asha Rao",
        wallet_balance=Decimal(wallet),
        loyalty_points=points,
        loyalty_point_value=Decimal(point_value),
    )


def make_state(*, customer=None, is_igst=False, **fields):
    state = SessionState(
        id="s1",
        tenant_id=1,
        branch_id=1,
        created_at=NOW,
        expires_at=NOW + timedelta(minutes=30),
        customer=customer,
        is_igst=is_igst,
        **fields,
    )
    return recompute(state)


def membership(percent="10", customer_id=5, **overrides):
    fields = dict(
        discount_type=DiscountType.MEMBERSHIP,
        source_id="1",
        name="Gold Membership",
        customer_id=customer_id,
        calculation_type=CalculationType.PERCENTAGE,
        calculation_value=Decimal(percent),
    )
    fields.update(overrides)
    return DiscountSource(**fields)


def coupon(code="FLAT50", value="50", calculation_type=CalculationType.FLAT, **overrides):
    fields = dict(
        discount_type=DiscountType.COUPON,
        source_id=code,
        name=code,
        calculation_type=calculation_type,
        calculation_value=Decimal(value),
        remaining_uses=10,
    )
    fields.update(overrides)
    return DiscountSource(**fields)


def package_credit(credits=2, reference_ids=(1,), customer_id=5, **overrides):
    fields = dict(
        discount_type=DiscountType.PACKAGE,
        source_id="7",
        name="Haircut x5",
        customer_id=customer_id,
        remaining_credits=credits,
        applicable_reference_ids=tuple(reference_ids),
    )
    fields.update(overrides)
    return DiscountSource(**fields)

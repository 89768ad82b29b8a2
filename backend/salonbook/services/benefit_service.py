# Overview: Reads memberships, package credits, coupons and loyalty settings for checkout.

"""
Benefit lookups.

Translates membership/package/coupon rows into engine DiscountSources and
builds the "available discounts" list shown at checkout. Validity rules
(expiry, exhaustion, minimum bill) are enforced by the discount engine, not
here, so an unusable source still resolves and is rejected with a specific
business-rule error.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func

from ..checkout.errors import CheckoutNotFoundError
from ..checkout.money import fmt
from ..checkout.totals import loyalty_value
from ..checkout.types import (
    CalculationType,
    CustomerSnapshot,
    DiscountSource,
    DiscountType,
    SessionState,
    parse_enum,
)
from ..models import Coupon, Customer, CustomerMembership, CustomerPackage, LoyaltyConfig, PackageCredit
from ..time_utils import to_utc_z

DEFAULT_POINTS_PER_UNIT = Decimal("0.01")
DEFAULT_REDEMPTION_VALUE_PER_POINT = Decimal("0.5")


def loyalty_settings(tenant_id: int) -> tuple[bool, Decimal, Decimal]:
    """(enabled, points_per_unit, redemption_value_per_point) for a tenant."""
    config = LoyaltyConfig.query.filter_by(tenant_id=tenant_id).first()
    if config is None:
        return True, DEFAULT_POINTS_PER_UNIT, DEFAULT_REDEMPTION_VALUE_PER_POINT
    return config.is_enabled, Decimal(config.points_per_unit), Decimal(config.redemption_value_per_point)


def customer_snapshot(customer: Customer) -> CustomerSnapshot:
    enabled, _, value_per_point = loyalty_settings(customer.tenant_id)
    return CustomerSnapshot(
        id=customer.id,
        name=customer.name,
        phone=customer.phone,
        email=customer.email,
        wallet_balance=Decimal(customer.wallet_balance),
        loyalty_points=customer.loyalty_points if enabled else 0,
        loyalty_point_value=value_per_point if enabled else Decimal("0"),
    )


def membership_source(membership: CustomerMembership) -> DiscountSource:
    return DiscountSource(
        discount_type=DiscountType.MEMBERSHIP,
        source_id=str(membership.id),
        name=membership.name,
        customer_id=membership.customer_id,
        is_active=membership.status == "active",
        starts_at=membership.starts_at,
        expires_at=membership.expires_at,
        calculation_type=CalculationType(membership.discount_type),
        calculation_value=Decimal(membership.discount_value),
        max_discount=Decimal(membership.max_discount) if membership.max_discount is not None else None,
        applicable_reference_ids=tuple(membership.applicable_item_ids or ()),
    )


def package_source(credit: PackageCredit) -> DiscountSource:
    package = credit.package
    return DiscountSource(
        discount_type=DiscountType.PACKAGE,
        source_id=str(credit.id),
        name=f"{package.name}: {credit.catalog_item.name}",
        customer_id=package.customer_id,
        is_active=package.status == "active",
        expires_at=package.expires_at,
        remaining_credits=credit.remaining_credits,
        applicable_reference_ids=(credit.catalog_item_id,),
    )


def coupon_source(coupon: Coupon) -> DiscountSource:
    remaining_uses = None
    if coupon.usage_limit is not None:
        remaining_uses = coupon.usage_limit - coupon.used_count
    return DiscountSource(
        discount_type=DiscountType.COUPON,
        source_id=coupon.code,
        name=coupon.name or coupon.code,
        is_active=coupon.is_active,
        starts_at=coupon.starts_at,
        expires_at=coupon.expires_at,
        calculation_type=CalculationType(coupon.discount_type),
        calculation_value=Decimal(coupon.discount_value),
        max_discount=Decimal(coupon.max_discount) if coupon.max_discount is not None else None,
        min_subtotal=Decimal(coupon.min_subtotal) if coupon.min_subtotal is not None else None,
        remaining_uses=remaining_uses,
        applicable_reference_ids=tuple(coupon.applicable_item_ids or ()),
    )


def coupon_query(tenant_id: int, code: str):
    """Coupons match on code case-insensitively, whatever case they were saved in."""
    return Coupon.query.filter(
        Coupon.tenant_id == tenant_id,
        func.upper(Coupon.code) == str(code).strip().upper(),
    )


def find_coupon(tenant_id: int, code: str) -> Coupon | None:
    return coupon_query(tenant_id, code).first()


def find_package_credit(tenant_id: int, credit_id) -> PackageCredit | None:
    return (
        PackageCredit.query.join(CustomerPackage)
        .filter(PackageCredit.id == int(credit_id), CustomerPackage.tenant_id == tenant_id)
        .first()
    )


def resolve_discount_source(tenant_id: int, discount_type, discount_source) -> DiscountSource | None:
    """
    Load the membership, package credit or coupon a discount request names.

    Returns None for loyalty/manual discounts, which have no source row.
    Raises CheckoutNotFoundError for unknown ids or another tenant's rows.
    """
    discount_type = parse_enum(DiscountType, discount_type, "discount_type")
    if discount_type in (DiscountType.LOYALTY, DiscountType.MANUAL) or not discount_source:
        return None

    not_found = CheckoutNotFoundError(
        f"{discount_type.value.capitalize()} not found",
        code="DISCOUNT_SOURCE_NOT_FOUND",
        details={"discount_type": discount_type.value, "discount_source": discount_source},
    )

    if discount_type == DiscountType.COUPON:
        coupon = find_coupon(tenant_id, discount_source)
        if not coupon:
            raise not_found
        return coupon_source(coupon)

    if not str(discount_source).isdigit():
        raise not_found

    if discount_type == DiscountType.MEMBERSHIP:
        membership = CustomerMembership.query.filter_by(id=int(discount_source), tenant_id=tenant_id).first()
        if not membership:
            raise not_found
        return membership_source(membership)

    credit = find_package_credit(tenant_id, discount_source)
    if not credit:
        raise not_found
    return package_source(credit)


def available_discounts(state: SessionState, *, now) -> dict:
    """
    Benefits the session's customer could apply right now.

    Expired, inactive and exhausted benefits are left out; applicability to
    the current items is reported per benefit rather than enforced.
    """
    result = {"memberships": [], "packages": [], "loyalty": None}
    if state.customer is None:
        return result

    reference_ids = {item.reference_id for item in state.line_items}

    memberships = CustomerMembership.query.filter_by(
        tenant_id=state.tenant_id, customer_id=state.customer.id, status="active"
    ).all()
    for m in memberships:
        if (m.expires_at and m.expires_at < now) or (m.starts_at and m.starts_at > now):
            continue
        applicable = list(m.applicable_item_ids or [])
        result["memberships"].append({
            "discount_type": DiscountType.MEMBERSHIP.value,
            "discount_source": str(m.id),
            "name": m.name,
            "calculation_type": m.discount_type,
            "calculation_value": str(m.discount_value),
            "max_discount": fmt(m.max_discount),
            "expires_at": to_utc_z(m.expires_at),
            "applicable_item_ids": applicable,
            "applies_to_current_items": not applicable or bool(reference_ids & set(applicable)),
        })

    packages = CustomerPackage.query.filter_by(
        tenant_id=state.tenant_id, customer_id=state.customer.id, status="active"
    ).all()
    for package in packages:
        if package.expires_at and package.expires_at < now:
            continue
        for credit in package.credits:
            if credit.remaining_credits <= 0:
                continue
            result["packages"].append({
                "discount_type": DiscountType.PACKAGE.value,
                "discount_source": str(credit.id),
                "name": f"{package.name}: {credit.catalog_item.name}",
                "catalog_item_id": credit.catalog_item_id,
                "remaining_credits": credit.remaining_credits,
                "expires_at": to_utc_z(package.expires_at),
                "applies_to_current_items": credit.catalog_item_id in reference_ids,
            })

    customer = state.customer
    if customer.loyalty_points > 0 and customer.loyalty_point_value > 0:
        result["loyalty"] = {
            "points": customer.loyalty_points,
            "value_per_point": str(customer.loyalty_point_value),
            "max_value": fmt(loyalty_value(customer.loyalty_points, customer.loyalty_point_value)),
            "points_redeemed": state.loyalty_points_redeemed,
        }

    return result

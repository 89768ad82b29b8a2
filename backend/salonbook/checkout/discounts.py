# Overview: Discount engine; validates discount requests and applies discounts in priority order.

"""
Discount Engine

Discounts are applied in a fixed priority order:

    membership -> package -> coupon -> loyalty -> manual

and, within one class, in the order they were added. Each discount is
computed against the running taxable base of its target after every
higher-priority discount has been taken off (sequential reduction), so a
10% discount following another 10% discount on 1000 takes 90, not 100.

Subtotal-level discounts are spread over the line items in proportion to
their running taxable amounts so that tax can be computed per item.

Loyalty point redemption is NOT handled here: redeemed points are a post-tax
settlement credit (see totals.py), while a "loyalty" AppliedDiscount is a
pre-tax discount like any other.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Sequence

from ..time_utils import utcnow
from .errors import CheckoutNotFoundError, CheckoutRuleError, CheckoutValidationError
from .money import CENTS, HUNDRED, ZERO, money, to_amount, to_decimal
from .types import (
    DISCOUNT_PRIORITY,
    SOURCED_DISCOUNT_TYPES,
    AppliedDiscount,
    AppliedTo,
    CalculationType,
    DiscountSource,
    DiscountType,
    LineItem,
    parse_enum,
)


# =============================================================================
# SOURCE VALIDATION
# =============================================================================

def validate_source(
    source: DiscountSource,
    *,
    now: datetime,
    customer_id: int | None,
    subtotal: Decimal,
    target_item: LineItem | None,
) -> None:
    """
    Reject a membership/package/coupon that cannot be used right now.

    Raises:
        CheckoutRuleError: expired, inactive, exhausted, not applicable, or
            belonging to another customer
    """
    details = {"discount_source": source.source_id, "discount_type": source.discount_type.value}

    if source.customer_id is not None and source.customer_id != customer_id:
        raise CheckoutRuleError(
            f"{source.name} does not belong to this customer",
            code="SOURCE_CUSTOMER_MISMATCH",
            details=details,
        )

    if not source.is_active:
        raise CheckoutRuleError(f"{source.name} is not active", code="SOURCE_INACTIVE", details=details)

    if source.starts_at is not None and source.starts_at > now:
        raise CheckoutRuleError(f"{source.name} is not valid yet", code="SOURCE_NOT_STARTED", details=details)

    if source.expires_at is not None and source.expires_at < now:
        raise CheckoutRuleError(f"{source.name} has expired", code="SOURCE_EXPIRED", details=details)

    if source.remaining_credits is not None and source.remaining_credits <= 0:
        raise CheckoutRuleError(
            f"{source.name} has no credits remaining",
            code="SOURCE_EXHAUSTED",
            details=details,
        )

    if source.remaining_uses is not None and source.remaining_uses <= 0:
        raise CheckoutRuleError(
            f"{source.name} has reached its usage limit",
            code="SOURCE_EXHAUSTED",
            details=details,
        )

    if source.min_subtotal is not None and subtotal < source.min_subtotal:
        raise CheckoutRuleError(
            f"{source.name} requires a minimum bill of {source.min_subtotal}",
            code="MIN_SUBTOTAL_NOT_MET",
            details={**details, "min_subtotal": str(source.min_subtotal), "subtotal": str(subtotal)},
        )

    if source.applicable_reference_ids:
        if target_item is None:
            raise CheckoutRuleError(
                f"{source.name} only applies to specific services; apply it to an item",
                code="SOURCE_REQUIRES_ITEM",
                details=details,
            )
        if target_item.reference_id not in source.applicable_reference_ids:
            raise CheckoutRuleError(
                f"{source.name} does not cover {target_item.name}",
                code="SOURCE_NOT_APPLICABLE",
                details={**details, "item_id": target_item.id},
            )


# =============================================================================
# REQUEST -> APPLIED DISCOUNT
# =============================================================================

def build_discount(
    *,
    discount_id: str,
    sequence: int,
    discount_type,
    applied_to,
    calculation_type=None,
    calculation_value=None,
    applied_item_id: str | None = None,
    discount_source: str | None = None,
    reason: str | None = None,
    source: DiscountSource | None = None,
    line_items: Sequence[LineItem] = (),
    existing: Sequence[AppliedDiscount] = (),
    customer_id: int | None = None,
    now: datetime | None = None,
) -> AppliedDiscount:
    """
    Validate a discount request against the current cart and build the record.

    The returned discount has amount zero; amounts are filled in by
    apply_discounts() as part of the full recompute.
    """
    discount_type = parse_enum(DiscountType, discount_type, "discount_type")
    applied_to = parse_enum(AppliedTo, applied_to, "applied_to")

    if not line_items:
        raise CheckoutRuleError("Cannot apply a discount to an empty checkout", code="NO_ITEMS")

    target_item = None
    if applied_to == AppliedTo.ITEM:
        if not applied_item_id:
            raise CheckoutValidationError(
                "applied_item_id is required for item discounts",
                details={"field": "applied_item_id"},
            )
        target_item = next((i for i in line_items if i.id == applied_item_id), None)
        if target_item is None:
            raise CheckoutRuleError(
                "Discount target item not found in checkout",
                code="DISCOUNT_TARGET_NOT_FOUND",
                details={"applied_item_id": applied_item_id},
            )
    elif applied_item_id:
        raise CheckoutValidationError(
            "applied_item_id is only allowed for item discounts",
            details={"field": "applied_item_id"},
        )

    reason = (reason or "").strip() or None
    if discount_type == DiscountType.MANUAL and not reason:
        raise CheckoutValidationError("A reason is required for manual discounts", details={"field": "reason"})
    if reason and len(reason) > 255:
        raise CheckoutValidationError("reason must be at most 255 characters", details={"field": "reason"})

    max_discount = None
    units = 1
    credits_available = None
    source_name = None

    if discount_type in SOURCED_DISCOUNT_TYPES:
        if source is None:
            raise CheckoutValidationError(
                f"discount_source is required for {discount_type.value} discounts",
                details={"field": "discount_source"},
            )
        subtotal = sum((i.gross_amount for i in line_items), ZERO)
        validate_source(
            source,
            now=now or utcnow(),
            customer_id=customer_id,
            subtotal=subtotal,
            target_item=target_item,
        )
        _reject_duplicate(source, applied_item_id, existing)

        discount_source = source.source_id
        source_name = source.name
        max_discount = source.max_discount

        if discount_type == DiscountType.PACKAGE:
            if target_item is None:
                raise CheckoutRuleError(
                    "Package credits apply to a specific service; apply them to an item",
                    code="SOURCE_REQUIRES_ITEM",
                    details={"discount_source": source.source_id},
                )
            # One credit covers one unit of the service at its billed price
            calculation_type = CalculationType.FLAT
            calculation_value = target_item.unit_price
            credits_available = source.remaining_credits
            units = min(target_item.quantity, credits_available or target_item.quantity)
        elif source.calculation_type is not None:
            calculation_type = source.calculation_type
            calculation_value = source.calculation_value

    if calculation_type is None:
        raise CheckoutValidationError("calculation_type is required", details={"field": "calculation_type"})
    calculation_type = parse_enum(CalculationType, calculation_type, "calculation_type")
    calculation_value = _parse_calculation_value(calculation_type, calculation_value)

    if source_name is None:
        source_name = discount_type.value if target_item is None else f"{discount_type.value} on {target_item.name}"

    return AppliedDiscount(
        id=discount_id,
        discount_type=discount_type,
        calculation_type=calculation_type,
        calculation_value=calculation_value,
        applied_to=applied_to,
        sequence=sequence,
        discount_source=discount_source,
        source_name=source_name,
        applied_item_id=target_item.id if target_item else None,
        reason=reason,
        max_discount=max_discount,
        units=units,
        credits_available=credits_available,
    )


def _parse_calculation_value(calculation_type: CalculationType, value) -> Decimal:
    if calculation_type == CalculationType.PERCENTAGE:
        pct = to_decimal(value, "calculation_value")
        if pct <= 0 or pct > HUNDRED:
            raise CheckoutValidationError(
                "Percentage discounts must be greater than 0 and at most 100",
                details={"field": "calculation_value", "value": str(value)},
            )
        return pct

    amount = to_amount(value, "calculation_value")
    if amount <= 0:
        raise CheckoutValidationError(
            "Flat discounts must be greater than 0",
            details={"field": "calculation_value", "value": str(value)},
        )
    return amount


def _reject_duplicate(source: DiscountSource, applied_item_id: str | None, existing: Iterable[AppliedDiscount]) -> None:
    # Coupons and package credits are consumed once per bill, whatever the target
    single_use = source.discount_type in (DiscountType.COUPON, DiscountType.PACKAGE)
    for d in existing:
        if (
            d.discount_type == source.discount_type
            and d.discount_source == source.source_id
            and (single_use or d.applied_item_id == applied_item_id)
        ):
            raise CheckoutRuleError(
                f"{source.name} is already applied",
                code="DISCOUNT_ALREADY_APPLIED",
                details={"discount_id": d.id},
            )


# =============================================================================
# APPLICATION
# =============================================================================

def discount_amount(discount: AppliedDiscount, base: Decimal, units: int) -> Decimal:
    """
    Amount a single discount takes off a running base.

    Percentages apply to the base; flat values are per unit (units is 1 except
    for package credits). Capped by max_discount and by the base itself.
    """
    if base <= 0:
        return ZERO

    if discount.calculation_type == CalculationType.PERCENTAGE:
        amount = money(base * discount.calculation_value / HUNDRED)
    else:
        amount = money(discount.calculation_value * units)

    if discount.max_discount is not None:
        amount = min(amount, discount.max_discount)

    return min(amount, base)


def apportion(amount: Decimal, weights: Sequence[Decimal]) -> list[Decimal]:
    """
    Split an amount across weights, exact to the paisa.

    Shares are floored to paise, then leftover paise go to the largest
    remainders (ties to the earliest item). A share never exceeds its weight
    when amount <= sum(weights).
    """
    amount_p = int(amount / CENTS)
    weights_p = [int(w / CENTS) for w in weights]
    total_p = sum(weights_p)
    if amount_p <= 0 or total_p <= 0:
        return [ZERO for _ in weights]

    shares = []
    remainders = []
    for index, weight in enumerate(weights_p):
        share, remainder = divmod(amount_p * weight, total_p)
        shares.append(share)
        remainders.append((remainder, index))

    leftover = amount_p - sum(shares)
    for _, index in sorted(remainders, key=lambda r: (-r[0], r[1]))[:leftover]:
        shares[index] += 1

    return [(Decimal(s) * CENTS).quantize(CENTS) for s in shares]


def apply_discounts(
    line_items: Sequence[LineItem],
    discounts: Sequence[AppliedDiscount],
) -> tuple[tuple[LineItem, ...], tuple[AppliedDiscount, ...]]:
    """
    Recompute every discount from the items' gross amounts.

    Returns the items with discount_amount/taxable_amount filled in and the
    discounts with their computed amounts, both in their original order.
    Tax is not touched here.

    Raises:
        CheckoutNotFoundError: an item discount points at a missing item
    """
    running = {item.id: item.gross_amount for item in line_items}
    taken = {item.id: ZERO for item in line_items}
    by_id = {item.id: item for item in line_items}
    computed: dict[str, AppliedDiscount] = {}

    ordered = sorted(discounts, key=lambda d: (DISCOUNT_PRIORITY[d.discount_type], d.sequence))
    for discount in ordered:
        if discount.applied_to == AppliedTo.ITEM:
            item = by_id.get(discount.applied_item_id)
            if item is None:
                raise CheckoutNotFoundError(
                    "Discount target item not found",
                    code="ITEM_NOT_FOUND",
                    details={"discount_id": discount.id, "applied_item_id": discount.applied_item_id},
                )
            if discount.credits_available is not None:
                units = min(item.quantity, discount.credits_available)
            else:
                units = min(discount.units, item.quantity)
            amount = discount_amount(discount, running[item.id], units)
            running[item.id] -= amount
            taken[item.id] += amount
        else:
            units = discount.units
            base = sum(running.values(), ZERO)
            amount = discount_amount(discount, base, units)
            shares = apportion(amount, [running[item.id] for item in line_items])
            for item, share in zip(line_items, shares):
                running[item.id] -= share
                taken[item.id] += share

        computed[discount.id] = replace(discount, amount=amount, units=units)

    new_items = tuple(
        replace(item, discount_amount=taken[item.id], taxable_amount=running[item.id])
        for item in line_items
    )
    new_discounts = tuple(computed[d.id] for d in discounts)
    return new_items, new_discounts


def discounts_for_item(discounts: Iterable[AppliedDiscount], item_id: str) -> list[AppliedDiscount]:
    return [d for d in discounts if d.applied_to == AppliedTo.ITEM and d.applied_item_id == item_id]

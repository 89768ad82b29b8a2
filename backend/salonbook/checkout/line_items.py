# Overview: Line item construction, repricing and per-item tax/commission computation.

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Sequence

from .errors import CheckoutValidationError
from .money import HUNDRED, ZERO, money, to_quantity
from .tax import compute_tax
from .types import CatalogEntry, LineItem

COMMISSION_PERCENTAGE = "percentage"
COMMISSION_FLAT = "flat"


def build_line_item(
    item_id: str,
    entry: CatalogEntry,
    quantity=1,
    *,
    stylist_id: int | None = None,
    assistant_id: int | None = None,
) -> LineItem:
    """Create a new line item from a priced catalog entry."""
    qty = to_quantity(quantity)
    if entry.unit_price < 0:
        raise CheckoutValidationError(
            "unit_price cannot be negative",
            details={"field": "unit_price", "reference_id": entry.reference_id},
        )

    item = LineItem(
        id=item_id,
        item_type=entry.item_type,
        reference_id=entry.reference_id,
        name=entry.name,
        unit_price=money(entry.unit_price),
        quantity=qty,
        tax_rate=entry.tax_rate,
        reference_sku=entry.reference_sku,
        variant_id=entry.variant_id,
        variant_name=entry.variant_name,
        hsn_sac_code=entry.hsn_sac_code,
        stylist_id=stylist_id,
        assistant_id=assistant_id,
        commission_type=entry.commission_type,
        commission_rate=entry.commission_value,
    )
    return reprice(item)


def reprice(item: LineItem) -> LineItem:
    """
    Recompute gross and commission from price and quantity.

    Discount and tax fields are reset; the pipeline fills them in again.
    """
    gross = money(item.unit_price * item.quantity)
    return replace(
        item,
        gross_amount=gross,
        discount_amount=ZERO,
        taxable_amount=gross,
        commission_amount=commission_for(item.commission_type, item.commission_rate, gross, item.quantity),
    )


def commission_for(commission_type: str | None, rate: Decimal | None, gross: Decimal, quantity: int) -> Decimal:
    """Advisory stylist commission; never part of the totals."""
    if not commission_type or rate is None:
        return ZERO
    if commission_type == COMMISSION_PERCENTAGE:
        return money(gross * rate / HUNDRED)
    if commission_type == COMMISSION_FLAT:
        return money(rate * quantity)
    return ZERO


def update_line_item(item: LineItem, changes: dict) -> LineItem:
    """
    Apply a partial update (quantity, stylist_id, assistant_id).

    Unknown fields are rejected so a typo never turns into a silent no-op.
    """
    allowed = {"quantity", "stylist_id", "assistant_id"}
    unknown = set(changes) - allowed
    if unknown:
        raise CheckoutValidationError(
            f"Cannot update field(s): {', '.join(sorted(unknown))}",
            details={"fields": sorted(unknown), "allowed": sorted(allowed)},
        )
    if not changes:
        raise CheckoutValidationError("No changes supplied", details={"allowed": sorted(allowed)})

    updates = {}
    if "quantity" in changes:
        updates["quantity"] = to_quantity(changes["quantity"])
    for key in ("stylist_id", "assistant_id"):
        if key in changes:
            updates[key] = _optional_id(changes[key], key)

    return reprice(replace(item, **updates))


def _optional_id(value, field: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise CheckoutValidationError(f"{field} must be an integer", details={"field": field})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise CheckoutValidationError(f"{field} must be an integer", details={"field": field})


def apply_tax(items: Sequence[LineItem], is_igst: bool) -> tuple[LineItem, ...]:
    """Fill in the GST split and net amount for every item from its taxable amount."""
    taxed = []
    for item in items:
        tax = compute_tax(item.taxable_amount, item.tax_rate, is_igst)
        taxed.append(
            replace(
                item,
                cgst_rate=tax.cgst_rate,
                cgst_amount=tax.cgst_amount,
                sgst_rate=tax.sgst_rate,
                sgst_amount=tax.sgst_amount,
                igst_rate=tax.igst_rate,
                igst_amount=tax.igst_amount,
                total_tax=tax.total_tax,
                net_amount=item.taxable_amount + tax.total_tax,
            )
        )
    return tuple(taxed)

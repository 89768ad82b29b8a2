# Overview: Resolves catalog items into priced entries for a branch.

from __future__ import annotations

from decimal import Decimal

from ..checkout.errors import CheckoutNotFoundError, CheckoutValidationError
from ..checkout.types import CatalogEntry, ItemType, parse_enum
from ..models import BranchPrice, CatalogItem, CatalogVariant


def resolve_catalog_entry(
    *,
    tenant_id: int,
    branch_id: int,
    item_type,
    reference_id,
    variant_id=None,
) -> CatalogEntry:
    """
    Price a catalog item for a branch.

    PRICE PRECEDENCE: variant price, then branch override, then list price.
    """
    item_type = parse_enum(ItemType, item_type, "item_type")
    reference_id = _require_int(reference_id, "reference_id")

    item = CatalogItem.query.filter_by(id=reference_id, tenant_id=tenant_id).first()
    if not item or not item.is_active:
        raise CheckoutNotFoundError(
            "Catalog item not found",
            code="CATALOG_ITEM_NOT_FOUND",
            details={"reference_id": reference_id},
        )
    if item.item_type != item_type.value:
        raise CheckoutValidationError(
            f"Catalog item {reference_id} is a {item.item_type}, not a {item_type.value}",
            details={"field": "item_type"},
        )

    price = Decimal(item.price)
    variant_name = None
    if variant_id is not None:
        variant_id = _require_int(variant_id, "variant_id")
        variant = CatalogVariant.query.filter_by(id=variant_id, catalog_item_id=item.id).first()
        if not variant or not variant.is_active:
            raise CheckoutNotFoundError(
                "Variant not found",
                code="VARIANT_NOT_FOUND",
                details={"variant_id": variant_id, "reference_id": reference_id},
            )
        price = Decimal(variant.price)
        variant_name = variant.name
    else:
        override = BranchPrice.query.filter_by(branch_id=branch_id, catalog_item_id=item.id).first()
        if override:
            price = Decimal(override.price)

    return CatalogEntry(
        item_type=item_type,
        reference_id=item.id,
        name=item.name if not variant_name else f"{item.name} ({variant_name})",
        unit_price=price,
        tax_rate=Decimal(item.tax_rate),
        reference_sku=item.sku,
        variant_id=variant_id,
        variant_name=variant_name,
        hsn_sac_code=item.hsn_sac_code,
        commission_type=item.commission_type,
        commission_value=Decimal(item.commission_value) if item.commission_value is not None else None,
    )


def _require_int(value, field: str) -> int:
    if isinstance(value, bool):
        raise CheckoutValidationError(f"{field} must be an integer", details={"field": field})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise CheckoutValidationError(f"{field} must be an integer", details={"field": field})

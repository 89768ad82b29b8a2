# Overview: Value types for the checkout engine (line items, discounts, payments, totals, session state).

"""
Checkout value types.

All records are frozen dataclasses: every mutation builds a new SessionState
through the reducer, so a failed operation can never leave a half-applied
change behind. Tags (item type, discount type, payment method, status) are
closed enums rather than free strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum

from .errors import CheckoutValidationError
from .money import ZERO


class ItemType(str, Enum):
    SERVICE = "service"
    PRODUCT = "product"
    COMBO = "combo"
    PACKAGE = "package"


class DiscountType(str, Enum):
    MEMBERSHIP = "membership"
    PACKAGE = "package"
    COUPON = "coupon"
    LOYALTY = "loyalty"
    MANUAL = "manual"


# Application order when several discounts are active at once
DISCOUNT_PRIORITY = {
    DiscountType.MEMBERSHIP: 0,
    DiscountType.PACKAGE: 1,
    DiscountType.COUPON: 2,
    DiscountType.LOYALTY: 3,
    DiscountType.MANUAL: 4,
}

# Discount types that must name the membership/package/coupon they draw on
SOURCED_DISCOUNT_TYPES = frozenset({
    DiscountType.MEMBERSHIP,
    DiscountType.PACKAGE,
    DiscountType.COUPON,
})


class CalculationType(str, Enum):
    PERCENTAGE = "percentage"
    FLAT = "flat"


class AppliedTo(str, Enum):
    SUBTOTAL = "subtotal"
    ITEM = "item"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    WALLET = "wallet"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    LOYALTY = "loyalty"


class CardType(str, Enum):
    VISA = "visa"
    MASTERCARD = "mastercard"
    RUPAY = "rupay"
    AMEX = "amex"


class ReceiptMethod(str, Enum):
    WHATSAPP = "whatsapp"
    EMAIL = "email"
    PRINT = "print"


class SessionStatus(str, Enum):
    OPEN = "open"
    SETTLED = "settled"
    COMPLETED = "completed"
    EXPIRED = "expired"


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.EXPIRED})


@dataclass(frozen=True)
class TaxBreakdown:
    cgst_rate: Decimal = ZERO
    cgst_amount: Decimal = ZERO
    sgst_rate: Decimal = ZERO
    sgst_amount: Decimal = ZERO
    igst_rate: Decimal = ZERO
    igst_amount: Decimal = ZERO
    total_tax: Decimal = ZERO


@dataclass(frozen=True)
class CatalogEntry:
    """Priced catalog item as resolved for a branch (input to add_item)."""
    item_type: ItemType
    reference_id: int
    name: str
    unit_price: Decimal
    tax_rate: Decimal
    reference_sku: str | None = None
    variant_id: int | None = None
    variant_name: str | None = None
    hsn_sac_code: str | None = None
    commission_type: str | None = None
    commission_value: Decimal | None = None


@dataclass(frozen=True)
class LineItem:
    id: str
    item_type: ItemType
    reference_id: int
    name: str
    unit_price: Decimal
    quantity: int
    tax_rate: Decimal
    gross_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    taxable_amount: Decimal = ZERO
    cgst_rate: Decimal = ZERO
    cgst_amount: Decimal = ZERO
    sgst_rate: Decimal = ZERO
    sgst_amount: Decimal = ZERO
    igst_rate: Decimal = ZERO
    igst_amount: Decimal = ZERO
    total_tax: Decimal = ZERO
    net_amount: Decimal = ZERO
    reference_sku: str | None = None
    variant_id: int | None = None
    variant_name: str | None = None
    hsn_sac_code: str | None = None
    stylist_id: int | None = None
    assistant_id: int | None = None
    commission_type: str | None = None
    commission_rate: Decimal | None = None
    commission_amount: Decimal = ZERO


@dataclass(frozen=True)
class DiscountSource:
    """
    A membership benefit, package credit or coupon as seen by the engine.

    The service layer resolves these from the database; the engine only
    decides whether the source may be applied right now.
    """
    discount_type: DiscountType
    source_id: str
    name: str
    customer_id: int | None = None
    is_active: bool = True
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    calculation_type: CalculationType | None = None
    calculation_value: Decimal | None = None
    max_discount: Decimal | None = None
    min_subtotal: Decimal | None = None
    remaining_credits: int | None = None
    remaining_uses: int | None = None
    applicable_reference_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class AppliedDiscount:
    id: str
    discount_type: DiscountType
    calculation_type: CalculationType
    calculation_value: Decimal
    applied_to: AppliedTo
    sequence: int
    amount: Decimal = ZERO
    discount_source: str | None = None
    source_name: str | None = None
    applied_item_id: str | None = None
    reason: str | None = None
    max_discount: Decimal | None = None
    # Package credits: units billed on the last recompute, and the credits the
    # customer held when the discount was applied (upper bound for units).
    units: int = 1
    credits_available: int | None = None


@dataclass(frozen=True)
class PaymentEntry:
    id: str
    payment_method: PaymentMethod
    amount: Decimal
    card_last_four: str | None = None
    card_type: CardType | None = None
    upi_id: str | None = None
    transaction_id: str | None = None


@dataclass(frozen=True)
class CustomerSnapshot:
    """Customer record captured at checkout start."""
    id: int
    name: str
    phone: str | None = None
    email: str | None = None
    wallet_balance: Decimal = ZERO
    loyalty_points: int = 0
    loyalty_point_value: Decimal = ZERO


@dataclass(frozen=True)
class CheckoutTotals:
    subtotal: Decimal = ZERO
    discount_total: Decimal = ZERO
    taxable_amount: Decimal = ZERO
    cgst_amount: Decimal = ZERO
    sgst_amount: Decimal = ZERO
    igst_amount: Decimal = ZERO
    tax_total: Decimal = ZERO
    loyalty_discount: Decimal = ZERO
    wallet_used: Decimal = ZERO
    tip_amount: Decimal = ZERO
    grand_total: Decimal = ZERO
    amount_paid: Decimal = ZERO
    amount_due: Decimal = ZERO


@dataclass(frozen=True)
class SessionState:
    id: str
    tenant_id: int
    branch_id: int
    created_at: datetime
    expires_at: datetime
    appointment_id: int | None = None
    customer: CustomerSnapshot | None = None
    line_items: tuple[LineItem, ...] = ()
    applied_discounts: tuple[AppliedDiscount, ...] = ()
    payments: tuple[PaymentEntry, ...] = ()
    tip_amount: Decimal = ZERO
    loyalty_points_redeemed: int = 0
    wallet_requested: Decimal = ZERO
    is_igst: bool = False
    status: SessionStatus = SessionStatus.OPEN
    totals: CheckoutTotals = field(default_factory=CheckoutTotals)
    next_sequence: int = 1
    invoice_id: int | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def find_item(self, item_id: str) -> LineItem | None:
        for item in self.line_items:
            if item.id == item_id:
                return item
        return None


def parse_enum(enum_cls, value, field_name: str):
    """Coerce a client string into a closed enum, rejecting unknown tags."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = [member.value for member in enum_cls]
        raise CheckoutValidationError(
            f"Invalid {field_name}: {value}. Must be one of {allowed}",
            details={"field": field_name, "allowed": allowed},
        )

"""
Pure checkout engine: no Flask, no database.

Leaves first: tax -> discounts -> line_items -> totals -> payments -> reducer.
"""

from .errors import (
    CheckoutError,
    CheckoutNotFoundError,
    CheckoutRuleError,
    CheckoutStateError,
    CheckoutValidationError,
)
from .reducer import recompute, reduce
from .serialization import state_from_dict, state_to_dict
from .types import (
    AppliedDiscount,
    AppliedTo,
    CalculationType,
    CatalogEntry,
    CheckoutTotals,
    CustomerSnapshot,
    DiscountSource,
    DiscountType,
    ItemType,
    LineItem,
    PaymentEntry,
    PaymentMethod,
    ReceiptMethod,
    SessionState,
    SessionStatus,
)

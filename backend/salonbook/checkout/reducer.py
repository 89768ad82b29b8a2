# Overview: Session reducer; (state, event) -> new state with the full recompute pipeline.

"""
Checkout Session Reducer

Every client action is an event. reduce() never mutates the incoming
state: it builds a new SessionState, runs the recompute pipeline and checks
the settlement guards. If anything raises, the caller still holds the old
state, so each operation is all-or-nothing.

PIPELINE (after every mutating event):
    1. discounts re-applied from gross amounts in priority order
    2. tax recomputed per item from its taxable amount
    3. totals recomputed (tip, loyalty credit, wallet credit, payments)
    4. guards: amount_paid may not exceed grand_total + 0.01, wallet and
       loyalty payments may not exceed what the credits left over
    5. status derived: settled iff there are items and nothing is due

LIFECYCLE:
    open <-> settled -> completed
    open | settled   -> expired
Completed and expired sessions reject every event.

Persistence, locking and TTL refresh live in services/checkout_service.py.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Mapping

from .discounts import apply_discounts, build_discount, discounts_for_item
from .errors import CheckoutNotFoundError, CheckoutRuleError, CheckoutStateError, CheckoutValidationError
from .line_items import apply_tax, update_line_item
from .money import PAYMENT_TOLERANCE, ZERO, fmt, to_amount
from .payments import check_balances, check_new_payments, remove_payment
from .totals import compute_totals, loyalty_value
from .types import (
    DiscountSource,
    LineItem,
    PaymentEntry,
    SessionState,
    SessionStatus,
)


# =============================================================================
# EVENTS
# =============================================================================

@dataclass(frozen=True)
class AddItem:
    item: LineItem


@dataclass(frozen=True)
class RemoveItem:
    item_id: str


@dataclass(frozen=True)
class UpdateItem:
    item_id: str
    changes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ApplyDiscount:
    discount_id: str
    request: Mapping[str, Any]
    source: DiscountSource | None = None
    now: datetime | None = None


@dataclass(frozen=True)
class RemoveDiscount:
    discount_id: str


@dataclass(frozen=True)
class AddPayments:
    payments: tuple[PaymentEntry, ...]


@dataclass(frozen=True)
class RemovePayment:
    payment_id: str


@dataclass(frozen=True)
class SetTip:
    amount: Any


@dataclass(frozen=True)
class RedeemLoyalty:
    points: Any


@dataclass(frozen=True)
class UseWallet:
    amount: Any


@dataclass(frozen=True)
class SetTaxMode:
    is_igst: Any


@dataclass(frozen=True)
class Expire:
    at: datetime


@dataclass(frozen=True)
class Complete:
    invoice_id: int | None
    at: datetime


# =============================================================================
# PIPELINE
# =============================================================================

def recompute(state: SessionState) -> SessionState:
    """Rebuild discounts, tax, totals and status from the raw inputs."""
    items, discounts = apply_discounts(state.line_items, state.applied_discounts)
    items = apply_tax(items, state.is_igst)

    loyalty_credit = ZERO
    if state.customer is not None and state.loyalty_points_redeemed:
        loyalty_credit = loyalty_value(state.loyalty_points_redeemed, state.customer.loyalty_point_value)

    totals = compute_totals(
        items,
        discounts,
        state.payments,
        tip_amount=state.tip_amount,
        loyalty_credit=loyalty_credit,
        wallet_requested=state.wallet_requested,
    )

    status = SessionStatus.SETTLED if items and totals.amount_due == 0 else SessionStatus.OPEN
    return replace(state, line_items=items, applied_discounts=discounts, totals=totals, status=status)


def _recompute_guarded(state: SessionState) -> SessionState:
    new_state = recompute(state)
    totals = new_state.totals
    if totals.amount_paid > totals.grand_total + PAYMENT_TOLERANCE:
        raise CheckoutRuleError(
            "Change would leave the session overpaid; remove a payment first",
            code="PAYMENT_EXCEEDS_TOTAL",
            details={"grand_total": fmt(totals.grand_total), "amount_paid": fmt(totals.amount_paid)},
        )
    check_balances(new_state.payments, totals=totals, customer=new_state.customer)
    return new_state


def loyalty_points_used(state: SessionState) -> int:
    """
    Points actually consumed by the loyalty credit.

    The credit is capped at the amount owed, so fewer points than requested
    may be needed.
    """
    if not state.loyalty_points_redeemed or state.customer is None:
        return 0
    per_point = state.customer.loyalty_point_value
    if per_point <= 0:
        return 0
    needed = math.ceil(state.totals.loyalty_discount / per_point)
    return min(state.loyalty_points_redeemed, needed)


# =============================================================================
# HANDLERS
# =============================================================================

def _add_item(state: SessionState, event: AddItem) -> SessionState:
    return _recompute_guarded(replace(state, line_items=state.line_items + (event.item,)))


def _remove_item(state: SessionState, event: RemoveItem) -> SessionState:
    _require_item(state, event.item_id)
    doomed = {d.id for d in discounts_for_item(state.applied_discounts, event.item_id)}
    return _recompute_guarded(
        replace(
            state,
            line_items=tuple(i for i in state.line_items if i.id != event.item_id),
            applied_discounts=tuple(d for d in state.applied_discounts if d.id not in doomed),
        )
    )


def _update_item(state: SessionState, event: UpdateItem) -> SessionState:
    item = _require_item(state, event.item_id)
    updated = update_line_item(item, dict(event.changes))
    items = tuple(updated if i.id == item.id else i for i in state.line_items)
    return _recompute_guarded(replace(state, line_items=items))


def _apply_discount(state: SessionState, event: ApplyDiscount) -> SessionState:
    request = event.request
    discount = build_discount(
        discount_id=event.discount_id,
        sequence=state.next_sequence,
        discount_type=request.get("discount_type"),
        applied_to=request.get("applied_to"),
        calculation_type=request.get("calculation_type"),
        calculation_value=request.get("calculation_value"),
        applied_item_id=request.get("applied_item_id"),
        discount_source=request.get("discount_source"),
        reason=request.get("reason"),
        source=event.source,
        line_items=state.line_items,
        existing=state.applied_discounts,
        customer_id=state.customer.id if state.customer else None,
        now=event.now,
    )
    return _recompute_guarded(
        replace(
            state,
            applied_discounts=state.applied_discounts + (discount,),
            next_sequence=state.next_sequence + 1,
        )
    )


def _remove_discount(state: SessionState, event: RemoveDiscount) -> SessionState:
    remaining = tuple(d for d in state.applied_discounts if d.id != event.discount_id)
    if len(remaining) == len(state.applied_discounts):
        raise CheckoutNotFoundError(
            "Discount not found",
            code="DISCOUNT_NOT_FOUND",
            details={"discount_id": event.discount_id},
        )
    return _recompute_guarded(replace(state, applied_discounts=remaining))


def _add_payments(state: SessionState, event: AddPayments) -> SessionState:
    check_new_payments(
        event.payments,
        existing=state.payments,
        totals=state.totals,
        customer=state.customer,
    )
    return _recompute_guarded(replace(state, payments=state.payments + tuple(event.payments)))


def _remove_payment(state: SessionState, event: RemovePayment) -> SessionState:
    return _recompute_guarded(replace(state, payments=remove_payment(state.payments, event.payment_id)))


def _set_tip(state: SessionState, event: SetTip) -> SessionState:
    amount = to_amount(event.amount, "tip_amount")
    if amount < 0:
        raise CheckoutValidationError("tip_amount cannot be negative", details={"field": "tip_amount"})
    return _recompute_guarded(replace(state, tip_amount=amount))


def _redeem_loyalty(state: SessionState, event: RedeemLoyalty) -> SessionState:
    points = event.points
    if isinstance(points, bool) or not isinstance(points, int) or points < 0:
        raise CheckoutValidationError(
            "points must be a non-negative integer",
            details={"field": "points"},
        )
    if points:
        customer = _require_customer(state, "Loyalty redemption")
        if points > customer.loyalty_points:
            raise CheckoutRuleError(
                "Insufficient loyalty points",
                code="INSUFFICIENT_LOYALTY_POINTS",
                details={"available": customer.loyalty_points, "requested": points},
            )
    return _recompute_guarded(replace(state, loyalty_points_redeemed=points))


def _use_wallet(state: SessionState, event: UseWallet) -> SessionState:
    amount = to_amount(event.amount, "amount")
    if amount < 0:
        raise CheckoutValidationError("Wallet amount cannot be negative", details={"field": "amount"})
    if amount > 0:
        customer = _require_customer(state, "Wallet credit")
        if amount > customer.wallet_balance:
            raise CheckoutRuleError(
                "Insufficient wallet balance",
                code="INSUFFICIENT_WALLET_BALANCE",
                details={"available": fmt(customer.wallet_balance), "requested": fmt(amount)},
            )
    return _recompute_guarded(replace(state, wallet_requested=amount))


def _set_tax_mode(state: SessionState, event: SetTaxMode) -> SessionState:
    if not isinstance(event.is_igst, bool):
        raise CheckoutValidationError("is_igst must be a boolean", details={"field": "is_igst"})
    return _recompute_guarded(replace(state, is_igst=event.is_igst))


def _expire(state: SessionState, event: Expire) -> SessionState:
    return replace(state, status=SessionStatus.EXPIRED, expires_at=min(state.expires_at, event.at))


def _complete(state: SessionState, event: Complete) -> SessionState:
    current = recompute(state)
    if current.status != SessionStatus.SETTLED:
        raise CheckoutStateError(
            "Checkout cannot be completed until the full amount is paid",
            code="NOT_SETTLED",
            details={
                "item_count": len(current.line_items),
                "amount_due": fmt(current.totals.amount_due),
            },
        )
    return replace(
        current,
        status=SessionStatus.COMPLETED,
        invoice_id=event.invoice_id,
        completed_at=event.at,
    )


_HANDLERS = {
    AddItem: _add_item,
    RemoveItem: _remove_item,
    UpdateItem: _update_item,
    ApplyDiscount: _apply_discount,
    RemoveDiscount: _remove_discount,
    AddPayments: _add_payments,
    RemovePayment: _remove_payment,
    SetTip: _set_tip,
    RedeemLoyalty: _redeem_loyalty,
    UseWallet: _use_wallet,
    SetTaxMode: _set_tax_mode,
    Expire: _expire,
    Complete: _complete,
}


def reduce(state: SessionState, event) -> SessionState:
    """
    Apply one event and return the new state.

    Raises:
        CheckoutStateError: session already completed or expired
        CheckoutValidationError / CheckoutRuleError / CheckoutNotFoundError
    """
    if state.is_terminal:
        raise CheckoutStateError(
            f"Checkout session is {state.status.value}",
            code=f"SESSION_{state.status.value.upper()}",
            details={"session_id": state.id, "status": state.status.value},
        )
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"Unknown checkout event: {type(event).__name__}")
    return handler(state, event)


def _require_item(state: SessionState, item_id: str) -> LineItem:
    item = state.find_item(item_id)
    if item is None:
        raise CheckoutNotFoundError("Item not found", code="ITEM_NOT_FOUND", details={"item_id": item_id})
    return item


def _require_customer(state: SessionState, what: str):
    if state.customer is None:
        raise CheckoutRuleError(f"{what} requires a customer on the checkout", code="CUSTOMER_REQUIRED")
    return state.customer
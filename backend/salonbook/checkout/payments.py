# Overview: Payment Reconciler; validates split payments against the amount owed.

from __future__ import annotations

import re
from typing import Mapping, Sequence

from .errors import CheckoutNotFoundError, CheckoutRuleError, CheckoutValidationError
from .money import PAYMENT_TOLERANCE, ZERO, fmt, to_amount
from .totals import loyalty_value
from .types import CardType, CheckoutTotals, CustomerSnapshot, PaymentEntry, PaymentMethod, parse_enum

_CARD_LAST_FOUR = re.compile(r"^\d{4}$")


def parse_payment(payment_id: str, raw: Mapping) -> PaymentEntry:
    """
    Build a PaymentEntry from client input.

    Amount must be > 0 with at most two decimals. Card metadata is only
    accepted on card payments, UPI id only on UPI payments.
    """
    if not isinstance(raw, Mapping):
        raise CheckoutValidationError("Each payment must be an object")

    method = parse_enum(PaymentMethod, raw.get("payment_method"), "payment_method")
    amount = to_amount(raw.get("amount"), "amount")
    if amount <= 0:
        raise CheckoutValidationError(
            "Payment amount must be positive",
            details={"field": "amount", "value": str(raw.get("amount"))},
        )

    card_last_four = raw.get("card_last_four")
    card_type = raw.get("card_type")
    upi_id = raw.get("upi_id")

    if method != PaymentMethod.CARD and (card_last_four or card_type):
        raise CheckoutValidationError(
            "Card details are only allowed on card payments",
            details={"payment_method": method.value},
        )
    if method != PaymentMethod.UPI and upi_id:
        raise CheckoutValidationError(
            "upi_id is only allowed on UPI payments",
            details={"payment_method": method.value},
        )

    if card_last_four is not None:
        card_last_four = str(card_last_four).strip()
        if not _CARD_LAST_FOUR.match(card_last_four):
            raise CheckoutValidationError(
                "card_last_four must be exactly 4 digits",
                details={"field": "card_last_four"},
            )
    if card_type is not None:
        card_type = parse_enum(CardType, card_type, "card_type")

    transaction_id = raw.get("transaction_id")
    if transaction_id is not None:
        transaction_id = str(transaction_id).strip() or None
    if transaction_id and len(transaction_id) > 128:
        raise CheckoutValidationError(
            "transaction_id must be at most 128 characters",
            details={"field": "transaction_id"},
        )
    if upi_id is not None:
        upi_id = str(upi_id).strip() or None

    return PaymentEntry(
        id=payment_id,
        payment_method=method,
        amount=amount,
        card_last_four=card_last_four,
        card_type=card_type,
        upi_id=upi_id,
        transaction_id=transaction_id,
    )


def check_new_payments(
    new_payments: Sequence[PaymentEntry],
    *,
    existing: Sequence[PaymentEntry],
    totals: CheckoutTotals,
    customer: CustomerSnapshot | None,
) -> None:
    """
    Reject a batch that would overpay or overdraw a balance.

    The batch is checked as a whole: if any entry fails, none is recorded.
    """
    if not new_payments:
        raise CheckoutValidationError("At least one payment is required", details={"field": "payments"})

    batch_total = sum((p.amount for p in new_payments), ZERO)
    if totals.amount_paid + batch_total > totals.grand_total + PAYMENT_TOLERANCE:
        raise CheckoutRuleError(
            "Payment exceeds the amount due",
            code="OVERPAYMENT",
            details={
                "grand_total": fmt(totals.grand_total),
                "amount_paid": fmt(totals.amount_paid),
                "amount_due": fmt(totals.amount_due),
                "attempted": fmt(batch_total),
            },
        )

    check_balances(list(existing) + list(new_payments), totals=totals, customer=customer)


def check_balances(
    payments: Sequence[PaymentEntry],
    *,
    totals: CheckoutTotals,
    customer: CustomerSnapshot | None,
) -> None:
    """Wallet and loyalty payments may only spend what the credits left over."""
    wallet_paid = _method_total(payments, PaymentMethod.WALLET)
    loyalty_paid = _method_total(payments, PaymentMethod.LOYALTY)

    if wallet_paid > 0 or loyalty_paid > 0:
        if customer is None:
            raise CheckoutRuleError(
                "Wallet and loyalty payments require a customer",
                code="CUSTOMER_REQUIRED",
            )

    if wallet_paid > 0:
        available = customer.wallet_balance - totals.wallet_used
        if wallet_paid > available:
            raise CheckoutRuleError(
                "Insufficient wallet balance",
                code="INSUFFICIENT_WALLET_BALANCE",
                details={"available": fmt(max(available, ZERO)), "requested": fmt(wallet_paid)},
            )

    if loyalty_paid > 0:
        available = loyalty_value(customer.loyalty_points, customer.loyalty_point_value) - totals.loyalty_discount
        if loyalty_paid > available:
            raise CheckoutRuleError(
                "Insufficient loyalty points",
                code="INSUFFICIENT_LOYALTY_POINTS",
                details={"available": fmt(max(available, ZERO)), "requested": fmt(loyalty_paid)},
            )


def remove_payment(payments: Sequence[PaymentEntry], payment_id: str) -> tuple[PaymentEntry, ...]:
    remaining = tuple(p for p in payments if p.id != payment_id)
    if len(remaining) == len(payments):
        raise CheckoutNotFoundError(
            "Payment not found",
            code="PAYMENT_NOT_FOUND",
            details={"payment_id": payment_id},
        )
    return remaining


def _method_total(payments: Sequence[PaymentEntry], method: PaymentMethod):
    return sum((p.amount for p in payments if p.payment_method == method), ZERO)

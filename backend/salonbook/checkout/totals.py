# Overview: Folds line items, discounts, tip, settlement credits and payments into CheckoutTotals.

"""
Totals Compositor

Pure function: the same items, discounts, tip, credits and payments always
produce the same totals. Nothing here is persisted as a source of truth.

    grand_total = taxable_amount + tax_total + tip_amount
                  - loyalty_discount - wallet_used
    amount_due  = max(0, grand_total - amount_paid)

Loyalty points and wallet balance are post-tax settlement credits. Both are
capped at what is still owed so the grand total never goes negative; loyalty
is taken first, then wallet.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from .money import ZERO, money
from .tax import sum_tax
from .types import AppliedDiscount, CheckoutTotals, LineItem, PaymentEntry


def loyalty_value(points: int, value_per_point: Decimal) -> Decimal:
    return money(Decimal(points) * value_per_point)


def compute_totals(
    line_items: Sequence[LineItem],
    discounts: Sequence[AppliedDiscount],
    payments: Sequence[PaymentEntry],
    *,
    tip_amount: Decimal = ZERO,
    loyalty_credit: Decimal = ZERO,
    wallet_requested: Decimal = ZERO,
) -> CheckoutTotals:
    subtotal = sum((i.gross_amount for i in line_items), ZERO)
    discount_total = sum((d.amount for d in discounts), ZERO)
    taxable = sum((i.taxable_amount for i in line_items), ZERO)
    tax = sum_tax(line_items)

    pre_credit = taxable + tax.total_tax + tip_amount
    loyalty_discount = min(loyalty_credit, pre_credit)
    wallet_used = min(wallet_requested, pre_credit - loyalty_discount)
    grand_total = pre_credit - loyalty_discount - wallet_used

    amount_paid = sum((p.amount for p in payments), ZERO)
    amount_due = max(ZERO, grand_total - amount_paid)

    return CheckoutTotals(
        subtotal=subtotal,
        discount_total=discount_total,
        taxable_amount=taxable,
        cgst_amount=tax.cgst_amount,
        sgst_amount=tax.sgst_amount,
        igst_amount=tax.igst_amount,
        tax_total=tax.total_tax,
        loyalty_discount=loyalty_discount,
        wallet_used=wallet_used,
        tip_amount=tip_amount,
        grand_total=grand_total,
        amount_paid=amount_paid,
        amount_due=amount_due,
    )

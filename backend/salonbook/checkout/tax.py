# Overview: GST split for a single line item (CGST+SGST intra-state, IGST inter-state).

from __future__ import annotations

from decimal import Decimal

from .errors import CheckoutValidationError
from .money import ZERO, HUNDRED, money
from .types import TaxBreakdown


def compute_tax(taxable_base: Decimal, tax_rate: Decimal, is_igst: bool) -> TaxBreakdown:
    """
    Compute the GST breakdown for one taxable amount.

    Intra-state: CGST and SGST each at half the rate, each rounded on its own.
    Inter-state: a single IGST at the full rate.

    Amounts are rounded half-up to paise per item, so an invoice may drift
    by a paisa from a rate applied to its grand taxable total.
    """
    if taxable_base < 0:
        raise CheckoutValidationError(
            "Taxable amount cannot be negative",
            code="NEGATIVE_TAXABLE_BASE",
            details={"taxable_base": str(taxable_base)},
        )
    if tax_rate < 0 or tax_rate > HUNDRED:
        raise CheckoutValidationError(
            "Tax rate must be between 0 and 100",
            code="INVALID_TAX_RATE",
            details={"tax_rate": str(tax_rate)},
        )

    if is_igst:
        igst_amount = money(taxable_base * tax_rate / HUNDRED)
        return TaxBreakdown(
            igst_rate=tax_rate,
            igst_amount=igst_amount,
            total_tax=igst_amount,
        )

    half_rate = tax_rate / 2
    half_amount = money(taxable_base * half_rate / HUNDRED)
    return TaxBreakdown(
        cgst_rate=half_rate,
        cgst_amount=half_amount,
        sgst_rate=half_rate,
        sgst_amount=half_amount,
        total_tax=half_amount + half_amount,
    )


def sum_tax(breakdowns) -> TaxBreakdown:
    """Add up amounts across items; rates are not meaningful in a sum."""
    cgst = sgst = igst = ZERO
    for b in breakdowns:
        cgst += b.cgst_amount
        sgst += b.sgst_amount
        igst += b.igst_amount
    return TaxBreakdown(
        cgst_amount=cgst,
        sgst_amount=sgst,
        igst_amount=igst,
        total_tax=cgst + sgst + igst,
    )

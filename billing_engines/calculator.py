"""
Monetary Calculator - Invoice totals from line items.

Pure functions with no I/O. Accumulation is exact (Decimal); each output
field is rounded once, ROUND_HALF_UP to the currency's minor unit, and the
total is derived from the rounded components:

    line_total = quantity x unit_price
    discount   = line_total x discount_rate
    tax        = (line_total - discount) x tax_rate

    subtotal        = round(sum(line_total))
    discount_amount = round(sum(discount))
    tax_amount      = round(sum(tax))
    total_amount    = round(subtotal - discount_amount + tax_amount)

Usage:
    from billing_engines.calculator import calculate_totals

    totals = calculate_totals(invoice.items, "USD")
    print(totals.total_amount)  # Money: 7337.81 USD
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from billing_engines.tracer import traced_engine
from billing_kernel.domain.models import LineItem
from billing_kernel.domain.values import Currency, Money
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.calculator")


@dataclass(frozen=True)
class InvoiceTotals:
    """Rounded monetary totals for a set of line items."""

    subtotal: Money
    discount_amount: Money
    tax_amount: Money
    total_amount: Money

    @property
    def currency(self) -> Currency:
        return self.subtotal.currency

    @property
    def net_amount(self) -> Money:
        """Subtotal after discounts, before tax."""
        return self.subtotal - self.discount_amount


@traced_engine("calculator", "1.0", fingerprint_fields=("items", "currency"))
def calculate_totals(
    items: Sequence[LineItem],
    currency: str | Currency = "USD",
) -> InvoiceTotals:
    """
    Compute subtotal, discount, tax and total for line items.

    Args:
        items: Line items carrying quantity, unit price and optional
            discount/tax rate fractions.
        currency: Currency the amounts are expressed in.

    Returns:
        InvoiceTotals with every field rounded to the currency's minor unit.
    """
    subtotal = Decimal("0")
    discount = Decimal("0")
    tax = Decimal("0")

    for item in items:
        line_total = item.quantity * item.unit_price
        item_discount = line_total * item.discount_rate
        discounted = line_total - item_discount
        item_tax = discounted * item.tax_rate

        subtotal += line_total
        discount += item_discount
        tax += item_tax

    rounded_subtotal = Money.of(subtotal, currency).round()
    rounded_discount = Money.of(discount, currency).round()
    rounded_tax = Money.of(tax, currency).round()
    total = (rounded_subtotal - rounded_discount + rounded_tax).round()

    logger.debug("totals_calculated", extra={
        "item_count": len(items),
        "currency": str(rounded_subtotal.currency),
        "subtotal": str(rounded_subtotal.amount),
        "discount_amount": str(rounded_discount.amount),
        "tax_amount": str(rounded_tax.amount),
        "total_amount": str(total.amount),
    })

    return InvoiceTotals(
        subtotal=rounded_subtotal,
        discount_amount=rounded_discount,
        tax_amount=rounded_tax,
        total_amount=total,
    )


def round_money(
    amount: Decimal, currency: str | Currency = "USD", rounding: str = ROUND_HALF_UP,
) -> Decimal:
    """Round a raw Decimal to the currency's minor unit (ROUND_HALF_UP by default)."""
    return Money.of(amount, currency).round(rounding).amount

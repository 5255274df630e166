"""Bill totals.

Rounding follows the till: the subtotal is rounded to the currency quantum
*before* tax is applied, then tax and the grand total are each rounded
half-up to the same quantum. Line totals keep four decimal places.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal

from backend.app.core.config import settings
from backend.app.schemas.billing import BillTotals, LineItem, PricedLine
from backend.app.services.errors import InvalidBillAmount

Q = Decimal("0.0001")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def round_currency(amount: Decimal, quantum: Decimal | None = None) -> Decimal:
    return amount.quantize(quantum or settings.CURRENCY_QUANTUM, rounding=ROUND_HALF_UP)


def calculate_bill_totals(
    items: Sequence[LineItem],
    tax_percent: Decimal,
    discount_amount: Decimal = ZERO,
    quantum: Decimal | None = None,
) -> BillTotals:
    """Price a cart.

    Raises ``InvalidBillAmount`` for an out-of-range tax rate, a negative
    discount, or a total that is not strictly positive.
    """
    quantum = quantum or settings.CURRENCY_QUANTUM
    if not items:
        raise InvalidBillAmount("Cart must contain at least one item")
    if tax_percent < ZERO or tax_percent > settings.MAX_TAX_PERCENT:
        raise InvalidBillAmount(
            f"Tax percent {tax_percent} is outside 0-{settings.MAX_TAX_PERCENT}",
            tax_percent=str(tax_percent),
        )
    if discount_amount < ZERO:
        raise InvalidBillAmount(
            "Discount cannot be negative", discount_amount=str(discount_amount)
        )

    lines = [
        PricedLine(
            item_id=item.item_id,
            name=item.name,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total_price=(item.unit_price * item.quantity).quantize(Q, rounding=ROUND_HALF_UP),
        )
        for item in items
    ]

    subtotal = round_currency(sum((item.unit_price * item.quantity for item in items), ZERO), quantum)
    tax_amount = round_currency(subtotal * tax_percent / HUNDRED, quantum)
    discount = round_currency(discount_amount, quantum)
    total = round_currency(subtotal + tax_amount - discount, quantum)

    if total <= ZERO:
        raise InvalidBillAmount(
            f"Bill total must be greater than zero (got {total})",
            subtotal=str(subtotal),
            tax_amount=str(tax_amount),
            discount_amount=str(discount),
            total_amount=str(total),
        )

    return BillTotals(
        subtotal=subtotal,
        tax_percent=tax_percent,
        tax_amount=tax_amount,
        discount_amount=discount,
        total_amount=total,
        lines=lines,
    )

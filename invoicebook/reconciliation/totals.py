"""Tax-exclusive (HT) amounts for line items

Every HT computation in the code base goes through ``item_ht`` so that
deduplication checks, validation and allocation never disagree.
"""

from decimal import Decimal
from typing import Iterable

from invoicebook.models.invoice import LineItem, TaxBasis

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def item_ht(item: LineItem) -> Decimal:
    """
    Tax-exclusive contribution of a single line item.

    A tax-inclusive total (``tax_basis == INCLUSIVE``) is deflated with the
    item's tax rate. Anything else is ``unit_price * quantity`` with
    quantity defaulting to 1 and unit price to 0. Missing fields never raise.
    A tax rate of -100% or below cannot deflate a total and is handled like
    a missing total. The result is not rounded.
    """
    if item.tax_basis is TaxBasis.INCLUSIVE and item.total_price:
        divisor = ONE + (item.tax_rate or ZERO) / HUNDRED
        if divisor > ZERO:
            return item.total_price / divisor

    quantity = item.quantity if item.quantity is not None else ONE
    unit_price = item.unit_price if item.unit_price is not None else ZERO
    return unit_price * quantity


def total_ht(items: Iterable[LineItem]) -> Decimal:
    """Sum of ``item_ht`` over items, unrounded"""
    return sum((item_ht(item) for item in items), ZERO)

"""Decimal wire serialization utilities

OCR/LLM output is loosely typed: amounts arrive as numbers, numeric strings,
empty strings, or garbage. Parsing is lenient and never raises.
"""

from decimal import MAX_EMAX, MAX_PREC, Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from typing import Any, Optional
import logging

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def decimal_to_wire(d: Optional[Decimal]) -> Optional[str]:
    """
    Convert Decimal to wire-safe string representation.

    Args:
        d: Decimal value or None

    Returns:
        String representation without scientific notation, or None

    Examples:
        >>> decimal_to_wire(Decimal("123.45"))
        '123.45'
        >>> decimal_to_wire(Decimal("20.000"))
        '20'
        >>> decimal_to_wire(None)
    """
    if d is None:
        return None

    s = format(d, 'f')
    if '.' in s:
        s = s.rstrip('0').rstrip('.')
    if s in ('', '-0'):
        return '0'
    return s


def wire_to_decimal(x: Any) -> Optional[Decimal]:
    """
    Parse wire value to Decimal safely.

    Args:
        x: Wire value (None, str, int, float, or Decimal)

    Returns:
        Finite Decimal value, or None when the value is missing or not numeric

    Examples:
        >>> wire_to_decimal("123.45")
        Decimal('123.45')
        >>> wire_to_decimal("12,5")
        Decimal('12.5')
        >>> wire_to_decimal("n/a")
        >>> wire_to_decimal(True)
    """
    if x is None or isinstance(x, bool):
        return None

    if isinstance(x, Decimal):
        return x if x.is_finite() else None

    if isinstance(x, str):
        x = x.strip().replace(" ", "").replace("\u00a0", "")
        if x == "":
            return None
        # French-formatted amounts use a decimal comma
        if "," in x and "." not in x:
            x = x.replace(",", ".")

    try:
        # Always convert via string to avoid float precision issues
        value = Decimal(str(x))
    except (InvalidOperation, ValueError, TypeError) as e:
        logger.warning(f"Failed to parse value as Decimal: {x!r}, error: {e}")
        return None

    if not value.is_finite():
        logger.warning(f"Ignoring non-finite numeric value: {x!r}")
        return None
    return value


def quantize_fixed(d: Decimal, exp: Decimal) -> Decimal:
    """
    Round half-up to the exponent of ``exp``, whatever the magnitude of ``d``.

    Misread OCR digits can produce values such as ``1e30`` whose quantized
    form needs more than the default context precision.
    """
    with localcontext() as ctx:
        ctx.prec = min(MAX_PREC, max(ctx.prec, d.adjusted() - exp.as_tuple().exponent + 2))
        ctx.Emax = min(MAX_EMAX, max(ctx.Emax, d.adjusted() + 1))
        return d.quantize(exp, rounding=ROUND_HALF_UP)


def quantize_money(d: Decimal) -> Decimal:
    """Round a monetary amount half-up to cents (presentation/comparison only)"""
    return quantize_fixed(d, CENT)

"""
Fixed-point helpers for money and stock quantities.

Money carries 2 decimal places, stock quantities 3. Rounding is half-up
(away from zero for negatives), applied at aggregation points only.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

CENT = Decimal("0.01")
MILLI = Decimal("0.001")
ZERO = Decimal("0")
HUNDRED = Decimal("100")

# Adjustments smaller than this are treated as no-ops by the stock ledger.
QTY_EPSILON = Decimal("0.0001")


def to_decimal(value, field: str | None = None) -> Decimal:
    """
    Coerce ints, strings, floats and None into Decimal (None -> 0).

    Raises ValidationError for anything that is not a finite number.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            if isinstance(value, float):
                # repr() keeps 0.1 as "0.1" instead of the binary expansion
                result = Decimal(repr(value))
            else:
                result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError(f"{value!r} is not a valid number.", field=field) from exc
    if not result.is_finite():
        raise ValidationError(f"{value!r} is not a valid number.", field=field)
    return result


def _quantize(value, exp: Decimal, field: str | None) -> Decimal:
    number = to_decimal(value, field)
    try:
        return number.quantize(exp, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        # Too many digits for the context precision.
        raise ValidationError(f"{value!r} is out of range.", field=field) from exc


def round_money(value, field: str | None = None) -> Decimal:
    return _quantize(value, CENT, field)


def round_qty(value, field: str | None = None) -> Decimal:
    return _quantize(value, MILLI, field)

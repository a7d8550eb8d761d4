"""Fixed-point helpers for 18-decimal integer arithmetic.

Every function is stateless and operates on plain Python ints.

Division truncates toward zero (Solidity semantics). This differs from Python's
`//`, which floors toward -inf, so negative intermediates go through
`div_trunc()` instead of the operator.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, localcontext

UNIT: int = 10**18
SECONDS_PER_DAY: int = 86_400


def abs_val(x: int) -> int:
    """Absolute value of *x*."""
    return x if x >= 0 else -x


def div_trunc(a: int, b: int) -> int:
    """Integer division rounding toward zero."""
    if b == 0:
        raise ZeroDivisionError("fixed-point division by zero")
    q = abs_val(a) // abs_val(b)
    return q if (a >= 0) == (b > 0) else -q


def multiply_decimal(x: int, y: int) -> int:
    """``x * y / 1e18`` truncated toward zero."""
    return div_trunc(x * y, UNIT)


def divide_decimal(x: int, y: int) -> int:
    """``x * 1e18 / y`` truncated toward zero."""
    return div_trunc(x * UNIT, y)


def mul_div(a: int, b: int, denominator: int) -> int:
    """``a * b / denominator`` with a single truncation."""
    return div_trunc(a * b, denominator)


def clamp(x: int, lo: int, hi: int) -> int:
    if lo > hi:
        raise ValueError(f"clamp bounds inverted: {lo} > {hi}")
    return max(lo, min(hi, x))


def to_wad(value: int | str) -> int:
    """Parse a human decimal (``"0.003"``) or an int already in wad units.

    Strings are parsed exactly; ints pass through unchanged.
    """
    if isinstance(value, bool):
        raise TypeError("fixed-point value must be int or decimal string, got bool")
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise TypeError(f"fixed-point value must be int or decimal string, got {type(value).__name__}")
    try:
        d = Decimal(value.strip())
    except InvalidOperation as exc:
        raise ValueError(f"invalid decimal literal: {value!r}") from exc
    if not d.is_finite():
        raise ValueError(f"non-finite decimal literal: {value!r}")
    with localcontext() as ctx:
        ctx.prec = 96
        scaled = d * UNIT
    if scaled != scaled.to_integral_value():
        raise ValueError(f"more than 18 decimals: {value!r}")
    return int(scaled)


def from_wad(value: int) -> str:
    """Render a wad int as a decimal string (for logs and reports)."""
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs_val(value), UNIT)
    if frac == 0:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{frac:018d}".rstrip("0")

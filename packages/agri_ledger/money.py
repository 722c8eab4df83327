"""Minor/major currency unit conversion (kobo <-> naira).

This module is the only place in the package that scales currency by 100.
Normalizers convert minor-unit sources on the way in, and the statement
assembler formats major-unit values on the way out.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

MINOR_PER_MAJOR: int = 100

_CENT = Decimal("0.01")
_WHOLE = Decimal("1")
_SYMBOL = "₦"


def _as_decimal(value: object) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"invalid currency amount: {value!r}")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        # str() keeps the shortest repr so 0.1 does not become 0.1000000000000000055
        return Decimal(str(value))
    if isinstance(value, str):
        s = value.strip().replace(",", "")
        if not s:
            raise ValueError("currency amount is empty")
        try:
            return Decimal(s)
        except InvalidOperation as exc:
            raise ValueError(f"invalid currency amount: {value!r}") from exc
    raise ValueError(f"invalid currency amount: {value!r}")


def to_major(minor: object | None) -> Decimal:
    """Convert minor units (kobo) to major units (naira), 2dp half-up.

    ``None`` is treated as zero.
    """

    if minor is None:
        return Decimal("0.00")
    d = _as_decimal(minor)
    if not d.is_finite():
        raise ValueError(f"invalid currency amount: {minor!r}")
    return (d / MINOR_PER_MAJOR).quantize(_CENT, rounding=ROUND_HALF_UP)


def to_minor(major: object) -> int:
    """Convert major units (naira) to whole minor units (kobo), half-up."""

    d = _as_decimal(major)
    if not d.is_finite():
        raise ValueError(f"invalid currency amount: {major!r}")
    return int((d * MINOR_PER_MAJOR).quantize(_WHOLE, rounding=ROUND_HALF_UP))


def quantize_major(major: object) -> Decimal:
    """Parse an already-major amount and pin it to 2dp without scaling."""

    d = _as_decimal(major)
    if not d.is_finite():
        raise ValueError(f"invalid currency amount: {major!r}")
    return d.quantize(_CENT, rounding=ROUND_HALF_UP)


def format_naira(major: Decimal | None) -> str:
    """Render a major-unit amount for reports, e.g. ``"₦1,234.50"``.

    Negative amounts keep a leading minus (``"-₦20.00"``); ``None`` renders as
    zero.
    """

    if major is None:
        major = Decimal("0")
    q = quantize_major(major)
    sign = "-" if q < 0 else ""
    return f"{sign}{_SYMBOL}{abs(q):,.2f}"


__all__ = [
    "MINOR_PER_MAJOR",
    "format_naira",
    "quantize_major",
    "to_major",
    "to_minor",
]

"""Reusable money helpers for contest settlement."""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation

MoneyValue = int | float | str | Decimal

__all__ = [
    "MoneyValue",
    "to_money",
    "round_to_step",
    "ceil_to_step",
    "floor_to_step",
    "split_evenly",
]


def to_money(value: MoneyValue) -> Decimal:
    """Coerce a numeric value into a :class:`~decimal.Decimal`."""

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise TypeError("Boolean values are not amounts")
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    else:
        stripped = str(value).strip()
        if not stripped:
            raise ValueError("Empty amount")
        try:
            result = Decimal(stripped)
        except InvalidOperation as exc:
            raise ValueError(f"Invalid amount: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Amount must be finite: {value!r}")
    return result


def _to_step(value: MoneyValue, step: MoneyValue, rounding: str) -> Decimal:
    amount = to_money(value)
    increment = to_money(step)
    if increment <= 0:
        raise ValueError("step must be positive")
    units = (amount / increment).to_integral_value(rounding=rounding)
    return units * increment


def round_to_step(value: MoneyValue, step: MoneyValue = 5) -> Decimal:
    """Round to the nearest multiple of ``step`` (halves round up)."""

    return _to_step(value, step, ROUND_HALF_UP)


def ceil_to_step(value: MoneyValue, step: MoneyValue = 10) -> Decimal:
    """Round up to a multiple of ``step``."""

    return _to_step(value, step, ROUND_CEILING)


def floor_to_step(value: MoneyValue, step: MoneyValue = 5) -> Decimal:
    """Round down to a multiple of ``step``."""

    return _to_step(value, step, ROUND_FLOOR)


def split_evenly(
    amount: MoneyValue, parts: int, *, minor_unit: MoneyValue = Decimal("0.01")
) -> list[Decimal]:
    """Split ``amount`` into ``parts`` shares that sum exactly to ``amount``.

    Shares differ by at most one ``minor_unit``; the larger shares come first.
    """

    if parts <= 0:
        raise ValueError("parts must be positive")
    total = to_money(amount)
    unit = to_money(minor_unit)
    if unit <= 0:
        raise ValueError("minor_unit must be positive")
    units = total / unit
    if units != units.to_integral_value():
        raise ValueError(f"{total} is not a whole number of {unit} units")
    base, remainder = divmod(int(units), parts)
    return [(base + (1 if index < remainder else 0)) * unit for index in range(parts)]

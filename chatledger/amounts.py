"""
Amount Parsing and Rounding

People type money the way they say it: "25rb", "1,5jt", "2.500.000",
"12k". The model is asked to normalize amounts itself, but its output and
every free-text answer in onboarding go through parse_amount so the
ledger only ever sees plain Decimals.

Conventions (Indonesian rupiah style):
- "." groups thousands, "," is the decimal separator
- rb / ribu / k / thousand = x 1,000
- jt / juta / m / million = x 1,000,000
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union


_MULTIPLIERS = {
    "k": Decimal(1_000),
    "rb": Decimal(1_000),
    "ribu": Decimal(1_000),
    "thousand": Decimal(1_000),
    "jt": Decimal(1_000_000),
    "juta": Decimal(1_000_000),
    "m": Decimal(1_000_000),
    "million": Decimal(1_000_000),
}

_AMOUNT_PATTERN = re.compile(
    r"^(?:rp\.?|idr)?\s*(?P<number>[0-9][0-9.,]*)\s*(?P<unit>[a-z]+)?$"
)


class AmountParseError(ValueError):
    """Text could not be read as an amount."""
    pass


def _normalize_number(raw: str) -> Decimal:
    """
    Turn "2.500.000" / "1,5" / "2.500,75" into a Decimal.

    A single "." followed by exactly three digits is a thousands
    separator; any other single "." is a decimal point (model output
    like "12.5").
    """
    if "," in raw:
        raw = raw.replace(".", "").replace(",", ".")
    elif raw.count(".") > 1:
        raw = raw.replace(".", "")
    elif raw.count(".") == 1:
        whole, frac = raw.split(".")
        if len(frac) == 3 and whole:
            raw = whole + frac
    try:
        return Decimal(raw)
    except InvalidOperation as e:
        raise AmountParseError(f"Not a number: {raw!r}") from e


def parse_amount(value: Union[str, int, float, Decimal]) -> Decimal:
    """
    Parse an amount phrase into a Decimal.

    Examples:
        parse_amount("25rb")      -> Decimal("25000")
        parse_amount("1,5jt")     -> Decimal("1500000")
        parse_amount("2.500.000") -> Decimal("2500000")
        parse_amount(12.5)        -> Decimal("12.5")

    Raises:
        AmountParseError: If the value isn't an amount
    """
    if isinstance(value, bool):
        raise AmountParseError("Booleans are not amounts")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))

    text = value.strip().lower().replace(" ", "")
    match = _AMOUNT_PATTERN.match(text)
    if not match:
        raise AmountParseError(f"Not an amount: {value!r}")

    number = _normalize_number(match.group("number"))
    unit = match.group("unit")
    if unit:
        if unit not in _MULTIPLIERS:
            raise AmountParseError(f"Unknown amount unit: {unit!r}")
        number *= _MULTIPLIERS[unit]
    return number


def round_to_unit(amount: Decimal, unit: int = 1000) -> Decimal:
    """Round to the nearest multiple of unit, halves away from zero."""
    step = Decimal(unit)
    return (amount / step).quantize(Decimal(1), rounding=ROUND_HALF_UP) * step


def format_amount(amount: Decimal) -> str:
    """Render 2500000 as "2,500,000" (no currency, no decimals if whole)."""
    if amount == amount.to_integral_value():
        return f"{int(amount):,}"
    return f"{amount:,.2f}"

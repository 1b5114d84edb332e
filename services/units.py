"""Conversion between integer base units and decimal token amounts."""
from decimal import Decimal, InvalidOperation, localcontext
from typing import Any, Union

Amount = Union[str, int, Decimal]


def format_units(value: int, decimals: int = 18) -> str:
    """
    Render an integer amount of base units as a decimal string.

    >>> format_units(1500000000000000000)
    '1.5'
    >>> format_units(0)
    '0.0'
    """
    value = int(value)
    sign = "-" if value < 0 else ""
    whole, fraction = divmod(abs(value), 10 ** decimals)
    if decimals == 0:
        return f"{sign}{whole}.0"
    fraction_text = str(fraction).rjust(decimals, "0").rstrip("0") or "0"
    return f"{sign}{whole}.{fraction_text}"


def parse_units(amount: Amount, decimals: int = 18) -> int:
    """
    Convert a decimal token amount into integer base units.

    Raises:
        ValueError: If the amount is not a finite number or has more
            fractional digits than the token supports
    """
    try:
        quantity = Decimal(str(amount).strip())
    except InvalidOperation:
        raise ValueError(f"Invalid token amount: {amount!r}")
    if not quantity.is_finite():
        raise ValueError(f"Invalid token amount: {amount!r}")

    with localcontext() as ctx:
        ctx.prec = 120
        scaled = quantity * (Decimal(10) ** decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(f"Too many decimal places for {decimals} decimals: {amount}")
        return int(scaled)


def to_token_amount(value: Any, decimals: int = 18) -> Decimal:
    """
    Normalise a decrypted value to a token amount.

    Integers are base units; floats and numeric strings are already token
    units; hex strings are base units.
    """
    if isinstance(value, bool):
        raise ValueError("Boolean is not a token amount")
    if isinstance(value, int):
        return Decimal(format_units(value, decimals))
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, Decimal):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            return Decimal(format_units(int(text, 16), decimals))
        try:
            return Decimal(text)
        except InvalidOperation:
            raise ValueError(f"Unrecognised decrypted value: {value!r}")
    raise ValueError(f"Unrecognised decrypted value type: {type(value).__name__}")

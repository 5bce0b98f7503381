"""
Precision constants and helpers for StakePool.

Every on-ledger amount is an integer count of the asset's smallest unit.
The staked asset follows the ether convention of 18 decimals:

    1 unit = 1_000_000_000_000_000_000 base units

Conversions go through ``decimal.Decimal`` so that "4.9" becomes exactly
4_900_000_000_000_000_000 and never picks up binary floating-point dust.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext

# Decimal places of the staked asset.
STAKED_ASSET_DECIMALS: int = 18

# Base units per whole staked-asset unit.
BASE_UNITS_PER_UNIT: int = 10 ** STAKED_ASSET_DECIMALS

# Enough digits for 256-bit integers times an 18-decimal rate.
_DECIMAL_PRECISION: int = 120


def to_base_units(value: str | int | Decimal, decimals: int = STAKED_ASSET_DECIMALS) -> int:
    """Convert a human amount to an integer count of base units.

    Digits beyond ``decimals`` are truncated.

    >>> to_base_units("4.9")
    4900000000000000000
    >>> to_base_units("1.5", 6)
    1500000
    """
    if isinstance(value, float):
        raise TypeError("pass amounts as str, int or Decimal, not float")
    try:
        d = Decimal(value)
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"not a number: {value!r}") from exc
    if not d.is_finite():
        raise ValueError(f"amount must be finite: {value!r}")
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        scaled = (d * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN)
    return int(scaled)


def from_base_units(amount: int, decimals: int = STAKED_ASSET_DECIMALS) -> Decimal:
    """Convert an integer base-unit count back to an exact ``Decimal``."""
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        return Decimal(amount) / (Decimal(10) ** decimals)


def multiply_rate(amount: int, rate: Decimal) -> int:
    """Return ``amount * rate`` floored to an integer number of base units.

    The product is computed exactly at ``_DECIMAL_PRECISION`` digits; only
    the final fractional base unit is discarded.
    """
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        product = Decimal(amount) * rate
        return int(product.to_integral_value(rounding=ROUND_DOWN))


def format_amount(amount: int, symbol: str = "", decimals: int = STAKED_ASSET_DECIMALS) -> str:
    """Human-readable amount without trailing zeros."""
    text = f"{from_base_units(amount, decimals):f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return f"{text} {symbol}".rstrip()

"""Currency minor units and rounding."""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

# ISO 4217 minor units for currencies that do not use two decimals
_MINOR_UNITS = {"JPY": 0, "KRW": 0, "VND": 0, "BHD": 3, "KWD": 3}


def minor_unit(currency: str) -> Decimal:
    """Smallest representable amount for a currency, e.g. Decimal('0.01')."""
    exponent = _MINOR_UNITS.get(currency.upper(), 2)
    return Decimal(1).scaleb(-exponent)


def quantize_money(amount: Decimal, currency: str) -> Decimal:
    return amount.quantize(minor_unit(currency), rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Amount in the currency's smallest unit (satang, cents)."""
    return int((quantize_money(amount, currency) / minor_unit(currency)).to_integral_value(rounding=ROUND_HALF_UP))

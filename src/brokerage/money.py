"""Utilities for working with monetary values in the brokerage.

Fiat amounts are stored as integer cents, Bitcoin amounts as integer
satoshis.  Everything user-facing passes through the helpers below.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP
from typing import Optional, Union

CENT = Decimal("0.01")
SATOSHI = Decimal("0.00000001")
SATS_PER_BTC = 100_000_000

AmountLike = Union[Decimal, int, float, str]

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "CAD": "C$",
    "AUD": "A$",
    "CHF": "Fr",
    "NGN": "₦",
    "ZAR": "R",
    "INR": "₹",
}


def to_decimal(value: AmountLike, *, places: Decimal = CENT) -> Decimal:
    """Convert ``value`` to a :class:`~decimal.Decimal` quantized to ``places``."""

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        result = Decimal(value.strip().replace(",", ""))
    else:  # pragma: no cover
        raise TypeError(f"Unsupported amount type: {type(value)!r}")

    return result.quantize(places, rounding=ROUND_HALF_UP)


def parse_amount(raw: object, *, places: Decimal = CENT) -> Optional[Decimal]:
    """Parse a form value, returning ``None`` for blanks and garbage."""

    if raw is None:
        return None
    if isinstance(raw, str) and not raw.strip():
        return None
    try:
        value = to_decimal(raw, places=places)  # type: ignore[arg-type]
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not value.is_finite():
        return None
    return value


def to_cents(value: AmountLike) -> int:
    return int(to_decimal(value) * 100)


def to_sats(value: AmountLike) -> int:
    return int(to_decimal(value, places=SATOSHI) * SATS_PER_BTC)


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents or 0) / 100).quantize(CENT)


def sats_to_btc(sats: int) -> Decimal:
    return (Decimal(sats or 0) / SATS_PER_BTC).quantize(SATOSHI)


def to_minor(value: AmountLike, asset: str) -> int:
    """Convert a major-unit amount for ``asset`` (``FIAT`` or ``BTC``)."""

    return to_sats(value) if str(asset) == "BTC" else to_cents(value)


def currency_symbol(currency: str) -> str:
    return CURRENCY_SYMBOLS.get((currency or "USD").upper(), "")


def format_currency(cents: int, currency: str = "USD") -> str:
    """Return ``cents`` as a display string (e.g. ``$1,234.50``)."""

    amount = cents_to_decimal(cents)
    code = (currency or "USD").upper()
    symbol = currency_symbol(code)
    sign = "-" if amount < 0 else ""
    if symbol:
        return f"{sign}{symbol}{abs(amount):,.2f}"
    return f"{sign}{abs(amount):,.2f} {code}"


def format_btc(sats: int) -> str:
    value = sats_to_btc(sats).normalize()
    text = f"{value:f}"
    if "." not in text:
        text += ".0"
    return f"{text} BTC"


def format_amount(minor: int, asset: str, currency: str = "USD") -> str:
    if str(asset) == "BTC":
        return format_btc(minor)
    return format_currency(minor, currency)


def fiat_to_sats(cents: int, price: Decimal) -> int:
    """Convert fiat cents to satoshis at ``price`` (fiat per BTC), rounding down."""

    if price <= 0:
        return 0
    btc = (Decimal(cents) / 100) / price
    return int((btc * SATS_PER_BTC).to_integral_value(rounding=ROUND_DOWN))


def sats_to_cents(sats: int, price: Decimal) -> int:
    """Convert satoshis to fiat cents at ``price``, rounding down."""

    if price <= 0:
        return 0
    fiat = (Decimal(sats) / SATS_PER_BTC) * price
    return int((fiat * 100).to_integral_value(rounding=ROUND_DOWN))


def price_to_cents(price: Decimal) -> int:
    return int((price * 100).to_integral_value(rounding=ROUND_HALF_UP))


__all__ = [
    "CENT",
    "SATOSHI",
    "SATS_PER_BTC",
    "AmountLike",
    "to_decimal",
    "parse_amount",
    "to_cents",
    "to_sats",
    "cents_to_decimal",
    "sats_to_btc",
    "to_minor",
    "currency_symbol",
    "format_currency",
    "format_btc",
    "format_amount",
    "fiat_to_sats",
    "sats_to_cents",
    "price_to_cents",
]

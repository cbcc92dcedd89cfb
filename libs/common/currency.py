"""Money helpers for backend amounts.

Display / domain unit: roubles as ``Decimal`` (e.g. Decimal("1500.00")).
Wire unit: the backend sends either a plain number, a numeric string, or a
money object ``{"amount": <kopecks>, "currency": "RUB"}``.

Conversion
----------
Kopecks ÷ 100 → Roubles
Roubles × 100 → Kopecks
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

# ─── constants ───────────────────────────────────────────────────────────────

KOPECKS_PER_ROUBLE: int = 100
ZERO = Decimal("0")

# Numeric prefix of a string amount: "1500.50 ₽" reads as 1500.50.
LEADING_NUMBER = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


# ─── conversion helpers ───────────────────────────────────────────────────────


def kopecks_to_roubles(kopecks: int) -> Decimal:
    """Convert kopecks to roubles. 100 kopecks = 1 ₽."""
    return Decimal(kopecks) / KOPECKS_PER_ROUBLE


def roubles_to_kopecks(roubles: Decimal) -> int:
    """Convert roubles to kopecks (round half-up)."""
    kopecks = Decimal(roubles) * KOPECKS_PER_ROUBLE
    return int(kopecks.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def money_to_decimal(value: Any) -> Decimal:
    """Read any backend money representation as roubles.

    Unknown or unparsable values read as zero, matching how the storefront
    renders a missing price.
    """
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        match = LEADING_NUMBER.match(value.strip())
        return Decimal(match.group()) if match else ZERO
    if isinstance(value, dict):
        for key in ("amount", "totalAmount"):
            minor = value.get(key)
            if isinstance(minor, (int, float)) and not isinstance(minor, bool):
                return Decimal(str(minor)) / KOPECKS_PER_ROUBLE
    return ZERO


def format_roubles(value: Decimal) -> str:
    """Render an amount the way the storefront shows it: ``3 500 ₽``."""
    quantized = Decimal(value).quantize(Decimal("0.01"))
    if quantized == quantized.to_integral_value():
        text = f"{int(quantized):,}"
    else:
        text = f"{quantized:,.2f}"
    return f"{text.replace(',', ' ')} ₽"

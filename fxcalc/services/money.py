"""Money / rounding helpers.

Centralized so the calculator ledger, conversions and history use identical
rounding and display semantics.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP


def round2(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def format_amount(value: float, places: int = 2) -> str:
    """Fixed-point text used in ledger details (``1234.5`` -> ``"1234.50"``)."""
    return f"{value:.{places}f}"


def format_number(value: float) -> str:
    """Shortest text for a number: ``10.0`` -> ``"10"``, ``0.064`` -> ``"0.064"``."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)

"""Supported currencies and calculation step kinds.

The registry is an immutable mapping built once at import time and handed to
whatever needs lookups (rate repository, routers); nothing mutates it.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional

from .currency import Currency


class StepType(str, Enum):
    INITIAL = "initial"
    EXCHANGE_RATE = "exchange_rate"
    PERCENTAGE_REDUCTION = "percentage_reduction"
    FIXED_REDUCTION = "fixed_reduction"
    ADDITION = "addition"
    CUSTOM = "custom"


STEP_TYPE_LABELS: Mapping[str, str] = MappingProxyType(
    {
        StepType.INITIAL.value: "Initial Value (Required)",
        StepType.EXCHANGE_RATE.value: "Exchange Rate",
        StepType.PERCENTAGE_REDUCTION.value: "Percentage Reduction",
        StepType.FIXED_REDUCTION.value: "Fixed Reduction",
        StepType.ADDITION.value: "Addition",
        StepType.CUSTOM.value: "Custom",
    }
)

DEFAULT_SOURCE_CODE = "USD"
DEFAULT_TARGET_CODE = "BRL"


class CurrencyRegistry:
    """Read-only lookup table of supported currencies keyed by code."""

    def __init__(self, currencies: Iterable[Currency]):
        self._by_code: Mapping[str, Currency] = MappingProxyType(
            {c.code: c for c in currencies}
        )

    def all(self) -> List[Currency]:
        return list(self._by_code.values())

    def codes(self) -> List[str]:
        return list(self._by_code)

    def get(self, code: Optional[str]) -> Optional[Currency]:
        if not code:
            return None
        return self._by_code.get(code.strip().upper())

    def is_supported(self, code: Optional[str]) -> bool:
        return self.get(code) is not None

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and self.is_supported(code)

    def __len__(self) -> int:
        return len(self._by_code)


CURRENCIES = CurrencyRegistry(
    [
        Currency(code="USD", symbol="$", name="US Dollar"),
        Currency(code="EUR", symbol="€", name="Euro"),
        Currency(code="BRL", symbol="R$", name="Brazilian Real"),
        Currency(code="GBP", symbol="£", name="British Pound"),
        Currency(code="JPY", symbol="¥", name="Japanese Yen"),
    ]
)

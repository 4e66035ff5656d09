from __future__ import annotations

"""Rate provider abstraction.

Every provider client speaks in registry ``Currency`` objects and returns
``ExchangeRate`` snapshots; the repository and routers only depend on this
interface so implementations can be swapped by configuration.
"""
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, List, Optional

from fxcalc.core.errors import NotFoundError
from fxcalc.models.constants import CURRENCIES, CurrencyRegistry
from fxcalc.models.currency import Currency, ExchangeRate

if TYPE_CHECKING:  # pragma: no cover
    from fxcalc.core.config import Settings


class ExchangeRateApiClient(ABC):
    name: str = "base"

    def __init__(self, registry: CurrencyRegistry = CURRENCIES):
        self.registry = registry

    @classmethod
    def from_settings(cls, settings: "Settings", **overrides: Any) -> "ExchangeRateApiClient":
        return cls(**overrides)

    def default_base(self) -> Currency:
        usd = self.registry.get("USD")
        if usd is None:
            raise NotFoundError("USD currency not found in registry")
        return usd

    @abstractmethod
    async def get_exchange_rate(self, source: Currency, target: Currency) -> ExchangeRate:
        """Return the current source -> target rate."""
        raise NotImplementedError

    @abstractmethod
    async def get_all_rates(self, base: Optional[Currency] = None) -> List[ExchangeRate]:
        """Return rates from ``base`` (USD when omitted) to every other supported currency."""
        raise NotImplementedError

    async def get_usd_to_brl_rate(self) -> float:
        usd = self.registry.get("USD")
        brl = self.registry.get("BRL")
        if usd is None or brl is None:
            raise NotFoundError(
                "USD or BRL currency not found in registry",
                {"method_name": "get_usd_to_brl_rate"},
            )
        rate = await self.get_exchange_rate(usd, brl)
        return rate.rate

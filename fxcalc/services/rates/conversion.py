from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from fxcalc.core.errors import ValidationError
from fxcalc.services.money import round2

from .cache_service import CurrencyLike, ExchangeRateRepository

"""Amount conversion on top of the rate repository.

Centralizes logic for converting an amount between two supported currencies.
Responsibilities:
    - Fetch the rate via the injected repository (cache + provider).
    - Apply rounding (round2) once, in a single place.
    - Return a simple immutable result object for clarity/testing.
"""

logger = logging.getLogger("fxcalc.rates")


@dataclass(frozen=True)
class ConversionResult:
    original_amount: float
    converted_amount: float
    rate: float
    source_currency: str
    target_currency: str


def _check_amount(amount: float) -> None:
    if amount is None or math.isnan(amount) or math.isinf(amount):
        raise ValidationError("Invalid amount: must be a number")
    if amount < 0:
        raise ValidationError("Invalid amount: must be non-negative")


class CurrencyConversionService:
    def __init__(self, repository: ExchangeRateRepository):
        self.repository = repository

    async def convert(
        self, amount: float, source: CurrencyLike, target: CurrencyLike
    ) -> ConversionResult:
        _check_amount(amount)
        rate = await self.repository.get_exchange_rate(source, target)
        pair = rate.currency_pair
        converted = round2(amount * rate.rate)
        logger.debug("converted %s %s -> %s %s", amount, pair.source.code, converted, pair.target.code)
        return ConversionResult(
            original_amount=amount,
            converted_amount=converted,
            rate=rate.rate,
            source_currency=pair.source.code,
            target_currency=pair.target.code,
        )

    async def convert_usd_to_brl(self, amount: float) -> float:
        _check_amount(amount)
        rate = await self.repository.get_usd_to_brl_rate()
        return round2(amount * rate)

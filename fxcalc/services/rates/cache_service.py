from __future__ import annotations

"""Exchange rate repository with a time-bounded cache.

Purpose:
    Front a provider client with an in-memory cache whose TTL is
    ``cache_duration`` seconds (EXCHANGE_RATE_CACHE_TTL / _REVALIDATE_SECONDS)
    and expose freshness metadata for display.

Design:
    - Entries are keyed by ``"{from}-{to}"``, ``"usd-brl-rate"`` or
      ``"all-exchange-rates-{base}"`` and hold the value plus the time it was
      fetched.
    - A read older than ``cache_duration`` seconds refetches before serving.
    - A fetch stores an immutable snapshot flagged ``from_cache=True``; later
      hits return that very object until it expires.
    - Provider failures propagate (already wrapped as ConversionError/ApiError
      by the client) and leave the cache untouched; no stale fallback.
    - No write lock: concurrent misses for one key may each call the provider.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Union

from fxcalc.core.config import Settings, get_settings
from fxcalc.core.errors import NotFoundError
from fxcalc.models.constants import CURRENCIES, CurrencyRegistry
from fxcalc.models.currency import Currency, ExchangeRate, ExchangeRateMetadata

from .base import ExchangeRateApiClient
from .providers import make_rate_client

logger = logging.getLogger("fxcalc.rates")

USD_BRL_KEY = "usd-brl-rate"
ALL_RATES_KEY = "all-exchange-rates"

CurrencyLike = Union[Currency, str]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _CacheEntry:
    value: Any
    fetched_at: datetime


class ExchangeRateRepository:
    """Cached rate lookups plus freshness bookkeeping."""

    def __init__(
        self,
        client: ExchangeRateApiClient,
        cache_duration: int = 3600,
        registry: CurrencyRegistry = CURRENCIES,
        clock: Clock = utc_now,
    ):
        if cache_duration <= 0:
            raise ValueError("cache_duration must be positive seconds")
        self.client = client
        self.cache_duration = cache_duration
        self.registry = registry
        self._clock = clock
        self._ttl = timedelta(seconds=cache_duration)
        self._cache: Dict[str, _CacheEntry] = {}
        # Freshness state
        self.last_cache_refresh_time: Optional[datetime] = None
        self.last_api_update_time: Optional[datetime] = None
        self.time_last_update_utc: Optional[str] = None
        self.time_next_update_utc: Optional[str] = None
        self.from_cache = False

    # Internal --------------------------------------------------
    def _resolve(self, currency: CurrencyLike) -> Currency:
        code = currency.code if isinstance(currency, Currency) else currency
        found = self.registry.get(code)
        if found is None:
            raise NotFoundError(
                f"Currency {code!r} is not supported",
                {"currency_code": code, "supported": self.registry.codes()},
            )
        return found

    def _is_entry_valid(self, entry: _CacheEntry) -> bool:
        return self._clock() - entry.fetched_at <= self._ttl

    def _lookup(self, key: str) -> Optional[Any]:
        entry = self._cache.get(key)
        if entry and self._is_entry_valid(entry):
            self.from_cache = True
            logger.debug("cache hit %s", key)
            return entry.value
        return None

    def _record_fetch(self, rate: ExchangeRate) -> datetime:
        now = self._clock()
        self.last_cache_refresh_time = now
        self.last_api_update_time = rate.last_api_update_time or rate.timestamp
        self.time_last_update_utc = rate.time_last_update_utc
        self.time_next_update_utc = rate.time_next_update_utc
        self.from_cache = False
        return now

    def _with_cache_fields(self, rate: ExchangeRate, refreshed: datetime, from_cache: bool) -> ExchangeRate:
        return rate.model_copy(
            update={
                "from_cache": from_cache,
                "last_cache_refresh_time": refreshed,
                "next_cache_refresh_time": refreshed + self._ttl,
            }
        )

    def _store(self, key: str, value: Any, fetched_at: datetime) -> None:
        self._cache[key] = _CacheEntry(value=value, fetched_at=fetched_at)

    # Public API -----------------------------------------------
    async def get_exchange_rate(self, source: CurrencyLike, target: CurrencyLike) -> ExchangeRate:
        src = self._resolve(source)
        tgt = self._resolve(target)
        key = f"{src.code}-{tgt.code}"
        cached = self._lookup(key)
        if cached is not None:
            return cached

        logger.info("cache miss - fetching exchange rate %s", key)
        fresh = await self.client.get_exchange_rate(src, tgt)
        refreshed = self._record_fetch(fresh)
        self._store(key, self._with_cache_fields(fresh, refreshed, True), refreshed)
        return self._with_cache_fields(fresh, refreshed, False)

    async def get_usd_to_brl_rate(self) -> float:
        cached = self._lookup(USD_BRL_KEY)
        if cached is not None:
            return cached

        logger.info("cache miss - fetching USD/BRL rate")
        usd = self._resolve("USD")
        brl = self._resolve("BRL")
        fresh = await self.client.get_exchange_rate(usd, brl)
        refreshed = self._record_fetch(fresh)
        self._store(USD_BRL_KEY, fresh.rate, refreshed)
        return fresh.rate

    async def get_all_rates(self, base: Optional[CurrencyLike] = None) -> List[ExchangeRate]:
        base_currency = self._resolve(base or "USD")
        key = f"{ALL_RATES_KEY}-{base_currency.code}"
        cached = self._lookup(key)
        if cached is not None:
            return list(cached)

        logger.info("cache miss - fetching all exchange rates for %s", base_currency.code)
        fresh = await self.client.get_all_rates(base_currency)
        if not fresh:
            self._store(key, (), self._clock())
            return []
        refreshed = self._record_fetch(fresh[0])
        self._store(
            key, tuple(self._with_cache_fields(r, refreshed, True) for r in fresh), refreshed
        )
        return [self._with_cache_fields(r, refreshed, False) for r in fresh]

    def get_exchange_rate_metadata(self) -> ExchangeRateMetadata:
        refreshed = self.last_cache_refresh_time or self._clock()
        return ExchangeRateMetadata(
            last_cache_refresh_time=refreshed,
            last_api_update_time=self.last_api_update_time,
            next_cache_refresh_time=refreshed + self._ttl,
            from_cache=self.from_cache,
            time_last_update_utc=self.time_last_update_utc,
            time_next_update_utc=self.time_next_update_utc,
        )

    def get_cache_config(self) -> Dict[str, int]:
        return {"revalidate_seconds": self.cache_duration}

    def invalidate(self) -> None:
        self._cache.clear()


def build_rate_repository(settings: Settings, **client_overrides: Any) -> ExchangeRateRepository:
    client = make_rate_client(settings.exchange_rate_api_provider, settings, **client_overrides)
    return ExchangeRateRepository(client, cache_duration=settings.exchange_rate_cache_ttl)


# Singleton dependency helper used by FastAPI DI
@lru_cache
def get_rate_repository() -> ExchangeRateRepository:
    return build_rate_repository(get_settings())

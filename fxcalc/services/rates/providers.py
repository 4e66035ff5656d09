from __future__ import annotations

"""Concrete exchange rate provider clients and factory.

'default'  -> exchangerate-api.com v6 (``{base}/{key}/pair/{from}/{to}`` and
              ``{base}/{key}/latest/{code}``), needs EXCHANGE_RATE_API_KEY.
'external' -> open.er-api.com (``{base}/latest/{code}``), keyless; pairs are
              read out of the ``rates`` map.
'mock'     -> static table for development and tests, no network.

HTTP clients route every call through their own ThrottledExecutor and retry
transient failures with exponential backoff before giving up.
"""
import asyncio
import logging
import random
from abc import abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type

import httpx

from fxcalc.core.config import Settings
from fxcalc.core.errors import ApiError, AppError, ConversionError, log_error
from fxcalc.models.constants import CURRENCIES, CurrencyRegistry
from fxcalc.models.currency import Currency, CurrencyPair, ExchangeRate
from fxcalc.services.http_client import SleepFn, ThrottledExecutor, get_json, with_retry

from .base import ExchangeRateApiClient

logger = logging.getLogger("fxcalc.rates")


def from_unix_timestamp(value: Any) -> Optional[datetime]:
    """Provider ``time_*_unix`` seconds -> aware UTC datetime (None when absent/invalid)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


class HttpRateClient(ExchangeRateApiClient):
    """Shared plumbing for providers reached over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str = "",
        timeout: float = 10.0,
        requests_per_second: float = 2.0,
        max_retries: int = 3,
        retry_initial_delay: float = 0.3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: SleepFn = asyncio.sleep,
        registry: CurrencyRegistry = CURRENCIES,
    ):
        super().__init__(registry)
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_initial_delay = retry_initial_delay
        self._transport = transport
        self._sleep = sleep
        self.throttle = ThrottledExecutor(requests_per_second, sleep=sleep)

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    async def _fetch(self, path: str, context: Dict[str, Any]) -> Dict[str, Any]:
        url = self._url(path)

        async def attempt() -> Dict[str, Any]:
            return await self.throttle.submit(
                lambda: get_json(
                    url, timeout=self.timeout, transport=self._transport, context=context
                )
            )

        data = await with_retry(
            attempt,
            max_retries=self.max_retries,
            initial_delay=self.retry_initial_delay,
            sleep=self._sleep,
        )
        if data.get("result") != "success":
            raise ApiError(
                f"API error: {data.get('result')}",
                None,
                400,
                {**context, "api_result": data.get("result"), "error_type": data.get("error-type")},
            )
        return data

    def _build_rate(
        self, source: Currency, target: Currency, rate: float, data: Dict[str, Any]
    ) -> ExchangeRate:
        api_update = from_unix_timestamp(data.get("time_last_update_unix"))
        return ExchangeRate(
            currency_pair=CurrencyPair(source=source, target=target),
            rate=float(rate),
            timestamp=api_update or datetime.now(timezone.utc),
            from_cache=False,
            last_api_update_time=api_update,
            time_last_update_utc=data.get("time_last_update_utc") or None,
            time_next_update_utc=data.get("time_next_update_utc") or None,
        )

    def _rates_from_map(
        self, base: Currency, rates: Any, data: Dict[str, Any], context: Dict[str, Any]
    ) -> List[ExchangeRate]:
        if not isinstance(rates, dict):
            raise ApiError("Rates missing from API response", None, None, context)
        out: List[ExchangeRate] = []
        for code, value in rates.items():
            target = self.registry.get(code)
            if target is None or target.code == base.code:
                continue
            if not _is_number(value):
                raise ApiError(
                    f"Invalid rate for {target.code} in API response", None, None, context
                )
            out.append(self._build_rate(base, target, value, data))
        return out

    @abstractmethod
    async def _pair_rate(
        self, source: Currency, target: Currency, context: Dict[str, Any]
    ) -> ExchangeRate:
        raise NotImplementedError

    @abstractmethod
    async def _latest_rates(self, base: Currency, context: Dict[str, Any]) -> List[ExchangeRate]:
        raise NotImplementedError

    async def get_exchange_rate(self, source: Currency, target: Currency) -> ExchangeRate:
        context = {
            "method_name": "get_exchange_rate",
            "provider": self.name,
            "source_currency": source.code,
            "target_currency": target.code,
        }
        try:
            return await self._pair_rate(source, target, context)
        except Exception as e:
            log_error(e, **context)
            raise ConversionError(
                f"Failed to retrieve {source.code} to {target.code} exchange rate",
                e,
                e.status_code if isinstance(e, AppError) else None,
                context,
            ) from e

    async def get_all_rates(self, base: Optional[Currency] = None) -> List[ExchangeRate]:
        base = base or self.default_base()
        context = {"method_name": "get_all_rates", "provider": self.name, "base_currency": base.code}
        try:
            return await self._latest_rates(base, context)
        except Exception as e:
            log_error(e, **context)
            raise ApiError(
                "Failed to retrieve exchange rates",
                e,
                e.status_code if isinstance(e, AppError) else None,
                context,
            ) from e


class ExchangeRateApiClientV6(HttpRateClient):
    name = "default"

    def __init__(self, base_url: str, *, api_key: str = "", **kwargs: Any):
        super().__init__(base_url, api_key=api_key, **kwargs)
        if not api_key:
            logger.warning(
                "EXCHANGE_RATE_API_KEY is not set; requests to the rate provider will be rejected"
            )

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "ExchangeRateApiClientV6":
        kwargs: Dict[str, Any] = dict(
            api_key=settings.exchange_rate_api_key,
            timeout=settings.http_timeout_seconds,
            requests_per_second=settings.exchange_rate_api_rate_limit,
            max_retries=settings.retry_max_attempts,
            retry_initial_delay=settings.retry_initial_delay_seconds,
        )
        kwargs.update(overrides)
        return cls(settings.exchange_rate_api_url, **kwargs)

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{self._api_key}/{path}"

    async def _pair_rate(self, source: Currency, target: Currency, context: Dict[str, Any]) -> ExchangeRate:
        data = await self._fetch(f"pair/{source.code}/{target.code}", context)
        rate = data.get("conversion_rate")
        if not _is_number(rate):
            raise ApiError("conversion_rate missing from API response", None, None, context)
        return self._build_rate(source, target, rate, data)

    async def _latest_rates(self, base: Currency, context: Dict[str, Any]) -> List[ExchangeRate]:
        data = await self._fetch(f"latest/{base.code}", context)
        return self._rates_from_map(base, data.get("conversion_rates"), data, context)


class OpenExchangeRateClient(HttpRateClient):
    name = "external"

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "OpenExchangeRateClient":
        kwargs: Dict[str, Any] = dict(
            timeout=settings.http_timeout_seconds,
            requests_per_second=settings.exchange_rate_api_rate_limit,
            max_retries=settings.retry_max_attempts,
            retry_initial_delay=settings.retry_initial_delay_seconds,
        )
        kwargs.update(overrides)
        return cls(settings.exchange_rate_external_url, **kwargs)

    async def _pair_rate(self, source: Currency, target: Currency, context: Dict[str, Any]) -> ExchangeRate:
        data = await self._fetch(f"latest/{source.code}", context)
        rates = data.get("rates")
        rate = rates.get(target.code) if isinstance(rates, dict) else None
        if not _is_number(rate):
            raise ApiError(f"{target.code} rate not found in API response", None, None, context)
        return self._build_rate(source, target, rate, data)

    async def _latest_rates(self, base: Currency, context: Dict[str, Any]) -> List[ExchangeRate]:
        data = await self._fetch(f"latest/{base.code}", context)
        return self._rates_from_map(base, data.get("rates"), data, context)


# Approximate cross rates; rows are the source currency.
MOCK_RATES: Dict[str, Dict[str, float]] = {
    "USD": {"EUR": 0.85, "GBP": 0.75, "JPY": 110.5, "BRL": 5.2},
    "EUR": {"USD": 1.18, "GBP": 0.88, "JPY": 130.5, "BRL": 6.1},
    "GBP": {"USD": 1.33, "EUR": 1.14, "JPY": 147.5, "BRL": 6.9},
    "JPY": {"USD": 0.0091, "EUR": 0.0077, "GBP": 0.0068, "BRL": 0.047},
    "BRL": {"USD": 0.19, "EUR": 0.16, "GBP": 0.14, "JPY": 21.2},
}


class MockExchangeRateClient(ExchangeRateApiClient):
    """Static rates with optional simulated latency and failures."""

    name = "mock"

    def __init__(
        self,
        rates: Optional[Dict[str, Dict[str, float]]] = None,
        *,
        delay: float = 0.0,
        failure_rate: float = 0.0,
        seed: Optional[int] = None,
        registry: CurrencyRegistry = CURRENCIES,
    ):
        super().__init__(registry)
        self.rates = rates if rates is not None else MOCK_RATES
        self.delay = delay
        self.failure_rate = failure_rate
        self._random = random.Random(seed)
        self.calls = 0

    async def _simulate(self) -> None:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failure_rate and self._random.random() < self.failure_rate:
            raise ApiError("Simulated API failure", None, 503, {"provider": self.name})

    def _snapshot(self, source: Currency, target: Currency, rate: float) -> ExchangeRate:
        now = datetime.now(timezone.utc)
        return ExchangeRate(
            currency_pair=CurrencyPair(source=source, target=target),
            rate=rate,
            timestamp=now,
            last_api_update_time=now,
        )

    async def get_exchange_rate(self, source: Currency, target: Currency) -> ExchangeRate:
        await self._simulate()
        if source.code == target.code:
            return self._snapshot(source, target, 1.0)
        rate = self.rates.get(source.code, {}).get(target.code)
        if rate is None:
            raise ConversionError(
                f"Exchange rate not available for {source.code} to {target.code}",
                None,
                404,
                {"source_currency": source.code, "target_currency": target.code},
            )
        return self._snapshot(source, target, rate)

    async def get_all_rates(self, base: Optional[Currency] = None) -> List[ExchangeRate]:
        await self._simulate()
        base = base or self.default_base()
        row = self.rates.get(base.code)
        if row is None:
            raise ApiError(
                f"Base currency {base.code} not supported", None, 404, {"base_currency": base.code}
            )
        out = []
        for code, rate in row.items():
            target = self.registry.get(code)
            if target is not None:
                out.append(self._snapshot(base, target, rate))
        return out


_PROVIDER_REGISTRY: Dict[str, Type[ExchangeRateApiClient]] = {
    "default": ExchangeRateApiClientV6,
    "external": OpenExchangeRateClient,
    "mock": MockExchangeRateClient,
}


def make_rate_client(kind: str, settings: Settings, **overrides: Any) -> ExchangeRateApiClient:
    """Build the provider client named by ``kind`` (EXCHANGE_RATE_API_PROVIDER)."""
    cls = _PROVIDER_REGISTRY.get(kind)
    if cls is None:
        raise ValueError(f"Unknown rate provider kind '{kind}'")
    logger.info("creating exchange rate client for provider: %s", kind)
    return cls.from_settings(settings, **overrides)

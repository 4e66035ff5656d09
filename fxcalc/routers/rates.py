from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from fxcalc.core.errors import ValidationError
from fxcalc.models.constants import CURRENCIES
from fxcalc.models.currency import ExchangeRate, ExchangeRateMetadata
from fxcalc.services.rates.cache_service import ExchangeRateRepository
from fxcalc.services.rates.conversion import CurrencyConversionService

"""Rates router: exchange rate lookups, freshness metadata and USD->BRL conversion.

Endpoints:
    - GET /api/exchange-rate                      -> {rate} USD/BRL
    - GET /api/exchange-rate/{source}/{target}    -> rate + freshness metadata
    - GET /api/exchange-rates?from=&to=           -> one pair or all rates from USD
    - GET /api/exchange-rate-metadata             -> cache / provider timestamps
    - GET /api/currencies                         -> supported currencies
    - GET /api/currency-converter?amount=         -> USD amount converted to BRL

Every rate read goes through the shared repository so the TTL cache and the
provider throttle apply across endpoints.
"""

router = APIRouter(prefix="/api", tags=["rates"])

CACHE_CONTROL = "public, s-maxage=3600, stale-while-revalidate=60"
UNSUPPORTED_PAIR = "One or both currencies are not supported"


# Dependencies -----------------------------------------------------


def get_repository(request: Request) -> ExchangeRateRepository:
    return request.app.state.rate_repository


def get_conversion_service(
    repository: ExchangeRateRepository = Depends(get_repository),
) -> CurrencyConversionService:
    return CurrencyConversionService(repository)


# Helpers ----------------------------------------------------------


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _metadata_out(metadata: ExchangeRateMetadata) -> Dict[str, Any]:
    return {
        "lastApiUpdateTime": _iso(metadata.last_api_update_time),
        "lastCacheRefreshTime": _iso(metadata.last_cache_refresh_time),
        "nextCacheRefreshTime": _iso(metadata.next_cache_refresh_time),
        "fromCache": metadata.from_cache,
        "time_last_update_utc": metadata.time_last_update_utc,
        "time_next_update_utc": metadata.time_next_update_utc,
    }


def _rate_out(rate: ExchangeRate) -> Dict[str, Any]:
    pair = rate.currency_pair
    return {
        "from": pair.source.code,
        "to": pair.target.code,
        "rate": rate.rate,
        "timestamp": _iso(rate.timestamp),
    }


def _require_pair(source: str, target: str):
    src = CURRENCIES.get(source)
    tgt = CURRENCIES.get(target)
    if src is None or tgt is None:
        raise ValidationError(UNSUPPORTED_PAIR, {"source": source, "target": target})
    return src, tgt


# Routes -----------------------------------------------------------
@router.get("/exchange-rate", summary="Current USD to BRL rate")
async def usd_brl_rate(
    response: Response,
    repository: ExchangeRateRepository = Depends(get_repository),
):
    rate = await repository.get_usd_to_brl_rate()
    response.headers["Cache-Control"] = CACHE_CONTROL
    return {"rate": rate}


@router.get("/exchange-rate/{source}/{target}", summary="Rate for a pair with freshness metadata")
async def pair_rate(
    source: str,
    target: str,
    response: Response,
    repository: ExchangeRateRepository = Depends(get_repository),
):
    src, tgt = _require_pair(source, target)
    rate = await repository.get_exchange_rate(src, tgt)
    metadata = repository.get_exchange_rate_metadata()
    response.headers["Cache-Control"] = CACHE_CONTROL
    return {"rate": rate.rate, "timestamp": _iso(rate.timestamp), **_metadata_out(metadata)}


@router.get("/exchange-rates", summary="One pair or every rate from USD")
async def exchange_rates(
    response: Response,
    from_code: Optional[str] = Query(None, alias="from"),
    to_code: Optional[str] = Query(None, alias="to"),
    repository: ExchangeRateRepository = Depends(get_repository),
):
    response.headers["Cache-Control"] = CACHE_CONTROL
    if from_code and to_code:
        src, tgt = _require_pair(from_code, to_code)
        rate = await repository.get_exchange_rate(src, tgt)
        return {"rate": _rate_out(rate)}
    rates = await repository.get_all_rates()
    return {"rates": [_rate_out(r) for r in rates]}


@router.get("/exchange-rate-metadata", summary="Cache and provider freshness timestamps")
async def exchange_rate_metadata(
    repository: ExchangeRateRepository = Depends(get_repository),
):
    # Touch the USD/BRL entry first so metadata reflects a real fetch
    await repository.get_usd_to_brl_rate()
    return _metadata_out(repository.get_exchange_rate_metadata())


@router.get("/currencies", summary="Supported currencies")
async def currencies():
    return {"currencies": [c.model_dump() for c in CURRENCIES.all()]}


@router.get("/currency-converter", summary="Convert a USD amount to BRL")
async def currency_converter(
    response: Response,
    amount: Optional[str] = Query(None),
    service: CurrencyConversionService = Depends(get_conversion_service),
):
    if not amount:
        raise HTTPException(status_code=400, detail="Missing required parameter: amount")
    try:
        numeric = float(amount)
    except ValueError:
        raise ValidationError("Invalid amount: must be a valid number") from None
    converted = await service.convert_usd_to_brl(numeric)
    response.headers["Cache-Control"] = CACHE_CONTROL
    return {"from": "USD", "to": "BRL", "amount": numeric, "convertedAmount": converted}

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Currency(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    symbol: str
    name: str

    @field_validator("code")
    def upper_code(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("currency code cannot be empty")
        return v


class CurrencyPair(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: Currency
    target: Currency


class ExchangeRate(BaseModel):
    """Rate snapshot for one currency pair.

    The freshness fields are filled by whoever produced the snapshot: provider
    clients set the provider timestamps, the repository sets cache fields.
    """

    model_config = ConfigDict(frozen=True)

    currency_pair: CurrencyPair
    rate: float = Field(..., gt=0)
    timestamp: datetime
    from_cache: bool = False
    last_api_update_time: Optional[datetime] = None
    last_cache_refresh_time: Optional[datetime] = None
    next_cache_refresh_time: Optional[datetime] = None
    time_last_update_utc: Optional[str] = None
    time_next_update_utc: Optional[str] = None


class ExchangeRateMetadata(BaseModel):
    last_cache_refresh_time: datetime
    last_api_update_time: Optional[datetime] = None
    next_cache_refresh_time: datetime
    from_cache: bool = False
    time_last_update_utc: Optional[str] = None
    time_next_update_utc: Optional[str] = None

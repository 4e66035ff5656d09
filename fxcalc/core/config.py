from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ALLOWED_RATE_PROVIDERS = {"default", "external", "mock"}


class Settings(BaseSettings):
    """Application settings loaded from environment with defaults.

    Exchange rate variables keep the names used by the deployment
    (EXCHANGE_RATE_API_KEY, EXCHANGE_RATE_API_URL, EXCHANGE_RATE_CACHE_TTL, ...).
    Everything else follows pydantic's rules (APP_NAME, DEBUG, DATA_DIR, ...).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Basic app metadata
    app_name: str = "Currency Calculator"
    debug: bool = False
    version: str = "0.1.0"

    # Calculation history persistence
    data_dir: Path = Path("data")
    db_filename: str = "calculations.sqlite3"
    db_path: Optional[Path] = None  # derived if not provided

    # Exchange rate provider
    exchange_rate_api_key: str = Field("", validation_alias=AliasChoices(
        "exchange_rate_api_key", "EXCHANGE_RATE_API_KEY"))
    exchange_rate_api_url: str = Field(
        "https://v6.exchangerate-api.com/v6",
        validation_alias=AliasChoices(
            "exchange_rate_api_url", "EXCHANGE_RATE_API_URL", "EXCHANGE_RATE_API_BASE_URL"
        ),
    )
    exchange_rate_external_url: str = "https://open.er-api.com/v6"
    # Allowed: 'default' (exchangerate-api.com), 'external' (open.er-api.com), 'mock'
    exchange_rate_api_provider: str = Field("default", validation_alias=AliasChoices(
        "exchange_rate_api_provider", "EXCHANGE_RATE_API_PROVIDER"))

    # Caching / throttling / retry
    exchange_rate_cache_ttl: int = Field(
        3600,
        validation_alias=AliasChoices(
            "exchange_rate_cache_ttl",
            "EXCHANGE_RATE_CACHE_REVALIDATE_SECONDS",
            "EXCHANGE_RATE_CACHE_TTL",
        ),
    )
    exchange_rate_api_rate_limit: float = Field(2.0, validation_alias=AliasChoices(
        "exchange_rate_api_rate_limit", "EXCHANGE_RATE_API_RATE_LIMIT"))
    http_timeout_seconds: float = 10.0
    retry_max_attempts: int = 3
    retry_initial_delay_seconds: float = 0.3

    def init_post_load(self) -> None:
        """Finalize derived fields and ensure directories exist."""
        if self.db_path is None:
            self.db_path = self.data_dir / self.db_filename
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        if self.exchange_rate_api_provider not in ALLOWED_RATE_PROVIDERS:
            raise ValueError(
                f"Unsupported exchange_rate_api_provider '{self.exchange_rate_api_provider}'. "
                f"Allowed: {sorted(ALLOWED_RATE_PROVIDERS)}"
            )
        if self.exchange_rate_cache_ttl <= 0:
            raise ValueError("exchange_rate_cache_ttl must be positive seconds")
        if self.exchange_rate_api_rate_limit <= 0:
            raise ValueError("exchange_rate_api_rate_limit must be positive")
        if self.retry_max_attempts < 0:
            raise ValueError("retry_max_attempts cannot be negative")


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    settings.init_post_load()
    return settings

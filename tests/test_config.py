import json
import logging

import pytest

from fxcalc.core.config import Settings
from fxcalc.core.errors import ApiError, ConversionError, ValidationError, log_error
from fxcalc.core.logging import JsonFormatter, RequestIdFilter, request_id_ctx


def test_deployment_env_names(monkeypatch, tmp_path):
    monkeypatch.setenv("EXCHANGE_RATE_API_KEY", "abc")
    monkeypatch.setenv("EXCHANGE_RATE_API_BASE_URL", "https://rates.internal/v6")
    monkeypatch.setenv("EXCHANGE_RATE_CACHE_REVALIDATE_SECONDS", "120")
    monkeypatch.setenv("EXCHANGE_RATE_API_PROVIDER", "external")
    settings = Settings(data_dir=tmp_path)
    settings.init_post_load()
    assert settings.exchange_rate_api_key == "abc"
    assert settings.exchange_rate_api_url == "https://rates.internal/v6"
    assert settings.exchange_rate_cache_ttl == 120
    assert settings.exchange_rate_api_provider == "external"
    assert settings.db_path == tmp_path / "calculations.sqlite3"


@pytest.mark.parametrize(
    "overrides",
    [
        {"exchange_rate_api_provider": "fax"},
        {"exchange_rate_cache_ttl": 0},
        {"exchange_rate_api_rate_limit": 0},
        {"retry_max_attempts": -1},
    ],
)
def test_invalid_settings_rejected(tmp_path, overrides):
    settings = Settings(data_dir=tmp_path, **overrides)
    with pytest.raises(ValueError):
        settings.init_post_load()


def test_error_user_messages():
    assert ValidationError("Step 1: bad").user_friendly_message() == "Step 1: bad"
    err = ConversionError("Failed to retrieve USD to BRL exchange rate", ApiError("down"), 503)
    assert err.http_status == 502
    assert "Currency conversion failed" in err.user_friendly_message()
    payload = err.to_log_format()
    assert payload["category"] == "CONVERSION_ERROR"
    assert payload["status_code"] == 503
    assert payload["original_error"]["name"] == "ApiError"


def test_json_log_lines_carry_request_id_and_context(caplog):
    token = request_id_ctx.set("req-1")
    try:
        with caplog.at_level(logging.ERROR, logger="fxcalc.errors"):
            log_error(ApiError("boom", status_code=500), method_name="get_exchange_rate")
        record = caplog.records[-1]
        RequestIdFilter().filter(record)
    finally:
        request_id_ctx.reset(token)

    line = json.loads(JsonFormatter().format(record))
    assert line["level"] == "ERROR"
    assert line["logger"] == "fxcalc.errors"
    assert line["request_id"] == "req-1"
    assert line["context"]["additional_info"] == {"method_name": "get_exchange_rate"}

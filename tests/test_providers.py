import asyncio
import logging
from datetime import datetime, timezone

import httpx
import pytest

from fxcalc.core.config import Settings
from fxcalc.core.errors import ApiError, ConversionError, NotFoundError
from fxcalc.core.logging import init_logging
from fxcalc.models.constants import CURRENCIES, CurrencyRegistry
from fxcalc.models.currency import Currency
from fxcalc.services.rates.providers import (
    ExchangeRateApiClientV6,
    MockExchangeRateClient,
    OpenExchangeRateClient,
    from_unix_timestamp,
    make_rate_client,
)

from conftest import no_sleep

USD = CURRENCIES.get("USD")
BRL = CURRENCIES.get("BRL")
EUR = CURRENCIES.get("EUR")

PAIR_PAYLOAD = {
    "result": "success",
    "time_last_update_unix": 1714521601,
    "time_last_update_utc": "Wed, 01 May 2024 00:00:01 +0000",
    "time_next_update_utc": "Thu, 02 May 2024 00:00:01 +0000",
    "base_code": "USD",
    "target_code": "BRL",
    "conversion_rate": 5.1234,
}


class Recorder:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.urls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.urls.append(str(request.url))
        status, body = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return httpx.Response(status, json=body)


def v6_client(recorder, **kwargs) -> ExchangeRateApiClientV6:
    return ExchangeRateApiClientV6(
        "https://v6.rates.test/v6",
        api_key="k3y",
        transport=httpx.MockTransport(recorder),
        sleep=no_sleep,
        requests_per_second=1000,
        **kwargs,
    )


def test_from_unix_timestamp():
    assert from_unix_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert from_unix_timestamp(None) is None
    assert from_unix_timestamp("123") is None
    assert from_unix_timestamp(True) is None


def test_v6_pair_rate_and_timestamps():
    recorder = Recorder((200, PAIR_PAYLOAD))
    rate = asyncio.run(v6_client(recorder).get_exchange_rate(USD, BRL))
    assert recorder.urls == ["https://v6.rates.test/v6/k3y/pair/USD/BRL"]
    assert rate.rate == 5.1234
    assert rate.currency_pair.source == USD
    assert rate.currency_pair.target == BRL
    assert rate.from_cache is False
    assert rate.last_api_update_time == datetime.fromtimestamp(1714521601, tz=timezone.utc)
    assert rate.time_last_update_utc == PAIR_PAYLOAD["time_last_update_utc"]
    assert rate.time_next_update_utc == PAIR_PAYLOAD["time_next_update_utc"]


def test_v6_usd_to_brl_shortcut():
    recorder = Recorder((200, PAIR_PAYLOAD))
    assert asyncio.run(v6_client(recorder).get_usd_to_brl_rate()) == 5.1234


def test_v6_latest_rates_skip_unsupported_codes():
    payload = {
        "result": "success",
        "time_last_update_unix": 1714521601,
        "conversion_rates": {"USD": 1, "EUR": 0.93, "BRL": 5.1, "CHF": 0.91},
    }
    recorder = Recorder((200, payload))
    rates = asyncio.run(v6_client(recorder).get_all_rates())
    assert recorder.urls == ["https://v6.rates.test/v6/k3y/latest/USD"]
    assert {r.currency_pair.target.code: r.rate for r in rates} == {"EUR": 0.93, "BRL": 5.1}


def test_result_error_is_not_retried_and_hides_key():
    recorder = Recorder((200, {"result": "error", "error-type": "invalid-key"}))
    with pytest.raises(ConversionError) as exc:
        asyncio.run(v6_client(recorder).get_exchange_rate(USD, BRL))
    assert len(recorder.urls) == 1
    cause = exc.value.original_error
    assert isinstance(cause, ApiError)
    assert cause.context["error_type"] == "invalid-key"
    assert exc.value.context["source_currency"] == "USD"
    assert "k3y" not in repr(exc.value.to_log_format())


def test_client_error_status_is_not_retried():
    recorder = Recorder((404, {"result": "error"}))
    with pytest.raises(ConversionError) as exc:
        asyncio.run(v6_client(recorder).get_exchange_rate(USD, BRL))
    assert len(recorder.urls) == 1
    assert exc.value.status_code == 404


def test_server_error_is_retried_then_succeeds():
    recorder = Recorder((500, {}), (502, {}), (200, PAIR_PAYLOAD))
    rate = asyncio.run(v6_client(recorder, max_retries=3).get_exchange_rate(USD, BRL))
    assert rate.rate == 5.1234
    assert len(recorder.urls) == 3


def test_server_error_exhausts_retries():
    recorder = Recorder((503, {}))
    with pytest.raises(ConversionError):
        asyncio.run(v6_client(recorder, max_retries=2).get_exchange_rate(USD, BRL))
    assert len(recorder.urls) == 3


def test_non_numeric_rate_is_an_api_error():
    payload = dict(PAIR_PAYLOAD, conversion_rate="5.1")
    with pytest.raises(ConversionError) as exc:
        asyncio.run(v6_client(Recorder((200, payload))).get_exchange_rate(USD, BRL))
    assert isinstance(exc.value.original_error, ApiError)


def test_all_rates_failure_wrapped_as_api_error():
    recorder = Recorder((200, {"result": "success", "conversion_rates": {"EUR": -1}}))
    with pytest.raises(ApiError, match="Failed to retrieve exchange rates"):
        asyncio.run(v6_client(recorder).get_all_rates(USD))


def test_open_client_reads_pair_from_rates_map():
    payload = {"result": "success", "rates": {"USD": 1, "BRL": 5.05, "EUR": 0.92}}
    recorder = Recorder((200, payload))
    client = OpenExchangeRateClient(
        "https://open.rates.test/v6",
        transport=httpx.MockTransport(recorder),
        sleep=no_sleep,
        requests_per_second=1000,
    )
    rate = asyncio.run(client.get_exchange_rate(USD, BRL))
    assert rate.rate == 5.05
    assert recorder.urls == ["https://open.rates.test/v6/latest/USD"]


def test_mock_client_rates_and_errors():
    client = MockExchangeRateClient()
    assert asyncio.run(client.get_exchange_rate(USD, BRL)).rate == 5.2
    assert asyncio.run(client.get_exchange_rate(EUR, EUR)).rate == 1.0
    rates = asyncio.run(client.get_all_rates())
    assert {r.currency_pair.target.code for r in rates} == {"EUR", "GBP", "JPY", "BRL"}

    sparse = MockExchangeRateClient({"USD": {}})
    with pytest.raises(ConversionError) as exc:
        asyncio.run(sparse.get_exchange_rate(USD, BRL))
    assert exc.value.status_code == 404
    assert sparse.calls == 1


def test_mock_client_simulated_failures():
    client = MockExchangeRateClient(failure_rate=1.0, seed=7)
    with pytest.raises(ApiError) as exc:
        asyncio.run(client.get_exchange_rate(USD, BRL))
    assert exc.value.status_code == 503


def test_usd_brl_needs_both_currencies():
    registry = CurrencyRegistry([Currency(code="USD", symbol="$", name="US Dollar")])
    client = MockExchangeRateClient(registry=registry)
    with pytest.raises(NotFoundError):
        asyncio.run(client.get_usd_to_brl_rate())


def test_factory_builds_configured_provider(tmp_path, caplog):
    settings = Settings(db_path=tmp_path / "x.sqlite3", exchange_rate_api_key="")
    with caplog.at_level("WARNING", logger="fxcalc.rates"):
        client = make_rate_client("default", settings)
    assert isinstance(client, ExchangeRateApiClientV6)
    assert client.base_url == "https://v6.exchangerate-api.com/v6"
    assert any("EXCHANGE_RATE_API_KEY" in r.getMessage() for r in caplog.records)

    assert isinstance(make_rate_client("external", settings), OpenExchangeRateClient)
    assert isinstance(make_rate_client("mock", settings), MockExchangeRateClient)
    with pytest.raises(ValueError):
        make_rate_client("carrier-pigeon", settings)


def test_provider_calls_do_not_log_the_api_key(capsys):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        init_logging(debug=False)
        recorder = Recorder((200, PAIR_PAYLOAD))
        asyncio.run(v6_client(recorder).get_exchange_rate(USD, BRL))
        for handler in root.handlers:
            handler.flush()
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)

    assert recorder.urls == ["https://v6.rates.test/v6/k3y/pair/USD/BRL"]
    assert "k3y" not in capsys.readouterr().out

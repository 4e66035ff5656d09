import pytest

CACHE_CONTROL = "public, s-maxage=3600, stale-while-revalidate=60"


def test_health_and_request_id(client):
    resp = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.json()["rate_provider"] == "mock"
    assert resp.headers["X-Request-ID"] == "abc-123"


def test_unknown_route_is_json_404(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


# Calculate --------------------------------------------------------


def test_calculate_detailed(client):
    resp = client.post(
        "/api/calculate",
        json={
            "steps": [
                {"description": "Salary", "type": "initial", "value": 3000},
                {"description": "Rate", "type": "exchange_rate", "value": 5.673},
                {"description": "Fee", "type": "percentage_reduction", "value": 1},
            ]
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["final_result"] == pytest.approx(16848.81)
    assert body["steps"][1]["calculation_details"] == "3000.00 USD × 5.673 = 17019.00 BRL"


def test_calculate_simple(client):
    resp = client.post(
        "/api/calculate",
        json={"initialAmountUSD": 100, "exchangeRate": 5, "reductions": "10,20,30"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["initialBRLNoReduction"] == 500
    assert body["final_result"] == pytest.approx(252)
    assert body["steps"][0]["reductionPercentage"] == 10
    assert body["steps"][2]["finalBRL"] == pytest.approx(252)


@pytest.mark.parametrize(
    "payload, message",
    [
        ({}, "Missing required fields"),
        ({"steps": [{"type": "addition", "value": 1}]}, "An Initial Value step is required for calculation"),
        (
            {"initialAmountUSD": 100, "exchangeRate": 5, "reductions": "100"},
            "Reduction would result in zero or negative value. Please adjust percentages.",
        ),
        ({"initialAmountUSD": 100, "exchangeRate": 5, "reductions": "x"}, "All reductions must be valid numbers"),
        ({"steps": [{"type": "initial", "value": 1}], "targetCurrency": "XYZ"}, "Currency XYZ is not supported"),
    ],
)
def test_calculate_validation_errors(client, payload, message):
    resp = client.post("/api/calculate", json=payload)
    assert resp.status_code == 400
    assert resp.json() == {"error": "validation_error", "detail": message}


# Rates ------------------------------------------------------------


def test_usd_brl_rate(client):
    resp = client.get("/api/exchange-rate")
    assert resp.status_code == 200
    assert resp.json() == {"rate": 5.2}
    assert resp.headers["Cache-Control"] == CACHE_CONTROL


def test_pair_rate_with_metadata(client):
    first = client.get("/api/exchange-rate/usd/eur").json()
    second = client.get("/api/exchange-rate/USD/EUR").json()
    assert first["rate"] == 0.85
    assert first["fromCache"] is False
    assert second["fromCache"] is True
    assert second["lastCacheRefreshTime"] == first["lastCacheRefreshTime"]
    assert "nextCacheRefreshTime" in second


def test_pair_rate_unsupported_currency(client):
    resp = client.get("/api/exchange-rate/USD/XYZ")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "One or both currencies are not supported"


def test_exchange_rates_pair_and_all(client):
    pair = client.get("/api/exchange-rates", params={"from": "GBP", "to": "JPY"})
    assert pair.json()["rate"]["rate"] == 147.5
    everything = client.get("/api/exchange-rates").json()["rates"]
    assert {r["to"] for r in everything} == {"EUR", "GBP", "JPY", "BRL"}
    assert all(r["from"] == "USD" for r in everything)


def test_exchange_rate_metadata(client):
    body = client.get("/api/exchange-rate-metadata").json()
    assert body["fromCache"] is False
    assert body["lastCacheRefreshTime"] is not None
    assert client.get("/api/exchange-rate-metadata").json()["fromCache"] is True


def test_currencies(client):
    body = client.get("/api/currencies").json()
    assert [c["code"] for c in body["currencies"]] == ["USD", "EUR", "BRL", "GBP", "JPY"]


def test_step_types(client):
    types = [t["type"] for t in client.get("/api/step-types").json()["stepTypes"]]
    assert types[0] == "initial"
    assert len(types) == 6


def test_currency_converter(client):
    resp = client.get("/api/currency-converter", params={"amount": "10"})
    assert resp.status_code == 200
    assert resp.json() == {"from": "USD", "to": "BRL", "amount": 10.0, "convertedAmount": 52.0}


@pytest.mark.parametrize("params", [{}, {"amount": "abc"}, {"amount": "-5"}])
def test_currency_converter_bad_amount(client, params):
    assert client.get("/api/currency-converter", params=params).status_code == 400


def test_provider_failure_maps_to_bad_gateway(client, mocker):
    mocker.patch.object(client.app.state.rate_repository.client, "failure_rate", 1.0)
    resp = client.get("/api/exchange-rate")
    assert resp.status_code == 502
    assert resp.json()["error"] == "api_error"
    assert "try again later" in resp.json()["detail"]


# Calculations history ---------------------------------------------

SAVED = {
    "initialAmount": 100,
    "finalAmount": 252,
    "currencyCode": "BRL",
    "title": "Invoice",
    "steps": [
        {
            "order": 1,
            "description": "Reduction 1: 10%",
            "calculationDetails": "500.00 BRL - 10% = 450.00 BRL",
            "resultIntermediate": 50,
            "resultRunningTotal": 450,
            "stepType": "percentage_reduction",
        }
    ],
}


def test_calculations_require_user(client):
    resp = client.get("/api/calculations")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Authentication required"


def test_calculations_crud(client):
    headers = {"X-User-Id": "alice"}
    created = client.post("/api/calculations", json=SAVED, headers=headers)
    assert created.status_code == 201
    calc = created.json()
    assert calc["title"] == "Invoice"
    assert calc["steps"][0]["calculationDetails"] == SAVED["steps"][0]["calculationDetails"]

    listed = client.get("/api/calculations", headers=headers).json()
    assert [c["id"] for c in listed] == [calc["id"]]

    one = client.get("/api/calculations", params={"id": calc["id"]}, headers=headers)
    assert one.json()["finalAmount"] == 252

    other = client.get("/api/calculations", params={"id": calc["id"]}, headers={"X-User-Id": "bob"})
    assert other.status_code == 404

    assert client.delete("/api/calculations", headers=headers).status_code == 400
    deleted = client.delete("/api/calculations", params={"id": calc["id"]}, headers=headers)
    assert deleted.json() == {"success": True}
    assert client.get("/api/calculations", headers=headers).json() == []

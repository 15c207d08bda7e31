"""
Tests — FMP client transport policy

Rules:
  - 404 means "no data" and returns [].
  - 429 / 5xx / transport errors are retried with backoff, then ProviderError.
  - Other non-2xx responses fail immediately with ProviderError.
  - FMP's {"Error Message": ...} body is an error even with status 200.
"""

import asyncio
from datetime import date

import httpx
import pytest

from indexlens.api_clients import fmp_client
from indexlens.api_clients.fmp_client import ProviderError


@pytest.fixture(autouse=True)
def fast_client(monkeypatch):
    async def no_backoff(attempt, reason):
        return None

    monkeypatch.setattr(fmp_client, "FMP_API_KEY", "test-key")
    monkeypatch.setattr(fmp_client, "_REQUEST_INTERVAL_MS", 0)
    monkeypatch.setattr(fmp_client, "_MAX_RETRIES", 3)
    monkeypatch.setattr(fmp_client, "_backoff", no_backoff)


def _run(coro_factory, handler):
    """Run coro_factory(client) against a MockTransport-backed client."""
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await coro_factory(client)
    return asyncio.run(go())


def test_404_returns_empty_list():
    result = _run(
        lambda c: fmp_client.fetch_income_statements("ZZZZ", c),
        lambda request: httpx.Response(404),
    )
    assert result == []


def test_429_retried_then_succeeds():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(429)
        return httpx.Response(200, json=[{"symbol": "AAPL", "price": 190.0}])

    quote = _run(lambda c: fmp_client.fetch_quote("AAPL", c), handler)
    assert quote["price"] == 190.0
    assert len(calls) == 3


def test_persistent_5xx_raises_provider_error():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    with pytest.raises(ProviderError):
        _run(lambda c: fmp_client.fetch_quote("AAPL", c), handler)
    assert len(calls) == 3


def test_client_error_fails_without_retry():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(401)

    with pytest.raises(ProviderError, match="401"):
        _run(lambda c: fmp_client.fetch_quote("AAPL", c), handler)
    assert len(calls) == 1


def test_transport_error_retried_then_raised():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(ProviderError):
        _run(lambda c: fmp_client.fetch_ratios("AAPL", c), handler)
    assert len(calls) == 3


def test_error_message_body_is_provider_error():
    handler = lambda request: httpx.Response(200, json={"Error Message": "Invalid API KEY."})
    with pytest.raises(ProviderError, match="Invalid API KEY"):
        _run(lambda c: fmp_client.fetch_profile("AAPL", c), handler)


def test_missing_api_key(monkeypatch):
    monkeypatch.setattr(fmp_client, "FMP_API_KEY", "")
    with pytest.raises(ProviderError):
        _run(lambda c: fmp_client.fetch_quote("AAPL", c), lambda request: httpx.Response(200, json=[]))


def test_statement_request_shape():
    seen = []

    def handler(request):
        seen.append(request.url)
        return httpx.Response(200, json=[{"revenue": 1}, {"revenue": 2}])

    rows = _run(lambda c: fmp_client.fetch_cash_flow_statements("brk.b", c), handler)
    assert rows == [{"revenue": 1}, {"revenue": 2}]
    url = seen[0]
    assert url.path == "/api/v3/cash-flow-statement/BRK.B"
    assert url.params["period"] == "annual"
    assert url.params["limit"] == "12"
    assert url.params["apikey"] == "test-key"


def test_historical_prices_normalized_ascending():
    payload = {
        "symbol": "AAPL",
        "historical": [
            {"date": "2024-06-28", "close": 210.6},
            {"date": "2024-06-27", "close": 214.1},
        ],
    }
    seen = []

    def handler(request):
        seen.append(request.url)
        return httpx.Response(200, json=payload)

    prices = _run(
        lambda c: fmp_client.fetch_historical_prices("AAPL", c, years=10, today=date(2024, 6, 30)),
        handler,
    )
    assert [p["date"] for p in prices] == [date(2024, 6, 27), date(2024, 6, 28)]
    assert seen[0].params["to"] == "2024-06-30"
    assert seen[0].params["from"] < "2014-06-30"


def test_fx_rate():
    handler = lambda request: httpx.Response(200, json=[{"symbol": "GBPUSD", "price": 1.27}])
    assert _run(lambda c: fmp_client.fetch_fx_rate("gbp", "USD", c), handler) == 1.27


def test_fx_same_currency_makes_no_request():
    def handler(request):
        raise AssertionError("no request expected")

    assert _run(lambda c: fmp_client.fetch_fx_rate("USD", "USD", c), handler) == 1.0


def test_fx_unknown_pair_is_none():
    assert _run(lambda c: fmp_client.fetch_fx_rate("XYZ", "USD", c), lambda request: httpx.Response(404)) is None

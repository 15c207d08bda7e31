"""
Tests — Yahoo first-trade-date lookup

Rules:
  - The blocking yfinance call is bounded by a timeout; a slow lookup
    returns None instead of holding up the caller.
  - Any lookup failure returns None.
"""

import asyncio
import threading
from datetime import date

from indexlens.api_clients import yahoo_client

# 2021-01-14T00:00:00Z
EPOCH_2021_01_14 = 1610582400


def test_first_trade_date_from_info():
    assert yahoo_client.first_trade_date_from_info({"firstTradeDateEpochUtc": EPOCH_2021_01_14}) == date(2021, 1, 14)
    assert yahoo_client.first_trade_date_from_info(
        {"firstTradeDateMilliseconds": EPOCH_2021_01_14 * 1000}
    ) == date(2021, 1, 14)
    assert yahoo_client.first_trade_date_from_info({}) is None


def test_fetch_first_trade_date(monkeypatch):
    seen = []

    def info(symbol):
        seen.append(symbol)
        return {"firstTradeDateEpochUtc": EPOCH_2021_01_14}

    monkeypatch.setattr(yahoo_client, "_ticker_info", info)
    assert asyncio.run(yahoo_client.fetch_first_trade_date(" rivn ", timeout_s=5)) == date(2021, 1, 14)
    assert seen == ["RIVN"]


def test_slow_lookup_times_out(monkeypatch):
    release = threading.Event()

    def stuck(symbol):
        release.wait(5)
        return {"firstTradeDateEpochUtc": EPOCH_2021_01_14}

    monkeypatch.setattr(yahoo_client, "_ticker_info", stuck)

    async def run():
        try:
            return await yahoo_client.fetch_first_trade_date("SLOW", timeout_s=0.05)
        finally:
            release.set()

    assert asyncio.run(run()) is None
    assert release.is_set()


def test_lookup_error_is_none(monkeypatch):
    def broken(symbol):
        raise ValueError("no such ticker")

    monkeypatch.setattr(yahoo_client, "_ticker_info", broken)
    assert asyncio.run(yahoo_client.fetch_first_trade_date("NOPE", timeout_s=5)) is None

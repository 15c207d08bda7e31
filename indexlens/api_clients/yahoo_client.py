"""
Yahoo Finance lookups via yfinance.

Secondary source for the IPO-age gate: FMP profiles sometimes carry an empty
or wrong ipoDate, while Yahoo's ticker info exposes the first trade date.
yfinance is blocking, so calls run in a worker thread under the same
per-request timeout as FMP calls. The thread itself cannot be cancelled; a
timed-out lookup is abandoned and reported as unknown.
"""

import asyncio
import logging
from datetime import date
from typing import Any

from indexlens.config import get_settings
from indexlens.normalizers.fmp_normalizer import first_trade_date_from_epoch

logger = logging.getLogger(__name__)


def _ticker_info(symbol: str) -> dict[str, Any]:
    import yfinance as yf
    return yf.Ticker(symbol).info or {}


def first_trade_date_from_info(info: dict[str, Any]) -> date | None:
    epoch_s = info.get("firstTradeDateEpochUtc")
    if epoch_s is None and isinstance(info.get("firstTradeDateMilliseconds"), (int, float)):
        epoch_s = info["firstTradeDateMilliseconds"] / 1000
    return first_trade_date_from_epoch(epoch_s)


async def fetch_first_trade_date(symbol: str, timeout_s: float | None = None) -> date | None:
    """First trade date for symbol, or None when Yahoo has nothing usable in time."""
    symbol = symbol.strip().upper()
    timeout_s = get_settings().fmp_timeout_s if timeout_s is None else timeout_s
    try:
        info = await asyncio.wait_for(asyncio.to_thread(_ticker_info, symbol), timeout_s)
    except asyncio.TimeoutError:
        logger.warning("[Yahoo] info lookup for %s timed out after %ss", symbol, timeout_s)
        return None
    except Exception as exc:
        logger.warning("[Yahoo] info lookup failed for %s: %s", symbol, exc)
        return None
    return first_trade_date_from_info(info)

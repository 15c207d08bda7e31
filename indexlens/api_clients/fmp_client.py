"""
Financial Modeling Prep (FMP) API client.

Rate limiting:
  FMP_REQUEST_INTERVAL_MS (default 150 ms) between requests, enforced globally
  FMP_MAX_RETRIES (default 3) attempts on 429 / 5xx / transport errors
  backoff = 2^attempt * 1000 + random(1000) ms
  every request is bounded by FMP_TIMEOUT_S

Status handling:
  404                -> [] (provider has nothing for this symbol)
  other non-2xx      -> ProviderError immediately
  {"Error Message"}  -> ProviderError (FMP reports bad keys / plan limits with 200)
"""

import asyncio
import logging
import random
import time
from datetime import date, timedelta
from typing import Any
from urllib.parse import quote, urlencode

import httpx

from indexlens.config import get_settings
from indexlens.normalizers import fmp_normalizer

logger = logging.getLogger(__name__)

_settings = get_settings()

FMP_API_KEY: str = _settings.fmp_api_key
_BASE_URL: str = f"{_settings.fmp_base_url}/api/v3"
_REQUEST_INTERVAL_MS: int = _settings.fmp_request_interval_ms
_TIMEOUT_S: float = _settings.fmp_timeout_s
_MAX_RETRIES: int = _settings.fmp_max_retries

_last_request_time_ms: float = 0.0
_gate_lock = asyncio.Lock()


class ProviderError(RuntimeError):
    """Non-recoverable failure talking to the market-data provider."""


def _retryable(status: int) -> bool:
    return status == 429 or 500 <= status < 600


async def _wait_for_slot() -> None:
    global _last_request_time_ms
    async with _gate_lock:
        now_ms = time.time() * 1000
        lag = now_ms - _last_request_time_ms
        if lag < _REQUEST_INTERVAL_MS:
            await asyncio.sleep((_REQUEST_INTERVAL_MS - lag) / 1000)
        _last_request_time_ms = time.time() * 1000


async def _backoff(attempt: int, reason: str) -> None:
    backoff_ms = (2 ** attempt) * 1000 + random.random() * 1000
    logger.warning(
        "[FMP][%s] backing off %.0fms (attempt %d/%d)",
        reason, backoff_ms, attempt, _MAX_RETRIES,
    )
    await asyncio.sleep(backoff_ms / 1000)


async def gated_fetch(url: str, client: httpx.AsyncClient | None = None) -> Any:
    """Rate-limited GET with retry on 429 / 5xx / transport errors."""
    for attempt in range(1, _MAX_RETRIES + 1):
        await _wait_for_slot()

        try:
            if client is not None:
                resp = await client.get(url, timeout=_TIMEOUT_S)
            else:
                async with httpx.AsyncClient() as own_client:
                    resp = await own_client.get(url, timeout=_TIMEOUT_S)
        except httpx.HTTPError as exc:
            logger.warning("[FMP] attempt %d/%d failed: %s", attempt, _MAX_RETRIES, exc)
            if attempt == _MAX_RETRIES:
                raise ProviderError(f"FMP fetch failed after {_MAX_RETRIES} attempts: {exc}") from exc
            await _backoff(attempt, type(exc).__name__)
            continue

        if resp.status_code == 404:
            logger.debug("[FMP][404] %s", _redact(url))
            return []

        if _retryable(resp.status_code):
            if attempt < _MAX_RETRIES:
                await _backoff(attempt, str(resp.status_code))
                continue
            raise ProviderError(f"HTTP {resp.status_code} after {_MAX_RETRIES} attempts")

        if not resp.is_success:
            raise ProviderError(f"HTTP {resp.status_code}: {resp.reason_phrase}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderError(f"Invalid JSON from FMP: {exc}") from exc

        if isinstance(data, dict) and "Error Message" in data:
            raise ProviderError(f"FMP error: {data['Error Message']}")
        return data

    raise ProviderError("gated_fetch: exhausted all attempts")


def _redact(url: str) -> str:
    return url.split("apikey=")[0] + "apikey=***" if "apikey=" in url else url


def _build_url(path: str, **params: Any) -> str:
    if not FMP_API_KEY:
        raise ProviderError("FMP_API_KEY environment variable is not set")
    query = {k: v for k, v in params.items() if v is not None}
    query["apikey"] = FMP_API_KEY
    return f"{_BASE_URL}/{path}?{urlencode(query)}"


def _symbol_path(endpoint: str, symbol: str) -> str:
    return f"{endpoint}/{quote(symbol.strip().upper(), safe='.-^')}"


def _as_list(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, list):
        return [r for r in data if isinstance(r, dict)]
    if isinstance(data, dict) and data:
        return [data]
    return []


def _first(data: Any) -> dict[str, Any]:
    rows = _as_list(data)
    return rows[0] if rows else {}


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

async def fetch_quote(symbol: str, client: httpx.AsyncClient | None = None) -> dict[str, Any]:
    """GET /quote/{symbol} -> {symbol, price, previousClose, change, changesPercentage, marketCap}"""
    return _first(await gated_fetch(_build_url(_symbol_path("quote", symbol)), client))


async def fetch_income_statements(
    symbol: str, client: httpx.AsyncClient | None = None, limit: int = 12,
) -> list[dict[str, Any]]:
    """GET /income-statement/{symbol}?period=annual — newest first."""
    url = _build_url(_symbol_path("income-statement", symbol), period="annual", limit=limit)
    return _as_list(await gated_fetch(url, client))


async def fetch_balance_sheets(
    symbol: str, client: httpx.AsyncClient | None = None, limit: int = 12,
) -> list[dict[str, Any]]:
    url = _build_url(_symbol_path("balance-sheet-statement", symbol), period="annual", limit=limit)
    return _as_list(await gated_fetch(url, client))


async def fetch_cash_flow_statements(
    symbol: str, client: httpx.AsyncClient | None = None, limit: int = 12,
) -> list[dict[str, Any]]:
    url = _build_url(_symbol_path("cash-flow-statement", symbol), period="annual", limit=limit)
    return _as_list(await gated_fetch(url, client))


async def fetch_key_metrics(
    symbol: str, client: httpx.AsyncClient | None = None, limit: int = 12,
) -> list[dict[str, Any]]:
    url = _build_url(_symbol_path("key-metrics", symbol), period="annual", limit=limit)
    return _as_list(await gated_fetch(url, client))


async def fetch_key_metrics_ttm(symbol: str, client: httpx.AsyncClient | None = None) -> dict[str, Any]:
    return _first(await gated_fetch(_build_url(_symbol_path("key-metrics-ttm", symbol)), client))


async def fetch_ratios(
    symbol: str, client: httpx.AsyncClient | None = None, limit: int = 1,
) -> list[dict[str, Any]]:
    """GET /ratios/{symbol} — vendor debtEquityRatio / interestCoverage / cashFlowToDebtRatio."""
    url = _build_url(_symbol_path("ratios", symbol), limit=limit)
    return _as_list(await gated_fetch(url, client))


async def fetch_historical_prices(
    symbol: str,
    client: httpx.AsyncClient | None = None,
    years: int = 10,
    today: date | None = None,
) -> list[dict[str, Any]]:
    """
    GET /historical-price-full/{symbol}?from=&to= covering `years` (+ a week so
    the nearest-date match at the window start has neighbours on both sides).
    Returns normalized [{date, close}] ascending.
    """
    today = today or date.today()
    start = today - timedelta(days=int(years * 365.25) + 7)
    url = _build_url(
        _symbol_path("historical-price-full", symbol),
        **{"from": start.isoformat(), "to": today.isoformat(), "serietype": "line"},
    )
    return fmp_normalizer.normalize_prices(await gated_fetch(url, client))


async def fetch_profile(symbol: str, client: httpx.AsyncClient | None = None) -> dict[str, Any]:
    """GET /profile/{symbol} -> {currency, ipoDate, mktCap, ...}"""
    return _first(await gated_fetch(_build_url(_symbol_path("profile", symbol)), client))


async def fetch_fx_rate(
    from_currency: str,
    to_currency: str = "USD",
    client: httpx.AsyncClient | None = None,
) -> float | None:
    """Spot rate via the FX quote (e.g. GBPUSD). None when unavailable."""
    src, dst = from_currency.strip().upper(), to_currency.strip().upper()
    if src == dst:
        return 1.0
    data = await gated_fetch(_build_url(f"quote/{src}{dst}"), client)
    rate = fmp_normalizer.normalize_fx_rate(data)
    if rate is None:
        logger.warning("[FMP][FX] no rate for %s%s", src, dst)
    return rate

"""
Metrics recompute orchestrator.

Per symbol, strictly sequential:
  1. Fetch       quote, profile, income / balance / cash-flow statements,
                 key metrics (annual + TTM), ratios, 10Y prices, FX rate
  2. Normalize + calculate   services.metrics_calculator.compute_metric_set
  3. Write       master `companies` (upsert) and every index table that
                 already lists the symbol (update only)

Failure behavior:
  - Any provider failure in step 1 skips the symbol: nothing is written from
    partially fetched data. The FX rate is the exception (best-effort; a
    missing rate leaves values unconverted).
  - Each table write is independent; one failed table does not block the rest.
  - Batches never abort on a single symbol. Each symbol yields
    {symbol, updated, error?} and the batch returns the full list.

Read path:
  load_merged_company pulls the symbol from all five tables and runs the
  reconciliation + IPO-age gate in services.metric_resolver.
"""

import logging
from datetime import date
from typing import Any

import httpx
from sqlalchemy.orm import Session

from indexlens.api_clients import fmp_client, yahoo_client
from indexlens.config import Settings, get_settings
from indexlens.database import SessionLocal
from indexlens.models import MASTER_TABLE
from indexlens.normalizers import fmp_normalizer
from indexlens.repositories import metrics_repo
from indexlens.services.cache import TTLCache
from indexlens.services.metric_resolver import INDEX_TABLE_PRIORITY, merge_company
from indexlens.services.metrics_calculator import RawFinancials, compute_metric_set
from indexlens.services.task_queue import RateLimitedTaskQueue

logger = logging.getLogger(__name__)


class RecomputeResult:
    def __init__(self, symbol: str):
        self.symbol = symbol
        self.updated: bool = False
        self.error: str | None = None
        self.tables: dict[str, str] = {}
        self.logs: list[str] = []

    def log(self, msg: str) -> None:
        logger.info(msg)
        self.logs.append(msg)

    def fail(self, error: str) -> None:
        self.log(f"[Recompute] FAILED: {self.symbol} - {error}")
        self.error = error

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"symbol": self.symbol, "updated": self.updated}
        if self.error:
            out["error"] = self.error
        if self.tables:
            out["tables"] = self.tables
        return out


def make_cache(settings: Settings | None = None) -> TTLCache:
    settings = settings or get_settings()
    return TTLCache(settings.profile_cache_ttl_s)


# ---------------------------------------------------------------------------
# Fetch
# ---------------------------------------------------------------------------

async def fetch_profile_cached(
    symbol: str,
    client: httpx.AsyncClient | None,
    cache: TTLCache,
) -> dict[str, Any]:
    """normalize_profile() of the FMP profile, cached per symbol."""
    async def load() -> dict[str, Any]:
        return fmp_normalizer.normalize_profile(await fmp_client.fetch_profile(symbol, client))

    return await cache.get_or_load(f"profile:{symbol}", load)


async def fetch_fx_cached(
    currency: str | None,
    base_currency: str,
    client: httpx.AsyncClient | None,
    cache: TTLCache,
) -> float | None:
    """Spot rate currency -> base. Best-effort: provider failures give None."""
    if not currency or currency == base_currency:
        return None

    async def load() -> float | None:
        try:
            return await fmp_client.fetch_fx_rate(currency, base_currency, client)
        except fmp_client.ProviderError as exc:
            logger.warning("[Recompute][FX] %s%s lookup failed: %s", currency, base_currency, exc)
            return None

    return await cache.get_or_load(f"fx:{currency}{base_currency}", load)


async def fetch_raw_financials(
    symbol: str,
    client: httpx.AsyncClient | None,
    cache: TTLCache,
    settings: Settings | None = None,
    today: date | None = None,
) -> RawFinancials:
    """All provider data for one symbol, fetched one call at a time."""
    settings = settings or get_settings()
    raw = RawFinancials(symbol=symbol, base_currency=settings.base_currency)
    raw.quote = await fmp_client.fetch_quote(symbol, client)
    raw.profile = await fetch_profile_cached(symbol, client, cache)
    raw.income = await fmp_client.fetch_income_statements(symbol, client)
    raw.balance = await fmp_client.fetch_balance_sheets(symbol, client)
    raw.cash_flow = await fmp_client.fetch_cash_flow_statements(symbol, client)
    raw.key_metrics = await fmp_client.fetch_key_metrics(symbol, client)
    raw.key_metrics_ttm = await fmp_client.fetch_key_metrics_ttm(symbol, client)
    raw.ratios = await fmp_client.fetch_ratios(symbol, client)
    raw.prices = await fmp_client.fetch_historical_prices(symbol, client, years=10, today=today)
    raw.reporting_currency = fmp_normalizer.reported_currency(raw.cash_flow, raw.income, raw.profile)
    raw.fx_rate = await fetch_fx_cached(raw.reporting_currency, settings.base_currency, client, cache)
    return raw


# ---------------------------------------------------------------------------
# Single symbol
# ---------------------------------------------------------------------------

async def recompute_symbol(
    symbol: str,
    db: Session,
    client: httpx.AsyncClient | None = None,
    cache: TTLCache | None = None,
    today: date | None = None,
    settings: Settings | None = None,
) -> RecomputeResult:
    symbol = symbol.strip().upper()
    settings = settings or get_settings()
    cache = cache if cache is not None else make_cache(settings)
    today = today or date.today()
    result = RecomputeResult(symbol)

    try:
        raw = await fetch_raw_financials(symbol, client, cache, settings, today)
    except Exception as exc:
        result.fail(f"fetch: {exc}")
        return result

    if not raw.income and not raw.cash_flow and not raw.prices:
        result.fail("no data from provider")
        return result

    payload = compute_metric_set(raw, today)
    computed = sum(1 for v in payload.values() if v is not None)
    result.log(f"[Recompute] {symbol}: {computed}/{len(payload)} fields computed")

    result.tables.update(metrics_repo.apply_update_to_tables(
        db, [MASTER_TABLE], symbol, payload, insert_missing=True,
    ))
    members = metrics_repo.membership_tables(db, symbol)
    result.tables.update(metrics_repo.apply_update_to_tables(db, members, symbol, payload))

    written = [t for t, status in result.tables.items() if status in ("inserted", "updated")]
    failed = [t for t, status in result.tables.items() if status.startswith("failed")]
    result.updated = bool(written)
    if failed:
        result.fail(f"write failed for {', '.join(failed)}")
    result.log(f"[Recompute] {symbol}: wrote {written or 'nothing'}")
    return result


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

async def recompute_batch(
    symbols: list[str],
    db: Session,
    client: httpx.AsyncClient | None = None,
    cache: TTLCache | None = None,
    today: date | None = None,
    settings: Settings | None = None,
    queue: RateLimitedTaskQueue | None = None,
) -> list[RecomputeResult]:
    """
    Recompute every symbol through the rate-limited queue. Symbols share one
    DB session, so concurrency above 1 only applies to the fetch phase.
    """
    settings = settings or get_settings()
    cache = cache if cache is not None else make_cache(settings)
    queue = queue or RateLimitedTaskQueue(
        concurrency=settings.batch_concurrency,
        delay_s=settings.batch_delay_ms / 1000,
    )

    async def worker(sym: str) -> RecomputeResult:
        return await recompute_symbol(sym, db, client, cache, today, settings)

    def on_error(sym: str, exc: Exception) -> RecomputeResult:
        result = RecomputeResult(sym.strip().upper())
        result.fail(str(exc))
        return result

    logger.info("[Recompute] batch of %d symbols", len(symbols))
    results = await queue.map(worker, symbols, on_error=on_error)
    ok = sum(1 for r in results if r.updated)
    logger.info("[Recompute] batch done: %d updated, %d failed", ok, len(results) - ok)
    return results


async def run_recompute_job(
    table: str | None = None,
    symbols: list[str] | None = None,
    cache: TTLCache | None = None,
    today: date | None = None,
    delay_ms: int | None = None,
) -> list[dict[str, Any]]:
    """
    Entry point for background jobs and the CLI: owns its DB session and
    HTTP client. With no symbols, recomputes every symbol in `table`
    (default: master).
    """
    settings = get_settings()
    queue = RateLimitedTaskQueue(
        concurrency=settings.batch_concurrency,
        delay_s=(settings.batch_delay_ms if delay_ms is None else delay_ms) / 1000,
    )
    db = SessionLocal()
    try:
        if not symbols:
            symbols = metrics_repo.list_symbols(db, table or MASTER_TABLE)
        async with httpx.AsyncClient() as client:
            results = await recompute_batch(symbols, db, client, cache, today, settings, queue)
        return [r.to_dict() for r in results]
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Read path
# ---------------------------------------------------------------------------

async def resolve_ipo_date(
    symbol: str,
    client: httpx.AsyncClient | None,
    cache: TTLCache,
) -> date | None:
    """FMP profile ipoDate, then Yahoo first trade date. None when both are unknown."""
    ipo = None
    try:
        ipo = (await fetch_profile_cached(symbol, client, cache)).get("ipo_date")
    except fmp_client.ProviderError as exc:
        logger.warning("[Recompute][IPO] profile lookup failed for %s: %s", symbol, exc)
    if ipo is None:
        ipo = await cache.get_or_load(
            f"first_trade:{symbol}",
            lambda: yahoo_client.fetch_first_trade_date(symbol),
            cache_none=True,
        )
    return ipo


async def load_merged_company(
    db: Session,
    symbol: str,
    client: httpx.AsyncClient | None = None,
    cache: TTLCache | None = None,
    today: date | None = None,
    settings: Settings | None = None,
    ipo_date: date | None = None,
) -> dict[str, Any] | None:
    """Merged display row for symbol, or None when no table has it."""
    symbol = symbol.strip().upper()
    settings = settings or get_settings()
    cache = cache if cache is not None else make_cache(settings)
    today = today or date.today()

    master = metrics_repo.get_row(db, MASTER_TABLE, symbol)
    fallbacks = {t: metrics_repo.get_row(db, t, symbol) for t in INDEX_TABLE_PRIORITY}
    if master is None and not any(fallbacks.values()):
        return None

    if ipo_date is None:
        ipo_date = await resolve_ipo_date(symbol, client, cache)

    return merge_company(
        symbol, master, fallbacks, ipo_date, today,
        overrides=settings.recent_ipo_overrides,
    )

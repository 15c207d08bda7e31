"""
Derived-metrics calculator.

Pure functions over normalized series. Nothing in here raises for a value that
simply cannot be computed (short history, zero denominator, g >= WACC);
those come back as None and are persisted as NULL.

Key formulas:
  Base FCF     = mean of the latest (up to) 3 non-null yearly FCF values
  Growth g     = clamp(10Y revenue CAGR, 2%, 8%), default 5%
  DCF EV       = FCF_base * (1 + g) / (WACC - g)         WACC = 10%
                 null when g >= WACC; all DCF fields null when EV / mcap > 20
  MoS          = 1 - mcap / EV         (EV > 0, floored at -1)
  Implied g    = (mcap * WACC - FCF) / (mcap + FCF)   solved from mcap = FCF(1+g)/(WACC-g)
  Return W     = ((end / start) ** (1 / W) - 1) * 100
  MaxDD W      = 100 * max((peak - p) / peak) over the window
  AR/MDD       = (ret / 100) / (mdd / 100)             (mdd > 0)
  ROIC         = provider ROIC (pct -> decimal when > 1.5), clamp [-2, 2]
                 fallback: EBIT * (1 - tax) / (debt + equity - cash)
  ROIC std     = population std (divide by N), null when N < 2
  FCF margin   = median over years of clamp(fcf / revenue, -2, 2)
  DuPont       = revenue / assets, assets / equity, net income / equity (4 dp)
  P/E          = price / EPS                              (EPS > 0)
  PEG          = vendor ratio in (0, 10), else P/E / YoY earnings growth %
  Rev CAGR     = ((rev[0] / rev[N]) ** (1 / N) - 1) * 100
"""

import logging
import math
import statistics
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from indexlens.normalizers.fmp_normalizer import (
    SERIES_LENGTH,
    build_series,
    clamp,
    clamp_ratio,
    latest,
    normalize_ratios,
    pad_series,
    parse_date,
    pick,
    reported_currency,
    to_finite,
)

logger = logging.getLogger(__name__)

WACC = 0.10
MIN_GROWTH = 0.02
MAX_GROWTH = 0.08
DEFAULT_GROWTH = 0.05
DCF_SANITY_RATIO = 20.0
MOS_FLOOR = -1.0
BASE_FCF_YEARS = 3

RETURN_WINDOWS = (3, 5, 10)

ROIC_PERCENT_THRESHOLD = 1.5
DEFAULT_TAX_RATE = 0.21
MAX_TAX_RATE = 0.5

DEBT_TO_EQUITY_CAP = 10_000.0
INTEREST_COVERAGE_CAP = 100_000.0
MAX_PEG = 10.0
MAX_EARNINGS_GROWTH_PCT = 100.0

DCF_FIELDS = ("dcf_enterprise_value", "margin_of_safety", "dcf_implied_growth")


# ---------------------------------------------------------------------------
# Basic numeric helpers
# ---------------------------------------------------------------------------

def _is_num(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)


def _safe_div(a: Any, b: Any) -> float | None:
    """Return a/b or None if either is non-numeric or b==0."""
    if not _is_num(a) or not _is_num(b) or b == 0:
        return None
    return a / b


def _round(v: float | None, ndigits: int) -> float | None:
    return round(v, ndigits) if _is_num(v) else None


def finite_or_none(payload: dict[str, Any]) -> dict[str, Any]:
    """Replace NaN / inf floats with None; other values pass through."""
    return {
        k: (None if isinstance(v, float) and not math.isfinite(v) else v)
        for k, v in payload.items()
    }


def series_fields(prefix: str, series: list[float | None]) -> dict[str, float | None]:
    """['a', 'b', ...] -> {prefix_y1: 'a', prefix_y2: 'b', ...} for all 10 slots."""
    padded = pad_series(series)
    return {f"{prefix}_y{i + 1}": padded[i] for i in range(SERIES_LENGTH)}


def median(values: list[float]) -> float | None:
    if not values:
        return None
    return float(statistics.median(values))


# ---------------------------------------------------------------------------
# Raw input bundle
# ---------------------------------------------------------------------------

@dataclass
class RawFinancials:
    """
    Everything fetched for one symbol. Statement arrays and quote are raw FMP
    records (newest-first); profile is the normalize_profile() shape.
    """
    symbol: str
    quote: dict[str, Any] = field(default_factory=dict)
    profile: dict[str, Any] = field(default_factory=dict)
    income: list[dict[str, Any]] = field(default_factory=list)
    balance: list[dict[str, Any]] = field(default_factory=list)
    cash_flow: list[dict[str, Any]] = field(default_factory=list)
    key_metrics: list[dict[str, Any]] = field(default_factory=list)
    key_metrics_ttm: dict[str, Any] = field(default_factory=dict)
    ratios: list[dict[str, Any]] = field(default_factory=list)
    prices: list[dict[str, Any]] = field(default_factory=list)
    reporting_currency: str | None = None
    fx_rate: float | None = None
    base_currency: str = "USD"


# ---------------------------------------------------------------------------
# Revenue growth
# ---------------------------------------------------------------------------

def revenue_cagr(revenues: list[float | None], years: int) -> float | None:
    """
    CAGR (percent) between revenues[0] (latest) and revenues[years].
    Both endpoints must be positive.
    """
    if len(revenues) <= years:
        return None
    end, start = revenues[0], revenues[years]
    if not _is_num(end) or not _is_num(start) or end <= 0 or start <= 0:
        return None
    return ((end / start) ** (1 / years) - 1) * 100


def revenue_cagr_from_partial(revenues: list[float | None]) -> float | None:
    """
    CAGR (percent) from the latest value to the oldest non-null value in
    a newest-first series. Used when fewer than 10 years exist.
    """
    if not revenues or not _is_num(revenues[0]):
        return None
    for offset in range(len(revenues) - 1, 0, -1):
        if _is_num(revenues[offset]):
            return revenue_cagr(revenues, offset)
    return None


def compute_growth_metrics(income: list[dict[str, Any]]) -> dict[str, float | None]:
    # 10Y CAGR needs 11 annual records, so read the full raw array, not the 10-slot series
    revenues = [pick(r, "revenue") for r in income]
    return {
        "revenue_growth_3y": _round(revenue_cagr(revenues, 3), 2),
        "revenue_growth_5y": _round(revenue_cagr(revenues, 5), 2),
        "revenue_growth_10y": _round(revenue_cagr(revenues, 10), 2),
    }


# ---------------------------------------------------------------------------
# DCF
# ---------------------------------------------------------------------------

def base_free_cash_flow(fcf_series: list[float | None]) -> float | None:
    """Mean of the most recent (up to 3) non-null FCF values. None if empty or zero."""
    recent = [v for v in fcf_series if _is_num(v)][:BASE_FCF_YEARS]
    if not recent:
        return None
    mean = sum(recent) / len(recent)
    return None if mean == 0 else mean


def choose_growth_rate(revenue_cagr_pct: float | None) -> float:
    """Historical revenue CAGR (percent) -> decimal growth clamped to [2%, 8%]."""
    if not _is_num(revenue_cagr_pct):
        return DEFAULT_GROWTH
    return clamp(revenue_cagr_pct / 100, MIN_GROWTH, MAX_GROWTH)


def convert_to_base_currency(
    value: float | None,
    currency: str | None,
    fx_rate: float | None,
    base_currency: str = "USD",
) -> float | None:
    """Multiply by the spot rate when currency differs from base. Missing rate: unchanged."""
    if not _is_num(value):
        return None
    if not currency or currency.upper() == base_currency.upper():
        return value
    if not _is_num(fx_rate) or fx_rate <= 0:
        logger.warning("[DCF] no %s%s rate, using unconverted value", currency, base_currency)
        return value
    return value * fx_rate


def dcf_enterprise_value(base_fcf: float | None, growth: float, wacc: float = WACC) -> float | None:
    """Gordon growth perpetuity. None when g >= WACC (perpetuity undefined)."""
    if not _is_num(base_fcf) or not _is_num(growth):
        return None
    if growth >= wacc:
        return None
    return base_fcf * (1 + growth) / (wacc - growth)


def margin_of_safety(market_cap: float | None, enterprise_value: float | None) -> float | None:
    """1 - mcap / EV, defined only for EV > 0, floored at -1."""
    if not _is_num(market_cap) or not _is_num(enterprise_value) or enterprise_value <= 0:
        return None
    return max(MOS_FLOOR, 1 - market_cap / enterprise_value)


def implied_growth(base_fcf: float | None, market_cap: float | None, wacc: float = WACC) -> float | None:
    """
    Growth rate the market price implies: solve mcap = FCF * (1 + g) / (WACC - g).
    Needs positive FCF and market cap; the solution is always below WACC.
    """
    if not _is_num(base_fcf) or not _is_num(market_cap):
        return None
    if base_fcf <= 0 or market_cap <= 0:
        return None
    return (market_cap * wacc - base_fcf) / (market_cap + base_fcf)


def compute_dcf_metrics(
    fcf_series: list[float | None],
    market_cap: float | None,
    revenue_cagr_pct: float | None,
    currency: str | None = None,
    fx_rate: float | None = None,
    base_currency: str = "USD",
    symbol: str = "",
) -> dict[str, float | None]:
    empty = {k: None for k in DCF_FIELDS}

    base_fcf = base_free_cash_flow(fcf_series)
    if base_fcf is None:
        logger.info("[DCF] %s: no usable FCF history", symbol)
        return empty
    base_fcf = convert_to_base_currency(base_fcf, currency, fx_rate, base_currency)

    growth = choose_growth_rate(revenue_cagr_pct)
    ev = dcf_enterprise_value(base_fcf, growth)
    if ev is None:
        logger.info("[DCF] %s: g=%.4f >= WACC, not computable", symbol, growth)
        return empty

    if _is_num(market_cap) and market_cap > 0 and ev / market_cap > DCF_SANITY_RATIO:
        logger.warning(
            "[DCF] %s: EV/mcap=%.1f > %.0f, discarding as implausible",
            symbol, ev / market_cap, DCF_SANITY_RATIO,
        )
        return empty

    return {
        "dcf_enterprise_value": ev,
        "margin_of_safety": margin_of_safety(market_cap, ev),
        "dcf_implied_growth": implied_growth(base_fcf, market_cap),
    }


# ---------------------------------------------------------------------------
# Returns / drawdowns
# ---------------------------------------------------------------------------

def years_before(d: date, years: int) -> date:
    try:
        return d.replace(year=d.year - years)
    except ValueError:
        # Feb 29 -> Feb 28
        return d.replace(year=d.year - years, day=28)


def max_drawdown(closes: list[float]) -> float | None:
    """Largest peak-to-trough decline in percent. None for fewer than 2 points."""
    values = [c for c in closes if _is_num(c)]
    if len(values) < 2:
        return None
    peak = values[0]
    worst = 0.0
    for p in values:
        if p > peak:
            peak = p
        if peak > 0:
            worst = max(worst, (peak - p) / peak)
    return 100 * worst


def annualized_return(start_price: float | None, end_price: float | None, years: float) -> float | None:
    if not _is_num(start_price) or not _is_num(end_price) or start_price <= 0 or end_price < 0 or years <= 0:
        return None
    return ((end_price / start_price) ** (1 / years) - 1) * 100


def ar_mdd_ratio(return_pct: float | None, drawdown_pct: float | None) -> float | None:
    if not _is_num(return_pct) or not _is_num(drawdown_pct) or drawdown_pct <= 0:
        return None
    return (return_pct / 100) / (drawdown_pct / 100)


def _nearest_index(prices: list[dict[str, Any]], target: date) -> int:
    """Index of the close whose date is nearest to target (earlier wins a tie)."""
    best_idx = 0
    best_gap = None
    for i, row in enumerate(prices):
        gap = abs((row["date"] - target).days)
        if best_gap is None or gap < best_gap:
            best_idx, best_gap = i, gap
    return best_idx


def compute_window_metrics(
    prices: list[dict[str, Any]],
    years: int,
    today: date,
) -> dict[str, float | None]:
    """
    Return / max drawdown / AR-MDD for one window.
    prices must be [{date, close}] ascending. Window left null when the
    history does not reach back to today - years.
    """
    keys = (f"return_{years}_year", f"max_drawdown_{years}_year", f"ar_mdd_ratio_{years}_year")
    empty = dict.fromkeys(keys)
    if len(prices) < 2:
        return empty

    cutoff = years_before(today, years)
    if prices[0]["date"] > cutoff:
        return empty

    start_idx = _nearest_index(prices, cutoff)
    window = prices[start_idx:]
    ret = annualized_return(window[0]["close"], window[-1]["close"], years)
    mdd = max_drawdown([row["close"] for row in window])
    return {
        keys[0]: ret,
        keys[1]: mdd,
        keys[2]: ar_mdd_ratio(ret, mdd),
    }


def compute_return_metrics(prices: list[dict[str, Any]], today: date) -> dict[str, float | None]:
    ordered = sorted(
        (
            {"date": d, "close": c}
            for d, c in ((parse_date(r.get("date")), to_finite(r.get("close"))) for r in prices)
            if d is not None and c is not None
        ),
        key=lambda r: r["date"],
    )
    out: dict[str, float | None] = {}
    for w in RETURN_WINDOWS:
        out.update(compute_window_metrics(ordered, w, today))
    return out


# ---------------------------------------------------------------------------
# ROIC
# ---------------------------------------------------------------------------

def normalize_roic_value(v: Any) -> float | None:
    """Percent-looking values (> 1.5) are divided by 100, then clamped to [-2, 2]."""
    f = to_finite(v)
    if f is None:
        return None
    if f > ROIC_PERCENT_THRESHOLD:
        f = f / 100
    return clamp_ratio(f)


def roic_series_from_key_metrics(key_metrics: list[dict[str, Any]]) -> list[float | None]:
    return pad_series([normalize_roic_value(pick(r, "roic")) for r in key_metrics[:SERIES_LENGTH]])


def effective_tax_rate(income_tax_expense: float | None, income_before_tax: float | None) -> float:
    if _is_num(income_tax_expense) and _is_num(income_before_tax) and income_before_tax > 0:
        return clamp(income_tax_expense / income_before_tax, 0.0, MAX_TAX_RATE)
    return DEFAULT_TAX_RATE


def roic_from_statement(income: dict[str, Any], balance: dict[str, Any]) -> float | None:
    """NOPAT / invested capital for a single fiscal year."""
    ebit = pick(income, "ebit")
    debt = pick(balance, "total_debt")
    equity = pick(balance, "total_equity")
    cash = pick(balance, "cash")
    if ebit is None or debt is None or equity is None or cash is None:
        return None
    invested = debt + equity - cash
    if invested <= 0:
        return None
    tax = effective_tax_rate(pick(income, "income_tax_expense"), pick(income, "income_before_tax"))
    nopat = ebit * (1 - tax)
    return clamp_ratio(nopat / invested)


def roic_series_from_statements(
    income: list[dict[str, Any]],
    balance: list[dict[str, Any]],
) -> list[float | None]:
    """Fallback ROIC series; income[i] pairs with balance[i] (same fiscal year offset)."""
    values: list[float | None] = []
    for i in range(min(len(income), len(balance), SERIES_LENGTH)):
        values.append(roic_from_statement(income[i], balance[i]))
    return pad_series(values)


def roic_statistics(series: list[float | None]) -> tuple[float | None, float | None]:
    """(mean, population std) of non-null values. std None when fewer than 2."""
    values = [v for v in series if _is_num(v)]
    if not values:
        return None, None
    avg = sum(values) / len(values)
    if len(values) < 2:
        return avg, None
    return avg, statistics.pstdev(values)


def roic_stability(avg: float | None, std: float | None) -> tuple[float | None, float | None]:
    """
    (stability, score). stability = avg / std; score = 100 * (1 - min(cv, 1))
    in [0, 100] with cv = std / avg, only for positive avg.
    """
    if not _is_num(avg) or not _is_num(std) or std <= 0:
        return None, None
    stability = avg / std
    score = None
    if avg > 0:
        cv = std / avg
        score = clamp(100 * (1 - min(cv, 1.0)), 0.0, 100.0)
    return stability, score


def compute_roic_metrics(
    key_metrics: list[dict[str, Any]],
    key_metrics_ttm: dict[str, Any],
    income: list[dict[str, Any]],
    balance: list[dict[str, Any]],
    symbol: str = "",
) -> dict[str, float | None]:
    series = roic_series_from_key_metrics(key_metrics)
    if sum(1 for v in series if v is not None) < 2:
        fallback = roic_series_from_statements(income, balance)
        if any(v is not None for v in fallback):
            logger.info("[ROIC] %s: provider series too short, using NOPAT fallback", symbol)
            series = fallback

    avg, std = roic_statistics(series)
    stability, score = roic_stability(avg, std)

    current = normalize_roic_value(pick(key_metrics_ttm, "roic")) if key_metrics_ttm else None
    if current is None:
        current = series[0]

    return {
        "roic": _round(current, 4),
        "roic_10y_avg": _round(avg, 4),
        "roic_10y_std": _round(std, 4),
        "roic_stability": _round(stability, 4),
        "roic_stability_score": _round(score, 2),
        **series_fields("roic", series),
    }


# ---------------------------------------------------------------------------
# FCF margin
# ---------------------------------------------------------------------------

def fcf_margin_series(
    fcf: list[float | None],
    revenue: list[float | None],
) -> list[float | None]:
    out: list[float | None] = []
    for f, r in zip(pad_series(fcf), pad_series(revenue)):
        ratio = _safe_div(f, r)
        out.append(clamp_ratio(ratio) if ratio is not None else None)
    return out


def fcf_margin_median(fcf: list[float | None], revenue: list[float | None]) -> float | None:
    return median([m for m in fcf_margin_series(fcf, revenue) if m is not None])


def compute_fcf_metrics(
    income: list[dict[str, Any]],
    cash_flow: list[dict[str, Any]],
) -> dict[str, float | None]:
    revenue = build_series(income, "revenue")
    fcf = build_series(cash_flow, "free_cash_flow")

    latest_fcf, latest_rev = fcf[0], revenue[0]
    current_margin = None
    if _is_num(latest_fcf) and _is_num(latest_rev) and latest_rev > 0:
        current_margin = clamp_ratio(latest_fcf / latest_rev)

    return {
        **series_fields("revenue", revenue),
        **series_fields("fcf", fcf),
        "latest_fcf": latest_fcf,
        "fcf_margin": _round(current_margin, 4),
        "fcf_margin_median_10y": _round(fcf_margin_median(fcf, revenue), 4),
    }


# ---------------------------------------------------------------------------
# DuPont / snapshot ratios
# ---------------------------------------------------------------------------

def compute_dupont(
    revenue: float | None,
    net_income: float | None,
    total_assets: float | None,
    total_equity: float | None,
) -> dict[str, float | None]:
    asset_turnover = _safe_div(revenue, total_assets) if _is_num(total_assets) and total_assets > 0 else None
    equity_ok = _is_num(total_equity) and total_equity > 0
    return {
        "asset_turnover": _round(asset_turnover, 4),
        "financial_leverage": _round(_safe_div(total_assets, total_equity), 4) if equity_ok else None,
        "roe": _round(_safe_div(net_income, total_equity), 4) if equity_ok else None,
    }


def compute_snapshot_metrics(
    income: list[dict[str, Any]],
    balance: list[dict[str, Any]],
    market_cap: float | None,
) -> dict[str, float | None]:
    revenue = latest(income, "revenue")
    net_income = latest(income, "net_income")
    total_assets = latest(balance, "total_assets")
    total_equity = latest(balance, "total_equity")

    price_to_sales = None
    net_margin = None
    if _is_num(revenue) and revenue > 0:
        price_to_sales = _safe_div(market_cap, revenue)
        net_margin = _safe_div(net_income, revenue)
        net_margin = net_margin * 100 if net_margin is not None else None

    return {
        "revenue": revenue,
        "net_income": net_income,
        "total_assets": total_assets,
        "total_equity": total_equity,
        "total_debt": latest(balance, "total_debt"),
        "cash_and_equivalents": latest(balance, "cash"),
        "price_to_sales_ratio": _round(price_to_sales, 4),
        "net_profit_margin": _round(net_margin, 2),
        **compute_dupont(revenue, net_income, total_assets, total_equity),
    }


# ---------------------------------------------------------------------------
# Earnings valuation (EPS, P/E, PEG)
# ---------------------------------------------------------------------------

def pe_ratio(price: float | None, eps: float | None) -> float | None:
    if not _is_num(price) or price <= 0 or not _is_num(eps) or eps <= 0:
        return None
    return price / eps


def _yoy_growth_pct(recent: float | None, previous: float | None) -> float | None:
    if not _is_num(recent) or not _is_num(previous) or recent <= 0 or previous <= 0:
        return None
    return clamp((recent - previous) / previous * 100, 0.0, MAX_EARNINGS_GROWTH_PCT)


def earnings_growth(income: list[dict[str, Any]]) -> float | None:
    """YoY net income growth in percent, else YoY EPS growth; capped to [0, 100]."""
    if len(income) < 2:
        return None
    growth = _yoy_growth_pct(pick(income[0], "net_income"), pick(income[1], "net_income"))
    if growth is None:
        growth = _yoy_growth_pct(pick(income[0], "eps"), pick(income[1], "eps"))
    return growth


def peg_ratio(
    vendor_peg: float | None,
    pe: float | None,
    growth_pct: float | None,
) -> float | None:
    if _is_num(vendor_peg) and 0 < vendor_peg < MAX_PEG:
        return vendor_peg
    if not _is_num(pe) or not _is_num(growth_pct) or growth_pct <= 0:
        return None
    peg = pe / growth_pct
    return peg if 0 < peg < MAX_PEG else None


def compute_valuation_metrics(
    income: list[dict[str, Any]],
    ratios: list[dict[str, Any]],
    price: float | None,
) -> dict[str, float | None]:
    eps = latest(income, "eps")
    pe = pe_ratio(price, eps)
    peg = peg_ratio(normalize_ratios(ratios)["peg_ratio"], pe, earnings_growth(income))
    return {
        "eps": _round(eps, 2),
        "pe_ratio": _round(pe, 2),
        "peg_ratio": _round(peg, 4),
    }


# ---------------------------------------------------------------------------
# Debt / coverage (vendor ratios, capped not recomputed)
# ---------------------------------------------------------------------------

def cap_high(v: float | None, cap: float) -> float | None:
    """Cap large positive glitches; zero and negative values are kept as-is."""
    if not _is_num(v):
        return None
    return min(v, cap)


def compute_debt_metrics(
    ratios: list[dict[str, Any]],
    latest_fcf: float | None,
    total_debt: float | None,
) -> dict[str, float | None]:
    vendor = normalize_ratios(ratios)
    cash_flow_to_debt = vendor["cash_flow_to_debt"]
    if cash_flow_to_debt is None and _is_num(total_debt) and total_debt > 0:
        cash_flow_to_debt = _safe_div(latest_fcf, total_debt)
    return {
        "debt_to_equity": _round(cap_high(vendor["debt_to_equity"], DEBT_TO_EQUITY_CAP), 4),
        "interest_coverage": _round(cap_high(vendor["interest_coverage"], INTEREST_COVERAGE_CAP), 4),
        "cash_flow_to_debt": _round(cash_flow_to_debt, 4),
    }


# ---------------------------------------------------------------------------
# Full pipeline
# ---------------------------------------------------------------------------

def compute_metric_set(raw: RawFinancials, today: date | None = None) -> dict[str, Any]:
    """
    Run every metric family for one symbol. Returns a flat snake_case dict
    keyed by column name; every float is finite or None.
    """
    today = today or date.today()
    quote = raw.quote or {}
    profile = raw.profile or {}
    market_cap = pick(quote, "market_cap") or to_finite(profile.get("market_cap"))

    payload: dict[str, Any] = {
        "price": to_finite(quote.get("price")),
        "daily_change": to_finite(quote.get("change")),
        "daily_change_percent": to_finite(quote.get("changesPercentage")),
        "market_cap": market_cap,
        "currency": profile.get("currency") or None,
    }
    for key in ("name", "sector", "industry", "country"):
        if profile.get(key):
            payload[key] = profile[key]

    payload.update(compute_growth_metrics(raw.income))
    fcf_metrics = compute_fcf_metrics(raw.income, raw.cash_flow)
    payload.update(fcf_metrics)
    payload.update(compute_snapshot_metrics(raw.income, raw.balance, market_cap))
    payload.update(compute_valuation_metrics(raw.income, raw.ratios, payload["price"]))

    # FCF is in the statements' currency, not necessarily the listing currency
    reporting_currency = raw.reporting_currency or reported_currency(raw.cash_flow, raw.income, profile)
    fcf_series = [fcf_metrics[f"fcf_y{i + 1}"] for i in range(SERIES_LENGTH)]
    payload.update(compute_dcf_metrics(
        fcf_series,
        market_cap,
        payload["revenue_growth_10y"],
        currency=reporting_currency,
        fx_rate=raw.fx_rate,
        base_currency=raw.base_currency,
        symbol=raw.symbol,
    ))

    payload.update(compute_return_metrics(raw.prices, today))
    payload.update(compute_roic_metrics(
        raw.key_metrics, raw.key_metrics_ttm, raw.income, raw.balance, symbol=raw.symbol,
    ))
    payload.update(compute_debt_metrics(raw.ratios, payload["latest_fcf"], payload["total_debt"]))

    return finite_or_none(payload)

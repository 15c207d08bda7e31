"""
FMP normalizer.

Turns raw Financial Modeling Prep payloads into the shapes the calculators
consume:

  - to_finite:     strict numeric cast; anything non-finite becomes None (never 0)
  - FIELD_ACCESSORS: ordered accessor list per quantity, first non-null wins
  - build_series:  10-slot newest-first series with explicit None gaps
  - normalize_prices / normalize_quote / normalize_profile / normalize_ratios
  - reported_currency: statement currency, which can differ from the listing currency

Statement arrays from FMP arrive newest-first (index 0 = latest fiscal year).
"""

import logging
import math
from datetime import date, datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)

SERIES_LENGTH = 10
RATIO_CLAMP = (-2.0, 2.0)


# ---------------------------------------------------------------------------
# Numeric helpers
# ---------------------------------------------------------------------------

def to_finite(v: Any) -> float | None:
    """Strict finite-number cast. bool, '', NaN, inf and junk all map to None."""
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        f = float(v)
    elif isinstance(v, str):
        s = v.strip()
        if not s:
            return None
        try:
            f = float(s)
        except ValueError:
            return None
    else:
        return None
    return f if math.isfinite(f) else None


def clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def clamp_ratio(v: Any) -> float | None:
    """Clamp a ratio-like value to [-2, 2]; non-finite input gives None."""
    f = to_finite(v)
    if f is None:
        return None
    return clamp(f, *RATIO_CLAMP)


def pad_series(values: list[Any], length: int = SERIES_LENGTH) -> list[float | None]:
    """Right-pad with None / truncate to exactly `length` elements."""
    out = [to_finite(v) for v in values[:length]]
    out.extend([None] * (length - len(out)))
    return out


def parse_date(d: Any) -> date | None:
    if isinstance(d, datetime):
        return d.date()
    if isinstance(d, date):
        return d
    if isinstance(d, str):
        try:
            return date.fromisoformat(d.strip()[:10])
        except ValueError:
            return None
    return None


# ---------------------------------------------------------------------------
# Field accessors
# ---------------------------------------------------------------------------

def _key(name: str) -> Callable[[dict[str, Any]], float | None]:
    def accessor(record: dict[str, Any]) -> float | None:
        return to_finite(record.get(name))
    accessor.__name__ = f"key_{name}"
    return accessor


def _fcf_from_cash_flow(record: dict[str, Any]) -> float | None:
    """operatingCashFlow + capitalExpenditure (FMP reports capex as a negative number)."""
    ocf = to_finite(record.get("operatingCashFlow"))
    capex = to_finite(record.get("capitalExpenditure"))
    if ocf is None or capex is None:
        return None
    return ocf - abs(capex)


FIELD_ACCESSORS: dict[str, tuple[Callable[[dict[str, Any]], float | None], ...]] = {
    "revenue": (
        _key("revenue"), _key("totalRevenue"), _key("revenueTTM"),
        _key("sales"), _key("salesRevenueNet"),
    ),
    "net_income": (_key("netIncome"), _key("netIncomeTTM")),
    "ebit": (_key("ebit"), _key("operatingIncome")),
    "income_before_tax": (_key("incomeBeforeTax"),),
    "income_tax_expense": (_key("incomeTaxExpense"),),
    "eps": (_key("eps"), _key("epsdiluted"), _key("epsDiluted")),
    "free_cash_flow": (_key("freeCashFlow"), _key("freeCashFlowTTM"), _fcf_from_cash_flow),
    "total_assets": (_key("totalAssets"),),
    "total_equity": (_key("totalStockholdersEquity"), _key("totalEquity")),
    "total_debt": (_key("totalDebt"),),
    "cash": (_key("cashAndShortTermInvestments"), _key("cashAndCashEquivalents")),
    "roic": (_key("roic"), _key("roicTTM"), _key("returnOnInvestedCapital")),
    "debt_to_equity": (_key("debtEquityRatio"), _key("debtToEquityRatio")),
    "interest_coverage": (_key("interestCoverage"), _key("interestCoverageRatio")),
    "cash_flow_to_debt": (_key("cashFlowToDebtRatio"),),
    "peg_ratio": (_key("priceEarningsToGrowthRatio"), _key("pegRatio")),
    "market_cap": (_key("marketCap"), _key("mktCap")),
}


def pick(record: dict[str, Any] | None, quantity: str) -> float | None:
    """Evaluate the accessors for `quantity` in order; return the first non-null."""
    if not record:
        return None
    for accessor in FIELD_ACCESSORS[quantity]:
        v = accessor(record)
        if v is not None:
            return v
    return None


def build_series(
    records: list[dict[str, Any]] | None,
    quantity: str,
    length: int = SERIES_LENGTH,
) -> list[float | None]:
    """
    Newest-first series for `quantity`, always exactly `length` long.
    Slot i is None when there is no record at offset i or the field is missing.
    """
    records = records or []
    return pad_series([pick(r, quantity) for r in records[:length]], length)


def latest(records: list[dict[str, Any]] | None, quantity: str) -> float | None:
    """Value of `quantity` in the most recent record only."""
    if not records:
        return None
    return pick(records[0], quantity)


# ---------------------------------------------------------------------------
# Payload normalizers
# ---------------------------------------------------------------------------

def normalize_prices(raw: Any) -> list[dict[str, Any]]:
    """
    historical-price-full payload -> [{date, close}] sorted ascending.
    Accepts either {"symbol":..., "historical": [...]} or a bare list.
    Rows with an unparseable date or non-finite close are dropped.
    """
    if isinstance(raw, dict):
        rows = raw.get("historical") or []
    elif isinstance(raw, list):
        rows = raw
    else:
        rows = []

    by_date: dict[date, float] = {}
    for row in rows:
        if not isinstance(row, dict):
            continue
        d = parse_date(row.get("date"))
        close = to_finite(row.get("close"))
        if d is None or close is None:
            continue
        by_date[d] = close

    out = [{"date": d, "close": by_date[d]} for d in sorted(by_date)]
    logger.debug("[FMP][Prices] normalized %d of %d rows", len(out), len(rows))
    return out


def _first(raw: Any) -> dict[str, Any]:
    if isinstance(raw, list):
        return raw[0] if raw and isinstance(raw[0], dict) else {}
    return raw if isinstance(raw, dict) else {}


def normalize_quote(raw: Any) -> dict[str, Any]:
    q = _first(raw)
    return {
        "price": to_finite(q.get("price")),
        "previous_close": to_finite(q.get("previousClose")),
        "daily_change": to_finite(q.get("change")),
        "daily_change_percent": to_finite(q.get("changesPercentage")),
        "market_cap": pick(q, "market_cap"),
        "name": q.get("name") or None,
    }


def normalize_profile(raw: Any) -> dict[str, Any]:
    p = _first(raw)
    currency = p.get("currency")
    return {
        "currency": currency.strip().upper() if isinstance(currency, str) and currency.strip() else None,
        "ipo_date": parse_date(p.get("ipoDate")),
        "market_cap": pick(p, "market_cap"),
        "name": p.get("companyName") or None,
        "sector": p.get("sector") or None,
        "industry": p.get("industry") or None,
        "country": p.get("country") or None,
    }


def normalize_ratios(raw: Any) -> dict[str, float | None]:
    r = _first(raw)
    return {
        "debt_to_equity": pick(r, "debt_to_equity"),
        "interest_coverage": pick(r, "interest_coverage"),
        "cash_flow_to_debt": pick(r, "cash_flow_to_debt"),
        "peg_ratio": pick(r, "peg_ratio"),
    }


def normalize_fx_rate(raw: Any) -> float | None:
    """FX quote ({price}) -> positive rate, or None."""
    rate = to_finite(_first(raw).get("price"))
    if rate is None or rate <= 0:
        return None
    return rate


def first_trade_date_from_epoch(epoch_s: Any) -> date | None:
    ts = to_finite(epoch_s)
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).date()


def _currency_code(v: Any) -> str | None:
    if isinstance(v, str) and v.strip():
        return v.strip().upper()
    return None


def reported_currency(
    cash_flow: list[dict[str, Any]] | None,
    income: list[dict[str, Any]] | None,
    profile: dict[str, Any] | None,
) -> str | None:
    """
    Currency the statements are reported in: reportedCurrency of the latest
    cash-flow record, then of the latest income statement, then the profile's
    (listing) currency. Listing and reporting currency differ for many
    cross-listed names, e.g. USD reporters quoted in London.
    """
    for records in (cash_flow, income):
        if records and isinstance(records[0], dict):
            code = _currency_code(records[0].get("reportedCurrency"))
            if code:
                return code
    return _currency_code((profile or {}).get("currency"))

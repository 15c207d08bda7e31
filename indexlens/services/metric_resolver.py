"""
Metric reconciliation layer.

A symbol can have a row in the master `companies` table and in up to four
index tables. Rows are written independently and drift; this module merges
them into one display row at read time.

Single source of truth for:
  - table priority when filling gaps from index tables
  - per-field precedence rule (MASTER_IF_PRESENT vs MASTER_UNLESS_EMPTY)
  - IPO-age gating of 3/5/10-year windows
  - partial-history recompute of 10-year statistics for young companies

Usage:
    from indexlens.services.metric_resolver import merge_company
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Any, Literal

from indexlens.models import DATA_COLUMNS
from indexlens.services.metrics_calculator import (
    RETURN_WINDOWS,
    fcf_margin_median,
    finite_or_none,
    revenue_cagr_from_partial,
    roic_stability,
    roic_statistics,
)

logger = logging.getLogger(__name__)

Precedence = Literal["MASTER_IF_PRESENT", "MASTER_UNLESS_EMPTY"]

INDEX_TABLE_PRIORITY: tuple[str, ...] = (
    "nasdaq100_companies",
    "sp500_companies",
    "dow_jones_companies",
    "ftse100_companies",
)

# Master holds the latest full recompute for these; index copies go stale
MASTER_AUTHORITATIVE_FIELDS = frozenset([
    "dcf_enterprise_value",
    "margin_of_safety",
    "dcf_implied_growth",
    "fcf_margin_median_10y",
])


def window_fields(years: int) -> tuple[str, str, str]:
    return (
        f"return_{years}_year",
        f"max_drawdown_{years}_year",
        f"ar_mdd_ratio_{years}_year",
    )


# Always null for symbols on the recent-IPO override list
OVERRIDE_NULL_FIELDS = ("return_10_year", "ar_mdd_ratio_10_year")

# 10-year statistics that can be rebuilt from fewer years of the y1..y10 series
PARTIAL_HISTORY_FIELDS = frozenset([
    "revenue_growth_10y",
    "roic_10y_avg",
    "roic_10y_std",
    "roic_stability",
    "roic_stability_score",
    "fcf_margin_median_10y",
])


# ---------------------------------------------------------------------------
# Field policy registry
# ---------------------------------------------------------------------------

@dataclass
class FieldPolicy:
    field: str
    precedence: Precedence = "MASTER_UNLESS_EMPTY"
    age_window: int | None = None
    partial_recompute: bool = False
    description: str = ""


def _policy_for(name: str) -> FieldPolicy:
    if name in MASTER_AUTHORITATIVE_FIELDS:
        return FieldPolicy(
            field=name,
            precedence="MASTER_IF_PRESENT",
            partial_recompute=name in PARTIAL_HISTORY_FIELDS,
            description="Master value wins whenever it is not null.",
        )
    for w in RETURN_WINDOWS:
        if name in window_fields(w):
            return FieldPolicy(
                field=name,
                age_window=w,
                description=f"Null when the company is younger than {w} years.",
            )
    return FieldPolicy(
        field=name,
        partial_recompute=name in PARTIAL_HISTORY_FIELDS,
        description="Master value unless null or zero, then first index table value.",
    )


FIELD_POLICIES: dict[str, FieldPolicy] = {name: _policy_for(name) for name in DATA_COLUMNS}


def get_policy(name: str) -> FieldPolicy:
    return FIELD_POLICIES.get(name) or _policy_for(name)


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

def _is_empty(v: Any) -> bool:
    """null, empty string, NaN, or a numeric zero."""
    if v is None:
        return True
    if isinstance(v, bool):
        return False
    if isinstance(v, (int, float)):
        return v == 0 or not math.isfinite(v)
    if isinstance(v, str):
        return v.strip() == ""
    return False


def _ordered_fallbacks(fallbacks: dict[str, dict[str, Any] | None]) -> list[dict[str, Any]]:
    ordered = [fallbacks[t] for t in INDEX_TABLE_PRIORITY if fallbacks.get(t)]
    # Unknown table names go last, in the order given
    ordered += [row for t, row in fallbacks.items() if t not in INDEX_TABLE_PRIORITY and row]
    return ordered


def resolve_field(name: str, master_value: Any, fallback_values: list[Any]) -> Any:
    policy = get_policy(name)
    if policy.precedence == "MASTER_IF_PRESENT":
        if master_value is not None:
            return master_value
        return next((v for v in fallback_values if v is not None), None)

    if not _is_empty(master_value):
        return master_value
    for v in fallback_values:
        if not _is_empty(v):
            return v
    return master_value


def reconcile_row(
    master: dict[str, Any] | None,
    fallbacks: dict[str, dict[str, Any] | None],
) -> dict[str, Any]:
    """
    Merge a master row with index-table rows for the same symbol.
    fallbacks maps table name -> row (or None when the symbol is absent).
    """
    ordered = _ordered_fallbacks(fallbacks)
    base = master or {}
    keys: list[str] = list(base.keys())
    for row in ordered:
        keys.extend(k for k in row.keys() if k not in base and k not in keys)

    merged: dict[str, Any] = {}
    for k in keys:
        merged[k] = resolve_field(k, base.get(k), [row.get(k) for row in ordered])
    return merged


# ---------------------------------------------------------------------------
# IPO-age gate
# ---------------------------------------------------------------------------

def company_age_years(ipo_date: date | None, today: date) -> float | None:
    if ipo_date is None:
        return None
    return (today - ipo_date).days / 365.25


def _series(row: dict[str, Any], prefix: str) -> list[Any]:
    return [row.get(f"{prefix}_y{i}") for i in range(1, 11)]


def _round(v: float | None, ndigits: int) -> float | None:
    return round(v, ndigits) if v is not None else None


def recompute_partial_statistics(row: dict[str, Any]) -> dict[str, float | None]:
    """Rebuild 10-year statistics from whatever years of the y1..y10 series exist."""
    revenue = _series(row, "revenue")
    fcf = _series(row, "fcf")
    roic = _series(row, "roic")

    avg, std = roic_statistics(roic)
    stability, score = roic_stability(avg, std)
    return {
        "revenue_growth_10y": _round(revenue_cagr_from_partial(revenue), 2),
        "roic_10y_avg": _round(avg, 4),
        "roic_10y_std": _round(std, 4),
        "roic_stability": _round(stability, 4),
        "roic_stability_score": _round(score, 2),
        "fcf_margin_median_10y": _round(fcf_margin_median(fcf, revenue), 4),
    }


def apply_age_gate(
    row: dict[str, Any],
    ipo_date: date | None,
    today: date,
    symbol: str = "",
) -> dict[str, Any]:
    """
    Null return/drawdown/ratio fields for windows longer than the company's
    age. For companies under 10 years old, 10-year statistics are recomputed
    from the partial series (null when no partial data exists).
    """
    age = company_age_years(ipo_date, today)
    if age is None:
        return row

    out = dict(row)
    for w in RETURN_WINDOWS:
        if age < w:
            for f in window_fields(w):
                out[f] = None

    if age < 10:
        out.update(recompute_partial_statistics(out))
        logger.debug("[Resolver] %s: age %.1fy, 10Y statistics rebuilt from partial history", symbol, age)
    return out


def apply_recent_ipo_overrides(
    row: dict[str, Any],
    symbol: str,
    overrides: frozenset[str] | set[str],
) -> dict[str, Any]:
    if symbol.upper() not in overrides:
        return row
    out = dict(row)
    for f in OVERRIDE_NULL_FIELDS:
        out[f] = None
    return out


def merge_company(
    symbol: str,
    master: dict[str, Any] | None,
    fallbacks: dict[str, dict[str, Any] | None],
    ipo_date: date | None,
    today: date,
    overrides: frozenset[str] | set[str] = frozenset(),
) -> dict[str, Any] | None:
    """reconcile -> age gate -> override list -> finite guard. None if no row anywhere."""
    if not master and not any(fallbacks.values()):
        return None
    merged = reconcile_row(master, fallbacks)
    merged["symbol"] = symbol.upper()
    merged = apply_age_gate(merged, ipo_date, today, symbol=symbol)
    merged = apply_recent_ipo_overrides(merged, symbol, overrides)
    return finite_or_none(merged)

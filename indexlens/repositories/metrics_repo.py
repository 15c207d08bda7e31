"""
Company metrics repository.

Idempotency key: symbol (one row per symbol per table)

Upsert behavior:
  Last write wins. Every key in the payload that names a column is written,
  including explicit None (clears the column). Non-finite floats are stored
  as NULL. Unknown keys are ignored.

Fan-out:
  apply_update_to_tables writes one payload to several tables. Each table is
  committed on its own; a failed table is rolled back and reported while the
  remaining tables are still written.
"""

import logging
import math
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from indexlens.models import DATA_COLUMNS, MASTER_TABLE, TABLE_MODELS

logger = logging.getLogger(__name__)

_WRITABLE_COLUMNS = frozenset(DATA_COLUMNS)


def get_model(table: str) -> type:
    try:
        return TABLE_MODELS[table]
    except KeyError:
        raise ValueError(f"Unknown table: {table}") from None


def _clean_value(v: Any) -> Any:
    if isinstance(v, float) and not math.isfinite(v):
        return None
    return v


def _safe_clean(payload: dict[str, Any]) -> dict[str, Any]:
    """Keep writable columns only; NaN / inf -> None. Explicit None is kept."""
    return {k: _clean_value(v) for k, v in payload.items() if k in _WRITABLE_COLUMNS}


def _row_to_dict(row: Any, columns: Iterable[str] | None = None) -> dict[str, Any]:
    names = list(columns) if columns is not None else [c.name for c in row.__table__.columns]
    out = {name: getattr(row, name, None) for name in names}
    out["symbol"] = row.symbol
    return out


def _normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper()


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_row(db: Session, table: str, symbol: str) -> dict[str, Any] | None:
    model = get_model(table)
    row = db.scalars(select(model).where(model.symbol == _normalize_symbol(symbol))).first()
    return _row_to_dict(row) if row else None


def get_rows(
    db: Session,
    table: str,
    symbols: list[str],
    columns: list[str] | None = None,
) -> dict[str, dict[str, Any]]:
    """
    Rows for the given symbols keyed by symbol. `columns` projects the result
    (symbol is always included); symbols without a row are simply absent.
    """
    if not symbols:
        return {}
    model = get_model(table)
    if columns is not None:
        valid = set(model.__table__.columns.keys())
        unknown = [c for c in columns if c not in valid]
        if unknown:
            raise ValueError(f"Unknown columns for {table}: {unknown}")

    wanted = sorted({_normalize_symbol(s) for s in symbols})
    rows = db.scalars(select(model).where(model.symbol.in_(wanted))).all()
    return {row.symbol: _row_to_dict(row, columns) for row in rows}


def list_symbols(db: Session, table: str) -> list[str]:
    model = get_model(table)
    return list(db.scalars(select(model.symbol).order_by(model.symbol)).all())


def membership_tables(db: Session, symbol: str) -> list[str]:
    """Index tables (not master) that currently hold a row for symbol."""
    sym = _normalize_symbol(symbol)
    found = []
    for table, model in TABLE_MODELS.items():
        if table == MASTER_TABLE:
            continue
        hit = db.scalars(select(model.id).where(model.symbol == sym).limit(1)).first()
        if hit is not None:
            found.append(table)
    return found


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def upsert_metrics(
    db: Session,
    table: str,
    symbol: str,
    payload: dict[str, Any],
) -> str:
    """
    Upsert one row in `table` keyed by symbol.
    Returns "updated" or "inserted". Raises RuntimeError on store failure
    (after rolling the session back).
    """
    model = get_model(table)
    sym = _normalize_symbol(symbol)
    clean = _safe_clean(payload)

    existing = db.scalars(select(model).where(model.symbol == sym)).first()

    if existing:
        for k, v in clean.items():
            setattr(existing, k, v)
        existing.updated_at = datetime.utcnow()
        try:
            db.commit()
            logger.debug("[DB][Metrics] %s updated %s: %d fields", table, sym, len(clean))
        except Exception as exc:
            db.rollback()
            raise RuntimeError(f"{table} update failed for {sym}: {exc}") from exc
        return "updated"

    obj = model(symbol=sym)
    for k, v in clean.items():
        setattr(obj, k, v)
    try:
        db.add(obj)
        db.commit()
        logger.debug("[DB][Metrics] %s created row for %s", table, sym)
    except Exception as exc:
        db.rollback()
        raise RuntimeError(f"{table} insert failed for {sym}: {exc}") from exc
    return "inserted"


def apply_update_to_tables(
    db: Session,
    tables: Iterable[str],
    symbol: str,
    payload: dict[str, Any],
    *,
    insert_missing: bool = False,
) -> dict[str, str]:
    """
    Write the same payload to each table. Tables without a row for symbol are
    skipped unless insert_missing. Returns {table: "updated"|"inserted"|"skipped"|"failed: ..."}.
    """
    sym = _normalize_symbol(symbol)
    outcome: dict[str, str] = {}
    for table in tables:
        try:
            if not insert_missing and get_row(db, table, sym) is None:
                outcome[table] = "skipped"
                continue
            outcome[table] = upsert_metrics(db, table, sym, payload)
        except Exception as exc:
            db.rollback()
            logger.error("[DB][Metrics] %s write failed for %s: %s", table, sym, exc)
            outcome[table] = f"failed: {exc}"
    return outcome

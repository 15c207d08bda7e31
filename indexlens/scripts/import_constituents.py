"""
Load index constituents from CSV into one of the company tables.

Run from the project root:
    python3 -m indexlens.scripts.import_constituents sp500_companies data/sp500.csv

The CSV needs a `symbol` header; any other header that names a column
(name, rank, sector, country, market_cap, ...) is written as well. Rows are
upserted by symbol, so re-running an import refreshes identity fields without
touching metric columns the file does not mention.
"""

import argparse
import csv
import logging
from pathlib import Path
from typing import Any

from sqlalchemy.orm import Session
from sqlalchemy.sql.sqltypes import Float, Integer

from indexlens.database import Base, SessionLocal, engine
from indexlens.models import DATA_COLUMNS, TABLE_MODELS
from indexlens.repositories import metrics_repo

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

NULL_VALUES = {"", "null", "none", "na", "nan", "n/a"}


def parse_value(raw: str | None, column_type) -> Any:
    if raw is None:
        return None
    text = raw.strip()
    if text.lower() in NULL_VALUES:
        return None
    if isinstance(column_type, Integer):
        return int(float(text.replace(",", "")))
    if isinstance(column_type, Float):
        return float(text.replace(",", ""))
    return text


def import_csv(session: Session, csv_path: Path, table: str) -> tuple[int, int]:
    columns = {
        col.name: col for col in TABLE_MODELS[table].__table__.columns if col.name in DATA_COLUMNS
    }
    imported_count = 0
    skipped_count = 0

    with csv_path.open("r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle)
        for line_no, row in enumerate(reader, start=2):
            symbol = (row.get("symbol") or "").strip().upper()
            if not symbol:
                skipped_count += 1
                logger.warning("%s:%s skipped row with empty symbol", csv_path.name, line_no)
                continue
            try:
                payload = {
                    name: parse_value(row.get(name), col.type)
                    for name, col in columns.items()
                    if name in row
                }
                metrics_repo.upsert_metrics(session, table, symbol, payload)
                imported_count += 1
            except (ValueError, RuntimeError) as exc:
                skipped_count += 1
                logger.warning("%s:%s skipped %s: %s", csv_path.name, line_no, symbol, exc)

    return imported_count, skipped_count


def main() -> None:
    parser = argparse.ArgumentParser(description="Import index constituents from CSV.")
    parser.add_argument("table", choices=sorted(TABLE_MODELS))
    parser.add_argument("csv_path", type=Path)
    args = parser.parse_args()

    if not args.csv_path.exists():
        raise SystemExit(f"Missing file: {args.csv_path}")

    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        imported_count, skipped_count = import_csv(session, args.csv_path, args.table)
    logger.info("%s -> %s imported=%s skipped=%s", args.csv_path.name, args.table, imported_count, skipped_count)


if __name__ == "__main__":
    main()

"""
Recompute derived metrics from the command line.

Run from the project root:
    python3 -m indexlens.scripts.recompute_metrics --table sp500_companies
    python3 -m indexlens.scripts.recompute_metrics --symbols AAPL MSFT

Without --symbols every symbol in --table (default: companies) is processed,
one at a time with --delay-ms between symbols.
"""

import argparse
import asyncio
import logging

from indexlens.database import Base, engine
from indexlens.models import TABLE_MODELS
from indexlens.orchestrator.recompute_orchestrator import run_recompute_job

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Recompute derived metrics for a table or symbol list.")
    parser.add_argument("--table", choices=sorted(TABLE_MODELS), default=None)
    parser.add_argument("--symbols", nargs="*", default=None)
    parser.add_argument("--delay-ms", type=int, default=None, help="Pause between symbols.")
    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)
    results = asyncio.run(
        run_recompute_job(table=args.table, symbols=args.symbols, delay_ms=args.delay_ms)
    )

    for r in results:
        if r["updated"] and not r.get("error"):
            print(f"  [OK]   {r['symbol']}")
        else:
            print(f"  [FAIL] {r['symbol']}: {r.get('error')}")
    ok = sum(1 for r in results if r["updated"])
    print(f"\nDone: {ok}/{len(results)} symbols updated.")


if __name__ == "__main__":
    main()

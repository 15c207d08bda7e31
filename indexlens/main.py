import logging
from datetime import date
from typing import Any

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from indexlens.database import Base, engine, get_db
from indexlens.models import TABLE_MODELS
from indexlens.orchestrator.recompute_orchestrator import (
    load_merged_company,
    make_cache,
    recompute_symbol,
    run_recompute_job,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="IndexLens Metrics")

Base.metadata.create_all(bind=engine)

# Profile / FX cache shared by every request in this process
app.state.cache = make_cache()


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class RecomputeResponse(BaseModel):
    symbol: str
    updated: bool
    error: str | None = None
    tables: dict[str, str] = {}


class JobStartedResponse(BaseModel):
    status: str
    table: str | None = None
    symbols: list[str] | None = None


class RecomputeJobRequest(BaseModel):
    table: str | None = None
    symbols: list[str] | None = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.get("/health")
def healthcheck():
    return {"status": "ok"}


@app.get("/companies/{symbol}")
async def get_company(symbol: str, db: Session = Depends(get_db)) -> dict[str, Any]:
    """Merged row across master + index tables, with IPO-age gating applied."""
    row = await load_merged_company(db, symbol, cache=app.state.cache, today=date.today())
    if row is None:
        raise HTTPException(status_code=404, detail=f"{symbol.strip().upper()} not found")
    return row


@app.post("/recompute/{symbol}", response_model=RecomputeResponse)
async def recompute_one(symbol: str, db: Session = Depends(get_db)):
    result = await recompute_symbol(symbol, db, cache=app.state.cache)
    return RecomputeResponse(**result.to_dict())


async def _run_job(table: str | None, symbols: list[str] | None) -> None:
    results = await run_recompute_job(table=table, symbols=symbols, cache=app.state.cache)
    failed = [r for r in results if not r["updated"]]
    logger.info("[Job] recompute finished: %d symbols, %d failed", len(results), len(failed))
    for r in failed:
        logger.warning("[Job] %s: %s", r["symbol"], r.get("error"))


@app.post("/jobs/recompute", response_model=JobStartedResponse)
def start_recompute_job(req: RecomputeJobRequest, background_tasks: BackgroundTasks):
    """Kick off a batch recompute; the outcome is only visible in logs and persisted rows."""
    if req.table is not None and req.table not in TABLE_MODELS:
        raise HTTPException(status_code=400, detail=f"Unknown table: {req.table}")
    symbols = [s.strip().upper() for s in req.symbols] if req.symbols else None
    background_tasks.add_task(_run_job, req.table, symbols)
    return JobStartedResponse(status="started", table=req.table, symbols=symbols)

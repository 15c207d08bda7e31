"""
Tests — HTTP job-trigger surface
"""

from datetime import date

import pytest
from fastapi.testclient import TestClient

from indexlens import main
from indexlens.database import SessionLocal
from indexlens.orchestrator import recompute_orchestrator as orch
from indexlens.orchestrator.recompute_orchestrator import RecomputeResult
from indexlens.repositories import metrics_repo

client = TestClient(main.app)


@pytest.fixture
def seeded():
    db = SessionLocal()
    try:
        metrics_repo.upsert_metrics(db, "companies", "HTTPCO", {"price": 0.0, "dcf_enterprise_value": 10.0})
        metrics_repo.upsert_metrics(db, "nasdaq100_companies", "HTTPCO", {"price": 55.0, "return_10_year": 9.0})
        yield
    finally:
        db.close()


def test_health():
    assert client.get("/health").json() == {"status": "ok"}


def test_get_company_returns_merged_row(seeded, monkeypatch):
    async def ipo(symbol, http_client, cache):
        return date(2018, 1, 1)

    monkeypatch.setattr(orch, "resolve_ipo_date", ipo)
    resp = client.get("/companies/httpco")
    assert resp.status_code == 200
    body = resp.json()
    assert body["symbol"] == "HTTPCO"
    assert body["price"] == 55.0
    assert body["dcf_enterprise_value"] == 10.0
    assert body["return_10_year"] is None


def test_get_company_404():
    assert client.get("/companies/DOESNOTEXIST").status_code == 404


def test_recompute_one(monkeypatch):
    async def fake_recompute(symbol, db, cache=None):
        result = RecomputeResult(symbol.upper())
        result.updated = True
        result.tables = {"companies": "updated"}
        return result

    monkeypatch.setattr(main, "recompute_symbol", fake_recompute)
    resp = client.post("/recompute/aapl")
    assert resp.status_code == 200
    assert resp.json() == {"symbol": "AAPL", "updated": True, "error": None, "tables": {"companies": "updated"}}


def test_job_returns_started_and_runs_in_background(monkeypatch):
    seen = {}

    async def fake_job(table=None, symbols=None, cache=None):
        seen["table"] = table
        seen["symbols"] = symbols
        return [{"symbol": "AAPL", "updated": True}, {"symbol": "BAD", "updated": False, "error": "boom"}]

    monkeypatch.setattr(main, "run_recompute_job", fake_job)
    resp = client.post("/jobs/recompute", json={"table": "sp500_companies", "symbols": ["aapl", "bad"]})

    assert resp.status_code == 200
    assert resp.json()["status"] == "started"
    assert seen == {"table": "sp500_companies", "symbols": ["AAPL", "BAD"]}


def test_job_rejects_unknown_table():
    resp = client.post("/jobs/recompute", json={"table": "crypto_companies"})
    assert resp.status_code == 400

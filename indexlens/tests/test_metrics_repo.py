"""
Acceptance tests — company metrics repository

Rules:
  - Upsert is keyed by symbol, last write wins, explicit None clears a column.
  - NaN / inf are stored as NULL; unknown keys are ignored.
  - Fan-out writes are independent per table: one failure does not stop the rest.
"""

import pytest

from indexlens.repositories import metrics_repo


def test_insert_then_update(db):
    assert metrics_repo.upsert_metrics(db, "companies", "aapl", {"price": 190.0, "roe": 1.5}) == "inserted"
    assert metrics_repo.upsert_metrics(db, "companies", "AAPL", {"price": 195.0}) == "updated"

    row = metrics_repo.get_row(db, "companies", "AAPL")
    assert row["symbol"] == "AAPL"
    assert row["price"] == 195.0
    assert row["roe"] == 1.5, "fields absent from the payload are left alone"


def test_explicit_none_clears_column(db):
    metrics_repo.upsert_metrics(db, "companies", "MSFT", {"dcf_enterprise_value": 1000.0})
    metrics_repo.upsert_metrics(db, "companies", "MSFT", {"dcf_enterprise_value": None})
    assert metrics_repo.get_row(db, "companies", "MSFT")["dcf_enterprise_value"] is None


def test_non_finite_stored_as_null_and_unknown_keys_ignored(db):
    metrics_repo.upsert_metrics(
        db, "sp500_companies", "NVDA",
        {"roic": float("nan"), "roe": float("inf"), "not_a_column": 5, "id": 999},
    )
    row = metrics_repo.get_row(db, "sp500_companies", "NVDA")
    assert row["roic"] is None
    assert row["roe"] is None
    assert "not_a_column" not in row
    assert row["id"] != 999


def test_unknown_table_rejected(db):
    with pytest.raises(ValueError):
        metrics_repo.upsert_metrics(db, "bogus_table", "AAPL", {})


def test_get_rows_projection(db):
    metrics_repo.upsert_metrics(db, "companies", "AAPL", {"price": 1.0, "roe": 0.5})
    metrics_repo.upsert_metrics(db, "companies", "MSFT", {"price": 2.0, "roe": 0.4})

    rows = metrics_repo.get_rows(db, "companies", ["aapl", "MSFT", "MISSING"], columns=["price"])
    assert set(rows) == {"AAPL", "MSFT"}
    assert rows["AAPL"] == {"price": 1.0, "symbol": "AAPL"}


def test_get_rows_full_and_empty(db):
    metrics_repo.upsert_metrics(db, "companies", "AAPL", {"price": 1.0})
    full = metrics_repo.get_rows(db, "companies", ["AAPL"])
    assert "roic_y10" in full["AAPL"]
    assert metrics_repo.get_rows(db, "companies", []) == {}
    with pytest.raises(ValueError):
        metrics_repo.get_rows(db, "companies", ["AAPL"], columns=["nope"])


def test_membership_tables_and_list_symbols(db):
    metrics_repo.upsert_metrics(db, "companies", "AAPL", {})
    metrics_repo.upsert_metrics(db, "sp500_companies", "AAPL", {})
    metrics_repo.upsert_metrics(db, "nasdaq100_companies", "AAPL", {})
    metrics_repo.upsert_metrics(db, "sp500_companies", "JPM", {})

    assert sorted(metrics_repo.membership_tables(db, "aapl")) == ["nasdaq100_companies", "sp500_companies"]
    assert metrics_repo.list_symbols(db, "sp500_companies") == ["AAPL", "JPM"]


def test_fan_out_skips_tables_without_symbol(db):
    metrics_repo.upsert_metrics(db, "sp500_companies", "AAPL", {})
    outcome = metrics_repo.apply_update_to_tables(
        db, ["sp500_companies", "ftse100_companies"], "AAPL", {"roe": 0.3},
    )
    assert outcome == {"sp500_companies": "updated", "ftse100_companies": "skipped"}
    assert metrics_repo.get_row(db, "ftse100_companies", "AAPL") is None


def test_fan_out_insert_missing(db):
    outcome = metrics_repo.apply_update_to_tables(db, ["companies"], "AAPL", {"roe": 0.3}, insert_missing=True)
    assert outcome == {"companies": "inserted"}


def test_fan_out_failure_is_isolated(db, monkeypatch):
    for table in ("sp500_companies", "nasdaq100_companies", "dow_jones_companies"):
        metrics_repo.upsert_metrics(db, table, "AAPL", {})

    real_upsert = metrics_repo.upsert_metrics

    def flaky_upsert(session, table, symbol, payload):
        if table == "nasdaq100_companies":
            raise RuntimeError("disk full")
        return real_upsert(session, table, symbol, payload)

    monkeypatch.setattr(metrics_repo, "upsert_metrics", flaky_upsert)
    outcome = metrics_repo.apply_update_to_tables(
        db, ["sp500_companies", "nasdaq100_companies", "dow_jones_companies"], "AAPL", {"roe": 0.3},
    )

    assert outcome["sp500_companies"] == "updated"
    assert outcome["nasdaq100_companies"].startswith("failed")
    assert outcome["dow_jones_companies"] == "updated"
    assert metrics_repo.get_row(db, "dow_jones_companies", "AAPL")["roe"] == 0.3
    assert metrics_repo.get_row(db, "nasdaq100_companies", "AAPL")["roe"] is None

"""Tests for CLI commands and exit codes."""

from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

import pytest
from cli import app
from sqlalchemy import Engine
from typer.testing import CliRunner

from budgeting.lock import JobLock
from budgeting.reconcile import LOCK_NAME
from tests.utils.db_helper import count_rows, seed_budget, seed_log

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_env(monkeypatch: pytest.MonkeyPatch, database_url: str) -> None:
    """Point the CLI at the test database with no dotenv or ERP access."""
    monkeypatch.setenv("DATABASE_URL", database_url)
    monkeypatch.setenv("BUDGET_SKIP_DOTENV", "1")
    monkeypatch.setenv("BUDGET_PLAIN", "1")
    monkeypatch.delenv("BUDGET_ERP_API_URL", raising=False)


def test_missing_database_url_exits_2(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DATABASE_URL")

    result = runner.invoke(app, ["list"])

    assert result.exit_code == 2
    assert "DATABASE_URL not found" in result.output


def test_init_db_is_repeatable() -> None:
    first = runner.invoke(app, ["init-db"])
    second = runner.invoke(app, ["init-db"])

    assert first.exit_code == 0
    assert second.exit_code == 0
    assert "initialized" in second.output


def test_create_show_delete_roundtrip(tmp_path: Path, db_engine: Engine) -> None:
    lines_path = tmp_path / "lines.json"
    lines_path.write_text(json.dumps([{"account_id": 5, "amount": "1200"}]))

    created = runner.invoke(
        app, ["create", "--title", "Ops", "--fiscal-year", "2024", "--lines-json", str(lines_path)]
    )
    assert created.exit_code == 0, created.output
    assert "Created budget 1" in created.output

    shown = runner.invoke(app, ["show", "1"])
    assert shown.exit_code == 0
    budget = json.loads(shown.stdout)
    assert budget["status"] == "assigned"
    assert budget["start_date"] == "2024-01-01"
    assert budget["lines"][0]["account_id"] == 5

    deleted = runner.invoke(app, ["delete", "1"])
    assert deleted.exit_code == 0
    with db_engine.connect() as conn:
        assert count_rows(conn, "budgets") == 0


def test_create_without_title_exits_2() -> None:
    result = runner.invoke(app, ["create", "--fiscal-year", "2024"])

    assert result.exit_code == 2
    assert "Title is required" in result.output


def test_create_without_range_exits_2() -> None:
    result = runner.invoke(app, ["create", "--title", "Ops", "--start", "2024-01-01"])

    assert result.exit_code == 2


def test_lines_json_must_be_array(tmp_path: Path) -> None:
    lines_path = tmp_path / "lines.json"
    lines_path.write_text(json.dumps({"account_id": 5}))

    result = runner.invoke(
        app, ["create", "--title", "Ops", "--fiscal-year", "2024", "--lines-json", str(lines_path)]
    )

    assert result.exit_code == 2


def test_unknown_budget_exits_3() -> None:
    for command in (["show", "404"], ["delete", "404"], ["update", "404", "--title", "X"]):
        result = runner.invoke(app, command)
        assert result.exit_code == 3, command
        assert "Budget not found: 404" in result.output


def test_non_numeric_budget_id_exits_2() -> None:
    result = runner.invoke(app, ["show", "abc"])

    assert result.exit_code == 2


def test_update_replaces_lines(tmp_path: Path, db_engine: Engine) -> None:
    with db_engine.begin() as conn:
        budget_id = seed_budget(conn, lines=[(5, "100"), (6, "100")])
    lines_path = tmp_path / "lines.json"
    lines_path.write_text(json.dumps([{"account_id": 7, "amount": 10}]))

    result = runner.invoke(
        app, ["update", str(budget_id), "--status", "active", "--lines-json", str(lines_path)]
    )

    assert result.exit_code == 0, result.output
    with db_engine.connect() as conn:
        assert count_rows(conn, "budget_lines") == 1


def test_list_filters_by_overlap(db_engine: Engine) -> None:
    with db_engine.begin() as conn:
        seed_budget(conn, title="Old", start_date="2023-01-01", end_date="2023-12-31")
        seed_budget(conn, title="Current")

    result = runner.invoke(app, ["list", "--from", "2024-03-01", "--to", "2024-03-31"])

    assert result.exit_code == 0
    assert [b["title"] for b in json.loads(result.stdout)] == ["Current"]


def test_report_writes_json_and_html(tmp_path: Path, db_engine: Engine) -> None:
    with db_engine.begin() as conn:
        seed_budget(conn, lines=[(5, "10000")])
        seed_log(conn, 5, "8000", "2024-02-01")

    result = runner.invoke(
        app, ["report", "--fiscal-year", "2024", "--period", "q1", "--out", str(tmp_path)]
    )

    assert result.exit_code == 0, result.output
    payload = json.loads((tmp_path / "budget_report_2024Q1.json").read_text())
    assert Decimal(payload["variance"]) == Decimal(-2000)
    assert Decimal(payload["variance_percentage"]) == Decimal(-20)
    assert payload["currency"] == "USD"
    assert (tmp_path / "budget_report_2024Q1.html").exists()


def test_report_bad_period_exits_2() -> None:
    result = runner.invoke(app, ["report", "--fiscal-year", "2024", "--period", "H1"])

    assert result.exit_code == 2
    assert "Unsupported period" in result.output


def test_budget_vs_actual_missing_budget_exits_3() -> None:
    result = runner.invoke(app, ["budget-vs-actual", "--budget-id", "9"])

    assert result.exit_code == 3


def test_reconcile_reports_counts(db_engine: Engine) -> None:
    with db_engine.begin() as conn:
        seed_budget(conn, lines=[(5, "100"), (6, "50")])

    result = runner.invoke(app, ["reconcile"])

    assert result.exit_code == 0, result.output
    assert "Reconciled 1 budgets (2 lines)" in result.output


def test_reconcile_skips_when_locked(db_engine: Engine) -> None:
    JobLock(db_engine, LOCK_NAME).acquire()

    result = runner.invoke(app, ["reconcile"])

    assert result.exit_code == 0
    assert "already running; skipped" in result.output


def test_reconcile_failure_exits_1() -> None:
    with patch("budgeting.reconcile.reconcile_budgets", side_effect=RuntimeError("boom")):
        result = runner.invoke(app, ["reconcile"])

    assert result.exit_code == 1
    assert "Reconciliation failed: boom" in result.output


def test_ingest_transaction_array(tmp_path: Path, db_engine: Engine) -> None:
    txn_path = tmp_path / "txns.json"
    txn_path.write_text(
        json.dumps([
            {"id": 1, "date": "2024-01-05", "lines": [{"account_id": 5, "amount": 10}]},
            {
                "id": 2,
                "date": "2024-01-06",
                "lines": [{"account_id": 0, "amount": 3}, {"account_id": 6, "amount": 4}],
            },
        ])
    )

    result = runner.invoke(app, ["ingest-transaction", "--file", str(txn_path)])

    assert result.exit_code == 0, result.output
    assert "Ingested 2 transactions (2 ledger logs)." in result.output
    with db_engine.connect() as conn:
        assert count_rows(conn, "budget_logs") == 2


def test_ingest_malformed_transaction_exits_2(tmp_path: Path) -> None:
    txn_path = tmp_path / "txn.json"
    txn_path.write_text(json.dumps({"id": 1, "lines": [{"account_id": "x", "amount": 1}]}))

    result = runner.invoke(app, ["ingest-transaction", "--file", str(txn_path)])

    assert result.exit_code == 2

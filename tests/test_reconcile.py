"""Tests for scheduled budget reconciliation."""

from datetime import date
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import Engine, text

from budgeting import repository
from budgeting.lock import JobLock
from budgeting.reconcile import LOCK_NAME, Reconciler, reconcile_budgets
from budgeting.report import get_report
from tests.utils.db_helper import count_rows, seed_budget, seed_log


def test_reconcile_writes_aggregate_and_snapshot(db_engine: Engine) -> None:
    with db_engine.begin() as conn:
        budget_id = seed_budget(conn, lines=[(5, "1000"), (6, "500")])
        seed_log(conn, 5, "400", "2024-03-01")
        seed_log(conn, 6, "150", "2024-07-01")
        seed_log(conn, 7, "999", "2024-07-01")

        summary = reconcile_budgets(conn)
        (aggregate,) = repository.get_period_aggregates(conn, budget_id)
        (snapshot,) = repository.get_variance_snapshots(conn, budget_id)

    assert summary["lines"] == 2
    assert summary["skipped_budgets"] == []
    assert aggregate["period_start"] == date(2024, 1, 1)
    assert aggregate["period_end"] == date(2024, 12, 31)
    assert aggregate["budgeted_amount"] == Decimal(1500)
    assert aggregate["actual_amount"] == Decimal(550)
    assert snapshot["variance"] == Decimal(-950)


def test_rerun_upserts_aggregate_and_appends_snapshots(db_engine: Engine) -> None:
    with db_engine.begin() as conn:
        budget_id = seed_budget(conn, lines=[(5, "100")])
        seed_log(conn, 5, "40", "2024-05-05")

    reconciler = Reconciler(db_engine)
    first = reconciler.run()
    with db_engine.begin() as conn:
        seed_log(conn, 5, "10", "2024-05-06")
    second = reconciler.run()

    assert first["status"] == "completed"
    assert second["status"] == "completed"
    with db_engine.connect() as conn:
        aggregates = repository.get_period_aggregates(conn, budget_id)
        snapshots = repository.get_variance_snapshots(conn, budget_id)

    assert len(aggregates) == 1
    assert aggregates[0]["actual_amount"] == Decimal(50)
    assert [s["actual_amount"] for s in snapshots] == [Decimal(40), Decimal(50)]


def test_actuals_respect_inclusive_budget_range(db_engine: Engine) -> None:
    with db_engine.begin() as conn:
        budget_id = seed_budget(
            conn, start_date="2024-04-01", end_date="2024-06-30", lines=[(5, "100")]
        )
        seed_log(conn, 5, "1", "2024-03-31")
        seed_log(conn, 5, "2", "2024-04-01")
        seed_log(conn, 5, "4", "2024-06-30")
        seed_log(conn, 5, "8", "2024-07-01")

        reconcile_budgets(conn)
        (aggregate,) = repository.get_period_aggregates(conn, budget_id)

    assert aggregate["actual_amount"] == Decimal(6)


def test_malformed_line_skips_only_its_budget(db_engine: Engine) -> None:
    with db_engine.begin() as conn:
        good_id = seed_budget(conn, title="Good", lines=[(5, "100")])
        bad_id = seed_budget(conn, title="Bad", lines=[(6, "100")])
        conn.execute(
            text("UPDATE budget_lines SET amount = 'not-a-number' WHERE budget_id = :id"),
            {"id": bad_id},
        )

        summary = reconcile_budgets(conn)

        assert summary["skipped_budgets"] == [bad_id]
        assert len(summary["failed_lines"]) == 1
        assert [b["budget_id"] for b in summary["budgets"]] == [good_id]
        assert repository.get_period_aggregates(conn, bad_id) == []
        assert len(repository.get_period_aggregates(conn, good_id)) == 1


def test_budget_without_lines_is_not_reconciled(db_engine: Engine) -> None:
    with db_engine.begin() as conn:
        seed_budget(conn)
        summary = reconcile_budgets(conn)

        assert summary["budgets"] == []
        assert count_rows(conn, "budget_periods") == 0


def test_held_lock_skips_without_writes(db_engine: Engine) -> None:
    with db_engine.begin() as conn:
        seed_budget(conn, lines=[(5, "100")])

    other = JobLock(db_engine, LOCK_NAME)
    assert other.acquire() is not None

    result = Reconciler(db_engine).run()

    assert result == {"status": "skipped"}
    with db_engine.connect() as conn:
        assert count_rows(conn, "budget_periods") == 0
        assert count_rows(conn, "budget_variances") == 0


def test_lock_released_after_run(db_engine: Engine) -> None:
    reconciler = Reconciler(db_engine)

    reconciler.run()

    assert not reconciler.lock.is_held()


def test_trigger_reports_failure_and_releases_lock(db_engine: Engine) -> None:
    reconciler = Reconciler(db_engine)

    with patch(
        "budgeting.reconcile.reconcile_budgets", side_effect=RuntimeError("db down")
    ):
        result = reconciler.trigger()

    assert result == {"status": "failed", "error": "db down"}
    assert not reconciler.lock.is_held()


def test_deleting_budget_keeps_snapshot_history(db_engine: Engine) -> None:
    with db_engine.begin() as conn:
        budget_id = seed_budget(conn, lines=[(5, "100")])
        reconcile_budgets(conn)
        repository.delete_budget(conn, budget_id)

        assert repository.get_period_aggregates(conn, budget_id) == []
        assert len(repository.get_variance_snapshots(conn, budget_id)) == 1


def test_decimal_actuals_are_exact_and_match_report(db_engine: Engine) -> None:
    with db_engine.begin() as conn:
        budget_id = seed_budget(conn, lines=[(5, "1")])
        seed_log(conn, 5, "0.1", "2024-02-01")
        seed_log(conn, 5, "0.2", "2024-02-02")

        summary = reconcile_budgets(conn)
        (aggregate,) = repository.get_period_aggregates(conn, budget_id)
        report = get_report(conn, "2024")

    assert summary["budgets"][0]["actual"] == Decimal("0.3")
    assert aggregate["actual_amount"] == Decimal("0.3")
    assert aggregate["actual_amount"] == report["actual_amount"]


def test_bad_line_fails_whole_budget_with_failure_entry(db_engine: Engine) -> None:
    with db_engine.begin() as conn:
        budget_id = seed_budget(conn, lines=[(5, "100"), (6, "100")])
        conn.execute(
            text(
                "UPDATE budget_lines SET amount = 'not-a-number' "
                "WHERE budget_id = :id AND account_id = 6"
            ),
            {"id": budget_id},
        )

        summary = reconcile_budgets(conn)

        assert summary["budgets"] == []
        assert summary["skipped_budgets"] == [budget_id]
        (failure,) = summary["failures"]
        assert failure["budget_id"] == budget_id
        assert failure["line_id"] == summary["failed_lines"][0]
        assert repository.get_period_aggregates(conn, budget_id) == []
        assert repository.get_variance_snapshots(conn, budget_id) == []


def test_rerun_with_unchanged_ledger_keeps_aggregate(db_engine: Engine) -> None:
    with db_engine.begin() as conn:
        budget_id = seed_budget(conn, lines=[(5, "100"), (6, "40")])
        seed_log(conn, 5, "30.25", "2024-05-05")
        seed_log(conn, 6, "12.5", "2024-08-01")

    reconciler = Reconciler(db_engine)
    reconciler.run()
    with db_engine.connect() as conn:
        first = repository.get_period_aggregates(conn, budget_id)
    reconciler.run()
    with db_engine.connect() as conn:
        second = repository.get_period_aggregates(conn, budget_id)
        snapshots = repository.get_variance_snapshots(conn, budget_id)

    assert len(second) == 1
    assert second == first
    assert len(snapshots) == 2
    assert [
        (s["budgeted_amount"], s["actual_amount"], s["variance"]) for s in snapshots
    ] == [(Decimal(140), Decimal("42.75"), Decimal("-97.25"))] * 2


def test_run_started_during_a_run_is_skipped(db_engine: Engine) -> None:
    nested: list[dict] = []

    def reconcile_while_running(conn: object) -> dict:
        nested.append(Reconciler(db_engine).run())
        return {
            "lines": 0,
            "budgets": [],
            "failed_lines": [],
            "skipped_budgets": [],
            "failures": [],
        }

    with patch(
        "budgeting.reconcile.reconcile_budgets", side_effect=reconcile_while_running
    ):
        outer = Reconciler(db_engine).run()

    assert nested == [{"status": "skipped"}]
    assert outer["status"] == "completed"

"""Scheduled reconciliation of budget lines against ledger activity."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from budgeting.calculator import calculate_variance, to_decimal
from budgeting.lock import DEFAULT_LOCK_TTL_SECONDS, JobLock
from budgeting.periods import to_date
from budgeting.repository import (
    add_variance_snapshot,
    get_lines_with_budget_range,
    sum_logs_for_period,
    upsert_period_aggregate,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger(__name__)

LOCK_NAME = "budget-reconcile"

# Errors a single malformed line can raise; DB errors still abort the run
LINE_ERRORS = (ArithmeticError, KeyError, TypeError, ValueError)


def _group_by_budget(lines: list[dict[str, Any]]) -> dict[int, list[dict[str, Any]]]:
    grouped: dict[int, list[dict[str, Any]]] = {}
    for line in lines:
        grouped.setdefault(int(line["budget_id"]), []).append(line)
    return grouped


def reconcile_budgets(conn: Connection) -> dict[str, Any]:
    """Refresh period aggregates and append variance snapshots for every budget.

    Each line's actual is the ledger log sum for its account over the owning
    budget's [start_date, end_date]. Per budget, line totals are upserted into
    budget_periods and a snapshot is appended to budget_variances.

    A malformed line fails its whole budget: that budget gets no aggregate
    or snapshot for this run, even for its valid lines, and is listed under
    "skipped_budgets" with a "failures" entry per bad line. Other budgets
    still reconcile.

    Args:
        conn: Database connection (caller owns the transaction)

    Returns:
        Summary with per-budget totals, skipped budgets and line failures
    """
    lines = get_lines_with_budget_range(conn)

    reconciled: list[dict[str, Any]] = []
    failed_lines: list[int] = []
    failures: list[dict[str, Any]] = []
    skipped_budgets: list[int] = []

    for budget_id, budget_lines in _group_by_budget(lines).items():
        budgeted = Decimal(0)
        actual = Decimal(0)
        period_start = period_end = None
        budget_failed = False

        for line in budget_lines:
            try:
                period_start = to_date(line["start_date"])
                period_end = to_date(line["end_date"])
                budgeted += to_decimal(line["amount"])
                actual += sum_logs_for_period(
                    conn, int(line["account_id"]), period_start, period_end
                )
            except LINE_ERRORS as e:
                logger.exception(
                    "Skipping budget %s: cannot reconcile line %s",
                    budget_id,
                    line.get("id"),
                )
                failed_lines.append(line.get("id"))
                failures.append({
                    "budget_id": budget_id,
                    "line_id": line.get("id"),
                    "error": str(e),
                })
                budget_failed = True

        if budget_failed or period_start is None or period_end is None:
            skipped_budgets.append(budget_id)
            continue

        upsert_period_aggregate(
            conn,
            budget_id=budget_id,
            period_start=period_start,
            period_end=period_end,
            budgeted_amount=budgeted,
            actual_amount=actual,
        )

        variance = calculate_variance(actual, budgeted)["variance"]
        add_variance_snapshot(
            conn,
            budget_id=budget_id,
            period_start=period_start,
            period_end=period_end,
            actual_amount=actual,
            budgeted_amount=budgeted,
            variance=variance,
        )

        reconciled.append({
            "budget_id": budget_id,
            "period_start": period_start,
            "period_end": period_end,
            "budgeted": budgeted,
            "actual": actual,
            "variance": variance,
        })

    return {
        "lines": len(lines),
        "budgets": reconciled,
        "failed_lines": failed_lines,
        "skipped_budgets": skipped_budgets,
        "failures": failures,
    }


class Reconciler:
    """Runs reconcile_budgets under a TTL lock; overlapping runs no-op."""

    def __init__(
        self,
        engine: Engine,
        *,
        lock: JobLock | None = None,
        lock_ttl_seconds: float = DEFAULT_LOCK_TTL_SECONDS,
    ) -> None:
        self.engine = engine
        self.lock = lock or JobLock(engine, LOCK_NAME, ttl_seconds=lock_ttl_seconds)

    def run(self) -> dict[str, Any]:
        """Run one reconciliation pass.

        Returns:
            {"status": "skipped"} when another run holds the lock, otherwise
            the reconcile summary with status "completed".
        """
        token = self.lock.acquire()
        if token is None:
            return {"status": "skipped"}

        started_at = datetime.now(UTC).isoformat()
        try:
            with self.engine.begin() as conn:
                summary = reconcile_budgets(conn)
        finally:
            self.lock.release(token)

        logger.info(
            "Reconciled %d budgets (%d lines, %d skipped)",
            len(summary["budgets"]),
            summary["lines"],
            len(summary["skipped_budgets"]),
        )
        return {
            "status": "completed",
            "started_at": started_at,
            "finished_at": datetime.now(UTC).isoformat(),
            **summary,
        }

    def trigger(self) -> dict[str, Any]:
        """Operator-initiated run: same pass, failures reported not raised."""
        try:
            return self.run()
        except Exception as e:
            logger.exception("Manual reconciliation failed")
            return {"status": "failed", "error": str(e)}

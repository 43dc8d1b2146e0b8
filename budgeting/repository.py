"""Budget store and ledger log access over raw SQL."""

from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

from budgeting.calculator import to_decimal
from budgeting.periods import to_date

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection, Row

logger = logging.getLogger(__name__)

# Exact decimal text for SQLite, no float rounding on bind
sqlite3.register_adapter(Decimal, str)

BUDGET_COLUMNS = (
    "title",
    "description",
    "entity_type",
    "entity_id",
    "fiscal_year",
    "currency",
    "status",
    "start_date",
    "end_date",
    "created_by",
)

_DATE_FIELDS = ("start_date", "end_date", "transaction_date", "period_start", "period_end")
_AMOUNT_FIELDS = ("amount", "budgeted_amount", "actual_amount", "variance")


def _iso(value: date | datetime | str | None) -> str | None:
    """Bind dates as ISO strings so SQLite and Postgres compare identically."""
    if value is None:
        return None
    return to_date(value).isoformat()


def _row_to_dict(row: Row[Any]) -> dict[str, Any]:
    data = dict(row._mapping)  # noqa: SLF001
    for field in _DATE_FIELDS:
        if data.get(field) is not None:
            data[field] = to_date(data[field])
    for field in _AMOUNT_FIELDS:
        if field in data:
            data[field] = to_decimal(data[field])
    return data


def insert_budget(conn: Connection, data: dict[str, Any]) -> int:
    """Insert a budget header and return its id."""
    defaults: dict[str, Any] = {
        "title": "",
        "description": "",
        "entity_type": "global",
        "entity_id": None,
        "fiscal_year": None,
        "currency": "USD",
        "status": "draft",
        "start_date": None,
        "end_date": None,
        "created_by": None,
    }
    params = {**defaults, **{k: v for k, v in data.items() if k in BUDGET_COLUMNS}}
    params["start_date"] = _iso(params["start_date"])
    params["end_date"] = _iso(params["end_date"])
    if params["fiscal_year"] is not None:
        params["fiscal_year"] = str(params["fiscal_year"])

    budget_id = conn.execute(
        text("""
            INSERT INTO budgets (
                title, description, entity_type, entity_id, fiscal_year,
                currency, status, start_date, end_date, created_by
            )
            VALUES (
                :title, :description, :entity_type, :entity_id, :fiscal_year,
                :currency, :status, :start_date, :end_date, :created_by
            )
            RETURNING id
        """),
        params,
    ).scalar_one()
    return int(budget_id)


def update_budget(conn: Connection, budget_id: int, data: dict[str, Any]) -> bool:
    """Update budget metadata columns; return False when no row was touched."""
    params = {k: v for k, v in data.items() if k in BUDGET_COLUMNS}
    if not params:
        return False

    for field in ("start_date", "end_date"):
        if field in params:
            params[field] = _iso(params[field])
    if params.get("fiscal_year") is not None:
        params["fiscal_year"] = str(params["fiscal_year"])

    assignments = ", ".join(f"{column} = :{column}" for column in params)
    result = conn.execute(
        text(
            f"UPDATE budgets SET {assignments}, updated_at = CURRENT_TIMESTAMP "  # noqa: S608
            "WHERE id = :budget_id"
        ),
        {**params, "budget_id": budget_id},
    )

    if result.rowcount == 0:
        logger.warning("Budget update affected no rows (budget_id=%s)", budget_id)
        return False
    return True


def get_budget(conn: Connection, budget_id: int) -> dict[str, Any] | None:
    """Fetch one budget header, or None."""
    row = conn.execute(
        text("SELECT * FROM budgets WHERE id = :budget_id"), {"budget_id": budget_id}
    ).fetchone()
    return _row_to_dict(row) if row else None


def delete_budget(conn: Connection, budget_id: int) -> bool:
    """Delete a budget and the lines it owns."""
    delete_lines_by_budget(conn, budget_id)
    result = conn.execute(
        text("DELETE FROM budgets WHERE id = :budget_id"), {"budget_id": budget_id}
    )
    return result.rowcount > 0


def get_budgets(conn: Connection, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
    """List budgets, optionally scoped by entity and overlapping a date range.

    A budget matches a range when end_date >= start and start_date <= end.
    department_id scopes to entity_type='department' budgets of that id.
    """
    filters = filters or {}
    where: list[str] = []
    params: dict[str, Any] = {}

    if filters.get("entity_type"):
        where.append("entity_type = :entity_type")
        params["entity_type"] = filters["entity_type"]
    if filters.get("entity_id"):
        where.append("entity_id = :entity_id")
        params["entity_id"] = int(filters["entity_id"])
    if filters.get("department_id"):
        where.append("entity_type = 'department' AND entity_id = :department_id")
        params["department_id"] = int(filters["department_id"])
    if filters.get("status"):
        where.append("status = :status")
        params["status"] = filters["status"]
    if filters.get("start_date"):
        where.append("end_date >= :start_date")
        params["start_date"] = _iso(filters["start_date"])
    if filters.get("end_date"):
        where.append("start_date <= :end_date")
        params["end_date"] = _iso(filters["end_date"])

    sql = "SELECT * FROM budgets"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY start_date, id"

    return [_row_to_dict(row) for row in conn.execute(text(sql), params).fetchall()]


def insert_line(conn: Connection, data: dict[str, Any]) -> int:
    """Insert one budget line and return its id."""
    line_id = conn.execute(
        text("""
            INSERT INTO budget_lines (
                budget_id, account_id, period_type, period_key, amount, notes
            )
            VALUES (
                :budget_id, :account_id, :period_type, :period_key, :amount, :notes
            )
            RETURNING id
        """),
        {
            "budget_id": data["budget_id"],
            "account_id": data["account_id"],
            "period_type": data.get("period_type") or "monthly",
            "period_key": data.get("period_key") or "",
            "amount": to_decimal(data.get("amount")),
            "notes": data.get("notes") or "",
        },
    ).scalar_one()
    return int(line_id)


def get_lines_by_budget(conn: Connection, budget_id: int) -> list[dict[str, Any]]:
    """Return a budget's lines in insertion order."""
    rows = conn.execute(
        text("SELECT * FROM budget_lines WHERE budget_id = :budget_id ORDER BY id"),
        {"budget_id": budget_id},
    ).fetchall()
    return [_row_to_dict(row) for row in rows]


def delete_lines_by_budget(conn: Connection, budget_id: int) -> int:
    """Delete every line of a budget; return how many went."""
    result = conn.execute(
        text("DELETE FROM budget_lines WHERE budget_id = :budget_id"),
        {"budget_id": budget_id},
    )
    return int(result.rowcount)


def add_log(conn: Connection, data: dict[str, Any]) -> int:
    """Append a ledger log entry and return its id."""
    log_id = conn.execute(
        text("""
            INSERT INTO budget_logs (
                transaction_id, account_id, amount, transaction_date
            )
            VALUES (:transaction_id, :account_id, :amount, :transaction_date)
            RETURNING id
        """),
        {
            "transaction_id": data.get("transaction_id"),
            "account_id": data["account_id"],
            "amount": to_decimal(data["amount"]),
            "transaction_date": _iso(data["transaction_date"]),
        },
    ).scalar_one()
    return int(log_id)


def get_logs_for_period(
    conn: Connection, account_id: int, start_date: date, end_date: date
) -> list[dict[str, Any]]:
    """Ledger logs for an account with transaction_date in [start, end]."""
    rows = conn.execute(
        text("""
            SELECT * FROM budget_logs
            WHERE account_id = :account_id
              AND transaction_date BETWEEN :start_date AND :end_date
            ORDER BY transaction_date, id
        """),
        {
            "account_id": account_id,
            "start_date": _iso(start_date),
            "end_date": _iso(end_date),
        },
    ).fetchall()
    return [_row_to_dict(row) for row in rows]


def sum_logs_for_period(
    conn: Connection, account_id: int, start_date: date, end_date: date
) -> Decimal:
    """Sum of ledger log amounts for an account within [start, end].

    Summed per row as Decimal; SQLite stores NUMERIC as REAL, so SQL SUM
    is not exact there.
    """
    amounts = conn.execute(
        text("""
            SELECT amount
            FROM budget_logs
            WHERE account_id = :account_id
              AND transaction_date BETWEEN :start_date AND :end_date
        """),
        {
            "account_id": account_id,
            "start_date": _iso(start_date),
            "end_date": _iso(end_date),
        },
    ).scalars()
    return sum((to_decimal(amount) for amount in amounts), Decimal(0))


def get_lines_with_budget_range(conn: Connection) -> list[dict[str, Any]]:
    """Every budget line joined with its owning budget's date range.

    Values are returned as stored; callers coerce per line so one malformed
    row does not poison the batch.
    """
    rows = conn.execute(
        text("""
            SELECT l.id, l.budget_id, l.account_id, l.amount,
                   b.start_date, b.end_date
            FROM budget_lines l
            JOIN budgets b ON b.id = l.budget_id
            ORDER BY l.budget_id, l.id
        """)
    ).fetchall()
    return [dict(row._mapping) for row in rows]  # noqa: SLF001


def upsert_period_aggregate(
    conn: Connection,
    *,
    budget_id: int,
    period_start: date,
    period_end: date,
    budgeted_amount: Decimal,
    actual_amount: Decimal,
) -> None:
    """Upsert the aggregate row keyed by (budget_id, period_start, period_end).

    Uses INSERT ... ON CONFLICT for PostgreSQL, select-then-write for SQLite.
    """
    params = {
        "budget_id": budget_id,
        "period_start": _iso(period_start),
        "period_end": _iso(period_end),
        "budgeted_amount": budgeted_amount,
        "actual_amount": actual_amount,
    }

    if conn.dialect.name == "postgresql":
        conn.execute(
            text("""
                INSERT INTO budget_periods (
                    budget_id, period_start, period_end,
                    budgeted_amount, actual_amount
                )
                VALUES (
                    :budget_id, :period_start, :period_end,
                    :budgeted_amount, :actual_amount
                )
                ON CONFLICT (budget_id, period_start, period_end) DO UPDATE SET
                    budgeted_amount = EXCLUDED.budgeted_amount,
                    actual_amount = EXCLUDED.actual_amount
            """),
            params,
        )
        return

    existing_id = conn.execute(
        text("""
            SELECT id FROM budget_periods
            WHERE budget_id = :budget_id
              AND period_start = :period_start AND period_end = :period_end
        """),
        params,
    ).scalar()

    if existing_id:
        result = conn.execute(
            text("""
                UPDATE budget_periods
                SET budgeted_amount = :budgeted_amount, actual_amount = :actual_amount
                WHERE id = :id
            """),
            {**params, "id": existing_id},
        )
        if result.rowcount == 0:
            logger.warning("Period aggregate %s vanished during upsert", existing_id)
    else:
        conn.execute(
            text("""
                INSERT INTO budget_periods (
                    budget_id, period_start, period_end,
                    budgeted_amount, actual_amount
                )
                VALUES (
                    :budget_id, :period_start, :period_end,
                    :budgeted_amount, :actual_amount
                )
            """),
            params,
        )


def add_variance_snapshot(
    conn: Connection,
    *,
    budget_id: int,
    period_start: date,
    period_end: date,
    actual_amount: Decimal,
    budgeted_amount: Decimal,
    variance: Decimal,
) -> int:
    """Append an immutable variance snapshot row."""
    snapshot_id = conn.execute(
        text("""
            INSERT INTO budget_variances (
                budget_id, period_start, period_end,
                actual_amount, budgeted_amount, variance
            )
            VALUES (
                :budget_id, :period_start, :period_end,
                :actual_amount, :budgeted_amount, :variance
            )
            RETURNING id
        """),
        {
            "budget_id": budget_id,
            "period_start": _iso(period_start),
            "period_end": _iso(period_end),
            "actual_amount": actual_amount,
            "budgeted_amount": budgeted_amount,
            "variance": variance,
        },
    ).scalar_one()
    return int(snapshot_id)


def get_period_aggregates(
    conn: Connection, budget_id: int | None = None
) -> list[dict[str, Any]]:
    rows = conn.execute(
        text("""
            SELECT * FROM budget_periods
            WHERE (:budget_id IS NULL OR budget_id = :budget_id)
            ORDER BY budget_id, period_start
        """),
        {"budget_id": budget_id},
    ).fetchall()
    return [_row_to_dict(row) for row in rows]


def get_variance_snapshots(
    conn: Connection, budget_id: int | None = None
) -> list[dict[str, Any]]:
    rows = conn.execute(
        text("""
            SELECT * FROM budget_variances
            WHERE (:budget_id IS NULL OR budget_id = :budget_id)
            ORDER BY id
        """),
        {"budget_id": budget_id},
    ).fetchall()
    return [_row_to_dict(row) for row in rows]

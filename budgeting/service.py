"""Budget CRUD with boundary validation and fiscal-year alias resolution."""

from __future__ import annotations

import logging
from decimal import InvalidOperation
from typing import TYPE_CHECKING, Any

from budgeting import repository
from budgeting.calculator import to_decimal
from budgeting.exceptions import BudgetNotFoundError, BudgetValidationError
from budgeting.periods import resolve_fiscal_range, to_date

if TYPE_CHECKING:
    from datetime import date

    from sqlalchemy.engine import Connection

    from budgeting.providers import FiscalYearProvider

logger = logging.getLogger(__name__)

STATUSES = ("draft", "assigned", "active", "closed")
PERIOD_TYPES = ("annual", "quarterly", "monthly")


def parse_id(value: Any, name: str = "id") -> int:  # noqa: ANN401
    """Parse a positive integer identifier or raise BudgetValidationError."""
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        msg = f"{name} must be numeric, got {value!r}"
        raise BudgetValidationError(msg) from None
    if parsed <= 0:
        msg = f"{name} must be positive, got {value!r}"
        raise BudgetValidationError(msg)
    return parsed


def _parse_date(value: Any, name: str) -> date:  # noqa: ANN401
    try:
        return to_date(value)
    except (TypeError, ValueError):
        msg = f"Invalid {name}: {value!r}. Use YYYY-MM-DD"
        raise BudgetValidationError(msg) from None


def _resolve_fiscal_year(
    fiscal_year: Any, provider: FiscalYearProvider | None  # noqa: ANN401
) -> tuple[date, date]:
    try:
        return resolve_fiscal_range(fiscal_year, provider)
    except ValueError as e:
        raise BudgetValidationError(str(e)) from e


def _check_range(start: date, end: date) -> None:
    if start > end:
        msg = f"start_date {start} is after end_date {end}"
        raise BudgetValidationError(msg)


def _check_status(status: Any) -> str:  # noqa: ANN401
    if status not in STATUSES:
        msg = f"Invalid status {status!r}; expected one of {', '.join(STATUSES)}"
        raise BudgetValidationError(msg)
    return str(status)


def _validate_lines(lines: Any) -> list[dict[str, Any]]:  # noqa: ANN401
    if not isinstance(lines, list):
        msg = "lines must be a list"
        raise BudgetValidationError(msg)

    validated = []
    for index, line in enumerate(lines):
        if not isinstance(line, dict):
            msg = f"lines[{index}] must be an object"
            raise BudgetValidationError(msg)

        account_id = parse_id(line.get("account_id"), f"lines[{index}].account_id")
        try:
            amount = to_decimal(line.get("amount", 0))
        except InvalidOperation:
            msg = f"lines[{index}].amount must be numeric"
            raise BudgetValidationError(msg) from None

        period_type = line.get("period_type") or "monthly"
        if period_type not in PERIOD_TYPES:
            msg = f"lines[{index}].period_type {period_type!r} is not supported"
            raise BudgetValidationError(msg)

        validated.append({
            "account_id": account_id,
            "amount": amount,
            "period_type": period_type,
            # Annual lines have no sub-period
            "period_key": "" if period_type == "annual" else line.get("period_key", ""),
            "notes": line.get("notes", ""),
        })
    return validated


def _insert_lines(conn: Connection, budget_id: int, lines: list[dict[str, Any]]) -> None:
    for line in lines:
        repository.insert_line(conn, {**line, "budget_id": budget_id})


def create_budget(
    conn: Connection,
    payload: dict[str, Any],
    *,
    fiscal_year_provider: FiscalYearProvider | None = None,
) -> int:
    """Create a budget (and its lines) and return its id.

    The range comes from explicit start_date/end_date or from a fiscal_year
    alias resolved once here. Status defaults to "assigned" for fiscal-year
    budgets and "draft" otherwise.

    Raises:
        BudgetValidationError: Missing title, missing/unresolvable range,
            bad status or bad lines
    """
    title = str(payload.get("title") or "").strip()
    if not title:
        msg = "Title is required"
        raise BudgetValidationError(msg)

    fiscal_year = payload.get("fiscal_year") or None
    if payload.get("start_date") and payload.get("end_date"):
        start = _parse_date(payload["start_date"], "start_date")
        end = _parse_date(payload["end_date"], "end_date")
    elif fiscal_year:
        start, end = _resolve_fiscal_year(fiscal_year, fiscal_year_provider)
    else:
        msg = "Start and end dates are required, or provide fiscal_year"
        raise BudgetValidationError(msg)
    _check_range(start, end)

    status = payload.get("status") or ("assigned" if fiscal_year else "draft")
    lines = _validate_lines(payload.get("lines") or [])

    data = {
        **{k: v for k, v in payload.items() if k in repository.BUDGET_COLUMNS},
        "title": title,
        "fiscal_year": fiscal_year,
        "status": _check_status(status),
        "start_date": start,
        "end_date": end,
    }
    for key in ("entity_id", "created_by"):
        if data.get(key) is not None:
            data[key] = parse_id(data[key], key)

    budget_id = repository.insert_budget(conn, data)
    _insert_lines(conn, budget_id, lines)

    logger.info("Created budget %s (%s..%s, %d lines)", budget_id, start, end, len(lines))
    return budget_id


def update_budget(
    conn: Connection,
    budget_id: Any,  # noqa: ANN401
    payload: dict[str, Any],
    *,
    fiscal_year_provider: FiscalYearProvider | None = None,
) -> dict[str, Any]:
    """Apply a partial update; a `lines` list replaces the whole line set.

    Raises:
        BudgetValidationError: Bad title, range, status or lines
        BudgetNotFoundError: If the budget does not exist
    """
    budget_id = parse_id(budget_id, "budget_id")
    existing = repository.get_budget(conn, budget_id)
    if existing is None:
        raise BudgetNotFoundError(budget_id)

    update: dict[str, Any] = {}

    if "title" in payload:
        title = str(payload.get("title") or "").strip()
        if not title:
            msg = "Title is required"
            raise BudgetValidationError(msg)
        update["title"] = title

    for key in ("description", "currency", "entity_type"):
        if key in payload:
            update[key] = payload[key]
    if payload.get("entity_id") is not None:
        update["entity_id"] = parse_id(payload["entity_id"], "entity_id")

    if payload.get("start_date"):
        update["start_date"] = _parse_date(payload["start_date"], "start_date")
    if payload.get("end_date"):
        update["end_date"] = _parse_date(payload["end_date"], "end_date")

    fiscal_year = payload.get("fiscal_year") or None
    if fiscal_year:
        update["fiscal_year"] = fiscal_year
        if "start_date" not in update or "end_date" not in update:
            update["start_date"], update["end_date"] = _resolve_fiscal_year(
                fiscal_year, fiscal_year_provider
            )

    _check_range(
        update.get("start_date", existing["start_date"]),
        update.get("end_date", existing["end_date"]),
    )

    if payload.get("status"):
        update["status"] = _check_status(payload["status"])
    elif fiscal_year:
        update["status"] = "assigned"

    lines = None
    if "lines" in payload and payload["lines"] is not None:
        lines = _validate_lines(payload["lines"])

    if update and not repository.update_budget(conn, budget_id, update):
        raise BudgetNotFoundError(budget_id)

    if lines is not None:
        removed = repository.delete_lines_by_budget(conn, budget_id)
        _insert_lines(conn, budget_id, lines)
        logger.info(
            "Replaced %d lines of budget %s with %d", removed, budget_id, len(lines)
        )

    return get_budget_with_lines(conn, budget_id)


def get_budget_with_lines(conn: Connection, budget_id: Any) -> dict[str, Any]:  # noqa: ANN401
    """Return a budget header with its lines.

    Raises:
        BudgetNotFoundError: If the budget does not exist
    """
    budget_id = parse_id(budget_id, "budget_id")
    budget = repository.get_budget(conn, budget_id)
    if budget is None:
        raise BudgetNotFoundError(budget_id)
    budget["lines"] = repository.get_lines_by_budget(conn, budget_id)
    return budget


def list_budgets(
    conn: Connection, filters: dict[str, Any] | None = None
) -> list[dict[str, Any]]:
    """List budgets with optional entity, status and date-overlap filters."""
    filters = {k: v for k, v in (filters or {}).items() if v not in (None, "")}
    for key in ("entity_id", "department_id"):
        if key in filters:
            filters[key] = parse_id(filters[key], key)
    for key in ("start_date", "end_date"):
        if key in filters:
            filters[key] = _parse_date(filters[key], key)
    return repository.get_budgets(conn, filters)


def delete_budget(conn: Connection, budget_id: Any) -> None:  # noqa: ANN401
    """Delete a budget and its lines.

    Raises:
        BudgetNotFoundError: If the budget does not exist
    """
    budget_id = parse_id(budget_id, "budget_id")
    if not repository.delete_budget(conn, budget_id):
        raise BudgetNotFoundError(budget_id)
    logger.info("Deleted budget %s", budget_id)

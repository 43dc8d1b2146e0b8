"""Budget vs actual reporting: per budget and aggregated per fiscal period."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from budgeting.calculator import calculate_variance, to_decimal
from budgeting.config import DEFAULT_CURRENCY, fallback_currency_symbol
from budgeting.exceptions import BudgetNotFoundError
from budgeting.periods import parse_report_period, to_date
from budgeting.repository import (
    get_budget,
    get_budgets,
    get_lines_by_budget,
    sum_logs_for_period,
)

if TYPE_CHECKING:
    from datetime import date

    from sqlalchemy.engine import Connection

    from budgeting.providers import BalanceProvider, CurrencyProvider

logger = logging.getLogger(__name__)


def resolve_currency(
    provider: CurrencyProvider | None, default_currency: str = DEFAULT_CURRENCY
) -> tuple[str, str]:
    """Return (code, symbol), falling back to the default currency/symbol table."""
    code = default_currency
    if provider is not None:
        try:
            code = provider.get_currency() or default_currency
        except Exception as e:  # noqa: BLE001
            logger.debug("Currency lookup failed, using %s: %s", default_currency, e)

    symbol = fallback_currency_symbol(code)
    if provider is not None:
        try:
            symbol = provider.get_currency_symbol(code) or symbol
        except Exception as e:  # noqa: BLE001
            logger.debug("Currency symbol lookup failed for %s: %s", code, e)

    return code, symbol


def load_ledger_balances(
    provider: BalanceProvider | None, start_date: date, end_date: date
) -> dict[int, Decimal]:
    """Map account_id -> balance from the trial balance provider.

    An empty map means "no provider data": absent provider, provider error,
    malformed payload, or no rows.
    """
    if provider is None:
        return {}

    try:
        trial_balance = provider.get_trial_balance(start_date, end_date)
    except Exception as e:  # noqa: BLE001
        logger.warning("Trial balance unavailable, using ledger logs: %s", e)
        return {}

    rows = (trial_balance or {}).get("rows") or {}
    groups = rows.values() if isinstance(rows, dict) else rows

    balances: dict[int, Decimal] = {}
    try:
        for chart_group in groups:
            if not isinstance(chart_group, list):
                continue
            for row in chart_group:
                if isinstance(row, dict) and row.get("id") is not None:
                    balances[int(row["id"])] = to_decimal(row.get("balance") or 0)
    except (ArithmeticError, TypeError, ValueError) as e:
        logger.warning("Malformed trial balance, using ledger logs: %s", e)
        return {}

    return balances


def get_report(
    conn: Connection,
    fiscal_year: str | int,
    period: str | None = None,
    department_id: int | None = None,
    *,
    balance_provider: BalanceProvider | None = None,
    currency_provider: CurrencyProvider | None = None,
    default_currency: str = DEFAULT_CURRENCY,
) -> dict[str, Any]:
    """Aggregate budget vs actual for a fiscal year, quarter and department.

    Args:
        conn: Database connection
        fiscal_year: Year like "2024"
        period: Optional quarter "Q1".."Q4"
        department_id: Optional department scope
        balance_provider: Optional trial balance source (preferred for actuals)
        currency_provider: Optional currency source
        default_currency: Currency used when the provider is unavailable

    Returns:
        Totals with variance, variance_percentage (0 on zero budget) and currency
    """
    start_date, end_date = parse_report_period(fiscal_year, period)
    currency, currency_symbol = resolve_currency(currency_provider, default_currency)

    budgets = get_budgets(
        conn,
        {
            "start_date": start_date,
            "end_date": end_date,
            "department_id": department_id or None,
        },
    )

    ledger_balances = load_ledger_balances(balance_provider, start_date, end_date)

    total_budget = Decimal(0)
    total_actual = Decimal(0)

    for budget in budgets:
        for line in get_lines_by_budget(conn, budget["id"]):
            total_budget += line["amount"]

            account_id = int(line.get("account_id") or 0)
            if not account_id:
                continue

            if ledger_balances:
                # Provider answered: accounts it does not list have no activity
                total_actual += ledger_balances.get(account_id, Decimal(0))
            else:
                total_actual += sum_logs_for_period(conn, account_id, start_date, end_date)

    variance = total_actual - total_budget
    variance_percentage = (
        (variance / total_budget) * 100 if total_budget != 0 else Decimal(0)
    )

    return {
        "budget_amount": total_budget,
        "actual_amount": total_actual,
        "variance": variance,
        "variance_percentage": variance_percentage,
        "currency": currency,
        "currency_symbol": currency_symbol,
    }


def budget_vs_actual(
    conn: Connection,
    budget_id: int,
    start_date: date | str | None = None,
    end_date: date | str | None = None,
) -> dict[str, Any]:
    """Line-by-line budget vs actual for one budget.

    Defaults to the budget's own date range. variance_pct is None on lines
    with nothing budgeted.

    Raises:
        BudgetNotFoundError: If the budget does not exist
    """
    budget = get_budget(conn, budget_id)
    if budget is None:
        raise BudgetNotFoundError(budget_id)

    period_start = to_date(start_date) if start_date else budget["start_date"]
    period_end = to_date(end_date) if end_date else budget["end_date"]

    lines = []
    total_budgeted = Decimal(0)
    total_actual = Decimal(0)

    for line in get_lines_by_budget(conn, budget_id):
        budgeted = line["amount"]
        actual = sum_logs_for_period(conn, line["account_id"], period_start, period_end)
        calc = calculate_variance(actual, budgeted)

        lines.append({
            "line_id": line["id"],
            "account_id": line["account_id"],
            "budgeted": budgeted,
            "actual": actual,
            "variance": calc["variance"],
            "variance_pct": calc["variance_pct"],
        })
        total_budgeted += budgeted
        total_actual += actual

    return {
        "budget_id": budget_id,
        "period_start": period_start,
        "period_end": period_end,
        "lines": lines,
        "totals": {
            "budgeted": total_budgeted,
            "actual": total_actual,
            "variance": total_actual - total_budgeted,
        },
    }

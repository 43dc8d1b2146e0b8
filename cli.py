#!/usr/bin/env python3
"""CLI interface for the budget reconciliation & reporting engine."""

import contextlib
import json
import logging
import os
import signal
from collections.abc import Iterator
from pathlib import Path
from typing import Annotated, Any, NoReturn

import typer
from dotenv import load_dotenv
from sqlalchemy.engine import Engine

from budgeting.config import BudgetSettings, load_settings_from_env
from budgeting.connectors.erp_client import ErpClient, create_erp_client_from_env
from budgeting.exceptions import BudgetNotFoundError, BudgetValidationError
from budgeting.listener import TransactionListener
from budgeting.reconcile import Reconciler
from budgeting.report import budget_vs_actual, get_report
from budgeting.reports.render import render_budget_vs_actual, render_fiscal_report, write_html
from budgeting.scheduler import IntervalScheduler
from budgeting.schema import create_db_engine, create_schema
from budgeting.service import (
    create_budget,
    delete_budget,
    get_budget_with_lines,
    list_budgets,
    parse_id,
    update_budget,
)

app = typer.Typer(
    name="budgetrecon",
    help="Budget reconciliation - ledger actuals → period variances → reports",
    no_args_is_help=True,
)

EXIT_VALIDATION = 2
EXIT_NOT_FOUND = 3


def _mark_success() -> str:
    """Return success indicator (emoji or plain text based on BUDGET_PLAIN env var)."""
    return "" if os.getenv("BUDGET_PLAIN") == "1" else "✅"


def _mark_error() -> str:
    """Return error indicator (emoji or plain text based on BUDGET_PLAIN env var)."""
    return "" if os.getenv("BUDGET_PLAIN") == "1" else "❌"


@app.callback()
def _load_env() -> None:
    # Skip dotenv loading in tests/CI for hermetic environments
    if os.getenv("BUDGET_SKIP_DOTENV") != "1":
        load_dotenv(override=False)  # Never override already-set env in CI/tests
    logging.basicConfig(
        level=os.getenv("BUDGET_LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _settings() -> BudgetSettings:
    try:
        return load_settings_from_env()
    except ValueError as e:
        typer.echo(f"{_mark_error()} Invalid configuration: {e}", err=True)
        raise typer.Exit(2) from e


def _engine(settings: BudgetSettings) -> Engine:
    if not settings.database_url:
        typer.echo(f"{_mark_error()} DATABASE_URL not found in environment", err=True)
        raise typer.Exit(2)
    return create_db_engine(settings.database_url)


@contextlib.contextmanager
def _erp_client() -> Iterator[ErpClient | None]:
    """Yield the accounting-system client when BUDGET_ERP_API_URL is set."""
    client = create_erp_client_from_env()
    if client is None:
        yield None
        return
    with client:
        yield client


def _echo_json(data: Any) -> None:  # noqa: ANN401
    typer.echo(json.dumps(data, indent=2, default=str))


def _fail(error: Exception, action: str) -> NoReturn:
    """Map service errors to exit codes: 2 invalid input, 3 not found, 1 other."""
    if isinstance(error, BudgetValidationError):
        typer.echo(f"{_mark_error()} Invalid request: {error}", err=True)
        raise typer.Exit(EXIT_VALIDATION) from error
    if isinstance(error, BudgetNotFoundError):
        typer.echo(f"{_mark_error()} {error}", err=True)
        raise typer.Exit(EXIT_NOT_FOUND) from error
    typer.echo(f"{_mark_error()} Error during {action}: {error}", err=True)
    raise typer.Exit(1) from error


def _load_json_file(path: str, option: str) -> Any:  # noqa: ANN401
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except Exception as e:
        typer.echo(f"{_mark_error()} Failed to read {option}: {e}", err=True)
        raise typer.Exit(1) from e


def _budget_payload(**options: Any) -> dict[str, Any]:  # noqa: ANN401
    payload = {k: v for k, v in options.items() if v is not None and k != "lines_json"}
    if options.get("lines_json"):
        lines = _load_json_file(options["lines_json"], "--lines-json")
        if not isinstance(lines, list):
            typer.echo(
                f"{_mark_error()} --lines-json must be a JSON array of lines", err=True
            )
            raise typer.Exit(EXIT_VALIDATION)
        payload["lines"] = lines
    return payload


@app.command("init-db")
def init_db() -> None:
    """Create budgeting tables in DATABASE_URL."""
    engine = _engine(_settings())
    try:
        with engine.begin() as conn:
            create_schema(conn)
        typer.echo(f"{_mark_success()} Database schema initialized successfully")
    except Exception as e:
        typer.echo(f"{_mark_error()} Database error: {e}", err=True)
        raise typer.Exit(1) from e


@app.command("create")
def create(
    title: Annotated[str, typer.Option("--title", help="Budget title")] = "",
    start_date: Annotated[
        str | None, typer.Option("--start", help="Start date (YYYY-MM-DD)")
    ] = None,
    end_date: Annotated[str | None, typer.Option("--end", help="End date (YYYY-MM-DD)")] = None,
    fiscal_year: Annotated[
        str | None,
        typer.Option("--fiscal-year", help="Fiscal year alias instead of --start/--end"),
    ] = None,
    description: Annotated[str | None, typer.Option("--description")] = None,
    currency: Annotated[str | None, typer.Option("--currency")] = None,
    status: Annotated[str | None, typer.Option("--status")] = None,
    entity_type: Annotated[str | None, typer.Option("--entity-type")] = None,
    entity_id: Annotated[str | None, typer.Option("--entity-id")] = None,
    lines_json: Annotated[
        str | None,
        typer.Option("--lines-json", help="Path to JSON array of budget lines"),
    ] = None,
) -> None:
    """Create a budget with optional lines."""
    settings = _settings()
    payload = _budget_payload(
        title=title,
        start_date=start_date,
        end_date=end_date,
        fiscal_year=fiscal_year,
        description=description,
        currency=currency or settings.default_currency,
        status=status,
        entity_type=entity_type,
        entity_id=entity_id,
        lines_json=lines_json,
    )
    engine = _engine(settings)

    try:
        with _erp_client() as client, engine.begin() as conn:
            budget_id = create_budget(conn, payload, fiscal_year_provider=client)
    except Exception as e:
        _fail(e, "create")

    typer.echo(f"{_mark_success()} Created budget {budget_id}")
    _echo_json({"id": budget_id})


@app.command("update")
def update(
    budget_id: Annotated[str, typer.Argument(help="Budget ID")],
    title: Annotated[str | None, typer.Option("--title")] = None,
    start_date: Annotated[str | None, typer.Option("--start")] = None,
    end_date: Annotated[str | None, typer.Option("--end")] = None,
    fiscal_year: Annotated[str | None, typer.Option("--fiscal-year")] = None,
    description: Annotated[str | None, typer.Option("--description")] = None,
    currency: Annotated[str | None, typer.Option("--currency")] = None,
    status: Annotated[str | None, typer.Option("--status")] = None,
    entity_type: Annotated[str | None, typer.Option("--entity-type")] = None,
    entity_id: Annotated[str | None, typer.Option("--entity-id")] = None,
    lines_json: Annotated[
        str | None,
        typer.Option("--lines-json", help="Replace all lines with this JSON array"),
    ] = None,
) -> None:
    """Update budget metadata; --lines-json replaces the full line set."""
    payload = _budget_payload(
        title=title,
        start_date=start_date,
        end_date=end_date,
        fiscal_year=fiscal_year,
        description=description,
        currency=currency,
        status=status,
        entity_type=entity_type,
        entity_id=entity_id,
        lines_json=lines_json,
    )
    engine = _engine(_settings())

    try:
        with _erp_client() as client, engine.begin() as conn:
            budget = update_budget(conn, budget_id, payload, fiscal_year_provider=client)
    except Exception as e:
        _fail(e, "update")

    typer.echo(f"{_mark_success()} Updated budget {budget['id']}")
    _echo_json(budget)


@app.command("show")
def show(budget_id: Annotated[str, typer.Argument(help="Budget ID")]) -> None:
    """Show one budget with its lines."""
    engine = _engine(_settings())
    try:
        with engine.begin() as conn:
            budget = get_budget_with_lines(conn, budget_id)
    except Exception as e:
        _fail(e, "show")
    _echo_json(budget)


@app.command("list")
def list_(
    entity_type: Annotated[str | None, typer.Option("--entity-type")] = None,
    entity_id: Annotated[str | None, typer.Option("--entity-id")] = None,
    status: Annotated[str | None, typer.Option("--status")] = None,
    from_date: Annotated[
        str | None, typer.Option("--from", help="Overlaps range starting (YYYY-MM-DD)")
    ] = None,
    to_date: Annotated[
        str | None, typer.Option("--to", help="Overlaps range ending (YYYY-MM-DD)")
    ] = None,
) -> None:
    """List budgets (optionally filtered by entity, status or date overlap)."""
    engine = _engine(_settings())
    try:
        with engine.begin() as conn:
            budgets = list_budgets(
                conn,
                {
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                    "status": status,
                    "start_date": from_date,
                    "end_date": to_date,
                },
            )
    except Exception as e:
        _fail(e, "list")
    _echo_json(budgets)


@app.command("delete")
def delete(budget_id: Annotated[str, typer.Argument(help="Budget ID")]) -> None:
    """Delete a budget and its lines."""
    engine = _engine(_settings())
    try:
        with engine.begin() as conn:
            delete_budget(conn, budget_id)
    except Exception as e:
        _fail(e, "delete")
    typer.echo(f"{_mark_success()} Deleted budget {budget_id}")


@app.command("budget-vs-actual")
def budget_vs_actual_cmd(
    budget_id: Annotated[str, typer.Option("--budget-id", help="Budget ID")],
    from_date: Annotated[str | None, typer.Option("--from")] = None,
    to_date: Annotated[str | None, typer.Option("--to")] = None,
    out: Annotated[
        str | None, typer.Option("--out", help="Also write HTML to this path")
    ] = None,
) -> None:
    """Line-by-line budget vs actual for one budget."""
    engine = _engine(_settings())
    try:
        with engine.begin() as conn:
            result = budget_vs_actual(
                conn, parse_id(budget_id, "budget_id"), from_date, to_date
            )
    except Exception as e:
        _fail(e, "budget-vs-actual")

    _echo_json(result)
    if out:
        path = write_html(render_budget_vs_actual(result), Path(out))
        typer.echo(f"{_mark_success()} Generated: {path}", err=True)


@app.command("report")
def report(
    fiscal_year: Annotated[str, typer.Option("--fiscal-year", help="Fiscal year, e.g. 2024")],
    period: Annotated[
        str | None, typer.Option("--period", help="Quarter Q1..Q4 (default: full year)")
    ] = None,
    department_id: Annotated[str | None, typer.Option("--department-id")] = None,
    out: Annotated[
        str | None, typer.Option("--out", help="Output directory for JSON + HTML")
    ] = None,
) -> None:
    """Aggregate budget vs actual for a fiscal year, quarter and department."""
    settings = _settings()
    engine = _engine(settings)

    try:
        department = parse_id(department_id, "department_id") if department_id else None
        with _erp_client() as client, engine.begin() as conn:
            result = get_report(
                conn,
                fiscal_year,
                period,
                department,
                balance_provider=client,
                currency_provider=client,
                default_currency=settings.default_currency,
            )
    except ValueError as e:
        _fail(BudgetValidationError(str(e)), "report")
    except Exception as e:
        _fail(e, "report")

    _echo_json(result)

    if out:
        label = f"{fiscal_year}{(period or '').upper()}"
        out_path = Path(out)
        out_path.mkdir(parents=True, exist_ok=True)
        json_path = out_path / f"budget_report_{label}.json"
        json_path.write_text(json.dumps(result, indent=2, default=str), encoding="utf-8")
        html_path = write_html(
            render_fiscal_report(result, fiscal_year, period),
            out_path / f"budget_report_{label}.html",
        )
        typer.echo(f"{_mark_success()} Generated: {json_path}", err=True)
        typer.echo(f"{_mark_success()} Generated: {html_path}", err=True)


@app.command("reconcile")
def reconcile() -> None:
    """Run one reconciliation pass now (no-op if another run holds the lock)."""
    settings = _settings()
    engine = _engine(settings)

    result = Reconciler(engine, lock_ttl_seconds=settings.lock_ttl_seconds).trigger()

    if result["status"] == "skipped":
        typer.echo("Reconciliation already running; skipped")
        return
    if result["status"] == "failed":
        typer.echo(f"{_mark_error()} Reconciliation failed: {result['error']}", err=True)
        raise typer.Exit(1)

    typer.echo(
        f"{_mark_success()} Reconciled {len(result['budgets'])} budgets "
        f"({result['lines']} lines)"
    )
    if result["skipped_budgets"]:
        skipped = ", ".join(str(b) for b in result["skipped_budgets"])
        typer.echo(f"WARNING: budgets skipped due to bad lines: {skipped}", err=True)


@app.command("watch")
def watch(
    interval: Annotated[
        float | None,
        typer.Option("--interval", help="Seconds between runs (default: hourly)"),
    ] = None,
) -> None:
    """Reconcile on an interval until interrupted."""
    settings = _settings()
    engine = _engine(settings)
    reconciler = Reconciler(engine, lock_ttl_seconds=settings.lock_ttl_seconds)
    scheduler = IntervalScheduler(
        reconciler.run, interval or settings.reconcile_interval_seconds
    )

    scheduler.schedule()
    typer.echo(f"Reconciling every {scheduler.interval_seconds:g}s (Ctrl-C to stop)")
    try:
        signal.pause()
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.unschedule()
        typer.echo("Stopped")


@app.command("ingest-transaction")
def ingest_transaction(
    file: Annotated[
        str,
        typer.Option("--file", help="JSON transaction {id, date, lines[]} or array"),
    ],
) -> None:
    """Record saved transaction(s) as ledger log entries."""
    data = _load_json_file(file, "--file")
    transactions = data if isinstance(data, list) else [data]
    engine = _engine(_settings())
    listener = TransactionListener(engine)

    try:
        written = sum(len(listener.on_transaction_saved(txn)) for txn in transactions)
    except (TypeError, ValueError, ArithmeticError) as e:
        _fail(BudgetValidationError(f"Malformed transaction: {e}"), "ingest")
    except Exception as e:
        _fail(e, "ingest")

    typer.echo(
        f"{_mark_success()} Ingested {len(transactions)} transactions "
        f"({written} ledger logs)."
    )


if __name__ == "__main__":
    app()

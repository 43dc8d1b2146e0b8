"""Deterministic HTML rendering of budget reports with Jinja2 templates."""

from decimal import Decimal
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader


def _get_template_env() -> Environment:
    """Get Jinja2 environment with deterministic settings."""
    template_dir = Path(__file__).parent / "templates"
    return Environment(
        loader=FileSystemLoader(template_dir),
        autoescape=True,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )


def format_amount(amount: Decimal | float | int | None) -> str:
    """Format amount to exactly 2 decimal places for deterministic output."""
    if amount is None:
        return "n/a"
    if isinstance(amount, float | int):
        amount = Decimal(str(amount))
    return f"{amount.quantize(Decimal('0.01')):.2f}"


def render_fiscal_report(
    report: dict[str, Any], fiscal_year: str | int, period: str | None = None
) -> str:
    """Render the aggregate fiscal-year report payload as HTML.

    Args:
        report: Payload from budgeting.report.get_report
        fiscal_year: Year the report covers
        period: Optional quarter label

    Returns:
        HTML string with deterministic formatting
    """
    template = _get_template_env().get_template("fiscal_report.html.j2")
    return template.render(
        fiscal_year=fiscal_year,
        period=period or "Full year",
        currency=report["currency"],
        currency_symbol=report["currency_symbol"],
        budget_amount=format_amount(report["budget_amount"]),
        actual_amount=format_amount(report["actual_amount"]),
        variance=format_amount(report["variance"]),
        variance_percentage=format_amount(report["variance_percentage"]),
    )


def render_budget_vs_actual(report: dict[str, Any]) -> str:
    """Render a single budget's line-by-line budget vs actual as HTML."""
    lines = [
        {
            "account_id": line["account_id"],
            "budgeted": format_amount(line["budgeted"]),
            "actual": format_amount(line["actual"]),
            "variance": format_amount(line["variance"]),
            "variance_pct": format_amount(line["variance_pct"]),
        }
        for line in sorted(report["lines"], key=lambda item: (item["account_id"], item["line_id"]))
    ]

    template = _get_template_env().get_template("budget_vs_actual.html.j2")
    return template.render(
        budget_id=report["budget_id"],
        period_start=report["period_start"],
        period_end=report["period_end"],
        lines=lines,
        total_budgeted=format_amount(report["totals"]["budgeted"]),
        total_actual=format_amount(report["totals"]["actual"]),
        total_variance=format_amount(report["totals"]["variance"]),
    )


def write_html(html: str, out_path: Path) -> Path:
    """Write rendered HTML, creating parent directories."""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(html, encoding="utf-8")
    return out_path

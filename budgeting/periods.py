"""Fiscal period resolution: quarters and fiscal-year aliases."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from budgeting.providers import FiscalYearProvider

logger = logging.getLogger(__name__)

QUARTERS: dict[str, tuple[str, str]] = {
    "Q1": ("01-01", "03-31"),
    "Q2": ("04-01", "06-30"),
    "Q3": ("07-01", "09-30"),
    "Q4": ("10-01", "12-31"),
}


def to_date(value: date | datetime | str) -> date:
    """Coerce a DB/driver value or ISO string to a calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _normalize_year(fiscal_year: str | int) -> str:
    year = str(fiscal_year).strip()
    if len(year) != 4 or not year.isdigit():  # noqa: PLR2004
        msg = f"Unsupported fiscal year: {fiscal_year!r}"
        raise ValueError(msg)
    return year


def calendar_year_range(fiscal_year: str | int) -> tuple[date, date]:
    """Return Jan 1 .. Dec 31 of the given year."""
    year = _normalize_year(fiscal_year)
    return date.fromisoformat(f"{year}-01-01"), date.fromisoformat(f"{year}-12-31")


def parse_report_period(
    fiscal_year: str | int, period: str | None = None
) -> tuple[date, date]:
    """Resolve a fiscal year and optional quarter to a date range.

    Args:
        fiscal_year: Year like "2024" or 2024
        period: None for the whole year, or one of "Q1".."Q4"

    Returns:
        Tuple of (start_date, end_date)
    """
    year = _normalize_year(fiscal_year)
    if not period:
        return calendar_year_range(year)

    bounds = QUARTERS.get(period.strip().upper())
    if bounds is None:
        msg = f"Unsupported period format: {period}"
        raise ValueError(msg)
    start, end = bounds
    return date.fromisoformat(f"{year}-{start}"), date.fromisoformat(f"{year}-{end}")


def _match_fiscal_year(
    fiscal_years: list[dict[str, Any]], year: str
) -> dict[str, Any] | None:
    for item in fiscal_years:
        if isinstance(item, dict) and str(item.get("name", "")) == year:
            return item
    return None


def resolve_fiscal_range(
    fiscal_year: str | int, provider: FiscalYearProvider | None = None
) -> tuple[date, date]:
    """Resolve a fiscal-year alias to a concrete (start, end) range.

    A matching definition from the provider wins. An unmatched year, a
    missing provider, or a provider failure falls back to the calendar year.
    Missing bounds on a matched definition fall back per side.
    """
    year = _normalize_year(fiscal_year)
    default_start, default_end = calendar_year_range(year)

    if provider is None:
        return default_start, default_end

    try:
        fiscal_years = provider.get_fiscal_years()
    except Exception as e:  # noqa: BLE001
        logger.warning("Fiscal year lookup failed, using calendar year: %s", e)
        return default_start, default_end

    found = _match_fiscal_year(fiscal_years or [], year)
    if found is None:
        logger.debug("No fiscal year definition named %s", year)
        return default_start, default_end

    try:
        start = to_date(found["start_date"]) if found.get("start_date") else default_start
        end = to_date(found["end_date"]) if found.get("end_date") else default_end
    except ValueError:
        logger.warning("Malformed fiscal year definition for %s: %s", year, found)
        return default_start, default_end

    return start, end

"""Collaborator contracts for optional external accounting services."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from datetime import date


class BalanceProvider(Protocol):
    def get_trial_balance(self, start_date: date, end_date: date) -> dict[str, Any]:
        """Return {"rows": {chart_id: [{"id": ..., "balance": ...}]}}."""
        ...


class CurrencyProvider(Protocol):
    def get_currency(self) -> str: ...

    def get_currency_symbol(self, code: str) -> str: ...


class FiscalYearProvider(Protocol):
    def get_fiscal_years(self) -> list[dict[str, Any]]:
        """Return [{"name": "2025", "start_date": ..., "end_date": ...}]."""
        ...

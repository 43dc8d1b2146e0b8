"""Environment-driven settings and currency fallbacks."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import BaseModel, Field

from budgeting.lock import DEFAULT_LOCK_TTL_SECONDS

DEFAULT_CURRENCY = "USD"
DEFAULT_RECONCILE_INTERVAL_SECONDS = 60 * 60


class BudgetSettings(BaseModel):
    database_url: str | None = None
    erp_api_url: str | None = None
    erp_api_token: str | None = None
    default_currency: str = DEFAULT_CURRENCY
    lock_ttl_seconds: float = Field(default=DEFAULT_LOCK_TTL_SECONDS, gt=0)
    reconcile_interval_seconds: float = Field(
        default=DEFAULT_RECONCILE_INTERVAL_SECONDS, gt=0
    )


def load_settings_from_env() -> BudgetSettings:
    """Build settings from environment variables (unset values use defaults)."""
    env: dict[str, Any] = {
        "database_url": os.getenv("DATABASE_URL"),
        "erp_api_url": os.getenv("BUDGET_ERP_API_URL"),
        "erp_api_token": os.getenv("BUDGET_ERP_API_TOKEN"),
        "default_currency": os.getenv("BUDGET_DEFAULT_CURRENCY"),
        "lock_ttl_seconds": os.getenv("BUDGET_LOCK_TTL_SECONDS"),
        "reconcile_interval_seconds": os.getenv("BUDGET_RECONCILE_INTERVAL_SECONDS"),
    }
    return BudgetSettings(**{k: v for k, v in env.items() if v})


@lru_cache(maxsize=1)
def _load_currency_symbols() -> dict[str, str]:
    """Load fallback currency symbols from YAML (cached)."""
    path = Path(__file__).parent / "currencies.yaml"
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    return cast(dict[str, str], data["symbols"])


def fallback_currency_symbol(code: str) -> str:
    """Symbol for a currency code, or the code itself when unknown."""
    return _load_currency_symbols().get(code.upper(), code)

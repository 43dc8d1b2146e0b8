"""Variance and favorability calculations for budget lines."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

NEUTRAL_TOLERANCE = Decimal("0.000001")


def to_decimal(value: Any) -> Decimal:  # noqa: ANN401
    """Convert DB/driver numerics to Decimal without float rounding."""
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def calculate_variance(actual: Any, budgeted: Any) -> dict[str, Decimal | None]:  # noqa: ANN401
    """Return variance and variance percentage for an (actual, budgeted) pair.

    variance_pct is None when nothing was budgeted.
    """
    actual_dec = to_decimal(actual)
    budgeted_dec = to_decimal(budgeted)

    variance = actual_dec - budgeted_dec
    variance_pct = None if budgeted_dec == 0 else (actual_dec / budgeted_dec) * 100

    return {"variance": variance, "variance_pct": variance_pct}


def favorability(account_type: str, actual: Any, budgeted: Any) -> str:  # noqa: ANN401
    """Classify a variance as favorable, unfavorable or neutral.

    Overspending an expense account is unfavorable; for every other account
    type a shortfall is unfavorable.
    """
    variance = to_decimal(actual) - to_decimal(budgeted)

    if abs(variance) < NEUTRAL_TOLERANCE:
        return "neutral"

    if account_type == "expense":
        return "unfavorable" if variance > 0 else "favorable"

    return "unfavorable" if variance < 0 else "favorable"

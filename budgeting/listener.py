"""Convert "transaction saved" events into ledger log entries."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from budgeting.calculator import to_decimal
from budgeting.exceptions import BudgetValidationError
from budgeting.periods import to_date
from budgeting.repository import add_log

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransactionLine:
    account_id: int
    amount: Decimal


@dataclass(frozen=True)
class TransactionEvent:
    transaction_id: int | None
    transaction_date: date
    lines: list[TransactionLine] = field(default_factory=list)


def _field(source: Any, name: str, default: Any = None) -> Any:  # noqa: ANN401
    """Read a field from a mapping or an attribute-style object."""
    if isinstance(source, Mapping):
        return source.get(name, default)
    return getattr(source, name, default)


def _account_id(value: Any) -> int:  # noqa: ANN401
    if value in (None, ""):
        return 0
    return int(value)


def normalize_transaction(
    payload: Any,  # noqa: ANN401
    *,
    today: Callable[[], date] = date.today,
) -> TransactionEvent | None:
    """Normalize an external event payload into a TransactionEvent.

    Accepts mappings or objects exposing id/date/lines. Returns None for an
    empty payload. A missing date falls back to today; datetimes are cut to
    their calendar date.

    Raises:
        BudgetValidationError: If a line has a non-numeric account or amount;
            the event is rejected whole, so no line of it is logged
    """
    if not payload:
        return None

    raw_id = _field(payload, "id")
    raw_date = _field(payload, "date")

    lines: list[TransactionLine] = []
    for index, line in enumerate(_field(payload, "lines") or []):
        try:
            lines.append(
                TransactionLine(
                    account_id=_account_id(_field(line, "account_id")),
                    amount=to_decimal(_field(line, "amount", 0) or 0),
                )
            )
        except (ArithmeticError, TypeError, ValueError):
            msg = f"lines[{index}] has a non-numeric account_id or amount"
            raise BudgetValidationError(msg) from None

    return TransactionEvent(
        transaction_id=int(raw_id) if raw_id not in (None, "") else None,
        transaction_date=to_date(raw_date) if raw_date else today(),
        lines=lines,
    )


class TransactionListener:
    """Appends one ledger log per transaction line with a non-zero account."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def on_transaction_saved(self, payload: Any) -> list[int]:  # noqa: ANN401
        """Handle a saved transaction; return the ledger log ids written."""
        event = normalize_transaction(payload)
        if event is None:
            return []

        log_ids: list[int] = []
        with self.engine.begin() as conn:
            for line in event.lines:
                if not line.account_id:
                    continue
                log_ids.append(
                    add_log(
                        conn,
                        {
                            "transaction_id": event.transaction_id,
                            "account_id": line.account_id,
                            "amount": line.amount,
                            "transaction_date": event.transaction_date,
                        },
                    )
                )

        logger.debug(
            "Transaction %s: %d ledger logs written", event.transaction_id, len(log_ids)
        )
        return log_ids

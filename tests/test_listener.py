"""Tests for turning saved transactions into ledger logs."""

from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import Engine

from budgeting.exceptions import BudgetValidationError
from budgeting.listener import TransactionListener, normalize_transaction
from budgeting.repository import get_logs_for_period
from tests.utils.db_helper import count_rows


def test_zero_account_lines_are_skipped(db_engine: Engine) -> None:
    listener = TransactionListener(db_engine)

    log_ids = listener.on_transaction_saved({
        "id": 42,
        "date": "2024-05-01",
        "lines": [{"account_id": 5, "amount": "100"}, {"account_id": 0, "amount": "50"}],
    })

    assert len(log_ids) == 1
    with db_engine.connect() as conn:
        (log,) = get_logs_for_period(conn, 5, date(2024, 5, 1), date(2024, 5, 1))
        assert count_rows(conn, "budget_logs") == 1

    assert log["transaction_id"] == 42
    assert log["amount"] == Decimal(100)
    assert log["transaction_date"] == date(2024, 5, 1)


def test_attribute_style_payload(db_engine: Engine) -> None:
    payload = SimpleNamespace(
        id=7,
        date=datetime(2024, 6, 30, 23, 15),
        lines=[SimpleNamespace(account_id=9, amount=Decimal("12.34"))],
    )

    log_ids = TransactionListener(db_engine).on_transaction_saved(payload)

    assert len(log_ids) == 1
    with db_engine.connect() as conn:
        (log,) = get_logs_for_period(conn, 9, date(2024, 6, 30), date(2024, 6, 30))
    assert log["amount"] == Decimal("12.34")


def test_empty_payload_writes_nothing(db_engine: Engine) -> None:
    listener = TransactionListener(db_engine)

    assert listener.on_transaction_saved({}) == []
    assert listener.on_transaction_saved(None) == []
    with db_engine.connect() as conn:
        assert count_rows(conn, "budget_logs") == 0


def test_negative_amounts_are_recorded_as_is(db_engine: Engine) -> None:
    TransactionListener(db_engine).on_transaction_saved({
        "id": 1,
        "date": "2024-01-10",
        "lines": [{"account_id": 5, "amount": -75}],
    })

    with db_engine.connect() as conn:
        (log,) = get_logs_for_period(conn, 5, date(2024, 1, 1), date(2024, 1, 31))
    assert log["amount"] == Decimal(-75)


@pytest.mark.parametrize(
    "bad_line",
    [{"account_id": "abc", "amount": 1}, {"account_id": 6, "amount": "x"}],
)
def test_malformed_line_rejects_whole_event(db_engine: Engine, bad_line: dict) -> None:
    listener = TransactionListener(db_engine)

    with pytest.raises(BudgetValidationError, match=r"lines\[1\]"):
        listener.on_transaction_saved({
            "id": 9,
            "date": "2024-01-10",
            "lines": [{"account_id": 5, "amount": 10}, bad_line],
        })

    with db_engine.connect() as conn:
        assert count_rows(conn, "budget_logs") == 0


def test_normalize_defaults_date_to_today() -> None:
    event = normalize_transaction(
        {"id": "3", "lines": [{"account_id": None, "amount": None}]},
        today=lambda: date(2025, 2, 2),
    )

    assert event is not None
    assert event.transaction_id == 3
    assert event.transaction_date == date(2025, 2, 2)
    assert event.lines[0].account_id == 0
    assert event.lines[0].amount == Decimal(0)


def test_normalize_without_lines() -> None:
    event = normalize_transaction({"id": 1, "date": "2024-01-01"})

    assert event is not None
    assert event.lines == []

"""Test configuration and fixtures."""

from collections.abc import Iterator
from pathlib import Path

import pytest
from sqlalchemy import Engine

from budgeting.schema import create_db_engine, create_schema


@pytest.fixture
def db_engine(tmp_path: Path) -> Iterator[Engine]:
    """File-backed SQLite with the budgeting schema (shared across connections)."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'budget.db'}")
    with engine.begin() as conn:
        create_schema(conn)
    yield engine
    engine.dispose()


@pytest.fixture
def database_url(db_engine: Engine) -> str:
    """URL of the schema-initialized SQLite database, for CLI tests."""
    return db_engine.url.render_as_string(hide_password=False)

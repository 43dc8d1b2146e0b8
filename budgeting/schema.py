"""Schema bootstrap and engine factory for the budgeting store."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, event, text

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection, Engine

TABLES = (
    "budgets",
    "budget_lines",
    "budget_logs",
    "budget_periods",
    "budget_variances",
    "job_locks",
)


def _id_column(dialect: str) -> str:
    if dialect == "postgresql":
        return "id BIGSERIAL PRIMARY KEY"
    return "id INTEGER PRIMARY KEY AUTOINCREMENT"


def _enable_sqlite_foreign_keys(dbapi_conn: Any, _record: Any) -> None:  # noqa: ANN401
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


def create_db_engine(database_url: str, **kwargs: Any) -> Engine:  # noqa: ANN401
    """Create SQLAlchemy engine with the psycopg driver for Postgres URLs."""
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+psycopg://", 1)

    engine = create_engine(database_url, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def create_schema(conn: Connection) -> None:
    """Create budgeting tables and indexes if they do not exist."""
    pk = _id_column(conn.dialect.name)

    conn.execute(
        text(f"""
        CREATE TABLE IF NOT EXISTS budgets (
            {pk},
            title VARCHAR(191) NOT NULL,
            description TEXT,
            entity_type VARCHAR(32) DEFAULT 'global',
            entity_id BIGINT,
            fiscal_year VARCHAR(32),
            currency VARCHAR(12) DEFAULT 'USD',
            status VARCHAR(16) NOT NULL DEFAULT 'draft' CHECK (
                status IN ('draft','assigned','active','closed')
            ),
            start_date DATE NOT NULL,
            end_date DATE NOT NULL,
            created_by BIGINT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            CHECK (start_date <= end_date)
        )
    """)  # noqa: S608
    )

    conn.execute(
        text(f"""
        CREATE TABLE IF NOT EXISTS budget_lines (
            {pk},
            budget_id BIGINT NOT NULL
                REFERENCES budgets(id) ON DELETE CASCADE,
            account_id BIGINT NOT NULL CHECK (account_id <> 0),
            period_type VARCHAR(16) DEFAULT 'monthly',
            period_key VARCHAR(64) DEFAULT '',
            amount NUMERIC(20,4) DEFAULT 0,
            notes TEXT
        )
    """)  # noqa: S608
    )

    conn.execute(
        text(f"""
        CREATE TABLE IF NOT EXISTS budget_logs (
            {pk},
            transaction_id BIGINT,
            account_id BIGINT NOT NULL,
            amount NUMERIC(20,4) NOT NULL,
            transaction_date DATE NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)  # noqa: S608
    )

    conn.execute(
        text(f"""
        CREATE TABLE IF NOT EXISTS budget_periods (
            {pk},
            budget_id BIGINT NOT NULL
                REFERENCES budgets(id) ON DELETE CASCADE,
            period_start DATE NOT NULL,
            period_end DATE NOT NULL,
            budgeted_amount NUMERIC(20,4) DEFAULT 0,
            actual_amount NUMERIC(20,4) DEFAULT 0,
            UNIQUE (budget_id, period_start, period_end)
        )
    """)  # noqa: S608
    )

    # Snapshots are history: no FK so deleting a budget keeps its audit trail
    conn.execute(
        text(f"""
        CREATE TABLE IF NOT EXISTS budget_variances (
            {pk},
            budget_id BIGINT NOT NULL,
            period_start DATE NOT NULL,
            period_end DATE NOT NULL,
            actual_amount NUMERIC(20,4) DEFAULT 0,
            budgeted_amount NUMERIC(20,4) DEFAULT 0,
            variance NUMERIC(20,4) DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)  # noqa: S608
    )

    conn.execute(
        text("""
        CREATE TABLE IF NOT EXISTS job_locks (
            name VARCHAR(64) PRIMARY KEY,
            token VARCHAR(64) NOT NULL,
            expires_at FLOAT NOT NULL
        )
    """)
    )

    indexes = [
        "CREATE INDEX IF NOT EXISTS idx_budgets_range ON budgets(start_date, end_date)",
        "CREATE INDEX IF NOT EXISTS idx_budgets_entity"
        " ON budgets(entity_type, entity_id)",
        "CREATE INDEX IF NOT EXISTS idx_budget_lines_budget_id"
        " ON budget_lines(budget_id)",
        "CREATE INDEX IF NOT EXISTS idx_budget_lines_account_id"
        " ON budget_lines(account_id)",
        "CREATE INDEX IF NOT EXISTS idx_budget_logs_account_date"
        " ON budget_logs(account_id, transaction_date)",
        "CREATE INDEX IF NOT EXISTS idx_budget_variances_budget_id"
        " ON budget_variances(budget_id, period_start)",
    ]
    for index_sql in indexes:
        conn.execute(text(index_sql))

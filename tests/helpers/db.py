"""DB helpers for tests: bootstrap a temporary SQLite DB and seed reference data."""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path

from db import Base
from db.client import get_engine, session_scope
from db.models.budget import ActualLine, BudgetLine, PricingRounding, budget_archive_table
from sqlalchemy import event, func, inspect, select
from sqlalchemy import text as sql_text


def bootstrap_sqlite_db(db_file: Path, *, set_default_env: bool = False) -> str:
    """Create a SQLite database file, initialize schema, and return the URL.

    Using a file-backed SQLite DB ensures multiple SQLAlchemy connections share
    the same state (in-memory DBs are per-connection by default).
    """

    url = f"sqlite+pysqlite:///{db_file}"
    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(database_url=url)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _):  # pragma: no cover - tiny bridge
        from datetime import UTC, datetime

        dbapi_conn.create_function(
            "now", 0, lambda: datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")
        )

    Base.metadata.create_all(bind=engine)
    _assert_schema_in_sync(url)

    if set_default_env:
        os.environ.setdefault("DATABASE_URL", url)
    return url


def seed_pricing(
    *, database_url: str, division: str, year: int, entries: dict[str, tuple[float, float]]
) -> None:
    """Insert ``product_group -> (asp, morm)`` rows for a division code and year."""

    with session_scope(database_url=database_url) as session:
        for pg, (asp, morm) in entries.items():
            session.add(
                PricingRounding(
                    division=division, year=year, product_group=pg, asp_round=asp, morm_round=morm
                )
            )


def seed_actuals(
    *,
    database_url: str,
    division: str,
    year: int,
    rows: Iterable[tuple[str, str, str, str, int, str, float]],
    line_type: str = "ACTUAL",
) -> None:
    """Insert ``(sales_rep, customer, country, product_group, month, kind, value)`` rows."""

    with session_scope(database_url=database_url) as session:
        for rep, customer, country, pg, month, kind, value in rows:
            session.add(
                ActualLine(
                    division=division,
                    year=year,
                    month=month,
                    line_type=line_type,
                    sales_rep=rep,
                    customer=customer,
                    country=country,
                    product_group=pg,
                    value_kind=kind,
                    value=value,
                )
            )


def budget_rows(database_url: str, **filters: object) -> list[BudgetLine]:
    with session_scope(database_url=database_url) as session:
        stmt = select(BudgetLine).filter_by(**filters).order_by(BudgetLine.id)
        return list(session.execute(stmt).scalars())


def archive_rows(database_url: str, division_code: str) -> list[dict[str, object]]:
    table = budget_archive_table(division_code)
    with session_scope(database_url=database_url) as session:
        if not inspect(session.connection()).has_table(table.name):
            return []
        result = session.execute(select(table).order_by(table.c.archive_id))
        return [dict(r._mapping) for r in result]


def estimate_count(database_url: str, *, division: str, year: int) -> int:
    with session_scope(database_url=database_url) as session:
        stmt = select(func.count()).select_from(ActualLine).where(
            ActualLine.division == division,
            ActualLine.year == year,
            ActualLine.line_type == "ESTIMATE",
        )
        return int(session.execute(stmt).scalar_one())


def _assert_schema_in_sync(database_url: str) -> None:
    """ORM column sets match the SQLite tables created from metadata."""

    with session_scope(database_url=database_url) as session:
        for table in Base.metadata.sorted_tables:
            rows = session.execute(sql_text(f"PRAGMA table_info('{table.name}')")).fetchall()
            got = {row[1] for row in rows}
            expected = {c.name for c in table.columns}
            assert got == expected, f"{table.name} schema drift: {expected ^ got}"

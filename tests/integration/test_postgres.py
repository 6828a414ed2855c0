"""Integration tests against a live PostgreSQL server.

Skipped unless ``PG_ACCESS_INTEGRATION=1`` is set; connection details come
from the usual ``DB_*`` variables, which are read before the autouse fixture
clears them.
"""

import os
from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio

from pg_access import Database, DatabaseSettings, SqlQueryBuilder
from pg_access.core.exceptions import TransactionError

pytestmark = pytest.mark.skipif(
    os.getenv("PG_ACCESS_INTEGRATION") != "1",
    reason="set PG_ACCESS_INTEGRATION=1 to run against a live database",
)

_LIVE_SETTINGS = {
    key: value
    for key, value in {
        "host": os.getenv("DB_HOST"),
        "port": os.getenv("DB_PORT"),
        "username": os.getenv("DB_USERNAME"),
        "password": os.getenv("DB_PASSWORD"),
        "database": os.getenv("DB_DATABASE"),
    }.items()
    if value
}


@pytest_asyncio.fixture  # type: ignore[misc]
async def live_db() -> AsyncGenerator[Database, None]:
    settings = DatabaseSettings(
        **_LIVE_SETTINGS,
        check_connection=True,
        retry_attempts=2,
        retry_delay=1000,
    )
    db = Database()
    await db.initialize(settings)
    await db.query(
        "CREATE TABLE IF NOT EXISTS pg_access_items "
        "(id int PRIMARY KEY, name text NOT NULL)"
    )
    yield db
    await db.query("DROP TABLE IF EXISTS pg_access_items")
    await db.shutdown()


@pytest.mark.asyncio
async def test_round_trip(live_db: Database) -> None:
    row = await live_db.query_one("SELECT $1::int + $2::int AS total", [2, 3])

    assert row == {"total": 5}


@pytest.mark.asyncio
async def test_builder_output_runs(live_db: Database) -> None:
    query = (
        SqlQueryBuilder.create()
        .select(["n"])
        .from_("generate_series(1, 20) AS n")
        .where("n > $1", [5])
        .and_where("n % $1 = $2", [2, 0])
        .order_by("n")
        .paginate(2, 3)
        .build()
    )

    rows = await live_db.query_many(query.sql, query.params)

    assert [row["n"] for row in rows] == [12, 14, 16]


@pytest.mark.asyncio
async def test_transaction_rollback(live_db: Database) -> None:
    async def failing(conn: Any) -> None:
        await conn.execute("INSERT INTO pg_access_items VALUES ($1, $2)", 1, "temp")
        raise RuntimeError("abort")

    with pytest.raises(TransactionError):
        await live_db.transaction(failing)

    count = await live_db.query_one("SELECT count(*) AS n FROM pg_access_items")
    assert count == {"n": 0}
    status = live_db.get_pool_status()
    assert status.total >= status.idle

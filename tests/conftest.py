"""Test configuration and fixtures.

Provides pytest-asyncio support, isolated database settings and a pool
manager wired to the in-memory fake pool from ``tests.fixtures.fake_pool``.
"""

import os
from collections.abc import AsyncGenerator, Generator
from typing import Any

import pytest
import pytest_asyncio

from pg_access.core import database as database_module
from pg_access.core.config import DatabaseSettings, clear_settings_cache
from pg_access.core.database import Database
from tests.fixtures.fake_pool import (
    FakeConnection,
    FakePool,
    FakePoolFactory,
    RecordingSleep,
)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Drop DB_* variables and cached singletons around every test."""
    for name in list(os.environ):
        if name.upper().startswith("DB_"):
            monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    monkeypatch.setattr(database_module, "_database", None)
    yield
    clear_settings_cache()


@pytest.fixture
def settings() -> DatabaseSettings:
    """Settings with the connectivity probe disabled."""
    return DatabaseSettings(
        host="db.internal",
        port=5433,
        username="app",
        password="s3cret",
        database="inventory",
        pool_min=1,
        pool_max=4,
    )


@pytest.fixture
def checked_settings() -> DatabaseSettings:
    """Settings with the probe enabled: 2 attempts, 1.5 second fixed delay."""
    return DatabaseSettings(
        host="db.internal",
        username="app",
        password="s3cret",
        database="inventory",
        check_connection=True,
        retry_attempts=2,
        retry_delay=1500,
    )


@pytest.fixture
def sample_rows() -> list[dict[str, Any]]:
    return [
        {"id": 1, "name": "Ada", "active": True},
        {"id": 2, "name": "Grace", "active": True},
    ]


@pytest.fixture
def fake_connection(sample_rows: list[dict[str, Any]]) -> FakeConnection:
    return FakeConnection(rows=sample_rows)


@pytest.fixture
def fake_pool(fake_connection: FakeConnection) -> FakePool:
    return FakePool(fake_connection, size=3)


@pytest.fixture
def pool_factory(fake_pool: FakePool) -> FakePoolFactory:
    return FakePoolFactory(fake_pool)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def database(pool_factory: FakePoolFactory, recording_sleep: RecordingSleep) -> Database:
    """Uninitialized pool manager backed by the fake pool."""
    return Database(pool_factory=pool_factory, sleep=recording_sleep)


@pytest_asyncio.fixture  # type: ignore[misc]
async def ready_database(
    database: Database, settings: DatabaseSettings
) -> AsyncGenerator[Database, None]:
    """Pool manager in the READY state."""
    await database.initialize(settings)
    yield database
    await database.shutdown()

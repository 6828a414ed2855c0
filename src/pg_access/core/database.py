# PgAccess - PostgreSQL Data Access Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.
# SPDX-License-Identifier: AGPL-3.0-or-later
"""Connection pool lifecycle and query execution on top of asyncpg.

One :class:`Database` owns one pool for the process lifetime::

    UNINITIALIZED -> INITIALIZING -> (VERIFYING ->) READY -> CLOSING -> CLOSED

Queries and transactions are only accepted in ``READY``. Each ``query`` call
and each whole ``transaction`` holds one pooled connection exclusively and
always returns it to the pool, on success and on failure. If releasing the
connection itself fails, that error propagates and replaces the original one
(still reachable through ``__context__``).
"""

import asyncio
import contextlib
import time
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum
from typing import Any, TypeVar

import asyncpg
from attrs import field, frozen
from beartype import beartype

from .config import DatabaseSettings, get_settings
from .exceptions import (
    DatabaseConfigurationError,
    DatabaseConnectionError,
    DatabaseError,
    PoolNotInitializedError,
    QueryExecutionError,
    TransactionError,
)
from .logging_utils import get_context_logger
from .query_builder import Params
from .result_types import Err, Ok, Result
from .retry import RetryPolicy, retry_policy_from_settings

T = TypeVar("T")

PoolFactory = Callable[..., Awaitable[Any]]
SleepFunc = Callable[[float], Awaitable[Any]]

logger = get_context_logger(__name__, service_context="Database")

_PROBE_QUERY = "SELECT NOW()"
_QUERY_TIMES_WINDOW = 1000


class PoolState(str, Enum):
    """Lifecycle of the pool manager."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    VERIFYING = "verifying"
    READY = "ready"
    CLOSING = "closing"
    CLOSED = "closed"


@frozen
class PoolStatus:
    """Connection counts of the pool.

    ``waiting`` is the number of in-flight acquirers: callers currently inside
    ``pool.acquire``, including ones about to be served from an idle connection.
    """

    total: int = field(default=0)
    idle: int = field(default=0)
    waiting: int = field(default=0)


@frozen
class QueryResult:
    """Rows returned by a statement."""

    rows: list[dict[str, Any]] = field(factory=list)
    row_count: int = field(default=0)
    duration_ms: float = field(default=0.0)


@frozen
class QueryMetrics:
    """Query counters over the manager lifetime."""

    queries_total: int = field()
    queries_failed: int = field()
    queries_slow: int = field()
    average_query_time_ms: float = field()


def _squash(sql: str) -> str:
    return " ".join(sql.split())


class Database:
    """Pool manager: lifecycle, scoped query execution and transactions.

    Args:
        pool_factory: Coroutine function creating the pool. Defaults to
            :func:`asyncpg.create_pool`; called with the DSN and pool options.
        retry_policy: Delay policy for the startup probe. When omitted it is
            derived from ``settings.retry_strategy`` (fixed delay by default).
        sleep: Awaitable used to pause between probe attempts.
    """

    def __init__(
        self,
        *,
        pool_factory: PoolFactory | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: SleepFunc | None = None,
    ) -> None:
        self._pool_factory: PoolFactory = pool_factory or asyncpg.create_pool
        self._retry_policy = retry_policy
        self._sleep: SleepFunc = sleep or asyncio.sleep

        self._pool: Any = None
        self._settings: DatabaseSettings | None = None
        self._state = PoolState.UNINITIALIZED
        self._waiting = 0
        self._init_lock = asyncio.Lock()

        self._metrics: dict[str, int] = {
            "queries_total": 0,
            "queries_failed": 0,
            "queries_slow": 0,
        }
        self._query_times_ms: deque[float] = deque(maxlen=_QUERY_TIMES_WINDOW)

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def settings(self) -> DatabaseSettings | None:
        return self._settings

    @property
    def is_ready(self) -> bool:
        """Check if queries are accepted."""
        return self._pool is not None and self._state is PoolState.READY

    @property
    def is_connected(self) -> bool:
        """Check if a pool handle exists (it may still be unverified)."""
        return self._pool is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @beartype
    async def initialize(self, settings: DatabaseSettings | None) -> None:
        """Create the pool and run the connectivity probe.

        The pool is always created; whether it is probed depends on
        ``settings.check_connection``.

        Raises:
            DatabaseConfigurationError: If ``settings`` is missing, or a pool
                already exists for different connection or pool settings.
            DatabaseConnectionError: If the pool cannot be created or the
                probe exhausts its attempts.
            DatabaseError: If the manager was already shut down.
        """
        operation = "Database.initialize"
        logger.debug("initialize()")

        if settings is None:
            raise DatabaseConfigurationError(
                "Database configuration not found", operation
            )

        # concurrent callers wait for the first one and then see READY
        async with self._init_lock:
            if self._state is PoolState.CLOSED:
                raise DatabaseError(
                    "Database pool has been closed and cannot be re-initialized",
                    operation,
                )
            if self._state is PoolState.READY:
                return

            if self._pool is None:
                await self._create_pool(settings, operation)
            elif not self._same_pool(settings):
                raise DatabaseConfigurationError(
                    "Pool already created with different connection settings; "
                    "shut it down before initializing with new ones",
                    operation,
                )

            # probe options (retry_*, check_connection) may change on a retry
            self._settings = settings
            await self.verify_connectivity(settings)

    async def _create_pool(self, settings: DatabaseSettings, operation: str) -> None:
        self._state = PoolState.INITIALIZING
        try:
            self._pool = await self._pool_factory(
                settings.dsn,
                **self._pool_options(settings),
            )
        except Exception as exc:
            self._state = PoolState.UNINITIALIZED
            logger.error(
                "Failed to create database connection pool",
                extra={"dsn": settings.safe_dsn, "err": exc},
            )
            raise DatabaseConnectionError(
                f"Failed to create connection pool: {exc}", operation, cause=exc
            ) from exc

        self._settings = settings
        logger.info(
            "Database connection pool created",
            extra={
                "host": settings.host,
                "port": settings.port,
                "database": settings.database,
                "pool_min": settings.pool_min,
                "pool_max": settings.pool_max,
            },
        )

    def _same_pool(self, settings: DatabaseSettings) -> bool:
        current = self._settings
        return current is not None and (
            settings.dsn == current.dsn
            and self._pool_options(settings) == self._pool_options(current)
        )

    @staticmethod
    def _pool_options(settings: DatabaseSettings) -> dict[str, Any]:
        return {
            "min_size": settings.pool_min,
            "max_size": settings.pool_max,
            "timeout": settings.connection_timeout_seconds,
            "max_inactive_connection_lifetime": settings.idle_timeout_seconds,
            "ssl": settings.ssl,
        }

    @beartype
    async def verify_connectivity(self, settings: DatabaseSettings | None = None) -> None:
        """Probe the database with bounded retries.

        Skipped (pool marked ready, unverified) when
        ``settings.check_connection`` is false.

        Raises:
            DatabaseConnectionError: After ``retry_attempts`` failed attempts.
        """
        operation = "Database.verify_connectivity"
        log = logger.child(operation=operation)
        settings = settings or self._settings
        if settings is None:
            raise DatabaseConfigurationError(
                "Database configuration not found", operation
            )
        if self._pool is None:
            raise PoolNotInitializedError(
                "Database connection pool not initialized.", operation
            )

        if not settings.check_connection:
            log.info(
                "Database connection check disabled (DB_CHECK=false), skipping connection test"
            )
            self._state = PoolState.READY
            return

        self._state = PoolState.VERIFYING
        policy = self._retry_policy or retry_policy_from_settings(settings)
        attempts = settings.retry_attempts

        log.info(
            "Testing database connection with retry logic",
            extra={
                "host": settings.host,
                "port": settings.port,
                "database": settings.database,
                "ssl": settings.ssl,
                "retry_attempts": attempts,
                "retry_strategy": settings.retry_strategy,
            },
        )

        last_error: BaseException | None = None
        for attempt in range(1, attempts + 1):
            log.debug(f"Database connection attempt {attempt}/{attempts}")
            try:
                async with self._checkout(self._pool, operation) as conn:
                    await conn.fetchval(_PROBE_QUERY)
            except Exception as exc:
                if isinstance(exc, DatabaseError) and exc.cause is not None:
                    last_error = exc.cause
                else:
                    last_error = exc
                delay = policy.delay_for(attempt) if attempt < attempts else None
                log.warning(
                    f"Database connection attempt {attempt}/{attempts} failed",
                    extra={
                        "err": last_error,
                        "next_retry_in": "none" if delay is None else f"{delay:.3f}s",
                    },
                )
                if delay is not None:
                    await self._sleep(delay)
                continue

            self._state = PoolState.READY
            log.info(
                "Database connection test successful",
                extra={"attempt": attempt, "total_attempts": attempts},
            )
            return

        log.error(
            "All database connection attempts failed",
            extra={
                "err": last_error,
                "total_attempts": attempts,
                "host": settings.host,
                "port": settings.port,
                "database": settings.database,
            },
        )
        raise DatabaseConnectionError(
            f"Database connection failed after {attempts} attempts: {last_error}",
            operation,
            cause=last_error,
        ) from last_error

    @beartype
    async def shutdown(self) -> None:
        """Close the pool. No-op when there is none.

        Raises:
            DatabaseError: If closing exceeds ``shutdown_timeout`` (the pool is
                terminated first).
        """
        operation = "Database.shutdown"
        logger.debug("shutdown()")

        if self._pool is None:
            return

        pool = self._pool
        timeout = (
            self._settings.shutdown_timeout_seconds if self._settings else 5.0
        )
        self._state = PoolState.CLOSING
        try:
            await asyncio.wait_for(pool.close(), timeout=timeout)
        except TimeoutError as exc:
            logger.warning(
                f"Pool close timed out after {timeout} seconds - forcing termination"
            )
            pool.terminate()
            raise DatabaseError(
                f"Pool close timed out after {timeout} seconds", operation, cause=exc
            ) from exc
        finally:
            self._pool = None
            self._state = PoolState.CLOSED

        logger.info("Database connection pool closed")

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    @beartype
    async def acquire(self) -> AsyncIterator[Any]:
        """Borrow a connection from the ready pool for the block's duration."""
        pool = self._require_pool("Database.acquire")
        async with self._checkout(pool, "Database.acquire") as conn:
            yield conn

    @contextlib.asynccontextmanager
    async def _checkout(self, pool: Any, operation: str) -> AsyncIterator[Any]:
        self._waiting += 1
        try:
            conn = await pool.acquire(timeout=self._acquire_timeout())
        except Exception as exc:
            raise DatabaseConnectionError(
                f"Failed to acquire database connection: {exc}", operation, cause=exc
            ) from exc
        finally:
            self._waiting -= 1

        try:
            yield conn
        finally:
            await pool.release(conn)

    def _require_pool(self, operation: str) -> Any:
        if self._pool is None or self._state is not PoolState.READY:
            raise PoolNotInitializedError(
                "Database connection pool not initialized.", operation
            )
        return self._pool

    def _acquire_timeout(self) -> float | None:
        if self._settings is None:
            return None
        return self._settings.connection_timeout_seconds

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @beartype
    async def query(
        self, sql: str, params: Params | None = None
    ) -> QueryResult:
        """Run one statement on a pooled connection.

        Raises:
            PoolNotInitializedError: If the pool is not ready.
            DatabaseConnectionError: If no connection could be acquired.
            QueryExecutionError: If the statement (or the release) failed.
        """
        operation = "Database.query"
        log = logger.child(operation=operation)
        log.debug(f"query: {_squash(sql)}", extra={"param_count": len(params or ())})

        pool = self._require_pool(operation)
        args = tuple(params or ())
        start_time = time.perf_counter()

        try:
            async with self._checkout(pool, operation) as conn:
                records = await conn.fetch(sql, *args)
        except DatabaseError:
            self._metrics["queries_failed"] += 1
            raise
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self._metrics["queries_failed"] += 1
            log.error(
                "Query execution failed",
                extra={
                    "err": exc,
                    "query": _squash(sql),
                    "duration": f"{duration_ms:.1f}ms",
                },
            )
            raise QueryExecutionError(
                f"Query execution failed: {exc}", operation, cause=exc
            ) from exc

        duration_ms = (time.perf_counter() - start_time) * 1000
        rows = [dict(record) for record in records]
        self._record_query(sql, duration_ms)

        log.debug(
            "Query executed successfully",
            extra={"row_count": len(rows), "duration": f"{duration_ms:.1f}ms"},
        )
        return QueryResult(rows=rows, row_count=len(rows), duration_ms=duration_ms)

    @beartype
    async def query_one(
        self, sql: str, params: Params | None = None
    ) -> dict[str, Any] | None:
        """Return the first row, or ``None`` when the result is empty."""
        result = await self.query(sql, params)
        return result.rows[0] if result.rows else None

    @beartype
    async def query_many(
        self, sql: str, params: Params | None = None
    ) -> list[dict[str, Any]]:
        """Return all rows."""
        result = await self.query(sql, params)
        return result.rows

    @beartype
    async def transaction(self, callback: Callable[[Any], Awaitable[T]]) -> T:
        """Run ``callback(conn)`` inside BEGIN/COMMIT on one connection.

        Any failure in BEGIN, the callback or COMMIT issues ROLLBACK and is
        re-raised as :class:`TransactionError`. The callback result is
        returned unchanged on success.

        Example::

            async def transfer(conn):
                await conn.execute("UPDATE accounts SET balance = balance - $1 WHERE id = $2", 10, src)
                await conn.execute("UPDATE accounts SET balance = balance + $1 WHERE id = $2", 10, dst)
                return True

            await db.transaction(transfer)
        """
        operation = "Database.transaction"
        log = logger.child(operation=operation)
        log.debug("transaction()")

        pool = self._require_pool(operation)

        async with self._checkout(pool, operation) as conn:
            try:
                await conn.execute("BEGIN")
                result = await callback(conn)
                await conn.execute("COMMIT")
            except Exception as exc:
                await conn.execute("ROLLBACK")
                log.error("Transaction failed, rolled back", extra={"err": exc})
                raise TransactionError(
                    f"Transaction failed: {exc}", operation, cause=exc
                ) from exc

        log.debug("Transaction completed successfully")
        return result

    def _record_query(self, sql: str, duration_ms: float) -> None:
        self._metrics["queries_total"] += 1
        self._query_times_ms.append(duration_ms)

        threshold = self._settings.slow_query_threshold if self._settings else 1000
        if duration_ms > threshold:
            self._metrics["queries_slow"] += 1
            logger.warning(
                "Slow query detected",
                extra={"query": _squash(sql), "duration": f"{duration_ms:.1f}ms"},
            )

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    @beartype
    def get_pool_status(self) -> PoolStatus:
        """Return total/idle connections and in-flight acquirers (zeros without a pool)."""
        if self._pool is None:
            return PoolStatus(total=0, idle=0, waiting=0)

        return PoolStatus(
            total=self._pool.get_size(),
            idle=self._pool.get_idle_size(),
            waiting=self._waiting,
        )

    @beartype
    def get_query_metrics(self) -> QueryMetrics:
        average = 0.0
        if self._query_times_ms:
            average = sum(self._query_times_ms) / len(self._query_times_ms)
        return QueryMetrics(
            queries_total=self._metrics["queries_total"],
            queries_failed=self._metrics["queries_failed"],
            queries_slow=self._metrics["queries_slow"],
            average_query_time_ms=average,
        )

    async def health_check(self) -> Result[str, str]:
        """Round-trip ``SELECT 1``; never raises."""
        try:
            async with self.acquire() as conn:
                value = await conn.fetchval("SELECT 1")
        except Exception as exc:
            return Err(f"Health check failed: {exc}")

        if value != 1:
            return Err("Health check query failed")
        return Ok("Healthy")


# Global database instance
_database: Database | None = None


@beartype
def get_database() -> Database:
    """Get global database instance."""
    global _database
    if _database is None:
        _database = Database()
    return _database


@beartype
async def init_db_pool(settings: DatabaseSettings | None = None) -> Database:
    """Initialize the global pool from ``settings`` (environment by default)."""
    db = get_database()
    await db.initialize(settings or get_settings())
    return db


@beartype
async def close_db_pool() -> None:
    """Close the global pool."""
    await get_database().shutdown()


@contextlib.asynccontextmanager
async def get_db_session() -> AsyncIterator[Any]:
    """Get a pooled connection for dependency injection."""
    async with get_database().acquire() as conn:
        yield conn

"""
Ideas Tracker – Async SQLAlchemy engines, query executors, and declarative base.

One ``QueryExecutor`` is built per process from ``settings.DATABASE_URL`` and
handed to repositories by dependency injection.  Two implementations exist:

* ``PostgresExecutor`` – networked backend over asyncpg, bounded pool,
  native ``RETURNING``.
* ``SQLiteExecutor`` – embedded backend over aiosqlite, one writer at a time,
  ``RETURNING`` emulated with a follow-up select.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from functools import lru_cache
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Mapping, Optional, Sequence, Tuple, TypeVar, Union

from fastapi import Request
from sqlalchemy import Boolean, DateTime, event, text
from sqlalchemy.engine import CursorResult, make_url
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import settings
from app.utils.dialect import (
    POSTGRESQL,
    SQLITE,
    QueryResult,
    bind_params,
    build_insert,
    build_select_by_key,
    build_update,
    infer_insert_table,
    normalize_row,
    translate_placeholders,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ── Declarative base ──
class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


@lru_cache(maxsize=None)
def typed_columns() -> Tuple[FrozenSet[str], FrozenSet[str]]:
    """Names of the timestamp and boolean columns declared on the models."""
    import app.models  # noqa: F401  (registers tables on Base.metadata)

    timestamps, booleans = set(), set()
    for table in Base.metadata.tables.values():
        for column in table.columns:
            if isinstance(column.type, DateTime):
                timestamps.add(column.name)
            elif isinstance(column.type, Boolean):
                booleans.add(column.name)
    return frozenset(timestamps), frozenset(booleans)


# ═══════════════════════════════════════════════════════════════
#  Engines
# ═══════════════════════════════════════════════════════════════

def backend_for(url: str) -> str:
    """Return ``postgresql`` or ``sqlite`` for a database URL."""
    backend = make_url(url).get_backend_name()
    if backend not in (POSTGRESQL, SQLITE):
        raise ValueError(f"Unsupported database backend: {backend}")
    return backend


def _install_sqlite_hooks(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let the "begin" hook below own transaction boundaries.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        # Take the write lock up front so two writers never deadlock on upgrade.
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str) -> AsyncEngine:
    backend = backend_for(url)

    if backend == POSTGRESQL:
        # PgBouncer (transaction mode) does not support prepared statement
        # caching, so disable it.
        return create_async_engine(
            url,
            echo=settings.DEBUG,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=0,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_RECYCLE,
            pool_pre_ping=True,
            connect_args={"statement_cache_size": 0},
        )

    database = make_url(url).database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(
        url,
        echo=settings.DEBUG,
        connect_args={"timeout": settings.SQLITE_BUSY_TIMEOUT},
    )
    _install_sqlite_hooks(engine)
    return engine


# ═══════════════════════════════════════════════════════════════
#  Query executors
# ═══════════════════════════════════════════════════════════════

class QueryExecutor(ABC):
    """
    Uniform query interface over both backends.

    Every public call runs in its own short transaction.  Use
    ``run_in_transaction`` to group several statements into one unit that
    commits or rolls back as a whole.
    """

    backend: str = ""
    coerce_booleans: bool = False

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    # ── Public API ──

    async def query(self, sql: str, params: Sequence[Any] = ()) -> QueryResult:
        async with self._scope() as conn:
            return await self._query(conn, sql, params)

    async def insert_and_fetch(
        self,
        table: str,
        values: Mapping[str, Any],
        *,
        conflict_on: Sequence[str] = (),
        on_conflict_set: Optional[Mapping[str, str]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Insert (or upsert on ``conflict_on``) one row and return it as stored."""
        async with self._scope() as conn:
            return await self._insert_and_fetch(conn, table, values, conflict_on, on_conflict_set)

    async def update_and_fetch(
        self,
        table: str,
        key: Mapping[str, Any],
        *,
        values: Optional[Mapping[str, Any]] = None,
        expressions: Optional[Mapping[str, str]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Update the row identified by ``key``; None when no row matched."""
        async with self._scope() as conn:
            return await self._update_and_fetch(conn, table, key, values or {}, expressions)

    async def run_in_transaction(self, work: Callable[["ScopedExecutor"], Awaitable[T]]) -> T:
        """Run ``work`` against one connection; any exception rolls everything back."""
        async with self._scope() as conn:
            return await work(ScopedExecutor(self, conn))

    async def create_schema(self) -> None:
        import app.models  # noqa: F401  (registers tables on Base.metadata)

        async with self._scope() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """Close every pooled connection; build a new executor to reconnect."""
        await self.engine.dispose()

    # ── Internals shared by both backends ──

    @asynccontextmanager
    async def _scope(self):
        async with self.engine.begin() as conn:
            yield conn

    async def _execute(self, conn: AsyncConnection, sql: str, params: Sequence[Any]) -> CursorResult:
        bound = bind_params(params, coerce_booleans=self.coerce_booleans)
        try:
            return await conn.execute(text(translate_placeholders(sql)), bound)
        except SQLAlchemyError:
            if not settings.is_production:
                logger.error(f"{self.backend} query failed\nQuery: {sql}\nParams: {bound}")
            raise

    @staticmethod
    def _rows(result: CursorResult) -> QueryResult:
        timestamps, booleans = typed_columns()
        rows = [normalize_row(dict(row), timestamps, booleans) for row in result.mappings().all()]
        return QueryResult(rows=rows, row_count=len(rows))

    async def _query(self, conn: AsyncConnection, sql: str, params: Sequence[Any]) -> QueryResult:
        result = await self._execute(conn, sql, params)
        if result.returns_rows:
            return self._rows(result)
        return QueryResult(row_count=result.rowcount)

    async def _fetch_by_key(
        self, conn: AsyncConnection, table: str, key: Mapping[str, Any]
    ) -> Optional[Dict[str, Any]]:
        result = await self._query(conn, build_select_by_key(table, list(key)), list(key.values()))
        return result.first()

    @abstractmethod
    async def _insert_and_fetch(
        self,
        conn: AsyncConnection,
        table: str,
        values: Mapping[str, Any],
        conflict_on: Sequence[str],
        on_conflict_set: Optional[Mapping[str, str]],
    ) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def _update_and_fetch(
        self,
        conn: AsyncConnection,
        table: str,
        key: Mapping[str, Any],
        values: Mapping[str, Any],
        expressions: Optional[Mapping[str, str]],
    ) -> Optional[Dict[str, Any]]:
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} url={self.engine.url!r}>"


class PostgresExecutor(QueryExecutor):
    """Networked backend: pooled connections, native ``RETURNING``."""

    backend = POSTGRESQL

    async def _insert_and_fetch(self, conn, table, values, conflict_on, on_conflict_set):
        sql = build_insert(table, list(values), conflict_on, on_conflict_set, returning=True)
        result = await self._query(conn, sql, list(values.values()))
        return result.first()

    async def _update_and_fetch(self, conn, table, key, values, expressions):
        sql = build_update(table, list(values), expressions, list(key), returning=True)
        result = await self._query(conn, sql, [*values.values(), *key.values()])
        return result.first()


class SQLiteExecutor(QueryExecutor):
    """
    Embedded backend: a single writer per process.

    Every scope holds ``_write_lock`` for its whole duration, and the
    connection opens with ``BEGIN IMMEDIATE``.  A scope that cannot get the
    lock within ``lock_timeout`` seconds fails the same way sqlite does when
    another process holds the database.  Booleans are bound as 0/1.
    """

    backend = SQLITE
    coerce_booleans = True

    def __init__(self, engine: AsyncEngine, lock_timeout: Optional[float] = None):
        super().__init__(engine)
        self._write_lock = asyncio.Lock()
        self.lock_timeout = settings.SQLITE_BUSY_TIMEOUT if lock_timeout is None else lock_timeout

    @asynccontextmanager
    async def _scope(self):
        try:
            await asyncio.wait_for(self._write_lock.acquire(), self.lock_timeout)
        except asyncio.TimeoutError as exc:
            if not settings.is_production:
                logger.error(f"sqlite writer lock not acquired within {self.lock_timeout}s")
            raise OperationalError(
                "BEGIN IMMEDIATE", None, sqlite3.OperationalError("database is locked")
            ) from exc
        try:
            async with self.engine.begin() as conn:
                yield conn
        finally:
            self._write_lock.release()

    async def _query(self, conn, sql, params):
        result = await self._execute(conn, sql, params)
        if result.returns_rows:
            return self._rows(result)

        # Raw INSERT without RETURNING: re-select the new row by rowid when
        # the target table can be read off the statement.
        table = infer_insert_table(sql)
        if table and result.lastrowid:
            row = await self._fetch_by_key(conn, table, {"id": result.lastrowid})
            return QueryResult(rows=[row] if row else [], row_count=result.rowcount)
        return QueryResult(row_count=result.rowcount)

    async def _insert_and_fetch(self, conn, table, values, conflict_on, on_conflict_set):
        sql = build_insert(table, list(values), conflict_on, on_conflict_set)
        result = await self._execute(conn, sql, list(values.values()))
        # lastrowid is stale when the upsert took the UPDATE branch.
        if conflict_on:
            key = {column: values[column] for column in conflict_on}
        else:
            key = {"id": result.lastrowid}
        return await self._fetch_by_key(conn, table, key)

    async def _update_and_fetch(self, conn, table, key, values, expressions):
        sql = build_update(table, list(values), expressions, list(key))
        result = await self._execute(conn, sql, [*values.values(), *key.values()])
        if not result.rowcount:
            return None
        return await self._fetch_by_key(conn, table, key)


class ScopedExecutor:
    """Query handle bound to the connection of an open transaction scope."""

    def __init__(self, executor: QueryExecutor, conn: AsyncConnection):
        self._executor = executor
        self._conn = conn

    @property
    def backend(self) -> str:
        return self._executor.backend

    async def query(self, sql: str, params: Sequence[Any] = ()) -> QueryResult:
        return await self._executor._query(self._conn, sql, params)

    async def insert_and_fetch(self, table, values, *, conflict_on=(), on_conflict_set=None):
        return await self._executor._insert_and_fetch(
            self._conn, table, values, conflict_on, on_conflict_set
        )

    async def update_and_fetch(self, table, key, *, values=None, expressions=None):
        return await self._executor._update_and_fetch(
            self._conn, table, key, values or {}, expressions
        )

    async def run_in_transaction(self, work: Callable[["ScopedExecutor"], Awaitable[T]]) -> T:
        # Already inside a scope: join it.
        return await work(self)


Queryable = Union[QueryExecutor, ScopedExecutor]


def create_executor(url: Optional[str] = None) -> QueryExecutor:
    """Build the executor for ``url`` (default: ``settings.DATABASE_URL``)."""
    url = url or settings.DATABASE_URL
    engine = build_engine(url)
    if backend_for(url) == POSTGRESQL:
        return PostgresExecutor(engine)
    return SQLiteExecutor(engine)


# ── Dependency for FastAPI routes ──
def get_executor(request: Request) -> QueryExecutor:
    """Return the executor built by the application lifespan."""
    return request.app.state.executor

"""Database connection and statement execution.

Statements always use named bound parameters. Table and column names are
the only interpolated text and are validated as plain identifiers first.
Blocking driver calls run off the event loop with an explicit timeout.
"""

import asyncio
import re
import threading
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, TypeVar

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from medgate.core.exceptions import ConflictError, InternalError, ValidationError
from medgate.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
Row = Dict[str, Any]

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_ID_PARAM = "pk_value"


def create_database_engine(database_url: str, echo: bool = False) -> Engine:
    """Create a SQLAlchemy engine for ``database_url``."""
    if database_url.startswith("sqlite"):
        # SQLite connections are handed between worker threads
        kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, hide_parameters=True, **kwargs)

    return create_engine(
        database_url,
        pool_size=20,
        max_overflow=40,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=echo,
        hide_parameters=True,
    )


def _identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValidationError(
            "Invalid identifier", details={"identifier": "must be a plain SQL name"}
        )
    return name


def _rows(conn: Connection, sql: str, params: Optional[Mapping[str, Any]]) -> List[Row]:
    result = conn.execute(text(sql), dict(params or {}))
    return [dict(row._mapping) for row in result]


def _execute(conn: Connection, sql: str, params: Optional[Mapping[str, Any]]) -> int:
    return conn.execute(text(sql), dict(params or {})).rowcount


def _insert(conn: Connection, table: str, values: Mapping[str, Any]) -> Row:
    if not values:
        raise ValidationError("Nothing to insert", details={"values": "empty"})
    columns = [_identifier(column) for column in values]
    sql = "INSERT INTO {table} ({columns}) VALUES ({params})".format(
        table=_identifier(table),
        columns=", ".join(columns),
        params=", ".join(f":{column}" for column in columns),
    )
    conn.execute(text(sql), dict(values))
    return dict(values)


def _update(
    conn: Connection, table: str, record_id: Any, values: Mapping[str, Any]
) -> Optional[Row]:
    table = _identifier(table)
    if values:
        assignments = ", ".join(
            f"{_identifier(column)} = :{column}" for column in values
        )
        params = dict(values)
        params[_ID_PARAM] = record_id
        result = conn.execute(
            text(f"UPDATE {table} SET {assignments} WHERE id = :{_ID_PARAM}"), params
        )
        if result.rowcount == 0:
            return None
    rows = _rows(conn, f"SELECT * FROM {table} WHERE id = :{_ID_PARAM}", {_ID_PARAM: record_id})
    return rows[0] if rows else None


def _delete(conn: Connection, table: str, record_id: Any) -> bool:
    result = conn.execute(
        text(f"DELETE FROM {_identifier(table)} WHERE id = :{_ID_PARAM}"),
        {_ID_PARAM: record_id},
    )
    return result.rowcount > 0


class _Executor:
    """Shared statement API; subclasses decide which connection runs it."""

    timeout_seconds: float

    async def _run(self, func: Callable[[Connection], T]) -> T:
        raise NotImplementedError

    async def fetch_all(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Row]:
        return await self._run(lambda conn: _rows(conn, sql, params))

    async def fetch_one(
        self, sql: str, params: Optional[Mapping[str, Any]] = None
    ) -> Optional[Row]:
        rows = await self.fetch_all(sql, params)
        return rows[0] if rows else None

    async def execute(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> int:
        """Run a statement and return the affected row count."""
        return await self._run(lambda conn: _execute(conn, sql, params))

    async def insert(self, table: str, values: Mapping[str, Any]) -> Row:
        return await self._run(lambda conn: _insert(conn, table, values))

    async def update(
        self, table: str, record_id: Any, values: Mapping[str, Any]
    ) -> Optional[Row]:
        """Update a row by id; returns the updated row or None if it does not exist."""
        return await self._run(lambda conn: _update(conn, table, record_id, values))

    async def delete(self, table: str, record_id: Any) -> bool:
        return await self._run(lambda conn: _delete(conn, table, record_id))

    async def _call(self, func: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            logger.error("database_timeout", timeout=self.timeout_seconds)
            raise InternalError("Database operation timed out") from e
        except IntegrityError as e:
            logger.warning("database_integrity_error", error_type=type(e.orig).__name__)
            raise ConflictError("Resource conflicts with existing data") from e
        except SQLAlchemyError as e:
            # the driver message can carry bound values
            logger.error(
                "database_error",
                error_type=type(e).__name__,
                driver_error=type(getattr(e, "orig", None) or e).__name__,
            )
            raise InternalError("Database operation failed") from e


class Transaction(_Executor):
    """A call-scoped transaction on its own connection.

    Obtained only from ``Database.transaction()``; never share one between
    concurrent calls.
    """

    def __init__(self, connection: Connection, timeout_seconds: float) -> None:
        self.connection = connection
        self.timeout_seconds = timeout_seconds
        # held by the worker thread for the whole statement; a timed out
        # statement keeps running, so nothing else may touch the connection
        self._lock = threading.Lock()

    def _locked(self, func: Callable[[Connection], T]) -> Callable[[], T]:
        def run() -> T:
            with self._lock:
                return func(self.connection)

        return run

    async def _run(self, func: Callable[[Connection], T]) -> T:
        return await self._call(self._locked(func))

    async def finish(self, action: Callable[[], None]) -> None:
        """Commit or roll back, then release the connection.

        Waits for any statement still in flight on the connection.
        """

        def end(conn: Connection) -> None:
            try:
                action()
            finally:
                conn.close()

        await self._call(self._locked(end))


class Database(_Executor):
    """Persistence capability over a SQLAlchemy engine."""

    def __init__(self, engine: Engine, timeout_seconds: float = 10.0) -> None:
        self.engine = engine
        self.timeout_seconds = timeout_seconds

    async def _run(self, func: Callable[[Connection], T]) -> T:
        def run() -> T:
            # one autocommitted transaction per statement
            with self.engine.begin() as conn:
                return func(conn)

        return await self._call(run)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """Begin a transaction; commit on success, roll back on any exception.

        Usage:
            async with db.transaction() as tx:
                await tx.insert("medical_records", record)
                await tx.insert("diagnoses", diagnosis)
        """
        conn = await self._call(self.engine.connect)
        trans = conn.begin()
        tx = Transaction(conn, self.timeout_seconds)
        try:
            yield tx
        except BaseException:
            # also on cancellation: a partial write is never committed
            try:
                await asyncio.shield(tx.finish(trans.rollback))
            except InternalError:
                logger.error("transaction_rollback_failed")
            else:
                logger.info("transaction_rolled_back")
            raise
        else:
            await tx.finish(trans.commit)

    def create_schema(self, metadata: Any) -> None:
        """Create tables for ``metadata``; development and tests only."""
        metadata.create_all(self.engine)


__all__ = ["Database", "Transaction", "create_database_engine"]

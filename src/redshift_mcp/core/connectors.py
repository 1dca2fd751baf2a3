"""
Database connectors for Redshift MCP using redshift_connector.

Provides the async connection interface the transaction router drives, an
adapter over ``redshift_connector`` that runs the blocking driver calls in a
worker thread, and a small pool that lends one connection per request.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Dict, List, Optional, Protocol, Sequence

import redshift_connector

from redshift_mcp.config import ConnectionSettings

log = logging.getLogger(__name__)

Row = Dict[str, Any]


class TransactionMode(Enum):
    READ_ONLY = "BEGIN TRANSACTION READ ONLY"
    READ_WRITE = "BEGIN"

    @property
    def statement(self) -> str:
        return self.value


class WarehouseConnection(Protocol):
    """What the router needs from a borrowed connection."""

    async def begin(self, mode: TransactionMode) -> None:
        ...

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Row]:
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...


class ConnectionProvider(Protocol):
    """Lends a connection for the duration of one request."""

    def acquire(self) -> AsyncContextManager[WarehouseConnection]:
        ...


class RedshiftConnection:
    """
    Async adapter over a ``redshift_connector`` connection.

    The underlying connection runs with ``autocommit`` enabled so the explicit
    BEGIN/COMMIT/ROLLBACK statements issued here are the only transaction
    boundaries.
    """

    def __init__(self, raw_connection: Any):
        self._conn = raw_connection
        self.discarded = False

    async def begin(self, mode: TransactionMode) -> None:
        await self.execute(mode.statement)

    async def commit(self) -> None:
        await self.execute("COMMIT")

    async def rollback(self) -> None:
        try:
            await self.execute("ROLLBACK")
        except Exception:
            # State unknown after a failed ROLLBACK; never lend it out again.
            self.discarded = True
            raise

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Row]:
        return await asyncio.to_thread(self._execute_sync, sql, params)

    def _execute_sync(self, sql: str, params: Optional[Sequence[Any]]) -> List[Row]:
        log.debug("SQL[execute]: %s | params=%s", sql.strip()[:100], params)
        with self._conn.cursor() as cursor:
            if params:
                cursor.execute(sql, tuple(params))
            else:
                cursor.execute(sql)
            if cursor.description is None:
                return []
            columns = [desc[0] for desc in cursor.description]
            records = cursor.fetchall() or []
        return [self._row_to_dict(columns, record) for record in records]

    @staticmethod
    def _row_to_dict(columns: Sequence[str], row: Sequence[Any]) -> Row:
        return {col: value for col, value in zip(columns, row)}


class ConnectionPool:
    """
    Lends one Redshift connection per request.

    Connections are opened lazily, at most ``max_size`` are in use at once, and
    idle ones are reused. A connection whose borrower raised, or whose
    ROLLBACK failed, is closed instead of being returned to the pool.
    """

    def __init__(
        self,
        settings: ConnectionSettings,
        max_size: int = 5,
        connect: Callable[..., Any] | None = None,
    ):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._settings = settings
        self._connect = connect or redshift_connector.connect
        self._max_size = max_size
        self._idle: List[Any] = []
        self._slots: asyncio.Semaphore | None = None

    @property
    def max_size(self) -> int:
        return self._max_size

    def _open(self) -> Any:
        log.info("Opening Redshift connection: %r", self._settings)
        try:
            raw = self._connect(**self._settings.connect_kwargs())
        except Exception as e:
            log.error(f"Failed to connect to Redshift: {e}")
            raise RuntimeError(
                "Cannot connect to Redshift database. "
                "Please check: (1) network access to the cluster, (2) database credentials, "
                "(3) DATABASE_URL / REDSHIFT_* settings"
            ) from e
        raw.autocommit = True
        return raw

    @staticmethod
    def _close(raw: Any) -> None:
        try:
            raw.close()
        except Exception as e:
            log.warning(f"Error closing Redshift connection: {e}")

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[RedshiftConnection]:
        if self._slots is None:
            self._slots = asyncio.Semaphore(self._max_size)
        async with self._slots:
            raw = self._idle.pop() if self._idle else await asyncio.to_thread(self._open)
            conn = RedshiftConnection(raw)
            reusable = False
            try:
                yield conn
                reusable = not conn.discarded
            finally:
                if reusable:
                    self._idle.append(raw)
                else:
                    await asyncio.to_thread(self._close, raw)

    async def close(self) -> None:
        """Close every idle connection."""
        idle, self._idle = self._idle, []
        for raw in idle:
            await asyncio.to_thread(self._close, raw)
        log.info("Closed %s idle Redshift connection(s)", len(idle))


__all__ = [
    "ConnectionPool",
    "ConnectionProvider",
    "RedshiftConnection",
    "Row",
    "TransactionMode",
    "WarehouseConnection",
]

from __future__ import annotations

import pytest

from redshift_mcp.config import ConnectionSettings
from redshift_mcp.core.connectors import ConnectionPool, RedshiftConnection, TransactionMode


class FakeCursor:
    def __init__(self, owner):
        self.owner = owner
        self.description = None
        self._rows = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.owner.statements.append((sql, params))
        if sql.startswith("SELECT"):
            self.description = [("id",), ("name",)]
            self._rows = [(1, "a"), (2, "b")]

    def fetchall(self):
        return self._rows


class FakeRawConnection:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.statements = []
        self.autocommit = False
        self.closed = False

    def cursor(self):
        return FakeCursor(self)

    def close(self):
        self.closed = True


SETTINGS = ConnectionSettings(host="h", database="d", user="u", password="p")


@pytest.mark.asyncio
async def test_execute_returns_row_dicts():
    raw = FakeRawConnection()
    rows = await RedshiftConnection(raw).execute("SELECT id, name FROM t WHERE id > %s", [0])

    assert rows == [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]
    assert raw.statements == [("SELECT id, name FROM t WHERE id > %s", (0,))]


@pytest.mark.asyncio
async def test_transaction_statements():
    raw = FakeRawConnection()
    conn = RedshiftConnection(raw)
    await conn.begin(TransactionMode.READ_ONLY)
    await conn.commit()
    await conn.begin(TransactionMode.READ_WRITE)
    await conn.rollback()

    assert [sql for sql, _ in raw.statements] == [
        "BEGIN TRANSACTION READ ONLY",
        "COMMIT",
        "BEGIN",
        "ROLLBACK",
    ]
    assert all(params is None for _, params in raw.statements)


@pytest.mark.asyncio
async def test_pool_opens_lazily_and_reuses_connections():
    opened = []

    def connect(**kwargs):
        raw = FakeRawConnection(**kwargs)
        opened.append(raw)
        return raw

    pool = ConnectionPool(SETTINGS, max_size=2, connect=connect)
    assert opened == []

    async with pool.acquire() as conn:
        await conn.execute("SELECT 1")
    async with pool.acquire():
        pass

    assert len(opened) == 1
    assert opened[0].autocommit is True
    assert opened[0].kwargs["host"] == "h"

    await pool.close()
    assert opened[0].closed


@pytest.mark.asyncio
async def test_pool_discards_connection_after_error():
    opened = []

    def connect(**kwargs):
        raw = FakeRawConnection(**kwargs)
        opened.append(raw)
        return raw

    pool = ConnectionPool(SETTINGS, connect=connect)
    with pytest.raises(RuntimeError):
        async with pool.acquire():
            raise RuntimeError("boom")
    async with pool.acquire():
        pass

    assert len(opened) == 2
    assert opened[0].closed
    assert not opened[1].closed


@pytest.mark.asyncio
async def test_connect_failure_has_a_helpful_message(caplog):
    def connect(**kwargs):
        raise OSError("timed out")

    pool = ConnectionPool(SETTINGS, connect=connect)
    with pytest.raises(RuntimeError, match="Cannot connect to Redshift database"):
        async with pool.acquire():
            pass
    assert "timed out" in caplog.text


def test_pool_requires_positive_size():
    with pytest.raises(ValueError):
        ConnectionPool(SETTINGS, max_size=0)


class FailingCursor(FakeCursor):
    def execute(self, sql, params=None):
        self.owner.statements.append((sql, params))
        if sql.startswith("SELECT") or sql == "ROLLBACK":
            raise RuntimeError(f"{sql.split()[0]} failed")


class FailingRawConnection(FakeRawConnection):
    def cursor(self):
        return FailingCursor(self)


@pytest.mark.asyncio
async def test_connection_with_failed_rollback_is_closed_not_reused():
    from conftest import FakeCatalog, RecordingSink
    from redshift_mcp.database.router import TransactionRouter

    opened = []

    def connect(**kwargs):
        raw = FailingRawConnection(**kwargs)
        opened.append(raw)
        return raw

    pool = ConnectionPool(SETTINGS, connect=connect)
    router = TransactionRouter(
        catalog=FakeCatalog(), audit_sink=RecordingSink(), spectrum_enabled=lambda: False
    )
    async with pool.acquire() as conn:
        outcome = await router.execute_guarded(conn, "SELECT 1")

    assert outcome.error.rollback_error is not None
    assert conn.discarded
    assert opened[0].closed
    assert pool._idle == []


@pytest.mark.asyncio
async def test_connection_is_reused_after_successful_rollback():
    raw = FakeRawConnection()
    pool = ConnectionPool(SETTINGS, connect=lambda **kwargs: raw)
    async with pool.acquire() as conn:
        await conn.rollback()

    assert not conn.discarded
    assert pool._idle == [raw]

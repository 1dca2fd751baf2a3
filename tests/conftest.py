from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, Iterable, List

import pytest

from redshift_mcp.core.connectors import TransactionMode
from redshift_mcp.observability import AuditEvent


class FakeConnection:
    """
    Records every call the router makes, in order.

    ``events`` holds ``("begin", mode)``, ``("execute", sql)``, ``("commit",)``
    and ``("rollback",)`` tuples. ``execute_errors`` is consumed one entry per
    ``execute`` call; ``None`` means succeed.
    """

    def __init__(
        self,
        rows: List[Dict[str, Any]] | None = None,
        execute_errors: Iterable[BaseException | None] = (),
        begin_error: BaseException | None = None,
        commit_error: BaseException | None = None,
        rollback_error: BaseException | None = None,
        results: Dict[str, List[Dict[str, Any]]] | None = None,
    ):
        self.rows = rows if rows is not None else [{"id": 1}]
        self.execute_errors = list(execute_errors)
        self.begin_error = begin_error
        self.commit_error = commit_error
        self.rollback_error = rollback_error
        self.results = results or {}
        self.events: List[tuple] = []
        self.params: List[Any] = []

    async def begin(self, mode: TransactionMode) -> None:
        self.events.append(("begin", mode))
        if self.begin_error is not None:
            raise self.begin_error

    async def execute(self, sql: str, params=None):
        self.events.append(("execute", sql))
        self.params.append(params)
        if self.execute_errors:
            error = self.execute_errors.pop(0)
            if error is not None:
                raise error
        for marker, rows in self.results.items():
            if marker in sql:
                return rows
        return list(self.rows)

    async def commit(self) -> None:
        self.events.append(("commit",))
        if self.commit_error is not None:
            raise self.commit_error

    async def rollback(self) -> None:
        self.events.append(("rollback",))
        if self.rollback_error is not None:
            raise self.rollback_error

    def names(self) -> List[str]:
        return [event[0] for event in self.events]

    def count(self, name: str) -> int:
        return self.names().count(name)


class FakeCatalog:
    """Answers federation lookups from a fixed set of ``schema.table`` keys."""

    def __init__(self, federated: Iterable[str] = (), error: BaseException | None = None):
        self.federated = set(federated)
        self.error = error
        self.lookups: List[str] = []

    async def is_federated(self, connection, reference) -> bool:
        self.lookups.append(reference.key)
        if self.error is not None:
            raise self.error
        return reference.key in self.federated


class RecordingSink:
    def __init__(self):
        self.events: List[tuple] = []

    def emit(self, event: AuditEvent, **fields: Any) -> None:
        self.events.append((event, fields))

    def kinds(self) -> List[AuditEvent]:
        return [event for event, _ in self.events]


class FakePool:
    """Lends the same FakeConnection to every caller."""

    def __init__(self, connection: FakeConnection | None = None, error: BaseException | None = None):
        self.connection = connection or FakeConnection()
        self.error = error
        self.acquired = 0

    @asynccontextmanager
    async def acquire(self):
        if self.error is not None:
            raise self.error
        self.acquired += 1
        yield self.connection


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()

"""
Transaction routing for user-supplied SQL.

Every statement goes through the same states:

    VALIDATE -> CLASSIFY -> READ_ONLY_PATH
                         -> SECURE_ELEVATED_PATH -> FALLBACK_PATH

Statements over native tables run inside ``BEGIN TRANSACTION READ ONLY``.
Statements that touch an external (Spectrum) table need metadata operations
Redshift refuses inside a read-only transaction, so they run in a read-write
transaction scoped to that single statement, after a second round of
validation. If that attempt fails, one fresh read-write attempt is made before
giving up.

Each BEGIN is closed by exactly one COMMIT or ROLLBACK before control returns,
whatever happens in between.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from redshift_mcp.config import SpectrumSettings
from redshift_mcp.core.connectors import Row, TransactionMode, WarehouseConnection
from redshift_mcp.database.catalog import FederatedTableCatalog, SpectrumCatalog
from redshift_mcp.errors import (
    CatalogLookupFailed,
    ExecutionFailed,
    FallbackExhausted,
    RedshiftMCPError,
    RollbackFailed,
    ValidationRejected,
)
from redshift_mcp.observability import AuditEvent, AuditSink, LoggingAuditSink, safe_emit
from redshift_mcp.security.table_refs import TableReference, extract_table_references
from redshift_mcp.security.validator import (
    ValidationResult,
    check_select_only,
    contains_nested_modification,
)

log = logging.getLogger(__name__)

NESTED_MODIFICATION_ERROR = "Query contains nested modification statements which are not allowed"


class ExecutionStrategy(str, Enum):
    READ_ONLY = "read_only"
    CONTROLLED_READ_WRITE = "controlled_read_write"
    REJECTED = "rejected"


class OutcomeStatus(str, Enum):
    OK = "ok"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class QueryOutcome:
    """Result of one guarded execution: rows, a rejection, or a failure."""

    status: OutcomeStatus
    strategy: ExecutionStrategy
    rows: List[Row] = field(default_factory=list)
    errors: Tuple[str, ...] = ()
    fallback_used: bool = False
    committed: bool = False
    error: Optional[RedshiftMCPError] = None

    @classmethod
    def succeeded(
        cls, strategy: ExecutionStrategy, rows: List[Row], fallback_used: bool = False
    ) -> "QueryOutcome":
        return cls(OutcomeStatus.OK, strategy, rows=rows, fallback_used=fallback_used, committed=True)

    @classmethod
    def rejected(cls, errors: Sequence[str]) -> "QueryOutcome":
        errors = tuple(errors)
        return cls(
            OutcomeStatus.REJECTED,
            ExecutionStrategy.REJECTED,
            errors=errors,
            error=ValidationRejected(errors),
        )

    @classmethod
    def failed(
        cls, strategy: ExecutionStrategy, error: ExecutionFailed, fallback_used: bool = False
    ) -> "QueryOutcome":
        return cls(
            OutcomeStatus.FAILED,
            strategy,
            errors=(str(error),),
            fallback_used=fallback_used,
            error=error,
        )

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.OK

    @property
    def is_valid(self) -> bool:
        return self.status is not OutcomeStatus.REJECTED

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "status": self.status.value,
            "is_valid": self.is_valid,
            "strategy": self.strategy.value,
        }
        if self.status is OutcomeStatus.OK:
            payload["rows"] = self.rows
            payload["row_count"] = len(self.rows)
            payload["fallback_used"] = self.fallback_used
        elif self.status is OutcomeStatus.REJECTED:
            payload["errors"] = list(self.errors)
        else:
            payload["error"] = str(self.error)
            payload["fallback_used"] = self.fallback_used
            rollback_error = getattr(self.error, "rollback_error", None)
            if rollback_error is not None:
                payload["rollback_error"] = str(rollback_error)
            elevated_rollback_error = getattr(self.error, "elevated_rollback_error", None)
            if elevated_rollback_error is not None:
                payload["elevated_rollback_error"] = str(elevated_rollback_error)
        return payload


@dataclass(frozen=True)
class TransactionAttempt:
    rows: List[Row] = field(default_factory=list)
    error: Optional[Exception] = None
    rollback_error: Optional[RollbackFailed] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def _preview(sql: str, size: int = 200) -> str:
    return sql[:size]


class TransactionRouter:
    """
    Runs one SQL statement under the least-privileged transaction that works.

    Args:
        catalog: Oracle answering whether a table is external.
        audit_sink: Receives routing events. Defaults to a logging sink.
        spectrum_enabled: Called once per statement; when it returns False,
            every statement takes the read-only path.
        debug_logging: Log classification details at INFO instead of DEBUG.
    """

    def __init__(
        self,
        catalog: FederatedTableCatalog | None = None,
        audit_sink: AuditSink | None = None,
        spectrum_enabled: Callable[[], bool] | None = None,
        debug_logging: bool = False,
    ):
        self._catalog = catalog or SpectrumCatalog()
        self._audit = audit_sink if audit_sink is not None else LoggingAuditSink(verbose=debug_logging)
        self._spectrum_enabled = spectrum_enabled or (lambda: SpectrumSettings.from_env().enabled)
        self._trace = logging.INFO if debug_logging else logging.DEBUG

    # ------------------------------------------------------------------ entry
    async def execute_guarded(self, connection: WarehouseConnection, sql: str) -> QueryOutcome:
        """
        Validate, classify and execute *sql* on *connection*.

        Never raises for a rejected statement or a database error; both come
        back as a QueryOutcome. The connection is left outside any transaction.
        """
        started = time.perf_counter()

        validation = check_select_only(sql)
        if not validation.is_valid:
            return self._rejected(sql, validation.errors, stage="validate")

        strategy = await self.classify(connection, sql)
        if strategy is ExecutionStrategy.CONTROLLED_READ_WRITE:
            outcome = await self._secure_elevated_path(connection, sql)
        else:
            outcome = await self._read_only_path(connection, sql)

        self._report(sql, outcome, started)
        return outcome

    # --------------------------------------------------------------- classify
    async def classify(self, connection: WarehouseConnection, sql: str) -> ExecutionStrategy:
        """Pick the transaction strategy for an already validated statement."""
        if not self._spectrum_enabled():
            log.log(self._trace, "Spectrum support disabled - using read-only transaction")
            strategy = ExecutionStrategy.READ_ONLY
        elif await self._references_federated_table(connection, sql):
            strategy = ExecutionStrategy.CONTROLLED_READ_WRITE
        else:
            strategy = ExecutionStrategy.READ_ONLY

        safe_emit(self._audit, AuditEvent.STRATEGY_SELECTED, strategy=strategy.value, sql=_preview(sql, 100))
        return strategy

    async def _references_federated_table(self, connection: WarehouseConnection, sql: str) -> bool:
        references = extract_table_references(sql)
        log.log(
            self._trace,
            "Checking %s table reference(s) for external tables: %s",
            len(references),
            [ref.key for ref in references],
        )
        try:
            for reference in references:
                if await self._lookup(connection, reference):
                    safe_emit(self._audit, AuditEvent.EXTERNAL_TABLE_FOUND, table=reference.key)
                    return True
        except CatalogLookupFailed as exc:
            log.error("%s - defaulting to read-only transaction", exc, exc_info=exc.cause)
            safe_emit(
                self._audit,
                AuditEvent.CATALOG_LOOKUP_FAILED,
                table=exc.reference,
                error=str(exc.cause),
            )
            return False

        log.log(self._trace, "No external tables found - using read-only transaction")
        return False

    async def _lookup(self, connection: WarehouseConnection, reference: TableReference) -> bool:
        try:
            return await self._catalog.is_federated(connection, reference)
        except Exception as exc:
            raise CatalogLookupFailed(reference.key, exc) from exc

    # ------------------------------------------------------------------ paths
    async def _read_only_path(self, connection: WarehouseConnection, sql: str) -> QueryOutcome:
        attempt = await self._run_in_transaction(connection, sql, TransactionMode.READ_ONLY)
        if attempt.succeeded:
            return QueryOutcome.succeeded(ExecutionStrategy.READ_ONLY, attempt.rows)
        return QueryOutcome.failed(
            ExecutionStrategy.READ_ONLY,
            ExecutionFailed(
                f"Failed to execute query: {attempt.error}",
                cause=attempt.error,
                rollback_error=attempt.rollback_error,
            ),
        )

    async def _secure_elevated_path(self, connection: WarehouseConnection, sql: str) -> QueryOutcome:
        recheck = check_select_only(sql)
        if contains_nested_modification(sql):
            recheck = recheck.merge(ValidationResult.failed([NESTED_MODIFICATION_ERROR]))
        if not recheck.is_valid:
            return self._rejected(sql, recheck.errors, stage="elevated")

        log.log(self._trace, "Using controlled read-write transaction for Spectrum query")
        safe_emit(self._audit, AuditEvent.SPECTRUM_TRANSACTION_START, sql=_preview(sql, 100))
        attempt = await self._run_in_transaction(connection, sql, TransactionMode.READ_WRITE)
        if attempt.succeeded:
            return QueryOutcome.succeeded(ExecutionStrategy.CONTROLLED_READ_WRITE, attempt.rows)

        log.warning("Secure Spectrum query failed, attempting fallback: %s", attempt.error)
        return await self._fallback_path(connection, sql, attempt)

    async def _fallback_path(
        self, connection: WarehouseConnection, sql: str, elevated: TransactionAttempt
    ) -> QueryOutcome:
        safe_emit(
            self._audit,
            AuditEvent.FALLBACK_USED,
            error=str(elevated.error),
            sql=_preview(sql),
        )
        attempt = await self._run_in_transaction(connection, sql, TransactionMode.READ_WRITE)
        if attempt.succeeded:
            safe_emit(self._audit, AuditEvent.FALLBACK_SUCCEEDED, row_count=len(attempt.rows))
            return QueryOutcome.succeeded(
                ExecutionStrategy.CONTROLLED_READ_WRITE, attempt.rows, fallback_used=True
            )

        safe_emit(
            self._audit,
            AuditEvent.FALLBACK_FAILED,
            error=str(attempt.error),
            sql=_preview(sql),
        )
        return QueryOutcome.failed(
            ExecutionStrategy.CONTROLLED_READ_WRITE,
            FallbackExhausted(
                elevated.error,
                attempt.error,
                rollback_error=attempt.rollback_error,
                elevated_rollback_error=elevated.rollback_error,
            ),
            fallback_used=True,
        )

    # ------------------------------------------------------------ transaction
    async def _run_in_transaction(
        self, connection: WarehouseConnection, sql: str, mode: TransactionMode
    ) -> TransactionAttempt:
        try:
            await connection.begin(mode)
            rows = await connection.execute(sql)
            await connection.commit()
        except asyncio.CancelledError:
            await self._rollback(connection, "cancellation")
            raise
        except Exception as exc:
            log.error("Error executing query in %s transaction: %s", mode.name, exc)
            return TransactionAttempt(error=exc, rollback_error=await self._rollback(connection, exc))
        return TransactionAttempt(rows=rows)

    async def _rollback(self, connection: WarehouseConnection, cause: object) -> RollbackFailed | None:
        try:
            await connection.rollback()
        except Exception as exc:
            log.critical("ROLLBACK failed after %s: %s", cause, exc, exc_info=True)
            safe_emit(self._audit, AuditEvent.ROLLBACK_FAILED, cause=str(cause), error=str(exc))
            return RollbackFailed(exc)
        return None

    # -------------------------------------------------------------- reporting
    def _rejected(self, sql: str, errors: Sequence[str], stage: str) -> QueryOutcome:
        log.warning("Rejected query (%s): %s", stage, "; ".join(errors))
        safe_emit(
            self._audit,
            AuditEvent.VALIDATION_REJECTED,
            stage=stage,
            errors=list(errors),
            sql=_preview(sql),
        )
        return QueryOutcome.rejected(errors)

    def _report(self, sql: str, outcome: QueryOutcome, started: float) -> None:
        duration_ms = round((time.perf_counter() - started) * 1000, 1)
        if outcome.ok:
            safe_emit(
                self._audit,
                AuditEvent.QUERY_EXECUTED,
                strategy=outcome.strategy.value,
                row_count=len(outcome.rows),
                fallback_used=outcome.fallback_used,
                duration_ms=duration_ms,
            )
        elif outcome.status is OutcomeStatus.FAILED:
            safe_emit(
                self._audit,
                AuditEvent.QUERY_FAILED,
                strategy=outcome.strategy.value,
                error=str(outcome.error),
                duration_ms=duration_ms,
                sql=_preview(sql),
            )


__all__ = [
    "ExecutionStrategy",
    "OutcomeStatus",
    "QueryOutcome",
    "TransactionAttempt",
    "TransactionRouter",
]

"""
Tool and resource implementations for the Redshift MCP server.

Every public coroutine on ``RedshiftService`` returns a JSON string so the
server module can hand it straight to the MCP client. Failures are reported
as ``{"error": ...}`` payloads rather than raised.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Tuple

import pandas as pd

from redshift_mcp.analysis import analyze_query_patterns, identify_performance_issues
from redshift_mcp.core.connectors import ConnectionProvider
from redshift_mcp.database.operations import CatalogReader
from redshift_mcp.database.router import ExecutionStrategy, QueryOutcome, TransactionRouter
from redshift_mcp.errors import ExecutionFailed
from redshift_mcp.security.validator import (
    ValidationResult,
    check_select_only,
    sanitize_schema_name,
    sanitize_table_name,
    validate_identifier,
    validate_sql_query,
)

log = logging.getLogger(__name__)

PERMISSION_OPERATIONS = ("SELECT", "INSERT", "UPDATE", "DELETE")
UNKNOWN = "Unknown"


def _dump(payload: Any) -> str:
    return json.dumps(payload, indent=2, default=str)


def _frame_json(df: pd.DataFrame) -> str:
    return df.to_json(orient="records", indent=2, date_format="iso", default_handler=str)


def _records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    if df.empty:
        return []
    return json.loads(df.to_json(orient="records", date_format="iso", default_handler=str))


def _error(message: str) -> str:
    return _dump({"error": message})


def _screen(sql: str) -> ValidationResult:
    # Everything the router would refuse is refused before a connection is borrowed.
    return validate_sql_query(sql).merge(check_select_only(sql))


def _names(
    schema_name: str, table_name: str | None = None, dotted_table: bool = True
) -> Tuple[str, str | None, str | None]:
    """
    Sanitize and validate identifiers.

    Returns ``(schema, table, error)`` where ``error`` is a ready JSON payload
    when either name is unusable.
    """
    schema = sanitize_schema_name(schema_name)
    result = validate_identifier(schema, "schema")
    table = None
    if table_name is not None:
        table = sanitize_table_name(table_name) if dotted_table else sanitize_schema_name(table_name)
        result = result.merge(validate_identifier(table, "table"))
    if result.is_valid:
        return schema, table, None
    return schema, table, _dump({"error": "Invalid identifier", "errors": list(result.errors)})


class RedshiftService:
    """
    Backs the MCP tools and resources.

    Args:
        pool: Lends one connection per call.
        router: Executes user SQL under the guarded transaction strategy.
    """

    def __init__(self, pool: ConnectionProvider, router: TransactionRouter):
        self._pool = pool
        self._router = router

    # ------------------------------------------------------------------ tools
    async def query(self, sql: str) -> str:
        screen = _screen(sql)
        if not screen.is_valid:
            log.warning("Query rejected before execution: %s", "; ".join(screen.errors))
            return _dump(QueryOutcome.rejected(screen.errors).to_dict())

        started = time.perf_counter()
        try:
            async with self._pool.acquire() as conn:
                outcome = await self._router.execute_guarded(conn, sql)
        except Exception as e:
            log.error(f"query failed: {e}", exc_info=True)
            failure = ExecutionFailed(f"Failed to execute query: {e}", cause=e)
            return _dump(QueryOutcome.failed(ExecutionStrategy.READ_ONLY, failure).to_dict())

        payload = outcome.to_dict()
        if outcome.ok:
            payload["execution_time_ms"] = round((time.perf_counter() - started) * 1000, 1)
        return _dump(payload)

    async def describe_table(self, schema_name: str, table_name: str) -> str:
        """Columns plus storage statistics for one table."""
        schema, table, invalid = _names(schema_name, table_name)
        if invalid:
            return invalid

        try:
            async with self._pool.acquire() as conn:
                reader = CatalogReader(conn)
                columns = await reader.get_table_columns(schema, table)
                statistics = await reader.get_table_statistics(schema, table)
        except Exception as e:
            log.error(f"describe_table failed: {e}", exc_info=True)
            return _error(f"Failed to describe table {schema}.{table}: {e}")

        stats = _records(statistics)
        if not stats:
            stats = [
                {
                    "schema": schema,
                    "table_name": table,
                    "total_size_mb": UNKNOWN,
                    "row_count": UNKNOWN,
                    "diststyle": UNKNOWN,
                    "sortkey1": UNKNOWN,
                }
            ]
        return _dump(
            {
                "schema": schema,
                "table": table,
                "columns": _records(columns),
                "statistics": stats,
            }
        )

    async def find_column(self, pattern: str) -> str:
        if not pattern or not pattern.strip():
            return _error("Column pattern must be a non-empty string")
        try:
            async with self._pool.acquire() as conn:
                df = await CatalogReader(conn).find_columns_by_pattern(pattern.strip())
        except Exception as e:
            log.error(f"find_column failed: {e}", exc_info=True)
            return _error(f"Failed to find columns: {e}")
        return _frame_json(df)

    async def analyze_query(self, sql: str) -> str:
        """EXPLAIN output plus static recommendations for a SELECT."""
        screen = _screen(sql)
        if not screen.is_valid:
            return _dump(QueryOutcome.rejected(screen.errors).to_dict())

        try:
            async with self._pool.acquire() as conn:
                plan = await CatalogReader(conn).get_query_execution_plan(sql)
        except Exception as e:
            log.error(f"analyze_query failed: {e}", exc_info=True)
            return _error(f"Failed to analyze query: {e}")

        plan_lines = [
            " ".join(str(value) for value in row) for row in plan.itertuples(index=False)
        ]
        return _dump(
            {
                "query_text": sql,
                "execution_plan": "\n".join(plan_lines),
                "recommendations": analyze_query_patterns(sql),
                "potential_issues": identify_performance_issues(sql),
            }
        )

    async def get_table_lineage(self, schema_name: str, table_name: str) -> str:
        schema, table, invalid = _names(schema_name, table_name)
        if invalid:
            return invalid

        try:
            async with self._pool.acquire() as conn:
                lineage = await CatalogReader(conn).get_table_lineage(schema, table)
        except Exception as e:
            log.error(f"get_table_lineage failed: {e}", exc_info=True)
            return _error(f"Failed to get lineage for {schema}.{table}: {e}")

        return _dump(
            {
                "table": f"{schema}.{table}",
                "dependencies": _records(lineage["dependencies"]),
                "referenced_by": _records(lineage["referenced_by"]),
            }
        )

    async def check_permissions(
        self, operation: str, schema_name: str, table_name: str | None = None
    ) -> str:
        op = (operation or "").strip().upper()
        if op not in PERMISSION_OPERATIONS:
            return _error(
                f"Invalid operation {operation!r}; expected one of {', '.join(PERMISSION_OPERATIONS)}"
            )
        schema, table, invalid = _names(schema_name, table_name or None)
        if invalid:
            return invalid

        try:
            async with self._pool.acquire() as conn:
                df = await CatalogReader(conn).check_permissions(op, schema, table)
        except Exception as e:
            log.error(f"check_permissions failed: {e}", exc_info=True)
            return _error(f"Failed to check permissions: {e}")
        return _dump({"operation": op, "schema": schema, "table": table, "results": _records(df)})

    # -------------------------------------------------------------- resources
    async def list_schemas(self) -> str:
        try:
            async with self._pool.acquire() as conn:
                df = await CatalogReader(conn).get_schemas()
        except Exception as e:
            log.error(f"list_schemas failed: {e}", exc_info=True)
            return _error(f"Failed to list schemas: {e}")
        return _frame_json(df)

    async def list_tables(self, schema_name: str) -> str:
        schema, _, invalid = _names(schema_name)
        if invalid:
            return invalid
        try:
            async with self._pool.acquire() as conn:
                df = await CatalogReader(conn).get_tables(schema)
        except Exception as e:
            log.error(f"list_tables failed: {e}", exc_info=True)
            return _error(f"Failed to list tables in {schema}: {e}")
        return _frame_json(df)

    async def table_schema(self, schema_name: str, table_name: str) -> str:
        schema, table, invalid = _names(schema_name, table_name)
        if invalid:
            return invalid
        try:
            async with self._pool.acquire() as conn:
                df = await CatalogReader(conn).get_table_columns(schema, table)
        except Exception as e:
            log.error(f"table_schema failed: {e}", exc_info=True)
            return _error(f"Failed to get columns for {schema}.{table}: {e}")
        return _frame_json(df)

    async def table_sample(self, schema_name: str, table_name: str, limit: int = 5) -> str:
        # Sample SQL interpolates the names, so dots are not allowed in the table part.
        schema, table, invalid = _names(schema_name, table_name, dotted_table=False)
        if invalid:
            return invalid
        try:
            async with self._pool.acquire() as conn:
                df = await CatalogReader(conn).get_sample_data(schema, table, limit)
        except Exception as e:
            log.error(f"table_sample failed: {e}", exc_info=True)
            return _error(f"Failed to sample {schema}.{table}: {e}")
        return _frame_json(df)

    async def table_statistics(self, schema_name: str, table_name: str) -> str:
        schema, table, invalid = _names(schema_name, table_name)
        if invalid:
            return invalid
        try:
            async with self._pool.acquire() as conn:
                df = await CatalogReader(conn).get_table_statistics(schema, table)
        except Exception as e:
            log.error(f"table_statistics failed: {e}", exc_info=True)
            return _error(f"Failed to get statistics for {schema}.{table}: {e}")
        return _frame_json(df)

    async def table_dependencies(self, schema_name: str, table_name: str) -> str:
        """Primary, unique and foreign key constraints on a table."""
        schema, table, invalid = _names(schema_name, table_name)
        if invalid:
            return invalid
        try:
            async with self._pool.acquire() as conn:
                df = await CatalogReader(conn).get_table_dependencies(schema, table)
        except Exception as e:
            log.error(f"table_dependencies failed: {e}", exc_info=True)
            return _error(f"Failed to get dependencies for {schema}.{table}: {e}")
        return _frame_json(df)

    async def query_history(self, limit_days: int = 7, limit_rows: int = 100) -> str:
        try:
            async with self._pool.acquire() as conn:
                df = await CatalogReader(conn).get_query_history(limit_days, limit_rows)
        except Exception as e:
            log.error(f"query_history failed: {e}", exc_info=True)
            return _error(f"Failed to get query history: {e}")
        return _frame_json(df)

    async def permissions(self) -> str:
        try:
            async with self._pool.acquire() as conn:
                df = await CatalogReader(conn).get_user_permissions()
        except Exception as e:
            log.error(f"permissions failed: {e}", exc_info=True)
            return _error(f"Failed to get permissions: {e}")
        return _frame_json(df)


__all__ = ["RedshiftService", "PERMISSION_OPERATIONS"]

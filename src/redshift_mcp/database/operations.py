"""
Metadata queries against Redshift system views.

``CatalogReader`` wraps one borrowed connection and returns pandas DataFrames
for schema discovery, statistics, lineage, permissions and query history.
Identifiers are passed as ``%s`` parameters wherever Redshift allows it.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

import pandas as pd

from redshift_mcp.core.connectors import Row, WarehouseConnection
from redshift_mcp.errors import OperationFailed

log = logging.getLogger(__name__)

PII_COLUMNS = ("email", "phone", "ssn", "credit_card")
REDACTED = "REDACTED"


class CatalogReader:
    """Read-only access to Redshift catalog views over one connection."""

    def __init__(self, connection: WarehouseConnection):
        self._conn = connection

    async def _frame(self, action: str, sql: str, params: Sequence[Any] | None = None) -> pd.DataFrame:
        try:
            rows = await self._conn.execute(sql, params)
        except Exception as e:
            log.error(f"Error trying to {action}: {e}")
            raise OperationFailed(f"Failed to {action}: {e}") from e
        return self._to_frame(rows)

    @staticmethod
    def _to_frame(rows: List[Row]) -> pd.DataFrame:
        return pd.DataFrame.from_records(rows) if rows else pd.DataFrame()

    # ---------------------------------------------------------------- schemas
    async def get_schemas(self) -> pd.DataFrame:
        """All user schemas, including Spectrum external schemas."""
        query = """
        SELECT nspname AS schema_name
        FROM pg_namespace
        WHERE nspname NOT LIKE 'pg_%'
          AND nspname NOT IN ('information_schema', 'sys')
          AND nspname NOT LIKE 'stl%'
          AND nspname NOT LIKE 'stv%'
          AND nspname NOT LIKE 'svv%'
          AND nspname NOT LIKE 'svl%'
        UNION
        SELECT DISTINCT schemaname AS schema_name
        FROM svv_external_schemas
        WHERE schemaname NOT LIKE 'pg_%'
          AND schemaname NOT IN ('information_schema', 'sys')
        ORDER BY schema_name
        """
        df = await self._frame("retrieve schemas", query)
        log.info(f"Retrieved {len(df)} schemas (including Spectrum external schemas)")
        return df

    async def get_tables(self, schema_name: str) -> pd.DataFrame:
        """Tables in *schema_name*, native and external."""
        query = """
        SELECT table_name
        FROM svv_tables
        WHERE table_schema = %s
        UNION
        SELECT tablename AS table_name
        FROM svv_external_tables
        WHERE schemaname = %s
        ORDER BY table_name
        """
        df = await self._frame("retrieve tables", query, (schema_name, schema_name))
        log.info(f"Retrieved {len(df)} tables from schema {schema_name}")
        return df

    # ----------------------------------------------------------------- tables
    async def get_table_columns(self, schema_name: str, table_name: str) -> pd.DataFrame:
        """
        Column metadata for a table, with distribution and sort key flags.

        Args:
            schema_name: Schema containing the table
            table_name: Table name without schema

        Returns:
            DataFrame ordered by ordinal position
        """
        query = """
        SELECT DISTINCT
            c.column_name,
            c.data_type,
            c.character_maximum_length,
            c.numeric_precision,
            c.numeric_scale,
            c.is_nullable,
            c.column_default,
            c.ordinal_position,
            a.attisdistkey AS is_distkey,
            BOOL(COALESCE(a.attsortkeyord, 0)) AS is_sortkey
        FROM svv_columns c
        INNER JOIN pg_class r ON r.relname = c.table_name
        INNER JOIN pg_attribute a ON a.attrelid = r.oid AND a.attname = c.column_name
        WHERE c.table_schema = %s
          AND c.table_name = %s
        ORDER BY c.ordinal_position
        """
        df = await self._frame("retrieve table columns", query, (schema_name, table_name))
        log.info(f"Retrieved {len(df)} columns for table {schema_name}.{table_name}")
        return df

    async def get_table_statistics(self, schema_name: str, table_name: str) -> pd.DataFrame:
        query = """
        SELECT
            database,
            schema,
            table_id,
            "table" AS table_name,
            size AS total_size_mb,
            pct_used AS percent_used,
            tbl_rows AS row_count,
            encoded,
            diststyle,
            sortkey1,
            max_varchar,
            create_time
        FROM svv_table_info
        WHERE schema = %s
          AND "table" = %s
        """
        return await self._frame("retrieve table statistics", query, (schema_name, table_name))

    async def get_table_dependencies(self, schema_name: str, table_name: str) -> pd.DataFrame:
        query = """
        SELECT DISTINCT
            n1.nspname AS schema_name,
            c1.relname AS table_name,
            n2.nspname AS referenced_schema,
            c2.relname AS referenced_table,
            con.conname AS constraint_name,
            CASE con.contype
                WHEN 'f' THEN 'FOREIGN KEY'
                WHEN 'p' THEN 'PRIMARY KEY'
                WHEN 'u' THEN 'UNIQUE'
                WHEN 'c' THEN 'CHECK'
                ELSE 'OTHER'
            END AS constraint_type
        FROM pg_constraint con
        JOIN pg_class c1 ON con.conrelid = c1.oid
        JOIN pg_namespace n1 ON c1.relnamespace = n1.oid
        LEFT JOIN pg_class c2 ON con.confrelid = c2.oid
        LEFT JOIN pg_namespace n2 ON c2.relnamespace = n2.oid
        WHERE n1.nspname = %s
          AND c1.relname = %s
          AND con.contype IN ('f', 'p', 'u')
        ORDER BY constraint_type, constraint_name
        """
        return await self._frame("retrieve table dependencies", query, (schema_name, table_name))

    async def get_table_lineage(self, schema_name: str, table_name: str) -> Dict[str, pd.DataFrame]:
        """
        Foreign-key lineage for a table.

        Returns:
            dict with ``dependencies`` (tables this one references) and
            ``referenced_by`` (tables referencing this one)
        """
        dependencies = await self._frame(
            "retrieve table lineage",
            """
            SELECT DISTINCT
                n1.nspname AS schema_name,
                c1.relname AS table_name,
                n2.nspname AS referenced_schema,
                c2.relname AS referenced_table,
                con.conname AS constraint_name,
                'REFERENCES' AS relationship_type
            FROM pg_constraint con
            JOIN pg_class c1 ON con.conrelid = c1.oid
            JOIN pg_namespace n1 ON c1.relnamespace = n1.oid
            JOIN pg_class c2 ON con.confrelid = c2.oid
            JOIN pg_namespace n2 ON c2.relnamespace = n2.oid
            WHERE n1.nspname = %s
              AND c1.relname = %s
              AND con.contype = 'f'
            ORDER BY schema_name, table_name
            """,
            (schema_name, table_name),
        )
        referenced_by = await self._frame(
            "retrieve table lineage",
            """
            SELECT DISTINCT
                n1.nspname AS schema_name,
                c1.relname AS table_name,
                'REFERENCED_BY' AS relationship_type
            FROM pg_constraint con
            JOIN pg_class c1 ON con.conrelid = c1.oid
            JOIN pg_namespace n1 ON c1.relnamespace = n1.oid
            JOIN pg_class c2 ON con.confrelid = c2.oid
            JOIN pg_namespace n2 ON c2.relnamespace = n2.oid
            WHERE n2.nspname = %s
              AND c2.relname = %s
              AND con.contype = 'f'
            """,
            (schema_name, table_name),
        )
        log.info(
            f"Retrieved lineage for table {schema_name}.{table_name}: "
            f"{len(dependencies)} dependencies, {len(referenced_by)} references"
        )
        return {"dependencies": dependencies, "referenced_by": referenced_by}

    async def get_sample_data(self, schema_name: str, table_name: str, limit: int = 5) -> pd.DataFrame:
        """
        First *limit* rows of a table with PII columns redacted.

        Args:
            schema_name: Sanitized schema name
            table_name: Sanitized table name
            limit: Number of rows to return (default: 5)
        """
        limit_int = max(1, int(limit))
        query = f'SELECT * FROM "{schema_name}"."{table_name}" LIMIT {limit_int}'
        df = await self._frame("retrieve sample data", query)
        for column in PII_COLUMNS:
            if column in df.columns:
                df[column] = df[column].map(lambda value: REDACTED if isinstance(value, str) else value)
        log.info(f"Retrieved {len(df)} sample rows from {schema_name}.{table_name}")
        return df

    # ------------------------------------------------------------------ usage
    async def get_query_history(self, limit_days: int = 7, limit_rows: int = 100) -> pd.DataFrame:
        days = max(1, int(limit_days))
        rows = max(1, int(limit_rows))
        query = f"""
        SELECT
            query AS query_id,
            userid AS user_name,
            database,
            querytxt AS query_text,
            starttime AS start_time,
            endtime AS end_time,
            EXTRACT(EPOCH FROM (endtime - starttime)) * 1000 AS duration_ms,
            CASE
                WHEN aborted = 1 THEN 'ABORTED'
                ELSE 'COMPLETED'
            END AS status
        FROM stl_query
        WHERE starttime >= CURRENT_DATE - INTERVAL '{days} days'
          AND userid > 1
        ORDER BY starttime DESC
        LIMIT {rows}
        """
        df = await self._frame("retrieve query history", query)
        log.info(f"Retrieved {len(df)} query history records")
        return df

    async def get_user_permissions(self) -> pd.DataFrame:
        query = """
        SELECT DISTINCT
            schemaname AS schema_name,
            tablename AS table_name,
            'SELECT' AS privilege_type,
            false AS is_grantable,
            tableowner AS grantor
        FROM pg_tables
        WHERE schemaname NOT LIKE 'pg_%'
          AND schemaname NOT IN ('information_schema', 'sys')
        ORDER BY schema_name, table_name
        """
        return await self._frame("retrieve user permissions", query)

    async def check_permissions(
        self, operation: str, schema_name: str, table_name: str | None = None
    ) -> pd.DataFrame:
        """Whether the current user can perform *operation* on each matching table."""
        query = [
            "SELECT",
            "    schemaname AS schema_name,",
            "    tablename AS table_name,",
            "    tableowner AS owner,",
            "    HAS_TABLE_PRIVILEGE(current_user, quote_ident(schemaname) || '.' || quote_ident(tablename), %s) AS has_permission",
            "FROM pg_tables",
            "WHERE schemaname = %s",
        ]
        params: list[Any] = [operation.upper(), schema_name]
        if table_name:
            query.append("  AND tablename = %s")
            params.append(table_name)
        query.append("ORDER BY table_name")
        df = await self._frame("check permissions", "\n".join(query), params)
        target = f"{schema_name}.{table_name}" if table_name else schema_name
        log.info(f"Checked {operation} permissions for {target}: {len(df)} objects")
        return df

    async def find_columns_by_pattern(self, pattern: str) -> pd.DataFrame:
        query = """
        SELECT table_schema, table_name, column_name, data_type
        FROM svv_columns
        WHERE column_name ILIKE %s
        ORDER BY table_schema, table_name, column_name
        """
        df = await self._frame("find columns", query, (f"%{pattern}%",))
        log.info(f"Found {len(df)} columns matching pattern: {pattern}")
        return df

    async def get_query_execution_plan(self, sql: str) -> pd.DataFrame:
        """EXPLAIN output for an already validated statement."""
        return await self._frame("get execution plan", f"EXPLAIN {sql.strip().rstrip(';')}")


__all__ = ["CatalogReader", "PII_COLUMNS", "REDACTED"]

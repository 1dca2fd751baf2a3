#!/usr/bin/env python3
"""
Redshift MCP server entry point.

Exposes guarded SQL execution and schema exploration over MCP stdio.

Usage::

    redshift-mcp --name "Warehouse"
    python -m redshift_mcp.server --no-spectrum --max-connections 2
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from typing import Sequence

from mcp.server.fastmcp import FastMCP

from redshift_mcp.config import ServerSettings
from redshift_mcp.core.connectors import ConnectionPool, ConnectionProvider
from redshift_mcp.database.catalog import SpectrumCatalog
from redshift_mcp.database.router import TransactionRouter
from redshift_mcp.errors import ConfigurationError
from redshift_mcp.observability import LoggingAuditSink
from redshift_mcp.service import RedshiftService

# stdout belongs to the MCP stdio transport
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s [%(name)s] %(message)s",
    stream=sys.stderr,
)

log = logging.getLogger(__name__)

DEFAULT_SERVER_NAME = "Redshift MCP Server"


def build_router(settings: ServerSettings) -> TransactionRouter:
    spectrum = settings.spectrum
    return TransactionRouter(
        catalog=SpectrumCatalog(),
        audit_sink=LoggingAuditSink(verbose=spectrum.debug_logging),
        spectrum_enabled=lambda: spectrum.enabled,
        debug_logging=spectrum.debug_logging,
    )


def create_mcp_server(
    server_name: str = DEFAULT_SERVER_NAME,
    settings: ServerSettings | None = None,
    pool: ConnectionProvider | None = None,
    router: TransactionRouter | None = None,
) -> FastMCP:
    """
    Create a FastMCP server with the Redshift tools and resources registered.

    Args:
        server_name: Name presented to MCP clients.
        settings: Server settings. Read from the environment when omitted and
            a pool still has to be built.
        pool: Connection provider. Built from ``settings.connection`` when omitted.
        router: Transaction router. Built from ``settings.spectrum`` when omitted.

    No connection is opened until a tool or resource is called.
    """
    log.info("Creating MCP server: %s", server_name)
    if settings is None:
        settings = ServerSettings.from_env() if pool is None else ServerSettings()
    if pool is None:
        if settings.connection is None:
            raise ConfigurationError("No Redshift connection settings configured")
        pool = ConnectionPool(settings.connection, max_size=settings.max_connections)
    if router is None:
        router = build_router(settings)

    mcp = FastMCP(server_name)
    service = RedshiftService(pool, router)
    _register_tools(mcp, service)
    _register_resources(mcp, service)
    return mcp


def _register_tools(mcp: FastMCP, service: RedshiftService) -> None:
    @mcp.tool()
    async def query(sql: str) -> str:
        """
        Execute a read-only SELECT query against Redshift.

        Queries over native tables run in a read-only transaction. Queries over
        Spectrum external tables run in a single-statement transaction after an
        extra validation pass.

        Args:
            sql: A single SELECT statement

        Returns:
            JSON with rows, row_count, strategy and execution_time_ms, or the
            validation errors / database error
        """
        return await service.query(sql)

    @mcp.tool()
    async def describe_table(schema: str, table: str) -> str:
        """
        Get column definitions and storage statistics for a table.

        Args:
            schema: Schema name (e.g., 'public')
            table: Table name without schema
        """
        return await service.describe_table(schema, table)

    @mcp.tool()
    async def find_column(pattern: str) -> str:
        """Find columns whose name contains *pattern* (case-insensitive)."""
        return await service.find_column(pattern)

    @mcp.tool()
    async def analyze_query(sql: str) -> str:
        """
        Show the EXPLAIN plan of a SELECT with performance recommendations.

        Args:
            sql: A single SELECT statement; it is explained, not executed
        """
        return await service.analyze_query(sql)

    @mcp.tool()
    async def get_table_lineage(schema: str, table: str) -> str:
        """Foreign-key dependencies of a table and the tables referencing it."""
        return await service.get_table_lineage(schema, table)

    @mcp.tool()
    async def check_permissions(operation: str, schema: str, table: str | None = None) -> str:
        """
        Check whether the current user may perform an operation.

        Args:
            operation: One of SELECT, INSERT, UPDATE, DELETE
            schema: Schema name
            table: Optional table name; all tables in the schema when omitted
        """
        return await service.check_permissions(operation, schema, table)


def _register_resources(mcp: FastMCP, service: RedshiftService) -> None:
    @mcp.resource("redshift://schemas", mime_type="application/json")
    async def schemas() -> str:
        """All schemas, including Spectrum external schemas."""
        return await service.list_schemas()

    @mcp.resource("redshift://schema/{schema}", mime_type="application/json")
    async def schema_tables(schema: str) -> str:
        """Tables in a schema."""
        return await service.list_tables(schema)

    @mcp.resource("redshift://table/{schema}/{table}/schema", mime_type="application/json")
    async def table_columns(schema: str, table: str) -> str:
        """Column definitions for a table."""
        return await service.table_schema(schema, table)

    @mcp.resource("redshift://table/{schema}/{table}/sample", mime_type="application/json")
    async def table_sample(schema: str, table: str) -> str:
        """First rows of a table with PII columns redacted."""
        return await service.table_sample(schema, table)

    @mcp.resource("redshift://table/{schema}/{table}/statistics", mime_type="application/json")
    async def table_statistics(schema: str, table: str) -> str:
        """Size, row count and distribution details for a table."""
        return await service.table_statistics(schema, table)

    @mcp.resource("redshift://table/{schema}/{table}/dependencies", mime_type="application/json")
    async def table_dependencies(schema: str, table: str) -> str:
        """Key constraints defined on a table."""
        return await service.table_dependencies(schema, table)

    @mcp.resource("redshift://query-history", mime_type="application/json")
    async def query_history() -> str:
        """Recent queries from stl_query."""
        return await service.query_history()

    @mcp.resource("redshift://permissions", mime_type="application/json")
    async def permissions() -> str:
        """Tables visible to the current user."""
        return await service.permissions()


def run_server(server_name: str = DEFAULT_SERVER_NAME, settings: ServerSettings | None = None) -> None:
    """Create and run the MCP server over stdio."""
    settings = settings or ServerSettings.from_env()
    if settings.connection is None:
        raise ConfigurationError("No Redshift connection settings configured")

    log.info("Starting %s", server_name)
    pool = ConnectionPool(settings.connection, max_size=settings.max_connections)
    mcp = create_mcp_server(server_name, settings=settings, pool=pool)
    try:
        mcp.run()
    finally:
        asyncio.run(pool.close())


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Redshift MCP server")
    parser.add_argument("--name", default=DEFAULT_SERVER_NAME, help="Server name shown to MCP clients")
    parser.add_argument(
        "--max-connections",
        type=int,
        default=None,
        help="Maximum concurrent Redshift connections (default: REDSHIFT_MAX_CONNECTIONS or 5)",
    )
    parser.add_argument(
        "--spectrum",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Enable or disable Spectrum external table support",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: REDSHIFT_MCP_LOG_LEVEL or INFO)")
    args = parser.parse_args(argv)

    try:
        settings = ServerSettings.from_env()
    except ConfigurationError as e:
        log.error(f"Invalid configuration: {e}")
        return 2

    if args.max_connections is not None:
        if args.max_connections < 1:
            parser.error("--max-connections must be >= 1")
        settings = replace(settings, max_connections=args.max_connections)
    if args.spectrum is not None:
        settings = replace(settings, spectrum=replace(settings.spectrum, enabled=args.spectrum))
    if args.log_level:
        settings = replace(settings, log_level=args.log_level.upper())
    logging.getLogger().setLevel(settings.log_level)

    run_server(args.name, settings)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

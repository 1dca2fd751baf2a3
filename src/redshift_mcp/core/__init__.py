"""
Core functionality for Redshift MCP.

Provides the Redshift connection adapter and pool.
"""

from redshift_mcp.core.connectors import (
    ConnectionPool,
    ConnectionProvider,
    RedshiftConnection,
    TransactionMode,
    WarehouseConnection,
)

__all__ = [
    "ConnectionPool",
    "ConnectionProvider",
    "RedshiftConnection",
    "TransactionMode",
    "WarehouseConnection",
]

"""
Database layer for Redshift MCP.

Transaction routing for user SQL, the Spectrum catalog oracle and the
metadata readers behind the schema tools.
"""

from redshift_mcp.database.catalog import FederatedTableCatalog, SpectrumCatalog
from redshift_mcp.database.operations import CatalogReader
from redshift_mcp.database.router import (
    ExecutionStrategy,
    OutcomeStatus,
    QueryOutcome,
    TransactionRouter,
)

__all__ = [
    "CatalogReader",
    "ExecutionStrategy",
    "FederatedTableCatalog",
    "OutcomeStatus",
    "QueryOutcome",
    "SpectrumCatalog",
    "TransactionRouter",
]

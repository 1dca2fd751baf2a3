"""
Redshift MCP - guarded SQL execution and schema exploration for Amazon Redshift.

Tools and resources are served by :mod:`redshift_mcp.server`; the transaction
routing core lives in :mod:`redshift_mcp.database.router`.
"""

__version__ = "0.1.0"

from redshift_mcp.database.router import ExecutionStrategy, QueryOutcome, TransactionRouter
from redshift_mcp.security.validator import ValidationResult, check_select_only, validate_select_only

__all__ = [
    "__version__",
    "ExecutionStrategy",
    "QueryOutcome",
    "TransactionRouter",
    "ValidationResult",
    "check_select_only",
    "validate_select_only",
]

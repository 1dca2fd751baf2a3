"""
Query safety for Redshift MCP.

Pattern-based validators and table-reference extraction used by the
transaction router and the tool layer.
"""

from redshift_mcp.security.table_refs import TableReference, extract_table_references
from redshift_mcp.security.validator import (
    ValidationResult,
    check_select_only,
    contains_nested_modification,
    sanitize_schema_name,
    sanitize_table_name,
    validate_identifier,
    validate_select_only,
    validate_sql_query,
)

__all__ = [
    "TableReference",
    "ValidationResult",
    "check_select_only",
    "contains_nested_modification",
    "extract_table_references",
    "sanitize_schema_name",
    "sanitize_table_name",
    "validate_identifier",
    "validate_select_only",
    "validate_sql_query",
]

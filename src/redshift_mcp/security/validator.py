"""
SQL safety checks for Redshift MCP.

Two layers live here:

- ``validate_select_only`` / ``check_select_only`` and
  ``contains_nested_modification`` decide whether a statement may run at all
  and guard the elevated Spectrum path. They are pattern matchers, not a SQL
  parser, and over-reject on purpose: a mutation keyword inside a string
  literal or a quoted identifier (``'please update'``, ``"delete"``) fails the
  check just like a real statement would.
- ``validate_sql_query`` is the broader injection screen applied by the tool
  layer, together with the identifier sanitizers.

Every function here is pure and total: bad input produces a negative answer,
never an exception.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Literal

log = logging.getLogger(__name__)

_MUTATION_KEYWORDS = "insert|update|delete|drop|create|alter|truncate|merge"

_SELECT_PREFIX = re.compile(r"^\s*(/\*.*?\*/)?\s*select\s", re.IGNORECASE | re.DOTALL)

# Grouped as in the error messages: data/DDL mutation, privilege/session, procedures.
_PROHIBITED_PATTERNS = (
    re.compile(rf"\b({_MUTATION_KEYWORDS})\b", re.IGNORECASE),
    re.compile(r"\b(grant|revoke|set\s+session|set\s+role)\b", re.IGNORECASE),
    re.compile(r"\b(call|exec|execute)\b", re.IGNORECASE),
)

_NESTED_MODIFICATION_PATTERNS = (
    re.compile(rf"\(\s*({_MUTATION_KEYWORDS})\b", re.IGNORECASE),
    re.compile(rf"\bwith\s+\w+\s+as\s*\(\s*({_MUTATION_KEYWORDS})\b", re.IGNORECASE),
)

_DANGEROUS_PATTERNS = (
    re.compile(r"\b(drop|delete|update|insert|alter|create|truncate)\b", re.IGNORECASE),
    re.compile(r"\b(grant|revoke)\b", re.IGNORECASE),
    re.compile(r"\b(exec|execute)\b", re.IGNORECASE),
    re.compile(r"\b(xp_|sp_)\w+", re.IGNORECASE),
    re.compile(r"\b(union\s+select)\b", re.IGNORECASE),
    re.compile(r";\s*--", re.IGNORECASE),
    re.compile(r";\s*/\*", re.IGNORECASE),
)

_INJECTION_PATTERNS = (
    re.compile(r"\b(or|and)\s+'[^']*'\s*=\s*'[^']*'?", re.IGNORECASE),
    re.compile(r"\bor\s+'?\w*'?\s*=\s*'?\w*'?", re.IGNORECASE),
    re.compile(r"union\s+(all\s+)?select", re.IGNORECASE),
    re.compile(r"--\s*$", re.IGNORECASE),
    re.compile(r"/\*.*?\*/", re.IGNORECASE),
    re.compile(r"\b(or|and)\s+\d+\s*=\s*\d+", re.IGNORECASE),
    re.compile(r"'\s*(or|and)\s*'", re.IGNORECASE),
    re.compile(r"0x[0-9a-f]+", re.IGNORECASE),
    re.compile(r";\s*(select|insert|update|delete|drop|create|alter)", re.IGNORECASE),
)

_RESERVED_IDENTIFIERS = frozenset(
    {
        "select", "from", "where", "insert", "update", "delete", "drop",
        "create", "alter", "table", "database", "schema", "index", "view",
        "procedure", "function", "trigger", "user", "role", "grant", "revoke",
    }
)

_IDENTIFIER_PATTERNS = {
    "schema": re.compile(r"^[a-zA-Z0-9_]+$"),
    "table": re.compile(r"^[a-zA-Z0-9_.]+$"),
    "column": re.compile(r"^[a-zA-Z0-9_]+$"),
}

MAX_IDENTIFIER_LENGTH = 63

IdentifierKind = Literal["schema", "table", "column"]


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a validation pass; ``is_valid`` holds exactly when ``errors`` is empty."""

    is_valid: bool
    errors: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.is_valid != (len(self.errors) == 0):
            raise ValueError("is_valid must be True exactly when errors is empty")

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(True, ())

    @classmethod
    def failed(cls, errors: Iterable[str]) -> "ValidationResult":
        return cls(False, tuple(errors))

    @classmethod
    def from_errors(cls, errors: Iterable[str]) -> "ValidationResult":
        errors = tuple(errors)
        return cls(not errors, errors)

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        return ValidationResult.from_errors(self.errors + other.errors)


# ---------------------------------------------------------------------------
# Statement checks used by the transaction router
# ---------------------------------------------------------------------------
def check_select_only(sql: str) -> ValidationResult:
    """
    Explain why *sql* is not a plain SELECT, if it isn't.

    Args:
        sql: Raw statement text. Only a trimmed, lower-cased copy is inspected.

    Returns:
        ValidationResult with one error for a missing SELECT prefix and one per
        prohibited keyword group found anywhere in the text.
    """
    if not isinstance(sql, str) or not sql.strip():
        return ValidationResult.failed(["SQL query must be a non-empty string"])

    normalized = sql.strip().lower()
    errors: list[str] = []
    if not _SELECT_PREFIX.match(normalized):
        errors.append("Only SELECT statements are allowed")
    for pattern in _PROHIBITED_PATTERNS:
        match = pattern.search(normalized)
        if match:
            errors.append(f"Potentially dangerous SQL pattern detected: {match.group(1)}")
    return ValidationResult.from_errors(errors)


def validate_select_only(sql: str) -> bool:
    """Return True when *sql* starts with SELECT and carries no prohibited keyword."""
    return check_select_only(sql).is_valid


def contains_nested_modification(sql: str) -> bool:
    """
    Detect a mutation statement hidden in a subquery or CTE body.

    Matches a mutation keyword right after ``(`` or right after
    ``WITH <name> AS (``.
    """
    if not isinstance(sql, str):
        return False
    lowered = sql.lower()
    return any(pattern.search(lowered) for pattern in _NESTED_MODIFICATION_PATTERNS)


# ---------------------------------------------------------------------------
# Injection screen used by the tool layer
# ---------------------------------------------------------------------------
def validate_sql_query(sql: str) -> ValidationResult:
    """
    Screen *sql* for dangerous operations and common injection shapes.

    Each dangerous pattern contributes its own error; injection patterns
    contribute at most one.
    """
    if not isinstance(sql, str):
        return ValidationResult.failed(["SQL query must be a non-empty string"])
    normalized = sql.lower().strip()
    if not normalized:
        return ValidationResult.failed(["SQL query cannot be empty"])

    errors: list[str] = []
    for pattern in _DANGEROUS_PATTERNS:
        if pattern.search(normalized):
            errors.append(f"Potentially dangerous SQL pattern detected: {pattern.pattern}")
            log.warning("Security validation failed: dangerous pattern %s", pattern.pattern)

    for pattern in _INJECTION_PATTERNS:
        if pattern.search(normalized):
            errors.append("Potential SQL injection pattern detected")
            log.warning("Security validation failed: injection pattern %s", pattern.pattern)
            break

    if "@@" in normalized:
        errors.append("Global variables access detected")
    if "information_schema" in normalized and "select" not in normalized:
        errors.append("Suspicious information_schema access detected")

    if not errors:
        log.debug("SQL query validation passed: %s", sql[:50])
    return ValidationResult.from_errors(errors)


def sanitize_table_name(name: str) -> str:
    """Keep only alphanumerics, underscores and dots (``schema.table``)."""
    if not name or not isinstance(name, str):
        log.warning("Invalid table name provided for sanitization")
        return ""
    sanitized = re.sub(r"[^a-zA-Z0-9_.]", "", name)
    if sanitized != name:
        log.warning("Table name sanitized: %r -> %r", name, sanitized)
    return sanitized


def sanitize_schema_name(name: str) -> str:
    """Keep only alphanumerics and underscores."""
    if not name or not isinstance(name, str):
        log.warning("Invalid schema name provided for sanitization")
        return ""
    sanitized = re.sub(r"[^a-zA-Z0-9_]", "", name)
    if sanitized != name:
        log.warning("Schema name sanitized: %r -> %r", name, sanitized)
    return sanitized


def validate_identifier(identifier: str, kind: IdentifierKind) -> ValidationResult:
    if not identifier or not isinstance(identifier, str):
        return ValidationResult.failed([f"{kind} identifier must be a non-empty string"])

    errors: list[str] = []
    if len(identifier) > MAX_IDENTIFIER_LENGTH:
        errors.append(
            f"{kind} identifier exceeds maximum length of {MAX_IDENTIFIER_LENGTH} characters"
        )
    if identifier.lower() in _RESERVED_IDENTIFIERS:
        errors.append(f"{kind} identifier cannot be a reserved keyword: {identifier}")
    if not _IDENTIFIER_PATTERNS[kind].match(identifier):
        errors.append(f"{kind} identifier contains invalid characters: {identifier}")
    return ValidationResult.from_errors(errors)


__all__ = [
    "ValidationResult",
    "check_select_only",
    "validate_select_only",
    "contains_nested_modification",
    "validate_sql_query",
    "sanitize_table_name",
    "sanitize_schema_name",
    "validate_identifier",
]

"""
Table reference extraction.

Pulls candidate ``schema.table`` names out of raw SQL so the router can ask the
catalog whether any of them is an external (Spectrum) table. This is a regex
heuristic: it may miss identifiers built dynamically or nested more than one
subquery deep, and it reads ``db.schema.table`` as ``db.schema``. A miss sends
the statement down the read-only path; a spurious hit only makes it face the
stricter elevated validation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List

DEFAULT_SCHEMA = "public"

_QUALIFIED = r'(?:("?)([a-zA-Z_][a-zA-Z0-9_]*)\1\.)?("?)([a-zA-Z_][a-zA-Z0-9_]*)\3'

# Each pattern exposes groups (schema_quote, schema, table_quote, table).
_REFERENCE_PATTERNS = (
    re.compile(rf"\b(?:FROM|JOIN)\s+{_QUALIFIED}", re.IGNORECASE),
    re.compile(rf"\b(?:FROM|JOIN)\s*\(\s*SELECT.*?FROM\s+{_QUALIFIED}", re.IGNORECASE),
    re.compile(rf"\bWITH\s+\w+\s+AS\s*\(\s*SELECT.*?FROM\s+{_QUALIFIED}", re.IGNORECASE),
)

_NOT_A_TABLE = re.compile(r"^(select|from|where|group|order|having|limit)$", re.IGNORECASE)


@dataclass(frozen=True)
class TableReference:
    table_name: str
    schema_name: str = DEFAULT_SCHEMA

    @property
    def key(self) -> str:
        return f"{self.schema_name}.{self.table_name}"

    def __str__(self) -> str:
        return self.key


def _identifier(name: str, quote: str) -> str:
    # Redshift folds unquoted identifiers to lower case.
    return name if quote else name.lower()


def extract_table_references(sql: str) -> List[TableReference]:
    """
    Return the unique table references found in *sql*, in first-seen order.

    Unqualified names resolve to the ``public`` schema.
    """
    if not isinstance(sql, str) or not sql:
        return []

    seen: dict[str, TableReference] = {}
    for pattern in _REFERENCE_PATTERNS:
        for match in pattern.finditer(sql):
            schema_quote, schema, table_quote, table = match.groups()
            if not table or _NOT_A_TABLE.match(table):
                continue
            reference = TableReference(
                table_name=_identifier(table, table_quote),
                schema_name=_identifier(schema, schema_quote) if schema else DEFAULT_SCHEMA,
            )
            seen.setdefault(reference.key, reference)
    return list(seen.values())


__all__ = ["DEFAULT_SCHEMA", "TableReference", "extract_table_references"]

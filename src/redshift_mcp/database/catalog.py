"""Federated (Spectrum) table lookup against ``svv_external_tables``."""

from __future__ import annotations

import logging
from typing import Protocol

from redshift_mcp.core.connectors import WarehouseConnection
from redshift_mcp.security.table_refs import TableReference

log = logging.getLogger(__name__)


class FederatedTableCatalog(Protocol):
    async def is_federated(self, connection: WarehouseConnection, reference: TableReference) -> bool:
        ...


class SpectrumCatalog:
    """Answers whether a table is an external table by asking Redshift's catalog."""

    QUERY = (
        "SELECT COUNT(*) AS count "
        "FROM svv_external_tables "
        "WHERE schemaname = %s AND tablename = %s"
    )

    async def is_federated(self, connection: WarehouseConnection, reference: TableReference) -> bool:
        rows = await connection.execute(self.QUERY, (reference.schema_name, reference.table_name))
        count = rows[0].get("count", 0) if rows else 0
        found = int(count or 0) > 0
        log.debug("External table check %s: %s", reference.key, found)
        return found


__all__ = ["FederatedTableCatalog", "SpectrumCatalog"]

"""
Audit events for query routing.

The router reports what it decided (strategy chosen, fallback used, statement
rejected) through an ``AuditSink`` passed in at construction. A sink that is
missing or raises never changes query behaviour.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Optional, Protocol

log = logging.getLogger(__name__)


class AuditEvent(str, Enum):
    VALIDATION_REJECTED = "validation_rejected"
    STRATEGY_SELECTED = "strategy_selected"
    EXTERNAL_TABLE_FOUND = "external_table_found"
    CATALOG_LOOKUP_FAILED = "catalog_lookup_failed"
    SPECTRUM_TRANSACTION_START = "spectrum_transaction_start"
    FALLBACK_USED = "spectrum_fallback_used"
    FALLBACK_SUCCEEDED = "spectrum_fallback_success"
    FALLBACK_FAILED = "spectrum_fallback_failed"
    QUERY_EXECUTED = "query_executed"
    QUERY_FAILED = "query_failed"
    ROLLBACK_FAILED = "rollback_failed"


_EVENT_LEVELS: Dict[AuditEvent, int] = {
    AuditEvent.VALIDATION_REJECTED: logging.WARNING,
    AuditEvent.STRATEGY_SELECTED: logging.DEBUG,
    AuditEvent.EXTERNAL_TABLE_FOUND: logging.DEBUG,
    AuditEvent.CATALOG_LOOKUP_FAILED: logging.ERROR,
    AuditEvent.SPECTRUM_TRANSACTION_START: logging.DEBUG,
    AuditEvent.FALLBACK_USED: logging.WARNING,
    AuditEvent.FALLBACK_SUCCEEDED: logging.INFO,
    AuditEvent.FALLBACK_FAILED: logging.ERROR,
    AuditEvent.QUERY_EXECUTED: logging.INFO,
    AuditEvent.QUERY_FAILED: logging.ERROR,
    AuditEvent.ROLLBACK_FAILED: logging.CRITICAL,
}


class AuditSink(Protocol):
    def emit(self, event: AuditEvent, **fields: Any) -> None:
        ...


class LoggingAuditSink:
    """Writes audit events to a stdlib logger, one line per event."""

    def __init__(self, logger: Optional[logging.Logger] = None, verbose: bool = False):
        self._log = logger or logging.getLogger("redshift_mcp.audit")
        self._verbose = verbose

    def emit(self, event: AuditEvent, **fields: Any) -> None:
        level = _EVENT_LEVELS.get(event, logging.INFO)
        if self._verbose and level < logging.INFO:
            level = logging.INFO
        details = " ".join(f"{key}={value!r}" for key, value in sorted(fields.items()))
        self._log.log(level, "%s %s", event.value, details, extra={"audit_event": event.value})


class NullAuditSink:
    """Discards every event."""

    def emit(self, event: AuditEvent, **fields: Any) -> None:
        return None


def safe_emit(sink: Optional[AuditSink], event: AuditEvent, **fields: Any) -> None:
    """Deliver *event* to *sink*; a failing sink is logged, never raised."""
    if sink is None:
        return
    try:
        sink.emit(event, **fields)
    except Exception as exc:
        log.warning("Audit sink %s failed on %s: %s", type(sink).__name__, event.value, exc)


__all__ = ["AuditEvent", "AuditSink", "LoggingAuditSink", "NullAuditSink", "safe_emit"]

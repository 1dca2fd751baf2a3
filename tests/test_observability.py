from __future__ import annotations

import logging

from redshift_mcp.analysis import (
    LEADING_WILDCARD_HINT,
    analyze_query_patterns,
    identify_performance_issues,
)
from redshift_mcp.observability import AuditEvent, LoggingAuditSink, NullAuditSink, safe_emit


def test_logging_sink_uses_event_severity(caplog):
    caplog.set_level(logging.DEBUG, logger="redshift_mcp.audit")
    sink = LoggingAuditSink()
    sink.emit(AuditEvent.ROLLBACK_FAILED, error="reset")
    sink.emit(AuditEvent.STRATEGY_SELECTED, strategy="read_only")

    rollback, strategy = caplog.records[-2:]
    assert rollback.levelno == logging.CRITICAL
    assert rollback.audit_event == "rollback_failed"
    assert "error='reset'" in rollback.getMessage()
    assert strategy.levelno == logging.DEBUG


def test_verbose_sink_raises_debug_events_to_info(caplog):
    caplog.set_level(logging.DEBUG, logger="redshift_mcp.audit")
    LoggingAuditSink(verbose=True).emit(AuditEvent.EXTERNAL_TABLE_FOUND, table="spectrum.events")
    assert caplog.records[-1].levelno == logging.INFO


def test_safe_emit_tolerates_missing_and_broken_sinks(caplog):
    class Broken:
        def emit(self, event, **fields):
            raise ValueError("nope")

    safe_emit(None, AuditEvent.QUERY_EXECUTED)
    safe_emit(NullAuditSink(), AuditEvent.QUERY_EXECUTED)
    safe_emit(Broken(), AuditEvent.QUERY_EXECUTED, row_count=1)
    assert "Audit sink Broken failed on query_executed" in caplog.text


def test_query_hints():
    sql = "SELECT * FROM users WHERE email LIKE '%@example.com%' ORDER BY id"
    recommendations = analyze_query_patterns(sql)
    assert len(recommendations) == 3
    assert LEADING_WILDCARD_HINT in recommendations
    assert identify_performance_issues(sql) == [LEADING_WILDCARD_HINT]


def test_clean_query_has_no_hints():
    sql = "SELECT id FROM users WHERE id = 1 LIMIT 1"
    assert analyze_query_patterns(sql) == []
    assert identify_performance_issues(sql) == []

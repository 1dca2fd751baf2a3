from __future__ import annotations

import json

import pytest

from conftest import FakeCatalog, FakeConnection, FakePool, RecordingSink
from redshift_mcp.database.router import TransactionRouter
from redshift_mcp.service import RedshiftService


def _service(connection=None, pool=None, federated=()) -> RedshiftService:
    router = TransactionRouter(
        catalog=FakeCatalog(federated=federated),
        audit_sink=RecordingSink(),
        spectrum_enabled=lambda: True,
    )
    return RedshiftService(pool or FakePool(connection), router)


@pytest.mark.asyncio
async def test_query_returns_rows_and_timing():
    conn = FakeConnection(rows=[{"name": "ada"}])
    payload = json.loads(await _service(conn).query("SELECT name FROM public.users LIMIT 5"))

    assert payload["status"] == "ok"
    assert payload["rows"] == [{"name": "ada"}]
    assert payload["row_count"] == 1
    assert payload["strategy"] == "read_only"
    assert payload["fallback_used"] is False
    assert payload["execution_time_ms"] >= 0


@pytest.mark.asyncio
async def test_rejected_query_never_borrows_a_connection():
    pool = FakePool()
    payload = json.loads(await _service(pool=pool).query("DROP TABLE users"))

    assert payload["status"] == "rejected"
    assert payload["is_valid"] is False
    assert payload["errors"]
    assert pool.acquired == 0
    assert pool.connection.events == []


@pytest.mark.asyncio
async def test_query_failure_is_reported_as_json():
    conn = FakeConnection(execute_errors=[RuntimeError("relation \"nope\" does not exist")])
    payload = json.loads(await _service(conn).query("SELECT * FROM nope"))

    assert payload["status"] == "failed"
    assert "does not exist" in payload["error"]


@pytest.mark.asyncio
async def test_pool_failure_is_reported_as_json(caplog):
    pool = FakePool(error=RuntimeError("Cannot connect to Redshift database"))
    payload = json.loads(await _service(pool=pool).query("SELECT 1"))

    assert payload["status"] == "failed"
    assert "Cannot connect" in payload["error"]
    assert "query failed" in caplog.text


@pytest.mark.asyncio
async def test_query_serializes_non_json_values():
    from datetime import date
    from decimal import Decimal

    conn = FakeConnection(rows=[{"day": date(2024, 1, 2), "amount": Decimal("1.50")}])
    payload = json.loads(await _service(conn).query("SELECT day, amount FROM sales"))
    assert payload["rows"] == [{"day": "2024-01-02", "amount": "1.50"}]


@pytest.mark.asyncio
async def test_describe_table_uses_placeholder_statistics():
    conn = FakeConnection(
        results={
            "svv_columns": [{"column_name": "id", "data_type": "integer"}],
            "svv_table_info": [],
        }
    )
    payload = json.loads(await _service(conn).describe_table("public", "orders"))

    assert payload["schema"] == "public"
    assert payload["columns"] == [{"column_name": "id", "data_type": "integer"}]
    assert payload["statistics"][0]["row_count"] == "Unknown"
    assert conn.params[0] == ("public", "orders")


@pytest.mark.asyncio
async def test_describe_table_sanitizes_identifiers():
    conn = FakeConnection(rows=[])
    await _service(conn).describe_table("pub;lic", 'orders"--')
    assert conn.params[0] == ("public", "orders")


@pytest.mark.asyncio
async def test_describe_table_requires_names():
    payload = json.loads(await _service().describe_table("", "orders"))
    assert "error" in payload


@pytest.mark.asyncio
async def test_metadata_errors_become_error_payloads():
    conn = FakeConnection(execute_errors=[RuntimeError("permission denied")])
    payload = json.loads(await _service(conn).find_column("email"))
    assert payload["error"].startswith("Failed to find columns")
    assert "permission denied" in payload["error"]


@pytest.mark.asyncio
async def test_find_column_returns_records():
    conn = FakeConnection(rows=[{"table_schema": "public", "table_name": "users", "column_name": "email"}])
    payload = json.loads(await _service(conn).find_column("mail"))
    assert payload == [{"table_schema": "public", "table_name": "users", "column_name": "email"}]


@pytest.mark.asyncio
async def test_analyze_query_combines_plan_and_hints():
    conn = FakeConnection(rows=[{"QUERY PLAN": "XN Seq Scan on orders"}])
    payload = json.loads(await _service(conn).analyze_query("SELECT * FROM orders ORDER BY id"))

    assert payload["execution_plan"] == "XN Seq Scan on orders"
    assert any("SELECT *" in hint for hint in payload["recommendations"])
    assert any("LIMIT" in hint for hint in payload["recommendations"])
    assert "Query without WHERE clause may scan entire table" in payload["potential_issues"]
    assert conn.events == [("execute", "EXPLAIN SELECT * FROM orders ORDER BY id")]


@pytest.mark.asyncio
async def test_analyze_query_rejects_non_select():
    pool = FakePool()
    payload = json.loads(await _service(pool=pool).analyze_query("DELETE FROM orders"))
    assert payload["status"] == "rejected"
    assert pool.acquired == 0


@pytest.mark.asyncio
async def test_lineage_payload():
    conn = FakeConnection(rows=[{"schema_name": "public", "table_name": "order_items"}])
    payload = json.loads(await _service(conn).get_table_lineage("public", "orders"))

    assert payload["table"] == "public.orders"
    assert payload["dependencies"] == [{"schema_name": "public", "table_name": "order_items"}]
    assert payload["referenced_by"] == [{"schema_name": "public", "table_name": "order_items"}]


@pytest.mark.asyncio
async def test_check_permissions_validates_operation():
    pool = FakePool()
    payload = json.loads(await _service(pool=pool).check_permissions("DROP", "public"))
    assert "Invalid operation" in payload["error"]
    assert pool.acquired == 0


@pytest.mark.asyncio
async def test_check_permissions_results():
    conn = FakeConnection(rows=[{"table_name": "orders", "has_permission": True}])
    payload = json.loads(await _service(conn).check_permissions("select", "public", "orders"))

    assert payload["operation"] == "SELECT"
    assert payload["results"] == [{"table_name": "orders", "has_permission": True}]


@pytest.mark.asyncio
async def test_resources_return_record_lists():
    conn = FakeConnection(rows=[{"schema_name": "public"}])
    service = _service(conn)

    assert json.loads(await service.list_schemas()) == [{"schema_name": "public"}]
    assert json.loads(await service.permissions()) == [{"schema_name": "public"}]
    assert json.loads(await service.query_history()) == [{"schema_name": "public"}]


@pytest.mark.asyncio
async def test_sample_resource_redacts_and_quotes():
    conn = FakeConnection(rows=[{"id": 1, "ssn": "123-45-6789"}])
    payload = json.loads(await _service(conn).table_sample("public", "users"))

    assert payload == [{"id": 1, "ssn": "REDACTED"}]
    assert conn.events[0][1] == 'SELECT * FROM "public"."users" LIMIT 5'


@pytest.mark.asyncio
async def test_empty_metadata_is_an_empty_list():
    payload = json.loads(await _service(FakeConnection(rows=[])).table_statistics("public", "orders"))
    assert payload == []


@pytest.mark.asyncio
async def test_trailing_statement_is_rejected_before_borrowing():
    pool = FakePool()
    payload = json.loads(await _service(pool=pool).query("SELECT 1; SET ROLE admin"))

    assert payload["status"] == "rejected"
    assert payload["is_valid"] is False
    assert pool.acquired == 0


@pytest.mark.asyncio
async def test_pool_failure_payload_has_outcome_shape():
    pool = FakePool(error=RuntimeError("Cannot connect to Redshift database"))
    payload = json.loads(await _service(pool=pool).query("SELECT 1"))

    assert payload["is_valid"] is True
    assert payload["strategy"] == "read_only"
    assert payload["fallback_used"] is False
    assert payload["error"].startswith("Failed to execute query")


@pytest.mark.asyncio
async def test_dependencies_resource_returns_constraints():
    conn = FakeConnection(rows=[{"constraint_name": "orders_pkey", "constraint_type": "PRIMARY KEY"}])
    payload = json.loads(await _service(conn).table_dependencies("public", "orders"))

    assert payload == [{"constraint_name": "orders_pkey", "constraint_type": "PRIMARY KEY"}]
    assert conn.params == [("public", "orders")]


@pytest.mark.asyncio
async def test_reserved_table_name_is_refused():
    pool = FakePool()
    payload = json.loads(await _service(pool=pool).describe_table("public", "select"))

    assert payload["error"] == "Invalid identifier"
    assert any("reserved keyword" in error for error in payload["errors"])
    assert pool.acquired == 0


@pytest.mark.asyncio
async def test_overlong_schema_name_is_refused():
    pool = FakePool()
    payload = json.loads(await _service(pool=pool).list_tables("s" * 64))

    assert any("maximum length" in error for error in payload["errors"])
    assert pool.acquired == 0

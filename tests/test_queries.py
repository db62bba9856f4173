"""Tests for the query execution helpers."""

import logging
from datetime import date, datetime
from decimal import Decimal

import psycopg2
import pytest

from pgbridge.db import connection
from pgbridge.db.connection import DatabaseConnectionError
from pgbridge.db.queries import (
    QueryError,
    query,
    query_json,
    query_message,
    query_object,
    query_row,
    query_silent,
    query_value,
    to_json,
)
from tests.conftest import Outcome


def test_query_returns_rows_and_status(fake_conn):
    fake_conn.outcomes.append(
        Outcome(rows=[{"id": 1, "name": "a"}], columns=["id", "name"], message="SELECT 1")
    )

    result = query("SELECT id, name FROM t WHERE id = %s", (1,), conn=fake_conn)

    assert result.rows == [{"id": 1, "name": "a"}]
    assert list(result) == [{"id": 1, "name": "a"}]
    assert len(result) == 1
    assert result.message == "SELECT 1"
    assert result.sql == "SELECT id, name FROM t WHERE id = %s"
    assert fake_conn.executed == [("SELECT id, name FROM t WHERE id = %s", (1,))]


def test_statement_without_result_set(fake_conn):
    fake_conn.outcomes.append(Outcome(message="UPDATE 3", rowcount=3))

    result = query("UPDATE t SET x = 1", conn=fake_conn)

    assert result.rows is None
    assert result.rowcount == 3
    assert len(result) == 0


def test_explicit_connection_bypasses_pool(monkeypatch, fake_conn):
    def no_pool():
        raise AssertionError("pool must not be used")

    monkeypatch.setattr(connection, "get_pool", no_pool)

    query("SELECT 1", conn=fake_conn)
    assert fake_conn.statements == ["SELECT 1"]


def test_pooled_query_borrows_and_returns(fake_pool, fake_conn):
    query("SELECT 1")
    query("SELECT 2")

    assert fake_pool.borrowed == 2
    assert fake_pool.returned == 2
    assert fake_conn.statements == ["SELECT 1", "SELECT 2"]


def test_driver_error_becomes_query_error(fake_conn, caplog):
    cause = psycopg2.ProgrammingError('relation "missing" does not exist')
    fake_conn.fail_when = lambda text: cause

    with caplog.at_level(logging.ERROR, logger="pgbridge.db.queries"):
        with pytest.raises(QueryError) as excinfo:
            query("SELECT * FROM missing", conn=fake_conn)

    assert excinfo.value.sql == "SELECT * FROM missing"
    assert excinfo.value.cause is cause
    assert excinfo.value.__cause__ is cause
    assert "SELECT * FROM missing" in caplog.text


def test_debug_logs_resolved_statement(fake_conn, caplog):
    with caplog.at_level(logging.INFO, logger="pgbridge.db.queries"):
        query("SELECT 42", conn=fake_conn, debug=True)

    assert "sql: SELECT 42" in caplog.text


def test_query_silent_swallows_errors(fake_conn, caplog):
    fake_conn.fail_when = lambda text: psycopg2.ProgrammingError("syntax error")

    with caplog.at_level(logging.WARNING, logger="pgbridge.db.queries"):
        result = query_silent("SELEC 1", msg="cleanup failed", conn=fake_conn)

    assert result is None
    assert "cleanup failed" in caplog.text


def test_query_silent_swallows_connection_errors(monkeypatch):
    def no_pool():
        raise DatabaseConnectionError("DATABASE_URL environment variable is not set.")

    monkeypatch.setattr(connection, "get_pool", no_pool)

    assert query_silent("SELECT 1") is None


def test_query_silent_returns_result_on_success(fake_conn):
    fake_conn.outcomes.append(Outcome(message="DELETE 0"))

    assert query_silent("DELETE FROM t", conn=fake_conn).message == "DELETE 0"


def test_query_json_normalizes_driver_values(fake_conn):
    fake_conn.outcomes.append(Outcome(
        rows=[{
            "day": date(2024, 1, 31),
            "at": datetime(2024, 1, 31, 12, 30),
            "amount": Decimal("10.50"),
            "blob": b"\x01\x02",
            "name": "x",
        }],
        columns=["day", "at", "amount", "blob", "name"],
    ))

    rows = query_json("SELECT ...", conn=fake_conn)

    assert rows == [{
        "day": "2024-01-31",
        "at": "2024-01-31T12:30:00",
        "amount": "10.50",
        "blob": [1, 2],
        "name": "x",
    }]


def test_query_json_without_result_set(fake_conn):
    fake_conn.outcomes.append(Outcome(message="INSERT 0 2", rowcount=2))

    assert query_json("INSERT ...", conn=fake_conn) == {"rowcount": 2, "message": "INSERT 0 2"}


def test_to_json_passes_none_through():
    assert to_json(None) is None


def test_query_row(fake_conn):
    fake_conn.outcomes.append(
        Outcome(rows=[{"id": 1}, {"id": 2}], columns=["id"])
    )

    assert query_row("SELECT id FROM t", conn=fake_conn) == {"id": 1}


def test_query_row_empty_result(fake_conn):
    fake_conn.outcomes.append(Outcome(rows=[], columns=["id"]))

    assert query_row("SELECT id FROM t WHERE false", conn=fake_conn) is None


def test_query_object_is_query_row():
    assert query_object is query_row


def test_query_value_reads_first_column(fake_conn):
    fake_conn.outcomes.append(
        Outcome(rows=[{"count": 7, "other": 1}], columns=["count", "other"])
    )

    assert query_value("SELECT count(*), 1 AS other FROM t", conn=fake_conn) == 7


def test_query_value_without_rows(fake_conn):
    fake_conn.outcomes.append(Outcome(rows=[], columns=["id"]))

    assert query_value("SELECT id FROM t WHERE false", conn=fake_conn) is None


def test_query_message(fake_conn):
    fake_conn.outcomes.append(Outcome(message="INSERT 0 1", rowcount=1))

    assert query_message("INSERT INTO t VALUES (1)", conn=fake_conn) == "INSERT 0 1"


def test_query_value_keeps_columns_with_the_same_name(fake_conn):
    fake_conn.outcomes.append(
        Outcome(rows=[(1, 2)], columns=["?column?", "?column?"])
    )

    assert query_value("SELECT 1, 2", conn=fake_conn) == 1


def test_query_result_keeps_records_in_column_order(fake_conn):
    fake_conn.outcomes.append(
        Outcome(rows=[(1, "a")], columns=["id", "name"])
    )

    result = query("SELECT id, name FROM t", conn=fake_conn)

    assert result.columns == ["id", "name"]
    assert result.records == [(1, "a")]


@pytest.mark.parametrize("cause", [
    IndexError("tuple index out of range"),
    KeyError("month"),
    TypeError("not all arguments converted during string formatting"),
])
def test_parameter_binding_error_becomes_query_error(fake_conn, caplog, cause):
    fake_conn.fail_when = lambda text: cause

    with caplog.at_level(logging.ERROR, logger="pgbridge.db.queries"):
        with pytest.raises(QueryError) as excinfo:
            query("SELECT %s, %s", (1,), conn=fake_conn)

    assert excinfo.value.cause is cause
    assert "SELECT %s, %s" in caplog.text


def test_query_silent_swallows_parameter_mismatch(fake_conn):
    fake_conn.fail_when = lambda text: IndexError("tuple index out of range")

    assert query_silent("SELECT %s, %s", (1,), conn=fake_conn) is None

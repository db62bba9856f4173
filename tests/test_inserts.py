"""Tests for INSERT composition and parallel inserts."""

import threading
import time

import psycopg2
import pytest

from pgbridge.db.inserts import query_insert, query_insert_array, query_insert_object
from pgbridge.db.queries import QueryError
from tests.conftest import Outcome


def test_query_insert_issues_one_statement(fake_conn):
    fake_conn.outcomes.append(Outcome(message="INSERT 0 2", rowcount=2))

    message = query_insert(
        ["id", {"field": "name", "key": "NAME"}, {"field": "month", "param": "month"}],
        [{"id": 1, "NAME": "a"}, {"id": 2, "NAME": "b"}],
        "customers",
        params={"month": "201401"},
        conn=fake_conn,
    )

    assert message == "INSERT 0 2"
    assert fake_conn.statements == [
        'INSERT INTO "customers" ("id","name","month") '
        "VALUES (1,'a','201401'),(2,'b','201401')"
    ]


def test_query_insert_without_rows_skips_database(fake_conn):
    assert query_insert(["id"], [], "customers", conn=fake_conn) is None
    assert fake_conn.executed == []


def test_query_insert_ignoring_conflicts(fake_conn):
    query_insert(["id"], [{"id": 1}], "customers", conn=fake_conn, ignore_conflicts=True)

    assert fake_conn.statements == [
        'INSERT INTO "customers" ("id") VALUES (1) ON CONFLICT DO NOTHING'
    ]


def test_query_insert_object_uses_keys_as_columns(fake_conn):
    query_insert_object({"id": 3, "name": "c"}, "customers", conn=fake_conn)

    assert fake_conn.statements == [
        'INSERT INTO "customers" ("id","name") VALUES (3,\'c\')'
    ]


def test_query_insert_array_inserts_every_item(fake_conn):
    items = [{"id": i, "name": f"n{i}"} for i in range(5)]

    messages = query_insert_array(items, "customers", conn=fake_conn, max_workers=3)

    assert len(messages) == 5
    assert sorted(fake_conn.statements) == sorted(
        f'INSERT INTO "customers" ("id","name") VALUES ({i},\'n{i}\')' for i in range(5)
    )


def test_query_insert_array_uses_the_pool(fake_pool, fake_conn):
    query_insert_array([{"id": 1}, {"id": 2}], "customers")

    assert fake_pool.borrowed == 2
    assert fake_pool.returned == 2


def test_query_insert_array_fails_when_one_item_fails(fake_conn):
    def reject_duplicate(text):
        if "VALUES (2)" in text:
            return psycopg2.IntegrityError("duplicate key value violates unique constraint")
        return None

    fake_conn.fail_when = reject_duplicate

    with pytest.raises(QueryError, match="duplicate key"):
        query_insert_array([{"id": i} for i in range(4)], "customers", conn=fake_conn)


def test_query_insert_array_raises_the_earliest_failure(fake_conn):
    fast_failed = threading.Event()

    def fail_in_turn(text):
        if "VALUES (0)" in text:
            # Item 0 is first in input order but fails last
            fast_failed.wait(timeout=5)
            time.sleep(0.2)
            return psycopg2.DataError("slow failure")
        if "VALUES (1)" in text:
            fast_failed.set()
            return psycopg2.IntegrityError("fast failure")
        return None

    fake_conn.fail_when = fail_in_turn

    with pytest.raises(QueryError, match="fast failure"):
        query_insert_array([{"id": 0}, {"id": 1}], "customers", conn=fake_conn, max_workers=2)


def test_query_insert_array_empty(fake_conn):
    assert query_insert_array([], "customers", conn=fake_conn) == []
    assert fake_conn.executed == []

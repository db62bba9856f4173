"""Shared fixtures: in-memory stand-ins for psycopg2 connections and pools."""

from __future__ import annotations

import threading
from collections import namedtuple
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import pytest
from psycopg2 import sql

from pgbridge.db import connection

Column = namedtuple("Column", ["name", "type_code"], defaults=[None])


def render(obj) -> str:
    """Render a psycopg2.sql composable without a server connection."""
    if isinstance(obj, str):
        return obj
    if isinstance(obj, sql.Composed):
        return "".join(render(part) for part in obj.seq)
    if isinstance(obj, sql.SQL):
        return obj.string
    if isinstance(obj, sql.Identifier):
        return ".".join('"' + s.replace('"', '""') + '"' for s in obj.strings)
    if isinstance(obj, sql.Literal):
        value = obj.wrapped
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return str(value)
        return "'" + str(value).replace("'", "''") + "'"
    raise TypeError(f"Cannot render {obj!r}")


@dataclass
class Outcome:
    """Scripted result of one execute() call."""
    rows: Optional[List[Any]] = None
    columns: List[str] = field(default_factory=list)
    message: Optional[str] = None
    rowcount: Optional[int] = None


class FakeCursor:
    def __init__(self, conn: "FakeConnection", name: Optional[str] = None):
        self.connection = conn
        self.name = name
        self.query = None
        self.description = None
        self.rowcount = -1
        self.statusmessage = None
        self.itersize = 2000
        self.fetch_calls = 0
        self._rows: List[Any] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, statement, params=None):
        text = render(statement)
        self.query = text.encode()
        outcome = self.connection.next_outcome(text, params, self.name)

        if outcome.rows is None:
            self._rows = []
            self.description = None
        else:
            # Plain cursors yield tuples; scripted dict rows follow `columns` order
            self._rows = [
                tuple(row.values()) if isinstance(row, dict) else row
                for row in outcome.rows
            ]
            self.description = [
                column if isinstance(column, Column) else Column(column)
                for column in outcome.columns
            ]
        self.rowcount = outcome.rowcount if outcome.rowcount is not None else len(self._rows)
        self.statusmessage = outcome.message

    def mogrify(self, statement, params=None):
        return render(statement).encode()

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def fetchmany(self, size):
        self.fetch_calls += 1
        chunk, self._rows = self._rows[:size], self._rows[size:]
        return chunk

    def copy_expert(self, statement, f):
        text = render(statement)
        self.query = text.encode()
        self.connection.next_outcome(text, None, self.name)
        data = f.read()
        self.connection.copied.append(data)
        self.rowcount = max(len(data.splitlines()) - 1, 0)


class FakeConnection:
    """
    Records executed statements and replays scripted outcomes.

    `fail_when` receives the rendered statement text and returns an
    exception to raise, or None.
    """

    def __init__(self):
        self.autocommit = True
        self.closed = 0
        self.executed: List[tuple] = []
        self.cursor_names: List[Optional[str]] = []
        self.outcomes: List[Outcome] = []
        self.copied: List[str] = []
        self.commits = 0
        self.rollbacks = 0
        self.fail_when: Optional[Callable[[str], Optional[Exception]]] = None
        self._lock = threading.Lock()

    def cursor(self, name=None, cursor_factory=None):
        self.cursor_names.append(name)
        return FakeCursor(self, name=name)

    def next_outcome(self, text, params, cursor_name) -> Outcome:
        with self._lock:
            self.executed.append((text, params))
        # Outside the lock so a failure rule may block one thread on another
        error = self.fail_when(text) if self.fail_when else None
        if error is not None:
            raise error
        with self._lock:
            return self.outcomes.pop(0) if self.outcomes else Outcome()

    @property
    def statements(self) -> List[str]:
        return [text for text, _ in self.executed]

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = 1


class FakePool:
    """Stands in for a PoolHandle: lends out one shared FakeConnection."""

    def __init__(self, conn: FakeConnection):
        self.conn = conn
        self.borrowed = 0
        self.returned = 0
        self.closed = False

    def getconn(self):
        self.borrowed += 1
        return self.conn

    @contextmanager
    def lent(self, conn):
        try:
            yield conn
        finally:
            self.returned += 1

    @contextmanager
    def connection(self):
        with self.lent(self.getconn()) as conn:
            yield conn


@pytest.fixture(autouse=True)
def no_active_pool(monkeypatch):
    """Every test starts without a process-wide pool."""
    monkeypatch.setattr(connection, "_active_pool", None)


@pytest.fixture
def fake_conn() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def fake_pool(monkeypatch, fake_conn) -> FakePool:
    """Install a FakePool as the active pool."""
    fake = FakePool(fake_conn)
    monkeypatch.setattr(connection, "_active_pool", fake)
    return fake

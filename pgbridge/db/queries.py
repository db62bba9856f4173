"""
Query execution on top of the connection pool.

query() is the single place where statements hit the driver. The other
helpers only narrow its result:

- query_json: rows normalized to JSON-safe values
- query_row: first row or None
- query_value: first column of the first row or None
- query_message: driver status message (e.g. "INSERT 0 3")
- query_silent: like query() but failures are logged and swallowed

Every helper accepts an explicit connection; without one a connection is
borrowed from the pool for the duration of the statement.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Dict, Iterator, List, Optional, Union

import psycopg2
from psycopg2 import sql
from psycopg2.extensions import connection as Connection

from pgbridge.db.connection import DatabaseConnectionError, PoolHandle, acquire_connection

logger = logging.getLogger(__name__)

Statement = Union[str, sql.Composable]

# Raised by psycopg2 while binding parameters, before anything reaches the
# server (wrong number of arguments, missing %(name)s key, bad placeholder)
CLIENT_ERRORS = (TypeError, ValueError, IndexError, KeyError)


class QueryError(Exception):
    """
    Raised when the driver rejects a statement.

    Attributes:
        sql: The resolved statement text
        cause: The original driver exception
    """

    def __init__(self, sql: Optional[str], cause: Exception):
        self.sql = sql
        self.cause = cause
        super().__init__(f"Query failed: {cause}".strip())


@dataclass
class QueryResult:
    """
    Raw result of one statement.

    Attributes:
        rows: Result rows as dictionaries, None if the statement returned
              no result set (INSERT, UPDATE, DDL ...)
        rowcount: Rows produced or affected, -1 if unknown
        message: Driver status message (e.g. "INSERT 0 3", "SELECT 2")
        sql: Resolved statement text
        columns: Column names in result order
        records: Result rows as tuples. Unlike `rows` these keep columns
                 that share a name (e.g. two "?column?")
    """
    rows: Optional[List[Dict[str, Any]]] = None
    rowcount: int = -1
    message: Optional[str] = None
    sql: Optional[str] = None
    columns: List[str] = field(default_factory=list)
    records: Optional[List[tuple]] = None

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return iter(self.rows or [])

    def __len__(self) -> int:
        return len(self.rows or [])


def _decode(text: Union[bytes, str]) -> str:
    if isinstance(text, bytes):
        return text.decode("utf-8", errors="replace")
    return text


def resolve_sql(cur, statement: Statement, params) -> Optional[str]:
    """Best-effort statement text with parameters bound, for diagnostics."""
    if cur.query:
        return _decode(cur.query)
    try:
        return _decode(cur.mogrify(statement, params))
    except (psycopg2.Error, *CLIENT_ERRORS):
        return statement if isinstance(statement, str) else repr(statement)


def _execute(conn: Connection, statement: Statement, params, debug: bool) -> QueryResult:
    with conn.cursor() as cur:
        try:
            cur.execute(statement, params)
            records = cur.fetchall() if cur.description is not None else None
        except (psycopg2.Error, *CLIENT_ERRORS) as e:
            resolved = resolve_sql(cur, statement, params)
            logger.error(f"sql: {resolved}", extra={"error": str(e)})
            raise QueryError(resolved, e) from e

        resolved = resolve_sql(cur, statement, params)
        if debug:
            logger.info(f"sql: {resolved}")

        if records is None:
            return QueryResult(
                rowcount=cur.rowcount,
                message=cur.statusmessage,
                sql=resolved,
            )

        columns = [column.name for column in cur.description]
        records = [tuple(record) for record in records]
        return QueryResult(
            rows=[dict(zip(columns, record)) for record in records],
            rowcount=cur.rowcount,
            message=cur.statusmessage,
            sql=resolved,
            columns=columns,
            records=records,
        )


def query(
    statement: Statement,
    params=None,
    conn: Optional[Connection] = None,
    debug: bool = False,
    pool: Optional[PoolHandle] = None,
) -> QueryResult:
    """
    Execute one parameterized statement.

    Placeholders (%s or %(name)s) are bound by the driver. Statements
    composed with psycopg2.sql (see builders) are rendered by the driver
    too.

    Args:
        statement: SQL text or psycopg2.sql composable
        params: Sequence or mapping of parameters
        conn: Optional dedicated connection
        debug: Log the resolved statement
        pool: Pool to borrow from when no connection is given

    Returns:
        QueryResult

    Raises:
        QueryError: If the driver rejects the statement
        DatabaseConnectionError: If no connection can be obtained
    """
    if conn is not None:
        return _execute(conn, statement, params, debug)

    with acquire_connection(pool) as pooled:
        return _execute(pooled, statement, params, debug)


def query_silent(
    statement: Statement,
    params=None,
    msg: Optional[str] = None,
    conn: Optional[Connection] = None,
) -> Optional[QueryResult]:
    """
    Run a best-effort statement without raising.

    Returns:
        QueryResult, or None if the statement failed
    """
    try:
        return query(statement, params, conn)
    except (QueryError, DatabaseConnectionError) as e:
        logger.warning(f"{msg or 'database error'}: {e}")
        return None


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (datetime, date, time)):
        return obj.isoformat()
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return list(bytes(obj))
    # Decimal, UUID, timedelta and anything else the driver hands back
    return str(obj)


def to_json(obj: Any) -> Any:
    """Round-trip a value through JSON so only plain JSON types remain."""
    if obj is None:
        return obj
    return json.loads(json.dumps(obj, default=_json_default))


def query_json(
    statement: Statement,
    params=None,
    conn: Optional[Connection] = None,
    debug: bool = False,
) -> Any:
    """
    Execute a statement and return JSON-safe rows.

    Statements without a result set return {"rowcount": ..., "message": ...}.
    """
    result = query(statement, params, conn, debug)
    if result.rows is None:
        return to_json({"rowcount": result.rowcount, "message": result.message})
    return to_json(result.rows)


def query_message(
    statement: Statement,
    params=None,
    conn: Optional[Connection] = None,
    debug: bool = False,
) -> Optional[str]:
    """Return the driver status message of a statement, e.g. "UPDATE 4"."""
    result = query(statement, params, conn, debug)
    return result.message


def query_row(
    statement: Statement,
    params=None,
    conn: Optional[Connection] = None,
    debug: bool = False,
) -> Optional[Dict[str, Any]]:
    """Return the first row, or None when the result set is empty."""
    result = query(statement, params, conn, debug)
    return result.rows[0] if result.rows else None


query_object = query_row


def query_value(
    statement: Statement,
    params=None,
    conn: Optional[Connection] = None,
    debug: bool = False,
) -> Any:
    """Return the first column of the first row, or None when there are no rows."""
    result = query(statement, params, conn, debug)
    if not result.records:
        return None
    return result.records[0][0]

"""
Table-level operations: copying tables and inspecting schema.
"""

import logging
from typing import List, Optional

from psycopg2 import sql
from psycopg2.extensions import connection as Connection

from pgbridge.db.escape import escape_id
from pgbridge.db.queries import query, query_value

logger = logging.getLogger(__name__)


class TableNotFoundError(Exception):
    """Raised when a table does not exist."""
    pass


def copy_table(source: str, target: str, conn: Optional[Connection] = None) -> None:
    """
    Replace `target` with a copy of `source` (schema and rows).

    Runs DROP, CREATE ... LIKE and INSERT ... SELECT as three separate
    statements. This is not atomic: if a later step fails, `target` may be
    missing or empty. Callers needing atomicity pass a connection and wrap
    the call in BEGIN/COMMIT themselves.

    Raises:
        QueryError: If any of the statements fails
    """
    source_id, target_id = escape_id(source), escape_id(target)

    logger.info(f"Copying table {source} -> {target}")
    query(sql.SQL("DROP TABLE IF EXISTS {}").format(target_id), conn=conn)
    query(
        sql.SQL("CREATE TABLE {} (LIKE {} INCLUDING ALL)").format(target_id, source_id),
        conn=conn,
    )
    result = query(
        sql.SQL("INSERT INTO {} SELECT * FROM {}").format(target_id, source_id),
        conn=conn,
    )
    logger.info(
        f"Copied table {source} -> {target}",
        extra={"rows": result.rowcount},
    )


def table_exists(
    table_name: str,
    schema: str = "public",
    conn: Optional[Connection] = None,
) -> bool:
    """
    Check if a table exists in the database.

    Args:
        table_name: Name of the table to check
        schema: Database schema name (default: "public")
        conn: Optional dedicated connection

    Returns:
        True if table exists, False otherwise
    """
    exists = query_value(
        """
        SELECT EXISTS (
            SELECT FROM information_schema.tables
            WHERE table_schema = %s
            AND table_name = %s
        )
        """,
        (schema, table_name),
        conn,
    )
    logger.debug(
        f"Table existence check: {table_name}",
        extra={"table": table_name, "exists": exists, "schema": schema},
    )
    return bool(exists)


def get_table_columns(
    table_name: str,
    schema: str = "public",
    conn: Optional[Connection] = None,
) -> List[str]:
    """
    Get the list of column names for a table.

    Returns:
        List of column names in order

    Raises:
        TableNotFoundError: If the table does not exist
    """
    if not table_exists(table_name, schema, conn):
        raise TableNotFoundError(f"Table '{table_name}' does not exist")

    result = query(
        """
        SELECT column_name
        FROM information_schema.columns
        WHERE table_schema = %s
        AND table_name = %s
        ORDER BY ordinal_position
        """,
        (schema, table_name),
        conn,
    )
    return [row["column_name"] for row in result]


def truncate_table(table_name: str, conn: Optional[Connection] = None) -> None:
    """Remove all rows from a table."""
    query(sql.SQL("TRUNCATE TABLE {}").format(escape_id(table_name)), conn=conn)
    logger.info(f"Truncated table: {table_name}")

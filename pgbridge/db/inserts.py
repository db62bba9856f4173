"""
INSERT helpers composed from the fragment builders.

None of these wrap their work in a transaction. query_insert_array issues
independent statements in parallel; when one fails the error is raised and
statements that already succeeded stay committed.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from psycopg2.extensions import connection as Connection

from pgbridge.db.builders import FieldLike, build_insert, prepare_insert
from pgbridge.db.queries import query_message

logger = logging.getLogger(__name__)

# Upper bound for parallel single-row inserts
DEFAULT_MAX_WORKERS = 8


def query_insert(
    fields: Iterable[FieldLike],
    rows,
    table: str,
    params: Optional[Mapping[str, Any]] = None,
    conn: Optional[Connection] = None,
    ignore_conflicts: bool = False,
    debug: bool = False,
) -> Optional[str]:
    """
    Insert rows into a table.

    Args:
        fields: Field definitions (see builders)
        rows: A mapping or a sequence of mappings
        table: Target table name
        params: Values addressed by ParamField definitions
        conn: Optional dedicated connection
        ignore_conflicts: Skip rows violating a unique constraint
        debug: Log the resolved statement

    Returns:
        Driver status message, or None when there was nothing to insert
        (no statement is issued in that case)
    """
    prepared = prepare_insert(fields, rows, params)
    if not prepared:
        logger.debug(f"Nothing to insert into {table}")
        return None

    statement = build_insert(table, prepared, ignore_conflicts=ignore_conflicts)
    return query_message(statement, conn=conn, debug=debug)


def query_insert_object(
    data: Mapping[str, Any],
    table: str,
    params: Optional[Mapping[str, Any]] = None,
    conn: Optional[Connection] = None,
    ignore_conflicts: bool = False,
) -> Optional[str]:
    """Insert one mapping, using its keys as column names."""
    return query_insert(
        list(data.keys()), data, table,
        params=params, conn=conn, ignore_conflicts=ignore_conflicts,
    )


def query_insert_array(
    items: Sequence[Mapping[str, Any]],
    table: str,
    params: Optional[Mapping[str, Any]] = None,
    conn: Optional[Connection] = None,
    ignore_conflicts: bool = False,
    max_workers: Optional[int] = None,
) -> List[Optional[str]]:
    """
    Insert every mapping with its own statement, in parallel.

    Items may have different keys. There is no ordering guarantee between
    the statements.

    Returns:
        Status messages in input order

    Raises:
        The first error raised by any insert, in order of completion.
        Inserts still running at that point are neither waited for nor
        rolled back.
    """
    items = list(items)
    if not items:
        return []

    workers = max_workers or min(DEFAULT_MAX_WORKERS, len(items))
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="insert")
    try:
        futures = [
            executor.submit(
                query_insert_object, item, table,
                params=params, conn=conn, ignore_conflicts=ignore_conflicts,
            )
            for item in items
        ]
        # First failure to complete wins
        for future in as_completed(futures):
            error = future.exception()
            if error is not None:
                logger.error(
                    f"Insert into {table} failed: {error}",
                    extra={"items": len(items)},
                )
                raise error

        return [future.result() for future in futures]
    finally:
        executor.shutdown(wait=False)

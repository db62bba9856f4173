"""
Stream a query result into a CSV file.

Rows are pulled from a server-side (named) cursor in batches of
ExportOptions.fetch_size and each batch is written to disk before the next
one is fetched. A slow disk therefore slows down fetching instead of rows
piling up in memory, and at most one batch is held at a time.
"""

import csv
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import psycopg2
from psycopg2.extensions import connection as Connection

from pgbridge.config import ExportOptions
from pgbridge.db.connection import acquire_connection
from pgbridge.db.csv_codec import JSON_TYPE_OIDS, make_writer
from pgbridge.db.queries import CLIENT_ERRORS, Statement, resolve_sql

logger = logging.getLogger(__name__)


class StreamError(Exception):
    """Raised when streaming a result set to a file fails."""
    pass


@dataclass
class ExportResult:
    """
    Result of a CSV export.

    Attributes:
        file_path: Written file
        columns: Column names written as header
        rows: Number of data rows written
    """
    file_path: str
    columns: List[str] = field(default_factory=list)
    rows: int = 0


def _stream_rows(
    conn: Connection,
    file_path: Path,
    statement: Statement,
    params,
    options: ExportOptions,
) -> ExportResult:
    result = ExportResult(file_path=str(file_path))
    cursor_name = f"pgbridge_export_{uuid.uuid4().hex}"

    with open(file_path, "w", encoding=options.encoding, newline="") as f:
        with conn.cursor(name=cursor_name) as cur:
            cur.itersize = options.fetch_size
            cur.execute(statement, params)
            if options.debug:
                logger.info(f"sql: {resolve_sql(cur, statement, params)}")

            # Column metadata of a named cursor arrives with the first fetch
            batch = cur.fetchmany(options.fetch_size)
            result.columns = [column.name for column in cur.description]
            writer = make_writer(
                f,
                delimiter=options.delimiter,
                json_columns=[
                    position for position, column in enumerate(cur.description)
                    if column.type_code in JSON_TYPE_OIDS
                ],
            )
            writer.writerow(result.columns)

            while batch:
                writer.writerows(batch)
                result.rows += len(batch)
                batch = cur.fetchmany(options.fetch_size)

    return result


def _export_on(
    conn: Connection,
    file_path: Path,
    statement: Statement,
    params,
    options: ExportOptions,
) -> ExportResult:
    # Server-side cursors only live inside a transaction. Open one if the
    # connection is in autocommit mode and close it again afterwards; a
    # transaction the caller already runs is left to the caller.
    owns_transaction = conn.autocommit
    if owns_transaction:
        conn.autocommit = False

    try:
        result = _stream_rows(conn, file_path, statement, params, options)
        if owns_transaction:
            conn.commit()
        return result

    except (psycopg2.Error, OSError, csv.Error, *CLIENT_ERRORS) as e:
        logger.error(f"CSV export to {file_path} failed: {e}", exc_info=True)
        raise StreamError(f"Could not export query result to {file_path}: {e}") from e

    finally:
        if owns_transaction and not conn.closed:
            # No-op after a successful commit
            conn.rollback()
            conn.autocommit = True


def export_to_file(
    file_path: Union[str, Path],
    statement: Statement,
    params=None,
    conn: Optional[Connection] = None,
    options: Optional[ExportOptions] = None,
) -> ExportResult:
    """
    Stream a query result to a CSV file.

    The header row holds the quoted column names and is written as soon as
    column metadata is known, also for empty results. An existing file is
    overwritten. If the export fails the file may be left incomplete.

    Args:
        file_path: Destination file
        statement: SQL text or psycopg2.sql composable
        params: Query parameters
        conn: Optional dedicated connection
        options: ExportOptions (fetch size, delimiter, encoding, debug)

    Returns:
        ExportResult with the column names and number of rows written

    Raises:
        StreamError: If the query, the fetch or a file write fails
    """
    options = options or ExportOptions()
    file_path = Path(file_path)

    logger.info(f"Starting CSV export to {file_path}")

    if conn is not None:
        result = _export_on(conn, file_path, statement, params, options)
    else:
        with acquire_connection() as pooled:
            result = _export_on(pooled, file_path, statement, params, options)

    logger.info(
        f"Export completed: {result.rows} rows written to {file_path}",
        extra={"columns": len(result.columns), "rows": result.rows},
    )
    return result


to_csv = export_to_file

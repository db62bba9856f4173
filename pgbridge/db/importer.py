"""
CSV import into an existing table.

import_from_file reads the whole file into memory, splits the data rows into
batches of ImportOptions.limit rows and issues one multi-row INSERT per
batch, strictly one after another. Memory use therefore grows with the file
size. Batches are not wrapped in a transaction: if batch k fails, batches
1..k-1 stay inserted and the error propagates.

load_file hands the file to the server with COPY instead, which is faster
for large files but all-or-nothing per file.
"""

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

import psycopg2
from psycopg2 import sql
from psycopg2.extensions import connection as Connection

from pgbridge.config import ImportOptions
from pgbridge.db.builders import PreparedInsert, ValidationError, build_insert, escape_tuple
from pgbridge.db.connection import acquire_connection
from pgbridge.db.csv_codec import read_file
from pgbridge.db.escape import escape_id
from pgbridge.db.queries import QueryError, QueryResult, query, resolve_sql

logger = logging.getLogger(__name__)

Row = Sequence[Optional[str]]


@dataclass
class ImportResult:
    """
    Result of a CSV import operation.

    Attributes:
        file_path: Path to the imported file
        table_name: Target table name
        batches: Number of INSERT statements issued
        inserted: Number of rows the server reported as inserted
    """
    file_path: Optional[str] = None
    table_name: Optional[str] = None
    batches: int = 0
    inserted: int = 0


def _get_file_size_mb(file_path: Path) -> float:
    """Get file size in megabytes."""
    size_bytes = file_path.stat().st_size
    return size_bytes / (1024 * 1024)


def break_data(rows: Sequence[Row], limit: int) -> List[List[Row]]:
    """
    Split parsed CSV rows into batches that each start with the header.

    Args:
        rows: Parsed rows, first row is the header
        limit: Maximum data rows per batch

    Returns:
        ceil(N / limit) batches for N data rows; data rows keep their order
    """
    if limit < 1:
        raise ValueError("limit must be a positive number of rows")
    if not rows:
        return []

    header, data = rows[0], rows[1:]
    return [
        [header, *data[start:start + limit]]
        for start in range(0, len(data), limit)
    ]


def query_insert_data(
    batch: Sequence[Row],
    table: str,
    options: Optional[ImportOptions] = None,
    conn: Optional[Connection] = None,
) -> QueryResult:
    """
    Insert one batch whose first row holds the column names.

    Raises:
        ValidationError: If the batch has no data rows or a row does not
            match the header width
        QueryError: If the server rejects the statement
    """
    options = options or ImportOptions()
    if len(batch) < 2:
        raise ValidationError("Batch has no data rows")

    header, data = batch[0], batch[1:]
    for number, row in enumerate(data, start=1):
        if len(row) != len(header):
            raise ValidationError(
                f"Row {number} of batch has {len(row)} fields, "
                f"header has {len(header)}"
            )

    prepared = PreparedInsert(
        fields=[sql.Identifier(column) for column in header],
        values=[escape_tuple(row) for row in data],
    )
    statement = build_insert(table, prepared, ignore_conflicts=options.ignore_conflicts)
    return query(statement, conn=conn, debug=options.debug)


def import_from_file(
    file_path: Union[str, Path],
    table: str,
    options: Optional[ImportOptions] = None,
    conn: Optional[Connection] = None,
) -> ImportResult:
    """
    Import a CSV file (first row = column names) into a table.

    Args:
        file_path: Path to CSV file to import
        table: Target table name
        options: ImportOptions (batch limit, conflicts, CSV dialect, debug)
        conn: Optional dedicated connection; every batch then runs on it

    Returns:
        ImportResult with the number of batches and inserted rows

    Raises:
        FileNotFoundError: If the file does not exist
        ValidationError: If a row does not match the header width
        QueryError: If a batch insert fails. Earlier batches stay inserted.
    """
    options = options or ImportOptions()
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"CSV file not found: {file_path}")

    logger.info(
        f"Starting CSV import: {file_path} ({_get_file_size_mb(file_path):.2f}MB) -> {table}"
    )

    rows = read_file(
        file_path,
        encoding=options.encoding,
        delimiter=options.delimiter,
        quotechar=options.quotechar,
        empty_as_null=options.empty_as_null,
    )
    batches = break_data(rows, options.limit)
    result = ImportResult(file_path=str(file_path), table_name=table)

    for number, batch in enumerate(batches, start=1):
        try:
            inserted = query_insert_data(batch, table, options, conn)
        except (QueryError, ValidationError) as e:
            logger.error(
                f"Import of {file_path} failed at batch {number}/{len(batches)}: {e}",
                extra={"batches_done": result.batches, "rows_inserted": result.inserted},
            )
            raise

        result.batches += 1
        result.inserted += max(inserted.rowcount, 0)
        logger.debug(f"Batch {number}/{len(batches)}: inserted {inserted.rowcount} rows")

    logger.info(
        f"Import completed: {result.inserted} rows in {result.batches} batches -> {table}"
    )
    return result


from_csv = import_from_file


def _get_csv_columns(file_path: Path, options: ImportOptions) -> List[str]:
    """
    Get column names from CSV file header.

    Raises:
        ValidationError: If the file has no header row
    """
    with open(file_path, "r", encoding=options.encoding, newline="") as f:
        reader = csv.reader(f, delimiter=options.delimiter, quotechar=options.quotechar)
        headers = next(reader, None)

    if not headers:
        raise ValidationError(f"CSV file has no header row: {file_path}")
    return headers


def _copy_file(conn: Connection, file_path: Path, table: str, options: ImportOptions) -> int:
    columns = _get_csv_columns(file_path, options)

    copy_query = sql.SQL(
        "COPY {table} ({columns}) FROM STDIN "
        "WITH (FORMAT csv, HEADER true, DELIMITER {delimiter}, QUOTE {quote})"
    ).format(
        table=escape_id(table),
        columns=sql.SQL(", ").join(map(sql.Identifier, columns)),
        delimiter=sql.Literal(options.delimiter),
        quote=sql.Literal(options.quotechar),
    )

    with conn.cursor() as cur:
        try:
            with open(file_path, "r", encoding=options.encoding, newline="") as f:
                cur.copy_expert(copy_query, f)
        except psycopg2.Error as e:
            resolved = resolve_sql(cur, copy_query, None)
            logger.error(f"sql: {resolved}", extra={"error": str(e)})
            raise QueryError(resolved, e) from e

        if options.debug:
            logger.info(f"sql: {resolve_sql(cur, copy_query, None)}")
        return cur.rowcount


def load_file(
    file_path: Union[str, Path],
    table: str,
    options: Optional[ImportOptions] = None,
    conn: Optional[Connection] = None,
) -> int:
    """
    Bulk load a CSV file with COPY ... FROM STDIN.

    The header row names the target columns. Unlike import_from_file the
    load is a single statement: either every row lands or none does.

    Returns:
        Number of rows loaded

    Raises:
        FileNotFoundError: If the file does not exist
        QueryError: If the server rejects the data
    """
    options = options or ImportOptions()
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"CSV file not found: {file_path}")

    logger.info(f"Loading {file_path} into {table} with COPY")

    if conn is not None:
        loaded = _copy_file(conn, file_path, table, options)
    else:
        with acquire_connection() as pooled:
            loaded = _copy_file(pooled, file_path, table, options)

    logger.info(f"Loaded {loaded} rows into {table}")
    return loaded

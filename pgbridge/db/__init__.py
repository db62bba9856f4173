"""
Database operations module.

This module provides:
- Connection pool management with safe pool recreation
- Query execution with row/value/message/JSON narrowing
- Escaped INSERT/UPDATE fragment builders
- CSV export (server-side cursor streaming) and import (batched INSERT, COPY)
- Table copy and schema helpers
"""

from pgbridge.db.escape import escape, escape_id
from pgbridge.db.connection import (
    DatabaseConnectionError,
    PoolClosedError,
    PoolExhaustedError,
    PoolHandle,
    PoolTeardownError,
    acquire_connection,
    close_pool,
    get_connection,
    get_pool,
    init_pool,
    recreate_pool,
)
from pgbridge.db.queries import (
    QueryError,
    QueryResult,
    query,
    query_json,
    query_message,
    query_object,
    query_row,
    query_silent,
    query_value,
)
from pgbridge.db.builders import (
    KeyedField,
    NamedField,
    ParamField,
    PreparedInsert,
    ValidationError,
    build_insert,
    normalize_fields,
    parse_setter,
    parse_values,
    prepare_insert,
    prepare_update,
)
from pgbridge.db.inserts import query_insert, query_insert_array, query_insert_object
from pgbridge.db.exporter import ExportResult, StreamError, export_to_file, to_csv
from pgbridge.db.importer import (
    ImportResult,
    break_data,
    from_csv,
    import_from_file,
    load_file,
    query_insert_data,
)
from pgbridge.db.tables import (
    TableNotFoundError,
    copy_table,
    get_table_columns,
    table_exists,
    truncate_table,
)

__all__ = [
    # Escaping
    "escape",
    "escape_id",
    # Pool
    "DatabaseConnectionError",
    "PoolClosedError",
    "PoolExhaustedError",
    "PoolHandle",
    "PoolTeardownError",
    "acquire_connection",
    "close_pool",
    "get_connection",
    "get_pool",
    "init_pool",
    "recreate_pool",
    # Queries
    "QueryError",
    "QueryResult",
    "query",
    "query_json",
    "query_message",
    "query_object",
    "query_row",
    "query_silent",
    "query_value",
    # Builders
    "KeyedField",
    "NamedField",
    "ParamField",
    "PreparedInsert",
    "ValidationError",
    "build_insert",
    "normalize_fields",
    "parse_setter",
    "parse_values",
    "prepare_insert",
    "prepare_update",
    "query_insert",
    "query_insert_array",
    "query_insert_object",
    # CSV export / import
    "ExportResult",
    "StreamError",
    "export_to_file",
    "to_csv",
    "ImportResult",
    "break_data",
    "from_csv",
    "import_from_file",
    "load_file",
    "query_insert_data",
    # Tables
    "TableNotFoundError",
    "copy_table",
    "get_table_columns",
    "table_exists",
    "truncate_table",
]

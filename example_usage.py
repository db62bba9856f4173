"""
Example usage of the pgbridge data-access layer.

This script demonstrates pooled queries, the INSERT/UPDATE builders, a CSV
export/import round trip and table copying.

Prerequisites:
1. Create a .env file with DATABASE_URL
2. Ensure your database is accessible

Usage:
    python example_usage.py
"""

import logging
from pathlib import Path

from psycopg2 import sql

from pgbridge.config import ImportOptions
from pgbridge.db import (
    QueryError,
    close_pool,
    copy_table,
    export_to_file,
    import_from_file,
    parse_setter,
    query,
    query_insert,
    query_insert_array,
    query_silent,
    query_value,
    table_exists,
    truncate_table,
)
from pgbridge.db import connection
from pgbridge.logging_setup import configure_logging

configure_logging()

logger = logging.getLogger(__name__)

TABLE = "example_customers"


def example_connection_test():
    """Test database connection."""
    logger.info("Testing database connection...")

    if connection.test_connection():
        logger.info("Database connection successful!")
        return True
    else:
        logger.error("Database connection failed!")
        return False


def example_inserts():
    """Demonstrate field definitions and parallel inserts."""
    logger.info("\n--- Insert Example ---")

    query_silent(f"DROP TABLE IF EXISTS {TABLE}", msg="could not drop example table")
    query(f"CREATE TABLE {TABLE} (id INTEGER PRIMARY KEY, name TEXT, month TEXT)")

    # Rename a source property and take a value from params
    fields = ["id", {"field": "name", "key": "NAME"}, {"field": "month", "param": "month"}]
    rows = [{"id": 1, "NAME": "John Doe"}, {"id": 2, "NAME": "Jane Smith"}]
    message = query_insert(fields, rows, TABLE, params={"month": "201401"})
    logger.info(f"Insert: {message}")

    messages = query_insert_array(
        [{"id": 3, "name": "Max"}, {"id": 4, "name": "Erika"}],
        TABLE,
    )
    logger.info(f"Parallel inserts: {messages}")

    setter = parse_setter({"month": "201402"})
    query(sql.SQL("UPDATE {} SET {} WHERE id = %s").format(sql.Identifier(TABLE), setter), (1,))

    count = query_value(f"SELECT COUNT(*) FROM {TABLE}")
    logger.info(f"Rows in {TABLE}: {count}")


def example_csv_round_trip():
    """Export the example table to CSV and import it back."""
    logger.info("\n--- CSV Round Trip Example ---")

    csv_file = Path("example_customers.csv")

    exported = export_to_file(csv_file, f"SELECT * FROM {TABLE} ORDER BY id")
    logger.info(f"Exported {exported.rows} rows with columns {exported.columns}")

    truncate_table(TABLE)

    try:
        result = import_from_file(csv_file, TABLE, ImportOptions(limit=2))
        logger.info(f"Imported {result.inserted} rows in {result.batches} batches")
    except QueryError as e:
        logger.error(f"Import failed: {e} (sql: {e.sql})")


def example_copy_table():
    """Duplicate a table with its rows."""
    logger.info("\n--- Table Copy Example ---")

    copy_table(TABLE, f"{TABLE}_backup")
    if table_exists(f"{TABLE}_backup"):
        count = query_value(f"SELECT COUNT(*) FROM {TABLE}_backup")
        logger.info(f"Backup table holds {count} rows")


def main():
    """Run all examples."""
    logger.info("=== pgbridge - Example Usage ===\n")

    # Test connection
    if not example_connection_test():
        logger.error("Cannot proceed without database connection")
        return

    example_inserts()
    example_csv_round_trip()
    example_copy_table()

    # Clean up
    logger.info("\n--- Cleanup ---")
    close_pool()
    logger.info("Connection pool closed")


if __name__ == "__main__":
    main()

"""
pgbridge - a PostgreSQL data-access layer.

Provides pooled query execution, escaped INSERT/UPDATE fragment builders,
CSV export/import between tables and delimited files, and table copying.
"""

__version__ = "0.1.0"

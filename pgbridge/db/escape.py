"""
Escaping primitives shared by every statement builder.

Values become sql.Literal and names become sql.Identifier. Both are rendered
by psycopg2 against a live connection when the statement is executed, so no
user value is ever spliced into statement text by hand.
"""

from typing import Any

from psycopg2 import sql


def escape(value: Any) -> sql.Literal:
    """Escape a value for direct inclusion in a statement. None renders as NULL."""
    return sql.Literal(value)


def escape_id(name: str) -> sql.Identifier:
    """
    Escape an identifier.

    Dotted names are split into qualified parts, so "public.users" becomes
    "public"."users".

    Raises:
        ValueError: If the name is empty
    """
    if not name or not isinstance(name, str):
        raise ValueError(f"Invalid identifier: {name!r}")
    return sql.Identifier(*name.split("."))

"""
SQL fragment builders for INSERT and UPDATE statements.

A field specification says where one destination column takes its value
from. Three shapes are accepted at the boundary and normalized once:

    "name"                             -> NamedField("name")
    {"field": "name", "key": "AOI"}    -> KeyedField("name", "AOI")
    {"field": "date", "param": "month"} -> ParamField("date", "month")

Resolution precedence is param > key > field name. Every value and every
identifier leaves this module as a psycopg2.sql object, so nothing
user-supplied is pasted into statement text unescaped.

Example:
    >>> fields = [{"field": "name", "key": "AOI_NAME"}, {"field": "date", "param": "month"}]
    >>> prepared = prepare_insert(fields, [{"AOI_NAME": "company name"}], {"month": "201401"})
    >>> prepared.as_string(conn)
    ('"name","date"', "('company name','201401')")
"""

from dataclasses import dataclass, field as dataclass_field
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from psycopg2 import sql

from pgbridge.db.escape import escape, escape_id


class ValidationError(ValueError):
    """Raised when a builder receives input it cannot turn into valid SQL."""
    pass


@dataclass(frozen=True)
class NamedField:
    """Column value read from the row property of the same name."""
    field: str

    def resolve(self, row: Mapping[str, Any], params: Mapping[str, Any]) -> Any:
        return row.get(self.field)


@dataclass(frozen=True)
class KeyedField:
    """Column value read from a differently named row property."""
    field: str
    key: str

    def resolve(self, row: Mapping[str, Any], params: Mapping[str, Any]) -> Any:
        return row.get(self.key)


@dataclass(frozen=True)
class ParamField:
    """Column value read from the out-of-band parameter bag."""
    field: str
    param: str

    def resolve(self, row: Mapping[str, Any], params: Mapping[str, Any]) -> Any:
        return params.get(self.param)


FieldSpec = Union[NamedField, KeyedField, ParamField]
FieldLike = Union[str, Mapping[str, str], FieldSpec]


def normalize_field(item: FieldLike) -> FieldSpec:
    """
    Convert one field shorthand into a FieldSpec.

    Raises:
        ValidationError: If the item has no destination field name
    """
    if isinstance(item, (NamedField, KeyedField, ParamField)):
        return item

    if isinstance(item, str):
        if not item:
            raise ValidationError("Field name cannot be empty")
        return NamedField(item)

    if isinstance(item, Mapping):
        name = item.get("field")
        if not name:
            raise ValidationError(f"Field definition without 'field': {item!r}")
        if item.get("param"):
            return ParamField(name, item["param"])
        if item.get("key"):
            return KeyedField(name, item["key"])
        return NamedField(name)

    raise ValidationError(f"Unsupported field definition: {item!r}")


def normalize_fields(fields: Iterable[FieldLike]) -> List[FieldSpec]:
    """
    Normalize a list of field shorthands.

    Raises:
        ValidationError: If a definition is invalid or a destination field
            is declared twice
    """
    specs = [normalize_field(item) for item in fields]

    seen = set()
    for spec in specs:
        if spec.field in seen:
            raise ValidationError(f"Field '{spec.field}' is declared more than once")
        seen.add(spec.field)

    return specs


def _as_rows(rows) -> List[Mapping[str, Any]]:
    if rows is None:
        return []
    # A single mapping is a single row
    if isinstance(rows, Mapping):
        return [rows]
    return list(rows)


def parse_values(
    fields: Iterable[FieldLike],
    rows,
    params: Optional[Mapping[str, Any]] = None,
) -> List[dict]:
    """
    Resolve every field spec against every row.

    Args:
        fields: Field definitions
        rows: A mapping or a sequence of mappings
        params: Additional values addressed by ParamField

    Returns:
        One dictionary per row, keyed by destination field name
    """
    specs = normalize_fields(fields)
    params = params or {}

    return [
        {spec.field: spec.resolve(row, params) for spec in specs}
        for row in _as_rows(rows)
    ]


@dataclass
class PreparedInsert:
    """
    Escaped pieces of a multi-row INSERT.

    Attributes:
        fields: Escaped destination column names
        values: One escaped "(v1,v2,...)" tuple per row

    An empty PreparedInsert is falsy and must not be turned into a statement.
    """
    fields: List[sql.Identifier] = dataclass_field(default_factory=list)
    values: List[sql.Composed] = dataclass_field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.values)

    def columns_sql(self) -> sql.Composed:
        return sql.SQL(",").join(self.fields)

    def values_sql(self) -> sql.Composed:
        return sql.SQL(",").join(self.values)

    def as_string(self, context) -> tuple:
        """Render (columns, values) against a connection or cursor."""
        return (
            self.columns_sql().as_string(context),
            self.values_sql().as_string(context),
        )


def escape_tuple(values: Sequence[Any]) -> sql.Composed:
    """Escape a sequence of values into "(v1,v2,...)"."""
    return sql.SQL("({})").format(sql.SQL(",").join([escape(v) for v in values]))


def prepare_insert(
    fields: Iterable[FieldLike],
    rows,
    params: Optional[Mapping[str, Any]] = None,
) -> PreparedInsert:
    """
    Prepare escaped column names and value tuples for an INSERT.

    Returns:
        PreparedInsert; empty when there are no rows
    """
    specs = normalize_fields(fields)
    rows = _as_rows(rows)
    params = params or {}

    if not rows:
        return PreparedInsert()

    return PreparedInsert(
        fields=[escape_id(spec.field) for spec in specs],
        values=[
            escape_tuple([spec.resolve(row, params) for spec in specs])
            for row in rows
        ],
    )


def build_insert(
    table: str,
    prepared: PreparedInsert,
    ignore_conflicts: bool = False,
) -> sql.Composed:
    """
    Compose a full INSERT from prepared pieces.

    Raises:
        ValidationError: If there is nothing to insert
    """
    if not prepared:
        raise ValidationError("No rows to insert")

    statement = sql.SQL("INSERT INTO {table} ({fields}) VALUES {values}").format(
        table=escape_id(table),
        fields=prepared.columns_sql(),
        values=prepared.values_sql(),
    )
    if ignore_conflicts:
        statement = statement + sql.SQL(" ON CONFLICT DO NOTHING")
    return statement


def prepare_update(
    fields: Iterable[FieldLike],
    rows,
    params: Optional[Mapping[str, Any]] = None,
) -> List[sql.Composed]:
    """
    Prepare escaped "column=value" assignments for an UPDATE.

    Only the first row is read; an update sets a single logical value set.

    Raises:
        ValidationError: If no data rows are supplied
    """
    specs = normalize_fields(fields)
    rows = _as_rows(rows)
    params = params or {}

    if not rows:
        raise ValidationError("No values to update")

    row = rows[0]
    return [
        sql.SQL("{}={}").format(escape_id(spec.field), escape(spec.resolve(row, params)))
        for spec in specs
    ]


def parse_setter(setter: Optional[Mapping[str, Any]]) -> sql.Composable:
    """
    Convert a flat mapping into a comma separated SET list.

    Returns:
        Escaped "col1=v1,col2=v2"; an empty SQL fragment for an empty mapping
    """
    if not setter:
        return sql.SQL("")

    return sql.SQL(",").join([
        sql.SQL("{}={}").format(escape_id(key), escape(value))
        for key, value in setter.items()
    ])

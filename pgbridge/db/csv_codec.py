"""
CSV text <-> rows conversion used by the bulk pipelines.

The format follows PostgreSQL's own CSV convention (the one COPY uses):
strings are quoted, numbers are written bare and NULL is an unquoted empty
field, so NULL and '' survive an export/import round trip. json/jsonb values
are written as JSON text, lists as array literals and bytes as bytea hex.

Reading returns every field as a string, or None for an unquoted empty
field.
"""

import csv
import io
import json
from pathlib import Path
from typing import Any, Collection, Iterable, Iterator, List, Optional, Sequence, TextIO, Tuple, Union

LINE_TERMINATOR = "\n"

# type_code of json and jsonb columns in cursor.description
JSON_TYPE_OIDS = (114, 3802)


class _Null:
    """Written bare and empty by a QUOTE_NONNUMERIC writer."""

    def __float__(self) -> float:
        return 0.0

    def __str__(self) -> str:
        return ""


NULL_FIELD = _Null()


def array_literal(values: Sequence[Any]) -> str:
    """Render a (nested) list as a PostgreSQL array literal, e.g. {"a",NULL}."""
    items = []
    for value in values:
        if value is None:
            items.append("NULL")
        elif isinstance(value, (list, tuple)):
            items.append(array_literal(value))
        else:
            text = json.dumps(value) if isinstance(value, dict) else str(value)
            items.append('"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"')
    return "{" + ",".join(items) + "}"


def encode_value(value: Any, as_json: bool = False) -> Any:
    """Map a driver value to what the CSV writer should emit."""
    if value is None:
        return NULL_FIELD
    if as_json or isinstance(value, dict):
        return json.dumps(value)
    if isinstance(value, (list, tuple)):
        return array_literal(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "\\x" + bytes(value).hex()
    return value


class CsvWriter:
    """
    Row writer on top of csv.writer.

    Args:
        stream: Text stream opened with newline=""
        delimiter: Column separator
        json_columns: Positions of json/jsonb columns
    """

    def __init__(self, stream: TextIO, delimiter: str = ",", json_columns: Collection[int] = ()):
        self._stream = stream
        self._writer = csv.writer(
            stream,
            delimiter=delimiter,
            quoting=csv.QUOTE_NONNUMERIC,
            lineterminator=LINE_TERMINATOR,
        )
        self.json_columns = frozenset(json_columns)

    def writerow(self, row: Sequence[Any]) -> None:
        if len(row) == 1 and row[0] is None:
            # csv.writer quotes a lone empty field; a lone NULL is an empty line
            self._stream.write(LINE_TERMINATOR)
            return
        self._writer.writerow([
            encode_value(value, position in self.json_columns)
            for position, value in enumerate(row)
        ])

    def writerows(self, rows: Iterable[Sequence[Any]]) -> None:
        for row in rows:
            self.writerow(row)


def make_writer(stream: TextIO, delimiter: str = ",", json_columns: Collection[int] = ()) -> CsvWriter:
    """CSV writer that quotes strings, leaves numbers bare and NULL empty."""
    return CsvWriter(stream, delimiter=delimiter, json_columns=json_columns)


def stringify(rows: Iterable[Sequence[Any]], delimiter: str = ",") -> str:
    """Render rows as CSV text."""
    buffer = io.StringIO()
    make_writer(buffer, delimiter=delimiter).writerows(rows)
    return buffer.getvalue()


def _records(text: str, delimiter: str, quotechar: str) -> Iterator[List[Tuple[str, bool]]]:
    """
    Split CSV text into records of (value, was_quoted) pairs.

    csv.reader drops the quoting of a field, which is the only thing that
    tells NULL from an empty string.
    """
    record: List[Tuple[str, bool]] = []
    value: List[str] = []
    quoted = in_quotes = False
    i, end = 0, len(text)

    while i < end:
        c = text[i]
        if in_quotes:
            if c != quotechar:
                value.append(c)
            elif i + 1 < end and text[i + 1] == quotechar:
                value.append(c)
                i += 1
            else:
                in_quotes = False
        elif c == quotechar and not value and not quoted:
            in_quotes = quoted = True
        elif c == delimiter:
            record.append(("".join(value), quoted))
            value, quoted = [], False
        elif c in "\r\n":
            if c == "\r" and i + 1 < end and text[i + 1] == "\n":
                i += 1
            record.append(("".join(value), quoted))
            yield record
            record, value, quoted = [], [], False
        else:
            value.append(c)
        i += 1

    if in_quotes:
        raise csv.Error("unexpected end of data inside a quoted field")
    if record or value or quoted:
        record.append(("".join(value), quoted))
        yield record


def parse(
    text: str,
    delimiter: str = ",",
    quotechar: str = '"',
    empty_as_null: bool = False,
) -> List[List[Optional[str]]]:
    """
    Parse CSV text into rows.

    Args:
        text: CSV content
        delimiter: Column separator (default: ",")
        quotechar: Quote character (default: '"')
        empty_as_null: Also return quoted empty fields ("") as None

    Returns:
        List of rows. Unquoted empty fields are None. Blank lines are
        skipped, except in single-column data where they hold a NULL.
    """
    rows: List[List[Optional[str]]] = []
    width = None

    for record in _records(text, delimiter, quotechar):
        if width is None:
            width = len(record)
        elif record == [("", False)] and width != 1:
            continue

        rows.append([
            None if value == "" and (empty_as_null or not quoted) else value
            for value, quoted in record
        ])
    return rows


def read_file(
    file_path: Union[str, Path],
    encoding: str = "utf-8",
    delimiter: str = ",",
    quotechar: str = '"',
    empty_as_null: bool = False,
) -> List[List[Optional[str]]]:
    """Read a whole CSV file into memory and parse it."""
    with open(file_path, "r", encoding=encoding, newline="") as f:
        text = f.read()
    return parse(text, delimiter=delimiter, quotechar=quotechar, empty_as_null=empty_as_null)

"""SQLite result rows.

sqlite3 already returns Python values for the four storage classes; typed
access converts from those the way values were bound (ISO-8601 text for
dates and times, 16-byte blobs or text for UUIDs, JSON text for documents).
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Callable
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from sqlweave.errors import DecodeError
from sqlweave.row import ColumnRow


def storage_class(value: Any) -> str:
    """Return the SQLite storage class of a value returned by sqlite3."""
    if value is None:
        return "null"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "real"
    if isinstance(value, str):
        return "text"
    return "blob"


def _to_bool(value: Any) -> bool:
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ValueError(f"{value!r} is not 0 or 1")


def _to_uuid(value: Any) -> UUID:
    if isinstance(value, bytes):
        return UUID(bytes=value)
    return UUID(value)


def _to_json(expected: type) -> Callable[[Any], Any]:
    def convert(value: Any) -> Any:
        decoded = json.loads(value)
        if not isinstance(decoded, expected):
            raise ValueError(f"JSON document is a {type(decoded).__name__}")
        return decoded

    return convert


# Python type -> (storage classes it may be read from, converter)
_CONVERTERS: dict[type, tuple[frozenset[str], Callable[[Any], Any]]] = {
    bool: (frozenset({"integer"}), _to_bool),
    int: (frozenset({"integer"}), int),
    float: (frozenset({"integer", "real"}), float),
    str: (frozenset({"text"}), str),
    bytes: (frozenset({"blob"}), bytes),
    Decimal: (frozenset({"integer", "real", "text"}), lambda v: Decimal(str(v))),
    UUID: (frozenset({"blob", "text"}), _to_uuid),
    datetime: (frozenset({"text"}), datetime.fromisoformat),
    date: (frozenset({"text"}), date.fromisoformat),
    time: (frozenset({"text"}), time.fromisoformat),
    dict: (frozenset({"text"}), _to_json(dict)),
    list: (frozenset({"text"}), _to_json(list)),
}


class SqliteRow(ColumnRow):
    """Wraps ``sqlite3.Row``; column types are the values' storage classes."""

    decodable = tuple(_CONVERTERS)

    def __init__(self, row: sqlite3.Row) -> None:
        """Initialize with a row produced by the ``sqlite3.Row`` factory."""
        self._row = row
        self._names = list(row.keys())

    def type_name(self, key: str | int) -> str:
        """Return the storage class of a column's value."""
        return storage_class(self._row[self.index_of(key)])

    def _raw(self, index: int) -> Any:
        return self._row[index]

    def _decode_default(self, index: int) -> Any:
        return self._row[index]

    def _decode_as(self, index: int, py_type: type) -> Any:
        value = self._row[index]
        actual = storage_class(value)
        accepted, convert = _CONVERTERS[py_type]
        if actual not in accepted:
            raise DecodeError(
                "mismatched types",
                column=self._names[index],
                expected=py_type.__name__,
                actual=actual,
            )
        try:
            return convert(value)
        except (ValueError, TypeError, InvalidOperation) as exc:
            raise DecodeError(
                str(exc), column=self._names[index], expected=py_type.__name__, actual=actual
            ) from exc

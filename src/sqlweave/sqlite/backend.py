"""SQLite backend descriptor: ``?`` placeholders, values bound through sqlite3.

SQLite types values by storage class, so the type id recorded for each
parameter is the storage class it is bound as.
"""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from uuid import UUID

from sqlweave.backend import Backend, TypeInfo
from sqlweave.errors import EncodeError
from sqlweave.placeholders import PlaceholderStyle
from sqlweave.sqlite.row import SqliteRow
from sqlweave.types import Json

INTEGER = "integer"
REAL = "real"
TEXT = "text"
BLOB = "blob"
NULL = "null"

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def encode_integer(value: int) -> int:
    """Bind an ``int`` as a 64-bit INTEGER."""
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise EncodeError(f"integer {value} does not fit in a 64-bit INTEGER")
    return int(value)


def encode_bool(value: bool) -> int:
    return 1 if value else 0


def encode_datetime(value: datetime) -> str:
    return value.isoformat(sep=" ")


class SqliteBackend(Backend):
    """SQLite through aiosqlite."""

    name = "sqlite"
    placeholder_style = PlaceholderStyle.QMARK
    row_type = SqliteRow
    supports_pipelining = True
    null_type_id = NULL

    def _register_defaults(self) -> None:
        for py_type, info in (
            (bool, TypeInfo("integer", INTEGER, encode_bool)),
            (int, TypeInfo("integer", INTEGER, encode_integer)),
            (float, TypeInfo("real", REAL, float)),
            (str, TypeInfo("text", TEXT, str)),
            (bytes, TypeInfo("blob", BLOB, bytes)),
            (bytearray, TypeInfo("blob", BLOB, bytes)),
            (memoryview, TypeInfo("blob", BLOB, bytes)),
            (UUID, TypeInfo("blob", BLOB, lambda v: v.bytes)),
            (Decimal, TypeInfo("text", TEXT, str)),
            (date, TypeInfo("text", TEXT, date.isoformat)),
            (datetime, TypeInfo("text", TEXT, encode_datetime)),
            (time, TypeInfo("text", TEXT, time.isoformat)),
            (Json, TypeInfo("text", TEXT, Json.dumps)),
        ):
            self.register_type(py_type, info)


Sqlite = SqliteBackend()

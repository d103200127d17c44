"""Postgres result rows: raw binary values plus their column descriptions."""

from __future__ import annotations

import struct
from typing import Any

from sqlweave.errors import DecodeError
from sqlweave.postgres import types
from sqlweave.postgres.protocol import Column
from sqlweave.row import ColumnRow

_DECODE_FAILURES = (ValueError, OverflowError, struct.error)


class PgRow(ColumnRow):
    """One DataRow. Values stay in wire format until a column is read."""

    decodable = tuple(types.ACCEPTS)

    def __init__(self, columns: list[Column], values: list[bytes | None]) -> None:
        """Initialize with the RowDescription columns and DataRow values."""
        if len(values) != len(columns):
            raise DecodeError(f"row has {len(values)} values for {len(columns)} columns")
        self.columns = columns
        self._names = [c.name for c in columns]
        self._values = values

    def type_oid(self, key: str | int) -> int:
        """Return the type OID of a column."""
        return self.columns[self.index_of(key)].type_oid

    def type_name(self, key: str | int) -> str:
        """Return the SQL type name of a column."""
        return types.type_name(self.type_oid(key))

    def _raw(self, index: int) -> bytes | None:
        return self._values[index]

    def _decode(self, index: int, expected: str) -> Any:
        oid = self.columns[index].type_oid
        data = self._values[index]
        if data is None:
            raise DecodeError(
                "unexpected NULL", column=self._names[index], expected=expected, actual="NULL"
            )
        try:
            return types.decode(oid, data)
        except _DECODE_FAILURES as exc:
            raise DecodeError(
                str(exc), column=self._names[index], expected=expected, actual=types.type_name(oid)
            ) from exc

    def _decode_default(self, index: int) -> Any:
        return self._decode(index, types.type_name(self.columns[index].type_oid))

    def _decode_as(self, index: int, py_type: type) -> Any:
        oid = self.columns[index].type_oid
        if oid not in types.ACCEPTS[py_type]:
            raise DecodeError(
                "mismatched types",
                column=self._names[index],
                expected=py_type.__name__,
                actual=types.type_name(oid),
            )
        value = self._decode(index, py_type.__name__)
        if not isinstance(value, py_type):
            raise DecodeError(
                f"decoded {type(value).__name__}",
                column=self._names[index],
                expected=py_type.__name__,
                actual=types.type_name(oid),
            )
        return value

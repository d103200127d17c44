"""Postgres backend descriptor: ``$N`` placeholders, binary parameters, ``PgRow``."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from uuid import UUID

from sqlweave.backend import Backend, TypeInfo
from sqlweave.placeholders import PlaceholderStyle
from sqlweave.postgres import types
from sqlweave.postgres.row import PgRow
from sqlweave.types import Json


class PgBackend(Backend):
    """PostgreSQL wire protocol 3.0."""

    name = "postgres"
    placeholder_style = PlaceholderStyle.DOLLAR
    row_type = PgRow
    supports_pipelining = True
    null_type_id = types.UNSPECIFIED

    def _register_defaults(self) -> None:
        for py_type, info in (
            (bool, TypeInfo("bool", types.BOOL, types.encode_bool)),
            (int, TypeInfo("int8", types.INT8, types.encode_int8)),
            (float, TypeInfo("float8", types.FLOAT8, types.encode_float8)),
            (str, TypeInfo("text", types.TEXT, types.encode_text)),
            (bytes, TypeInfo("bytea", types.BYTEA, types.encode_bytea)),
            (bytearray, TypeInfo("bytea", types.BYTEA, types.encode_bytea)),
            (memoryview, TypeInfo("bytea", types.BYTEA, types.encode_bytea)),
            (UUID, TypeInfo("uuid", types.UUID_OID, types.encode_uuid)),
            (Decimal, TypeInfo("numeric", types.NUMERIC, types.encode_numeric)),
            (date, TypeInfo("date", types.DATE, types.encode_date)),
            (datetime, TypeInfo("timestamp", types.TIMESTAMP, types.encode_timestamp)),
            (time, TypeInfo("time", types.TIME, types.encode_time)),
            (timedelta, TypeInfo("interval", types.INTERVAL, types.encode_interval)),
            (Json, TypeInfo("jsonb", types.JSONB, types.encode_jsonb)),
        ):
            self.register_type(py_type, info)

    def encode(self, value: object) -> tuple[int, bytes | None]:
        """Encode one value; zone-aware times and datetimes use the tz variants."""
        if isinstance(value, datetime) and value.tzinfo is not None:
            return types.TIMESTAMPTZ, types.encode_timestamp(value)
        if isinstance(value, time) and value.tzinfo is not None:
            return types.TIMETZ, types.encode_time(value)
        return super().encode(value)


Postgres = PgBackend()

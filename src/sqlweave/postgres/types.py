"""Binary wire codecs for the Postgres scalar types sqlweave supports.

Encoders raise ``EncodeError`` for values the wire type cannot hold.
Decoders raise ``ValueError`` (or ``OverflowError``) on malformed or
unrepresentable data; the row layer adds column context.
"""

from __future__ import annotations

import json
import struct
from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlweave.errors import EncodeError
from sqlweave.types import Json

# -- Type OIDs (pg_type.oid) --

UNSPECIFIED = 0
BOOL = 16
BYTEA = 17
CHAR = 18
NAME = 19
INT8 = 20
INT2 = 21
INT4 = 23
TEXT = 25
OID = 26
JSON = 114
FLOAT4 = 700
FLOAT8 = 701
UNKNOWN = 705
BPCHAR = 1042
VARCHAR = 1043
DATE = 1082
TIME = 1083
TIMESTAMP = 1114
TIMESTAMPTZ = 1184
INTERVAL = 1186
TIMETZ = 1266
NUMERIC = 1700
UUID_OID = 2950
JSONB = 3802

TYPE_NAMES: dict[int, str] = {
    BOOL: "bool",
    BYTEA: "bytea",
    CHAR: "char",
    NAME: "name",
    INT8: "int8",
    INT2: "int2",
    INT4: "int4",
    TEXT: "text",
    OID: "oid",
    JSON: "json",
    FLOAT4: "float4",
    FLOAT8: "float8",
    UNKNOWN: "unknown",
    BPCHAR: "bpchar",
    VARCHAR: "varchar",
    DATE: "date",
    TIME: "time",
    TIMESTAMP: "timestamp",
    TIMESTAMPTZ: "timestamptz",
    INTERVAL: "interval",
    TIMETZ: "timetz",
    NUMERIC: "numeric",
    UUID_OID: "uuid",
    JSONB: "jsonb",
}


def type_name(oid: int) -> str:
    """Return the SQL name for ``oid``, or ``oid:<n>`` if unknown."""
    return TYPE_NAMES.get(oid, f"oid:{oid}")


_INT2 = struct.Struct(">h")
_INT4 = struct.Struct(">i")
_UINT4 = struct.Struct(">I")
_INT8 = struct.Struct(">q")
_FLOAT4 = struct.Struct(">f")
_FLOAT8 = struct.Struct(">d")
_TIMETZ = struct.Struct(">qi")
_INTERVAL = struct.Struct(">qii")
_NUMERIC_HEADER = struct.Struct(">hhHH")

_PG_EPOCH = datetime(2000, 1, 1)
_PG_EPOCH_DATE = date(2000, 1, 1)
_INT8_MIN = -(2**63)
_INT8_MAX = 2**63 - 1

_NUMERIC_POS = 0x0000
_NUMERIC_NEG = 0x4000
_NUMERIC_NAN = 0xC000
_NUMERIC_PINF = 0xD000
_NUMERIC_NINF = 0xF000
_NUMERIC_DIGITS = 4  # decimal digits per base-10000 group

_JSONB_VERSION = 1


def _micros(delta: timedelta) -> int:
    return (delta.days * 86400 + delta.seconds) * 1_000_000 + delta.microseconds


def _time_micros(value: time) -> int:
    return ((value.hour * 60 + value.minute) * 60 + value.second) * 1_000_000 + value.microsecond


def _time_from_micros(micros: int) -> time:
    seconds, micro = divmod(micros, 1_000_000)
    minutes, second = divmod(seconds, 60)
    hour, minute = divmod(minutes, 60)
    return time(hour, minute, second, micro)


# -- Encoders --


def encode_bool(value: bool) -> bytes:
    """Encode ``bool``."""
    return b"\x01" if value else b"\x00"


def encode_int8(value: int) -> bytes:
    """Encode ``int`` as int8."""
    if not _INT8_MIN <= value <= _INT8_MAX:
        raise EncodeError(f"integer {value} out of range for int8")
    return _INT8.pack(value)


def encode_float8(value: float) -> bytes:
    """Encode ``float`` as float8."""
    return _FLOAT8.pack(value)


def encode_text(value: str) -> bytes:
    """Encode ``str`` as UTF-8 text."""
    return value.encode("utf-8")


def encode_bytea(value: bytes | bytearray | memoryview) -> bytes:
    """Encode binary data as bytea."""
    return bytes(value)


def encode_uuid(value: UUID) -> bytes:
    """Encode a UUID as its 16 raw bytes."""
    return value.bytes


def encode_date(value: date) -> bytes:
    """Encode a date as days since 2000-01-01."""
    return _INT4.pack((value - _PG_EPOCH_DATE).days)


def encode_time(value: time) -> bytes:
    """Encode a time of day; an aware time is encoded as timetz."""
    offset = value.utcoffset()
    if offset is None:
        return _INT8.pack(_time_micros(value))
    # timetz stores the zone as seconds west of UTC
    return _TIMETZ.pack(_time_micros(value), -int(offset.total_seconds()))


def encode_timestamp(value: datetime) -> bytes:
    """Encode a datetime; aware values are converted to UTC (timestamptz)."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return _INT8.pack(_micros(value - _PG_EPOCH))


def encode_interval(value: timedelta) -> bytes:
    """Encode a timedelta as an interval with no month component."""
    return _INTERVAL.pack(value.seconds * 1_000_000 + value.microseconds, value.days, 0)


def encode_numeric(value: Decimal) -> bytes:
    """Encode a Decimal in the base-10000 numeric format."""
    if value.is_nan():
        return _NUMERIC_HEADER.pack(0, 0, _NUMERIC_NAN, 0)
    if value.is_infinite():
        return _NUMERIC_HEADER.pack(0, 0, _NUMERIC_NINF if value < 0 else _NUMERIC_PINF, 0)

    sign, digit_tuple, exponent = value.as_tuple()
    assert isinstance(exponent, int)
    digits = "".join(map(str, digit_tuple))
    dscale = max(0, -exponent)
    if exponent > 0:
        digits += "0" * exponent
        exponent = 0

    point = len(digits) + exponent
    if point > 0:
        int_part, frac_part = digits[:point], digits[point:]
    else:
        int_part, frac_part = "", "0" * -point + digits

    int_part = int_part.rjust(-(-len(int_part) // _NUMERIC_DIGITS) * _NUMERIC_DIGITS, "0")
    frac_part = frac_part.ljust(-(-len(frac_part) // _NUMERIC_DIGITS) * _NUMERIC_DIGITS, "0")
    groups = [
        int(chunk[i : i + _NUMERIC_DIGITS])
        for chunk in (int_part, frac_part)
        for i in range(0, len(chunk), _NUMERIC_DIGITS)
    ]
    weight = len(int_part) // _NUMERIC_DIGITS - 1

    while groups and groups[0] == 0:
        groups.pop(0)
        weight -= 1
    while groups and groups[-1] == 0:
        groups.pop()
    if not groups:
        weight = 0
    if len(groups) > 0x7FFF or not -0x8000 <= weight <= 0x7FFF:
        raise EncodeError(f"numeric value {value} out of range")

    header = _NUMERIC_HEADER.pack(
        len(groups), weight, _NUMERIC_NEG if sign else _NUMERIC_POS, dscale
    )
    return header + struct.pack(f">{len(groups)}H", *groups)


def encode_jsonb(value: Json) -> bytes:
    """Encode a JSON document as jsonb (version byte + text)."""
    return bytes([_JSONB_VERSION]) + value.dumps().encode("utf-8")


# -- Decoders (oid -> default Python value) --


def _decode_text(data: bytes) -> str:
    return data.decode("utf-8")


def _decode_bool(data: bytes) -> bool:
    return data != b"\x00"


def _decode_date(data: bytes) -> date:
    return _PG_EPOCH_DATE + timedelta(days=_INT4.unpack(data)[0])


def _decode_timestamp(data: bytes) -> datetime:
    return _PG_EPOCH + timedelta(microseconds=_INT8.unpack(data)[0])


def _decode_timestamptz(data: bytes) -> datetime:
    return _decode_timestamp(data).replace(tzinfo=UTC)


def _decode_time(data: bytes) -> time:
    return _time_from_micros(_INT8.unpack(data)[0])


def _decode_timetz(data: bytes) -> time:
    micros, zone = _TIMETZ.unpack(data)
    return _time_from_micros(micros).replace(tzinfo=timezone(timedelta(seconds=-zone)))


def _decode_interval(data: bytes) -> timedelta:
    micros, days, months = _INTERVAL.unpack(data)
    if months:
        raise ValueError("interval with a month component has no timedelta equivalent")
    return timedelta(days=days, microseconds=micros)


def _decode_numeric(data: bytes) -> Decimal:
    ndigits, weight, sign, dscale = _NUMERIC_HEADER.unpack_from(data)
    if sign == _NUMERIC_NAN:
        return Decimal("NaN")
    if sign == _NUMERIC_PINF:
        return Decimal("Infinity")
    if sign == _NUMERIC_NINF:
        return Decimal("-Infinity")

    groups = struct.unpack_from(f">{ndigits}H", data, _NUMERIC_HEADER.size)
    digits = "".join(f"{group:04d}" for group in groups) or "0"
    exponent = (weight + 1 - ndigits) * _NUMERIC_DIGITS
    target = -dscale
    if exponent > target:
        digits += "0" * (exponent - target)
    elif exponent < target:
        digits = digits[: len(digits) - (target - exponent)] or "0"
    return Decimal((1 if sign == _NUMERIC_NEG else 0, tuple(int(c) for c in digits), target))


def _decode_json(data: bytes) -> Any:
    return json.loads(data.decode("utf-8"))


def _decode_jsonb(data: bytes) -> Any:
    if not data or data[0] != _JSONB_VERSION:
        raise ValueError("unsupported jsonb version")
    return json.loads(data[1:].decode("utf-8"))


DECODERS: dict[int, Callable[[bytes], Any]] = {
    BOOL: _decode_bool,
    BYTEA: bytes,
    CHAR: _decode_text,
    NAME: _decode_text,
    INT8: lambda data: _INT8.unpack(data)[0],
    INT2: lambda data: _INT2.unpack(data)[0],
    INT4: lambda data: _INT4.unpack(data)[0],
    TEXT: _decode_text,
    OID: lambda data: _UINT4.unpack(data)[0],
    JSON: _decode_json,
    FLOAT4: lambda data: _FLOAT4.unpack(data)[0],
    FLOAT8: lambda data: _FLOAT8.unpack(data)[0],
    UNKNOWN: _decode_text,
    BPCHAR: _decode_text,
    VARCHAR: _decode_text,
    DATE: _decode_date,
    TIME: _decode_time,
    TIMESTAMP: _decode_timestamp,
    TIMESTAMPTZ: _decode_timestamptz,
    INTERVAL: _decode_interval,
    TIMETZ: _decode_timetz,
    NUMERIC: _decode_numeric,
    UUID_OID: lambda data: UUID(bytes=data),
    JSONB: _decode_jsonb,
}

# Python type -> wire types it may be decoded from
ACCEPTS: dict[type, frozenset[int]] = {
    bool: frozenset({BOOL}),
    int: frozenset({INT2, INT4, INT8, OID}),
    float: frozenset({FLOAT4, FLOAT8}),
    Decimal: frozenset({NUMERIC}),
    str: frozenset({TEXT, VARCHAR, BPCHAR, NAME, CHAR, UNKNOWN}),
    bytes: frozenset({BYTEA}),
    UUID: frozenset({UUID_OID}),
    datetime: frozenset({TIMESTAMP, TIMESTAMPTZ}),
    date: frozenset({DATE}),
    time: frozenset({TIME, TIMETZ}),
    timedelta: frozenset({INTERVAL}),
    dict: frozenset({JSON, JSONB}),
    list: frozenset({JSON, JSONB}),
}


def decode(oid: int, data: bytes) -> Any:
    """Decode a binary column value by its type OID; unknown types stay bytes."""
    decoder = DECODERS.get(oid)
    if decoder is None:
        return bytes(data)
    return decoder(data)

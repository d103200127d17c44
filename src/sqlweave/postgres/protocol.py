"""PostgreSQL frontend/backend protocol (version 3.0) framing.

Frontend messages are built as complete ``bytes`` so a caller can
concatenate a whole batch and hand it to the transport in one write.
Backend messages are read as ``(tag, body)`` and parsed by the helpers
below. See https://www.postgresql.org/docs/current/protocol-message-formats.html
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from sqlweave.errors import StatementError, TransportError

PROTOCOL_VERSION = 3 << 16
SSL_REQUEST_CODE = (1234 << 16) | 5679
FORMAT_BINARY = 1

# Backend message tags
AUTHENTICATION = b"R"
BACKEND_KEY_DATA = b"K"
BIND_COMPLETE = b"2"
CLOSE_COMPLETE = b"3"
COMMAND_COMPLETE = b"C"
DATA_ROW = b"D"
EMPTY_QUERY = b"I"
ERROR_RESPONSE = b"E"
NO_DATA = b"n"
NOTICE_RESPONSE = b"N"
NOTIFICATION = b"A"
PARAMETER_DESCRIPTION = b"t"
PARAMETER_STATUS = b"S"
PARSE_COMPLETE = b"1"
PORTAL_SUSPENDED = b"s"
READY_FOR_QUERY = b"Z"
ROW_DESCRIPTION = b"T"

# Authentication request codes
AUTH_OK = 0
AUTH_CLEARTEXT = 3
AUTH_MD5 = 5
AUTH_SASL = 10
AUTH_SASL_CONTINUE = 11
AUTH_SASL_FINAL = 12

# ReadyForQuery transaction status
TX_IDLE = "I"
TX_IN_BLOCK = "T"
TX_FAILED = "E"

_INT2 = struct.Struct(">h")
_INT4 = struct.Struct(">i")
_HEADER = struct.Struct(">ci")
HEADER_SIZE = _HEADER.size
_FIELD = struct.Struct(">ihihih")
_NULL = _INT4.pack(-1)


def _cstr(value: str) -> bytes:
    return value.encode("utf-8") + b"\x00"


def _message(tag: bytes, body: bytes = b"") -> bytes:
    return tag + _INT4.pack(len(body) + 4) + body


# -- Frontend messages --


def startup_message(params: dict[str, str]) -> bytes:
    """StartupMessage with the given run-time parameters."""
    body = _INT4.pack(PROTOCOL_VERSION)
    body += b"".join(_cstr(k) + _cstr(v) for k, v in params.items()) + b"\x00"
    return _INT4.pack(len(body) + 4) + body


def ssl_request() -> bytes:
    """SSLRequest."""
    return _INT4.pack(8) + _INT4.pack(SSL_REQUEST_CODE)


def password_message(password: str) -> bytes:
    """PasswordMessage (cleartext or MD5 hash)."""
    return _message(b"p", _cstr(password))


def sasl_initial_response(mechanism: str, data: bytes) -> bytes:
    """SASLInitialResponse."""
    return _message(b"p", _cstr(mechanism) + _INT4.pack(len(data)) + data)


def sasl_response(data: bytes) -> bytes:
    """SASLResponse."""
    return _message(b"p", data)


def parse(sql: str, param_oids: list[int], name: str = "") -> bytes:
    """Parse: prepare ``sql`` as statement ``name`` (unnamed by default)."""
    body = _cstr(name) + _cstr(sql) + _INT2.pack(len(param_oids))
    body += b"".join(_INT4.pack(oid) for oid in param_oids)
    return _message(b"P", body)


def bind(values: list[bytes | None], portal: str = "", statement: str = "") -> bytes:
    """Bind binary parameters and request binary results for every column."""
    parts = [_cstr(portal), _cstr(statement)]
    if values:
        parts.append(_INT2.pack(1) + _INT2.pack(FORMAT_BINARY))
    else:
        parts.append(_INT2.pack(0))
    parts.append(_INT2.pack(len(values)))
    for value in values:
        parts.append(_NULL if value is None else _INT4.pack(len(value)) + value)
    parts.append(_INT2.pack(1) + _INT2.pack(FORMAT_BINARY))
    return _message(b"B", b"".join(parts))


def describe_portal(portal: str = "") -> bytes:
    """Describe a portal (yields RowDescription or NoData)."""
    return _message(b"D", b"P" + _cstr(portal))


def execute(portal: str = "", max_rows: int = 0) -> bytes:
    """Execute a portal; ``max_rows=0`` means no limit."""
    return _message(b"E", _cstr(portal) + _INT4.pack(max_rows))


def sync() -> bytes:
    """Sync: end of an extended-query batch."""
    return _message(b"S")


def terminate() -> bytes:
    """Terminate."""
    return _message(b"X")


def statement(sql: str, param_oids: list[int], values: list[bytes | None]) -> bytes:
    """Parse + Bind + Describe + Execute for one statement, without Sync."""
    return parse(sql, param_oids) + bind(values) + describe_portal() + execute()


# -- Backend messages --


@dataclass(frozen=True)
class Message:
    """One backend message."""

    tag: bytes
    body: bytes


@dataclass(frozen=True)
class Column:
    """One field of a RowDescription."""

    name: str
    table_oid: int
    attnum: int
    type_oid: int
    type_size: int
    type_modifier: int
    format: int


def parse_header(header: bytes) -> tuple[bytes, int]:
    """Return ``(tag, body length)`` from the 5-byte message header."""
    tag, length = _HEADER.unpack(header)
    if length < 4:
        raise TransportError(f"invalid message length {length} for {tag!r}")
    return tag, length - 4


def _read_cstr(body: bytes, offset: int) -> tuple[str, int]:
    end = body.index(b"\x00", offset)
    return body[offset:end].decode("utf-8"), end + 1


def parse_authentication(body: bytes) -> tuple[int, bytes]:
    """Return ``(request code, payload)`` of an Authentication message."""
    return _INT4.unpack_from(body)[0], body[4:]


def parse_sasl_mechanisms(payload: bytes) -> list[str]:
    """Return the mechanism names offered by AuthenticationSASL."""
    return [m.decode("utf-8") for m in payload.split(b"\x00") if m]


def parse_parameter_status(body: bytes) -> tuple[str, str]:
    """Return ``(name, value)`` of a ParameterStatus message."""
    name, offset = _read_cstr(body, 0)
    value, _ = _read_cstr(body, offset)
    return name, value


def parse_backend_key_data(body: bytes) -> tuple[int, int]:
    """Return ``(process id, secret key)``."""
    return _INT4.unpack_from(body)[0], _INT4.unpack_from(body, 4)[0]


def parse_ready_for_query(body: bytes) -> str:
    """Return the transaction status character."""
    return body[:1].decode("ascii")


def parse_command_complete(body: bytes) -> str:
    """Return the command tag, e.g. ``INSERT 0 1``."""
    return body.rstrip(b"\x00").decode("utf-8")


def parse_row_description(body: bytes) -> list[Column]:
    """Return the column descriptions of a RowDescription message."""
    count = _INT2.unpack_from(body)[0]
    offset = 2
    columns = []
    for _ in range(count):
        name, offset = _read_cstr(body, offset)
        columns.append(Column(name, *_FIELD.unpack_from(body, offset)))
        offset += _FIELD.size
    return columns


def parse_data_row(body: bytes) -> list[bytes | None]:
    """Return the raw column values of a DataRow (None for NULL)."""
    count = _INT2.unpack_from(body)[0]
    offset = 2
    values: list[bytes | None] = []
    for _ in range(count):
        length = _INT4.unpack_from(body, offset)[0]
        offset += 4
        if length < 0:
            values.append(None)
        else:
            values.append(body[offset : offset + length])
            offset += length
    return values


def parse_error_fields(body: bytes) -> dict[str, str]:
    """Return the fields of an ErrorResponse/NoticeResponse keyed by code."""
    fields: dict[str, str] = {}
    offset = 0
    while offset < len(body) and body[offset] != 0:
        code = chr(body[offset])
        value, offset = _read_cstr(body, offset + 1)
        fields[code] = value
    return fields


def statement_error(body: bytes) -> StatementError:
    """Build a ``StatementError`` from an ErrorResponse body."""
    fields = parse_error_fields(body)
    return StatementError(
        fields.get("M", "unknown error"),
        sqlstate=fields.get("C"),
        detail=fields.get("D"),
        hint=fields.get("H"),
        fields=fields,
    )


def rows_affected(tag: str) -> int:
    """Parse the affected-row count from a command tag.

    Examples: "INSERT 0 1" → 1, "UPDATE 3" → 3, "CREATE TABLE" → 0.
    """
    parts = tag.split()
    if len(parts) >= 2:
        try:
            return int(parts[-1])
        except ValueError:
            pass
    return 0

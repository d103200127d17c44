"""Scripted Postgres server for protocol-level tests.

Backend responses are queued into a real ``asyncio.StreamReader`` before the
client runs, and everything the client writes is captured and can be split
back into frontend messages.
"""

import asyncio
import struct

import pytest
import pytest_asyncio

from sqlweave.postgres import PgConnection
from sqlweave.postgres.options import PgConnectOptions


def message(tag: bytes, body: bytes = b"") -> bytes:
    return tag + struct.pack(">i", len(body) + 4) + body


def cstr(value: str) -> bytes:
    return value.encode() + b"\x00"


class FakeWriter:
    """Captures frontend bytes in the shape of ``asyncio.StreamWriter``."""

    def __init__(self):
        self.writes: list[bytes] = []
        self.closed = False

    def write(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionResetError("writer closed")
        self.writes.append(bytes(data))

    async def drain(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True

    def is_closing(self) -> bool:
        return self.closed

    async def wait_closed(self) -> None:
        pass

    def frames(self, index: int = -1) -> list[tuple[bytes, bytes]]:
        """Split one captured write into ``(tag, body)`` frontend messages."""
        return split_frames(self.writes[index])


def split_frames(data: bytes) -> list[tuple[bytes, bytes]]:
    frames = []
    offset = 0
    while offset < len(data):
        tag = data[offset : offset + 1]
        (length,) = struct.unpack_from(">i", data, offset + 1)
        frames.append((tag, data[offset + 5 : offset + 1 + length]))
        offset += 1 + length
    return frames


class ScriptedServer:
    """Builds backend messages and feeds them to the client's reader."""

    def __init__(self, reader: asyncio.StreamReader, writer: FakeWriter):
        self.reader = reader
        self.writer = writer

    def send(self, *chunks: bytes) -> None:
        for chunk in chunks:
            self.reader.feed_data(chunk)

    def eof(self) -> None:
        self.reader.feed_eof()

    # -- Backend messages --

    @staticmethod
    def ready(status: str = "I") -> bytes:
        return message(b"Z", status.encode())

    @staticmethod
    def auth(code: int, payload: bytes = b"") -> bytes:
        return message(b"R", struct.pack(">i", code) + payload)

    @staticmethod
    def parameter_status(name: str, value: str) -> bytes:
        return message(b"S", cstr(name) + cstr(value))

    @staticmethod
    def backend_key(pid: int, secret: int) -> bytes:
        return message(b"K", struct.pack(">ii", pid, secret))

    @staticmethod
    def row_description(*columns: tuple[str, int]) -> bytes:
        body = struct.pack(">h", len(columns))
        for name, oid in columns:
            body += cstr(name) + struct.pack(">ihihih", 0, 0, oid, -1, -1, 1)
        return message(b"T", body)

    @staticmethod
    def data_row(*values: bytes | None) -> bytes:
        body = struct.pack(">h", len(values))
        for value in values:
            if value is None:
                body += struct.pack(">i", -1)
            else:
                body += struct.pack(">i", len(value)) + value
        return message(b"D", body)

    @staticmethod
    def command_complete(tag: str) -> bytes:
        return message(b"C", cstr(tag))

    @staticmethod
    def error(code: str, text: str, severity: str = "ERROR") -> bytes:
        body = b"S" + cstr(severity) + b"C" + cstr(code) + b"M" + cstr(text) + b"\x00"
        return message(b"E", body)

    @staticmethod
    def notice(text: str) -> bytes:
        return message(b"N", b"S" + cstr("NOTICE") + b"M" + cstr(text) + b"\x00")

    # -- Whole statement responses (without ReadyForQuery) --

    def command(self, tag: str) -> bytes:
        """Parse/Bind complete, NoData, CommandComplete."""
        return message(b"1") + message(b"2") + message(b"n") + self.command_complete(tag)

    def select(self, columns: list[tuple[str, int]], rows: list[tuple[bytes | None, ...]]) -> bytes:
        """Parse/Bind complete, RowDescription, DataRows, CommandComplete."""
        out = message(b"1") + message(b"2") + self.row_description(*columns)
        for row in rows:
            out += self.data_row(*row)
        return out + self.command_complete(f"SELECT {len(rows)}")

    def failure(self, code: str, text: str) -> bytes:
        """An ErrorResponse raised while parsing the statement."""
        return self.error(code, text)


@pytest_asyncio.fixture
async def server():
    """Scripted server with an attached reader and capturing writer."""
    return ScriptedServer(asyncio.StreamReader(), FakeWriter())


@pytest_asyncio.fixture
async def pg(server):
    """PgConnection over the scripted server, past startup."""
    conn = PgConnection(
        server.reader, server.writer, PgConnectOptions(user="app", password="secret")
    )
    yield conn
    if not server.writer.closed:
        await conn.close()


@pytest.fixture(name="split_frames")
def split_frames_fixture():
    """The frontend message splitter."""
    return split_frames

"""Tests for PgConnection against a scripted server."""

import asyncio
import struct
from contextlib import aclosing
from dataclasses import dataclass

import pytest

from sqlweave.errors import NoRows, StatementError, TransportError
from sqlweave.postgres import PgConnection, Postgres
from sqlweave.postgres import types as pg_types

INT8 = pg_types.INT8
TEXT = pg_types.TEXT


def int8(value: int) -> bytes:
    return struct.pack(">q", value)


@dataclass
class User:
    id: int
    name: str


class TestExecute:
    """Single statements."""

    @pytest.mark.asyncio
    async def test_returns_rows_affected(self, server, pg, split_frames):
        server.send(server.command("INSERT 0 1"), server.ready())
        q = Postgres.query("INSERT INTO t (a, b) VALUES ($1, $2)").bind(5).bind(None)
        assert await q.execute(pg) == 1

        frames = split_frames(server.writer.writes[-1])
        assert [tag for tag, _ in frames] == [b"P", b"B", b"D", b"E", b"S"]
        parse_body = frames[0][1]
        assert b"INSERT INTO t (a, b) VALUES ($1, $2)" in parse_body
        assert parse_body.endswith(struct.pack(">hii", 2, INT8, 0))

    @pytest.mark.asyncio
    async def test_statement_error_is_raised_and_connection_survives(self, server, pg):
        server.send(server.failure("42P01", 'relation "t" does not exist'), server.ready())
        with pytest.raises(StatementError) as exc_info:
            await Postgres.query("DELETE FROM t").execute(pg)
        assert exc_info.value.sqlstate == "42P01"
        assert not pg.is_closed()

        server.send(server.command("DELETE 2"), server.ready())
        assert await Postgres.query("DELETE FROM u").execute(pg) == 2

    @pytest.mark.asyncio
    async def test_tracks_transaction_status(self, server, pg):
        server.send(server.command("BEGIN"), server.ready("T"))
        tx = await pg.begin()
        assert pg.in_transaction
        server.send(server.command("COMMIT"), server.ready("I"))
        await tx.commit()
        assert not pg.in_transaction

    @pytest.mark.asyncio
    async def test_notices_and_parameter_changes_are_absorbed(self, server, pg):
        server.send(
            server.notice("table does not exist, skipping"),
            server.parameter_status("TimeZone", "UTC"),
            server.command("DROP TABLE"),
            server.ready(),
        )
        assert await Postgres.query("DROP TABLE IF EXISTS t").execute(pg) == 0
        assert pg.parameters["TimeZone"] == "UTC"


class TestFetch:
    """Row-returning statements."""

    @pytest.mark.asyncio
    async def test_fetch_all_decodes(self, server, pg):
        server.send(
            server.select([("id", INT8), ("name", TEXT)], [(int8(1), b"ada"), (int8(2), b"bob")]),
            server.ready(),
        )
        users = await Postgres.query_as(User, "SELECT id, name FROM users").fetch_all(pg)
        assert users == [User(1, "ada"), User(2, "bob")]

    @pytest.mark.asyncio
    async def test_fetch_one_without_rows(self, server, pg):
        server.send(server.select([("id", INT8)], []), server.ready())
        with pytest.raises(NoRows):
            await Postgres.query("SELECT id FROM users WHERE false").fetch_one(pg)

    @pytest.mark.asyncio
    async def test_fetch_optional_takes_first_row_and_drains(self, server, pg):
        server.send(
            server.select([("id", INT8)], [(int8(1),), (int8(2),), (int8(3),)]),
            server.ready(),
        )
        assert await Postgres.query_as(int, "SELECT id FROM users").fetch_optional(pg) == 1

        server.send(server.command("UPDATE 3"), server.ready())
        assert await Postgres.query("UPDATE users SET x = 1").execute(pg) == 3
        assert pg._pending_syncs == 0

    @pytest.mark.asyncio
    async def test_error_after_rows(self, server, pg):
        server.send(
            server.row_description(("n", INT8)),
            server.data_row(int8(1)),
            server.error("22012", "division by zero"),
            server.ready(),
        )
        seen = []
        with pytest.raises(StatementError, match="division by zero"):
            async for n in Postgres.query_as(int, "SELECT 1 / (x - 1) FROM t").fetch(pg):
                seen.append(n)
        assert seen == [1]

    @pytest.mark.asyncio
    async def test_fetch_one_raises_error_after_first_row(self, server, pg):
        server.send(
            server.row_description(("n", INT8)),
            server.data_row(int8(1)),
            server.error("22012", "division by zero"),
            server.ready(),
        )
        with pytest.raises(StatementError) as exc_info:
            await Postgres.query_as(int, "SELECT 1 / (x - 1) FROM t").fetch_one(pg)
        assert exc_info.value.sqlstate == "22012"
        assert pg._pending_syncs == 0
        assert not pg.is_closed()

    @pytest.mark.asyncio
    async def test_fetch_one_consumes_its_sync(self, server, pg):
        server.send(server.select([("id", INT8)], [(int8(7),), (int8(8),)]), server.ready())
        assert await Postgres.query_as(int, "SELECT id FROM t").fetch_one(pg) == 7
        assert pg._pending_syncs == 0

    @pytest.mark.asyncio
    async def test_dropped_stream_then_new_command(self, server, pg):
        rows = [(int8(i),) for i in range(5)]
        server.send(server.select([("id", INT8)], rows), server.ready())
        stream = Postgres.query_as(int, "SELECT id FROM big").fetch(pg)
        async with aclosing(stream):
            async for value in stream:
                if value == 1:
                    break
        assert pg._pending_syncs == 1

        server.send(server.select([("count", INT8)], [(int8(5),)]), server.ready())
        count = await Postgres.query_as(int, "SELECT count(*) FROM big").fetch_one(pg)
        assert count == 5
        assert pg._pending_syncs == 0

    @pytest.mark.asyncio
    async def test_stream_holds_the_connection(self, server, pg):
        server.send(server.select([("id", INT8)], [(int8(1),), (int8(2),)]), server.ready())
        stream = Postgres.query_as(int, "SELECT id FROM t").fetch(pg)
        assert await anext(stream) == 1

        server.send(server.command("DELETE 1"), server.ready())
        other = asyncio.create_task(Postgres.query("DELETE FROM t").execute(pg))
        await asyncio.sleep(0)
        assert not other.done()

        assert [v async for v in stream] == [2]
        assert await other == 1


class TestBrokenConnection:
    """Transport failures."""

    @pytest.mark.asyncio
    async def test_eof_marks_connection_broken(self, server, pg):
        server.send(server.command("INSERT 0 1")[:7])
        server.eof()
        with pytest.raises(TransportError):
            await Postgres.query("INSERT INTO t VALUES (1)").execute(pg)
        assert pg.is_closed()
        with pytest.raises(TransportError, match="unusable"):
            await Postgres.query("SELECT 1").execute(pg)

    @pytest.mark.asyncio
    async def test_cancel_mid_message_marks_broken(self, server, pg):
        server.send(b"1" + struct.pack(">i", 100))
        task = asyncio.create_task(Postgres.query("SELECT 1").execute(pg))
        for _ in range(5):
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert pg.is_closed()

    @pytest.mark.asyncio
    async def test_unexpected_message_breaks_connection(self, server, pg):
        server.send(server.ready())
        with pytest.raises(TransportError, match="unexpected message"):
            await Postgres.query("SELECT 1").execute(pg)
        assert pg.is_closed()

    @pytest.mark.asyncio
    async def test_close_sends_terminate(self, server, pg, split_frames):
        await pg.close()
        assert split_frames(server.writer.writes[-1]) == [(b"X", b"")]
        assert server.writer.closed
        with pytest.raises(TransportError, match="closed"):
            await Postgres.query("SELECT 1").execute(pg)


class TestConnect:
    """Opening a real socket to a minimal in-process server."""

    @staticmethod
    async def _serve(reader, writer, answers):
        (length,) = struct.unpack(">i", await reader.readexactly(4))
        body = await reader.readexactly(length - 4)
        if struct.unpack(">i", body[:4])[0] == 80877103:
            writer.write(b"N")
            (length,) = struct.unpack(">i", await reader.readexactly(4))
            body = await reader.readexactly(length - 4)
        answers.append(body)
        writer.write(
            b"R" + struct.pack(">ii", 8, 0) + b"Z" + struct.pack(">i", 5) + b"I"
        )
        await writer.drain()
        answers.append(await reader.read(5))
        writer.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sslmode", ["disable", "prefer"])
    async def test_connect_and_close(self, sslmode):
        answers = []
        srv = await asyncio.start_server(
            lambda r, w: self._serve(r, w, answers), host="127.0.0.1", port=0
        )
        port = srv.sockets[0].getsockname()[1]
        async with srv:
            conn = await PgConnection.connect(
                f"postgres://app@127.0.0.1:{port}/db?sslmode={sslmode}"
            )
            assert not conn.in_transaction
            await conn.close()
            for _ in range(20):
                if len(answers) == 2:
                    break
                await asyncio.sleep(0.01)
        assert b"database\x00db\x00" in answers[0]
        assert answers[1] == b"X\x00\x00\x00\x04"

    @pytest.mark.asyncio
    async def test_require_ssl_refused(self):
        async def refuse(reader, writer):
            await reader.readexactly(8)
            writer.write(b"N")
            await writer.drain()
            writer.close()

        srv = await asyncio.start_server(refuse, host="127.0.0.1", port=0)
        port = srv.sockets[0].getsockname()[1]
        async with srv:
            with pytest.raises(TransportError, match="SSL"):
                await PgConnection.connect(f"postgres://app@127.0.0.1:{port}/db?sslmode=require")

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        srv = await asyncio.start_server(lambda r, w: None, host="127.0.0.1", port=0)
        port = srv.sockets[0].getsockname()[1]
        srv.close()
        await srv.wait_closed()
        with pytest.raises(TransportError, match="could not connect"):
            await PgConnection.connect(f"postgres://app@127.0.0.1:{port}/db?sslmode=disable")

"""Tests for the SQLite connection."""

from contextlib import aclosing
from dataclasses import dataclass

import pytest

from sqlweave.errors import ConfigurationError, StatementError, TransportError
from sqlweave.sqlite import Sqlite, SqliteConnection
from sqlweave.sqlite.connection import parse_url


@dataclass
class Item:
    id: int
    label: str


async def make_items(conn, count: int) -> None:
    await Sqlite.query("CREATE TABLE item (id INTEGER PRIMARY KEY, label TEXT NOT NULL)").execute(
        conn
    )
    for i in range(1, count + 1):
        await Sqlite.query("INSERT INTO item (id, label) VALUES (?, ?)").bind(i).bind(
            f"item {i}"
        ).execute(conn)


class TestParseUrl:
    """SQLite URL handling."""

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("sqlite::memory:", (":memory:", False)),
            (":memory:", (":memory:", False)),
            ("sqlite:data/app.db", ("data/app.db", False)),
            ("sqlite:///tmp/app.db", ("/tmp/app.db", False)),
            ("sqlite://app.db", ("app.db", False)),
            ("app.db", ("app.db", False)),
            ("sqlite:app.db?mode=ro", ("file:app.db?mode=ro", True)),
        ],
    )
    def test_forms(self, url, expected):
        assert parse_url(url) == expected

    def test_missing_path(self):
        with pytest.raises(ConfigurationError):
            parse_url("sqlite:")

    def test_other_scheme(self):
        with pytest.raises(ConfigurationError):
            parse_url("mysql://localhost/db")


@pytest.mark.asyncio
async def test_execute_returns_rows_affected(conn):
    await make_items(conn, 3)
    update = Sqlite.query("UPDATE item SET label = ? WHERE id > ?").bind("x").bind(1)
    updated = await update.execute(conn)
    assert updated == 2


@pytest.mark.asyncio
async def test_ddl_reports_zero_rows(conn):
    assert await Sqlite.query("CREATE TABLE t (x)").execute(conn) == 0


@pytest.mark.asyncio
async def test_fetch_all_into_dataclass(conn):
    await make_items(conn, 2)
    items = await Sqlite.query_as(Item, "SELECT id, label FROM item ORDER BY id").fetch_all(conn)
    assert items == [Item(1, "item 1"), Item(2, "item 2")]


@pytest.mark.asyncio
async def test_fetch_streams_in_batches(conn):
    await make_items(conn, 10)
    conn.fetch_size = 3
    ids = [i async for i in Sqlite.query_as(int, "SELECT id FROM item ORDER BY id").fetch(conn)]
    assert ids == list(range(1, 11))


@pytest.mark.asyncio
async def test_dropped_stream_does_not_affect_later_queries(conn):
    await make_items(conn, 10)
    conn.fetch_size = 2
    stream = Sqlite.query_as(int, "SELECT id FROM item ORDER BY id").fetch(conn)
    async with aclosing(stream) as rows:
        async for item_id in rows:
            if item_id == 3:
                break
    count = await Sqlite.query_as(int, "SELECT count(*) FROM item").fetch_one(conn)
    assert count == 10


@pytest.mark.asyncio
async def test_fetch_optional_discards_extra_rows(conn):
    await make_items(conn, 3)
    first = Sqlite.query_as(Item, "SELECT id, label FROM item ORDER BY id")
    item = await first.fetch_optional(conn)
    assert item == Item(1, "item 1")
    assert await Sqlite.query_as(int, "SELECT count(*) FROM item").fetch_one(conn) == 3


@pytest.mark.asyncio
async def test_statement_error_keeps_connection_usable(conn):
    await make_items(conn, 1)
    with pytest.raises(StatementError) as exc_info:
        insert = Sqlite.query("INSERT INTO item (id, label) VALUES (?, ?)").bind(1).bind("dup")
        await insert.execute(conn)
    assert exc_info.value.fields["class"] == "IntegrityError"
    assert await Sqlite.query_as(int, "SELECT count(*) FROM item").fetch_one(conn) == 1


@pytest.mark.asyncio
async def test_syntax_error_is_statement_error(conn):
    with pytest.raises(StatementError):
        await Sqlite.query("SELEC 1").fetch_all(conn)


@pytest.mark.asyncio
async def test_closed_connection_raises_transport_error():
    conn = await SqliteConnection.connect(":memory:")
    await conn.close()
    assert conn.is_closed()
    with pytest.raises(TransportError):
        await Sqlite.query("SELECT 1").execute(conn)
    await conn.close()


@pytest.mark.asyncio
async def test_file_database_is_created(tmp_path):
    path = tmp_path / "nested" / "app.db"
    async with await SqliteConnection.connect(f"sqlite:{path}") as conn:
        await Sqlite.query("CREATE TABLE t (x)").execute(conn)
    assert path.exists()


class TestTransactions:
    """Explicit transactions and savepoints."""

    @pytest.mark.asyncio
    async def test_commit(self, conn):
        await make_items(conn, 0)
        async with conn.begin() as tx:
            await Sqlite.query("INSERT INTO item VALUES (1, 'a')").execute(tx)
            assert conn.in_transaction
        assert not conn.in_transaction
        assert await Sqlite.query_as(int, "SELECT count(*) FROM item").fetch_one(conn) == 1

    @pytest.mark.asyncio
    async def test_rollback_on_exception(self, conn):
        await make_items(conn, 0)
        with pytest.raises(RuntimeError):
            async with conn.begin() as tx:
                await Sqlite.query("INSERT INTO item VALUES (1, 'a')").execute(tx)
                raise RuntimeError("abort")
        assert await Sqlite.query_as(int, "SELECT count(*) FROM item").fetch_one(conn) == 0

    @pytest.mark.asyncio
    async def test_awaited_begin_and_explicit_rollback(self, conn):
        await make_items(conn, 0)
        tx = await conn.begin()
        await Sqlite.query("INSERT INTO item VALUES (1, 'a')").execute(tx)
        await tx.rollback()
        assert not tx.is_active
        assert await Sqlite.query_as(int, "SELECT count(*) FROM item").fetch_one(conn) == 0

    @pytest.mark.asyncio
    async def test_nested_savepoint_rolls_back_alone(self, conn):
        await make_items(conn, 0)
        async with conn.begin() as outer:
            await Sqlite.query("INSERT INTO item VALUES (1, 'outer')").execute(outer)
            with pytest.raises(RuntimeError):
                async with outer.begin() as inner:
                    await Sqlite.query("INSERT INTO item VALUES (2, 'inner')").execute(inner)
                    raise RuntimeError("abort inner")
            assert conn.transaction_depth == 1
        labels = await Sqlite.query_as(str, "SELECT label FROM item").fetch_all(conn)
        assert labels == ["outer"]
        assert conn.transaction_depth == 0

    @pytest.mark.asyncio
    async def test_finished_transaction_rejects_queries(self, conn):
        tx = await conn.begin()
        await tx.commit()
        with pytest.raises(RuntimeError):
            await Sqlite.query("SELECT 1").execute(tx)

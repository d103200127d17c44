"""SQLite connection over aiosqlite.

The underlying connection runs in autocommit mode (``isolation_level=None``)
so transactions happen only when asked for. SQLite has no wire protocol to
pipeline over; ``run_pipeline`` runs the statements back to back and reports
them with the same outcome rules as the Postgres backend.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

import aiosqlite

from sqlweave.config import get_connect_timeout, get_fetch_size
from sqlweave.errors import ConfigurationError, DecodeError, StatementError, TransportError
from sqlweave.executor import Connection
from sqlweave.pipeline import Outcome, SyncMode, roll_back
from sqlweave.sqlite.backend import Sqlite
from sqlweave.sqlite.row import SqliteRow

if TYPE_CHECKING:
    from sqlweave.arguments import Arguments
    from sqlweave.query import Query

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


def parse_url(url: str) -> tuple[str, bool]:
    """Return ``(database, uri)`` for ``aiosqlite.connect``.

    Accepts ``sqlite::memory:``, ``sqlite:relative.db``, ``sqlite:///abs.db``,
    a bare path or ``:memory:``. A query string (``?mode=ro``) turns the
    target into a ``file:`` URI.
    """
    if url == MEMORY:
        return MEMORY, False
    if not url.startswith("sqlite:"):
        if "://" in url:
            raise ConfigurationError(f"not a SQLite URL: {url!r}")
        return url, False

    rest = url[len("sqlite:") :]
    if rest.startswith("//"):
        parts = urlsplit(url)
        path = parts.netloc + parts.path
        query = parts.query
    else:
        path, _, query = rest.partition("?")
    if not path:
        raise ConfigurationError(f"SQLite URL has no database path: {url!r}")
    if query:
        return f"file:{path}?{query}", True
    return path, False


def _statement_error(exc: sqlite3.Error) -> StatementError:
    name = getattr(exc, "sqlite_errorname", None)
    code = getattr(exc, "sqlite_errorcode", None)
    return StatementError(
        str(exc),
        fields={"code": code, "name": name, "class": type(exc).__name__},
    )


class SqliteConnection(Connection):
    """One aiosqlite connection with rows produced as ``SqliteRow``."""

    backend = Sqlite

    def __init__(self, conn: aiosqlite.Connection, database: str = MEMORY) -> None:
        """Initialize with an open aiosqlite connection."""
        super().__init__()
        self._conn = conn
        self.database = database
        self.fetch_size = get_fetch_size()

    def __repr__(self) -> str:
        state = "closed" if self.is_closed() else "open"
        return f"<SqliteConnection {self.database} {state}>"

    @classmethod
    async def connect(cls, url: str = "sqlite::memory:") -> SqliteConnection:
        """Open a database file (created if missing) or an in-memory database."""
        database, uri = parse_url(url)
        if database != MEMORY and not uri:
            Path(database).parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = await aiosqlite.connect(
                database, isolation_level=None, timeout=get_connect_timeout(), uri=uri
            )
        except sqlite3.Error as exc:
            raise TransportError(f"could not open {database}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        await conn.execute("PRAGMA foreign_keys=ON")
        logger.debug("Opened SQLite database %s", database)
        return cls(conn, database)

    @property
    def in_transaction(self) -> bool:
        """True while a transaction is open on the database."""
        return self._conn.in_transaction

    @contextmanager
    def _errors(self) -> Iterator[None]:
        """Translate sqlite3/aiosqlite exceptions into sqlweave errors."""
        try:
            yield
        except sqlite3.Error as exc:
            raise _statement_error(exc) from exc
        except ValueError as exc:
            # aiosqlite raises this once its worker thread has stopped
            if str(exc) == "no active connection":
                raise self._mark_broken("SQLite connection is no longer active") from exc
            raise StatementError(str(exc)) from exc

    async def _run(self, sql: str, values: list[Any]) -> tuple[list[sqlite3.Row], int]:
        with self._errors():
            cursor = await self._conn.execute(sql, values)
            try:
                rows = list(await cursor.fetchall())
                return rows, max(cursor.rowcount, 0)
            finally:
                await cursor.close()

    # -- Executor --

    async def execute(self, sql: str, arguments: Arguments) -> int:
        """Run a statement and return the affected-row count."""
        async with self._lock:
            self._ensure_open()
            _rows, rowcount = await self._run(sql, arguments.values)
        return rowcount

    async def fetch(  # type: ignore[override]
        self, sql: str, arguments: Arguments
    ) -> AsyncIterator[SqliteRow]:
        """Stream rows, reading ``fetch_size`` at a time from the cursor."""
        async with self._lock:
            self._ensure_open()
            with self._errors():
                cursor = await self._conn.execute(sql, arguments.values)
            try:
                while True:
                    with self._errors():
                        batch = await cursor.fetchmany(self.fetch_size)
                    if not batch:
                        break
                    for row in batch:
                        yield SqliteRow(row)
            finally:
                with self._errors():
                    await cursor.close()

    # -- Pipeline --

    async def run_pipeline(self, queries: list[Query[Any]], sync: SyncMode) -> list[Outcome]:
        """Run the statements in order and report one outcome each.

        ``EACH`` runs every statement on its own, inside an open transaction
        or not; SQLite keeps a transaction usable after a failed statement.
        ``BATCH`` runs them in one transaction (or inside the caller's) and
        stops at the first failure, rolling back the earlier ones if it
        opened the transaction.
        """
        async with self._lock:
            self._ensure_open()
            logger.debug("Running %d pipelined statement(s), sync=%s", len(queries), sync)
            if sync is SyncMode.BATCH:
                return await self._run_batch(queries)
            return await self._run_each(queries)

    async def _run_outcome(self, index: int, query: Query[Any]) -> Outcome:
        try:
            raw, rowcount = await self._run(query.sql, query.arguments.values)
        except StatementError as exc:
            return Outcome.failed(index, exc)
        try:
            rows = [query.decode(SqliteRow(row)) for row in raw]
        except DecodeError as exc:
            return Outcome.failed(index, exc)
        return Outcome.succeeded(index, rowcount, rows)

    async def _run_until_failure(
        self, queries: list[Query[Any]]
    ) -> tuple[list[Outcome], int | None]:
        outcomes: list[Outcome] = []
        failed_index: int | None = None
        for index, query in enumerate(queries):
            if failed_index is not None:
                outcomes.append(Outcome.skipped_after(index, failed_index))
                continue
            outcome = await self._run_outcome(index, query)
            if isinstance(outcome.error, StatementError):
                failed_index = index
            outcomes.append(outcome)
        return outcomes, failed_index

    async def _run_each(self, queries: list[Query[Any]]) -> list[Outcome]:
        return [await self._run_outcome(index, query) for index, query in enumerate(queries)]

    async def _run_batch(self, queries: list[Query[Any]]) -> list[Outcome]:
        if self.in_transaction:
            outcomes, _ = await self._run_until_failure(queries)
            return outcomes

        await self._run("BEGIN", [])
        try:
            outcomes, failed_index = await self._run_until_failure(queries)
        except BaseException:
            if not self.is_closed() and self.in_transaction:
                await self._run("ROLLBACK", [])
            raise
        if failed_index is None:
            await self._run("COMMIT", [])
        else:
            if self.in_transaction:
                await self._run("ROLLBACK", [])
            roll_back(outcomes, failed_index)
        return outcomes

    # -- Shutdown --

    async def _close(self) -> None:
        await self._conn.close()

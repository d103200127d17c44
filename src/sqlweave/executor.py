"""Executor contract, connection base class, and transactions.

An executor is anything that runs ``(sql, arguments)`` for one backend: a
live connection or an open transaction on one. A connection runs one
execution at a time; concurrent callers wait on its lock, and a ``fetch``
stream keeps the lock until the stream is exhausted or closed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Generator
from contextlib import aclosing
from types import TracebackType
from typing import TYPE_CHECKING, Any, ClassVar, Protocol, runtime_checkable

from sqlweave.errors import NoRows, TransportError

if TYPE_CHECKING:
    from sqlweave.arguments import Arguments
    from sqlweave.backend import Backend
    from sqlweave.pipeline import Outcome, SyncMode
    from sqlweave.query import Query
    from sqlweave.row import Row

logger = logging.getLogger(__name__)


@runtime_checkable
class Executor(Protocol):
    """Something that can run a statement against one backend."""

    @property
    def backend(self) -> Backend:
        """The backend this executor speaks."""
        ...

    async def execute(self, sql: str, arguments: Arguments) -> int:
        """Run a statement and return the affected-row count."""
        ...

    def fetch(self, sql: str, arguments: Arguments) -> AsyncIterator[Row]:
        """Stream raw rows."""
        ...

    async def fetch_all(self, sql: str, arguments: Arguments) -> list[Row]:
        """Return all raw rows."""
        ...

    async def fetch_one(self, sql: str, arguments: Arguments) -> Row:
        """Return the first raw row or raise ``NoRows``."""
        ...

    async def fetch_optional(self, sql: str, arguments: Arguments) -> Row | None:
        """Return the first raw row or None."""
        ...

    async def run_pipeline(self, queries: list[Query[Any]], sync: SyncMode) -> list[Outcome]:
        """Run several queries as one batch; see ``sqlweave.pipeline``."""
        ...


class Connection:
    """Base class for backend connections.

    Subclasses implement ``execute``, ``fetch``, ``run_pipeline`` and
    ``_close``; the fetch helpers and transaction support live here.
    """

    backend: ClassVar[Backend]

    def __init__(self) -> None:
        """Initialize connection state shared by all backends."""
        self._lock = asyncio.Lock()
        self._closed = False
        self._broken = False
        self.transaction_depth = 0

    async def __aenter__(self) -> Connection:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def is_closed(self) -> bool:
        """True once the connection was closed or marked broken."""
        return self._closed or self._broken

    def _ensure_open(self) -> None:
        if self._broken:
            raise TransportError("connection is unusable after an earlier failure")
        if self._closed:
            raise TransportError("connection is closed")

    def _mark_broken(self, reason: str) -> TransportError:
        """Flag the connection unusable and return the error to raise."""
        if not self._broken:
            logger.warning("Connection marked unusable: %s", reason)
        self._broken = True
        return TransportError(reason)

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self._close()

    async def _close(self) -> None:
        raise NotImplementedError

    async def execute(self, sql: str, arguments: Arguments) -> int:
        """Run a statement and return the affected-row count."""
        raise NotImplementedError

    def fetch(self, sql: str, arguments: Arguments) -> AsyncIterator[Row]:
        """Stream raw rows."""
        raise NotImplementedError

    async def run_pipeline(self, queries: list[Query[Any]], sync: SyncMode) -> list[Outcome]:
        """Run several queries as one batch."""
        raise NotImplementedError

    async def fetch_all(self, sql: str, arguments: Arguments) -> list[Row]:
        """Return all raw rows."""
        async with aclosing(self.fetch(sql, arguments)) as rows:  # type: ignore[type-var]
            return [row async for row in rows]

    async def fetch_optional(self, sql: str, arguments: Arguments) -> Row | None:
        """Return the first raw row or None; later rows are discarded."""
        async with aclosing(self.fetch(sql, arguments)) as rows:  # type: ignore[type-var]
            async for row in rows:
                return row
        return None

    async def fetch_one(self, sql: str, arguments: Arguments) -> Row:
        """Return the first raw row or raise ``NoRows``."""
        row = await self.fetch_optional(sql, arguments)
        if row is None:
            raise NoRows()
        return row

    def begin(self) -> Transaction:
        """Start a transaction (``async with`` or ``await``)."""
        return Transaction(self)


class Transaction:
    """An explicit transaction on one connection.

    Use as ``async with conn.begin() as tx:`` (commits on normal exit, rolls
    back on exception) or ``tx = await conn.begin()`` followed by ``commit()``
    or ``rollback()``. Calling ``begin()`` while a transaction is already open
    on the connection creates a savepoint instead.
    """

    def __init__(self, parent: Connection | Transaction) -> None:
        """Initialize for the connection behind ``parent``; nothing is sent yet."""
        self.connection: Connection = (
            parent.connection if isinstance(parent, Transaction) else parent
        )
        self._savepoint: str | None = None
        self._active = False
        self._finished = False

    def __repr__(self) -> str:
        state = "active" if self._active else ("finished" if self._finished else "new")
        return f"<Transaction {self.backend.name} {state}>"

    @property
    def backend(self) -> Backend:
        """The backend of the underlying connection."""
        return self.connection.backend

    @property
    def is_active(self) -> bool:
        """True between a successful start and commit/rollback."""
        return self._active

    async def _run(self, sql: str) -> None:
        await self.connection.execute(sql, self.backend.arguments())

    async def start(self) -> Transaction:
        """Send BEGIN (or SAVEPOINT when nested)."""
        if self._active or self._finished:
            raise RuntimeError("transaction already started")
        depth = self.connection.transaction_depth + 1
        if depth == 1:
            await self._run("BEGIN")
        else:
            self._savepoint = f"sqlweave_savepoint_{depth}"
            await self._run(f"SAVEPOINT {self._savepoint}")
        self.connection.transaction_depth = depth
        self._active = True
        return self

    def __await__(self) -> Generator[Any, None, Transaction]:
        return self.start().__await__()

    async def __aenter__(self) -> Transaction:
        if not self._active:
            await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if not self._active:
            return
        if exc_type is None:
            await self.commit()
        elif self.connection.is_closed():
            self._finish()
            logger.debug("Skipping rollback on closed connection")
        else:
            await self.rollback()

    def _finish(self) -> None:
        self._active = False
        self._finished = True
        self.connection.transaction_depth -= 1

    def _ensure_active(self) -> None:
        if not self._active:
            raise RuntimeError("transaction is not active")

    async def commit(self) -> None:
        """Send COMMIT (or RELEASE SAVEPOINT)."""
        self._ensure_active()
        try:
            if self._savepoint is None:
                await self._run("COMMIT")
            else:
                await self._run(f"RELEASE SAVEPOINT {self._savepoint}")
        finally:
            self._finish()

    async def rollback(self) -> None:
        """Send ROLLBACK (or roll back to and release the savepoint)."""
        self._ensure_active()
        try:
            if self._savepoint is None:
                await self._run("ROLLBACK")
            else:
                await self._run(f"ROLLBACK TO SAVEPOINT {self._savepoint}")
                await self._run(f"RELEASE SAVEPOINT {self._savepoint}")
        finally:
            self._finish()

    def begin(self) -> Transaction:
        """Start a nested transaction backed by a savepoint."""
        return Transaction(self)

    # -- Executor --

    async def execute(self, sql: str, arguments: Arguments) -> int:
        """Run a statement inside the transaction."""
        self._ensure_active()
        return await self.connection.execute(sql, arguments)

    def fetch(self, sql: str, arguments: Arguments) -> AsyncIterator[Row]:
        """Stream raw rows inside the transaction."""
        self._ensure_active()
        return self.connection.fetch(sql, arguments)

    async def fetch_all(self, sql: str, arguments: Arguments) -> list[Row]:
        """Return all raw rows."""
        self._ensure_active()
        return await self.connection.fetch_all(sql, arguments)

    async def fetch_one(self, sql: str, arguments: Arguments) -> Row:
        """Return the first raw row or raise ``NoRows``."""
        self._ensure_active()
        return await self.connection.fetch_one(sql, arguments)

    async def fetch_optional(self, sql: str, arguments: Arguments) -> Row | None:
        """Return the first raw row or None."""
        self._ensure_active()
        return await self.connection.fetch_optional(sql, arguments)

    async def run_pipeline(self, queries: list[Query[Any]], sync: SyncMode) -> list[Outcome]:
        """Run a pipeline inside the transaction."""
        self._ensure_active()
        return await self.connection.run_pipeline(queries, sync)

"""Query builder: SQL text, bound parameters, and a decode target."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from typing import TYPE_CHECKING, Any, Generic, TypeVar, overload

from sqlweave.errors import QueryConsumedError
from sqlweave.row import Row, decoder_for

if TYPE_CHECKING:
    from sqlweave.arguments import Arguments
    from sqlweave.backend import Backend
    from sqlweave.executor import Executor

T = TypeVar("T")


class Query(Generic[T]):
    """A statement ready to be bound and executed once.

    ``bind`` appends the next positional parameter and returns the same
    query, so calls chain. Executing, fetching, or pushing the query into a
    pipeline consumes it; using it again raises ``QueryConsumedError``.
    """

    def __init__(self, sql: str, backend: Backend, target: Any = None) -> None:
        """Initialize with SQL text, its backend and an optional row target."""
        self.sql = sql
        self.backend = backend
        self.target = target
        self.arguments: Arguments = backend.arguments()
        self.decode: Callable[[Row], T] = decoder_for(target)
        self._consumed = False

    def __repr__(self) -> str:
        state = "consumed" if self._consumed else f"{len(self.arguments)} bound"
        return f"<Query {self.backend.name} {self.sql!r} ({state})>"

    @property
    def consumed(self) -> bool:
        """True once the query has been executed or pushed into a pipeline."""
        return self._consumed

    def _ensure_unconsumed(self) -> None:
        if self._consumed:
            raise QueryConsumedError(f"query already used: {self.sql!r}")

    def bind(self, value: Any) -> Query[T]:
        """Encode ``value`` as the next positional parameter."""
        self._ensure_unconsumed()
        self.arguments.add(value)
        return self

    def take(self, backend: Backend) -> tuple[str, Arguments]:
        """Validate against ``backend`` and hand over the SQL and parameters.

        Marks the query consumed. Checks run first, so a query rejected for a
        parameter-count or backend mismatch can still be fixed and reused.
        """
        self._ensure_unconsumed()
        self.backend.check_same(backend, "executor")
        self.backend.check_arguments(self.sql, self.arguments)
        self._consumed = True
        return self.sql, self.arguments

    async def execute(self, executor: Executor) -> int:
        """Run the statement, discard any rows, and return the affected-row count."""
        sql, arguments = self.take(executor.backend)
        return await executor.execute(sql, arguments)

    def fetch(self, executor: Executor) -> AsyncIterator[T]:
        """Stream decoded rows as they arrive.

        The stream holds the connection until it is exhausted or closed; close
        it (``aclose()`` or ``contextlib.aclosing``) before running anything
        else on the same connection from the same task.
        """
        sql, arguments = self.take(executor.backend)
        return _decoded(executor.fetch(sql, arguments), self.decode)

    async def fetch_all(self, executor: Executor) -> list[T]:
        """Return every row, decoded. Any decode failure fails the whole call."""
        sql, arguments = self.take(executor.backend)
        rows = await executor.fetch_all(sql, arguments)
        return [self.decode(row) for row in rows]

    async def fetch_one(self, executor: Executor) -> T:
        """Return the first row, raising ``NoRows`` if there is none."""
        sql, arguments = self.take(executor.backend)
        return self.decode(await executor.fetch_one(sql, arguments))

    async def fetch_optional(self, executor: Executor) -> T | None:
        """Return the first row, or None when the statement returns no rows.

        Further rows are discarded rather than rejected; callers that need
        "at most one row" must check that themselves.
        """
        sql, arguments = self.take(executor.backend)
        row = await executor.fetch_optional(sql, arguments)
        return None if row is None else self.decode(row)


async def _decoded(rows: AsyncIterator[Row], decode: Callable[[Row], T]) -> AsyncIterator[T]:
    async with aclosing(rows):  # type: ignore[type-var]
        async for row in rows:
            yield decode(row)


@overload
def query(sql: str, *, backend: Backend) -> Query[Row]: ...


@overload
def query(sql: str, *, backend: Backend, target: type[T]) -> Query[T]: ...


def query(sql: str, *, backend: Backend, target: Any = None) -> Query[Any]:
    """Construct a query for ``backend`` from raw SQL."""
    return Query(sql, backend, target)


def query_as(target: type[T], sql: str, *, backend: Backend) -> Query[T]:
    """Construct a query whose rows are decoded into ``target``."""
    return Query(sql, backend, target)

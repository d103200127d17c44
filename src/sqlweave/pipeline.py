"""Extended-query pipeline.

A ``Pipeline`` batches up to ``capacity`` independent queries for one
backend. ``execute`` sends them all before reading any response and returns
one ``Outcome`` per query, in push order, even when some of them fail.

Two synchronization modes are available:

- ``SyncMode.EACH`` closes every statement with its own Sync. Each statement
  runs in its own implicit transaction and a failure leaves its siblings
  alone. Inside an explicit transaction the server rejects everything after
  a failure; those statements are reported ``SKIPPED``.
- ``SyncMode.BATCH`` sends a single Sync after the last statement. The batch
  is one implicit transaction: after a failure the server ignores the rest
  (``SKIPPED``) and, outside an explicit transaction, undoes the statements
  that had already run (``ROLLED_BACK``).

The pipeline never adds atomicity of its own; wrap it in a transaction when
all-or-nothing behaviour is needed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from sqlweave.errors import (
    BackendMismatchError,
    CapacityExceeded,
    QueryConsumedError,
    StatementRolledBack,
    StatementSkipped,
)

if TYPE_CHECKING:
    from sqlweave.executor import Executor
    from sqlweave.query import Query

logger = logging.getLogger(__name__)


class SyncMode(StrEnum):
    """Where the pipeline places synchronization points."""

    EACH = "each"
    BATCH = "batch"


class StatementStatus(StrEnum):
    """What happened to one pipelined statement."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    ROLLED_BACK = "rolled_back"


@dataclass
class Outcome:
    """Result of one statement in a pipeline.

    ``rows`` holds the statement's rows decoded through its query's target;
    it is empty for statements that return no rows.
    """

    index: int
    status: StatementStatus
    rows_affected: int = 0
    rows: list[Any] = field(default_factory=list)
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        """True if the statement ran and its effects stand."""
        return self.status is StatementStatus.SUCCEEDED

    @property
    def skipped(self) -> bool:
        """True if the server never executed the statement."""
        return self.status is StatementStatus.SKIPPED

    def unwrap(self) -> Outcome:
        """Return self, or raise the recorded error."""
        if self.error is not None:
            raise self.error
        return self

    @classmethod
    def succeeded(cls, index: int, rows_affected: int, rows: list[Any]) -> Outcome:
        """Build a successful outcome."""
        return cls(index, StatementStatus.SUCCEEDED, rows_affected, rows)

    @classmethod
    def failed(cls, index: int, error: Exception) -> Outcome:
        """Build an outcome for a statement that ran and failed."""
        return cls(index, StatementStatus.FAILED, error=error)

    @classmethod
    def skipped_after(cls, index: int, failed_index: int) -> Outcome:
        """Build an outcome for a statement the server did not execute."""
        return cls(
            index, StatementStatus.SKIPPED, error=StatementSkipped(index, failed_index)
        )


def roll_back(outcomes: list[Outcome], failed_index: int) -> None:
    """Mark successful outcomes before ``failed_index`` as rolled back."""
    for outcome in outcomes[:failed_index]:
        if outcome.status is StatementStatus.SUCCEEDED:
            outcome.status = StatementStatus.ROLLED_BACK
            outcome.error = StatementRolledBack(outcome.index, failed_index)


class Pipeline:
    """An ordered, fixed-capacity batch of queries for one backend.

    The seed query takes position 0 and fixes the backend; ``push`` appends
    until ``capacity`` queries are held. Queries are consumed when they enter
    the pipeline, and the pipeline itself is consumed by ``execute``.
    """

    def __init__(
        self, first: Query[Any], capacity: int, *, sync: SyncMode = SyncMode.EACH
    ) -> None:
        """Initialize with the seed query and a fixed capacity."""
        if capacity < 1:
            raise ValueError("pipeline capacity must be at least 1")
        if not first.backend.supports_pipelining:
            raise BackendMismatchError(f"{first.backend.name} does not support pipelining")
        self.backend = first.backend
        self.capacity = capacity
        self.sync = SyncMode(sync)
        self._queries: list[Query[Any]] = []
        self._consumed = False
        self.push(first)

    @classmethod
    def from_query(
        cls, first: Query[Any], capacity: int, *, sync: SyncMode = SyncMode.EACH
    ) -> Pipeline:
        """Create a pipeline seeded with ``first``."""
        return cls(first, capacity, sync=sync)

    def __len__(self) -> int:
        return len(self._queries)

    def __repr__(self) -> str:
        return f"<Pipeline {self.backend.name} {len(self)}/{self.capacity} sync={self.sync}>"

    @property
    def queries(self) -> tuple[Query[Any], ...]:
        """The queued queries in push order."""
        return tuple(self._queries)

    def is_full(self) -> bool:
        """True when no more queries can be pushed."""
        return len(self._queries) >= self.capacity

    def push(self, query: Query[Any]) -> Pipeline:
        """Append ``query`` at the next position.

        Raises ``CapacityExceeded`` when full (the query is left unconsumed),
        ``BackendMismatchError`` for another backend's query, and
        ``ParameterCountError`` if its bound values do not match its SQL.
        """
        if self._consumed:
            raise QueryConsumedError("pipeline already executed")
        if self.is_full():
            raise CapacityExceeded(self.capacity)
        query.take(self.backend)
        self._queries.append(query)
        return self

    async def execute(self, executor: Executor) -> list[Outcome]:
        """Send every query in one batch and return their outcomes in order.

        Statement-level failures are reported in the outcomes. A
        ``TransportError`` aborts the batch and is raised.
        """
        if self._consumed:
            raise QueryConsumedError("pipeline already executed")
        self.backend.check_same(executor.backend, "executor")
        self._consumed = True

        logger.debug("Executing pipeline of %d statement(s), sync=%s", len(self), self.sync)
        outcomes = await executor.run_pipeline(list(self._queries), self.sync)
        if len(outcomes) != len(self._queries):
            raise RuntimeError(
                f"pipeline produced {len(outcomes)} outcome(s) for {len(self._queries)} queries"
            )
        return outcomes

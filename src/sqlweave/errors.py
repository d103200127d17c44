"""Exception hierarchy shared by every backend.

Per-row and per-statement failures are raised (or, inside a pipeline,
reported) individually. ``TransportError`` means the connection itself
failed and must be discarded.
"""

from __future__ import annotations

from typing import Any


class Error(Exception):
    """Base class for all sqlweave errors."""


class ConfigurationError(Error):
    """Invalid connection URL or option."""


class EncodeError(Error):
    """A bind value could not be encoded for the backend (e.g. out of range)."""


class UnsupportedTypeError(EncodeError, TypeError):
    """The backend has no SQL type mapping for a Python type."""

    def __init__(self, backend: str, py_type: type) -> None:
        """Initialize with the backend name and the rejected type."""
        self.backend = backend
        self.py_type = py_type
        super().__init__(f"{backend} has no SQL type for {py_type.__qualname__}")


class BackendMismatchError(Error, TypeError):
    """A query, executor, or pipeline belong to different backends."""


class DecodeError(Error):
    """A result column could not be decoded into the requested type."""

    def __init__(
        self,
        message: str,
        *,
        column: int | str | None = None,
        expected: str | None = None,
        actual: str | None = None,
    ) -> None:
        """Initialize with optional column context."""
        self.column = column
        self.expected = expected
        self.actual = actual
        if column is not None:
            message = f"column {column!r}: {message}"
        super().__init__(message)


class TransportError(Error):
    """I/O or protocol failure. The connection is no longer usable."""


class AuthenticationError(TransportError):
    """The server rejected the credentials or asked for an unsupported method."""


class CapacityExceeded(Error):
    """A pipeline already holds as many statements as its capacity allows."""

    def __init__(self, capacity: int) -> None:
        """Initialize with the pipeline capacity."""
        self.capacity = capacity
        super().__init__(f"pipeline is full (capacity {capacity})")


class NoRows(Error):
    """``fetch_one`` found no rows."""

    def __init__(self) -> None:
        """Initialize with a fixed message."""
        super().__init__("query returned no rows")


class ParameterCountError(Error):
    """The number of bound values differs from the placeholders in the SQL."""

    def __init__(self, expected: int, actual: int) -> None:
        """Initialize with the placeholder and bound-value counts."""
        self.expected = expected
        self.actual = actual
        super().__init__(f"statement expects {expected} parameter(s), {actual} bound")


class QueryConsumedError(Error):
    """A query was used again after it was executed or pushed into a pipeline."""


class StatementError(Error):
    """The backend reported a failure executing a statement.

    ``fields`` holds the backend-native error detail; for Postgres these are
    the ErrorResponse fields keyed by their one-letter codes.
    """

    def __init__(
        self,
        message: str,
        *,
        sqlstate: str | None = None,
        detail: str | None = None,
        hint: str | None = None,
        fields: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with the server message and optional details."""
        self.message = message
        self.sqlstate = sqlstate
        self.detail = detail
        self.hint = hint
        self.fields = fields or {}
        text = f"{message} (SQLSTATE {sqlstate})" if sqlstate else message
        super().__init__(text)


class StatementRolledBack(Error):
    """A pipelined statement ran, but a later failure rolled its batch back."""

    def __init__(self, index: int, failed_index: int) -> None:
        """Initialize with this statement's index and the failing statement's."""
        self.index = index
        self.failed_index = failed_index
        super().__init__(
            f"statement {index} rolled back: statement {failed_index} in the same batch failed"
        )


class StatementSkipped(Error):
    """A pipelined statement was not executed because an earlier one failed."""

    def __init__(self, index: int, failed_index: int) -> None:
        """Initialize with this statement's index and the failing statement's."""
        self.index = index
        self.failed_index = failed_index
        super().__init__(
            f"statement {index} skipped: statement {failed_index} in the same batch failed"
        )

"""Backend capability descriptor.

A ``Backend`` identifies one wire-protocol family and owns the mapping from
Python types to that protocol's SQL types. Queries, pipelines and executors
all carry a backend; combining two different backends raises
``BackendMismatchError`` before any I/O happens.

Python has no compile-time check for "this backend can encode T", so the
mapping is consulted when a value is bound: ``Query.bind`` raises
``UnsupportedTypeError`` immediately, not when the statement is sent.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

from sqlweave.errors import BackendMismatchError, ParameterCountError, UnsupportedTypeError
from sqlweave.placeholders import PlaceholderStyle, count_placeholders

if TYPE_CHECKING:
    from sqlweave.arguments import Arguments
    from sqlweave.query import Query
    from sqlweave.row import Row

T = TypeVar("T")


@dataclass(frozen=True)
class TypeInfo:
    """How one Python type is written to a backend's wire format.

    ``type_id`` is the backend's identifier for the SQL type (a type OID for
    Postgres, a storage class for SQLite). ``encode`` turns a Python value
    into the encoded form placed in the parameter buffer.
    """

    name: str
    type_id: Any
    encode: Callable[[Any], Any]


class Backend:
    """Base class for backend descriptors.

    Subclasses set the class attributes and register their default type
    mappings in ``_register_defaults``.
    """

    name: ClassVar[str]
    placeholder_style: ClassVar[PlaceholderStyle]
    row_type: ClassVar[type]
    supports_pipelining: ClassVar[bool] = True
    null_type_id: ClassVar[Any] = None

    def __init__(self) -> None:
        """Initialize the type registry with the backend's defaults."""
        self._types: dict[type, TypeInfo] = {}
        self._register_defaults()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    def _register_defaults(self) -> None:
        """Populate ``self._types``. Overridden per backend."""

    # -- HasSqlType --

    def register_type(self, py_type: type, info: TypeInfo) -> None:
        """Map ``py_type`` (and its subclasses) to a SQL type."""
        self._types[py_type] = info

    def type_info(self, py_type: type) -> TypeInfo:
        """Return the mapping for ``py_type``, following its MRO."""
        for klass in py_type.__mro__:
            info = self._types.get(klass)
            if info is not None:
                return info
        raise UnsupportedTypeError(self.name, py_type)

    def has_sql_type(self, py_type: type) -> bool:
        """Return True if values of ``py_type`` can be bound."""
        try:
            self.type_info(py_type)
        except UnsupportedTypeError:
            return False
        return True

    # -- Encode --

    def encode(self, value: Any) -> tuple[Any, Any]:
        """Encode one bind value into ``(type_id, encoded)``.

        ``None`` is always accepted and encodes as SQL NULL.
        """
        if value is None:
            return self.null_type_id, None
        info = self.type_info(type(value))
        return info.type_id, info.encode(value)

    def arguments(self) -> Arguments:
        """Create an empty parameter buffer for this backend."""
        from sqlweave.arguments import Arguments

        return Arguments(self)

    def check_arguments(self, sql: str, arguments: Arguments) -> None:
        """Raise ``ParameterCountError`` unless the bound count matches the SQL."""
        expected = count_placeholders(sql, self.placeholder_style)
        if expected != len(arguments):
            raise ParameterCountError(expected, len(arguments))

    def check_same(self, other: Backend, what: str) -> None:
        """Raise ``BackendMismatchError`` if ``other`` is a different backend."""
        if other is not self:
            raise BackendMismatchError(f"{what} uses {other.name}, expected {self.name}")

    # -- Query construction --

    def query(self, sql: str) -> Query[Row]:
        """Start a query returning raw rows."""
        from sqlweave.query import Query

        return Query(sql, self)

    def query_as(self, target: type[T], sql: str) -> Query[T]:
        """Start a query whose rows are decoded into ``target``."""
        from sqlweave.query import Query

        return Query(sql, self, target)

"""Row access and the row-decoder contract.

Backends produce rows implementing the ``Row`` protocol. ``decoder_for``
turns a query's target type into a callable converting one raw row into a
target value. Shape mismatches (missing or extra columns, wrong column count)
raise ``DecodeError``; nothing is filled in with defaults.
"""

from __future__ import annotations

import dataclasses
import types
import typing
from collections.abc import Callable, Iterator
from functools import partial
from typing import Any, ClassVar, Protocol, Union, get_args, get_origin, runtime_checkable

from pydantic import BaseModel, ValidationError

from sqlweave.errors import DecodeError


@runtime_checkable
class Row(Protocol):
    """A result row supporting both named and positional access."""

    def __getitem__(self, key: str | int) -> Any:
        """Get a column value by name or position, decoded by its wire type."""
        ...

    def __len__(self) -> int:
        """Return the number of columns."""
        ...

    def keys(self) -> list[str]:
        """Return column names."""
        ...

    def type_name(self, key: str | int) -> str:
        """Return the wire type name of a column."""
        ...

    def can_decode(self, py_type: Any) -> bool:
        """Return True if ``get`` knows how to produce ``py_type``."""
        ...

    def get(self, key: str | int, py_type: Any = object) -> Any:
        """Decode one column into ``py_type``."""
        ...


@runtime_checkable
class FromRow(Protocol):
    """A target type that knows how to build itself from a row."""

    @classmethod
    def from_row(cls, row: Row) -> Any:
        """Build an instance from ``row``, raising ``DecodeError`` on mismatch."""
        ...


def split_optional(py_type: Any) -> tuple[Any, bool]:
    """Split ``T | None`` into ``(T, True)``; other types give ``(type, False)``."""
    if py_type is Any:
        return object, True
    if get_origin(py_type) in (Union, types.UnionType):
        args = get_args(py_type)
        non_null = [a for a in args if a is not type(None)]
        nullable = len(non_null) != len(args)
        if len(non_null) == 1:
            return non_null[0], nullable
        return py_type, nullable
    return py_type, False


def _type_label(py_type: Any) -> str:
    return getattr(py_type, "__name__", repr(py_type))


class ColumnRow:
    """Column lookup and typed access shared by the backend row classes.

    Subclasses set ``decodable`` to the Python types they can produce and
    implement ``_raw``, ``_decode_default``, ``_decode_as`` and ``type_name``.
    """

    decodable: ClassVar[tuple[type, ...]] = ()
    _names: list[str]

    def keys(self) -> list[str]:
        """Return column names."""
        return list(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self) -> Iterator[Any]:
        return (self[i] for i in range(len(self._names)))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.to_dict()!r}>"

    def to_dict(self) -> dict[str, Any]:
        """Return ``{column name: value}`` with default decoding."""
        return {name: self[i] for i, name in enumerate(self._names)}

    def index_of(self, key: str | int) -> int:
        """Resolve a column name or position to a position."""
        if isinstance(key, int):
            if 0 <= key < len(self._names):
                return key
            raise DecodeError(f"index out of range for {len(self._names)} columns", column=key)
        try:
            return self._names.index(key)
        except ValueError:
            raise DecodeError("no such column", column=key) from None

    def __getitem__(self, key: str | int) -> Any:
        index = self.index_of(key)
        if self._raw(index) is None:
            return None
        return self._decode_default(index)

    def _base_type(self, py_type: Any) -> type | None:
        """Return the decodable type ``py_type`` is built from, if any."""
        klass = get_origin(py_type) or py_type
        if not isinstance(klass, type):
            return None
        for base in klass.__mro__:
            if base in self.decodable:
                return base
        return None

    def can_decode(self, py_type: Any) -> bool:
        """Return True if ``get`` knows how to produce ``py_type``."""
        inner, _ = split_optional(py_type)
        return inner is object or self._base_type(inner) is not None

    def get(self, key: str | int, py_type: Any = object) -> Any:
        """Decode one column into ``py_type``.

        ``T | None`` accepts NULL; a bare ``T`` raises ``DecodeError`` on NULL.
        Subclasses of a decodable type (``StrEnum``, ``IntEnum``) are decoded
        through their base and then constructed from the base value.
        """
        index = self.index_of(key)
        inner, nullable = split_optional(py_type)
        if self._raw(index) is None:
            if nullable or inner is object:
                return None
            raise DecodeError(
                "unexpected NULL",
                column=key,
                expected=_type_label(inner),
                actual="NULL",
            )
        if inner is object:
            return self._decode_default(index)

        base = self._base_type(inner)
        if base is None:
            raise DecodeError(
                "no decoder for this type",
                column=key,
                expected=_type_label(inner),
                actual=self.type_name(index),
            )
        value = self._decode_as(index, base)
        if base is inner or get_origin(inner) is not None:
            return value
        try:
            return inner(value)
        except (TypeError, ValueError) as exc:
            raise DecodeError(
                str(exc), column=key, expected=_type_label(inner), actual=self.type_name(index)
            ) from exc

    def type_name(self, key: str | int) -> str:
        """Return the wire type name of a column."""
        raise NotImplementedError

    def _raw(self, index: int) -> Any:
        raise NotImplementedError

    def _decode_default(self, index: int) -> Any:
        raise NotImplementedError

    def _decode_as(self, index: int, py_type: type) -> Any:
        raise NotImplementedError


# -- Decoders --


def _raw_row(row: Row) -> Row:
    return row


def _check_shape(row: Row, expected: list[str], label: str) -> None:
    names = row.keys()
    for column in expected:
        if column not in names:
            raise DecodeError(f"{label} expects this column but the row lacks it", column=column)
    for column in names:
        if column not in expected:
            raise DecodeError(f"{label} has no field for this column", column=column)


def _column_value(row: Row, column: str, annotation: Any) -> Any:
    if row.can_decode(annotation):
        return row.get(column, annotation)
    return row[column]


def _decode_scalar(target: Any, row: Row) -> Any:
    if len(row) != 1:
        raise DecodeError(f"expected 1 column for {_type_label(target)}, got {len(row)}")
    return row.get(0, target)


def _decode_tuple(item_types: tuple[Any, ...], row: Row) -> tuple[Any, ...]:
    if len(item_types) == 2 and item_types[1] is Ellipsis:
        return tuple(row.get(i, item_types[0]) for i in range(len(row)))
    if len(row) != len(item_types):
        raise DecodeError(f"expected {len(item_types)} columns, got {len(row)}")
    return tuple(row.get(i, t) for i, t in enumerate(item_types))


def _decode_dataclass(cls: type, fields: dict[str, Any], row: Row) -> Any:
    _check_shape(row, list(fields), cls.__name__)
    values = {name: _column_value(row, name, ann) for name, ann in fields.items()}
    try:
        return cls(**values)
    except (TypeError, ValueError) as exc:
        raise DecodeError(str(exc), expected=cls.__name__) from exc


def _decode_from_row(from_row: Callable[[Row], Any], label: str, row: Row) -> Any:
    try:
        return from_row(row)
    except DecodeError:
        raise
    except (TypeError, ValueError, KeyError) as exc:
        raise DecodeError(str(exc), expected=label) from exc


def _decode_model(model: type[BaseModel], columns: dict[str, Any], row: Row) -> BaseModel:
    _check_shape(row, list(columns), model.__name__)
    values = {column: _column_value(row, column, ann) for column, ann in columns.items()}
    try:
        return model.model_validate(values)
    except ValidationError as exc:
        first = exc.errors()[0]
        loc = first["loc"][0] if first["loc"] else None
        raise DecodeError(first["msg"], column=loc, expected=first["type"]) from exc


def decoder_for(target: Any) -> Callable[[Row], Any]:
    """Return a callable that converts one raw row into ``target``.

    ``None`` or a row class keeps raw rows. Classes with a ``from_row``
    classmethod, pydantic models, dataclasses, ``tuple[...]`` and single
    scalar types are supported.
    """
    if target is None or target is Row:
        return _raw_row
    if isinstance(target, type):
        if issubclass(target, ColumnRow):
            return _raw_row
        from_row = getattr(target, "from_row", None)
        if callable(from_row):
            return partial(_decode_from_row, from_row, target.__name__)
        if issubclass(target, BaseModel):
            columns = {
                info.alias or name: info.annotation for name, info in target.model_fields.items()
            }
            return partial(_decode_model, target, columns)
        if dataclasses.is_dataclass(target):
            hints = typing.get_type_hints(target)
            fields = {f.name: hints.get(f.name, Any) for f in dataclasses.fields(target) if f.init}
            return partial(_decode_dataclass, target, fields)
        if target is tuple:
            return tuple
    if get_origin(target) is tuple:
        return partial(_decode_tuple, get_args(target))
    return partial(_decode_scalar, target)

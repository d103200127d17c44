"""Parameter buffer: positional, already-encoded bind values."""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sqlweave.backend import Backend


class Arguments:
    """Ordered bind values for one statement.

    Entry ``i`` is the value for placeholder ``i + 1``. Values are encoded by
    the owning backend as they are added, so a buffer only ever holds data in
    that backend's wire representation.
    """

    __slots__ = ("backend", "type_ids", "values")

    def __init__(self, backend: Backend) -> None:
        """Initialize an empty buffer for ``backend``."""
        self.backend = backend
        self.type_ids: list[Any] = []
        self.values: list[Any] = []

    def add(self, value: Any) -> None:
        """Encode ``value`` and append it as the next positional parameter."""
        type_id, encoded = self.backend.encode(value)
        self.type_ids.append(type_id)
        self.values.append(encoded)

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[tuple[Any, Any]]:
        return iter(zip(self.type_ids, self.values, strict=True))

    def __repr__(self) -> str:
        return f"<Arguments {self.backend.name} count={len(self)}>"

"""Value wrappers understood by every backend."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Json:
    """Bind ``obj`` as a JSON document (jsonb on Postgres, TEXT on SQLite)."""

    obj: Any

    def dumps(self) -> str:
        """Serialize the wrapped object."""
        return json.dumps(self.obj, separators=(",", ":"))

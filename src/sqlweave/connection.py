"""Open a connection for a database URL."""

from __future__ import annotations

import logging
from urllib.parse import urlsplit

from sqlweave.config import get_database_url
from sqlweave.errors import ConfigurationError
from sqlweave.executor import Connection

logger = logging.getLogger(__name__)

POSTGRES_SCHEMES = ("postgres", "postgresql")


async def connect(url: str | None = None) -> Connection:
    """Connect to the database named by ``url``.

    ``postgres://`` and ``postgresql://`` open a ``PgConnection``;
    ``sqlite:`` URLs, ``:memory:`` and plain file paths open a
    ``SqliteConnection``. With no URL, SQLWEAVE_DATABASE_URL is used.
    """
    if url is None:
        url = get_database_url()
    scheme = urlsplit(url).scheme if "://" in url else ""

    if scheme in POSTGRES_SCHEMES:
        from sqlweave.postgres.connection import PgConnection

        return await PgConnection.connect(url)
    if scheme in ("", "sqlite") or url.startswith("sqlite:"):
        from sqlweave.sqlite.connection import SqliteConnection

        return await SqliteConnection.connect(url)
    raise ConfigurationError(f"unsupported database URL scheme {scheme!r}")

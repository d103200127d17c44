"""PostgreSQL backend: wire protocol 3.0 over asyncio streams."""

from sqlweave.postgres.backend import PgBackend, Postgres
from sqlweave.postgres.connection import PgConnection
from sqlweave.postgres.options import PgConnectOptions, SslMode
from sqlweave.postgres.row import PgRow

query = Postgres.query
query_as = Postgres.query_as

__all__ = [
    "PgBackend",
    "PgConnectOptions",
    "PgConnection",
    "PgRow",
    "Postgres",
    "SslMode",
    "query",
    "query_as",
]

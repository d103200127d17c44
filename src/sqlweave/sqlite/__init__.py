"""SQLite backend over aiosqlite."""

from sqlweave.sqlite.backend import Sqlite, SqliteBackend
from sqlweave.sqlite.connection import SqliteConnection
from sqlweave.sqlite.row import SqliteRow

query = Sqlite.query
query_as = Sqlite.query_as

__all__ = ["Sqlite", "SqliteBackend", "SqliteConnection", "SqliteRow", "query", "query_as"]

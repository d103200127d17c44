"""Async SQL toolkit: typed queries, row decoding, and pipelined execution."""

from sqlweave.arguments import Arguments
from sqlweave.backend import Backend, TypeInfo
from sqlweave.connection import connect
from sqlweave.errors import (
    AuthenticationError,
    BackendMismatchError,
    CapacityExceeded,
    ConfigurationError,
    DecodeError,
    EncodeError,
    Error,
    NoRows,
    ParameterCountError,
    QueryConsumedError,
    StatementError,
    StatementRolledBack,
    StatementSkipped,
    TransportError,
    UnsupportedTypeError,
)
from sqlweave.executor import Connection, Executor, Transaction
from sqlweave.pipeline import Outcome, Pipeline, StatementStatus, SyncMode
from sqlweave.query import Query, query, query_as
from sqlweave.row import FromRow, Row
from sqlweave.types import Json

__all__ = [
    "Arguments",
    "AuthenticationError",
    "Backend",
    "BackendMismatchError",
    "CapacityExceeded",
    "ConfigurationError",
    "Connection",
    "DecodeError",
    "EncodeError",
    "Error",
    "Executor",
    "FromRow",
    "Json",
    "NoRows",
    "Outcome",
    "ParameterCountError",
    "Pipeline",
    "Query",
    "QueryConsumedError",
    "Row",
    "StatementError",
    "StatementRolledBack",
    "StatementSkipped",
    "StatementStatus",
    "SyncMode",
    "Transaction",
    "TransportError",
    "TypeInfo",
    "UnsupportedTypeError",
    "connect",
    "query",
    "query_as",
]

"""Postgres connection over asyncio streams.

Every statement is sent through the extended-query protocol
(Parse/Bind/Describe/Execute) with binary parameters and results. The
connection counts the Syncs it has sent but whose ReadyForQuery it has not
read yet; when a stream is abandoned part way (an early ``break``, a
cancelled task) the next command first discards those leftover responses.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlweave.errors import AuthenticationError, DecodeError, StatementError, TransportError
from sqlweave.executor import Connection
from sqlweave.pipeline import Outcome, SyncMode, roll_back
from sqlweave.postgres import protocol
from sqlweave.postgres.auth import SCRAM_SHA_256, ScramClient, md5_password
from sqlweave.postgres.backend import Postgres
from sqlweave.postgres.options import PgConnectOptions, SslMode
from sqlweave.postgres.row import PgRow

if TYPE_CHECKING:
    from sqlweave.arguments import Arguments
    from sqlweave.query import Query

logger = logging.getLogger(__name__)

# Acknowledgements carrying nothing the caller needs
_IGNORED = frozenset(
    {
        protocol.PARSE_COMPLETE,
        protocol.BIND_COMPLETE,
        protocol.CLOSE_COMPLETE,
        protocol.NO_DATA,
        protocol.PARAMETER_DESCRIPTION,
    }
)

IN_FAILED_TRANSACTION = "25P02"


@dataclass
class _Result:
    """End state of one statement's response stream."""

    rows_affected: int = 0
    error: StatementError | None = None


def _aborted(error: Exception | None) -> bool:
    return isinstance(error, StatementError) and error.sqlstate == IN_FAILED_TRANSACTION


async def _open_stream(
    options: PgConnectOptions,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Open the socket and negotiate TLS according to ``sslmode``."""
    if options.is_unix_socket:
        return await asyncio.open_unix_connection(options.socket_path)

    reader, writer = await asyncio.open_connection(options.host, options.port)
    context = options.ssl_context()
    if context is None:
        return reader, writer

    writer.write(protocol.ssl_request())
    await writer.drain()
    answer = await reader.readexactly(1)
    if answer == b"S":
        await writer.start_tls(context, server_hostname=options.host)
        logger.debug("TLS established with %s:%d", options.host, options.port)
        return reader, writer
    if options.sslmode is not SslMode.PREFER:
        writer.close()
        raise TransportError(f"server does not support SSL (sslmode={options.sslmode})")
    logger.debug("Server declined SSL, continuing unencrypted")
    return reader, writer


class PgConnection(Connection):
    """A single Postgres session.

    Create with ``await PgConnection.connect(url)``. ``transaction_status``
    mirrors the last ReadyForQuery (``I`` idle, ``T`` in a transaction block,
    ``E`` in a failed one) and ``parameters`` the server's ParameterStatus
    reports.
    """

    backend = Postgres

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        options: PgConnectOptions | None = None,
    ) -> None:
        """Initialize over an open stream; call ``startup`` before use."""
        super().__init__()
        self._reader = reader
        self._writer = writer
        self.options = options or PgConnectOptions()
        self.parameters: dict[str, str] = {}
        self.process_id: int | None = None
        self.secret_key: int | None = None
        self.transaction_status = protocol.TX_IDLE
        self._pending_syncs = 0

    def __repr__(self) -> str:
        state = "closed" if self.is_closed() else self.transaction_status
        return f"<PgConnection {self.options.user}@{self.options.host}:{self.options.port} {state}>"

    @classmethod
    async def connect(cls, url: str | PgConnectOptions) -> PgConnection:
        """Open a connection and complete the startup handshake.

        Raises ``ConfigurationError`` for a bad URL, ``AuthenticationError``
        when the server rejects the credentials, and ``TransportError`` for
        everything else that prevents the session from starting.
        """
        options = PgConnectOptions.from_url(url) if isinstance(url, str) else url
        try:
            reader, writer = await asyncio.wait_for(
                _open_stream(options), options.connect_timeout
            )
        except (OSError, TimeoutError, asyncio.IncompleteReadError) as exc:
            raise TransportError(
                f"could not connect to {options.host}:{options.port}: {exc}"
            ) from exc

        conn = cls(reader, writer, options)
        try:
            await asyncio.wait_for(conn.startup(), options.connect_timeout)
        except TimeoutError as exc:
            conn._mark_broken("startup timed out")
            await conn.close()
            raise TransportError("timed out waiting for the server during startup") from exc
        except BaseException:
            await conn.close()
            raise
        logger.debug(
            "Connected to %s:%d as %s (server %s)",
            options.host,
            options.port,
            options.user,
            conn.server_version,
        )
        return conn

    @property
    def server_version(self) -> str | None:
        """The ``server_version`` reported at startup."""
        return self.parameters.get("server_version")

    @property
    def in_transaction(self) -> bool:
        """True while the session is inside a transaction block."""
        return self.transaction_status in (protocol.TX_IN_BLOCK, protocol.TX_FAILED)

    # -- Startup --

    async def startup(self) -> None:
        """Send the StartupMessage, authenticate, and wait for ReadyForQuery."""
        await self._write(protocol.startup_message(self.options.startup_params()))
        scram: ScramClient | None = None
        while True:
            message = await self._recv()
            if message.tag == protocol.AUTHENTICATION:
                scram = await self._authenticate(message.body, scram)
            elif message.tag == protocol.BACKEND_KEY_DATA:
                self.process_id, self.secret_key = protocol.parse_backend_key_data(message.body)
            elif message.tag == protocol.ERROR_RESPONSE:
                error = protocol.statement_error(message.body)
                self._mark_broken(f"startup failed: {error}")
                if (error.sqlstate or "").startswith("28"):
                    raise AuthenticationError(error.message) from error
                raise TransportError(f"startup failed: {error}") from error
            elif message.tag == protocol.READY_FOR_QUERY:
                self.transaction_status = protocol.parse_ready_for_query(message.body)
                return
            else:
                raise self._mark_broken(f"unexpected message {message.tag!r} during startup")

    async def _authenticate(self, body: bytes, scram: ScramClient | None) -> ScramClient | None:
        code, payload = protocol.parse_authentication(body)
        if code == protocol.AUTH_OK:
            return scram

        if code in (protocol.AUTH_CLEARTEXT, protocol.AUTH_MD5, protocol.AUTH_SASL):
            return await self._send_password(code, payload)
        if code == protocol.AUTH_SASL_CONTINUE:
            if scram is None:
                raise self._mark_broken("SASL continue without SASL start")
            await self._write(protocol.sasl_response(scram.client_final(payload)))
        elif code == protocol.AUTH_SASL_FINAL:
            if scram is None:
                raise self._mark_broken("SASL final without SASL start")
            scram.verify_server_final(payload)
        else:
            self._mark_broken(f"authentication method {code}")
            raise AuthenticationError(f"unsupported authentication method (code {code})")
        return scram

    async def _send_password(self, code: int, payload: bytes) -> ScramClient | None:
        """Answer a password request; SASL returns the started SCRAM exchange."""
        password = self.options.password
        if password is None:
            self._mark_broken("no password")
            raise AuthenticationError("server requested a password but none was supplied")

        if code == protocol.AUTH_CLEARTEXT:
            await self._write(protocol.password_message(password))
            return None
        if code == protocol.AUTH_MD5:
            hashed = md5_password(self.options.user, password, payload[:4])
            await self._write(protocol.password_message(hashed))
            return None
        mechanisms = protocol.parse_sasl_mechanisms(payload)
        if SCRAM_SHA_256 not in mechanisms:
            self._mark_broken("no supported SASL mechanism")
            raise AuthenticationError(f"unsupported SASL mechanisms: {mechanisms}")
        scram = ScramClient(password)
        await self._write(protocol.sasl_initial_response(SCRAM_SHA_256, scram.client_first()))
        return scram

    # -- Transport --

    async def _write(self, data: bytes) -> None:
        try:
            self._writer.write(data)
            await self._writer.drain()
        except OSError as exc:
            raise self._mark_broken(f"write failed: {exc}") from exc

    async def _read_message(self) -> protocol.Message:
        """Read one framed backend message.

        Cancellation while waiting for a header is harmless; cancellation
        after the header leaves the stream mid-message and breaks the
        connection.
        """
        try:
            header = await self._reader.readexactly(protocol.HEADER_SIZE)
        except (asyncio.IncompleteReadError, OSError) as exc:
            raise self._mark_broken(f"connection lost: {exc}") from exc
        try:
            tag, length = protocol.parse_header(header)
        except TransportError as exc:
            raise self._mark_broken(str(exc)) from exc
        try:
            body = await self._reader.readexactly(length) if length else b""
        except asyncio.CancelledError:
            self._mark_broken("cancelled in the middle of a message")
            raise
        except (asyncio.IncompleteReadError, OSError) as exc:
            raise self._mark_broken(f"connection lost: {exc}") from exc
        return protocol.Message(tag, body)

    async def _recv(self) -> protocol.Message:
        """Read the next message, absorbing asynchronous ones."""
        while True:
            message = await self._read_message()
            if message.tag == protocol.PARAMETER_STATUS:
                name, value = protocol.parse_parameter_status(message.body)
                self.parameters[name] = value
            elif message.tag == protocol.NOTICE_RESPONSE:
                fields = protocol.parse_error_fields(message.body)
                logger.debug("Server notice: %s", fields.get("M"))
            elif message.tag == protocol.NOTIFICATION:
                logger.debug("Ignoring asynchronous notification")
            else:
                return message

    async def _send(self, data: bytes, syncs: int) -> None:
        self._pending_syncs += syncs
        await self._write(data)

    def _ready(self, body: bytes) -> None:
        self.transaction_status = protocol.parse_ready_for_query(body)
        self._pending_syncs -= 1

    async def _read_ready(self) -> None:
        message = await self._recv()
        if message.tag != protocol.READY_FOR_QUERY:
            raise self._mark_broken(f"expected ReadyForQuery, got {message.tag!r}")
        self._ready(message.body)

    async def _drain_pending(self) -> None:
        if self._pending_syncs:
            logger.debug("Discarding responses for %d abandoned sync(s)", self._pending_syncs)
        while self._pending_syncs > 0:
            message = await self._recv()
            if message.tag == protocol.READY_FOR_QUERY:
                self._ready(message.body)

    async def _begin_command(self) -> None:
        self._ensure_open()
        await self._drain_pending()

    @staticmethod
    def _statement(sql: str, arguments: Arguments) -> bytes:
        return protocol.statement(sql, list(arguments.type_ids), list(arguments.values))

    async def _statement_rows(self, result: _Result) -> AsyncIterator[PgRow]:
        """Yield one statement's rows; stop at its completion or error."""
        columns: list[protocol.Column] = []
        while True:
            message = await self._recv()
            tag = message.tag
            if tag in _IGNORED:
                continue
            if tag == protocol.ROW_DESCRIPTION:
                columns = protocol.parse_row_description(message.body)
            elif tag == protocol.DATA_ROW:
                yield PgRow(columns, protocol.parse_data_row(message.body))
            elif tag == protocol.COMMAND_COMPLETE:
                command = protocol.parse_command_complete(message.body)
                result.rows_affected = protocol.rows_affected(command)
                return
            elif tag in (protocol.EMPTY_QUERY, protocol.PORTAL_SUSPENDED):
                return
            elif tag == protocol.ERROR_RESPONSE:
                result.error = protocol.statement_error(message.body)
                return
            else:
                raise self._mark_broken(f"unexpected message {tag!r} while reading results")

    # -- Executor --

    async def execute(self, sql: str, arguments: Arguments) -> int:
        """Run a statement and return the affected-row count."""
        result = _Result()
        async with self._lock:
            await self._begin_command()
            await self._send(self._statement(sql, arguments) + protocol.sync(), 1)
            async for _row in self._statement_rows(result):
                pass
            await self._read_ready()
        if result.error is not None:
            raise result.error
        return result.rows_affected

    async def fetch(  # type: ignore[override]
        self, sql: str, arguments: Arguments
    ) -> AsyncIterator[PgRow]:
        """Stream rows as DataRow messages arrive."""
        result = _Result()
        async with self._lock:
            await self._begin_command()
            await self._send(self._statement(sql, arguments) + protocol.sync(), 1)
            async with aclosing(self._statement_rows(result)) as rows:
                async for row in rows:
                    yield row
            await self._read_ready()
        if result.error is not None:
            raise result.error

    async def fetch_optional(self, sql: str, arguments: Arguments) -> PgRow | None:
        """Return the first row or None.

        The remaining rows are read and discarded so an error the server
        reports after the first row is still raised, and the statement's
        Sync is consumed before the lock is released.
        """
        result = _Result()
        first: PgRow | None = None
        async with self._lock:
            await self._begin_command()
            await self._send(self._statement(sql, arguments) + protocol.sync(), 1)
            async for row in self._statement_rows(result):
                if first is None:
                    first = row
            await self._read_ready()
        if result.error is not None:
            raise result.error
        return first

    # -- Pipeline --

    async def run_pipeline(self, queries: list[Query[Any]], sync: SyncMode) -> list[Outcome]:
        """Write every statement in one batch, then read the responses in order."""
        async with self._lock:
            await self._begin_command()
            was_idle = self.transaction_status == protocol.TX_IDLE
            parts = []
            for query in queries:
                parts.append(self._statement(query.sql, query.arguments))
                if sync is SyncMode.EACH:
                    parts.append(protocol.sync())
            if sync is SyncMode.BATCH:
                parts.append(protocol.sync())
            syncs = len(queries) if sync is SyncMode.EACH else 1
            await self._send(b"".join(parts), syncs)
            logger.debug("Sent %d pipelined statement(s) with %d sync(s)", len(queries), syncs)

            if sync is SyncMode.EACH:
                return await self._read_each(queries)
            return await self._read_batch(queries, was_idle)

    async def _read_outcome(self, index: int, query: Query[Any]) -> Outcome:
        result = _Result()
        rows: list[Any] = []
        decode_error: DecodeError | None = None
        async for row in self._statement_rows(result):
            if decode_error is not None:
                continue
            try:
                rows.append(query.decode(row))
            except DecodeError as exc:
                decode_error = exc
        if result.error is not None:
            return Outcome.failed(index, result.error)
        if decode_error is not None:
            return Outcome.failed(index, decode_error)
        return Outcome.succeeded(index, result.rows_affected, rows)

    async def _read_each(self, queries: list[Query[Any]]) -> list[Outcome]:
        outcomes: list[Outcome] = []
        failed_index: int | None = None
        for index, query in enumerate(queries):
            outcome = await self._read_outcome(index, query)
            await self._read_ready()
            if failed_index is not None and _aborted(outcome.error):
                outcome = Outcome.skipped_after(index, failed_index)
            elif failed_index is None and isinstance(outcome.error, StatementError):
                failed_index = index
            outcomes.append(outcome)
        return outcomes

    async def _read_batch(self, queries: list[Query[Any]], was_idle: bool) -> list[Outcome]:
        outcomes: list[Outcome] = []
        failed_index: int | None = None
        for index, query in enumerate(queries):
            if failed_index is not None:
                outcomes.append(Outcome.skipped_after(index, failed_index))
                continue
            outcome = await self._read_outcome(index, query)
            if isinstance(outcome.error, StatementError):
                failed_index = index
            outcomes.append(outcome)
        await self._read_ready()
        if failed_index is not None and was_idle:
            roll_back(outcomes, failed_index)
        return outcomes

    # -- Shutdown --

    async def _close(self) -> None:
        if not self._broken:
            try:
                self._writer.write(protocol.terminate())
                await self._writer.drain()
            except OSError as exc:
                logger.debug("Terminate not sent: %s", exc)
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as exc:
            logger.debug("Error while closing socket: %s", exc)

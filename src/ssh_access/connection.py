"""
Connector: dial, handshake and authenticate with issued credentials.

Provides:
- connect: Open one authenticated asyncssh connection
- SSHConnection: Async context manager owning that connection and
  running one session handler over it

All steps emit structured events for inspection after the fact.
"""
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

import asyncssh

from ssh_access.access import AccessDetails, split_host_port
from ssh_access.client_config import ClientOption, new_client_config
from ssh_access.errors import (
    AuthFailed,
    ConnectionRefused,
    ConnectionTimeout,
    DialError,
    DisconnectReason,
    ErrorContext,
    HandshakeError,
    HostUnreachable,
    NoMutualKex,
    RemoteCommandFailure,
    SSHError,
    TransportError,
    join_errors,
)
from ssh_access.events import EventCollector, EventEmitter, EventType
from ssh_access.host_key import TrustingSSHClient

if TYPE_CHECKING:
    from ssh_access.sessions import SessionHandler
    from ssh_access.streams import LocalStreams

logger = logging.getLogger(__name__)


def _map_exception(exc: BaseException, ctx: ErrorContext) -> SSHError:
    """Map AsyncSSH and OS exceptions to the error taxonomy."""
    ctx.original_error = str(exc)

    if isinstance(exc, SSHError):
        return exc

    if isinstance(exc, asyncssh.PermissionDenied):
        return AuthFailed(f"Authentication failed: {exc}", context=ctx)

    if isinstance(exc, asyncssh.KeyExchangeFailed):
        return NoMutualKex(f"Key exchange failed: {exc}", context=ctx)

    if isinstance(exc, asyncssh.ConnectionLost):
        return HandshakeError(f"Connection lost: {exc}", context=ctx)

    if isinstance(exc, asyncssh.Error):
        return HandshakeError(f"SSH handshake failed: {exc}", context=ctx)

    if isinstance(exc, ConnectionRefusedError):
        return ConnectionRefused(f"Connection refused: {exc}", context=ctx)

    if isinstance(exc, asyncio.TimeoutError):
        return ConnectionTimeout("Connection timed out", context=ctx)

    if isinstance(exc, OSError):
        error_str = str(exc).lower()
        if "connection refused" in error_str:
            return ConnectionRefused(f"Connection refused: {exc}", context=ctx)
        if "timed out" in error_str or "timeout" in error_str:
            return ConnectionTimeout(f"Connection timed out: {exc}", context=ctx)
        if "unreachable" in error_str or "no route" in error_str:
            return HostUnreachable(f"Host unreachable: {exc}", context=ctx)
        return DialError(f"Connection failed: {exc}", context=ctx)

    return TransportError(f"Unexpected error: {exc}", context=ctx)


async def connect(
    details: AccessDetails,
    *opts: ClientOption,
    address: str | None = None,
    emitter: EventEmitter | None = None,
) -> asyncssh.SSHClientConnection:
    """
    Open one authenticated connection using ``details``.

    Configuration errors are raised before any network I/O. The
    connection is not closed by this function; the caller owns it.

    Args:
        details: Issued credentials and known host keys
        *opts: Client configuration overrides (e.g. with_connect_timeout)
        address: "host:port" to dial instead of ``details.address``
        emitter: Event emitter for CONNECT/AUTH/ERROR events

    Raises:
        ConfigurationError: Bad access details (before any I/O)
        CredentialError: Certificate and key do not belong together
        TrustError: The server's host key was not one of the known keys
        DialError: The TCP connection failed
        HandshakeError: Key exchange or authentication failed
    """
    emitter = emitter or EventEmitter()
    config = new_client_config(details, *opts)

    host, port = split_host_port(address or details.address)
    connect_data: dict[str, Any] = {
        "host": host,
        "port": port,
        "username": config.username,
    }
    ctx = ErrorContext(
        host=host,
        port=port,
        username=config.username,
        auth_method=config.auth_method,
    )

    client: TrustingSSHClient | None = None

    def create_client() -> TrustingSSHClient:
        nonlocal client
        client = config.create_client()
        return client

    emitter.emit(EventType.CONNECT, status="initiating", **connect_data)
    logger.info("Connecting to %s@%s:%d", config.username, host, port)
    start_ms = time.time() * 1000

    try:
        conn = await asyncssh.connect(
            host,
            port,
            client_factory=create_client,
            **config.to_connect_options(),
        )
    except asyncssh.HostKeyNotVerifiable as e:
        # The callback could only say no; raise the recorded reason
        if client is not None and client.trust_error is not None:
            error: SSHError = client.trust_error
            error.context.host = host
            error.context.port = port
            error.context.username = config.username
            error.context.original_error = str(e)
        else:
            error = _map_exception(e, ctx)
        emitter.error(error, **connect_data)
        raise error from e
    except asyncssh.PermissionDenied as e:
        error = _map_exception(e, ctx)
        emitter.emit(
            EventType.AUTH,
            status="failed",
            method=config.auth_method,
            username=config.username,
            duration_ms=(time.time() * 1000) - start_ms,
            error_message=str(e),
        )
        emitter.error(error, **connect_data)
        raise error from e
    except (OSError, asyncio.TimeoutError, asyncssh.Error) as e:
        error = _map_exception(e, ctx)
        emitter.error(error, **connect_data)
        raise error from e

    emitter.emit(
        EventType.AUTH,
        status="success",
        method=config.auth_method,
        username=config.username,
        duration_ms=(time.time() * 1000) - start_ms,
    )
    emitter.emit(
        EventType.CONNECT,
        status="connected",
        auth_method=config.auth_method,
        **connect_data,
    )
    logger.info("Connected to %s:%d", host, port)
    return conn


class SSHConnection:
    """
    Async context manager owning one authenticated connection.

    Usage:
        async with SSHConnection(details) as conn:
            await conn.run_session(handler)

    The connection is closed on every exit path. A failure to close is
    reported together with whatever error ended the block.

    Events:
    - CONNECT, AUTH, ERROR: From connect()
    - SESSION: For each session handler run
    - DISCONNECT: When the connection closes
    """

    def __init__(
        self,
        details: AccessDetails,
        *opts: ClientOption,
        address: str | None = None,
        event_collector: EventCollector | None = None,
        event_log_path: Path | str | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        self._details = details
        self._opts = opts
        self._address = address
        self._owns_emitter = emitter is None
        self._emitter = emitter or EventEmitter(
            collector=event_collector,
            jsonl_path=event_log_path,
        )
        self._conn: asyncssh.SSHClientConnection | None = None
        self._disconnect_reason = DisconnectReason.NORMAL

    @property
    def details(self) -> AccessDetails:
        return self._details

    @property
    def connection(self) -> asyncssh.SSHClientConnection:
        """The live asyncssh connection."""
        assert self._conn is not None, "Not connected. Use async with SSHConnection(...):"
        return self._conn

    @property
    def emitter(self) -> EventEmitter:
        return self._emitter

    async def __aenter__(self) -> "SSHConnection":
        try:
            self._conn = await connect(
                self._details,
                *self._opts,
                address=self._address,
                emitter=self._emitter,
            )
        except BaseException:
            if self._owns_emitter:
                self._emitter.close()
            raise
        return self

    async def __aexit__(self, exc_type: Any, exc: BaseException | None, tb: Any) -> None:
        if isinstance(exc, RemoteCommandFailure):
            self._disconnect_reason = DisconnectReason.REMOTE_FAILURE
        elif exc is not None:
            self._disconnect_reason = DisconnectReason.SESSION_ERROR

        close_error: BaseException | None = None
        try:
            await self.close()
        except Exception as e:
            close_error = e

        if close_error is not None:
            joined = join_errors(exc, close_error)
            if joined is close_error:
                raise close_error
            raise joined from exc

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._conn is None:
            return

        conn, self._conn = self._conn, None
        host, port = split_host_port(self._address or self._details.address)
        try:
            conn.close()
            await conn.wait_closed()
        finally:
            self._emitter.emit(
                EventType.DISCONNECT,
                host=host,
                port=port,
                reason=self._disconnect_reason.value,
            )
            if self._owns_emitter:
                self._emitter.close()
            logger.debug("Disconnected from %s:%d", host, port)

    async def run_session(
        self,
        handler: "SessionHandler",
        streams: "LocalStreams | None" = None,
    ) -> None:
        """
        Run one session handler over this connection.

        Raises whatever the handler raises (RemoteCommandFailure,
        SessionError, ...).
        """
        with self._emitter.timed_event(EventType.SESSION, kind=handler.kind) as data:
            await handler.handle_session(self.connection, streams, emitter=self._emitter)
            data["status"] = "completed"

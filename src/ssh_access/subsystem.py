"""
Subsystem sessions: a raw byte pipe between local stdio and a named
remote subsystem, as used by ``scp -S``, ``sftp -S`` and rsync.

The two directions are forwarded independently. When local input ends
the write side of the channel is half-closed so the remote end sees EOF,
but remote output keeps flowing until the remote side closes it: many
subsystems only answer after their input has ended.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import ClassVar, Protocol

import asyncssh

from ssh_access.errors import SessionError, join_errors
from ssh_access.events import EventEmitter, EventType
from ssh_access.streams import LocalStreams, copy_to_local, copy_to_remote

logger = logging.getLogger(__name__)


class RemoteWriter(Protocol):
    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...

    def can_write_eof(self) -> bool: ...

    def write_eof(self) -> None: ...


class RemoteReader(Protocol):
    async def read(self, n: int = -1) -> bytes: ...


@dataclass(frozen=True)
class ForwardResult:
    """Bytes moved in each direction."""
    bytes_in: int
    bytes_out: int


class SubsystemForwarder:
    """
    Forwards local stdin to ``writer`` and ``reader`` to local stdout.

    Both directions always run to completion; neither is cancelled
    because the other finished. Failures from both are reported
    together.
    """

    def __init__(
        self,
        writer: RemoteWriter,
        reader: RemoteReader,
        streams: LocalStreams,
    ) -> None:
        self._writer = writer
        self._reader = reader
        self._streams = streams

    async def _upstream(self) -> int:
        copy_error: Exception | None = None
        total = 0
        try:
            total = await copy_to_remote(self._streams.stdin, self._writer)
        except Exception as e:
            copy_error = e

        # Tell the remote side no more input is coming, even after an error
        close_error: Exception | None = None
        try:
            if self._writer.can_write_eof():
                self._writer.write_eof()
                logger.debug("Half-closed subsystem input after %d bytes", total)
        except (asyncssh.Error, OSError) as e:
            close_error = SessionError(f"failed to half-close subsystem input: {e}")
            close_error.__cause__ = e

        error = join_errors(copy_error, close_error)
        if error is not None:
            raise error
        return total

    async def _downstream(self) -> int:
        total = await copy_to_local(self._reader, self._streams.stdout)
        logger.debug("Subsystem output ended after %d bytes", total)
        return total

    async def run(self) -> ForwardResult:
        """
        Forward both directions until each has ended.

        Raises:
            The failure of one direction, or a CompoundError if both failed
        """
        results = await asyncio.gather(
            self._upstream(),
            self._downstream(),
            return_exceptions=True,
        )

        errors = [r if isinstance(r, BaseException) else None for r in results]
        error = join_errors(*errors)
        if error is not None:
            raise error

        bytes_in, bytes_out = results
        return ForwardResult(bytes_in=bytes_in, bytes_out=bytes_out)


@dataclass(frozen=True)
class Subsystem:
    """Invoke the named subsystem and pipe local stdio through it."""
    command: str

    kind: ClassVar[str] = "subsystem"

    async def handle_session(
        self,
        conn: asyncssh.SSHClientConnection,
        streams: LocalStreams | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        streams = streams or LocalStreams.stdio()
        emitter = emitter or EventEmitter()

        try:
            process = await conn.create_process(subsystem=self.command, encoding=None)
        except (asyncssh.ChannelOpenError, asyncssh.Error) as e:
            raise SessionError(f"subsystem {self.command!r} request failed: {e}") from e

        logger.debug("Subsystem %r started", self.command)
        stderr_task = asyncio.create_task(copy_to_local(process.stderr, streams.stderr))
        forwarder = SubsystemForwarder(process.stdin, process.stdout, streams)

        with emitter.timed_event(EventType.SUBSYSTEM, subsystem=self.command) as data:
            try:
                result = await forwarder.run()
                await stderr_task
            finally:
                stderr_task.cancel()
                await asyncio.gather(stderr_task, return_exceptions=True)
                process.close()
            data["bytes_in"] = result.bytes_in
            data["bytes_out"] = result.bytes_out

"""
Batch command sessions.

Each command runs in its own session on the shared connection, strictly
one after another, wired to the local stdin, stdout and stderr. The
first failing command ends the batch.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, ClassVar

import asyncssh

from ssh_access.errors import RemoteCommandFailure, RemoteInputClosed, SessionError, SSHError
from ssh_access.events import EventEmitter, EventType
from ssh_access.streams import LocalStreams, copy_to_local, copy_to_remote

logger = logging.getLogger(__name__)


async def _feed_stdin(streams: LocalStreams, writer: asyncssh.SSHWriter) -> int:
    try:
        total = await copy_to_remote(streams.stdin, writer)
        if writer.can_write_eof():
            writer.write_eof()
    except (RemoteInputClosed, ConnectionError):
        # Remote side stopped reading; its exit status tells the story
        logger.debug("Remote stdin closed before local input ended")
        return 0
    return total


async def run_remote_command(
    conn: asyncssh.SSHClientConnection,
    command: str | None,
    streams: LocalStreams,
    on_started: Callable[[asyncssh.SSHClientProcess], None] | None = None,
    **process_options: Any,
) -> asyncssh.SSHClientProcess:
    """
    Run ``command`` (or a login shell if None) in a new session.

    ``on_started`` is called with the process once the session is open.
    Local stdin is copied to the remote side while the session lives;
    remote stdout and stderr are copied to the local streams. Returns
    once the session is closed.

    Raises:
        SessionError: The session could not be opened, or local or remote
            stream I/O failed
        RemoteCommandFailure: Non-zero exit status, or killed by a signal
    """
    try:
        process = await conn.create_process(command or None, encoding=None, **process_options)
    except (asyncssh.ChannelOpenError, asyncssh.Error) as e:
        raise SessionError(f"failed to open session: {e}") from e

    if on_started is not None:
        on_started(process)

    stdin_task = asyncio.create_task(_feed_stdin(streams, process.stdin))
    output_tasks = [
        asyncio.create_task(copy_to_local(process.stdout, streams.stdout)),
        asyncio.create_task(copy_to_local(process.stderr, streams.stderr)),
    ]
    try:
        await asyncio.gather(*output_tasks)
        await process.wait_closed()
    finally:
        for task in [stdin_task, *output_tasks]:
            task.cancel()
        results = await asyncio.gather(stdin_task, *output_tasks, return_exceptions=True)
        process.close()

    stdin_error = results[0]
    if isinstance(stdin_error, SSHError):
        raise stdin_error
    if isinstance(stdin_error, Exception):
        raise SessionError(f"failed to read local input: {stdin_error}") from stdin_error

    check_exit(process, command or "")
    return process


def check_exit(process: asyncssh.SSHClientProcess, command: str) -> None:
    """Raise RemoteCommandFailure unless ``process`` exited with status 0."""
    shown = command or "shell"

    if process.exit_signal is not None:
        signal_name = process.exit_signal[0]
        raise RemoteCommandFailure(
            f"remote command {shown!r} killed by signal {signal_name}",
            exit_signal=signal_name,
            command=command,
        )

    status = process.exit_status
    if status is None:
        raise RemoteCommandFailure(
            f"remote command {shown!r} exited without reporting an exit status",
            command=command,
        )
    if status != 0:
        raise RemoteCommandFailure(
            f"remote command {shown!r} exited with status {status}",
            exit_status=status,
            command=command,
        )


@dataclass(frozen=True)
class Commands:
    """Run each command in sequence, stopping at the first failure."""
    commands: tuple[str, ...] = ()

    kind: ClassVar[str] = "commands"

    async def handle_session(
        self,
        conn: asyncssh.SSHClientConnection,
        streams: LocalStreams | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        streams = streams or LocalStreams.stdio()
        emitter = emitter or EventEmitter()

        for index, command in enumerate(self.commands):
            logger.debug("Running command %d/%d: %s", index + 1, len(self.commands), command)
            with emitter.timed_event(EventType.EXEC, command=command, index=index) as data:
                try:
                    process = await run_remote_command(conn, command, streams)
                except RemoteCommandFailure as e:
                    data["exit_status"] = e.exit_status
                    raise
                data["exit_status"] = process.exit_status

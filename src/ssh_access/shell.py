"""
Interactive shell sessions.
"""
from __future__ import annotations

import logging
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Any, ClassVar

import asyncssh

from ssh_access.commands import run_remote_command
from ssh_access.errors import RemoteCommandFailure
from ssh_access.events import EventEmitter, EventType
from ssh_access.streams import LocalStreams
from ssh_access.terminal import is_terminal, on_resize, raw_terminal, terminal_size

logger = logging.getLogger(__name__)

TERM_TYPE = "xterm-256color"

# RFC 4254 section 8 terminal mode opcode
PTY_ECHO = 53


@dataclass(frozen=True)
class Shell:
    """
    A remote login shell, or a single command when ``command`` is set.

    When local stdout is a terminal a pseudo-terminal of the same size is
    requested, echo is enabled and local stdin is switched to raw mode so
    control keys, tab completion and arrow keys reach the remote side.
    Resizes of the local terminal are forwarded while the session lasts.
    """
    command: str = ""

    kind: ClassVar[str] = "shell"

    def pty_options(self, streams: LocalStreams) -> dict[str, Any]:
        """Pseudo-terminal request options, empty when stdout is not a terminal."""
        if not is_terminal(streams.stdout):
            return {}
        return {
            "term_type": TERM_TYPE,
            "term_size": terminal_size(streams.stdout),
            "term_modes": {PTY_ECHO: 1},
        }

    async def handle_session(
        self,
        conn: asyncssh.SSHClientConnection,
        streams: LocalStreams | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        streams = streams or LocalStreams.stdio()
        emitter = emitter or EventEmitter()
        pty = self.pty_options(streams)

        if self.command:
            logger.debug("Running %r (pty=%s)", self.command, bool(pty))
        else:
            logger.debug("Starting login shell (pty=%s)", bool(pty))

        with ExitStack() as stack:
            if pty:
                stack.enter_context(raw_terminal(streams.stdin))
            with emitter.timed_event(EventType.EXEC, command=self.command, pty=bool(pty)) as data:
                try:
                    process = await self._run(conn, streams, pty, stack)
                except RemoteCommandFailure as e:
                    data["exit_status"] = e.exit_status
                    raise
                data["exit_status"] = process.exit_status

    async def _run(
        self,
        conn: asyncssh.SSHClientConnection,
        streams: LocalStreams,
        pty: dict[str, Any],
        stack: ExitStack,
    ) -> asyncssh.SSHClientProcess:
        if not pty:
            return await run_remote_command(conn, self.command, streams)

        process: asyncssh.SSHClientProcess | None = None

        def resize() -> None:
            if process is not None:
                columns, lines = terminal_size(streams.stdout)
                process.change_terminal_size(columns, lines)

        stack.enter_context(on_resize(resize))

        def track(p: asyncssh.SSHClientProcess) -> None:
            nonlocal process
            process = p

        return await run_remote_command(
            conn, self.command, streams, on_started=track, **pty
        )

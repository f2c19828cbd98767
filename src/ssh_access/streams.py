"""
Byte pumps between local streams and remote session channels.

Local reads do not block the event loop on pipes, terminals or sockets:
the loop waits for readability, then a single os.read() takes what is
there. Regular files, /dev/null and in-memory buffers are read directly.
"""
from __future__ import annotations

import asyncio
import os
import stat
import sys
from dataclasses import dataclass
from typing import BinaryIO

import asyncssh

from ssh_access.errors import RemoteInputClosed, SessionError

DEFAULT_CHUNK_SIZE = 32 * 1024


@dataclass(frozen=True)
class LocalStreams:
    """The local end of a session: binary stdin, stdout and stderr."""
    stdin: BinaryIO
    stdout: BinaryIO
    stderr: BinaryIO

    @classmethod
    def stdio(cls) -> "LocalStreams":
        """This process's own standard streams."""
        return cls(sys.stdin.buffer, sys.stdout.buffer, sys.stderr.buffer)


def _selectable_fd(stream: BinaryIO) -> int | None:
    """Return the fd of ``stream`` if the event loop can wait on it."""
    try:
        fd = stream.fileno()
    except (AttributeError, OSError, ValueError):
        return None

    mode = os.fstat(fd).st_mode
    if stat.S_ISFIFO(mode) or stat.S_ISCHR(mode) or stat.S_ISSOCK(mode):
        return fd
    return None


async def read_local(stream: BinaryIO, size: int = DEFAULT_CHUNK_SIZE) -> bytes:
    """
    Read up to ``size`` bytes from a local stream.

    Returns b"" at end of stream.
    """
    fd = _selectable_fd(stream)
    if fd is None:
        return stream.read(size) or b""

    loop = asyncio.get_running_loop()
    ready: asyncio.Future[None] = loop.create_future()

    def on_readable() -> None:
        if not ready.done():
            ready.set_result(None)

    try:
        loop.add_reader(fd, on_readable)
    except PermissionError:
        # Devices without poll support (/dev/null) never block
        return os.read(fd, size)
    try:
        await ready
    finally:
        loop.remove_reader(fd)

    return os.read(fd, size)


def _write_flush(stream: BinaryIO, data: bytes) -> None:
    stream.write(data)
    stream.flush()


async def write_local(stream: BinaryIO, data: bytes) -> None:
    """
    Write ``data`` to a local stream and flush it.

    Pipes, terminals and sockets are written from the default executor so
    a reader that stops draining stalls only this stream, not the loop.
    """
    if _selectable_fd(stream) is None:
        _write_flush(stream, data)
        return

    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, _write_flush, stream, data)


async def copy_to_remote(
    src: BinaryIO,
    writer: asyncssh.SSHWriter,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """
    Copy a local stream to a remote channel until end of stream.

    Does not send EOF; the caller decides whether to half-close.

    Returns:
        Number of bytes copied

    Raises:
        SessionError: The local stream could not be read
        RemoteInputClosed: The remote side no longer accepts input
    """
    total = 0
    while True:
        try:
            data = await read_local(src, chunk_size)
        except OSError as e:
            raise SessionError(f"failed to read local input: {e}") from e
        if not data:
            return total

        try:
            writer.write(data)
            await writer.drain()
        except ConnectionError as e:
            raise RemoteInputClosed(f"remote side stopped reading input: {e}") from e
        except asyncssh.Error as e:
            raise SessionError(f"failed to send input: {e}") from e
        total += len(data)


async def copy_to_local(
    reader: asyncssh.SSHReader,
    dst: BinaryIO,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """
    Copy a remote channel to a local stream until the remote closes it.

    Returns:
        Number of bytes copied

    Raises:
        SessionError: Remote output could not be read or written locally
    """
    total = 0
    while True:
        try:
            data = await reader.read(chunk_size)
        except (asyncssh.Error, OSError) as e:
            raise SessionError(f"failed to read remote output: {e}") from e
        if not data:
            return total

        try:
            await write_local(dst, data)
        except OSError as e:
            raise SessionError(f"failed to write local output: {e}") from e
        total += len(data)

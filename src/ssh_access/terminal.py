"""
Local terminal handling for interactive sessions.
"""
from __future__ import annotations

import asyncio
import logging
import os
import signal
import termios
import tty
from contextlib import contextmanager
from typing import Any, Callable, Iterator

logger = logging.getLogger(__name__)

DEFAULT_TERMINAL_SIZE = (80, 24)


def is_terminal(stream: Any) -> bool:
    """True if ``stream`` is attached to a terminal."""
    try:
        return bool(stream.isatty())
    except (AttributeError, ValueError, OSError):
        return False


def terminal_size(stream: Any) -> tuple[int, int]:
    """Return (columns, lines) of the terminal behind ``stream``."""
    try:
        size = os.get_terminal_size(stream.fileno())
    except (AttributeError, ValueError, OSError):
        return DEFAULT_TERMINAL_SIZE
    return size.columns, size.lines


@contextmanager
def raw_terminal(stream: Any) -> Iterator[None]:
    """
    Put the terminal behind ``stream`` in raw mode for the block.

    Keystrokes such as ^C, ^D, tab and arrows then reach the remote side
    unprocessed. The saved mode is restored on every exit path. Does
    nothing if ``stream`` is not a terminal.
    """
    if not is_terminal(stream):
        yield
        return

    fd = stream.fileno()
    saved = termios.tcgetattr(fd)
    tty.setraw(fd)
    try:
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)


@contextmanager
def on_resize(callback: Callable[[], None]) -> Iterator[None]:
    """Call ``callback`` whenever the local terminal is resized (SIGWINCH)."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGWINCH, callback)
    except (NotImplementedError, RuntimeError, AttributeError):
        # No SIGWINCH on this platform, or not the main thread
        logger.debug("Terminal resize notifications unavailable")
        yield
        return

    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGWINCH)

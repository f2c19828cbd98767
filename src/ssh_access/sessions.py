"""
Session selection: turn options and arguments into a session handler
and a destination.

Provides:
- SessionOptions: What kind of session was asked for
- Destination: Parsed [user@]instance[:port]
- parse_destination: Parse "user@instance" or "ssh://user@instance:port"
- sh_quote / sh_join: POSIX shell quoting for remote command lines
- new_session_handler: Choose Shell, Commands or Subsystem
"""
from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import Sequence, Union
from urllib.parse import unquote, urlsplit

from ssh_access.access import DEFAULT_SSH_PORT
from ssh_access.commands import Commands
from ssh_access.errors import ConfigurationError, InvalidDestination
from ssh_access.shell import Shell
from ssh_access.subsystem import Subsystem
from ssh_access.validation import validate_port

SessionHandler = Union[Shell, Commands, Subsystem]

URI_SCHEME = "ssh://"


@dataclass(frozen=True)
class SessionOptions:
    """
    Attributes:
        login_user: Overrides any user given in the destination
        port: Overrides any port given in the destination
        with_subsystem: Treat the single trailing argument as a subsystem
        batch_commands: Treat each trailing argument as its own command
        force_pseudo_terminal: Run the joined command line as a Shell
    """
    login_user: str | None = None
    port: int | None = None
    with_subsystem: bool = False
    batch_commands: bool = False
    force_pseudo_terminal: bool = False

    def __post_init__(self) -> None:
        if self.port is not None:
            try:
                validate_port(self.port)
            except ValueError as e:
                raise ConfigurationError(str(e)) from e


@dataclass(frozen=True)
class Destination:
    """Where to connect. ``port`` is None until a default is applied."""
    user: str | None
    instance: str
    port: int | None = None


def parse_destination(destination: str) -> Destination:
    """
    Parse "[user@]instance" or "ssh://[user@]instance[:port]".

    The plain form splits at the first "@"; no port is recognised in it.
    The URI form percent-decodes the user and keeps the instance's case.

    Raises:
        InvalidDestination: Malformed URI, bad port or empty instance
    """
    if destination.startswith(URI_SCHEME):
        return _parse_uri(destination)

    user: str | None = None
    instance = destination
    if "@" in destination:
        user, instance = destination.split("@", 1)

    if not instance:
        raise InvalidDestination(
            f"destination {destination!r} has no instance name",
            destination=destination,
        )
    return Destination(user=user, instance=instance)


def _parse_uri(destination: str) -> Destination:
    try:
        parts = urlsplit(destination)
        port = parts.port
    except ValueError as e:
        raise InvalidDestination(
            f"invalid destination URI {destination!r}: {e}",
            destination=destination,
        ) from e

    if parts.path not in ("", "/") or parts.query or parts.fragment:
        raise InvalidDestination(
            f"invalid destination URI {destination!r}: unexpected path or query",
            destination=destination,
        )

    # urlsplit lowercases .hostname; take the host from netloc instead
    netloc = parts.netloc
    userinfo = None
    if "@" in netloc:
        userinfo, netloc = netloc.rsplit("@", 1)
    instance = netloc
    if instance.startswith("["):
        instance = instance[1:instance.index("]")]
    elif ":" in instance:
        instance = instance.rsplit(":", 1)[0]

    if not instance:
        raise InvalidDestination(
            f"destination {destination!r} has no instance name",
            destination=destination,
        )
    if port == 0:
        raise InvalidDestination(
            f"invalid destination URI {destination!r}: port must be at least 1",
            destination=destination,
        )

    user = None
    if userinfo is not None:
        # ssh://user;fingerprint@host connection parameters are not supported
        user = unquote(userinfo.split(":", 1)[0])

    return Destination(user=user, instance=instance, port=port)


def sh_quote(arg: str) -> str:
    """
    Quote ``arg`` for a POSIX shell.

    Arguments made only of safe characters (letters, digits and
    ``@%+=:,./-_``) are returned unchanged.
    """
    return shlex.quote(arg)


def sh_join(args: Sequence[str]) -> str:
    """Quote each argument and join them with spaces."""
    return " ".join(sh_quote(arg) for arg in args)


def new_session_handler(
    opts: SessionOptions,
    args: Sequence[str],
) -> tuple[SessionHandler, Destination]:
    """
    Choose the session handler for ``args`` (destination first).

    Rules, in order:
    - -s and --commands together are rejected
    - -s takes exactly one argument after the destination: the subsystem
    - --commands runs each remaining argument as its own command
    - no remaining arguments, or -t: a Shell running the joined arguments
    - otherwise a single command made of the joined arguments

    The login user and port options override the destination's; the
    port then defaults to 22.

    Raises:
        ConfigurationError: Missing destination or conflicting options
        InvalidDestination: The destination could not be parsed
    """
    if not args:
        raise ConfigurationError("destination is not specified")

    destination = parse_destination(args[0])
    rest = list(args[1:])

    user = opts.login_user if opts.login_user else destination.user
    port = opts.port if opts.port is not None else destination.port
    if port is None:
        port = DEFAULT_SSH_PORT
    destination = Destination(user=user, instance=destination.instance, port=port)

    if opts.with_subsystem and opts.batch_commands:
        raise ConfigurationError("subsystem and batch commands cannot be used together")

    handler: SessionHandler
    if opts.with_subsystem:
        if len(rest) != 1:
            raise ConfigurationError(
                f"subsystem mode needs exactly one subsystem name, got {len(rest)} arguments"
            )
        handler = Subsystem(command=rest[0])
    elif opts.batch_commands:
        handler = Commands(commands=tuple(rest))
    elif not rest or opts.force_pseudo_terminal:
        handler = Shell(command=sh_join(rest))
    else:
        handler = Commands(commands=(sh_join(rest),))

    return handler, destination

"""
OpenSSH-style remote login client for Amazon Lightsail instances.

Usage:
    lightsail-ssh [flags] destination                       # Interactive shell
    lightsail-ssh [flags] destination cmd [arg ...]         # Run one command
    lightsail-ssh --commands [flags] destination [cmd ...]  # Run commands in turn
    lightsail-ssh -s [flags] destination subsystem          # Subsystem (sftp, ...)
    python -m ssh_access --help

Also usable as the remote shell of scp, sftp and rsync (``-S``/``-e``):
the ssh(1) options those tools pass (-x, -o ...) are ignored.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import re
import sys
from dataclasses import dataclass
from typing import Sequence

from ssh_access import __version__
from ssh_access.access import CredentialSource, join_host_port
from ssh_access.client_config import ClientOption, with_connect_timeout
from ssh_access.connection import SSHConnection
from ssh_access.errors import ConfigurationError, RemoteCommandFailure, SSHError
from ssh_access.events import EventCollector, EventEmitter
from ssh_access.sessions import SessionOptions, new_session_handler
from ssh_access.streams import LocalStreams
from ssh_access.validation import parse_port, validate_username

logger = logging.getLogger(__name__)

PROG = "lightsail-ssh"

DESCRIPTION = """\
SSH client for Amazon Lightsail instances.

Host authentication and user authentication are handled automatically:
each run asks the Lightsail GetInstanceAccessDetails API for a short-lived
SSH user certificate and the instance's host keys. No local key files or
known_hosts entries are used.

The destination is either [user@]instanceName or a URI of the form
ssh://[user@]instanceName[:port].

If a command is given it is executed on the instance; extra arguments are
quoted and appended to it. With --commands each argument after the
destination is run as a separate command, in order, on the same
connection, stopping at the first one that fails.
"""

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Matches "-oOption=value" and "-oOption value" style arguments
_O_ARG = re.compile(r"^-o\S")


def drop_unsupported_flags(args: Sequence[str]) -> list[str]:
    """
    Remove ssh(1) options this client does not implement.

    scp, sftp and rsync pass ``-x`` and ``-o Option`` when they run their
    remote shell; those are dropped, up to a ``--`` argument.

    Args:
        args: Command line arguments, without the program name
    """
    result: list[str] = []
    dropping = True
    skip_value = False
    for arg in args:
        if arg == "--":
            dropping = False
        if dropping:
            if skip_value:
                skip_value = False
                continue
            if arg == "-x" or _O_ARG.match(arg):
                continue
            if arg == "-o":
                skip_value = True
                continue
        result.append(arg)
    return result


def _port_arg(value: str) -> int:
    try:
        return parse_port(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _user_arg(value: str) -> str:
    try:
        return validate_username(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _timeout_arg(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid timeout {value!r}") from e
    if seconds <= 0:
        raise argparse.ArgumentTypeError(f"timeout must be positive, got {value}")
    return seconds


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog=PROG,
        description=DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"Example: {PROG} ubuntu@my-instance uptime",
    )

    parser.add_argument(
        "destination",
        nargs="?",
        metavar="destination",
        help="[user@]instanceName or ssh://[user@]instanceName[:port]",
    )

    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Command (and arguments) to execute on the instance",
    )

    # Same meaning as the corresponding ssh(1) flags
    parser.add_argument(
        "-l",
        dest="login_user",
        metavar="USER",
        type=_user_arg,
        help="User to log in as on the instance",
    )

    parser.add_argument(
        "-p",
        dest="port",
        metavar="PORT",
        type=_port_arg,
        help="Port to connect to on the instance (default: 22)",
    )

    parser.add_argument(
        "-s",
        dest="subsystem",
        action="store_true",
        help="Request invocation of a subsystem on the instance (e.g. sftp); "
             "the subsystem is given as the command",
    )

    parser.add_argument(
        "-t",
        dest="force_tty",
        action="store_true",
        help="Force pseudo-terminal allocation for the command",
    )

    parser.add_argument(
        "--commands",
        action="store_true",
        help="Treat each argument after the destination as a separate command, "
             "run in sequence on the same connection, stopping at the first failure",
    )

    # AWS options; named so they do not clash with ssh(1) flags
    parser.add_argument(
        "--endpoint-url",
        metavar="URL",
        help="Override the default Lightsail API URL",
    )

    parser.add_argument(
        "--mfa",
        dest="mfa_code",
        metavar="CODE",
        help="Fresh MFA code for AWS authentication",
    )

    parser.add_argument(
        "--profile",
        help="AWS CLI profile",
    )

    parser.add_argument(
        "--region",
        help="AWS region to use",
    )

    parser.add_argument(
        "--timeout",
        type=_timeout_arg,
        default=30.0,
        metavar="SECONDS",
        help="Connection timeout in seconds (default: 30)",
    )

    parser.add_argument(
        "--events",
        action="store_true",
        help="Print JSONL events to stderr when done",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v: info, -vv: debug, -vvv: asyncssh debug)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Quiet mode: only report errors",
    )

    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser


@dataclass(frozen=True)
class CLIOptions:
    """Everything the command line configures."""
    session: SessionOptions
    profile: str | None = None
    region: str | None = None
    mfa_code: str | None = None
    endpoint_url: str | None = None
    timeout: float | None = 30.0
    events: bool = False
    verbose: int = 0
    quiet: bool = False

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "CLIOptions":
        return cls(
            session=SessionOptions(
                login_user=args.login_user,
                port=args.port,
                with_subsystem=args.subsystem,
                batch_commands=args.commands,
                force_pseudo_terminal=args.force_tty,
            ),
            profile=args.profile,
            region=args.region,
            mfa_code=args.mfa_code,
            endpoint_url=args.endpoint_url,
            timeout=args.timeout,
            events=args.events,
            verbose=args.verbose,
            quiet=args.quiet,
        )


def setup_logging(verbose: int, quiet: bool) -> None:
    """Configure stderr logging for the given verbosity."""
    if quiet:
        logging.basicConfig(level=logging.ERROR, format=LOG_FORMAT, stream=sys.stderr)
        logging.getLogger("asyncssh").setLevel(logging.ERROR)
    elif verbose > 0:
        level = logging.DEBUG if verbose >= 2 else logging.INFO
        logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)
        if verbose >= 3:
            logging.getLogger("asyncssh").setLevel(logging.DEBUG)
        else:
            logging.getLogger("asyncssh").setLevel(logging.WARNING)
    else:
        logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT, stream=sys.stderr)
        logging.getLogger("asyncssh").setLevel(logging.WARNING)


async def run(
    session_opts: SessionOptions,
    args: Sequence[str],
    source: CredentialSource,
    *client_opts: ClientOption,
    streams: LocalStreams | None = None,
    emitter: EventEmitter | None = None,
) -> None:
    """
    Issue credentials for the destination in ``args`` and run the
    selected session over one connection.

    Args:
        session_opts: Session kind and destination overrides
        args: Destination followed by the command arguments
        source: Where access details come from
        *client_opts: Client configuration overrides
        streams: Local stdio (default: this process's)
        emitter: Event emitter shared by every step

    Raises:
        ConfigurationError: Bad options, or a login user the credentials
            were not issued for (raised before connecting)
        SSHError: Any other failure, including RemoteCommandFailure
    """
    handler, destination = new_session_handler(session_opts, args)

    details = await source.get_access_details(destination.instance)

    if destination.user and destination.user != details.user:
        raise ConfigurationError(
            f"login user {destination.user!r} does not match user {details.user!r} "
            f"the credentials were issued for"
        )

    address = join_host_port(details.host, destination.port)
    async with SSHConnection(details, *client_opts, address=address, emitter=emitter) as conn:
        await conn.run_session(handler, streams)


async def run_command(args: argparse.Namespace) -> int:
    """
    Run the CLI for parsed arguments.

    Returns:
        0 on success, the remote exit status when a remote command fails,
        1 for any other failure
    """
    from ssh_access.lightsail import LightsailCredentialSource

    opts = CLIOptions.from_args(args)
    setup_logging(opts.verbose, opts.quiet)

    event_collector = EventCollector() if opts.events else None
    emitter = EventEmitter(collector=event_collector)

    argv = [args.destination, *args.command] if args.destination else []

    try:
        source = LightsailCredentialSource.from_config(
            profile=opts.profile,
            region=opts.region,
            mfa_code=opts.mfa_code,
            endpoint_url=opts.endpoint_url,
        )
        await run(
            opts.session,
            argv,
            source,
            with_connect_timeout(opts.timeout),
            emitter=emitter,
        )
        exit_code = 0

    except RemoteCommandFailure as e:
        logger.info("%s", e)
        exit_code = e.exit_status if e.exit_status else 1

    except SSHError as e:
        print(f"{PROG}: {e}", file=sys.stderr)
        exit_code = 1

    finally:
        emitter.close()
        if event_collector is not None:
            event_collector.dump(sys.stderr)

    return exit_code


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point."""
    if argv is None:
        argv = sys.argv[1:]

    parser = create_parser()
    args = parser.parse_args(drop_unsupported_flags(argv))

    try:
        return asyncio.run(run_command(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())

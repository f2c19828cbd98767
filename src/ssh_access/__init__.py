"""ssh-access: SSH client for short-lived certificate credentials."""

__version__ = "0.1.0"

from ssh_access.access import (
    AccessDetails,
    CredentialSource,
    certificate_kind,
    join_host_port,
    split_host_port,
)
from ssh_access.client_config import (
    ClientConfig,
    new_client_config,
    with_connect_timeout,
    with_options,
)
from ssh_access.commands import Commands, run_remote_command
from ssh_access.connection import SSHConnection, connect
from ssh_access.errors import (
    AuthFailed,
    CompoundError,
    ConfigurationError,
    ConnectionRefused,
    ConnectionTimeout,
    CredentialError,
    DialError,
    DisconnectReason,
    ErrorContext,
    HandshakeError,
    HostUnreachable,
    InvalidDestination,
    InvalidHostKey,
    MissingSigner,
    NoMutualKex,
    RemoteCommandFailure,
    RemoteInputClosed,
    SessionError,
    SSHError,
    TransportError,
    TrustError,
    UnexpectedCertificateKind,
    UnknownHostKey,
    join_errors,
)
from ssh_access.events import Event, EventCollector, EventEmitter, EventType
from ssh_access.host_key import HostKeyValidator, validate_host_key
from ssh_access.sessions import (
    Destination,
    SessionOptions,
    new_session_handler,
    parse_destination,
    sh_join,
    sh_quote,
)
from ssh_access.shell import Shell
from ssh_access.streams import LocalStreams
from ssh_access.subsystem import ForwardResult, Subsystem, SubsystemForwarder

__all__ = [
    # Access details
    "AccessDetails",
    "CredentialSource",
    "certificate_kind",
    "join_host_port",
    "split_host_port",
    # Client config
    "ClientConfig",
    "new_client_config",
    "with_connect_timeout",
    "with_options",
    # Connection
    "SSHConnection",
    "connect",
    # Sessions
    "Commands",
    "Destination",
    "SessionOptions",
    "Shell",
    "Subsystem",
    "SubsystemForwarder",
    "ForwardResult",
    "LocalStreams",
    "new_session_handler",
    "parse_destination",
    "run_remote_command",
    "sh_join",
    "sh_quote",
    # Host keys
    "HostKeyValidator",
    "validate_host_key",
    # Errors
    "SSHError",
    "ConfigurationError",
    "MissingSigner",
    "InvalidDestination",
    "CredentialError",
    "UnexpectedCertificateKind",
    "TrustError",
    "UnknownHostKey",
    "InvalidHostKey",
    "TransportError",
    "DialError",
    "ConnectionRefused",
    "ConnectionTimeout",
    "HostUnreachable",
    "HandshakeError",
    "AuthFailed",
    "NoMutualKex",
    "SessionError",
    "RemoteInputClosed",
    "RemoteCommandFailure",
    "CompoundError",
    "join_errors",
    "ErrorContext",
    "DisconnectReason",
    # Events
    "Event",
    "EventCollector",
    "EventEmitter",
    "EventType",
]

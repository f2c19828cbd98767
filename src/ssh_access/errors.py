"""
Error taxonomy with structured data for JSONL logging.

Every failure the client can report is an SSHError carrying an
ErrorContext, so callers can branch on the exception type and event
sinks can serialise the details.

Error hierarchy:
- SSHError (base)
  - ConfigurationError (detected before any network I/O)
    - MissingSigner
    - InvalidDestination
  - CredentialError (credential source failed or returned bad material)
    - UnexpectedCertificateKind
  - TrustError (host key rejected during the handshake)
    - UnknownHostKey
    - InvalidHostKey
  - TransportError
    - DialError
      - ConnectionRefused
      - ConnectionTimeout
      - HostUnreachable
    - HandshakeError
      - AuthFailed
      - NoMutualKex
    - SessionError
  - RemoteCommandFailure (remote command exited non-zero)
  - CompoundError (several failures reported together)
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Sequence


class DisconnectReason(str, Enum):
    """
    Reasons for disconnection.

    Used in DISCONNECT events to classify why a connection ended.
    """
    NORMAL = "normal"
    SESSION_ERROR = "session_error"
    REMOTE_FAILURE = "remote_failure"


@dataclass
class ErrorContext:
    """
    Structured context for SSH errors.

    Carries what is needed to debug the root cause and to log the
    failure as a JSONL event.
    """
    host: str | None = None
    port: int | None = None
    username: str | None = None
    auth_method: str | None = None
    original_error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate invariants after initialisation."""
        # Invariant: port must be in valid TCP range if specified
        if self.port is not None:
            assert isinstance(self.port, int) and 1 <= self.port <= 65535, (
                f"Port must be between 1 and 65535, got {self.port}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is not None:
                if key == "extra" and isinstance(value, dict):
                    # Precondition: extra keys must not shadow field names
                    field_names = {f.name for f in fields(self)} - {"extra"}
                    collisions = field_names & value.keys()
                    assert not collisions, (
                        f"Extra keys collision with dataclass field names: "
                        f"{collisions}. Use distinct key names in extra."
                    )
                    result.update(value)
                else:
                    result[key] = value
        return result


class SSHError(Exception):
    """
    Base exception for all errors raised by ssh_access.

    All errors carry structured context for logging and debugging.
    """

    def __init__(self, message: str, context: ErrorContext | None = None) -> None:
        # Precondition: message must be non-empty
        assert isinstance(message, str) and message.strip(), (
            f"SSHError message must be a non-empty string, "
            f"got {message!r}"
        )
        super().__init__(message)
        self.context = context or ErrorContext()

    @property
    def error_type(self) -> str:
        """Return the error type name for logging."""
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for JSONL logging."""
        return {
            "error_type": self.error_type,
            "message": str(self),
            **self.context.to_dict(),
        }


# ---------------------------------------------------------------------------
# Configuration Errors
# ---------------------------------------------------------------------------

class ConfigurationError(SSHError):
    """
    Invalid options, arguments or access details.

    Always raised before any network I/O takes place; retrying the same
    invocation cannot succeed.
    """
    pass


class MissingSigner(ConfigurationError):
    """Access details carry no private signing key."""
    pass


class InvalidDestination(ConfigurationError):
    """The destination string could not be parsed."""

    def __init__(
        self,
        message: str,
        destination: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        if destination is not None:
            context.extra["destination"] = destination
        super().__init__(message, context)
        self.destination = destination


# ---------------------------------------------------------------------------
# Credential Errors
# ---------------------------------------------------------------------------

class CredentialError(SSHError):
    """
    The credential source failed, or returned material that does not
    pass local validation (unparsable key, certificate/key mismatch).
    """
    pass


class UnexpectedCertificateKind(CredentialError):
    """A certificate was supplied but it is not a user certificate."""

    def __init__(
        self,
        message: str,
        kind: int | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        if kind is not None:
            context.extra["cert_kind"] = kind
        super().__init__(message, context)
        self.kind = kind


# ---------------------------------------------------------------------------
# Trust Errors
# ---------------------------------------------------------------------------

class TrustError(SSHError):
    """
    Host key rejected during the handshake.

    Attributes:
        fingerprint: SHA256 fingerprint of the presented key (if any)
        expected_fingerprints: "algorithm fingerprint" strings of the
            keys that would have been accepted
    """

    def __init__(
        self,
        message: str,
        fingerprint: str | None = None,
        expected_fingerprints: Sequence[str] = (),
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        if fingerprint is not None:
            context.extra["fingerprint"] = fingerprint
        context.extra["expected_fingerprints"] = list(expected_fingerprints)
        super().__init__(message, context)
        self.fingerprint = fingerprint
        self.expected_fingerprints = tuple(expected_fingerprints)


class UnknownHostKey(TrustError):
    """
    The server presented a key that matches none of the known host keys.

    This could indicate a man-in-the-middle attack, or credentials issued
    for a different machine than the one answering at the address.
    """
    pass


class InvalidHostKey(TrustError):
    """The server presented no usable host key."""
    pass


# ---------------------------------------------------------------------------
# Transport Errors
# ---------------------------------------------------------------------------

class TransportError(SSHError):
    """Base class for network, handshake and session channel failures."""
    pass


class DialError(TransportError):
    """The TCP connection to the server could not be established."""
    pass


class ConnectionRefused(DialError):
    """Server actively refused the connection."""
    pass


class ConnectionTimeout(DialError):
    """Connection attempt timed out."""
    pass


class HostUnreachable(DialError):
    """Host could not be reached (network error)."""
    pass


class HandshakeError(TransportError):
    """The SSH protocol handshake failed after the socket was connected."""
    pass


class AuthFailed(HandshakeError):
    """
    The server rejected the offered certificate or key.

    Typically the certificate expired, its principals do not include the
    login user, or the server does not trust the signing authority.
    """
    pass


class NoMutualKex(HandshakeError):
    """
    No mutual key exchange algorithm.

    Client and server could not agree on a key exchange algorithm.
    """
    pass


class SessionError(TransportError):
    """A session channel could not be opened, or failed mid-stream."""
    pass


class RemoteInputClosed(SessionError):
    """The remote side of a session stopped accepting input."""
    pass


# ---------------------------------------------------------------------------
# Remote and compound failures
# ---------------------------------------------------------------------------

class RemoteCommandFailure(SSHError):
    """
    The remote command or shell exited unsuccessfully.

    Attributes:
        exit_status: Remote exit status (None when killed by a signal)
        exit_signal: Name of the signal that terminated it, if any
        command: The command line that was run (empty for a login shell)
    """

    def __init__(
        self,
        message: str,
        exit_status: int | None = None,
        exit_signal: str | None = None,
        command: str = "",
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        context.extra["exit_status"] = exit_status
        if exit_signal is not None:
            context.extra["exit_signal"] = exit_signal
        if command:
            context.extra["command"] = command
        super().__init__(message, context)
        self.exit_status = exit_status
        self.exit_signal = exit_signal
        self.command = command


class CompoundError(SSHError):
    """
    Several failures reported together.

    Raised when independent operations (the two halves of a forwarded
    stream, or a session and the close that followed it) both failed.
    """

    def __init__(self, errors: Sequence[BaseException]) -> None:
        assert len(errors) >= 2, f"CompoundError needs at least two errors, got {len(errors)}"
        message = "; ".join(str(e) or type(e).__name__ for e in errors)
        context = ErrorContext(extra={"errors": [type(e).__name__ for e in errors]})
        super().__init__(message, context)
        self.errors = tuple(errors)


def join_errors(*errors: BaseException | None) -> BaseException | None:
    """
    Combine errors into one.

    None entries are dropped and nested CompoundErrors are flattened.

    Returns:
        None if nothing failed, the error itself if exactly one failed,
        otherwise a CompoundError holding all of them in order.
    """
    flat: list[BaseException] = []
    for err in errors:
        if err is None:
            continue
        if isinstance(err, CompoundError):
            flat.extend(err.errors)
        else:
            flat.append(err)

    if not flat:
        return None
    if len(flat) == 1:
        return flat[0]
    return CompoundError(flat)

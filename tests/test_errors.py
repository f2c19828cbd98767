"""
Tests for the error taxonomy.

Tests:
- Hierarchy: every failure is an SSHError of the right family
- Structured context serialisation for JSONL events
- join_errors: dropping, flattening and combining failures
"""
from __future__ import annotations

import pytest

from ssh_access.errors import (
    AuthFailed,
    CompoundError,
    ConfigurationError,
    ConnectionRefused,
    CredentialError,
    DialError,
    ErrorContext,
    HandshakeError,
    InvalidDestination,
    InvalidHostKey,
    MissingSigner,
    RemoteCommandFailure,
    SessionError,
    SSHError,
    TransportError,
    TrustError,
    UnexpectedCertificateKind,
    UnknownHostKey,
    join_errors,
)


class TestHierarchy:
    """Callers branch on the exception family."""

    @pytest.mark.parametrize("cls,base", [
        (MissingSigner, ConfigurationError),
        (InvalidDestination, ConfigurationError),
        (UnexpectedCertificateKind, CredentialError),
        (UnknownHostKey, TrustError),
        (InvalidHostKey, TrustError),
        (ConnectionRefused, DialError),
        (DialError, TransportError),
        (AuthFailed, HandshakeError),
        (HandshakeError, TransportError),
        (SessionError, TransportError),
    ])
    def test_subclass(self, cls: type, base: type) -> None:
        assert issubclass(cls, base)
        assert issubclass(cls, SSHError)

    def test_remote_failure_is_not_transport(self) -> None:
        """A command exiting non-zero is not a connection problem."""
        assert not issubclass(RemoteCommandFailure, TransportError)

    def test_empty_message_rejected(self) -> None:
        with pytest.raises(AssertionError):
            SSHError("")


class TestErrorContext:
    """Tests for ErrorContext serialisation."""

    def test_to_dict_drops_none(self) -> None:
        ctx = ErrorContext(host="10.0.0.1", port=22)
        assert ctx.to_dict() == {"host": "10.0.0.1", "port": 22}

    def test_extra_is_merged(self) -> None:
        ctx = ErrorContext(username="ec2-user", extra={"instance": "web-1"})
        assert ctx.to_dict() == {"username": "ec2-user", "instance": "web-1"}

    def test_invalid_port_rejected(self) -> None:
        with pytest.raises(AssertionError):
            ErrorContext(port=0)

    def test_error_to_dict(self) -> None:
        error = AuthFailed("denied", context=ErrorContext(host="h", auth_method="certificate"))
        data = error.to_dict()
        assert data["error_type"] == "AuthFailed"
        assert data["message"] == "denied"
        assert data["host"] == "h"
        assert data["auth_method"] == "certificate"


class TestStructuredErrors:
    """Errors that carry extra attributes."""

    def test_unknown_host_key_fields(self) -> None:
        error = UnknownHostKey(
            "unknown host key",
            fingerprint="SHA256:abc",
            expected_fingerprints=["ssh-ed25519 SHA256:def"],
        )
        assert error.fingerprint == "SHA256:abc"
        assert error.expected_fingerprints == ("ssh-ed25519 SHA256:def",)
        assert error.to_dict()["expected_fingerprints"] == ["ssh-ed25519 SHA256:def"]

    def test_remote_failure_fields(self) -> None:
        error = RemoteCommandFailure("exited 3", exit_status=3, command="false")
        assert error.exit_status == 3
        assert error.exit_signal is None
        data = error.to_dict()
        assert data["exit_status"] == 3
        assert data["command"] == "false"
        assert "exit_signal" not in data

    def test_remote_failure_signal(self) -> None:
        error = RemoteCommandFailure("killed", exit_signal="TERM", command="sleep 10")
        assert error.exit_status is None
        assert error.to_dict()["exit_signal"] == "TERM"

    def test_invalid_destination_records_input(self) -> None:
        error = InvalidDestination("bad", destination="ssh://")
        assert error.destination == "ssh://"
        assert error.to_dict()["destination"] == "ssh://"

    def test_unexpected_kind_records_kind(self) -> None:
        error = UnexpectedCertificateKind("host cert", kind=2)
        assert error.kind == 2
        assert error.to_dict()["cert_kind"] == 2


class TestJoinErrors:
    """Tests for join_errors."""

    def test_nothing_failed(self) -> None:
        assert join_errors() is None
        assert join_errors(None, None) is None

    def test_single_error_returned_as_is(self) -> None:
        error = SessionError("stdin failed")
        assert join_errors(None, error, None) is error

    def test_two_errors_compound(self) -> None:
        first = SessionError("copy failed")
        second = OSError("close failed")
        joined = join_errors(first, second)

        assert isinstance(joined, CompoundError)
        assert joined.errors == (first, second)
        assert str(joined) == "copy failed; close failed"

    def test_nested_compound_flattened(self) -> None:
        a, b, c = SessionError("a"), SessionError("b"), SessionError("c")
        joined = join_errors(join_errors(a, b), c)

        assert isinstance(joined, CompoundError)
        assert joined.errors == (a, b, c)

    def test_compound_needs_two(self) -> None:
        with pytest.raises(AssertionError):
            CompoundError([SessionError("only")])

    def test_compound_lists_types(self) -> None:
        joined = join_errors(SessionError("a"), ValueError("b"))
        assert joined.to_dict()["errors"] == ["SessionError", "ValueError"]

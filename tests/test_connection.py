"""
Connector integration tests against MockSSHServer.

Tests:
- Certificate authentication with issued credentials
- Event sequence: CONNECT -> AUTH -> CONNECT -> SESSION -> DISCONNECT
- Host keys outside the issued set abort the handshake
- Configuration errors are raised before any network I/O
- Dial and authentication failures map to the error taxonomy
"""
from __future__ import annotations

import dataclasses
import socket
from pathlib import Path
from typing import TYPE_CHECKING

import asyncssh
import pytest

from ssh_access.access import AccessDetails, join_host_port
from ssh_access.commands import Commands
from ssh_access.connection import SSHConnection, connect
from ssh_access.errors import (
    AuthFailed,
    DialError,
    HandshakeError,
    MissingSigner,
    RemoteCommandFailure,
    TrustError,
    UnknownHostKey,
)
from ssh_access.events import EventCollector, read_jsonl_events

if TYPE_CHECKING:
    from ssh_access.testing.mock_server import MockSSHServer


def unused_port() -> int:
    """A local port nothing is listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.asyncio
async def test_certificate_auth_and_command(
    access_details: AccessDetails,
    event_collector: EventCollector,
    make_streams,
) -> None:
    """
    Connect with an issued certificate and run a command.

    Success criteria:
    1. Command output reaches local stdout
    2. Events contain CONNECT -> AUTH -> CONNECT -> SESSION -> DISCONNECT
    """
    streams = make_streams()

    async with SSHConnection(access_details, event_collector=event_collector) as conn:
        await conn.run_session(Commands(("echo hello",)), streams)

    assert streams.stdout.getvalue() == b"hello\n"

    types = [e.event_type for e in event_collector.events]
    assert types[0] == "CONNECT"
    assert types[1] == "AUTH"
    assert types[2] == "CONNECT"
    assert types[-1] == "DISCONNECT"
    assert "SESSION" in types

    auth = event_collector.get_by_type("AUTH")[0]
    assert auth.data["status"] == "success"
    assert auth.data["method"] == "certificate"

    session = event_collector.get_by_type("SESSION")[0]
    assert session.data["kind"] == "commands"
    assert session.data["status"] == "completed"

    disconnect = event_collector.get_by_type("DISCONNECT")[0]
    assert disconnect.data["reason"] == "normal"


@pytest.mark.asyncio
async def test_jsonl_event_log(access_details: AccessDetails, temp_jsonl_path: Path) -> None:
    async with SSHConnection(access_details, event_log_path=temp_jsonl_path):
        pass

    events = read_jsonl_events(temp_jsonl_path)
    assert events[0].event_type == "CONNECT"
    assert events[-1].event_type == "DISCONNECT"


@pytest.mark.asyncio
async def test_connect_returns_open_connection(access_details: AccessDetails) -> None:
    conn = await connect(access_details)
    try:
        result = await conn.run("echo direct", encoding=None)
        assert result.stdout == b"direct\n"
    finally:
        conn.close()
        await conn.wait_closed()


@pytest.mark.asyncio
async def test_plain_public_key_auth(user_key: asyncssh.SSHKey) -> None:
    """Access details without a certificate authenticate with the bare key."""
    from ssh_access.testing.mock_server import MockServerConfig, MockSSHServer

    config = MockServerConfig(username="test", authorized_keys=[user_key.convert_to_public()])
    async with MockSSHServer(config) as server:
        details = AccessDetails(
            user="test",
            address=join_host_port("127.0.0.1", server.port),
            known_host_keys=[server.host_public_key],
            signer=user_key,
        )
        async with SSHConnection(details) as conn:
            assert conn.connection is not None


@pytest.mark.asyncio
async def test_unknown_host_key_aborts(
    access_details: AccessDetails,
    mock_ssh_server: "MockSSHServer",
    event_collector: EventCollector,
) -> None:
    """
    A server key outside the issued set aborts the handshake before
    authentication.
    """
    stranger = asyncssh.generate_private_key("ssh-ed25519").convert_to_public()
    details = dataclasses.replace(access_details, known_host_keys=(stranger,))

    with pytest.raises(UnknownHostKey) as exc_info:
        async with SSHConnection(details, event_collector=event_collector):
            pass

    error = exc_info.value
    assert "unknown host key" in str(error)
    assert error.fingerprint == mock_ssh_server.host_public_key.get_fingerprint("sha256")
    assert error.context.port == mock_ssh_server.port
    assert error.context.username == "test"

    assert not event_collector.get_by_type("AUTH")
    assert event_collector.get_by_type("ERROR")[0].data["error_type"] == "UnknownHostKey"

    # The server never saw an authentication attempt
    assert not mock_ssh_server.get_by_type("SERVER_AUTH")


@pytest.mark.asyncio
async def test_empty_known_keys_trust_nothing(access_details: AccessDetails) -> None:
    details = dataclasses.replace(access_details, known_host_keys=())

    with pytest.raises(TrustError):
        async with SSHConnection(details):
            pass


@pytest.mark.asyncio
async def test_missing_signer_before_io(
    user_cert: asyncssh.SSHCertificate,
    event_collector: EventCollector,
) -> None:
    """No private key: fail without dialling (the address is unroutable)."""
    details = AccessDetails(user="test", address="192.0.2.1:22", cert=user_cert)

    with pytest.raises(MissingSigner):
        async with SSHConnection(details, event_collector=event_collector):
            pass

    assert event_collector.events == []


@pytest.mark.asyncio
async def test_untrusted_ca_fails_auth(
    mock_ssh_server: "MockSSHServer",
    user_key: asyncssh.SSHKey,
    event_collector: EventCollector,
) -> None:
    rogue_ca = asyncssh.generate_private_key("ssh-ed25519")
    cert = rogue_ca.generate_user_certificate(user_key, "rogue", principals=["test"])
    details = AccessDetails(
        user="test",
        address=join_host_port("127.0.0.1", mock_ssh_server.port),
        known_host_keys=[mock_ssh_server.host_public_key],
        cert=cert,
        signer=user_key,
    )

    with pytest.raises(AuthFailed) as exc_info:
        async with SSHConnection(details, event_collector=event_collector):
            pass

    assert isinstance(exc_info.value, HandshakeError)
    assert exc_info.value.context.auth_method == "certificate"
    auth = event_collector.get_by_type("AUTH")[0]
    assert auth.data["status"] == "failed"


@pytest.mark.asyncio
async def test_wrong_principal_fails_auth(
    mock_ssh_server: "MockSSHServer",
    ca_key: asyncssh.SSHKey,
    user_key: asyncssh.SSHKey,
) -> None:
    """A certificate not issued for the login user is refused."""
    cert = ca_key.generate_user_certificate(user_key, "other", principals=["someone-else"])
    details = AccessDetails(
        user="test",
        address=join_host_port("127.0.0.1", mock_ssh_server.port),
        known_host_keys=[mock_ssh_server.host_public_key],
        cert=cert,
        signer=user_key,
    )

    with pytest.raises(AuthFailed):
        async with SSHConnection(details):
            pass


@pytest.mark.asyncio
async def test_connection_refused(access_details: AccessDetails) -> None:
    with pytest.raises(DialError) as exc_info:
        async with SSHConnection(access_details.with_port(unused_port())):
            pass

    assert exc_info.value.context.host == "127.0.0.1"


@pytest.mark.asyncio
async def test_address_override(
    access_details: AccessDetails,
    mock_ssh_server: "MockSSHServer",
) -> None:
    """The dialled address can differ from the one in the details."""
    details = access_details.with_port(unused_port())
    address = join_host_port("127.0.0.1", mock_ssh_server.port)

    async with SSHConnection(details, address=address) as conn:
        assert conn.details is details


@pytest.mark.asyncio
async def test_remote_failure_disconnect_reason(
    access_details: AccessDetails,
    event_collector: EventCollector,
    make_streams,
) -> None:
    with pytest.raises(RemoteCommandFailure):
        async with SSHConnection(access_details, event_collector=event_collector) as conn:
            await conn.run_session(Commands(("exit 3",)), make_streams())

    disconnect = event_collector.get_by_type("DISCONNECT")[0]
    assert disconnect.data["reason"] == "remote_failure"

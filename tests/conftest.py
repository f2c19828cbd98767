"""
Pytest fixtures for ssh-access tests.

Provides:
- Key material: a user CA, a user key and a user certificate for it
- A MockSSHServer that trusts the CA
- AccessDetails pointing at the mock server
- In-memory local streams
- Event capture fixture for asserting event sequences
"""
from __future__ import annotations

import io
from pathlib import Path
from typing import TYPE_CHECKING, AsyncGenerator, Generator

import asyncssh
import pytest

if TYPE_CHECKING:
    from ssh_access.access import AccessDetails
    from ssh_access.events import EventCollector
    from ssh_access.streams import LocalStreams
    from ssh_access.testing.mock_server import MockSSHServer

TEST_USER = "test"


@pytest.fixture(scope="session")
def ca_key() -> asyncssh.SSHKey:
    """CA that signs user certificates."""
    return asyncssh.generate_private_key("ssh-ed25519")


@pytest.fixture(scope="session")
def user_key() -> asyncssh.SSHKey:
    return asyncssh.generate_private_key("ssh-ed25519")


@pytest.fixture(scope="session")
def user_cert(ca_key: asyncssh.SSHKey, user_key: asyncssh.SSHKey) -> asyncssh.SSHCertificate:
    """A user certificate for ``user_key`` with principal TEST_USER."""
    return ca_key.generate_user_certificate(
        user_key,
        "test-cert",
        principals=[TEST_USER],
    )


@pytest.fixture(scope="session")
def host_cert(ca_key: asyncssh.SSHKey, user_key: asyncssh.SSHKey) -> asyncssh.SSHCertificate:
    """A host certificate, never acceptable as a login credential."""
    return ca_key.generate_host_certificate(
        user_key,
        "test-host-cert",
        principals=["localhost"],
    )


@pytest.fixture
async def mock_ssh_server(ca_key: asyncssh.SSHKey) -> AsyncGenerator["MockSSHServer", None]:
    """
    MockSSHServer accepting certificates signed by ``ca_key`` for TEST_USER.

    Usage:
        async def test_example(mock_ssh_server, access_details):
            async with SSHConnection(access_details) as conn:
                ...
    """
    from ssh_access.testing.mock_server import MockServerConfig, MockSSHServer

    config = MockServerConfig(
        username=TEST_USER,
        trusted_ca_keys=[ca_key],
    )

    async with MockSSHServer(config) as server:
        yield server


@pytest.fixture
def access_details(
    mock_ssh_server: "MockSSHServer",
    user_key: asyncssh.SSHKey,
    user_cert: asyncssh.SSHCertificate,
) -> "AccessDetails":
    """Access details the mock server accepts."""
    from ssh_access.access import AccessDetails, join_host_port

    return AccessDetails(
        user=TEST_USER,
        address=join_host_port("127.0.0.1", mock_ssh_server.port),
        known_host_keys=(mock_ssh_server.host_public_key,),
        cert=user_cert,
        signer=user_key,
    )


@pytest.fixture
def make_streams():
    """
    Factory for LocalStreams over in-memory buffers.

    Usage:
        streams = make_streams(b"input")
        ...
        assert streams.stdout.getvalue() == b"output"
    """
    from ssh_access.streams import LocalStreams

    def factory(stdin: bytes = b"") -> "LocalStreams":
        return LocalStreams(io.BytesIO(stdin), io.BytesIO(), io.BytesIO())

    return factory


@pytest.fixture
def streams(make_streams) -> "LocalStreams":
    """In-memory local streams with empty stdin."""
    return make_streams()


@pytest.fixture
def event_collector() -> Generator["EventCollector", None, None]:
    """
    Fixture for capturing and asserting event sequences.

    Usage:
        def test_example(event_collector):
            async with SSHConnection(details, event_collector=event_collector):
                ...
            assert event_collector.events[0].event_type == "CONNECT"
    """
    from ssh_access.events import EventCollector

    collector = EventCollector()
    yield collector
    collector.clear()


@pytest.fixture
def temp_jsonl_path(tmp_path: Path) -> Path:
    """Provide a temporary path for JSONL event log output."""
    return tmp_path / "events.jsonl"

"""
Access details: everything needed to open one authenticated connection.

A CredentialSource issues AccessDetails for a named target. The details
are produced once per invocation and never mutated; a different port is
applied by deriving a copy with ``with_port``.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Protocol

import asyncssh
from asyncssh.public_key import CERT_TYPE_HOST, CERT_TYPE_USER

DEFAULT_SSH_PORT = 22

CERT_KIND_NAMES = {
    CERT_TYPE_USER: "user",
    CERT_TYPE_HOST: "host",
}


@dataclass(frozen=True)
class AccessDetails:
    """
    Credentials and trust anchors for a single connection.

    Attributes:
        user: Remote login identity
        address: "host:port" endpoint, IPv6 hosts in brackets
        known_host_keys: Host keys the server may present; order does not
            matter, and an empty tuple means no server can be trusted
        cert: Optional user certificate for ``signer``
        signer: Private key used for public key authentication
    """
    user: str
    address: str
    known_host_keys: tuple[asyncssh.SSHKey, ...] = ()
    cert: asyncssh.SSHCertificate | None = None
    signer: asyncssh.SSHKey | None = None

    def __post_init__(self) -> None:
        # Lists are accepted for convenience but stored as a tuple
        if not isinstance(self.known_host_keys, tuple):
            object.__setattr__(self, "known_host_keys", tuple(self.known_host_keys))

    @property
    def host(self) -> str:
        return split_host_port(self.address)[0]

    @property
    def port(self) -> int:
        return split_host_port(self.address)[1]

    def with_port(self, port: int | None) -> "AccessDetails":
        """Return a copy whose address uses ``port`` (None keeps the current one)."""
        if port is None:
            return self
        return dataclasses.replace(self, address=join_host_port(self.host, port))


class CredentialSource(Protocol):
    """Anything that can issue AccessDetails for a named target."""

    async def get_access_details(self, target: str) -> AccessDetails: ...


def join_host_port(host: str, port: int) -> str:
    """Join host and port, bracketing IPv6 literals."""
    if ":" in host and not host.startswith("["):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def split_host_port(address: str) -> tuple[str, int]:
    """
    Split "host:port" into its parts.

    A missing port yields the default SSH port. Bracketed IPv6 literals
    ("[::1]:22") are unbracketed.

    Raises:
        ValueError: If the port is not a number
    """
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address {address!r}")
        host = address[1:end]
        rest = address[end + 1:]
        if not rest:
            return host, DEFAULT_SSH_PORT
        if not rest.startswith(":"):
            raise ValueError(f"unexpected text after ']' in address {address!r}")
        return host, int(rest[1:])

    if address.count(":") == 1:
        host, port = address.split(":")
        return host, int(port)

    # Bare hostname, or an unbracketed IPv6 literal
    return address, DEFAULT_SSH_PORT


def certificate_kind(cert: asyncssh.SSHCertificate) -> int | None:
    """
    Return the OpenSSH certificate type (user or host) of ``cert``.

    X.509 certificates have no OpenSSH type and yield None.
    """
    if cert.is_x509 or cert.is_x509_chain:
        return None
    return getattr(cert, "_cert_type", None)


def describe_certificate_kind(kind: int | None) -> str:
    if kind is None:
        return "x509"
    return CERT_KIND_NAMES.get(kind, f"unknown type {kind}")

"""
Host key trust decisions.

The only acceptable server identities are the keys issued alongside the
credentials. There is no known_hosts file, no trust-on-first-use and no
prompt: a key either byte-matches one of the known keys or the handshake
is aborted.

Provides:
- validate_host_key: The trust decision itself
- HostKeyValidator: The decision bound to one set of known keys
- TrustingSSHClient: AsyncSSH client that applies a validator
"""
from __future__ import annotations

import base64
import hashlib
import logging
from typing import Sequence

import asyncssh

from ssh_access.errors import InvalidHostKey, TrustError, UnknownHostKey

logger = logging.getLogger(__name__)


def get_key_fingerprint(key: asyncssh.SSHKey, hash_algo: str = "sha256") -> str:
    """
    Get the fingerprint of an SSH key.

    Args:
        key: AsyncSSH key object
        hash_algo: Hash algorithm (sha256 or md5)

    Returns:
        Fingerprint string (e.g., "SHA256:...")
    """
    public_data = key.public_data
    if hash_algo == "sha256":
        digest = hashlib.sha256(public_data).digest()
        b64 = base64.b64encode(digest).decode("ascii").rstrip("=")
        return f"SHA256:{b64}"
    elif hash_algo == "md5":
        digest = hashlib.md5(public_data).digest()
        hex_str = ":".join(f"{b:02x}" for b in digest)
        return f"MD5:{hex_str}"
    else:
        raise ValueError(f"Unknown hash algorithm: {hash_algo}")


def describe_key(key: asyncssh.SSHKey) -> str:
    """Return "algorithm fingerprint" for ``key``."""
    return f"{key.get_algorithm()} {get_key_fingerprint(key)}"


def _authorized_key_text(key: asyncssh.SSHKey) -> str:
    blob = base64.b64encode(key.public_data).decode("ascii")
    return f"{key.get_algorithm()} {blob}"


def validate_host_key(
    key: asyncssh.SSHKey | None,
    known_host_keys: Sequence[asyncssh.SSHKey],
) -> None:
    """
    Accept ``key`` only if its wire encoding equals that of a known key.

    Comparison is on the canonical SSH public key blob, never on
    fingerprints. An empty ``known_host_keys`` rejects every key.

    Raises:
        InvalidHostKey: No key was presented
        UnknownHostKey: The key matches none of ``known_host_keys``
    """
    if key is None:
        raise InvalidHostKey("got no host key from the server")

    presented = key.public_data
    for known in known_host_keys:
        if known.public_data == presented:
            return

    fingerprint = get_key_fingerprint(key)
    expected = [describe_key(k) for k in known_host_keys]
    raise UnknownHostKey(
        f"unknown host key: {_authorized_key_text(key)} "
        f"fingerprint: {fingerprint} "
        f"(expected fingerprints: {', '.join(expected)})",
        fingerprint=fingerprint,
        expected_fingerprints=expected,
    )


class HostKeyValidator:
    """
    A trust decision bound to one immutable set of known host keys.
    """

    def __init__(self, known_host_keys: Sequence[asyncssh.SSHKey]) -> None:
        self._known = tuple(known_host_keys)

    @property
    def known_host_keys(self) -> tuple[asyncssh.SSHKey, ...]:
        return self._known

    def validate(self, key: asyncssh.SSHKey | None) -> None:
        validate_host_key(key, self._known)

    def __call__(self, key: asyncssh.SSHKey | None) -> None:
        self.validate(key)


class TrustingSSHClient(asyncssh.SSHClient):
    """
    AsyncSSH client that checks the server's host key with a validator.

    AsyncSSH only lets the callback answer yes or no, so the detailed
    TrustError is kept on the client and re-raised by the connector once
    asyncssh reports HostKeyNotVerifiable.

    Usage:
        client = TrustingSSHClient(validator)
        conn = await asyncssh.connect(..., client_factory=lambda: client)
    """

    def __init__(self, validator: HostKeyValidator) -> None:
        super().__init__()
        self._validator = validator
        self._trust_error: TrustError | None = None
        self._server_key: asyncssh.SSHKey | None = None

    @property
    def trust_error(self) -> TrustError | None:
        """The reason the server's key was rejected, if it was."""
        return self._trust_error

    @property
    def server_key(self) -> asyncssh.SSHKey | None:
        return self._server_key

    def validate_host_public_key(
        self,
        host: str,
        addr: tuple[str, int],
        port: int,
        key: asyncssh.SSHKey,
    ) -> bool:
        """
        Called by AsyncSSH during the handshake. Returns True to accept.
        """
        self._server_key = key
        try:
            self._validator.validate(key)
        except TrustError as e:
            logger.warning("Rejected host key from %s:%d: %s", host or addr[0], port, e)
            self._trust_error = e
            return False

        logger.debug("Accepted host key %s from %s:%d", describe_key(key), host or addr[0], port)
        return True

    def validate_host_ca_key(
        self,
        host: str,
        addr: tuple[str, int],
        port: int,
        key: asyncssh.SSHKey,
    ) -> bool:
        """
        Called by AsyncSSH when the server presents a host certificate.

        Host certificates are never trusted: only the issued keys are.
        """
        fingerprint = get_key_fingerprint(key)
        expected = [describe_key(k) for k in self._validator.known_host_keys]
        self._trust_error = UnknownHostKey(
            f"unknown host key: host certificate signed by {describe_key(key)} "
            f"(expected fingerprints: {', '.join(expected)})",
            fingerprint=fingerprint,
            expected_fingerprints=expected,
        )
        logger.warning("Rejected host certificate from %s:%d", host or addr[0], port)
        return False


def host_key_algorithms(known_host_keys: Sequence[asyncssh.SSHKey]) -> list[str]:
    """
    Signature algorithms able to prove possession of ``known_host_keys``,
    in order, without duplicates.
    """
    algs: list[str] = []
    for key in known_host_keys:
        for alg in key.sig_algorithms:
            name = alg.decode("ascii")
            if name not in algs:
                algs.append(name)
    return algs

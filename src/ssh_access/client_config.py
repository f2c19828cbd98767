"""
Client configuration built from AccessDetails.

new_client_config() turns issued credentials into the keyword arguments
for asyncssh.connect(). The result offers exactly one public key
authentication method and always validates the server against the issued
host keys; nothing else on the local machine (ssh config, agent,
known_hosts, default keys) is consulted.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

import asyncssh
from asyncssh.public_key import CERT_TYPE_USER

from ssh_access.access import AccessDetails, certificate_kind, describe_certificate_kind
from ssh_access.errors import (
    ConfigurationError,
    CredentialError,
    ErrorContext,
    MissingSigner,
    UnexpectedCertificateKind,
)
from ssh_access.host_key import HostKeyValidator, TrustingSSHClient, host_key_algorithms

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 30.0


@dataclass
class ClientConfig:
    """
    Everything asyncssh needs to dial and authenticate.

    Attributes:
        username: Remote login identity
        keypair: The single key pair offered for authentication
        validator: Host key trust decision for this connection
        connect_timeout: Bound on dial plus handshake, None for no bound
        options: Extra asyncssh.connect() keyword arguments
    """
    username: str
    keypair: asyncssh.SSHKeyPair
    validator: HostKeyValidator
    connect_timeout: float | None = DEFAULT_CONNECT_TIMEOUT
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def auth_method(self) -> str:
        return "certificate" if self.keypair.has_cert else "publickey"

    def create_client(self) -> TrustingSSHClient:
        return TrustingSSHClient(self.validator)

    def to_connect_options(self) -> dict[str, Any]:
        """
        Build keyword arguments for asyncssh.connect().

        The returned dict has no ``client_factory``; the connector supplies
        one so it can read the rejected host key back.
        """
        options: dict[str, Any] = {
            k: v for k, v in self.options.items() if k not in RESERVED_OPTIONS
        }
        options.update(
            username=self.username,
            client_keys=[self.keypair],
            # Three empty lists, not (): an empty value makes asyncssh fall
            # back to ~/.ssh/known_hosts. Every key reaches the validator.
            known_hosts=([], [], []),
            config=[],
            agent_path=None,
            password=None,
            password_auth=False,
            kbdint_auth=False,
            gss_auth=False,
            gss_kex=False,
            host_based_auth=False,
            public_key_auth=True,
            preferred_auth="publickey",
            connect_timeout=self.connect_timeout,
        )
        algs = host_key_algorithms(self.validator.known_host_keys)
        if algs:
            options["server_host_key_algs"] = algs
        return options


ClientOption = Callable[[ClientConfig], None]


def with_connect_timeout(seconds: float | None) -> ClientOption:
    """Bound dial plus handshake by ``seconds`` (None removes the bound)."""
    if seconds is not None:
        assert seconds > 0, f"connect timeout must be positive, got {seconds}"

    def apply(config: ClientConfig) -> None:
        config.connect_timeout = seconds

    return apply


# Supplied by the connector on every call
RESERVED_OPTIONS = frozenset({"host", "port", "client_factory"})


def with_options(**options: Any) -> ClientOption:
    """
    Pass extra keyword arguments to asyncssh.connect(), e.g. keepalive
    settings or algorithm lists.

    Authentication and host key settings cannot be changed this way.

    Raises:
        ConfigurationError: an option the connector supplies itself was given
    """
    reserved = sorted(RESERVED_OPTIONS & options.keys())
    if reserved:
        raise ConfigurationError(f"connect options cannot override {', '.join(reserved)}")

    def apply(config: ClientConfig) -> None:
        config.options.update(options)

    return apply


def new_client_config(details: AccessDetails, *opts: ClientOption) -> ClientConfig:
    """
    Build a ClientConfig from issued access details.

    Override functions run first; the username, key pair and validator
    are assigned afterwards so no override can remove the host key check
    or offer another authentication method.

    Raises:
        MissingSigner: ``details`` has no private key
        UnexpectedCertificateKind: the certificate is not a user certificate
        CredentialError: the certificate does not belong to the signer
    """
    ctx = ErrorContext(username=details.user)

    if details.signer is None:
        raise MissingSigner("access details have no private key to sign with", context=ctx)

    if details.cert is not None:
        kind = certificate_kind(details.cert)
        if kind != CERT_TYPE_USER:
            raise UnexpectedCertificateKind(
                f"expected an SSH user certificate but got a "
                f"{describe_certificate_kind(kind)} certificate",
                kind=kind,
                context=ctx,
            )
        try:
            keypair = asyncssh.load_keypairs([(details.signer, details.cert)])[0]
        except ValueError as e:
            ctx.original_error = str(e)
            raise CredentialError(
                f"certificate does not match the private key: {e}", context=ctx
            ) from e
    else:
        keypair = asyncssh.load_keypairs([details.signer])[0]

    validator = HostKeyValidator(details.known_host_keys)
    config = ClientConfig(username=details.user, keypair=keypair, validator=validator)

    for opt in opts:
        opt(config)

    config.username = details.user
    config.keypair = keypair
    config.validator = validator

    logger.debug(
        "Client configured for %s with %s auth and %d known host key(s)",
        details.user, config.auth_method, len(details.known_host_keys),
    )
    return config

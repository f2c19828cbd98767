"""
Amazon Lightsail credential source.

Lightsail's GetInstanceAccessDetails API issues, per call, a fresh key
pair, a short-lived OpenSSH user certificate for it, the login user and
the instance's host keys. That is exactly an AccessDetails, so no local
key material or known_hosts file is needed to reach an instance.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from typing import Any, Callable

import asyncssh
import boto3
import botocore.session
from asyncssh.public_key import CERT_TYPE_USER, decode_ssh_public_key
from botocore.credentials import (
    AssumeRoleProvider,
    CanonicalNameCredentialSourcer,
    ContainerProvider,
    EnvProvider,
    InstanceMetadataProvider,
    ProfileProviderBuilder,
)
from botocore.exceptions import BotoCoreError, ClientError
from botocore.utils import InstanceMetadataFetcher

from ssh_access.access import (
    DEFAULT_SSH_PORT,
    AccessDetails,
    certificate_kind,
    describe_certificate_kind,
    join_host_port,
)
from ssh_access.errors import (
    ConfigurationError,
    CredentialError,
    ErrorContext,
    UnexpectedCertificateKind,
)
from ssh_access.validation import validate_instance_name

logger = logging.getLogger(__name__)


def parse_host_keys(host_keys: list[dict[str, Any]]) -> tuple[asyncssh.SSHKey, ...]:
    """
    Decode the ``hostKeys`` of an access details response.

    Each ``publicKey`` is a base64 SSH wire-format public key.
    """
    keys = []
    for attrs in host_keys:
        encoded = attrs.get("publicKey") or ""
        try:
            blob = base64.b64decode(encoded, validate=True)
            keys.append(decode_ssh_public_key(blob))
        except (binascii.Error, ValueError, asyncssh.KeyImportError) as e:
            raise CredentialError(f"invalid host key from Lightsail: {e}") from e
    return tuple(keys)


def parse_cert_key(encoded: str) -> asyncssh.SSHCertificate:
    """
    Decode ``certKey``: an OpenSSH user certificate in authorized_keys form.

    Raises:
        CredentialError: Not a certificate
        UnexpectedCertificateKind: A certificate, but not a user certificate
    """
    try:
        cert = asyncssh.import_certificate(encoded)
    except (asyncssh.KeyImportError, ValueError) as e:
        raise CredentialError(f"expected an SSH certificate from Lightsail: {e}") from e

    kind = certificate_kind(cert)
    if kind != CERT_TYPE_USER:
        raise UnexpectedCertificateKind(
            f"expected an SSH user certificate but got a "
            f"{describe_certificate_kind(kind)} certificate",
            kind=kind,
        )
    return cert


def parse_access_details(response: dict[str, Any]) -> AccessDetails:
    """Convert a GetInstanceAccessDetails response into AccessDetails."""
    details = response.get("accessDetails")
    if not details:
        raise CredentialError("Lightsail response has no access details")

    known = parse_host_keys(details.get("hostKeys") or [])
    cert = parse_cert_key(details.get("certKey") or "")

    try:
        signer = asyncssh.import_private_key(details.get("privateKey") or "")
    except (asyncssh.KeyImportError, ValueError) as e:
        raise CredentialError(f"invalid private key from Lightsail: {e}") from e

    ip_address = details.get("ipAddress")
    if not ip_address:
        raise CredentialError("Lightsail did not return an IP address for the instance")

    return AccessDetails(
        user=details.get("username") or "",
        address=join_host_port(ip_address, DEFAULT_SSH_PORT),
        known_host_keys=known,
        cert=cert,
        signer=signer,
    )


def _mfa_assume_role_provider(
    botocore_session: botocore.session.Session,
    mfa_code: str,
) -> AssumeRoleProvider:
    """An assume-role provider that answers MFA prompts with ``mfa_code``."""
    cache: dict[str, Any] = {}
    return AssumeRoleProvider(
        load_config=lambda: botocore_session.full_config,
        client_creator=botocore_session.create_client,
        cache=cache,
        profile_name=botocore_session.get_config_variable("profile") or "default",
        prompter=lambda prompt: mfa_code,
        credential_sourcer=CanonicalNameCredentialSourcer([
            EnvProvider(),
            ContainerProvider(),
            InstanceMetadataProvider(iam_role_fetcher=InstanceMetadataFetcher()),
        ]),
        profile_provider_builder=ProfileProviderBuilder(botocore_session, cache=cache),
    )


def _use_mfa_code(botocore_session: botocore.session.Session, mfa_code: str) -> None:
    """Replace the stock assume-role provider with one that knows the MFA code."""
    resolver = botocore_session.get_component("credential_provider")
    resolver.insert_after("assume-role", _mfa_assume_role_provider(botocore_session, mfa_code))
    # remove() drops the first match, which is the stock provider
    resolver.remove("assume-role")


def create_lightsail_client(
    profile: str | None = None,
    region: str | None = None,
    mfa_code: str | None = None,
    endpoint_url: str | None = None,
    session_factory: Callable[..., Any] = boto3.Session,
) -> Any:
    """
    Build a boto3 Lightsail client from the usual AWS configuration
    (environment, shared config and credentials files).
    """
    botocore_session = botocore.session.Session(profile=profile or None)
    if mfa_code:
        _use_mfa_code(botocore_session, mfa_code)

    session = session_factory(botocore_session=botocore_session, region_name=region or None)
    return session.client("lightsail", endpoint_url=endpoint_url or None)


class LightsailCredentialSource:
    """
    Issues AccessDetails for Lightsail instances.

    Usage:
        source = LightsailCredentialSource.from_config(profile="dev")
        details = await source.get_access_details("my-instance")

    Args:
        client: A boto3 Lightsail client, or anything with the same
            get_instance_access_details method
    """

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_config(
        cls,
        profile: str | None = None,
        region: str | None = None,
        mfa_code: str | None = None,
        endpoint_url: str | None = None,
        session_factory: Callable[..., Any] = boto3.Session,
    ) -> "LightsailCredentialSource":
        try:
            client = create_lightsail_client(
                profile=profile,
                region=region,
                mfa_code=mfa_code,
                endpoint_url=endpoint_url,
                session_factory=session_factory,
            )
        except BotoCoreError as e:
            raise ConfigurationError(f"AWS configuration error: {e}") from e
        return cls(client)

    async def get_access_details(self, target: str) -> AccessDetails:
        """
        Ask Lightsail for SSH access details for instance ``target``.

        Raises:
            ConfigurationError: ``target`` is not a valid instance name
            CredentialError: The API call failed or returned bad material
        """
        try:
            validate_instance_name(target)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        ctx = ErrorContext(extra={"instance": target})
        logger.debug("Requesting access details for instance %s", target)
        try:
            response = await asyncio.to_thread(
                self._client.get_instance_access_details,
                instanceName=target,
                protocol="ssh",
            )
        except ClientError as e:
            ctx.original_error = str(e)
            error = e.response.get("Error", {})
            raise CredentialError(
                f"GetInstanceAccessDetails failed for {target!r}: "
                f"{error.get('Code', 'Unknown')}: {error.get('Message', e)}",
                context=ctx,
            ) from e
        except BotoCoreError as e:
            ctx.original_error = str(e)
            raise CredentialError(
                f"GetInstanceAccessDetails failed for {target!r}: {e}", context=ctx
            ) from e

        details = parse_access_details(response)
        logger.info(
            "Lightsail issued credentials for %s@%s with %d host key(s)",
            details.user, details.address, len(details.known_host_keys),
        )
        return details

"""Authorization server location.

Resolves the base URL that authorization server discovery or dynamic client
registration should run against.
"""

from __future__ import annotations

import logging
from typing import Protocol

from ezoauth.models.discovery import DiscoveryAlgorithm, ProtectedResourceMetadata
from ezoauth.models.errors import AuthorizationServerNotFoundError
from ezoauth.primitives.discovery import MetadataResolver
from ezoauth.primitives.jwt import VerificationPolicy
from ezoauth.primitives.urls import normalize_url

logger = logging.getLogger(__name__)


class ProtectedResourceResolver(Protocol):
    async def resolve_protected_resource(
        self,
        resource_identifier: str,
        resource_path: str | None = None,
        verification_policy: VerificationPolicy | None = None,
    ) -> ProtectedResourceMetadata | None: ...

    async def close(self) -> None: ...


class AuthorizationServerLocator:
    """Maps an issuer or resource identifier to an authorization server URL.

    For ``oidc`` and ``oauth2`` the input already is the server, so it is only
    normalized. For ``protected-resource`` the resource's RFC 9728 metadata
    is fetched and its first authorization server is used. The order of
    ``authorization_servers`` is the resource server's preference and is
    never changed here.
    """

    def __init__(self, resolver: ProtectedResourceResolver | None = None):
        self._resolver = resolver or MetadataResolver()

    async def resolve_authorization_server_url(
        self,
        issuer_or_resource: str,
        algorithm: DiscoveryAlgorithm | str = DiscoveryAlgorithm.OIDC,
        resource_path: str | None = None,
        jwt_verification_policy: VerificationPolicy | None = None,
    ) -> str:
        """Resolve the authorization server URL.

        Args:
            issuer_or_resource: Issuer URL, or resource identifier for
                ``protected-resource``
            algorithm: One of ``oidc``, ``oauth2`` or ``protected-resource``
            resource_path: Optional resource path for protected-resource lookup
            jwt_verification_policy: Policy for signed resource metadata

        Returns:
            The authorization server URL

        Raises:
            AuthorizationServerNotFoundError: If the resource names no server
            ValueError: If the algorithm or URL is invalid
        """
        algorithm = DiscoveryAlgorithm(algorithm)

        if algorithm is not DiscoveryAlgorithm.PROTECTED_RESOURCE:
            return normalize_url(issuer_or_resource)

        metadata = await self._resolver.resolve_protected_resource(
            issuer_or_resource, resource_path, jwt_verification_policy
        )
        if metadata is None or not metadata.authorization_servers:
            raise AuthorizationServerNotFoundError("No authorization servers found")

        server_url = metadata.authorization_servers[0]
        logger.debug(f"Resolved authorization server {server_url} for {issuer_or_resource}")
        return server_url

    async def close(self) -> None:
        await self._resolver.close()

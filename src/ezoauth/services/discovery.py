"""Client configuration discovery service.

Builds a ClientConfiguration either from authorization server metadata and
known client credentials, or through dynamic client registration (RFC 7591).
Both paths first resolve the authorization server URL through the locator,
so a protected resource identifier can stand in for an issuer.
"""

from __future__ import annotations

import logging
from typing import TypeVar

from ezoauth.models.config import ClientConfiguration
from ezoauth.models.discovery import AuthorizationServerMetadata, DiscoveryAlgorithm
from ezoauth.models.errors import RegistrationError
from ezoauth.models.registration import ClientAuth, ClientCredentials, ClientMetadata
from ezoauth.primitives.jwt import VerificationPolicy
from ezoauth.primitives.locator import AuthorizationServerLocator
from ezoauth.services.tokens import TokenEndpointClient

logger = logging.getLogger(__name__)

C = TypeVar("C", bound=ClientConfiguration)


class ConfigurationDiscovery:
    """Resolves authorization servers and turns their metadata into configurations."""

    def __init__(
        self,
        locator: AuthorizationServerLocator | None = None,
        token_client: TokenEndpointClient | None = None,
        timeout: float = 30.0,
    ):
        self._locator = locator or AuthorizationServerLocator()
        self._token_client = token_client or TokenEndpointClient(timeout=timeout)

    async def discover(
        self,
        issuer: str,
        *,
        client_id: str,
        redirect_uri: str,
        client_secret: str | None = None,
        algorithm: DiscoveryAlgorithm | str = DiscoveryAlgorithm.OIDC,
        protected_resource_policy: VerificationPolicy | None = None,
        config_class: type[C] = ClientConfiguration,
    ) -> C:
        """Build a configuration from discovered server metadata.

        Args:
            issuer: Issuer URL, or resource identifier for ``protected-resource``
            client_id: Pre-registered client identifier
            redirect_uri: Redirect URI registered for the client
            client_secret: Secret for confidential clients
            algorithm: Discovery algorithm
            protected_resource_policy: Policy for signed resource metadata
            config_class: Configuration class to instantiate

        Raises:
            AuthorizationServerNotFoundError: If the resource names no server
            AuthorizationServerMetadataError: If server metadata discovery fails
        """
        server = await self._server_metadata(
            issuer, algorithm, protected_resource_policy
        )
        client = ClientCredentials(client_id=client_id, client_secret=client_secret)
        return config_class(server, client, redirect_uri)

    async def register(
        self,
        issuer: str,
        *,
        redirect_uri: str,
        client_name: str | None = None,
        algorithm: DiscoveryAlgorithm | str = DiscoveryAlgorithm.OIDC,
        protected_resource_policy: VerificationPolicy | None = None,
        config_class: type[C] = ClientConfiguration,
    ) -> C:
        """Build a configuration by registering a new public client.

        Raises:
            RegistrationError: If the server has no registration endpoint or
                registration fails
        """
        server = await self._server_metadata(
            issuer, algorithm, protected_resource_policy
        )
        if not server.registration_endpoint:
            raise RegistrationError(
                f"Authorization server {server.issuer} does not support "
                f"dynamic client registration"
            )

        client_metadata = ClientMetadata(
            client_name=client_name,
            redirect_uris=[redirect_uri],
            token_endpoint_auth_method=ClientAuth.NONE.value,
        )
        client = await self._token_client.register_client(
            server.registration_endpoint, client_metadata
        )
        return config_class(server, client, redirect_uri)

    async def _server_metadata(
        self,
        issuer: str,
        algorithm: DiscoveryAlgorithm | str,
        protected_resource_policy: VerificationPolicy | None,
    ) -> AuthorizationServerMetadata:
        algorithm = DiscoveryAlgorithm(algorithm)
        server_url = await self._locator.resolve_authorization_server_url(
            issuer,
            algorithm,
            jwt_verification_policy=protected_resource_policy,
        )

        # Servers found through resource metadata are plain OAuth servers
        if algorithm is DiscoveryAlgorithm.PROTECTED_RESOURCE:
            algorithm = DiscoveryAlgorithm.OAUTH2

        logger.debug(f"Discovering {algorithm.value} metadata for {server_url}")
        return await self._token_client.discover_server_metadata(server_url, algorithm)

    async def close(self) -> None:
        await self._locator.close()
        await self._token_client.close()

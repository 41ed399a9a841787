"""OAuth client configuration.

Couples the authorization server metadata with the client's identity,
redirect URI, requested scopes and provider-specific parameters.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import ValidationError

from ezoauth.models.discovery import AuthorizationServerMetadata, DiscoveryAlgorithm
from ezoauth.models.errors import InvalidStateError
from ezoauth.models.registration import ClientAuth, ClientCredentials, GrantType
from ezoauth.primitives.urls import normalize_url, origin

if TYPE_CHECKING:
    from ezoauth.primitives.jwt import VerificationPolicy
    from ezoauth.services.discovery import ConfigurationDiscovery

C = TypeVar("C", bound="ClientConfiguration")


class ClientConfiguration:
    """Client identity plus the server metadata it talks to.

    Builder methods (``with_scopes``, ``with_refresh_token``,
    ``with_params``) are meant to be called before a flow starts. Flow
    execution never mutates a configuration, so one instance can serve many
    authorization attempts.

    Subclass and override ``with_refresh_token`` for providers that need
    extra parameters to issue refresh tokens.
    """

    def __init__(
        self,
        server: AuthorizationServerMetadata,
        client: ClientCredentials,
        redirect_uri: str,
    ):
        self._server = server
        self._client = client
        self.redirect_uri = normalize_url(redirect_uri)
        self.supports_pkce = server.supports_pkce()
        self._scopes: list[str] = []
        self._additional_params: dict[str, str] = {}

    @property
    def server(self) -> AuthorizationServerMetadata:
        return self._server

    @property
    def client(self) -> ClientCredentials:
        return self._client

    @property
    def scopes(self) -> list[str]:
        return list(self._scopes)

    @property
    def additional_params(self) -> dict[str, str]:
        return dict(self._additional_params)

    def with_scopes(self: C, scopes: list[str]) -> C:
        self._scopes = list(scopes)
        return self

    def with_params(self: C, params: Mapping[str, str]) -> C:
        """Add provider-specific authorization and token request parameters."""
        self._additional_params.update(params)
        return self

    def with_refresh_token(self: C) -> C:
        """Ask the provider for a refresh token. No-op for standard servers."""
        return self

    @classmethod
    def create(
        cls: type[C],
        authorization_url: str,
        token_url: str,
        client_id: str,
        redirect_uri: str,
        client_secret: str | None = None,
        grant_types: list[GrantType] | None = None,
        scopes: list[str] | None = None,
        token_auth_methods: list[ClientAuth] | None = None,
        code_challenge_methods: list[str] | None = None,
    ) -> C:
        """Build a configuration from manually supplied endpoints.

        The issuer is taken to be the origin of the authorization endpoint.
        PKCE is only assumed when ``code_challenge_methods`` includes S256.
        """
        server = AuthorizationServerMetadata(
            issuer=origin(authorization_url),
            authorization_endpoint=authorization_url,
            token_endpoint=token_url,
            grant_types_supported=[
                GrantType(g).value
                for g in (grant_types or [GrantType.AUTHORIZATION_CODE])
            ],
            scopes_supported=scopes,
            token_endpoint_auth_methods_supported=(
                [ClientAuth(m).value for m in token_auth_methods]
                if token_auth_methods
                else None
            ),
            code_challenge_methods_supported=code_challenge_methods,
        )
        client = ClientCredentials(
            client_id=client_id,
            client_secret=client_secret,
            token_endpoint_auth_method=(
                ClientAuth(token_auth_methods[0]) if token_auth_methods else None
            ),
        )
        return cls(server, client, redirect_uri)

    @classmethod
    async def from_discovery(
        cls: type[C],
        issuer: str,
        client_id: str,
        redirect_uri: str,
        client_secret: str | None = None,
        algorithm: DiscoveryAlgorithm | str = DiscoveryAlgorithm.OIDC,
        protected_resource_policy: VerificationPolicy | None = None,
        discovery: ConfigurationDiscovery | None = None,
    ) -> C:
        """Build a configuration from authorization server metadata discovery."""
        from ezoauth.services.discovery import ConfigurationDiscovery

        owned = discovery is None
        discovery = discovery or ConfigurationDiscovery()
        try:
            return await discovery.discover(
                issuer,
                client_id=client_id,
                redirect_uri=redirect_uri,
                client_secret=client_secret,
                algorithm=algorithm,
                protected_resource_policy=protected_resource_policy,
                config_class=cls,
            )
        finally:
            if owned:
                await discovery.close()

    @classmethod
    async def from_registration(
        cls: type[C],
        issuer: str,
        redirect_uri: str,
        client_name: str | None = None,
        algorithm: DiscoveryAlgorithm | str = DiscoveryAlgorithm.OIDC,
        protected_resource_policy: VerificationPolicy | None = None,
        discovery: ConfigurationDiscovery | None = None,
    ) -> C:
        """Build a configuration through dynamic client registration."""
        from ezoauth.services.discovery import ConfigurationDiscovery

        owned = discovery is None
        discovery = discovery or ConfigurationDiscovery()
        try:
            return await discovery.register(
                issuer,
                redirect_uri=redirect_uri,
                client_name=client_name,
                algorithm=algorithm,
                protected_resource_policy=protected_resource_policy,
                config_class=cls,
            )
        finally:
            if owned:
                await discovery.close()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "scopes": self.scopes,
            "supportsPKCE": self.supports_pkce,
            "server": self._server.model_dump(mode="json", exclude_none=True),
            "client": self._client.model_dump(mode="json", exclude_none=True),
            "redirectUri": self.redirect_uri,
            "additionalParams": self.additional_params,
        }

    @classmethod
    def from_dict(cls: type[C], data: Mapping[str, Any]) -> C:
        """Restore a configuration from its stored form.

        Raises:
            InvalidStateError: If the record cannot be turned into a configuration
        """
        if not isinstance(data, Mapping):
            raise InvalidStateError("Client configuration record must be an object")

        try:
            config = cls(
                AuthorizationServerMetadata.model_validate(data["server"]),
                ClientCredentials.model_validate(data["client"]),
                data["redirectUri"],
            )
            config._scopes = list(data.get("scopes") or [])
            config._additional_params = dict(data.get("additionalParams") or {})
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise InvalidStateError(f"Invalid client configuration record: {e}") from e
        return config

    def __str__(self) -> str:
        return json.dumps(self.to_dict())

"""OAuth 2.0 token endpoint client.

Covers the HTTP side of the authorization code flow that the orchestrator
treats as a black box:
- Authorization server metadata discovery (RFC 8414 / OpenID Connect Discovery)
- Dynamic client registration (RFC 7591)
- Authorization URL construction
- Authorization code exchange with PKCE (RFC 6749 Section 4.1.3, RFC 7636)
- Refresh (RFC 6749 Section 6) and revocation (RFC 7009)

Token requests use application/x-www-form-urlencoded encoding. Nothing is
retried: authorization codes are single-use.
"""

from __future__ import annotations

import base64
import logging
import secrets
from collections.abc import Mapping
from urllib.parse import parse_qs, quote_plus, urlparse

import httpx
import jwt
from pydantic import ValidationError

from ezoauth.models.config import ClientConfiguration
from ezoauth.models.discovery import AuthorizationServerMetadata, DiscoveryAlgorithm
from ezoauth.models.errors import (
    AuthorizationCallbackError,
    AuthorizationError,
    AuthorizationResponseError,
    AuthorizationServerMetadataError,
    ClientResponseError,
    RegistrationError,
    StateValidationError,
    TokenError,
    TokenExchangeError,
    TokenRefreshError,
    TokenRevocationError,
)
from ezoauth.models.flow import AuthorizationResponse
from ezoauth.models.registration import ClientAuth, ClientCredentials, ClientMetadata
from ezoauth.models.tokens import TokenResponse
from ezoauth.primitives.urls import origin
from ezoauth.services.hooks import RequestHook
from ezoauth.services.security import validate_state

logger = logging.getLogger(__name__)


class TokenEndpointClient:
    """HTTP client for authorization server endpoints.

    Provider-specific HTTP behavior is injected through ``request_hooks``
    (httpx request event hooks) rather than subclassing.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        request_hooks: list[RequestHook] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the token endpoint client.

        Args:
            timeout: HTTP request timeout in seconds
            request_hooks: Hooks run on every outgoing request
            http_client: Optional pre-configured client (hooks are not applied)
        """
        self.timeout = timeout
        self._http_client = http_client or httpx.AsyncClient(
            timeout=timeout,
            event_hooks={"request": list(request_hooks or [])},
        )

    # Discovery and registration

    async def discover_server_metadata(
        self,
        server_url: str,
        algorithm: DiscoveryAlgorithm | str = DiscoveryAlgorithm.OIDC,
    ) -> AuthorizationServerMetadata:
        """Discover authorization server metadata.

        Args:
            server_url: Authorization server (issuer) URL
            algorithm: ``oidc`` tries OpenID Connect Discovery first, ``oauth2``
                tries RFC 8414 first

        Returns:
            Authorization server metadata

        Raises:
            AuthorizationServerMetadataError: If discovery fails
        """
        discovery_urls = self._build_discovery_urls(server_url, algorithm)

        for url in discovery_urls:
            try:
                logger.debug(f"Trying authorization server metadata discovery: {url}")
                response = await self._http_client.get(
                    url, headers={"Accept": "application/json"}
                )

                if response.status_code == 200:
                    metadata = AuthorizationServerMetadata.model_validate_json(
                        response.text
                    )
                    self._validate_issuer(server_url, metadata)
                    logger.debug(
                        f"Successfully discovered authorization server metadata from: "
                        f"{url}"
                    )
                    return metadata
                elif response.status_code >= 500:
                    # Server error - don't try other URLs
                    break

            except ValidationError:
                # Invalid metadata - try next URL
                continue
            except httpx.RequestError:
                # Network error - try next URL
                continue

        raise AuthorizationServerMetadataError(
            f"Failed to discover authorization server metadata for {server_url}. "
            f"Tried URLs: {discovery_urls}"
        )

    def _build_discovery_urls(
        self, server_url: str, algorithm: DiscoveryAlgorithm | str
    ) -> list[str]:
        """Build ordered list of discovery URLs to try.

        RFC 8414 inserts the well-known segment before the issuer path;
        OpenID Connect Discovery appends it after.
        """
        base_url = origin(server_url)
        path = urlparse(server_url).path.rstrip("/")

        oauth_url = f"{base_url}/.well-known/oauth-authorization-server{path}"
        oidc_url = f"{base_url}{path}/.well-known/openid-configuration"

        if DiscoveryAlgorithm(algorithm) is DiscoveryAlgorithm.OIDC:
            return [oidc_url, oauth_url]
        return [oauth_url, oidc_url]

    def _validate_issuer(
        self, server_url: str, metadata: AuthorizationServerMetadata
    ) -> None:
        """RFC 8414 Section 3.3: issuer must match the URL discovery started from."""
        if metadata.issuer.rstrip("/") != server_url.rstrip("/"):
            raise AuthorizationServerMetadataError(
                f"Issuer mismatch: expected {server_url}, got {metadata.issuer}"
            )

    async def register_client(
        self,
        registration_endpoint: str,
        client_metadata: ClientMetadata,
        initial_access_token: str | None = None,
    ) -> ClientCredentials:
        """Register a new OAuth client with the authorization server.

        Args:
            registration_endpoint: Client registration endpoint URL
            client_metadata: Client metadata to register
            initial_access_token: Optional token for protected registration

        Returns:
            Credentials issued by the server

        Raises:
            RegistrationError: If registration fails
        """
        logger.debug(f"Registering client at {registration_endpoint}")

        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if initial_access_token:
            headers["Authorization"] = f"Bearer {initial_access_token}"

        try:
            response = await self._http_client.post(
                registration_endpoint,
                json=client_metadata.model_dump(exclude_none=True, mode="json"),
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise RegistrationError(f"HTTP error during registration: {e}") from e

        if response.status_code not in (200, 201):
            raise RegistrationError(
                f"Registration failed with HTTP {response.status_code}: "
                f"{_describe_error(response)}"
            )

        try:
            credentials = ClientCredentials.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise RegistrationError(f"Invalid registration response format: {e}") from e

        logger.info(
            f"Successfully registered client {credentials.client_id} "
            f"at {registration_endpoint}"
        )
        return credentials

    # Authorization code flow

    def build_authorization_url(
        self, config: ClientConfiguration, params: Mapping[str, str]
    ) -> str:
        """Build the authorization URL for the configured server.

        ``response_type`` and ``client_id`` are added; ``params`` win on
        conflicts. Existing query parameters of the endpoint are kept.
        """
        query = {
            "response_type": "code",
            "client_id": config.client.client_id,
            **params,
        }
        url = httpx.URL(config.server.authorization_endpoint).copy_merge_params(query)
        return str(url)

    async def authorization_code_grant(
        self,
        config: ClientConfiguration,
        callback_url: str,
        *,
        expected_state: str,
        pkce_code_verifier: str | None = None,
        expected_nonce: str | None = None,
    ) -> TokenResponse:
        """Validate the callback and exchange its code for tokens.

        Args:
            config: Client configuration the flow was started with
            callback_url: Full callback URL received from the server
            expected_state: State sent in the authorization request
            pkce_code_verifier: Verifier matching the sent code challenge
            expected_nonce: Nonce the ID token must carry, if any

        Returns:
            TokenResponse: Successful token response

        Raises:
            StateValidationError: If state is missing or does not match
            AuthorizationError: If the server reported an authorization error
            ClientResponseError: If the token endpoint rejected the request
            TokenExchangeError: For transport failures and invalid responses
        """
        auth_response = self._parse_callback_url(callback_url)

        if auth_response.state is None:
            raise StateValidationError(
                "Authorization server callback missing required state parameter"
            )
        validate_state(expected_state, auth_response.state)

        if auth_response.is_error():
            logger.warning(
                f"Authorization callback contained error: {auth_response.error} - "
                f"{auth_response.error_description}"
            )
            raise AuthorizationError(
                f"Authorization failed: {auth_response.error} "
                f"({auth_response.error_description or ''})"
            )
        if not auth_response.is_success():
            raise AuthorizationResponseError("Missing authorization code")

        form_data = {
            "grant_type": "authorization_code",
            "code": auth_response.code,
            "redirect_uri": config.redirect_uri,
        }
        if pkce_code_verifier:
            form_data["code_verifier"] = pkce_code_verifier

        logger.debug(
            f"Exchanging authorization code at {config.server.token_endpoint} "
            f"for client {config.client.client_id}"
        )
        token_response = await self._token_request(
            config, form_data, TokenExchangeError, "token exchange"
        )

        if expected_nonce is not None:
            if not token_response.id_token:
                raise TokenExchangeError("ID token required to validate nonce")
            self._validate_nonce(token_response.id_token, expected_nonce)

        logger.info("Token exchange successful")
        return token_response

    async def refresh_token_grant(
        self,
        config: ClientConfiguration,
        refresh_token: str,
        additional_params: Mapping[str, str] | None = None,
    ) -> TokenResponse:
        """Refresh an access token using a refresh token."""
        form_data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            **(additional_params or {}),
        }
        logger.debug(f"Refreshing access token at {config.server.token_endpoint}")
        return await self._token_request(
            config, form_data, TokenRefreshError, "token refresh"
        )

    async def revoke_token(
        self,
        config: ClientConfiguration,
        token: str,
        additional_params: Mapping[str, str] | None = None,
    ) -> None:
        """Revoke a token at the server's RFC 7009 revocation endpoint."""
        endpoint = config.server.revocation_endpoint
        if not endpoint:
            raise TokenRevocationError("Server does not advertise a revocation endpoint")

        form_data = {"token": token, **(additional_params or {})}
        response = await self._post_form(
            endpoint, config, form_data, TokenRevocationError, "token revocation"
        )
        if response.status_code != 200:
            raise TokenRevocationError(
                f"Token revocation failed with HTTP {response.status_code}"
            )
        logger.info("Token revoked")

    def _parse_callback_url(self, callback_url: str) -> AuthorizationResponse:
        """Parse OAuth callback URL into AuthorizationResponse."""
        try:
            query_params = parse_qs(urlparse(callback_url).query)
        except ValueError as e:
            raise AuthorizationCallbackError(
                f"Failed to parse callback URL: {e}"
            ) from e

        def get_single_param(key: str) -> str | None:
            values = query_params.get(key, [])
            return values[0] if values else None

        return AuthorizationResponse(
            code=get_single_param("code"),
            state=get_single_param("state"),
            error=get_single_param("error"),
            error_description=get_single_param("error_description"),
            error_uri=get_single_param("error_uri"),
        )

    def _validate_nonce(self, id_token: str, expected_nonce: str) -> None:
        # The ID token came straight from the token endpoint over TLS
        # (OIDC Core 3.1.3.7), so its claims are read without a signature check.
        try:
            claims = jwt.decode(id_token, options={"verify_signature": False})
        except jwt.PyJWTError as e:
            raise TokenExchangeError(f"Malformed ID token: {e}") from e

        nonce = claims.get("nonce")
        if not isinstance(nonce, str) or not secrets.compare_digest(
            nonce.encode(), expected_nonce.encode()
        ):
            raise TokenExchangeError("ID token nonce mismatch - possible replay")

    async def _token_request(
        self,
        config: ClientConfiguration,
        form_data: dict[str, str],
        error_cls: type[TokenError],
        operation: str,
    ) -> TokenResponse:
        response = await self._post_form(
            config.server.token_endpoint, config, form_data, error_cls, operation
        )

        if response.status_code != 200:
            raise error_cls(
                f"{operation.capitalize()} failed with HTTP {response.status_code}: "
                f"{_describe_error(response)}"
            )

        try:
            response_data = response.json()
        except ValueError as e:
            raise error_cls(f"Invalid token response format: {e}") from e

        if not isinstance(response_data, dict) or "access_token" not in response_data:
            raise error_cls("Token response missing required access_token")

        try:
            return TokenResponse.model_validate(response_data)
        except ValidationError as e:
            raise error_cls(f"Invalid token response format: {e}") from e

    async def _post_form(
        self,
        endpoint: str,
        config: ClientConfiguration,
        form_data: dict[str, str],
        error_cls: type[TokenError],
        operation: str,
    ) -> httpx.Response:
        """POST a form with client authentication; raise on 4xx client errors."""
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        data = dict(form_data)

        client = config.client
        method = client.auth_method()
        if method is ClientAuth.CLIENT_SECRET_BASIC:
            # RFC 6749 Section 2.3.1: form-encode before Base64
            raw = f"{quote_plus(client.client_id)}:{quote_plus(client.client_secret or '')}"
            headers["Authorization"] = "Basic " + base64.b64encode(raw.encode()).decode()
        elif method is ClientAuth.CLIENT_SECRET_POST:
            data["client_id"] = client.client_id
            data["client_secret"] = client.client_secret or ""
        else:
            data["client_id"] = client.client_id

        try:
            response = await self._http_client.post(endpoint, data=data, headers=headers)
        except httpx.HTTPError as e:
            raise error_cls(f"HTTP error during {operation}: {e}") from e

        if 400 <= response.status_code < 500:
            message = (
                f"{operation.capitalize()} rejected with HTTP {response.status_code}: "
                f"{_describe_error(response)}"
            )
            logger.error(message)
            error = httpx.HTTPStatusError(
                message, request=response.request, response=response
            )
            raise ClientResponseError(message, response=response) from error

        return response

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()


def _describe_error(response: httpx.Response) -> str:
    """Summarize an OAuth error response (RFC 6749 Section 5.2)."""
    try:
        error_data = response.json()
    except ValueError:
        return response.text[:200]
    if not isinstance(error_data, dict):
        return response.text[:200]
    error_code = error_data.get("error", "unknown_error")
    error_description = error_data.get("error_description", "No description provided")
    return f"{error_code} - {error_description}"

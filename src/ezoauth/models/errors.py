"""Exception hierarchy for OAuth 2.0 / OIDC client errors.

Provides specific exception types for different failure modes so callers can
branch on what went wrong without parsing messages. "Not found" outcomes of
discovery are returned as None rather than raised.
"""

from __future__ import annotations

from typing import Any


class OAuth2Error(Exception):
    """Base exception for all OAuth 2.0 related errors."""

    pass


class DiscoveryError(OAuth2Error):
    """Raised when OAuth server discovery fails."""

    pass


class ProtectedResourceMetadataError(DiscoveryError):
    """Raised when a protected resource metadata document is malformed.

    Carries the URL of the offending document for diagnosis.
    """

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class AuthorizationServerMetadataError(DiscoveryError):
    """Raised when Authorization Server Metadata discovery fails."""

    pass


class AuthorizationServerNotFoundError(DiscoveryError):
    """Raised when protected resource discovery yields no authorization server."""

    pass


class MetadataVerificationError(OAuth2Error):
    """Raised when signed metadata cannot be verified.

    Covers invalid signatures, malformed tokens and key resolution failures.
    Never downgraded to a "not found" result.
    """

    pass


class VerificationRequiredError(MetadataVerificationError):
    """Raised when signed metadata is served but no verification policy was given."""

    pass


class RegistrationError(OAuth2Error):
    """Raised when dynamic client registration fails."""

    pass


class TokenError(OAuth2Error):
    """Raised when token operations fail."""

    pass


class TokenRefreshError(TokenError):
    """Raised when token refresh fails."""

    pass


class TokenExchangeError(TokenError):
    """Raised when authorization code to token exchange fails."""

    pass


class TokenRevocationError(TokenError):
    """Raised when token revocation fails."""

    pass


class ClientResponseError(TokenError):
    """Raised when the provider answers a token request with a client error.

    The underlying ``httpx.HTTPStatusError`` is available as ``__cause__``
    and the raw response as ``response``.
    """

    def __init__(self, message: str, response: Any = None):
        super().__init__(message)
        self.response = response


class OAuthClientError(OAuth2Error):
    """Structured client error raised by the authorization flow.

    Attributes:
        cause: The original exception reported by the token endpoint client.
        reason: The parsed provider error payload, when one was available.
    """

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        reason: Any = None,
    ):
        super().__init__(message)
        self.cause = cause
        self.reason = reason


class AuthorizationError(OAuth2Error):
    """Raised when user authorization fails."""

    pass


class AuthorizationResponseError(OAuth2Error):
    """Raised when authorization response is malformed or invalid."""

    pass


class AuthorizationCallbackError(OAuth2Error):
    """Raised when authorization server callback data is malformed or invalid.

    This indicates the authorization server sent an invalid callback URL,
    not that our callback handling code failed.
    """

    pass


class StateValidationError(AuthorizationCallbackError):
    """Raised when OAuth state parameter validation fails.

    This indicates either a missing state parameter or a state mismatch,
    which could indicate a CSRF attack or authorization server issue.
    """

    pass


class OAuthStateError(OAuth2Error):
    """Base exception for persisted flow state problems."""

    pass


class StateNotFoundError(OAuthStateError):
    """Raised when no persisted flow entry exists for a state key."""

    pass


class InvalidStateError(OAuthStateError):
    """Raised when a persisted flow entry exists but cannot be used."""

    pass


class FlowStateError(OAuthStateError):
    """Raised when an authorization attempt is used outside its pending phase."""

    pass


class UnsafeUrlError(OAuth2Error):
    """Raised when a redirect URI fails the URL safety check."""

    pass

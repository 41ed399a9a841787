"""Discovery-related models for OAuth 2.0 server metadata.

Contains models for Protected Resource Metadata (RFC 9728) and
Authorization Server Metadata (RFC 8414) discovery.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

PROTECTED_RESOURCE_JSON_MEDIA_TYPE = "application/oauth-protected-resource+json"
PROTECTED_RESOURCE_JWT_MEDIA_TYPE = "application/oauth-protected-resource-jwt"


class DiscoveryAlgorithm(str, Enum):
    """How the authorization server for an identifier is located."""

    OIDC = "oidc"
    OAUTH2 = "oauth2"
    PROTECTED_RESOURCE = "protected-resource"


class ProtectedResourceMetadata(BaseModel):
    """OAuth 2.0 Protected Resource Metadata (RFC 9728).

    Produced fresh for every discovery call. Fields not modelled here are kept
    as extras so a merged plain + signed document loses nothing.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    resource: str
    authorization_servers: list[str] = Field(min_length=1)
    bearer_methods_supported: list[str] = Field(
        default_factory=lambda: ["header"], min_length=1
    )
    resource_documentation: str = ""

    # Optional fields from RFC 9728
    resource_endpoints: list[str] | None = None
    resource_signing_alg_values_supported: list[str] | None = None

    @field_validator("authorization_servers")
    @classmethod
    def validate_auth_servers(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("At least one authorization server is required")
        return v


class AuthorizationServerMetadata(BaseModel):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414).

    Metadata returned by authorization servers describing their endpoints
    and supported capabilities.
    """

    model_config = ConfigDict(extra="allow")

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    response_types_supported: list[str] = Field(default=["code"])

    code_challenge_methods_supported: list[str] | None = None

    # Dynamic registration (RFC 7591)
    registration_endpoint: str | None = None

    # Optional but commonly used
    revocation_endpoint: str | None = None
    introspection_endpoint: str | None = None
    jwks_uri: str | None = None
    scopes_supported: list[str] | None = None
    grant_types_supported: list[str] = Field(default=["authorization_code"])
    token_endpoint_auth_methods_supported: list[str] | None = None

    def supports_pkce(self) -> bool:
        """Check if the server advertises the S256 PKCE method."""
        return "S256" in (self.code_challenge_methods_supported or [])

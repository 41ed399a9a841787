"""Client registration models for OAuth 2.0 Dynamic Client Registration.

Contains models for client metadata (RFC 7591) and the credentials a client
authenticates with at the token endpoint.
"""

from __future__ import annotations

import time
from enum import Enum
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ClientAuth(str, Enum):
    """Token endpoint client authentication methods."""

    NONE = "none"
    CLIENT_SECRET_BASIC = "client_secret_basic"
    CLIENT_SECRET_POST = "client_secret_post"


class GrantType(str, Enum):
    AUTHORIZATION_CODE = "authorization_code"
    REFRESH_TOKEN = "refresh_token"
    CLIENT_CREDENTIALS = "client_credentials"


class ClientMetadata(BaseModel):
    """OAuth 2.0 Client Metadata for dynamic registration (RFC 7591)."""

    client_name: str | None = None
    redirect_uris: list[str] = Field(min_length=1)

    # Optional metadata
    client_uri: str | None = None
    logo_uri: str | None = None
    scope: str | None = None
    contacts: list[str] | None = None

    token_endpoint_auth_method: str = ClientAuth.NONE.value
    grant_types: list[str] = Field(default=[GrantType.AUTHORIZATION_CODE.value])
    response_types: list[str] = Field(default=["code"])

    @field_validator("redirect_uris")
    @classmethod
    def validate_redirect_uris(cls, v: list[str]) -> list[str]:
        """Validate redirect URIs use HTTPS or a loopback host."""
        for uri in v:
            parsed = urlparse(uri)
            if parsed.scheme == "http" and parsed.hostname not in (
                "localhost",
                "127.0.0.1",
            ):
                raise ValueError(f"Redirect URI must use HTTPS or localhost: {uri}")
        return v


class ClientCredentials(BaseModel):
    """OAuth 2.0 client identity used at the token endpoint."""

    model_config = ConfigDict(extra="allow")

    client_id: str
    client_secret: str | None = None  # None for public clients
    token_endpoint_auth_method: ClientAuth | None = None
    registration_access_token: str | None = None
    registration_client_uri: str | None = None
    client_id_issued_at: int | None = None
    client_secret_expires_at: int | None = None

    def auth_method(self) -> ClientAuth:
        """Resolve the authentication method, defaulting on secret presence."""
        if self.token_endpoint_auth_method is not None:
            return self.token_endpoint_auth_method
        if self.client_secret:
            return ClientAuth.CLIENT_SECRET_BASIC
        return ClientAuth.NONE

    def is_expired(self) -> bool:
        """Check if client credentials have expired."""
        if not self.client_secret_expires_at:
            return False
        return time.time() >= self.client_secret_expires_at

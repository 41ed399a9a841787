"""Google OAuth 2.0 configuration."""

from __future__ import annotations

from ezoauth.models.config import ClientConfiguration

GOOGLE_ISSUER = "https://accounts.google.com"


class GoogleClientConfiguration(ClientConfiguration):
    """Configuration for Google's OAuth 2.0 server.

    Google only issues refresh tokens for offline access, and only on the
    first consent unless consent is prompted again.
    """

    def with_refresh_token(self) -> GoogleClientConfiguration:
        return self.with_params({"prompt": "consent", "access_type": "offline"})

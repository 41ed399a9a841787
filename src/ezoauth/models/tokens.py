"""Token endpoint responses."""

from __future__ import annotations

import time

from pydantic import BaseModel, ConfigDict


class TokenResponse(BaseModel):
    """Successful token endpoint response (RFC 6749 Section 5.1).

    Returned for both the code exchange and refresh. Provider-specific fields
    are kept as extras.
    """

    model_config = ConfigDict(extra="allow")

    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None
    id_token: str | None = None  # OpenID Connect only

    def calculate_expires_at(self) -> float | None:
        """Absolute expiry in epoch seconds, or None when ``expires_in`` is absent."""
        if self.expires_in is None:
            return None
        return time.time() + self.expires_in

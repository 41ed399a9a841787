"""Authorization attempt state: state, nonce and PKCE material.

A FlowState is created when the authorization URL is built, persisted keyed
by its ``state`` value, and restored once when the callback arrives.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from ezoauth.models.errors import InvalidStateError
from ezoauth.primitives.pkce import (
    CODE_CHALLENGE_METHOD,
    generate_code_challenge,
    generate_code_verifier,
    generate_nonce,
    generate_state,
    validate_code_verifier,
)


class FlowState:
    """State, nonce and PKCE verifier for one authorization attempt.

    The code challenge is derived from the verifier on first access and
    cached. It has no setter, so it can only diverge from the verifier if a
    stored record says so, and a restored challenge is reused as-is.
    """

    CODE_CHALLENGE_METHOD = CODE_CHALLENGE_METHOD

    def __init__(
        self,
        state: str | None = None,
        nonce: str | None = None,
        code_verifier: str | None = None,
    ):
        self.state = state if state is not None else generate_state()
        self.nonce = nonce if nonce is not None else generate_nonce()
        self.code_verifier = (
            code_verifier if code_verifier is not None else generate_code_verifier()
        )
        validate_code_verifier(self.code_verifier)
        self._code_challenge: str | None = None

    @classmethod
    def create(cls) -> FlowState:
        """Create a fresh attempt with newly generated random values."""
        return cls()

    @property
    def code_challenge(self) -> str:
        if self._code_challenge is None:
            self._code_challenge = generate_code_challenge(self.code_verifier)
        return self._code_challenge

    @property
    def pkce(self) -> str | None:
        """The cached code challenge, or None if it was never computed."""
        return self._code_challenge

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "state": self.state,
            "nonce": self.nonce,
            "pkce": self._code_challenge,
            "codeVerifier": self.code_verifier,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FlowState:
        """Restore a FlowState from its stored form.

        Raises:
            InvalidStateError: If required fields are missing or invalid
        """
        if not isinstance(data, Mapping):
            raise InvalidStateError("Flow state record must be an object")

        for field in ("state", "nonce", "codeVerifier"):
            if not isinstance(data.get(field), str) or not data[field]:
                raise InvalidStateError(f"Invalid flow state record: {field}")

        try:
            instance = cls(
                state=data["state"],
                nonce=data["nonce"],
                code_verifier=data["codeVerifier"],
            )
        except ValueError as e:
            raise InvalidStateError(f"Invalid flow state record: {e}") from e

        pkce = data.get("pkce")
        if pkce is not None:
            if not isinstance(pkce, str):
                raise InvalidStateError("Invalid flow state record: pkce")
            instance._code_challenge = pkce
        return instance

    def __str__(self) -> str:
        return json.dumps(self.to_dict())

    def __repr__(self) -> str:
        return f"{type(self).__name__}(state={self.state!r})"

"""JWT verification primitive for signed metadata.

Wraps PyJWT behind a small protocol so the discovery code depends only on
two operations: reading the issuer of an unverified token (for key lookup)
and verifying a token against a key. Claims of an unverified token are
never exposed beyond ``iss``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Protocol

import httpx
import jwt
from jwt import PyJWK, PyJWKSet

from ezoauth.models.errors import MetadataVerificationError

logger = logging.getLogger(__name__)

# Asymmetric algorithms only; "none" and HMAC are never accepted for metadata
DEFAULT_ALGORITHMS = [
    "RS256",
    "RS384",
    "RS512",
    "PS256",
    "PS384",
    "PS512",
    "ES256",
    "ES384",
    "ES512",
    "EdDSA",
]


@dataclass(frozen=True)
class UnverifiedClaims:
    """The only view of an unverified token: its issuer, for key selection."""

    issuer: str | None


class VerifiedClaims(Mapping[str, Any]):
    """Read-only claim set of a token whose signature has been verified."""

    def __init__(self, claims: Mapping[str, Any]):
        self._claims = MappingProxyType(dict(claims))

    def __getitem__(self, key: str) -> Any:
        return self._claims[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._claims)

    def __len__(self) -> int:
        return len(self._claims)

    def __repr__(self) -> str:
        return f"VerifiedClaims({dict(self._claims)!r})"


class JWTVerifier(Protocol):
    """Capability used by metadata discovery to check signatures."""

    def decode_unverified(self, token: str) -> UnverifiedClaims: ...

    def verify(self, token: str, key: Any) -> VerifiedClaims: ...


@dataclass
class JWKSPolicy:
    """Verify against a fixed key set.

    ``jwks`` is either a JWKS document or a ``jwks_uri``. A URI is fetched on
    first use and the parsed set is reused for the lifetime of the policy.
    """

    jwks: dict[str, Any] | str
    _key_set: PyJWKSet | None = field(default=None, init=False, repr=False)

    async def key_set(self, http_client: httpx.AsyncClient) -> PyJWKSet:
        if self._key_set is not None:
            return self._key_set

        if isinstance(self.jwks, str):
            logger.debug(f"Fetching JWKS from {self.jwks}")
            try:
                response = await http_client.get(
                    self.jwks, headers={"Accept": "application/json"}
                )
                response.raise_for_status()
                document = response.json()
            except (httpx.HTTPError, ValueError) as e:
                raise MetadataVerificationError(
                    f"Failed to fetch JWKS from {self.jwks}: {e}"
                ) from e
        else:
            document = self.jwks

        try:
            self._key_set = PyJWKSet.from_dict(document)
        except jwt.PyJWTError as e:
            raise MetadataVerificationError(f"Invalid JWKS: {e}") from e
        return self._key_set


@dataclass(frozen=True)
class IssuerKeyPolicy:
    """Resolve the verification key from the token's (unverified) issuer.

    ``get_key`` receives the ``iss`` claim and returns anything
    ``PyJWTVerifier.verify`` accepts as a key.
    """

    get_key: Callable[[str], Awaitable[Any]]


VerificationPolicy = JWKSPolicy | IssuerKeyPolicy


class PyJWTVerifier:
    """JWTVerifier backed by PyJWT.

    Accepted keys: a ``PyJWKSet`` or JWKS dict (matched by ``kid``), a
    ``PyJWK`` or single JWK dict, or any key object PyJWT accepts directly
    (``cryptography`` public keys, PEM strings).
    """

    def __init__(self, algorithms: list[str] | None = None):
        self.algorithms = algorithms or list(DEFAULT_ALGORITHMS)

    def decode_unverified(self, token: str) -> UnverifiedClaims:
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
        except jwt.PyJWTError as e:
            raise MetadataVerificationError(f"Malformed JWT: {e}") from e

        issuer = claims.get("iss")
        return UnverifiedClaims(issuer=issuer if isinstance(issuer, str) else None)

    def verify(self, token: str, key: Any) -> VerifiedClaims:
        if isinstance(key, dict):
            key = self._parse_jwk(key)

        if isinstance(key, PyJWKSet):
            return self._verify_with_key_set(token, key)
        if isinstance(key, PyJWK):
            return self._decode(token, key.key)
        return self._decode(token, key)

    def _parse_jwk(self, data: dict[str, Any]) -> PyJWK | PyJWKSet:
        try:
            if "keys" in data:
                return PyJWKSet.from_dict(data)
            return PyJWK(data)
        except jwt.PyJWTError as e:
            raise MetadataVerificationError(f"Invalid JWK: {e}") from e

    def _verify_with_key_set(self, token: str, key_set: PyJWKSet) -> VerifiedClaims:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError as e:
            raise MetadataVerificationError(f"Malformed JWT: {e}") from e

        kid = header.get("kid")
        alg = header.get("alg")
        candidates = [
            k
            for k in key_set.keys
            if (kid is None or k.key_id == kid) and k.public_key_use in (None, "sig")
        ]
        if not candidates:
            raise MetadataVerificationError(
                f"No key in JWKS matches token (kid={kid}, alg={alg})"
            )

        last_error: MetadataVerificationError | None = None
        for candidate in candidates:
            try:
                return self._decode(token, candidate.key)
            except MetadataVerificationError as e:
                last_error = e
        assert last_error is not None
        raise last_error

    def _decode(self, token: str, key: Any) -> VerifiedClaims:
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=self.algorithms,
                options={"verify_aud": False},
            )
        except jwt.PyJWTError as e:
            raise MetadataVerificationError(f"JWT verification failed: {e}") from e
        return VerifiedClaims(claims)

"""Protected resource metadata discovery primitive.

Implements RFC 9728 (OAuth 2.0 Protected Resource Metadata) discovery,
including JWT-signed metadata served either as the whole response body
(``application/oauth-protected-resource-jwt``) or as a ``signed_metadata``
claim inside a JSON document.

Signed metadata is never trusted without verification, and the ``resource``
claim of every result is bound to the identifier that was requested
(RFC 9728 Section 3.3).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlparse

import httpx
from pydantic import ValidationError

from ezoauth.models.discovery import (
    PROTECTED_RESOURCE_JSON_MEDIA_TYPE,
    PROTECTED_RESOURCE_JWT_MEDIA_TYPE,
    ProtectedResourceMetadata,
)
from ezoauth.models.errors import (
    MetadataVerificationError,
    OAuth2Error,
    ProtectedResourceMetadataError,
    VerificationRequiredError,
)
from ezoauth.primitives.jwt import (
    IssuerKeyPolicy,
    JWKSPolicy,
    JWTVerifier,
    PyJWTVerifier,
    VerificationPolicy,
    VerifiedClaims,
)
from ezoauth.primitives.urls import origin

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/oauth-protected-resource"

# Registered JWT claims that describe the token, not the resource
_JWT_CLAIMS = frozenset({"iss", "sub", "aud", "exp", "nbf", "iat", "jti"})


def request_resource_id(resource_identifier: str, resource_path: str | None = None) -> str:
    """Compute the resource identifier a metadata response must be bound to.

    The identifier's origin and path are kept, a single trailing slash is
    dropped, and ``resource_path`` is appended as one more segment.
    """
    resource_id = f"{origin(resource_identifier)}{urlparse(resource_identifier).path}"
    if resource_id.endswith("/"):
        resource_id = resource_id[:-1]

    if resource_path:
        resource_id = f"{resource_id}/{resource_path.lstrip('/')}"

    return resource_id


def protected_resource_metadata_url(
    resource_identifier: str, resource_path: str | None = None
) -> str:
    """Build the well-known metadata URL against the identifier's origin."""
    url = f"{origin(resource_identifier)}{WELL_KNOWN_PATH}"
    if resource_path:
        url = f"{url}/{resource_path.lstrip('/')}"
    return url


class MetadataResolver:
    """Fetches and validates RFC 9728 protected resource metadata.

    Stateless between calls: every call hits the network and returns a fresh
    object. Wrap it in ``CachedMetadataResolver`` if caching is wanted.

    Outcomes:
    - ``None`` when the resource publishes no applicable metadata (non-2xx,
      timeout, missing required fields, or a ``resource`` mismatch)
    - ``VerificationRequiredError`` when signed metadata arrives without a
      verification policy
    - ``MetadataVerificationError`` when a signature or key lookup fails
    - ``ProtectedResourceMetadataError`` when the body is not valid JSON
    """

    def __init__(
        self,
        timeout: float = 30.0,
        verifier: JWTVerifier | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the resolver.

        Args:
            timeout: HTTP request timeout in seconds
            verifier: JWT verification capability, PyJWT by default
            http_client: Optional pre-configured client
        """
        self.timeout = timeout
        self._verifier = verifier or PyJWTVerifier()
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def resolve_protected_resource(
        self,
        resource_identifier: str,
        resource_path: str | None = None,
        verification_policy: VerificationPolicy | None = None,
    ) -> ProtectedResourceMetadata | None:
        """Fetch protected resource metadata for an identifier.

        Args:
            resource_identifier: Resource identifier or base URL
            resource_path: Optional path for multiple resources per host
            verification_policy: Required when the server signs its metadata

        Returns:
            The bound metadata, or None if none applies to the identifier
        """
        metadata_url = protected_resource_metadata_url(
            resource_identifier, resource_path
        )
        expected_resource = request_resource_id(resource_identifier, resource_path)

        logger.debug(f"Fetching protected resource metadata from: {metadata_url}")
        try:
            response = await self._http_client.get(
                metadata_url,
                headers={
                    "Accept": (
                        f"{PROTECTED_RESOURCE_JSON_MEDIA_TYPE}, "
                        f"{PROTECTED_RESOURCE_JWT_MEDIA_TYPE}"
                    )
                },
            )
        except httpx.HTTPError as e:
            logger.warning(f"Protected resource discovery failed for {metadata_url}: {e}")
            return None

        if not response.is_success:
            logger.debug(
                f"No protected resource metadata at {metadata_url} "
                f"({response.status_code})"
            )
            return None

        content_type = response.headers.get("Content-Type", "")

        if PROTECTED_RESOURCE_JWT_MEDIA_TYPE in content_type:
            if verification_policy is None:
                raise VerificationRequiredError(
                    f"Verification required for {PROTECTED_RESOURCE_JWT_MEDIA_TYPE}. "
                    "Pass a verification policy with a key set or key callback "
                    "(RFC 9728 Section 3.3)."
                )
            claims = await self._verify_signed_metadata(
                response.text.strip(), verification_policy
            )
            if claims is None:
                return None
            return self._bind(_metadata_claims(claims), expected_resource)

        try:
            document = response.json()
        except ValueError as e:
            raise ProtectedResourceMetadataError(
                f"Invalid protected resource discovery: {metadata_url}",
                url=metadata_url,
            ) from e

        if not isinstance(document, dict):
            raise ProtectedResourceMetadataError(
                f"Invalid protected resource discovery: {metadata_url}",
                url=metadata_url,
            )

        signed_metadata = document.pop("signed_metadata", None)
        if signed_metadata is None:
            return self._bind(document, expected_resource)

        if verification_policy is None:
            raise VerificationRequiredError(
                "Verification required for signed_metadata. Pass a verification "
                "policy with a key set or key callback (RFC 9728 Section 3.3)."
            )
        if not isinstance(signed_metadata, str):
            raise ProtectedResourceMetadataError(
                f"Invalid signed_metadata in protected resource discovery: "
                f"{metadata_url}",
                url=metadata_url,
            )

        claims = await self._verify_signed_metadata(signed_metadata, verification_policy)
        if claims is None:
            return None

        signed = _metadata_claims(claims)
        # The signed payload must bind on its own; plain values cannot fill
        # in its resource or authorization servers
        if not _binds_to(signed, expected_resource):
            logger.warning(
                f"Signed metadata does not bind {expected_resource} to "
                "authorization servers"
            )
            return None

        # RFC 9728 Section 2.2: signed values take precedence over plain ones
        merged = {**document, **signed}
        return self._bind(merged, expected_resource)

    async def _verify_signed_metadata(
        self, token: str, policy: VerificationPolicy
    ) -> VerifiedClaims | None:
        """Verify a metadata JWT under the given policy.

        Returns None only when an issuer-keyed policy cannot be applied
        because the token names no issuer.
        """
        if isinstance(policy, JWKSPolicy):
            key = await policy.key_set(self._http_client)
        elif isinstance(policy, IssuerKeyPolicy):
            # iss selects the key; nothing else is read before verification
            issuer = self._verifier.decode_unverified(token).issuer
            if issuer is None:
                logger.warning("Signed metadata has no iss claim to resolve a key")
                return None
            try:
                key = await policy.get_key(issuer)
            except OAuth2Error:
                raise
            except Exception as e:
                raise MetadataVerificationError(
                    f"Failed to resolve verification key for {issuer}: {e}"
                ) from e
        else:
            raise TypeError(f"Unsupported verification policy: {policy!r}")

        return self._verifier.verify(token, key)

    def _bind(
        self, claims: Mapping[str, Any], expected_resource: str
    ) -> ProtectedResourceMetadata | None:
        """Validate claims and bind them to the requested resource identifier."""
        document = _apply_defaults(claims)

        if (
            not isinstance(document.get("resource"), str)
            or not isinstance(document.get("authorization_servers"), list)
            or not document["authorization_servers"]
        ):
            logger.debug("Protected resource metadata lacks resource or servers")
            return None

        if document["resource"] != expected_resource:
            logger.warning(
                f"Protected resource metadata is for {document['resource']}, "
                f"not {expected_resource}"
            )
            return None

        try:
            metadata = ProtectedResourceMetadata.model_validate(document)
        except ValidationError as e:
            logger.warning(f"Invalid protected resource metadata: {e}")
            return None

        logger.debug(
            f"Discovered protected resource metadata for {expected_resource}: "
            f"{len(metadata.authorization_servers)} auth servers"
        )
        return metadata

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()


def _metadata_claims(claims: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in claims.items() if k not in _JWT_CLAIMS}


def _binds_to(claims: Mapping[str, Any], expected_resource: str) -> bool:
    servers = claims.get("authorization_servers")
    return (
        claims.get("resource") == expected_resource
        and isinstance(claims.get("resource"), str)
        and isinstance(servers, list)
        and len(servers) > 0
    )


def _apply_defaults(claims: Mapping[str, Any]) -> dict[str, Any]:
    document = dict(claims)
    bearer = document.get("bearer_methods_supported")
    if not isinstance(bearer, list) or not bearer:
        document.pop("bearer_methods_supported", None)
    if not isinstance(document.get("resource_documentation"), str):
        document.pop("resource_documentation", None)
    return document


class CachedMetadataResolver:
    """Caller-owned TTL cache around a MetadataResolver.

    Only successful lookups are cached. Entries are keyed by identifier,
    path and the identity of the verification policy, so results verified
    under one key set are never served for another.
    """

    def __init__(self, resolver: MetadataResolver, ttl: float = 300.0):
        self._resolver = resolver
        self.ttl = ttl
        self._entries: dict[
            tuple[str, str | None, int | None], tuple[float, ProtectedResourceMetadata]
        ] = {}

    async def resolve_protected_resource(
        self,
        resource_identifier: str,
        resource_path: str | None = None,
        verification_policy: VerificationPolicy | None = None,
    ) -> ProtectedResourceMetadata | None:
        key = (
            request_resource_id(resource_identifier, resource_path),
            resource_path,
            id(verification_policy) if verification_policy is not None else None,
        )
        entry = self._entries.get(key)
        if entry is not None and entry[0] > time.monotonic():
            return entry[1]

        metadata = await self._resolver.resolve_protected_resource(
            resource_identifier, resource_path, verification_policy
        )
        if metadata is not None:
            self._entries[key] = (time.monotonic() + self.ttl, metadata)
        else:
            self._entries.pop(key, None)
        return metadata

    def invalidate(self) -> None:
        """Drop every cached entry."""
        self._entries.clear()

    async def close(self) -> None:
        await self._resolver.close()

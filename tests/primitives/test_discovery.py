"""Tests for RFC 9728 protected resource metadata discovery.

Covers:
- Resource identifier and well-known URL construction
- Plain JSON metadata and the resource binding check
- Signed metadata as a JWT body and as a signed_metadata claim
- Fail-closed verification and the caller-owned cache
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from ezoauth.models.discovery import (
    PROTECTED_RESOURCE_JSON_MEDIA_TYPE,
    PROTECTED_RESOURCE_JWT_MEDIA_TYPE,
    ProtectedResourceMetadata,
)
from ezoauth.models.errors import (
    MetadataVerificationError,
    ProtectedResourceMetadataError,
    VerificationRequiredError,
)
from ezoauth.primitives.discovery import (
    CachedMetadataResolver,
    MetadataResolver,
    protected_resource_metadata_url,
    request_resource_id,
)
from ezoauth.primitives.jwt import IssuerKeyPolicy, JWKSPolicy

RESOURCE = "https://api.example.com"
METADATA_URL = "https://api.example.com/.well-known/oauth-protected-resource"


def json_response(body, status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code,
        json=body,
        headers={"Content-Type": PROTECTED_RESOURCE_JSON_MEDIA_TYPE},
    )


def jwt_response(token: str) -> httpx.Response:
    return httpx.Response(
        200,
        content=token.encode(),
        headers={"Content-Type": PROTECTED_RESOURCE_JWT_MEDIA_TYPE},
    )


class TestRequestResourceId:
    def test_trailing_slash_variants_share_one_identifier(self):
        # Act
        ids = {
            request_resource_id("https://api.example.com"),
            request_resource_id("https://api.example.com/"),
            request_resource_id("HTTPS://API.example.com:443/"),
        }

        # Assert
        assert ids == {"https://api.example.com"}

    def test_is_deterministic(self):
        # Act
        first = request_resource_id("https://api.example.com/v1/", "tenant")
        second = request_resource_id("https://api.example.com/v1/", "tenant")

        # Assert
        assert first == second == "https://api.example.com/v1/tenant"

    def test_resource_path_leading_slash_is_not_doubled(self):
        # Act
        resource_id = request_resource_id("https://api.example.com/", "/tenant")

        # Assert
        assert resource_id == "https://api.example.com/tenant"

    def test_non_default_port_is_kept(self):
        assert request_resource_id("http://localhost:8080/") == "http://localhost:8080"

    def test_metadata_url_replaces_identifier_path(self):
        # Act
        url = protected_resource_metadata_url("https://api.example.com/v1/items", "v1")

        # Assert
        assert url == f"{METADATA_URL}/v1"


class TestPlainMetadata:
    def setup_method(self):
        # Arrange
        self.resolver = MetadataResolver()
        self.resolver._http_client = AsyncMock()

    async def test_plain_document_is_returned_unchanged(self):
        # Arrange
        document = {
            "resource": RESOURCE,
            "authorization_servers": [
                "https://auth-a.example.com",
                "https://auth-b.example.com",
            ],
            "bearer_methods_supported": ["header", "body"],
            "resource_documentation": "https://docs.example.com",
            "scopes_supported": ["read", "write"],
        }
        self.resolver._http_client.get.return_value = json_response(document)

        # Act
        metadata = await self.resolver.resolve_protected_resource(RESOURCE)

        # Assert
        assert isinstance(metadata, ProtectedResourceMetadata)
        assert metadata.model_dump(exclude_none=True) == document
        assert metadata.authorization_servers == [
            "https://auth-a.example.com",
            "https://auth-b.example.com",
        ]

    async def test_request_uses_well_known_url_and_accept_header(self):
        # Arrange
        self.resolver._http_client.get.return_value = json_response(
            {"resource": RESOURCE, "authorization_servers": ["https://auth.example.com"]}
        )

        # Act
        await self.resolver.resolve_protected_resource(RESOURCE + "/")

        # Assert
        call_args = self.resolver._http_client.get.call_args
        assert call_args[0][0] == METADATA_URL
        accept = call_args[1]["headers"]["Accept"]
        assert PROTECTED_RESOURCE_JSON_MEDIA_TYPE in accept
        assert PROTECTED_RESOURCE_JWT_MEDIA_TYPE in accept

    async def test_defaults_are_applied(self):
        # Arrange
        self.resolver._http_client.get.return_value = json_response(
            {"resource": RESOURCE, "authorization_servers": ["https://auth.example.com"]}
        )

        # Act
        metadata = await self.resolver.resolve_protected_resource(RESOURCE)

        # Assert
        assert metadata.bearer_methods_supported == ["header"]
        assert metadata.resource_documentation == ""

    async def test_resource_path_is_bound(self):
        # Arrange
        self.resolver._http_client.get.return_value = json_response(
            {
                "resource": "https://api.example.com/tenant",
                "authorization_servers": ["https://auth.example.com"],
            }
        )

        # Act
        metadata = await self.resolver.resolve_protected_resource(RESOURCE, "tenant")

        # Assert
        assert metadata is not None
        assert self.resolver._http_client.get.call_args[0][0] == f"{METADATA_URL}/tenant"

    @pytest.mark.parametrize(
        "resource",
        [
            "https://evil.example.com",
            "https://api.example.com/",
            "https://api.example.com/other",
        ],
    )
    async def test_resource_mismatch_returns_none(self, resource):
        # Arrange
        self.resolver._http_client.get.return_value = json_response(
            {"resource": resource, "authorization_servers": ["https://auth.example.com"]}
        )

        # Act
        metadata = await self.resolver.resolve_protected_resource(RESOURCE)

        # Assert
        assert metadata is None

    async def test_missing_authorization_servers_returns_none(self):
        # Arrange
        self.resolver._http_client.get.return_value = json_response(
            {"resource": RESOURCE, "authorization_servers": []}
        )

        # Act & Assert
        assert await self.resolver.resolve_protected_resource(RESOURCE) is None

    async def test_not_found_returns_none(self):
        # Arrange
        self.resolver._http_client.get.return_value = json_response(
            {"error": "not_found"}, status_code=404
        )

        # Act & Assert
        assert await self.resolver.resolve_protected_resource(RESOURCE) is None

    async def test_timeout_returns_none(self):
        # Arrange
        self.resolver._http_client.get.side_effect = httpx.ConnectTimeout("timed out")

        # Act & Assert
        assert await self.resolver.resolve_protected_resource(RESOURCE) is None

    async def test_invalid_json_raises(self):
        # Arrange
        self.resolver._http_client.get.return_value = httpx.Response(
            200, content=b"<html>", headers={"Content-Type": "application/json"}
        )

        # Act & Assert
        with pytest.raises(ProtectedResourceMetadataError) as exc_info:
            await self.resolver.resolve_protected_resource(RESOURCE)

        assert "Invalid protected resource discovery" in str(exc_info.value)
        assert exc_info.value.url == METADATA_URL

    async def test_non_object_json_raises(self):
        # Arrange
        self.resolver._http_client.get.return_value = json_response(["not", "object"])

        # Act & Assert
        with pytest.raises(ProtectedResourceMetadataError):
            await self.resolver.resolve_protected_resource(RESOURCE)


class TestSignedMetadataClaim:
    def setup_method(self):
        # Arrange
        self.resolver = MetadataResolver()
        self.resolver._http_client = AsyncMock()

    async def test_signed_metadata_without_policy_requires_verification(self, sign):
        # Arrange
        token = sign({"resource": RESOURCE, "authorization_servers": ["https://a"]})
        self.resolver._http_client.get.return_value = json_response(
            {
                "resource": RESOURCE,
                "authorization_servers": ["https://auth.example.com"],
                "signed_metadata": token,
            }
        )

        # Act & Assert
        with pytest.raises(VerificationRequiredError, match="Verification required"):
            await self.resolver.resolve_protected_resource(RESOURCE)

    async def test_signed_claims_override_plain_claims_per_field(self, sign, jwks):
        # Arrange
        token = sign(
            {
                "iss": RESOURCE,
                "resource": RESOURCE,
                "authorization_servers": ["https://signed-auth.example.com"],
            }
        )
        self.resolver._http_client.get.return_value = json_response(
            {
                "resource": RESOURCE,
                "authorization_servers": ["https://plain-auth.example.com"],
                "resource_documentation": "https://docs.example.com",
                "signed_metadata": token,
            }
        )

        # Act
        metadata = await self.resolver.resolve_protected_resource(
            RESOURCE, verification_policy=JWKSPolicy(jwks)
        )

        # Assert
        assert metadata.authorization_servers == ["https://signed-auth.example.com"]
        assert metadata.resource_documentation == "https://docs.example.com"
        dumped = metadata.model_dump()
        assert "signed_metadata" not in dumped
        assert "iss" not in dumped

    async def test_bad_signature_fails_closed(self, sign, jwks, other_signing_key):
        # Arrange
        token = sign(
            {"resource": RESOURCE, "authorization_servers": ["https://a.example.com"]},
            key=other_signing_key,
        )
        self.resolver._http_client.get.return_value = json_response(
            {
                "resource": RESOURCE,
                "authorization_servers": ["https://auth.example.com"],
                "signed_metadata": token,
            }
        )

        # Act & Assert
        with pytest.raises(MetadataVerificationError):
            await self.resolver.resolve_protected_resource(
                RESOURCE, verification_policy=JWKSPolicy(jwks)
            )

    async def test_signed_resource_mismatch_returns_none(self, sign, jwks):
        # Arrange
        token = sign(
            {
                "resource": "https://evil.example.com",
                "authorization_servers": ["https://auth.example.com"],
            }
        )
        self.resolver._http_client.get.return_value = json_response(
            {
                "resource": RESOURCE,
                "authorization_servers": ["https://auth.example.com"],
                "signed_metadata": token,
            }
        )

        # Act
        metadata = await self.resolver.resolve_protected_resource(
            RESOURCE, verification_policy=JWKSPolicy(jwks)
        )

        # Assert
        assert metadata is None

    @pytest.mark.parametrize(
        "signed_claims",
        [
            {"resource": RESOURCE, "resource_documentation": "signed-doc"},
            {"authorization_servers": ["https://auth.example.com"]},
            {"resource": RESOURCE, "authorization_servers": []},
        ],
    )
    async def test_signed_payload_must_bind_without_plain_values(
        self, sign, jwks, signed_claims
    ):
        # Arrange
        self.resolver._http_client.get.return_value = json_response(
            {
                "resource": RESOURCE,
                "authorization_servers": ["https://attacker-as.example.com"],
                "signed_metadata": sign(signed_claims),
            }
        )

        # Act
        metadata = await self.resolver.resolve_protected_resource(
            RESOURCE, verification_policy=JWKSPolicy(jwks)
        )

        # Assert
        assert metadata is None


class TestSignedMetadataBody:
    def setup_method(self):
        # Arrange
        self.resolver = MetadataResolver()
        self.resolver._http_client = AsyncMock()

    async def test_jwt_body_without_policy_requires_verification(self, sign):
        # Arrange
        self.resolver._http_client.get.return_value = jwt_response(
            sign({"resource": RESOURCE, "authorization_servers": ["https://a"]})
        )

        # Act & Assert
        with pytest.raises(VerificationRequiredError, match="Verification required"):
            await self.resolver.resolve_protected_resource(RESOURCE)

    async def test_valid_jwt_body_returns_metadata(self, sign, jwks):
        # Arrange
        self.resolver._http_client.get.return_value = jwt_response(
            sign(
                {
                    "iss": RESOURCE,
                    "resource": RESOURCE,
                    "authorization_servers": ["https://auth.example.com"],
                }
            )
        )

        # Act
        metadata = await self.resolver.resolve_protected_resource(
            RESOURCE, verification_policy=JWKSPolicy(jwks)
        )

        # Assert
        assert metadata.resource == RESOURCE
        assert metadata.authorization_servers == ["https://auth.example.com"]
        assert metadata.bearer_methods_supported == ["header"]

    async def test_jwt_body_with_mismatched_resource_returns_none(self, sign, jwks):
        # Arrange
        self.resolver._http_client.get.return_value = jwt_response(
            sign(
                {
                    "resource": "https://other.example.com",
                    "authorization_servers": ["https://auth.example.com"],
                }
            )
        )

        # Act
        metadata = await self.resolver.resolve_protected_resource(
            RESOURCE, verification_policy=JWKSPolicy(jwks)
        )

        # Assert
        assert metadata is None

    async def test_issuer_key_policy_resolves_key_from_iss(self, sign, signing_key):
        # Arrange
        self.resolver._http_client.get.return_value = jwt_response(
            sign(
                {
                    "iss": "https://issuer.example.com",
                    "resource": RESOURCE,
                    "authorization_servers": ["https://auth.example.com"],
                }
            )
        )
        get_key = AsyncMock(return_value=signing_key.public_key())

        # Act
        metadata = await self.resolver.resolve_protected_resource(
            RESOURCE, verification_policy=IssuerKeyPolicy(get_key)
        )

        # Assert
        assert metadata is not None
        get_key.assert_awaited_once_with("https://issuer.example.com")

    async def test_issuer_key_policy_without_iss_returns_none(self, sign, signing_key):
        # Arrange
        self.resolver._http_client.get.return_value = jwt_response(
            sign({"resource": RESOURCE, "authorization_servers": ["https://a.example.com"]})
        )
        get_key = AsyncMock(return_value=signing_key.public_key())

        # Act
        metadata = await self.resolver.resolve_protected_resource(
            RESOURCE, verification_policy=IssuerKeyPolicy(get_key)
        )

        # Assert
        assert metadata is None
        get_key.assert_not_awaited()

    async def test_key_lookup_failure_is_verification_error(self, sign):
        # Arrange
        self.resolver._http_client.get.return_value = jwt_response(
            sign(
                {
                    "iss": "https://issuer.example.com",
                    "resource": RESOURCE,
                    "authorization_servers": ["https://a.example.com"],
                }
            )
        )
        get_key = AsyncMock(side_effect=KeyError("unknown issuer"))

        # Act & Assert
        with pytest.raises(MetadataVerificationError):
            await self.resolver.resolve_protected_resource(
                RESOURCE, verification_policy=IssuerKeyPolicy(get_key)
            )

    async def test_jwks_uri_is_fetched_once_per_policy(self, sign, jwks):
        # Arrange
        jwks_uri = "https://api.example.com/jwks.json"
        claims = {
            "resource": RESOURCE,
            "authorization_servers": ["https://auth.example.com"],
        }
        self.resolver._http_client.get.side_effect = [
            jwt_response(sign(claims)),
            httpx.Response(200, json=jwks, request=httpx.Request("GET", jwks_uri)),
            jwt_response(sign(claims)),
        ]
        policy = JWKSPolicy(jwks_uri)

        # Act
        first = await self.resolver.resolve_protected_resource(
            RESOURCE, verification_policy=policy
        )
        second = await self.resolver.resolve_protected_resource(
            RESOURCE, verification_policy=policy
        )

        # Assert
        assert first == second
        assert self.resolver._http_client.get.await_count == 3
        assert self.resolver._http_client.get.call_args_list[1][0][0] == jwks_uri


class TestCachedMetadataResolver:
    def setup_method(self):
        # Arrange
        self.inner = AsyncMock()
        self.metadata = ProtectedResourceMetadata(
            resource=RESOURCE, authorization_servers=["https://auth.example.com"]
        )
        self.cache = CachedMetadataResolver(self.inner, ttl=60)

    async def test_successful_lookup_is_cached(self):
        # Arrange
        self.inner.resolve_protected_resource.return_value = self.metadata

        # Act
        first = await self.cache.resolve_protected_resource(RESOURCE)
        second = await self.cache.resolve_protected_resource(RESOURCE + "/")

        # Assert
        assert first is second is self.metadata
        self.inner.resolve_protected_resource.assert_awaited_once()

    async def test_missing_metadata_is_not_cached(self):
        # Arrange
        self.inner.resolve_protected_resource.return_value = None

        # Act
        await self.cache.resolve_protected_resource(RESOURCE)
        await self.cache.resolve_protected_resource(RESOURCE)

        # Assert
        assert self.inner.resolve_protected_resource.await_count == 2

    async def test_entries_are_separated_by_policy(self, jwks):
        # Arrange
        self.inner.resolve_protected_resource.return_value = self.metadata

        # Act
        await self.cache.resolve_protected_resource(RESOURCE)
        await self.cache.resolve_protected_resource(
            RESOURCE, verification_policy=JWKSPolicy(jwks)
        )

        # Assert
        assert self.inner.resolve_protected_resource.await_count == 2

    async def test_invalidate_drops_entries(self):
        # Arrange
        self.inner.resolve_protected_resource.return_value = self.metadata
        await self.cache.resolve_protected_resource(RESOURCE)

        # Act
        self.cache.invalidate()
        await self.cache.resolve_protected_resource(RESOURCE)

        # Assert
        assert self.inner.resolve_protected_resource.await_count == 2

import base64
import hashlib

import pytest

from ezoauth.primitives.pkce import (
    VERIFIER_ALPHABET,
    generate_code_challenge,
    generate_code_verifier,
    generate_nonce,
    generate_state,
    validate_code_verifier,
)


class TestCodeVerifier:
    def test_generate_code_verifier_crypto_requirements(self) -> None:
        # Act
        verifier = generate_code_verifier()

        # Assert RFC 7636 requirements
        assert len(verifier) == 128
        assert all(c in VERIFIER_ALPHABET for c in verifier)

    def test_generate_code_verifier_uniqueness(self) -> None:
        assert generate_code_verifier() != generate_code_verifier()

    @pytest.mark.parametrize("length", [42, 129])
    def test_generate_code_verifier_rejects_out_of_range_length(self, length) -> None:
        with pytest.raises(ValueError):
            generate_code_verifier(length)

    @pytest.mark.parametrize("verifier", ["a" * 42, "a" * 129, "a" * 42 + "+"])
    def test_validate_code_verifier_rejects_invalid(self, verifier) -> None:
        with pytest.raises(ValueError):
            validate_code_verifier(verifier)


class TestCodeChallenge:
    def test_rfc7636_appendix_b_vector(self) -> None:
        # Act
        challenge = generate_code_challenge(
            "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        )

        # Assert
        assert challenge == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_challenge_is_base64url_sha256_without_padding(self) -> None:
        # Arrange
        verifier = generate_code_verifier(43)

        # Act
        challenge = generate_code_challenge(verifier)

        # Assert
        expected_challenge = (
            base64.urlsafe_b64encode(hashlib.sha256(verifier.encode("ascii")).digest())
            .decode("ascii")
            .rstrip("=")
        )
        assert challenge == expected_challenge
        assert "=" not in challenge


class TestStateAndNonce:
    def test_state_and_nonce_are_unique_and_url_safe(self) -> None:
        # Act
        values = {generate_state(), generate_state(), generate_nonce(), generate_nonce()}

        # Assert
        assert len(values) == 4
        assert all(len(v) >= 43 for v in values)
        assert all(set(v) <= set(VERIFIER_ALPHABET) for v in values)

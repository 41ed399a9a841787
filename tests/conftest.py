from collections.abc import Callable
from typing import Any

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from jwt.algorithms import ECAlgorithm

KEY_ID = "metadata-key"


@pytest.fixture
def signing_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def other_signing_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def jwks(signing_key) -> dict[str, Any]:
    jwk = ECAlgorithm.to_jwk(signing_key.public_key(), as_dict=True)
    jwk.update({"kid": KEY_ID, "use": "sig", "alg": "ES256"})
    return {"keys": [jwk]}


@pytest.fixture
def sign(signing_key) -> Callable[..., str]:
    """Sign claims as ES256 with the test key (or another key)."""

    def _sign(claims: dict[str, Any], key=None, kid: str = KEY_ID) -> str:
        return jwt.encode(
            claims, key or signing_key, algorithm="ES256", headers={"kid": kid}
        )

    return _sign

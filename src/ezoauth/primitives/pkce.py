"""PKCE (Proof Key for Code Exchange) primitives.

Implements RFC 7636 parameter generation plus the random state and nonce
values that travel with every authorization attempt.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import string

CODE_CHALLENGE_METHOD = "S256"

# RFC 7636 Section 4.1 unreserved characters
VERIFIER_ALPHABET = string.ascii_letters + string.digits + "-._~"
MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128


def generate_code_verifier(length: int = MAX_VERIFIER_LENGTH) -> str:
    """Generate a cryptographically secure code verifier.

    RFC 7636 Section 4.1: code verifier must be 43-128 characters long
    and use only unreserved characters:
        [A-Z] / [a-z] / [0-9] / "-" / "." / "_" / "~"

    Args:
        length: Verifier length, defaults to the maximum

    Returns:
        A random code verifier
    """
    if not MIN_VERIFIER_LENGTH <= length <= MAX_VERIFIER_LENGTH:
        raise ValueError("code_verifier must be 43-128 characters")
    return "".join(secrets.choice(VERIFIER_ALPHABET) for _ in range(length))


def validate_code_verifier(code_verifier: str) -> None:
    """Raise ValueError if the verifier breaks RFC 7636 Section 4.1."""
    if not MIN_VERIFIER_LENGTH <= len(code_verifier) <= MAX_VERIFIER_LENGTH:
        raise ValueError("code_verifier must be 43-128 characters")
    if any(c not in VERIFIER_ALPHABET for c in code_verifier):
        raise ValueError("code_verifier contains characters outside RFC 7636")


def generate_code_challenge(code_verifier: str) -> str:
    """Generate code challenge from code verifier using S256 method.

    RFC 7636 Section 4.2: For S256, the code challenge is:
    BASE64URL-ENCODE(SHA256(ASCII(code_verifier)))

    Args:
        code_verifier: The code verifier to hash

    Returns:
        Base64url-encoded SHA256 hash of the code verifier, without padding
    """
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()

    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_state() -> str:
    """Generate a cryptographically secure state parameter.

    The state parameter is used for CSRF protection and doubles as the
    storage key of the attempt.

    Returns:
        A 43-character URL-safe random string (32 bytes of entropy)
    """
    return secrets.token_urlsafe(32)


def generate_nonce() -> str:
    """Generate a cryptographically secure nonce for replay protection."""
    return secrets.token_urlsafe(32)

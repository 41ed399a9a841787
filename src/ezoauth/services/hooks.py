"""Request decoration hooks for provider-specific HTTP behavior.

Hooks are plain httpx request event hooks. Pass them to
``TokenEndpointClient(request_hooks=[...])`` instead of subclassing the
client.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Awaitable, Callable
from urllib.parse import unquote

import httpx

logger = logging.getLogger(__name__)

RequestHook = Callable[[httpx.Request], Awaitable[None]]

# RFC 6749 Section 2.3.1 credentials are short; anything larger is left alone
MAX_CREDENTIALS_LENGTH = 512


def decode_basic_auth_value(auth_header: str) -> str:
    """URL-decode client credentials inside a Basic Authorization header.

    RFC 6749 asks clients to form-encode ``client_id`` and ``client_secret``
    before Base64, but some providers (Reddit, for one) reject the encoded
    form. Malformed or oversized headers are returned unchanged.
    """
    if not auth_header.startswith("Basic "):
        return auth_header

    try:
        raw = base64.b64decode(auth_header[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        logger.error(f"Failed to process OAuth Basic Auth header: {e}")
        return auth_header

    if len(raw) > MAX_CREDENTIALS_LENGTH:
        logger.error("OAuth Basic Auth credentials exceed size limit, skipping decode")
        return auth_header

    client_id, sep, client_secret = raw.partition(":")
    if not sep:
        logger.error("OAuth Basic Auth header missing colon separator, leaving unchanged")
        return auth_header

    fixed = f"{unquote(client_id)}:{unquote(client_secret)}"
    return "Basic " + base64.b64encode(fixed.encode("utf-8")).decode("ascii")


async def decode_basic_auth_credentials(request: httpx.Request) -> None:
    """Request hook applying ``decode_basic_auth_value`` to outgoing requests."""
    header = request.headers.get("Authorization")
    if header:
        request.headers["Authorization"] = decode_basic_auth_value(header)


def static_headers(headers: dict[str, str]) -> RequestHook:
    """Build a hook that sets fixed headers on every request."""

    async def hook(request: httpx.Request) -> None:
        request.headers.update(headers)

    return hook

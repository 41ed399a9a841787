"""Security utilities for OAuth flows.

Provides state validation for callbacks and the URL safety checks applied to
redirect URIs when running hardened.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import secrets
import socket
from typing import Protocol
from urllib.parse import urlparse

from ezoauth.models.errors import StateValidationError, UnsafeUrlError

logger = logging.getLogger(__name__)

_BLOCKED_SUFFIXES = ("local", "arpa", "internal", "localhost")


def validate_state(expected: str, actual: str) -> None:
    """Validate state parameter matches expected value exactly.

    Args:
        expected: State parameter from original authorization request
        actual: State parameter from callback URL

    Raises:
        StateValidationError: If state parameters don't match
    """
    if not secrets.compare_digest(expected.encode(), actual.encode()):
        raise StateValidationError("State parameter mismatch - possible CSRF attack")


def is_safe_url(url: str) -> bool:
    """Crude syntactic filter for URLs that are reasonable to hand out or fetch.

    Requires HTTPS, a dotted public-looking hostname, no credentials and no
    IP literal. It does not resolve the host; see ResolvingUrlSafetyChecker.
    """
    try:
        parts = urlparse(url)
        parts.port  # raises on out-of-range ports
    except ValueError:
        return False

    if not (
        parts.scheme == "https"
        and parts.hostname is not None
        and parts.username is None
        and parts.password is None
    ):
        return False

    segments = parts.hostname.split(".")
    if len(segments) < 2 or segments[-1] in _BLOCKED_SUFFIXES:
        return False

    if segments[-1].isdigit():
        return False

    return True


class UrlSafetyChecker(Protocol):
    """Capability that rejects URLs judged unsafe by raising UnsafeUrlError."""

    async def check(self, url: str) -> None: ...


class ResolvingUrlSafetyChecker:
    """URL safety check that also resolves the host.

    Every address the hostname resolves to must be globally routable, so
    names pointing at loopback, private or link-local ranges are rejected.
    Hosts listed in ``allowed_hosts`` skip all checks.
    """

    def __init__(self, allowed_hosts: set[str] | None = None, resolve: bool = True):
        self.allowed_hosts = {h.lower() for h in (allowed_hosts or set())}
        self.resolve = resolve

    async def check(self, url: str) -> None:
        hostname = (urlparse(url).hostname or "").lower()
        if hostname in self.allowed_hosts:
            return

        if not is_safe_url(url):
            logger.warning(f"Rejected unsafe URL: {url}")
            raise UnsafeUrlError(f"URL is not safe: {url}")

        if not self.resolve:
            return

        for address in await self._resolve(hostname):
            if not address.is_global:
                logger.warning(f"Rejected URL resolving to {address}: {url}")
                raise UnsafeUrlError(f"URL resolves to a non-public address: {url}")

    async def _resolve(
        self, hostname: str
    ) -> list[ipaddress.IPv4Address | ipaddress.IPv6Address]:
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
        except OSError as e:
            raise UnsafeUrlError(f"Cannot resolve host {hostname}: {e}") from e
        return [ipaddress.ip_address(info[4][0]) for info in infos]

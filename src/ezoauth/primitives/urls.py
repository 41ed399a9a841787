"""URL helpers shared by discovery and server location."""

from __future__ import annotations

from urllib.parse import urlparse, urlunparse

_DEFAULT_PORTS = {"http": 80, "https": 443}


def origin(url: str) -> str:
    """Return ``scheme://host[:port]`` with scheme and host lowercased.

    Default ports are dropped so equivalent URLs share one origin.
    """
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.hostname:
        raise ValueError(f"Invalid URL: {url!r}")

    scheme = parsed.scheme.lower()
    host = parsed.hostname.lower()
    if ":" in host:
        host = f"[{host}]"
    port = parsed.port
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


def normalize_url(url: str) -> str:
    """Normalize a URL string: lowercase origin, empty path becomes ``/``."""
    parsed = urlparse(url)
    rest = urlunparse(
        ("", "", parsed.path or "/", parsed.params, parsed.query, parsed.fragment)
    )
    return origin(url) + rest

"""Storage provider protocol for persisted authorization attempts.

Values are opaque strings; the flow orchestrator stores JSON under
``<namespace>:<state>`` keys.
"""

from __future__ import annotations

from typing import Protocol


class StorageProvider(Protocol):
    """Async key-value store holding authorization attempts across redirects."""

    async def save(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any existing value."""
        ...

    async def get(self, key: str) -> str | None:
        """Return the value stored under ``key``, or None if absent."""
        ...

    async def delete(self, key: str) -> None: ...

    async def has(self, key: str) -> bool: ...

    async def keys(self) -> list[str]: ...

    async def clear(self) -> None: ...

"""In-process storage provider."""

from __future__ import annotations

from collections.abc import Mapping


class MemoryStorageProvider:
    """Dictionary-backed storage.

    Only useful when the callback is handled by the same process that built
    the authorization URL, and in tests.
    """

    def __init__(self, initial_state: Mapping[str, str] | None = None):
        self._cache: dict[str, str] = dict(initial_state or {})

    async def save(self, key: str, value: str) -> None:
        self._cache[key] = value

    async def get(self, key: str) -> str | None:
        return self._cache.get(key)

    async def delete(self, key: str) -> None:
        self._cache.pop(key, None)

    async def has(self, key: str) -> bool:
        return key in self._cache

    async def keys(self) -> list[str]:
        return list(self._cache)

    async def clear(self) -> None:
        self._cache.clear()

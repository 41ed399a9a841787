"""Redis storage provider built on ``redis.asyncio``.

Keys are namespaced as ``<prefix><delimiter><key>`` so several applications
can share one database.
"""

from __future__ import annotations

import logging

import redis.asyncio as redis

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "ez-oauth"
DEFAULT_DELIMITER = ":"


class RedisStorageProvider:
    """Storage provider persisting attempts in Redis.

    Args:
        client: A ``redis.asyncio.Redis`` client; ``decode_responses`` may be
            on or off
        prefix: Key prefix
        delimiter: Single character between prefix and key
        ttl: Optional expiry in seconds applied on save
    """

    def __init__(
        self,
        client: redis.Redis,
        prefix: str = DEFAULT_PREFIX,
        delimiter: str = DEFAULT_DELIMITER,
        ttl: int | None = None,
    ):
        if not prefix:
            raise ValueError("prefix is required")
        if len(delimiter) != 1:
            raise ValueError("delimiter must be a single character")

        self._redis = client
        self.prefix = prefix
        self.delimiter = delimiter
        self.ttl = ttl

    def _key(self, key: str) -> str:
        return f"{self.prefix}{self.delimiter}{key}"

    @property
    def _pattern(self) -> str:
        return f"{self.prefix}{self.delimiter}*"

    async def save(self, key: str, value: str) -> None:
        if self.ttl is not None:
            await self._redis.setex(self._key(key), self.ttl, value)
        else:
            await self._redis.set(self._key(key), value)

    async def get(self, key: str) -> str | None:
        value = await self._redis.get(self._key(key))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def has(self, key: str) -> bool:
        return await self._redis.exists(self._key(key)) > 0

    async def keys(self) -> list[str]:
        """Return stored keys without the prefix."""
        offset = len(self.prefix) + len(self.delimiter)
        keys = []
        async for raw in self._redis.scan_iter(match=self._pattern):
            name = raw.decode("utf-8") if isinstance(raw, bytes) else raw
            keys.append(name[offset:])
        return keys

    async def clear(self) -> None:
        """Delete every key under the prefix."""
        names = [name async for name in self._redis.scan_iter(match=self._pattern)]
        if names:
            await self._redis.delete(*names)
        logger.debug(f"Cleared {len(names)} keys under {self._pattern}")

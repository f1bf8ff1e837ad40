"""
Best-effort Redis cache for sync snapshots.

Every operation swallows Redis/connection failures and reports a miss, so the
service behaves identically (only slower) when Redis is down or absent.
Nothing on the scan-decision path reads from here.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

KEY_PREFIX = "accreditation:"


class SnapshotCache:
    def __init__(self, client: aioredis.Redis, default_ttl: int = 300) -> None:
        self._client = client
        self._default_ttl = default_ttl

    @classmethod
    def from_url(cls, url: str, default_ttl: int = 300, timeout: float = 1.0) -> "SnapshotCache":
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client, default_ttl=default_ttl)

    @staticmethod
    def _key(key: str) -> str:
        return f"{KEY_PREFIX}{key}"

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(self._key(key))
        except (RedisError, OSError) as exc:
            logger.warning("Redis get error for %s: %s", key, exc)
            return None

    async def set(self, key: str, value: str, expire_seconds: int | None = None) -> None:
        ttl = expire_seconds if expire_seconds is not None else self._default_ttl
        try:
            if ttl:
                await self._client.setex(self._key(key), ttl, value)
            else:
                await self._client.set(self._key(key), value)
        except (RedisError, OSError) as exc:
            logger.warning("Redis set error for %s: %s", key, exc)

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except (RedisError, OSError) as exc:
            logger.warning("Redis delete error for %s: %s", key, exc)

    async def exists(self, key: str) -> bool:
        try:
            return await self._client.exists(self._key(key)) == 1
        except (RedisError, OSError) as exc:
            logger.warning("Redis exists error for %s: %s", key, exc)
            return False

    async def get_json(self, key: str) -> Any | None:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry %s", key)
            await self.delete(key)
            return None

    async def set_json(self, key: str, value: Any, expire_seconds: int | None = None) -> None:
        await self.set(key, json.dumps(value, separators=(",", ":")), expire_seconds)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as exc:
            logger.warning("Redis ping failed: %s", exc)
            return False

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except (RedisError, OSError) as exc:
            logger.warning("Redis close error: %s", exc)

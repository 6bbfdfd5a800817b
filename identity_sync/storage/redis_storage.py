"""Redis-backed TTL store for multi-host deployments.

Keys are namespaced with a prefix (default ``sync:``) so the store can share a
Redis database with other applications. TTLs map onto ``SET ... EX``.
"""
from __future__ import annotations

from typing import Any, Optional

import redis

from identity_sync.config import STORAGE_SETTINGS
from identity_sync.storage.base import SecondaryStorage
from identity_sync.utils import get_logger

logger = get_logger(__name__)


class RedisStorage(SecondaryStorage):
    def __init__(self, client: "redis.Redis", *, prefix: Optional[str] = None) -> None:
        self._client = client
        self._prefix = prefix if prefix is not None else str(STORAGE_SETTINGS.get("redis_prefix", "sync:"))

    @classmethod
    def from_url(cls, url: str, *, prefix: Optional[str] = None) -> "RedisStorage":
        client = redis.from_url(url)
        logger.info("Redis storage client created", url=url)
        return cls(client, prefix=prefix)

    def _key(self, key: str) -> str:
        return self._prefix + key

    @staticmethod
    def _decode(value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    def get(self, key: str) -> Optional[str]:
        return self._decode(self._client.get(self._key(key)))

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        if ttl_seconds:
            self._client.set(self._key(key), str(value), ex=int(ttl_seconds))
        else:
            self._client.set(self._key(key), str(value))

    def delete(self, key: str) -> None:
        self._client.delete(self._key(key))

    def health_check(self) -> bool:
        try:
            self._client.ping()
            return True
        except (redis.RedisError, ConnectionError) as e:
            logger.warning("Redis storage unavailable", error=str(e))
            return False

    def close(self) -> None:
        self._client.close()


__all__ = ["RedisStorage"]

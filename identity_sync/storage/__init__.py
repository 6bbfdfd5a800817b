"""Secondary storage backends selected by configuration."""
from __future__ import annotations

from typing import Optional

from identity_sync.config import STORAGE_SETTINGS
from identity_sync.storage.base import SecondaryStorage
from identity_sync.storage.memory import MemoryStorage
from identity_sync.utils import get_logger

logger = get_logger(__name__)


def create_storage(backend: Optional[str] = None) -> SecondaryStorage:
    """Build the configured storage backend (``memory`` | ``sql`` | ``redis``)."""
    backend = (backend or str(STORAGE_SETTINGS.get("backend", "memory"))).lower()
    if backend == "sql":
        from identity_sync.storage.sql import SqlStorage
        url = str(STORAGE_SETTINGS["sql_url"])
        logger.info("Using SQL secondary storage", url=url)
        return SqlStorage.from_url(url)
    if backend == "redis":
        from identity_sync.storage.redis_storage import RedisStorage
        return RedisStorage.from_url(str(STORAGE_SETTINGS["redis_url"]))
    if backend != "memory":
        raise ValueError(f"Unknown storage backend '{backend}'")
    logger.warning("Using in-memory secondary storage; nonces and timestamps are not shared across processes")
    return MemoryStorage()


__all__ = ["SecondaryStorage", "MemoryStorage", "create_storage"]

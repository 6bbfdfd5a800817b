"""Logger that suppresses repeats of the last message per key.

The last message for each key lives in secondary storage (``log:msg:<key>``),
so several processes sharing the storage print a changed status once instead
of once per process and per boot.
"""
from __future__ import annotations

import json
from typing import Any, Optional

from identity_sync.storage.base import SecondaryStorage
from identity_sync.storage.keys import LOG_KEY_PREFIX
from identity_sync.utils.logger import StructuredLogger, get_logger


class DeduplicatedLogger:
    def __init__(self, storage: SecondaryStorage, *, enabled: bool = True, logger: Optional[StructuredLogger] = None) -> None:
        self._storage = storage
        self._enabled = enabled
        self._logger = logger or get_logger("dedup")

    def log(self, key: str, message: str, **extra: Any) -> bool:
        """Log ``message`` unless it equals the last one logged under ``key``. Returns True if logged."""
        if not self._enabled:
            return False
        fingerprint = message if not extra else f"{message}::{json.dumps(extra, sort_keys=True, default=str)}"
        storage_key = LOG_KEY_PREFIX + key
        if self._storage.get(storage_key) == fingerprint:
            return False
        self._storage.set(storage_key, fingerprint)
        self._logger.info(message, log_key=key, **extra)
        return True

    def always(self, message: str, **extra: Any) -> None:
        if self._enabled:
            self._logger.info(message, **extra)

    def clear(self, key: str) -> None:
        self._storage.delete(LOG_KEY_PREFIX + key)


__all__ = ["DeduplicatedLogger"]

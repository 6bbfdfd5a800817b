from abc import ABC, abstractmethod
from typing import Optional


class SecondaryStorage(ABC):
    """Minimal string key-value store with optional per-key TTL.

    Shared between the sync agent and the record store for nonces,
    coordination timestamps and cached sessions. Must be backed by a shared
    medium (SQL file, Redis) to mean anything across processes.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the value, or None if missing or expired."""

    @abstractmethod
    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """Store ``value`` under ``key``; expire after ``ttl_seconds`` if given."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``; missing keys are ignored."""

    def close(self) -> None:  # pragma: no cover - optional for backends
        return None


__all__ = ["SecondaryStorage"]

"""Publish/subscribe-by-service-name primitive used for coordination signals.

Only readiness timestamps travel over the bus; user data never does.
A subscriber sees notifications issued after it subscribed, never history.
"""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Callable

from identity_sync.utils import get_logger

logger = get_logger(__name__)

TimestampHandler = Callable[[int], None]
Unsubscribe = Callable[[], None]


class EventBus(ABC):
    @abstractmethod
    def notify(self, service_name: str, timestamp: int) -> None:
        """Announce that ``service_name`` became ready at ``timestamp`` (unix millis)."""

    @abstractmethod
    def subscribe(self, service_name: str, handler: TimestampHandler) -> Unsubscribe:
        """Register ``handler`` for future notifications; returns an unsubscribe callable."""

    def close(self) -> None:
        return None


class HandlerRegistry:
    """Thread-safe service name -> handlers map shared by the bus backends."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[str, list[TimestampHandler]] = {}

    def add(self, service_name: str, handler: TimestampHandler) -> None:
        with self._lock:
            self._handlers.setdefault(service_name, []).append(handler)

    def remove(self, service_name: str, handler: TimestampHandler) -> bool:
        """Remove ``handler``; returns True when no handlers remain for the service."""
        with self._lock:
            handlers = self._handlers.get(service_name, [])
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                self._handlers.pop(service_name, None)
                return True
            return False

    def has(self, service_name: str) -> bool:
        with self._lock:
            return bool(self._handlers.get(service_name))

    def services(self) -> list[str]:
        with self._lock:
            return list(self._handlers)

    def dispatch(self, service_name: str, timestamp: int) -> int:
        with self._lock:
            handlers = list(self._handlers.get(service_name, []))
        for handler in handlers:
            try:
                handler(timestamp)
            except Exception as e:
                # One broken subscriber must not starve the others.
                logger.error("Event bus handler failed", service=service_name, error=str(e), exc_info=True)
        return len(handlers)


__all__ = ["EventBus", "HandlerRegistry", "TimestampHandler", "Unsubscribe"]

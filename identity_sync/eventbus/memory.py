"""Process-local event bus (tests, single-process development)."""
from __future__ import annotations

from identity_sync.eventbus.base import EventBus, HandlerRegistry, TimestampHandler, Unsubscribe


class InMemoryEventBus(EventBus):
    def __init__(self) -> None:
        self._registry = HandlerRegistry()

    def notify(self, service_name: str, timestamp: int) -> None:
        self._registry.dispatch(service_name, int(timestamp))

    def subscribe(self, service_name: str, handler: TimestampHandler) -> Unsubscribe:
        self._registry.add(service_name, handler)

        def unsubscribe() -> None:
            self._registry.remove(service_name, handler)

        return unsubscribe


__all__ = ["InMemoryEventBus"]

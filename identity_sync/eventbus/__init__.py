"""Event bus backends selected by configuration."""
from __future__ import annotations

from typing import Optional

from identity_sync.config import EVENT_BUS_SETTINGS
from identity_sync.eventbus.base import EventBus, HandlerRegistry, TimestampHandler, Unsubscribe
from identity_sync.eventbus.memory import InMemoryEventBus
from identity_sync.utils import get_logger

logger = get_logger(__name__)


def create_event_bus(backend: Optional[str] = None) -> EventBus:
    """Build the configured bus backend (``memory`` | ``sql`` | ``redis``)."""
    backend = (backend or str(EVENT_BUS_SETTINGS.get("backend", "memory"))).lower()
    if backend == "sql":
        from identity_sync.eventbus.sql_polling import SqlPollingEventBus
        url = str(EVENT_BUS_SETTINGS["sql_url"])
        logger.info("Using SQL polling event bus", url=url)
        return SqlPollingEventBus.from_url(url)
    if backend == "redis":
        from identity_sync.eventbus.redis_bus import RedisEventBus
        url = str(EVENT_BUS_SETTINGS["redis_url"])
        logger.info("Using Redis pub/sub event bus", url=url)
        return RedisEventBus.from_url(url)
    if backend != "memory":
        raise ValueError(f"Unknown event bus backend '{backend}'")
    logger.warning("Using in-memory event bus; peers in other processes will not be seen")
    return InMemoryEventBus()


__all__ = [
    "EventBus",
    "HandlerRegistry",
    "InMemoryEventBus",
    "TimestampHandler",
    "Unsubscribe",
    "create_event_bus",
]

"""Redis pub/sub event bus for multi-host deployments.

Channel per service: ``<prefix>timestamp:<service>``. Messages carry
``<origin>:<timestamp>``; the origin lets an instance ignore the echo of its
own publish, since local handlers are already called synchronously in
``notify``.

Redis subscriptions need a dedicated connection; redis-py's ``PubSub`` object
provides one, and its listener thread is started lazily (daemonized) on the
first subscription.
"""
from __future__ import annotations

import threading
import uuid
from typing import Any, Optional

import redis

from identity_sync.config import EVENT_BUS_SETTINGS
from identity_sync.eventbus.base import EventBus, HandlerRegistry, TimestampHandler, Unsubscribe
from identity_sync.utils import get_logger

logger = get_logger(__name__)


class RedisEventBus(EventBus):
    def __init__(
        self,
        client: "redis.Redis",
        *,
        channel_prefix: Optional[str] = None,
        listener_sleep_seconds: float = 0.1,
    ) -> None:
        self._client = client
        self._prefix = str(channel_prefix if channel_prefix is not None else EVENT_BUS_SETTINGS.get("channel_prefix", "eventbus:"))
        self._listener_sleep = listener_sleep_seconds
        self._origin = uuid.uuid4().hex
        self._registry = HandlerRegistry()
        self._lock = threading.RLock()
        self._pubsub: Any = None
        self._listener: Any = None
        self._subscribed_channels: set[str] = set()

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisEventBus":
        return cls(redis.from_url(url), **kwargs)

    def _channel(self, service_name: str) -> str:
        return f"{self._prefix}timestamp:{service_name}"

    def _service_from_channel(self, channel: str) -> Optional[str]:
        marker = f"{self._prefix}timestamp:"
        if not channel.startswith(marker):
            return None
        return channel[len(marker):]

    # ----------------------------- public API ----------------------------- #
    def notify(self, service_name: str, timestamp: int) -> None:
        message = f"{self._origin}:{int(timestamp)}"
        try:
            self._client.publish(self._channel(service_name), message)
        except redis.RedisError as e:
            # Local subscribers still get it; remote peers catch up via stored timestamps.
            logger.error("Failed to publish timestamp change", service=service_name, error=str(e))
        self._registry.dispatch(service_name, int(timestamp))

    def subscribe(self, service_name: str, handler: TimestampHandler) -> Unsubscribe:
        channel = self._channel(service_name)
        self._registry.add(service_name, handler)
        with self._lock:
            if channel not in self._subscribed_channels:
                try:
                    self._ensure_pubsub().subscribe(**{channel: self._on_message})
                    self._subscribed_channels.add(channel)
                except redis.RedisError as e:
                    logger.error("Failed to subscribe to channel", channel=channel, error=str(e))
            self._ensure_listener()

        def unsubscribe() -> None:
            if not self._registry.remove(service_name, handler):
                return
            with self._lock:
                if channel in self._subscribed_channels and self._pubsub is not None:
                    self._subscribed_channels.discard(channel)
                    try:
                        self._pubsub.unsubscribe(channel)
                    except redis.RedisError as e:
                        logger.error("Failed to unsubscribe from channel", channel=channel, error=str(e))

        return unsubscribe

    def close(self) -> None:
        with self._lock:
            if self._listener is not None:
                self._listener.stop()
                self._listener = None
            if self._pubsub is not None:
                self._pubsub.close()
                self._pubsub = None
            self._subscribed_channels.clear()

    # ----------------------------- internals ----------------------------- #
    def _ensure_pubsub(self) -> Any:
        if self._pubsub is None:
            self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        return self._pubsub

    def _ensure_listener(self) -> None:
        if self._listener is None and self._subscribed_channels:
            self._listener = self._ensure_pubsub().run_in_thread(sleep_time=self._listener_sleep, daemon=True)
            logger.info("Redis event bus listener started")

    def _on_message(self, message: dict) -> None:
        channel = message.get("channel")
        data = message.get("data")
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8")
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        service = self._service_from_channel(str(channel))
        if service is None or not isinstance(data, str):
            return
        origin, _, raw_ts = data.rpartition(":")
        if origin == self._origin:
            return
        try:
            timestamp = int(raw_ts)
        except ValueError:
            logger.warning("Ignoring malformed timestamp message", channel=channel, data=data)
            return
        self._registry.dispatch(service, timestamp)


__all__ = ["RedisEventBus"]

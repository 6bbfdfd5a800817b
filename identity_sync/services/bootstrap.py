"""Boot-time coordination between the sync agent and its peer (the record store).

Each side records ``timestamp:<service>`` (unix millis) in secondary storage.
The peer writes its timestamp and notifies the event bus when it is ready
(``announce_ready``); the coordinator decides on boot whether a full
reconcile is needed now or must wait for the peer:

    peer never announced        -> watch the peer, reconcile when it announces
    we never completed a sync   -> reconcile now
    peer newer than our sync    -> reconcile now
    otherwise                   -> up to date, watch for the next peer restart

A failed or skipped attempt falls back to watching. Our timestamp is written only after
a successful reconcile, so a crash mid-sync is retried on the next boot.
"""
from __future__ import annotations

import threading
import time
from typing import Any, Callable, Optional

from identity_sync.eventbus.base import EventBus, Unsubscribe
from identity_sync.models.db.enums import BootstrapState
from identity_sync.storage.base import SecondaryStorage
from identity_sync.storage.keys import timestamp_key
from identity_sync.utils import get_logger, log_business_event

logger = get_logger(__name__)


def read_timestamp(storage: SecondaryStorage, service_name: str) -> Optional[int]:
    raw = storage.get(timestamp_key(service_name))
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed service timestamp", service=service_name, value=raw)
        return None


def announce_ready(
    service_name: str,
    storage: SecondaryStorage,
    event_bus: EventBus,
    *,
    clock: Callable[[], float] = time.time,
) -> int:
    """Record that ``service_name`` is ready and tell subscribers. Returns the timestamp."""
    timestamp = int(clock() * 1000)
    storage.set(timestamp_key(service_name), str(timestamp))
    event_bus.notify(service_name, timestamp)
    logger.info("Service ready announced", service=service_name, timestamp=timestamp)
    return timestamp


class BootstrapCoordinator:
    def __init__(
        self,
        service_name: str,
        peer_name: str,
        storage: SecondaryStorage,
        event_bus: EventBus,
        reconcile: Callable[[], Any],
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.service_name = service_name
        self.peer_name = peer_name
        self._storage = storage
        self._event_bus = event_bus
        self._reconcile = reconcile
        self._clock = clock
        self._state = BootstrapState.COLD
        self._state_lock = threading.RLock()
        self._attempt_lock = threading.Lock()
        self._unsubscribe: Optional[Unsubscribe] = None

    @property
    def state(self) -> BootstrapState:
        return self._state

    @property
    def watching(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> BootstrapState:
        peer_ts = read_timestamp(self._storage, self.peer_name)
        own_ts = read_timestamp(self._storage, self.service_name)
        if peer_ts is None:
            logger.info("Peer not ready yet, waiting for its announcement", peer=self.peer_name)
            self._watch()
        elif own_ts is None or peer_ts > own_ts:
            logger.info("Peer newer than last sync, reconciling", peer=self.peer_name, peer_ts=peer_ts, own_ts=own_ts)
            self.attempt()
        else:
            logger.info("Already in sync with peer", peer=self.peer_name, peer_ts=peer_ts, own_ts=own_ts)
            self._watch()
        return self._state

    def attempt(self) -> bool:
        """Run one reconcile attempt. Never raises; returns True on success.

        ``reconcile`` returning None means no pass was started (one is already
        running), which counts as not attempted.
        """
        with self._attempt_lock:
            self._set_state(BootstrapState.SYNCING)
            try:
                result = self._reconcile()
                if result is None:
                    # Another pass owns the queue and may still fail.
                    logger.info("Reconcile already running, still watching peer", peer=self.peer_name)
                    self._watch()
                    return False
                timestamp = int(self._clock() * 1000)
                self._storage.set(timestamp_key(self.service_name), str(timestamp))
            except Exception as e:
                logger.error("Bootstrap reconcile failed, watching peer", peer=self.peer_name, error=str(e), exc_info=True)
                self._watch()
                return False
            self._unwatch()
            self._set_state(BootstrapState.SYNCED)
            log_business_event("bootstrap_synced", {"service": self.service_name, "peer": self.peer_name, "timestamp": timestamp})
            return True

    def stop(self) -> None:
        self._unwatch()

    # ----------------------------- internals ----------------------------- #
    def _set_state(self, state: BootstrapState) -> None:
        with self._state_lock:
            if state is not self._state:
                logger.debug("Bootstrap state change", old=self._state.value, new=state.value)
            self._state = state

    def _on_peer_ready(self, timestamp: int) -> None:
        logger.info("Peer announced ready", peer=self.peer_name, timestamp=timestamp)
        self.attempt()

    def _watch(self) -> None:
        with self._state_lock:
            if self._unsubscribe is None:
                self._unsubscribe = self._event_bus.subscribe(self.peer_name, self._on_peer_ready)
            self._set_state(BootstrapState.WATCHING)

    def _unwatch(self) -> None:
        with self._state_lock:
            unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()


__all__ = ["BootstrapCoordinator", "announce_ready", "read_timestamp"]

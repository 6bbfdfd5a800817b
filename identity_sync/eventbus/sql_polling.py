"""SQL-backed event bus with polling for cross-process communication.

Every notification is appended to ``eventbus_timestamp_events``; each bus
instance polls for rows newer than the last id it has seen. Processes sharing
the same database file (e.g. several uvicorn workers) therefore see each
other's notifications with at most ``poll_interval_seconds`` latency.

Trade-offs:
 - Polling latency and file I/O versus a real pub/sub broker.
 - Single host only; for multiple machines use the Redis bus.

Rows written by this instance are dispatched to local handlers immediately
and skipped by the poller, so a same-process subscriber sees them once.
"""
from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.engine import Engine

from identity_sync.config import EVENT_BUS_SETTINGS
from identity_sync.database import make_engine, make_session_factory
from identity_sync.eventbus.base import EventBus, HandlerRegistry, TimestampHandler, Unsubscribe
from identity_sync.models.db.sync_state import SyncStateBase, TimestampEvent
from identity_sync.utils import get_logger

logger = get_logger(__name__)


class SqlPollingEventBus(EventBus):
    def __init__(
        self,
        engine: Engine,
        *,
        poll_interval_seconds: Optional[float] = None,
        cleanup_age_seconds: Optional[float] = None,
        cleanup_interval_seconds: Optional[float] = None,
        autostart: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._engine = engine
        self._session_factory = make_session_factory(engine)
        self._poll_interval = float(poll_interval_seconds if poll_interval_seconds is not None else EVENT_BUS_SETTINGS["poll_interval_seconds"])
        self._cleanup_age = float(cleanup_age_seconds if cleanup_age_seconds is not None else EVENT_BUS_SETTINGS["cleanup_age_seconds"])
        self._cleanup_interval = float(cleanup_interval_seconds if cleanup_interval_seconds is not None else EVENT_BUS_SETTINGS["cleanup_interval_seconds"])
        self._autostart = autostart
        self._clock = clock
        self._registry = HandlerRegistry()
        self._poll_lock = threading.RLock()
        self._local_ids: set[int] = set()
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._last_cleanup = self._clock()

        if engine.dialect.name == "sqlite":
            with engine.begin() as conn:
                conn.exec_driver_sql("PRAGMA journal_mode=WAL")
                conn.exec_driver_sql("PRAGMA busy_timeout=5000")
        SyncStateBase.metadata.create_all(bind=engine, tables=[TimestampEvent.__table__])
        # Start after whatever is already in the table: no historical replay.
        self._last_event_id = self._max_event_id()

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "SqlPollingEventBus":
        return cls(make_engine(url), **kwargs)

    def _max_event_id(self) -> int:
        with self._session_factory() as session:
            return int(session.scalar(select(func.max(TimestampEvent.id))) or 0)

    # ----------------------------- public API ----------------------------- #
    def notify(self, service_name: str, timestamp: int) -> None:
        # Held across insert + mark so the poller never sees an unmarked own row.
        with self._poll_lock:
            with self._session_factory() as session:
                event = TimestampEvent(
                    service=service_name,
                    timestamp=int(timestamp),
                    created_at=int(self._clock() * 1000),
                )
                session.add(event)
                session.commit()
                self._local_ids.add(event.id)
        self._registry.dispatch(service_name, int(timestamp))

    def subscribe(self, service_name: str, handler: TimestampHandler) -> Unsubscribe:
        # Drain pending rows to existing handlers first so the new one only
        # sees events published after this call.
        self.poll_once()
        self._registry.add(service_name, handler)
        if self._autostart:
            self.start()

        def unsubscribe() -> None:
            self._registry.remove(service_name, handler)

        return unsubscribe

    def poll_once(self) -> int:
        """Dispatch every row newer than the last seen id; returns rows dispatched."""
        dispatched = 0
        with self._poll_lock:
            with self._session_factory() as session:
                rows = session.execute(
                    select(TimestampEvent.id, TimestampEvent.service, TimestampEvent.timestamp)
                    .where(TimestampEvent.id > self._last_event_id)
                    .order_by(TimestampEvent.id.asc())
                ).all()
            for event_id, service, timestamp in rows:
                self._last_event_id = event_id
                if event_id in self._local_ids:
                    self._local_ids.discard(event_id)
                    continue
                self._registry.dispatch(service, int(timestamp))
                dispatched += 1
        return dispatched

    def cleanup(self) -> int:
        """Delete events older than the cleanup age; returns rows removed."""
        cutoff = int((self._clock() - self._cleanup_age) * 1000)
        with self._session_factory() as session:
            result = session.execute(delete(TimestampEvent).where(TimestampEvent.created_at < cutoff))
            session.commit()
        self._last_cleanup = self._clock()
        return result.rowcount or 0

    # ----------------------------- lifecycle ----------------------------- #
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="eventbus-poller", daemon=True)
        self._thread.start()
        logger.info("SQL event bus poller started", poll_interval=self._poll_interval)

    def close(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=max(1.0, self._poll_interval * 5))
        self._engine.dispose()

    def _loop(self) -> None:
        while not self._stop_event.wait(self._poll_interval):
            try:
                self.poll_once()
                if self._clock() - self._last_cleanup >= self._cleanup_interval:
                    self.cleanup()
            except Exception as e:
                # Retried on the next interval (locked database, transient I/O).
                logger.warning("Event bus poll failed", error=str(e))


__all__ = ["SqlPollingEventBus"]

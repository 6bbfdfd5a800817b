"""Background scheduler driving the reconcile queue."""
from __future__ import annotations

import threading
from typing import Optional

from identity_sync.config import QUEUE_SETTINGS
from identity_sync.jobs.queue import ReconcileQueue
from identity_sync.utils import get_logger

logger = get_logger(__name__)


class SyncScheduler:
    """Runs ``queue.tick()`` every ``tick_seconds`` and a full reconcile every
    ``reconcile_every_seconds`` on daemon threads, so it never holds the
    process open. Stopping does not drain the queue.
    """

    def __init__(
        self,
        queue: ReconcileQueue,
        *,
        tick_seconds: Optional[float] = None,
        reconcile_every_seconds: Optional[float] = None,
        run_on_boot: Optional[bool] = None,
        boot_delay_seconds: Optional[float] = None,
    ) -> None:
        self.queue = queue
        self.tick_seconds = float(tick_seconds if tick_seconds is not None else QUEUE_SETTINGS["tick_seconds"])
        self.reconcile_every_seconds = float(
            reconcile_every_seconds if reconcile_every_seconds is not None else QUEUE_SETTINGS["reconcile_every_seconds"]
        )
        self.run_on_boot = bool(run_on_boot if run_on_boot is not None else QUEUE_SETTINGS["run_on_boot"])
        self.boot_delay_seconds = float(boot_delay_seconds if boot_delay_seconds is not None else QUEUE_SETTINGS["boot_delay_seconds"])
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        if self.running:  # pragma: no cover
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(target=self._tick_loop, name="sync-tick", daemon=True),
            threading.Thread(target=self._reconcile_loop, name="sync-reconcile", daemon=True),
        ]
        for thread in self._threads:
            thread.start()
        logger.info(
            "Sync scheduler started",
            tick_seconds=self.tick_seconds,
            reconcile_every_seconds=self.reconcile_every_seconds,
            run_on_boot=self.run_on_boot,
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if timeout is not None:
            for thread in self._threads:
                thread.join(timeout=timeout)
        logger.info("Sync scheduler stop requested")

    def _tick_loop(self) -> None:
        while not self._stop_event.wait(self.tick_seconds):
            try:
                self.queue.tick()
            except Exception as e:  # pragma: no cover
                logger.error("Tick loop error", error=str(e), exc_info=True)

    def _reconcile_loop(self) -> None:
        if self.run_on_boot and not self._stop_event.wait(self.boot_delay_seconds):
            self._seed("boot")
        while not self._stop_event.wait(self.reconcile_every_seconds):
            self._seed("interval")

    def _seed(self, trigger: str) -> None:
        try:
            self.queue.seed_full_reconcile()
        except Exception as e:
            # Already logged by the queue; the next interval starts from scratch.
            logger.warning("Scheduled full reconcile failed", trigger=trigger, error=str(e))


__all__ = ["SyncScheduler"]

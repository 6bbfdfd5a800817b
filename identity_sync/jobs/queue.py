"""In-memory de-duplicating reconcile queue (single in-flight task).

Features:
- One task per ``kind:subject_id`` key; re-enqueueing merges into the
  outstanding task (payload filled in if missing, priority promotes to front).
- Priority tasks (user operations) go to the front; background tasks to the
  back. Each ``tick()`` runs the first task in queue order that is due.
- Enqueueing a delete drops the pending ensure for the same subject.
- Failed tasks stay queued and are retried with capped exponential backoff
  plus jitter; attempts are unbounded.
- ``seed_full_reconcile()`` replaces the outstanding full-reconcile tasks with
  a fresh pass over the identity directory.

Directory and record-store calls run outside the lock, so enqueue never waits
on I/O. A task re-enqueued while it is executing is run once more after it
completes, with the newest snapshot.
"""
from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from identity_sync.config import QUEUE_SETTINGS
from identity_sync.exceptions import RecordNotFoundError
from identity_sync.jobs.sync_task import SyncTask, dedup_key
from identity_sync.models.db.enums import TaskKind, TaskSource
from identity_sync.models.schemas.users import DirectoryAccount, DirectoryUser
from identity_sync.services.full_reconcile import ReconcileSummary, new_reconcile_run_id, run_full_reconcile
from identity_sync.utils import get_logger
from identity_sync.utils.backoff import compute_retry_delay_seconds

if TYPE_CHECKING:  # pragma: no cover
    from identity_sync.services.identity_directory import IdentityDirectory
    from identity_sync.services.sources import RecordStoreWriter

logger = get_logger(__name__)


class ReconcileQueue:
    def __init__(
        self,
        identity: "IdentityDirectory",
        records: "RecordStoreWriter",
        *,
        page_size: Optional[int] = None,
        prune_orphans: Optional[bool] = None,
        sample_size: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._identity = identity
        self._records = records
        self._page_size = int(page_size if page_size is not None else QUEUE_SETTINGS["page_size"])
        self._prune_orphans = bool(prune_orphans if prune_orphans is not None else QUEUE_SETTINGS["prune_orphans"])
        self._sample_size = int(sample_size if sample_size is not None else QUEUE_SETTINGS["status_sample_size"])
        self._clock = clock
        self._lock = threading.RLock()
        self._tasks: list[SyncTask] = []
        self._by_key: dict[str, SyncTask] = {}
        self._in_flight: Optional[SyncTask] = None
        self._reconciling = False
        self._processed = 0
        self._failed = 0
        self._last_error: Optional[str] = None
        self._last_seed_at: Optional[datetime] = None

    # ----------------------------- enqueue API ----------------------------- #
    def enqueue(self, task: SyncTask, *, priority: bool = False, replace_payload: bool = False) -> SyncTask:
        """Add ``task`` or merge it into the outstanding task with the same key.

        A merge keeps the outstanding task, filling in its payload if missing
        (or replacing it with ``replace_payload``). Returns the queued task.
        """
        with self._lock:
            if task.kind is TaskKind.DELETE:
                self._supersede_ensure(task.subject_id)
            existing = self._by_key.get(task.key)
            if existing is None:
                if priority:
                    self._tasks.insert(0, task)
                else:
                    self._tasks.append(task)
                self._by_key[task.key] = task
                return task

            if existing is self._in_flight:
                existing.rerun = True
                if task.payload is not None:
                    existing.payload = task.payload
            elif task.payload is not None and (existing.payload is None or replace_payload):
                existing.payload = task.payload
            if priority:
                self._tasks.remove(existing)
                self._tasks.insert(0, existing)
            return existing

    def _supersede_ensure(self, subject_id: str) -> None:
        # A delete outranks any pending ensure for the subject. An in-flight
        # ensure finishes but is not rerun; the delete runs after it.
        ensure = self._by_key.pop(dedup_key(TaskKind.ENSURE, subject_id), None)
        if ensure is None:
            return
        ensure.rerun = False
        if ensure in self._tasks:
            self._tasks.remove(ensure)
        logger.debug("Pending ensure superseded by delete", subject_id=subject_id, source=ensure.source.value)

    def enqueue_ensure(
        self,
        user: Union[DirectoryUser, dict[str, Any]],
        priority: bool = False,
        source: TaskSource = TaskSource.USER_OPERATION,
        reconcile_run_id: Optional[str] = None,
        *,
        replace_payload: bool = False,
    ) -> SyncTask:
        snapshot = user if isinstance(user, DirectoryUser) else DirectoryUser.model_validate(user)
        task = SyncTask(
            kind=TaskKind.ENSURE,
            subject_id=snapshot.id,
            payload=snapshot,
            next_attempt_at=self._clock(),
            source=TaskSource(source),
            reconcile_run_id=reconcile_run_id,
        )
        return self.enqueue(task, priority=priority, replace_payload=replace_payload)

    def enqueue_delete(
        self,
        subject_id: str,
        priority: bool = False,
        source: TaskSource = TaskSource.USER_OPERATION,
        reconcile_run_id: Optional[str] = None,
    ) -> SyncTask:
        task = SyncTask(
            kind=TaskKind.DELETE,
            subject_id=str(subject_id),
            next_attempt_at=self._clock(),
            source=TaskSource(source),
            reconcile_run_id=reconcile_run_id,
        )
        return self.enqueue(task, priority=priority)

    # ----------------------------- processing ----------------------------- #
    def tick(self) -> bool:
        """Run at most one due task. Returns True if a task was attempted."""
        with self._lock:
            if self._in_flight is not None:
                return False
            now = self._clock()
            task = next((t for t in self._tasks if t.next_attempt_at <= now), None)
            if task is None:
                return False
            self._in_flight = task

        try:
            self._execute(task)
        except Exception as e:
            with self._lock:
                self._failed += 1
                self._last_error = str(e) or type(e).__name__
                task.attempts += 1
                task.rerun = False
                task.next_attempt_at = now + compute_retry_delay_seconds(task.attempts)
            logger.warning(
                "Sync task failed",
                key=task.key,
                attempts=task.attempts,
                source=task.source.value,
                retry_in=round(task.next_attempt_at - now, 3),
                error=self._last_error,
            )
        else:
            with self._lock:
                self._processed += 1
                if task.rerun and task in self._tasks:
                    task.rerun = False
                    task.attempts = 0
                    task.next_attempt_at = self._clock()
                else:
                    self._discard(task)
            logger.debug("Sync task completed", key=task.key, source=task.source.value)
        finally:
            with self._lock:
                self._in_flight = None
        return True

    def _execute(self, task: SyncTask) -> None:
        if task.kind is TaskKind.ENSURE:
            accounts = self._lookup_accounts(task.subject_id)
            if task.source is TaskSource.FULL_RECONCILE and callable(getattr(self._identity, "get_user", None)):
                # Scan snapshots can be stale by the time the task runs.
                user = self._lookup_user(task.subject_id)
            else:
                user = task.payload or self._lookup_user(task.subject_id)
            if user is None:
                # Gone from the identity directory; a delete task covers it.
                logger.info("Ensure skipped, subject no longer in identity directory", subject_id=task.subject_id)
                return
            self._records.upsert_by_subject_id(user, accounts)
        else:
            try:
                self._records.delete_by_subject_id(task.subject_id)
            except RecordNotFoundError:
                logger.debug("Delete target already absent", subject_id=task.subject_id)

    def _lookup_user(self, subject_id: str) -> Optional[DirectoryUser]:
        get_user = getattr(self._identity, "get_user", None)
        if not callable(get_user):
            return DirectoryUser(id=subject_id)
        return get_user(subject_id)

    def _lookup_accounts(self, subject_id: str) -> Optional[list[DirectoryAccount]]:
        list_accounts = getattr(self._identity, "list_accounts_for_user", None)
        if not callable(list_accounts):
            return None
        return list(list_accounts(subject_id))

    def _discard(self, task: SyncTask) -> None:
        # The task may already have been cleared by a reconcile seed.
        if task in self._tasks:
            self._tasks.remove(task)
        if self._by_key.get(task.key) is task:
            del self._by_key[task.key]

    # --------------------------- full reconcile --------------------------- #
    def clear_full_reconcile_tasks(self) -> int:
        with self._lock:
            kept = [t for t in self._tasks if t.source is not TaskSource.FULL_RECONCILE]
            removed = len(self._tasks) - len(kept)
            self._tasks = kept
            self._by_key = {t.key: t for t in kept}
            return removed

    def seed_full_reconcile(self) -> Optional[ReconcileSummary]:
        """Start a new full reconciliation pass.

        Returns None when a pass is already running. Listing errors propagate.
        """
        with self._lock:
            if self._reconciling:
                logger.info("Full reconcile already running, skipped")
                return None
            self._reconciling = True
            self._last_seed_at = datetime.now(timezone.utc)

        run_id = new_reconcile_run_id(self._clock())
        started = time.perf_counter()
        try:
            cleared = self.clear_full_reconcile_tasks()
            logger.info("Full reconcile started", reconcile_run_id=run_id, cleared_tasks=cleared, prune_orphans=self._prune_orphans)
            summary = run_full_reconcile(
                self,
                self._identity,
                self._records,
                run_id=run_id,
                page_size=self._page_size,
                prune_orphans=self._prune_orphans,
            )
        except Exception as e:
            logger.error("Full reconcile aborted", reconcile_run_id=run_id, error=str(e), exc_info=True)
            raise
        finally:
            with self._lock:
                self._reconciling = False

        logger.info(
            "Full reconcile seeded",
            reconcile_run_id=run_id,
            page_mode=summary.page_mode,
            identity_pages=summary.identity_pages,
            ensured=summary.ensured,
            orphans=summary.orphans,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            queue_size=len(self),
        )
        return summary

    # ------------------------------ inspection ----------------------------- #
    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def get(self, kind: TaskKind, subject_id: str) -> Optional[SyncTask]:
        with self._lock:
            return self._by_key.get(dedup_key(kind, subject_id))

    def keys(self) -> list[str]:
        with self._lock:
            return [t.key for t in self._tasks]

    def status(self) -> dict[str, Any]:
        with self._lock:
            user_ops = sum(1 for t in self._tasks if t.source is TaskSource.USER_OPERATION)
            return {
                "queue_size": len(self._tasks),
                "user_operation_tasks": user_ops,
                "full_reconcile_tasks": len(self._tasks) - user_ops,
                "processing": self._in_flight is not None,
                "reconciling": self._reconciling,
                "processed": self._processed,
                "failed": self._failed,
                "last_error": self._last_error,
                "last_seed_at": self._last_seed_at.isoformat() if self._last_seed_at else None,
                "sample_keys": [t.key for t in self._tasks[: self._sample_size]],
            }

    def purge(self) -> None:
        """Drop every queued task (testing / admin)."""
        with self._lock:
            self._tasks.clear()
            self._by_key.clear()


__all__ = ["ReconcileQueue"]

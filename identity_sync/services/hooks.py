"""Identity lifecycle hooks: push user operations to the front of the reconcile queue."""
from __future__ import annotations

from typing import Any, Union

from identity_sync.jobs.queue import ReconcileQueue
from identity_sync.jobs.sync_task import SyncTask
from identity_sync.models.db.enums import TaskSource
from identity_sync.models.schemas.users import DirectoryUser


def user_created(queue: ReconcileQueue, user: Union[DirectoryUser, dict[str, Any]]) -> SyncTask:
    return queue.enqueue_ensure(user, priority=True, source=TaskSource.USER_OPERATION)


def user_updated(queue: ReconcileQueue, user: Union[DirectoryUser, dict[str, Any]]) -> SyncTask:
    # A queued ensure may hold an older snapshot.
    return queue.enqueue_ensure(user, priority=True, source=TaskSource.USER_OPERATION, replace_payload=True)


def user_deleted(queue: ReconcileQueue, subject_id: str) -> SyncTask:
    return queue.enqueue_delete(subject_id, priority=True, source=TaskSource.USER_OPERATION)


__all__ = ["user_created", "user_updated", "user_deleted"]

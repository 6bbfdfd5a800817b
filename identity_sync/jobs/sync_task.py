"""Mirroring task payload structure."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from identity_sync.models.db.enums import TaskKind, TaskSource
from identity_sync.models.schemas.users import DirectoryUser


@dataclass(slots=True, eq=False)
class SyncTask:
    kind: TaskKind
    subject_id: str
    payload: Optional[DirectoryUser] = None  # cached snapshot for ensure tasks
    attempts: int = 0
    next_attempt_at: float = 0.0  # epoch seconds
    source: TaskSource = TaskSource.USER_OPERATION
    reconcile_run_id: Optional[str] = None
    # Set when the task is re-enqueued while executing; it then runs once more.
    rerun: bool = False

    @property
    def key(self) -> str:
        return dedup_key(self.kind, self.subject_id)


def dedup_key(kind: TaskKind, subject_id: str) -> str:
    return f"{TaskKind(kind).value}:{subject_id}"


__all__ = ["SyncTask", "dedup_key"]

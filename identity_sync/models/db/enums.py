"""Central Enum definitions for sync states.

These replace scattered string literals to ensure consistency across the
queue, coordinator, schemas and HTTP surface.
"""
from __future__ import annotations
import enum


class TaskKind(str, enum.Enum):
    ENSURE = "ensure"
    DELETE = "delete"


class TaskSource(str, enum.Enum):
    USER_OPERATION = "user-operation"
    FULL_RECONCILE = "full-reconcile"


class BootstrapState(str, enum.Enum):
    COLD = "cold"
    SYNCING = "syncing"
    SYNCED = "synced"
    WATCHING = "watching"


class RecordOp(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


__all__ = ["TaskKind", "TaskSource", "BootstrapState", "RecordOp"]

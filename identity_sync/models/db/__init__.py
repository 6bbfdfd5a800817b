from .enums import TaskKind, TaskSource, BootstrapState, RecordOp
from .identity import IdentityUser, IdentityAccount
from .records import Record, RecordAccount
from .sync_state import SyncStateBase, KVEntry, TimestampEvent

__all__ = [
    "TaskKind",
    "TaskSource",
    "BootstrapState",
    "RecordOp",
    "IdentityUser",
    "IdentityAccount",
    "Record",
    "RecordAccount",
    "SyncStateBase",
    "KVEntry",
    "TimestampEvent",
]

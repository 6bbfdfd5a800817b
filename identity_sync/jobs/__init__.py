from .queue import ReconcileQueue
from .sync_task import SyncTask, dedup_key
from .worker import SyncScheduler

__all__ = ["ReconcileQueue", "SyncTask", "SyncScheduler", "dedup_key"]

from .users import DirectoryUser, DirectoryAccount, RecordSummary, UsersPage, RecordsPage
from .reconcile import OkResponse, EnsureRequest, DeleteRequest, QueueStatus

__all__ = [
    "DirectoryUser",
    "DirectoryAccount",
    "RecordSummary",
    "UsersPage",
    "RecordsPage",
    "OkResponse",
    "EnsureRequest",
    "DeleteRequest",
    "QueueStatus",
]

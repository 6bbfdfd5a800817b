"""Exception types raised across the sync engine."""
from __future__ import annotations


class SyncError(Exception):
    """Base class for identity sync errors."""


class AuthorizationError(SyncError):
    """A record store mutation was not provably issued by the sync agent."""

    def __init__(self, message: str, *, op: str | None = None, subject_id: str | None = None):
        super().__init__(message)
        self.op = op
        self.subject_id = subject_id


class CanonicalizationError(SyncError, ValueError):
    """Value cannot be canonically serialized (cycle or unsupported type)."""


class RecordNotFoundError(SyncError):
    """Requested record does not exist in the record store."""


__all__ = ["SyncError", "AuthorizationError", "CanonicalizationError", "RecordNotFoundError"]

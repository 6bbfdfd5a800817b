"""SQL-backed TTL store.

Suited to development and multi-process single-host deployments where every
process opens the same SQLite file. Expired rows are dropped lazily on read
and in bulk by ``cleanup_expired``. For multi-host deployments use Redis.
"""
from __future__ import annotations

import time
from typing import Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine

from identity_sync.database import make_engine, make_session_factory
from identity_sync.models.db.sync_state import KVEntry, SyncStateBase
from identity_sync.storage.base import SecondaryStorage
from identity_sync.utils import get_logger

logger = get_logger(__name__)


class SqlStorage(SecondaryStorage):
    def __init__(self, engine: Engine, *, clock: Callable[[], float] = time.time) -> None:
        self._engine = engine
        self._clock = clock
        self._session_factory = make_session_factory(engine)
        SyncStateBase.metadata.create_all(bind=engine, tables=[KVEntry.__table__])

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "SqlStorage":
        return cls(make_engine(url), **kwargs)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def get(self, key: str) -> Optional[str]:
        with self._session_factory() as session:
            row = session.get(KVEntry, key)
            if row is None:
                return None
            if row.expires_at is not None and row.expires_at <= self._now_ms():
                session.delete(row)
                session.commit()
                return None
            return row.value

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._now_ms() + int(ttl_seconds * 1000) if ttl_seconds else None
        with self._session_factory() as session:
            # merge() is INSERT OR REPLACE on the primary key
            session.merge(KVEntry(key=key, value=str(value), expires_at=expires_at))
            session.commit()

    def delete(self, key: str) -> None:
        with self._session_factory() as session:
            session.execute(delete(KVEntry).where(KVEntry.key == key))
            session.commit()

    def cleanup_expired(self) -> int:
        """Delete every expired row; returns the number removed."""
        with self._session_factory() as session:
            result = session.execute(
                delete(KVEntry).where(KVEntry.expires_at.is_not(None), KVEntry.expires_at <= self._now_ms())
            )
            session.commit()
            removed = result.rowcount or 0
        if removed:
            logger.debug("Expired storage entries removed", count=removed)
        return removed

    def keys(self) -> list[str]:
        with self._session_factory() as session:
            return list(session.scalars(select(KVEntry.key)))

    def close(self) -> None:
        self._engine.dispose()


__all__ = ["SqlStorage"]

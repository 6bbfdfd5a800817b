"""SQLAlchemy models for the shared coordination database (KV store + bus events).

These live on their own declarative base: several processes open the same
file, independently of the identity / records databases.
"""
from __future__ import annotations

from sqlalchemy import BigInteger, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class SyncStateBase(DeclarativeBase):
    pass


class KVEntry(SyncStateBase):
    __tablename__ = "kv_entries"
    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    # Epoch millis; NULL means no expiry.
    expires_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)


class TimestampEvent(SyncStateBase):
    __tablename__ = "eventbus_timestamp_events"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    service: Mapped[str] = mapped_column(String, nullable=False, index=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)


__all__ = ["SyncStateBase", "KVEntry", "TimestampEvent"]

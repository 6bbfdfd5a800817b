"""Pytest fixtures and fakes.

The identity directory and the record store each get their own SQLite file
under tmp_path; the background-thread tests need file databases rather than
in-memory ones shared across threads.
"""
import sys
from pathlib import Path
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure project root on sys.path so 'identity_sync' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from identity_sync.database import Base  # type: ignore
from identity_sync.models.db import IdentityAccount, IdentityUser, Record, RecordAccount
from identity_sync.models.schemas.users import DirectoryAccount, DirectoryUser, RecordsPage, RecordSummary, UsersPage
from identity_sync.jobs.queue import ReconcileQueue
from identity_sync.services.authorization import SignatureGuard
from identity_sync.services.identity_directory import SqlIdentityDirectory
from identity_sync.services.record_store import SqlRecordStore
from identity_sync.services.sources import SignedRecordWriter
from identity_sync.storage import MemoryStorage

TEST_SECRET = "test-sync-secret"


class FakeClock:
    """Manually advanced clock (epoch seconds)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeIdentityDirectory:
    """In-memory directory exposing only offset paging unless ``cursor`` is set."""

    def __init__(self, users: Optional[list[DirectoryUser]] = None):
        self.users: list[DirectoryUser] = list(users or [])
        self.page_calls: list[tuple[int, int]] = []
        self.accounts: dict[str, list[DirectoryAccount]] = {}

    def list_users_page(self, limit: int, offset: int) -> UsersPage:
        self.page_calls.append((limit, offset))
        ordered = sorted(self.users, key=lambda u: u.id)
        return UsersPage(users=ordered[offset:offset + limit], total=len(ordered))


class CursorIdentityDirectory(FakeIdentityDirectory):
    def list_users_after(self, limit: int, after_id: Optional[str] = None) -> list[DirectoryUser]:
        self.page_calls.append((limit, -1))
        ordered = sorted(self.users, key=lambda u: u.id)
        if after_id is not None:
            ordered = [u for u in ordered if u.id > after_id]
        return ordered[:limit]

    def get_user(self, user_id: str) -> Optional[DirectoryUser]:
        return next((u for u in self.users if u.id == user_id), None)

    def list_accounts_for_user(self, user_id: str) -> list[DirectoryAccount]:
        return list(self.accounts.get(user_id, []))


class FakeRecordWriter:
    """Records every call; ``fail_with`` makes mutations raise."""

    def __init__(self, subject_ids: Optional[list[Optional[str]]] = None):
        self.subject_ids: list[Optional[str]] = list(subject_ids or [])
        self.upserts: list[tuple[DirectoryUser, Optional[list[DirectoryAccount]]]] = []
        self.deletes: list[str] = []
        self.fail_with: Optional[Exception] = None

    def upsert_by_subject_id(self, user, accounts=None) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.upserts.append((user, accounts))

    def delete_by_subject_id(self, subject_id: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.deletes.append(subject_id)

    def list_records_page(self, limit: int, page: int) -> RecordsPage:
        start = (page - 1) * limit
        chunk = self.subject_ids[start:start + limit]
        return RecordsPage(
            records=[RecordSummary(id=start + i + 1, subject_id=s) for i, s in enumerate(chunk)],
            total=len(self.subject_ids),
            has_next_page=start + limit < len(self.subject_ids),
        )


def make_users(count: int, prefix: str = "u") -> list[DirectoryUser]:
    return [DirectoryUser(id=f"{prefix}{i:05d}", email=f"{prefix}{i}@example.com", name=f"User {i}") for i in range(count)]


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def storage(clock):
    return MemoryStorage(clock=clock)


@pytest.fixture()
def identity_session_factory(tmp_path):
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'identity.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine, tables=[IdentityUser.__table__, IdentityAccount.__table__])
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture()
def records_session_factory(tmp_path):
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'records.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine, tables=[Record.__table__, RecordAccount.__table__])
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture()
def identity_directory(identity_session_factory):
    return SqlIdentityDirectory(identity_session_factory)


@pytest.fixture()
def record_store(records_session_factory):
    # Record store keeps its own nonce storage on the real clock: signatures
    # are made with time.time() by the writer.
    storage = MemoryStorage()
    return SqlRecordStore(records_session_factory, SignatureGuard(storage, TEST_SECRET), storage)


@pytest.fixture()
def signed_writer(record_store):
    return SignedRecordWriter(record_store, TEST_SECRET)


@pytest.fixture()
def sql_queue(identity_directory, signed_writer):
    return ReconcileQueue(identity_directory, signed_writer, page_size=2, prune_orphans=True)

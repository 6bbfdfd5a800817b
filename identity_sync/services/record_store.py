"""Record store with signature-gated writes for sync-managed fields.

Every mutation that touches a subject id (the link to the identity
directory) must carry a ``CryptoSignature`` over the exact body the store
re-derives for that operation:

    records:  {"collection": "records",  "op": <op>, "userId": <subject_id>}
    accounts: {"collection": "accounts", "op": <op>, "accountId": <account_id>}

A bad MAC, stale timestamp, consumed nonce, or a signature issued for a
different operation raises AuthorizationError before anything is written.
Nonces are consumed only after the write commits.
"""
from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from identity_sync.exceptions import RecordNotFoundError
from identity_sync.models.db.enums import RecordOp
from identity_sync.models.db.records import Record, RecordAccount
from identity_sync.models.schemas.users import RecordsPage, RecordSummary
from identity_sync.services.authorization import SignatureGuard
from identity_sync.services.sessions import extract_session_tokens, session_cookie_name, validate_session_token
from identity_sync.storage.base import SecondaryStorage
from identity_sync.utils import get_logger, log_business_event

logger = get_logger(__name__)

RECORDS_COLLECTION = "records"
ACCOUNTS_COLLECTION = "accounts"

_RECORD_FIELDS = {"email", "name", "extra"}
_ACCOUNT_FIELDS = {"provider_id", "email", "email_verified"}


def record_body(op: RecordOp, subject_id: str) -> dict[str, str]:
    return {"collection": RECORDS_COLLECTION, "op": RecordOp(op).value, "userId": subject_id}


def account_body(op: RecordOp, account_id: str) -> dict[str, str]:
    return {"collection": ACCOUNTS_COLLECTION, "op": RecordOp(op).value, "accountId": account_id}


class SqlRecordStore:
    def __init__(self, session_factory: sessionmaker, guard: SignatureGuard, storage: SecondaryStorage) -> None:
        self._session_factory = session_factory
        self._guard = guard
        self._storage = storage

    # ------------------------------- reads ------------------------------- #
    def find_by_subject_id(self, subject_id: str) -> Optional[Record]:
        with self._session_factory() as session:
            return session.scalar(select(Record).where(Record.subject_id == subject_id))

    def list_records_page(self, limit: int, page: int) -> RecordsPage:
        """1-based page of records ordered by id."""
        page = max(1, int(page))
        with self._session_factory() as session:
            total = int(session.scalar(select(func.count()).select_from(Record)) or 0)
            rows = session.execute(
                select(Record.id, Record.subject_id).order_by(Record.id.asc()).offset((page - 1) * limit).limit(limit)
            ).all()
        return RecordsPage(
            records=[RecordSummary(id=row_id, subject_id=subject_id) for row_id, subject_id in rows],
            total=total,
            has_next_page=page * limit < total,
        )

    def list_accounts(self, subject_id: str) -> list[RecordAccount]:
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(RecordAccount).where(RecordAccount.subject_id == subject_id).order_by(RecordAccount.account_id.asc())
                ).all()
            )

    def authenticate(self, cookie_header: Optional[str]) -> Optional[Record]:
        """Resolve the record of the first cookie carrying a live identity session."""
        tokens = extract_session_tokens(cookie_header, session_cookie_name(self._storage))
        for token in tokens:
            subject_id = validate_session_token(token, self._storage)
            if not subject_id:
                continue
            record = self.find_by_subject_id(subject_id)
            if record is not None:
                return record
            logger.debug("Live session without a mirrored record", subject_id=subject_id)
        return None

    # --------------------------- unlinked writes --------------------------- #
    def create_unlinked_record(self, *, email: Optional[str] = None, name: str = "") -> Record:
        """Record not managed by the sync agent (no subject id, no signature needed)."""
        with self._session_factory() as session:
            record = Record(email=email, name=name, extra={})
            session.add(record)
            session.commit()
            return record

    # ---------------------------- guarded writes ---------------------------- #
    def create_record(self, subject_id: str, data: dict[str, Any], signature: Any) -> Record:
        sig = self._guard.require(record_body(RecordOp.CREATE, subject_id), signature)
        with self._session_factory() as session:
            record = Record(subject_id=subject_id, **_pick(data, _RECORD_FIELDS))
            if record.name is None:
                record.name = ""
            session.add(record)
            session.commit()
        self._guard.mark_used(sig)
        log_business_event("record_created", {"record_id": record.id}, subject_id=subject_id)
        return record

    def update_record(self, subject_id: str, data: dict[str, Any], signature: Any) -> Record:
        sig = self._guard.require(record_body(RecordOp.UPDATE, subject_id), signature)
        with self._session_factory() as session:
            record = session.scalar(select(Record).where(Record.subject_id == subject_id))
            if record is None:
                raise RecordNotFoundError(f"No record for subject {subject_id}")
            for field, value in _pick(data, _RECORD_FIELDS).items():
                setattr(record, field, "" if field == "name" and value is None else value)
            session.commit()
        self._guard.mark_used(sig)
        return record

    def delete_record(self, subject_id: str, signature: Any) -> None:
        sig = self._guard.require(record_body(RecordOp.DELETE, subject_id), signature)
        with self._session_factory() as session:
            record = session.scalar(select(Record).where(Record.subject_id == subject_id))
            if record is None:
                raise RecordNotFoundError(f"No record for subject {subject_id}")
            session.delete(record)
            session.commit()
        self._guard.mark_used(sig)
        log_business_event("record_deleted", {}, subject_id=subject_id)

    def upsert_account(self, account_id: str, subject_id: str, data: dict[str, Any], signature: Any) -> RecordAccount:
        """Create or update one mirrored account; the signature must match the op that applies."""
        with self._session_factory() as session:
            account = session.scalar(select(RecordAccount).where(RecordAccount.account_id == account_id))
            op = RecordOp.UPDATE if account is not None else RecordOp.CREATE
            sig = self._guard.require(account_body(op, account_id), signature)
            if account is None:
                account = RecordAccount(account_id=account_id, subject_id=subject_id)
                session.add(account)
            else:
                account.subject_id = subject_id
            for field, value in _pick(data, _ACCOUNT_FIELDS).items():
                setattr(account, field, value)
            session.commit()
        self._guard.mark_used(sig)
        return account

    def delete_account(self, account_id: str, signature: Any) -> None:
        sig = self._guard.require(account_body(RecordOp.DELETE, account_id), signature)
        with self._session_factory() as session:
            account = session.scalar(select(RecordAccount).where(RecordAccount.account_id == account_id))
            if account is None:
                raise RecordNotFoundError(f"No account {account_id}")
            session.delete(account)
            session.commit()
        self._guard.mark_used(sig)


def _pick(data: dict[str, Any], allowed: set[str]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k in allowed}


__all__ = ["SqlRecordStore", "record_body", "account_body", "RECORDS_COLLECTION", "ACCOUNTS_COLLECTION"]

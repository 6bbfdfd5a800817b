"""Sync-agent side of the record store: every mutation is signed before it is sent.

``RecordStoreWriter`` is what the reconcile queue talks to. The SQL
implementation signs the body the record store will re-derive and calls the
guarded ``SqlRecordStore`` operation; a fresh signature (new nonce) is made
for every call, so retries never trip replay protection.
"""
from __future__ import annotations

from typing import Optional, Protocol, Sequence

from identity_sync.exceptions import RecordNotFoundError
from identity_sync.models.db.enums import RecordOp
from identity_sync.models.schemas.users import DirectoryAccount, DirectoryUser, RecordsPage
from identity_sync.services.record_store import SqlRecordStore, account_body, record_body
from identity_sync.services.signing import sign_canonical
from identity_sync.utils import get_logger

logger = get_logger(__name__)

CREDENTIAL_PROVIDER = "credential"
MAGIC_LINK_PROVIDER = "magic-link"


class RecordStoreWriter(Protocol):
    def upsert_by_subject_id(self, user: DirectoryUser, accounts: Optional[Sequence[DirectoryAccount]] = None) -> None: ...

    def delete_by_subject_id(self, subject_id: str) -> None: ...

    def list_records_page(self, limit: int, page: int) -> RecordsPage: ...


def mirrored_accounts(user: DirectoryUser, accounts: Sequence[DirectoryAccount]) -> list[DirectoryAccount]:
    """Accounts to mirror for ``user``.

    An email-verified user without a credential account signed in through a
    magic link; that login gets a synthetic ``magic-link:<user id>`` account.
    """
    result = list(accounts)
    has_credential = any(a.provider_id == CREDENTIAL_PROVIDER for a in result)
    if user.email_verified and not has_credential:
        synthetic_id = f"{MAGIC_LINK_PROVIDER}:{user.id}"
        if not any(a.id == synthetic_id for a in result):
            result.append(DirectoryAccount(id=synthetic_id, user_id=user.id, provider_id=MAGIC_LINK_PROVIDER))
    return result


class SignedRecordWriter:
    def __init__(self, store: SqlRecordStore, secret: str) -> None:
        if not secret:
            raise ValueError("SignedRecordWriter requires a non-empty secret")
        self._store = store
        self._secret = secret

    def _sign(self, body: dict[str, str]):
        return sign_canonical(body, self._secret)

    def upsert_by_subject_id(self, user: DirectoryUser, accounts: Optional[Sequence[DirectoryAccount]] = None) -> None:
        data = {"email": user.email, "name": user.name or "", "extra": dict(user.extra)}
        if self._store.find_by_subject_id(user.id) is None:
            self._store.create_record(user.id, data, self._sign(record_body(RecordOp.CREATE, user.id)))
            logger.info("Record created for subject", subject_id=user.id)
        else:
            self._store.update_record(user.id, data, self._sign(record_body(RecordOp.UPDATE, user.id)))
            logger.debug("Record updated for subject", subject_id=user.id)
        if accounts is not None:
            self._sync_accounts(user, accounts)

    def _sync_accounts(self, user: DirectoryUser, accounts: Sequence[DirectoryAccount]) -> None:
        desired = {a.id: a for a in mirrored_accounts(user, accounts)}
        existing = {a.account_id for a in self._store.list_accounts(user.id)}
        for account_id, account in desired.items():
            op = RecordOp.UPDATE if account_id in existing else RecordOp.CREATE
            self._store.upsert_account(
                account_id,
                user.id,
                {"provider_id": account.provider_id, "email": user.email, "email_verified": user.email_verified},
                self._sign(account_body(op, account_id)),
            )
        for account_id in existing - desired.keys():
            self._delete_account(account_id)

    def _delete_account(self, account_id: str) -> None:
        try:
            self._store.delete_account(account_id, self._sign(account_body(RecordOp.DELETE, account_id)))
        except RecordNotFoundError:
            pass

    def delete_by_subject_id(self, subject_id: str) -> None:
        """Remove the subject's accounts, then its record. Absent data is not an error."""
        for account in self._store.list_accounts(subject_id):
            self._delete_account(account.account_id)
        if self._store.find_by_subject_id(subject_id) is None:
            return
        try:
            self._store.delete_record(subject_id, self._sign(record_body(RecordOp.DELETE, subject_id)))
        except RecordNotFoundError:
            return
        logger.info("Record deleted for subject", subject_id=subject_id)

    def list_records_page(self, limit: int, page: int) -> RecordsPage:
        return self._store.list_records_page(limit, page)


__all__ = ["RecordStoreWriter", "SignedRecordWriter", "mirrored_accounts", "CREDENTIAL_PROVIDER", "MAGIC_LINK_PROVIDER"]

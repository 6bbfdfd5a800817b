import pytest

from identity_sync.exceptions import AuthorizationError, RecordNotFoundError
from identity_sync.models.db.enums import RecordOp
from identity_sync.services.authorization import SignatureGuard
from identity_sync.services.record_store import account_body, record_body
from identity_sync.services.signing import sign_canonical
from identity_sync.storage import MemoryStorage

from conftest import TEST_SECRET


def _sig(body):
    return sign_canonical(body, TEST_SECRET)


def test_signed_create_is_accepted(record_store):
    record = record_store.create_record("u1", {"name": "Ada", "email": "ada@example.com"}, _sig(record_body(RecordOp.CREATE, "u1")))
    assert record.subject_id == "u1"
    found = record_store.find_by_subject_id("u1")
    assert found is not None and found.name == "Ada"


def test_unsigned_or_forged_create_is_rejected(record_store):
    with pytest.raises(AuthorizationError):
        record_store.create_record("u1", {"name": "Eve"}, None)
    forged = sign_canonical(record_body(RecordOp.CREATE, "u1"), "wrong-secret")
    with pytest.raises(AuthorizationError):
        record_store.create_record("u1", {"name": "Eve"}, forged)
    assert record_store.find_by_subject_id("u1") is None


def test_signature_for_another_operation_is_rejected(record_store):
    create_sig = _sig(record_body(RecordOp.CREATE, "u1"))
    record_store.create_record("u1", {"name": "Ada"}, create_sig)

    # A valid signature over the create body cannot authorize a delete...
    with pytest.raises(AuthorizationError) as exc:
        record_store.delete_record("u1", _sig(record_body(RecordOp.CREATE, "u1")))
    assert exc.value.op == "delete"
    assert exc.value.subject_id == "u1"
    # ...nor a delete of another subject.
    with pytest.raises(AuthorizationError):
        record_store.delete_record("u1", _sig(record_body(RecordOp.DELETE, "u2")))
    assert record_store.find_by_subject_id("u1") is not None


def test_replayed_signature_is_rejected(record_store):
    sig = _sig(record_body(RecordOp.CREATE, "u1"))
    record_store.create_record("u1", {"name": "Ada"}, sig)
    record_store.delete_record("u1", _sig(record_body(RecordOp.DELETE, "u1")))
    with pytest.raises(AuthorizationError):
        record_store.create_record("u1", {"name": "Ada"}, sig)
    assert record_store.find_by_subject_id("u1") is None


def test_failed_write_does_not_consume_nonce(record_store):
    sig = _sig(record_body(RecordOp.UPDATE, "missing"))
    with pytest.raises(RecordNotFoundError):
        record_store.update_record("missing", {"name": "x"}, sig)
    record_store.create_record("missing", {"name": "a"}, _sig(record_body(RecordOp.CREATE, "missing")))
    updated = record_store.update_record("missing", {"name": "b"}, sig)
    assert updated.name == "b"


def test_account_upsert_requires_matching_op(record_store):
    with pytest.raises(AuthorizationError):
        record_store.upsert_account("acc-1", "u1", {"provider_id": "credential"}, _sig(account_body(RecordOp.UPDATE, "acc-1")))
    record_store.upsert_account("acc-1", "u1", {"provider_id": "credential"}, _sig(account_body(RecordOp.CREATE, "acc-1")))
    with pytest.raises(AuthorizationError):
        record_store.upsert_account("acc-1", "u1", {"provider_id": "github"}, _sig(account_body(RecordOp.CREATE, "acc-1")))
    record_store.upsert_account("acc-1", "u1", {"provider_id": "github"}, _sig(account_body(RecordOp.UPDATE, "acc-1")))
    accounts = record_store.list_accounts("u1")
    assert [(a.account_id, a.provider_id) for a in accounts] == [("acc-1", "github")]


def test_guard_marks_nonce_with_ttl():
    storage = MemoryStorage()
    guard = SignatureGuard(storage, TEST_SECRET, nonce_ttl_seconds=300)
    body = record_body(RecordOp.DELETE, "u1")
    sig = _sig(body)
    assert guard.verify(body, sig)
    guard.mark_used(sig)
    assert guard.verify(body, sig) is False
    assert storage.get(f"nonce:{sig.nonce}") == "1"


def test_guard_fails_closed_when_storage_errors():
    class BrokenStorage(MemoryStorage):
        def get(self, key):
            raise ConnectionError("storage down")

    guard = SignatureGuard(BrokenStorage(), TEST_SECRET)
    body = record_body(RecordOp.DELETE, "u1")
    assert guard.verify(body, _sig(body)) is False


def test_unlinked_records_need_no_signature(record_store):
    record = record_store.create_unlinked_record(email="local@example.com", name="Local")
    assert record.subject_id is None
    page = record_store.list_records_page(10, 1)
    assert [r.subject_id for r in page.records] == [None]
    assert page.total == 1
    assert page.has_next_page is False

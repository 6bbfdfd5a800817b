import json
from datetime import datetime, timedelta, timezone

from identity_sync.models.db.enums import RecordOp
from identity_sync.services.record_store import record_body
from identity_sync.services.sessions import extract_session_tokens, session_cookie_name, validate_session_token
from identity_sync.services.signing import sign_canonical
from identity_sync.storage import MemoryStorage
from identity_sync.storage.keys import SESSION_COOKIE_NAME_KEY
from identity_sync.utils.dedup_logger import DeduplicatedLogger

from conftest import TEST_SECRET


def _store_session(storage, token, user_id, expires_at):
    storage.set(token, json.dumps({"session": {"id": "s1", "userId": user_id, "expiresAt": expires_at}, "user": {"id": user_id}}))


def test_extract_all_matching_cookies_in_order():
    header = "other=1; identity.session_token=abc.sig; identity.session_token=def%2Esig2; broken; identity.session_token="
    assert extract_session_tokens(header, "identity.session_token") == ["abc.sig", "def.sig2"]
    assert extract_session_tokens(None, "identity.session_token") == []


def test_cookie_name_comes_from_storage():
    storage = MemoryStorage()
    assert session_cookie_name(storage) == "identity.session_token"
    storage.set(SESSION_COOKIE_NAME_KEY, "custom.session")
    assert session_cookie_name(storage) == "custom.session"


def test_validate_session_token():
    storage = MemoryStorage()
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    _store_session(storage, "live", "u1", (now + timedelta(hours=1)).isoformat().replace("+00:00", "Z"))
    _store_session(storage, "expired", "u2", (now - timedelta(seconds=1)).isoformat())
    storage.set("garbage", "{not json")

    assert validate_session_token("live.signature", storage, now=now) == "u1"
    assert validate_session_token("expired.signature", storage, now=now) is None
    assert validate_session_token("garbage", storage, now=now) is None
    assert validate_session_token("unknown", storage, now=now) is None
    assert validate_session_token("", storage, now=now) is None


def test_record_store_authenticate_uses_first_valid_session(record_store):
    record_store.create_record("u1", {"name": "Ada"}, sign_canonical(record_body(RecordOp.CREATE, "u1"), TEST_SECRET))
    storage = record_store._storage
    future = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
    _store_session(storage, "stale", "ghost", future)
    _store_session(storage, "good", "u1", future)

    record = record_store.authenticate("identity.session_token=stale.x; identity.session_token=good.y")
    assert record is not None and record.subject_id == "u1"
    assert record_store.authenticate("identity.session_token=nope.z") is None
    assert record_store.authenticate(None) is None


def test_dedup_logger_suppresses_repeats():
    storage = MemoryStorage()
    dedup = DeduplicatedLogger(storage)
    assert dedup.log("status", "Ready") is True
    assert dedup.log("status", "Ready") is False
    assert dedup.log("status", "Syncing", page=1) is True
    assert dedup.log("status", "Syncing", page=1) is False
    dedup.clear("status")
    assert dedup.log("status", "Syncing", page=1) is True


def test_dedup_logger_shared_through_storage_and_disable_switch():
    storage = MemoryStorage()
    assert DeduplicatedLogger(storage).log("boot", "Started") is True
    assert DeduplicatedLogger(storage).log("boot", "Started") is False
    assert DeduplicatedLogger(storage, enabled=False).log("boot", "Changed") is False

"""End-to-end: SQL identity directory -> reconcile queue -> signed writer -> SQL record store."""
from identity_sync.models.db.enums import TaskKind, TaskSource
from identity_sync.services import hooks
from identity_sync.services.sources import MAGIC_LINK_PROVIDER


def _drain(queue, limit=100):
    for _ in range(limit):
        if not queue.tick():
            break


def test_user_lifecycle_is_mirrored(identity_directory, record_store, sql_queue):
    user = identity_directory.create_user({"id": "ba-1", "email": "ada@example.com", "name": "Ada", "locale": "en"})
    identity_directory.add_account("acc-1", "ba-1", "credential")
    hooks.user_created(sql_queue, user)
    _drain(sql_queue)

    record = record_store.find_by_subject_id("ba-1")
    assert record.name == "Ada"
    assert record.email == "ada@example.com"
    assert record.extra == {"locale": "en"}
    assert [a.account_id for a in record_store.list_accounts("ba-1")] == ["acc-1"]

    updated = identity_directory.update_user("ba-1", name="Ada L.")
    hooks.user_updated(sql_queue, updated)
    _drain(sql_queue)
    assert record_store.find_by_subject_id("ba-1").name == "Ada L."

    identity_directory.delete_user("ba-1")
    hooks.user_deleted(sql_queue, "ba-1")
    _drain(sql_queue)
    assert record_store.find_by_subject_id("ba-1") is None
    assert record_store.list_accounts("ba-1") == []


def test_verified_user_without_credential_gets_magic_link_account(identity_directory, record_store, sql_queue):
    user = identity_directory.create_user({"id": "ml-1", "email": "m@example.com", "emailVerified": True})
    hooks.user_created(sql_queue, user)
    _drain(sql_queue)
    accounts = record_store.list_accounts("ml-1")
    assert [(a.account_id, a.provider_id) for a in accounts] == [("magic-link:ml-1", MAGIC_LINK_PROVIDER)]
    assert accounts[0].email_verified is True


def test_stale_accounts_are_removed_on_ensure(identity_directory, record_store, sql_queue):
    user = identity_directory.create_user({"id": "u-1", "email": "u@example.com"})
    identity_directory.add_account("acc-a", "u-1", "credential")
    identity_directory.add_account("acc-b", "u-1", "github")
    hooks.user_created(sql_queue, user)
    _drain(sql_queue)
    assert len(record_store.list_accounts("u-1")) == 2

    with identity_directory._session_factory() as session:
        from identity_sync.models.db import IdentityAccount
        session.delete(session.get(IdentityAccount, "acc-b"))
        session.commit()
    hooks.user_updated(sql_queue, user)
    _drain(sql_queue)
    assert [a.account_id for a in record_store.list_accounts("u-1")] == ["acc-a"]


def test_full_reconcile_repairs_drift_and_prunes_orphans(identity_directory, record_store, sql_queue):
    for i in range(5):
        identity_directory.create_user({"id": f"user-{i}", "email": f"user{i}@example.com", "name": f"User {i}"})
    # Drift: a record whose identity user is gone, and a record not managed by sync
    from identity_sync.models.db.enums import RecordOp
    from identity_sync.services.record_store import record_body
    from identity_sync.services.signing import sign_canonical
    from conftest import TEST_SECRET
    record_store.create_record("deleted-user", {"name": "Ghost"}, sign_canonical(record_body(RecordOp.CREATE, "deleted-user"), TEST_SECRET))
    record_store.create_unlinked_record(email="local@example.com", name="Local")

    summary = sql_queue.seed_full_reconcile()
    assert summary.page_mode == "cursor"
    assert summary.ensured == 5
    assert summary.orphans == 1
    assert sql_queue.get(TaskKind.DELETE, "deleted-user") is not None

    _drain(sql_queue)
    page = record_store.list_records_page(50, 1)
    subject_ids = sorted(r.subject_id for r in page.records if r.subject_id)
    assert subject_ids == [f"user-{i}" for i in range(5)]
    assert any(r.subject_id is None for r in page.records)
    assert sql_queue.status()["failed"] == 0


def test_delete_of_absent_subject_is_success(sql_queue):
    hooks.user_deleted(sql_queue, "never-existed")
    _drain(sql_queue)
    status = sql_queue.status()
    assert status["processed"] == 1
    assert status["failed"] == 0


def test_user_deleted_after_seed_is_not_recreated(identity_directory, record_store, sql_queue):
    identity_directory.create_user({"id": "u1", "email": "u1@example.com", "name": "Doomed"})
    identity_directory.create_user({"id": "u2", "email": "u2@example.com", "name": "Kept"})
    sql_queue.seed_full_reconcile()
    assert sql_queue.get(TaskKind.ENSURE, "u1") is not None

    identity_directory.delete_user("u1")
    hooks.user_deleted(sql_queue, "u1")
    _drain(sql_queue)

    assert identity_directory.get_user("u1") is None
    assert record_store.find_by_subject_id("u1") is None
    assert record_store.find_by_subject_id("u2").name == "Kept"
    assert sql_queue.status()["failed"] == 0


def test_stale_scan_snapshot_does_not_recreate_deleted_user(identity_directory, record_store, sql_queue):
    user = identity_directory.create_user({"id": "u1", "email": "u1@example.com"})
    hooks.user_created(sql_queue, user)
    _drain(sql_queue)

    identity_directory.delete_user("u1")
    hooks.user_deleted(sql_queue, "u1")
    _drain(sql_queue)
    # A scan that read u1 before the deletion enqueues it late
    sql_queue.enqueue_ensure(user, source=TaskSource.FULL_RECONCILE, reconcile_run_id="reconcile-1-abcdefghi")
    _drain(sql_queue)

    assert record_store.find_by_subject_id("u1") is None

import time

from identity_sync.jobs.queue import ReconcileQueue
from identity_sync.jobs.worker import SyncScheduler

from conftest import FakeIdentityDirectory, FakeRecordWriter, make_users


def _wait_for(predicate, timeout=3.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_scheduler_seeds_on_boot_and_drains_queue():
    writer = FakeRecordWriter()
    queue = ReconcileQueue(FakeIdentityDirectory(make_users(5)), writer, page_size=2)
    scheduler = SyncScheduler(queue, tick_seconds=0.01, reconcile_every_seconds=3600, run_on_boot=True, boot_delay_seconds=0.01)
    scheduler.start()
    try:
        assert _wait_for(lambda: len(writer.upserts) == 5)
        assert _wait_for(lambda: len(queue) == 0)
    finally:
        scheduler.stop(timeout=1.0)
    assert not scheduler.running


def test_scheduler_survives_failing_reconcile():
    class BrokenDirectory(FakeIdentityDirectory):
        def list_users_page(self, limit, offset):
            raise ConnectionError("down")

    queue = ReconcileQueue(BrokenDirectory(), FakeRecordWriter())
    scheduler = SyncScheduler(queue, tick_seconds=0.01, reconcile_every_seconds=0.02, run_on_boot=False)
    scheduler.start()
    try:
        assert _wait_for(lambda: queue.status()["last_seed_at"] is not None)
        time.sleep(0.05)
        assert scheduler.running
    finally:
        scheduler.stop(timeout=1.0)


def test_scheduler_without_boot_run_leaves_queue_alone():
    writer = FakeRecordWriter()
    queue = ReconcileQueue(FakeIdentityDirectory(make_users(2)), writer)
    scheduler = SyncScheduler(queue, tick_seconds=0.01, reconcile_every_seconds=3600, run_on_boot=False)
    scheduler.start()
    time.sleep(0.05)
    scheduler.stop(timeout=1.0)
    assert writer.upserts == []

import threading

from fastapi.testclient import TestClient

from identity_sync import config, main
from identity_sync.eventbus import InMemoryEventBus
from identity_sync.jobs.queue import ReconcileQueue
from identity_sync.jobs.worker import SyncScheduler
from identity_sync.models.db.enums import BootstrapState
from identity_sync.services.bootstrap import BootstrapCoordinator
from identity_sync.storage import MemoryStorage
from identity_sync.storage.keys import timestamp_key

from conftest import FakeIdentityDirectory, FakeRecordWriter, make_users


class SlowDirectory(FakeIdentityDirectory):
    """Blocks every listing call until ``release`` is set."""

    def __init__(self, users):
        super().__init__(users)
        self.entered = threading.Event()
        self.release = threading.Event()

    def list_users_page(self, limit, offset):
        self.entered.set()
        self.release.wait(5)
        return super().list_users_page(limit, offset)


def _runtime(directory):
    storage = MemoryStorage()
    # Peer ready and no sync of our own yet: the coordinator reconciles on boot
    storage.set(timestamp_key("records"), "1000")
    bus = InMemoryEventBus()
    writer = FakeRecordWriter()
    queue = ReconcileQueue(directory, writer, page_size=2)
    scheduler = SyncScheduler(queue, tick_seconds=0.01, reconcile_every_seconds=3600, run_on_boot=False)
    coordinator = BootstrapCoordinator("identity", "records", storage, bus, queue.seed_full_reconcile)
    return main.SyncRuntime(storage, bus, None, None, queue, scheduler, coordinator), writer


def test_startup_completes_while_boot_reconcile_is_running(monkeypatch):
    directory = SlowDirectory(make_users(3))
    runtime, writer = _runtime(directory)
    monkeypatch.setattr(main, "build_runtime", lambda: runtime)
    monkeypatch.setitem(config.COORDINATION_SETTINGS, "host_record_store", False)

    try:
        with TestClient(main.app) as client:
            assert directory.entered.wait(2)
            assert runtime.coordinator.state is BootstrapState.SYNCING
            assert client.get("/health").status_code == 200

            directory.release.set()
            runtime.bootstrap_thread.join(timeout=2)
            assert runtime.coordinator.state is BootstrapState.SYNCED
            assert runtime.storage.get(timestamp_key("identity")) is not None
    finally:
        directory.release.set()
    assert runtime.bootstrap_thread.name == "sync-bootstrap"


def test_bootstrap_thread_announces_peer_when_hosting_record_store(monkeypatch):
    runtime, _ = _runtime(FakeIdentityDirectory(make_users(1)))
    monkeypatch.setitem(config.COORDINATION_SETTINGS, "peer_name", "records")
    seen = []
    runtime.event_bus.subscribe("records", seen.append)

    runtime.start_bootstrap(announce_peer=True).join(timeout=2)

    assert len(seen) == 1
    assert runtime.storage.get(timestamp_key("records")) == str(seen[0])
    runtime.close()

import threading
from datetime import datetime, timedelta, timezone

import pytest

from app.models.schemas import WatchChannel
from app.stores.watch_channels import MemoryWatchChannelStore
from app.utils.config import ConfigurationError
from domains.document_pipeline.channels import CancelScope, WaitGroup
from domains.storage_watch.channels import ChannelState, WatchChannelManager
from tests.fakes import wait_until

WEBHOOK = "https://scriptoria.test/notifications"
START = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now


class FakeSubscriber:
    def __init__(self):
        self.attempted = []
        self.watched = []
        self.stopped = []
        self.fail_for = set()
        self.stop_error = None
        self._lock = threading.Lock()

    def watch(self, folder_id, channel_id, address, expiration):
        self.attempted.append(channel_id)
        if folder_id in self.fail_for:
            raise RuntimeError(f"watch refused for {folder_id}")
        with self._lock:
            self.watched.append((folder_id, channel_id, address, expiration))
        return {"id": channel_id, "resourceId": f"resource-{folder_id}"}

    def stop_channel(self, channel_id, resource_id):
        if self.stop_error is not None:
            raise self.stop_error
        self.stopped.append((channel_id, resource_id))


class FailingStore(MemoryWatchChannelStore):
    def upsert_watch_channel(self, channel):
        raise RuntimeError("database unavailable")


class ObservingStore(MemoryWatchChannelStore):
    """Records whether the manager already accepts a channel while it is being stored."""

    def __init__(self):
        super().__init__()
        self.manager = None
        self.seen_active = []

    def upsert_watch_channel(self, channel):
        self.seen_active.append(self.manager.is_active(channel.channel_id))
        return super().upsert_watch_channel(channel)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def subscriber():
    return FakeSubscriber()


@pytest.fixture
def make_manager(channel_store, subscriber, clock):
    def make(folders=("folder-a",), store=None, webhook_url=WEBHOOK):
        return WatchChannelManager(folders, webhook_url, store or channel_store, subscriber, clock=clock)

    return make


def test_refresh_creates_channels_for_absent_folders(make_manager, channel_store, subscriber):
    manager = make_manager(("folder-a", "folder-b"))

    assert manager.folder_state("folder-a") is ChannelState.ABSENT
    assert manager.refresh() == ["folder-a", "folder-b"]

    for folder_id in ("folder-a", "folder-b"):
        stored = channel_store.get_watch_channel(folder_id)
        assert stored.webhook_url == WEBHOOK
        assert stored.resource_id == f"resource-{folder_id}"
        assert stored.expires_at == START + timedelta(hours=24)
        assert manager.is_active(stored.channel_id)
        assert manager.folder_state(folder_id) is ChannelState.ACTIVE

    assert len(manager.active_channel_ids()) == 2


def test_active_channels_are_kept(make_manager, subscriber):
    manager = make_manager()
    manager.refresh()

    assert manager.refresh() == []
    assert len(subscriber.watched) == 1


def test_channel_near_expiry_is_renewed(make_manager, subscriber, clock):
    manager = make_manager()
    manager.refresh()
    old_id = subscriber.watched[0][1]

    clock.now = START + timedelta(hours=24) - timedelta(seconds=30)
    assert manager.folder_state("folder-a") is ChannelState.STALE
    assert manager.refresh() == ["folder-a"]

    new_id = subscriber.watched[1][1]
    assert new_id != old_id
    assert manager.is_active(new_id)
    assert not manager.is_active(old_id)


def test_persisted_channel_is_reused_after_restart(make_manager, channel_store, subscriber):
    channel_store.upsert_watch_channel(
        WatchChannel(
            channel_id="persisted",
            folder_id="folder-a",
            resource_id="r1",
            expires_at=START + timedelta(hours=12),
            webhook_url=WEBHOOK,
        )
    )
    manager = make_manager()

    assert manager.refresh() == []
    assert subscriber.watched == []
    assert manager.is_active("persisted")


def test_channel_for_old_webhook_url_is_stale(make_manager, channel_store, subscriber):
    channel_store.upsert_watch_channel(
        WatchChannel(
            channel_id="old-url",
            folder_id="folder-a",
            expires_at=START + timedelta(hours=12),
            webhook_url="https://old.test/notifications",
        )
    )
    manager = make_manager()

    assert manager.refresh() == ["folder-a"]
    assert not manager.is_active("old-url")
    assert channel_store.get_watch_channel("folder-a").webhook_url == WEBHOOK


def test_channel_is_dropped_when_persist_fails(make_manager, subscriber):
    manager = make_manager(store=FailingStore())

    assert manager.refresh() == []
    assert len(subscriber.watched) == 1
    assert not manager.is_active(subscriber.watched[0][1])
    assert manager.folder_state("folder-a") is ChannelState.ABSENT


def test_channel_is_accepted_while_it_is_being_stored(make_manager):
    store = ObservingStore()
    manager = make_manager(store=store)
    store.manager = manager

    assert manager.refresh() == ["folder-a"]
    assert store.seen_active == [True]


def test_failed_watch_leaves_no_accepted_channel(make_manager, subscriber):
    subscriber.fail_for.add("folder-a")
    manager = make_manager()

    assert manager.refresh() == []
    assert len(subscriber.attempted) == 1
    assert not manager.is_active(subscriber.attempted[0])


def test_failure_for_one_folder_does_not_block_others(make_manager, subscriber):
    subscriber.fail_for.add("folder-a")
    manager = make_manager(("folder-a", "folder-b"))

    assert manager.refresh() == ["folder-b"]
    assert manager.folder_state("folder-a") is ChannelState.ABSENT

    subscriber.fail_for.clear()
    assert manager.refresh() == ["folder-a"]


def test_stop_orphan_errors_are_swallowed(make_manager, subscriber):
    manager = make_manager()
    subscriber.stop_error = RuntimeError("channel already gone")

    manager.stop_orphan("unknown", "resource")

    subscriber.stop_error = None
    manager.stop_orphan("unknown", "resource")
    assert subscriber.stopped == [("unknown", "resource")]


def test_webhook_url_is_required(channel_store, subscriber):
    with pytest.raises(ConfigurationError):
        WatchChannelManager(["folder-a"], "", channel_store, subscriber)


def test_renewal_loop_refreshes_until_cancelled(make_manager, subscriber, clock):
    manager = make_manager()
    manager.refresh()
    scope = CancelScope()
    wait_group = WaitGroup()

    clock.now = START + timedelta(days=2)
    manager.start_renewal(scope, wait_group, interval=0.05)

    assert wait_until(lambda: len(subscriber.watched) >= 2)
    scope.cancel()
    assert wait_group.wait(2.0)

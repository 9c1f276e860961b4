import asyncio
from datetime import datetime, timezone

import pytest

from marksync.client.errors import (
    StoreReadError,
    StoreWriteError,
    UnauthenticatedError,
    ValidationError,
)
from marksync.client.memory import (
    MemoryChangeStream,
    MemoryRecordStore,
    MemorySessionProvider,
)
from marksync.client.records import BookmarkRecord, SessionIdentity
from marksync.client.synchronizer import SyncState, ViewStateSynchronizer


OWNER = SessionIdentity(id="u1", email="ada@example.com")
CREATED = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _record(record_id: str, owner_id: str = "u1") -> BookmarkRecord:
    return BookmarkRecord(
        id=record_id,
        title=f"Bookmark {record_id}",
        target=f"https://example.com/{record_id}",
        owner_id=owner_id,
        created_at=CREATED,
    )


class RecordingStore(MemoryRecordStore):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []
        self.fail_reads = False
        self.fail_creates = False
        self.fail_deletes = False

    async def list_records(self, owner_id):
        self.calls.append(("list", owner_id))
        if self.fail_reads:
            raise StoreReadError("backend offline")
        return await super().list_records(owner_id)

    async def create_record(self, title, target, owner_id):
        self.calls.append(("create", title, target, owner_id))
        if self.fail_creates:
            raise StoreWriteError("violates not-null constraint")
        return await super().create_record(title, target, owner_id)

    async def delete_record(self, record_id):
        self.calls.append(("delete", record_id))
        if self.fail_deletes:
            raise StoreWriteError("permission denied")
        await super().delete_record(record_id)


class HeldStore:
    """Store whose reads stay pending until the test resolves them."""

    def __init__(self):
        self.reads: list[asyncio.Future] = []

    async def list_records(self, owner_id):
        future = asyncio.get_running_loop().create_future()
        self.reads.append(future)
        return await future

    async def create_record(self, title, target, owner_id):
        raise AssertionError("not used")

    async def delete_record(self, record_id):
        raise AssertionError("not used")


def _synchronizer(store, identity=None, changes=None, **kwargs):
    session = MemorySessionProvider(identity)
    changes = changes or MemoryChangeStream()
    sync = ViewStateSynchronizer(store, session, changes, **kwargs)
    return sync, session, changes


def _ids(sync):
    return [record.id for record in sync.records]


async def _signed_in(store, **kwargs):
    sync, session, changes = _synchronizer(store, **kwargs)
    await sync.on_identity_changed(OWNER)
    return sync


@pytest.mark.asyncio
async def test_reconcile_without_identity_leaves_records_untouched():
    store = RecordingStore()
    sync, _, _ = _synchronizer(store)

    await sync.reconcile()

    assert sync.records == ()
    assert sync.state == SyncState.UNAUTHENTICATED
    assert store.calls == []


@pytest.mark.asyncio
async def test_reconcile_with_empty_store_yields_empty_list():
    store = RecordingStore()
    sync = await _signed_in(store)

    await sync.reconcile()

    assert sync.records == ()
    assert sync.state == SyncState.SYNCED
    assert store.calls == [("list", "u1"), ("list", "u1")]


@pytest.mark.asyncio
async def test_consecutive_reconciles_produce_identical_records():
    store = RecordingStore()
    for record_id in ["1", "2", "10"]:
        store.seed(_record(record_id))
    store.seed(_record("5", owner_id="someone-else"))
    sync = await _signed_in(store)

    await sync.reconcile()
    first = sync.records
    await sync.reconcile()

    assert sync.records == first
    assert _ids(sync) == ["10", "2", "1"]


@pytest.mark.asyncio
async def test_failed_reconcile_keeps_previous_records_and_reports_error():
    store = RecordingStore()
    store.seed(_record("1"))
    sync = await _signed_in(store)
    store.seed(_record("2"))
    store.fail_reads = True

    with pytest.raises(StoreReadError):
        await sync.reconcile()

    assert _ids(sync) == ["1"]
    assert sync.state == SyncState.ERROR
    assert isinstance(sync.last_error, StoreReadError)
    assert sync.last_error.user_message == "Could not load bookmarks: backend offline"

    store.fail_reads = False
    await sync.reconcile()
    assert _ids(sync) == ["2", "1"]
    assert sync.state == SyncState.SYNCED
    assert sync.last_error is None


@pytest.mark.asyncio
async def test_add_bookmark_shows_store_assigned_record():
    store = RecordingStore(first_id=7)
    sync = await _signed_in(store)
    snapshots = []
    sync.subscribe(lambda s: snapshots.append(_ids(s)))

    created = await sync.add_bookmark("Docs", "https://x.test")

    assert sync.records == (created,)
    assert created.id == "7"
    assert created.owner_id == "u1"
    assert all(ids in ([], ["7"]) for ids in snapshots)
    assert store.calls[-2:] == [
        ("create", "Docs", "https://x.test", "u1"),
        ("list", "u1"),
    ]


@pytest.mark.asyncio
async def test_add_bookmark_without_identity_is_rejected_before_store_call():
    store = RecordingStore()
    sync, _, _ = _synchronizer(store)

    with pytest.raises(UnauthenticatedError):
        await sync.add_bookmark("Docs", "https://x.test")

    assert store.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "title,target",
    [("", "http://x"), ("t", ""), ("   ", "http://x"), (None, "http://x")],
)
async def test_add_bookmark_requires_title_and_target(title, target):
    store = RecordingStore()
    sync = await _signed_in(store)
    store.calls.clear()

    with pytest.raises(ValidationError) as excinfo:
        await sync.add_bookmark(title, target)

    assert store.calls == []
    assert excinfo.value.user_message.startswith("Fill all fields")


@pytest.mark.asyncio
async def test_add_bookmark_store_rejection_leaves_records_unchanged():
    store = RecordingStore()
    store.seed(_record("1"))
    sync = await _signed_in(store)
    store.fail_creates = True

    with pytest.raises(StoreWriteError):
        await sync.add_bookmark("Docs", "https://x.test")

    assert _ids(sync) == ["1"]
    assert store.calls[-1][0] == "create"


@pytest.mark.asyncio
async def test_failed_delete_is_optimistic_then_rolled_back():
    store = RecordingStore()
    for record_id in ["1", "2", "3"]:
        store.seed(_record(record_id))
    sync = await _signed_in(store)
    original = sync.records[1]
    store.fail_deletes = True
    snapshots = []
    sync.subscribe(lambda s: snapshots.append(_ids(s)))

    with pytest.raises(StoreWriteError):
        await sync.delete_bookmark("2")

    assert snapshots[0] == ["3", "1"]
    assert snapshots[-1] == ["3", "2", "1"]
    assert sync.records[1] == original
    assert sync.state == SyncState.SYNCED


@pytest.mark.asyncio
async def test_successful_delete_does_not_reload():
    store = RecordingStore()
    for record_id in ["1", "2", "3"]:
        store.seed(_record(record_id))
    sync = await _signed_in(store)
    store.calls.clear()

    await sync.delete_bookmark("2")

    assert _ids(sync) == ["3", "1"]
    assert store.calls == [("delete", "2")]


@pytest.mark.asyncio
async def test_delete_of_unknown_id_is_harmless():
    store = RecordingStore()
    store.seed(_record("1"))
    sync = await _signed_in(store)

    await sync.delete_bookmark("404")

    assert _ids(sync) == ["1"]


@pytest.mark.asyncio
async def test_delete_without_identity_touches_nothing():
    store = RecordingStore()
    store.seed(_record("1"))
    sync = await _signed_in(store)
    await sync.on_identity_changed(None)
    store.calls.clear()

    with pytest.raises(UnauthenticatedError):
        await sync.delete_bookmark("1")

    assert _ids(sync) == ["1"]
    assert store.calls == []


@pytest.mark.asyncio
async def test_failed_rollback_still_surfaces_the_write_error():
    store = RecordingStore()
    for record_id in ["1", "2", "3"]:
        store.seed(_record(record_id))
    sync = await _signed_in(store)
    store.fail_deletes = True
    store.fail_reads = True

    with pytest.raises(StoreWriteError):
        await sync.delete_bookmark("2")

    assert _ids(sync) == ["3", "1"]
    assert sync.state == SyncState.ERROR

    store.fail_reads = False
    await sync.reconcile()
    assert _ids(sync) == ["3", "2", "1"]


@pytest.mark.asyncio
async def test_sign_out_keeps_records_by_default():
    store = RecordingStore()
    store.seed(_record("1"))
    sync = await _signed_in(store)

    await sync.on_identity_changed(None)

    assert sync.current_identity is None
    assert sync.state == SyncState.UNAUTHENTICATED
    assert _ids(sync) == ["1"]


@pytest.mark.asyncio
async def test_sign_out_clears_records_when_configured():
    store = RecordingStore()
    store.seed(_record("1"))
    sync = await _signed_in(store, clear_on_sign_out=True)

    await sync.on_identity_changed(None)

    assert sync.records == ()
    assert sync.state == SyncState.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_start_follows_session_and_change_stream():
    changes = MemoryChangeStream()
    store = RecordingStore(changes)
    store.seed(_record("1"))
    sync, session, _ = _synchronizer(store, changes=changes)
    session.register("ada", "pw", OWNER)

    await sync.start()
    assert sync.state == SyncState.UNAUTHENTICATED
    assert store.calls == []

    await session.sign_in("password", username="ada", password="pw")
    assert sync.current_identity == OWNER
    assert _ids(sync) == ["1"]

    # Another session writes; only the payload-less notification reaches us.
    await store.create_record("Elsewhere", "https://elsewhere.test", "u1")
    await changes.drain()
    assert _ids(sync) == ["2", "1"]

    await session.sign_out()
    assert sync.state == SyncState.UNAUTHENTICATED
    sync.close()


@pytest.mark.asyncio
async def test_start_with_failing_initial_load_reports_error_state():
    store = RecordingStore()
    store.fail_reads = True
    sync, _, _ = _synchronizer(store, identity=OWNER)

    await sync.start()

    assert sync.state == SyncState.ERROR
    assert sync.records == ()
    sync.close()


@pytest.mark.asyncio
async def test_change_notification_always_reloads():
    store = RecordingStore()
    sync = await _signed_in(store)
    store.seed(_record("4"))

    await sync.on_change_notification()

    assert _ids(sync) == ["4"]


@pytest.mark.asyncio
async def test_overlapping_reconciles_keep_latest_dispatch():
    store = HeldStore()
    sync, _, _ = _synchronizer(store)
    first_login = asyncio.create_task(sync.on_identity_changed(OWNER))
    await asyncio.sleep(0)
    second = asyncio.create_task(sync.reconcile())
    await asyncio.sleep(0)
    assert len(store.reads) == 2
    assert sync.state == SyncState.RECONCILING

    store.reads[1].set_result([_record("2")])
    await second
    store.reads[0].set_result([_record("1")])
    await first_login

    assert _ids(sync) == ["2"]
    assert sync.state == SyncState.SYNCED


@pytest.mark.asyncio
async def test_overlapping_reconciles_last_arrival_wins_without_discard():
    store = HeldStore()
    sync, _, _ = _synchronizer(store, discard_stale=False)
    first_login = asyncio.create_task(sync.on_identity_changed(OWNER))
    await asyncio.sleep(0)
    second = asyncio.create_task(sync.reconcile())
    await asyncio.sleep(0)

    store.reads[1].set_result([_record("2")])
    await second
    assert _ids(sync) == ["2"]
    store.reads[0].set_result([_record("1")])
    await first_login

    assert _ids(sync) == ["1"]


@pytest.mark.asyncio
async def test_stale_failure_does_not_override_newer_result():
    store = HeldStore()
    sync, _, _ = _synchronizer(store)
    first_login = asyncio.create_task(sync.on_identity_changed(OWNER))
    await asyncio.sleep(0)
    second = asyncio.create_task(sync.reconcile())
    await asyncio.sleep(0)

    store.reads[1].set_result([_record("2")])
    await second
    store.reads[0].set_exception(StoreReadError("timeout"))
    with pytest.raises(StoreReadError):
        await first_login

    assert _ids(sync) == ["2"]
    assert sync.state == SyncState.SYNCED


@pytest.mark.asyncio
async def test_read_for_signed_out_identity_is_dropped():
    store = HeldStore()
    sync, _, _ = _synchronizer(store)
    login = asyncio.create_task(sync.on_identity_changed(OWNER))
    await asyncio.sleep(0)

    await sync.on_identity_changed(None)
    store.reads[0].set_result([_record("1")])
    await login

    assert sync.records == ()
    assert sync.state == SyncState.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_close_releases_subscriptions_once_and_ignores_late_events():
    changes = MemoryChangeStream()
    store = RecordingStore(changes)
    sync, session, _ = _synchronizer(store, identity=OWNER, changes=changes)
    session.register("grace", "pw", SessionIdentity(id="u2"))
    await sync.start()
    assert changes.subscriber_count("bookmarks") == 1

    sync.close()
    sync.close()

    assert sync.closed
    assert changes.subscriber_count("bookmarks") == 0
    store.calls.clear()
    await changes.publish("bookmarks")
    await session.sign_in("password", username="grace", password="pw")
    assert store.calls == []
    assert sync.current_identity == OWNER


@pytest.mark.asyncio
async def test_read_completing_after_close_is_ignored():
    store = HeldStore()
    sync, _, _ = _synchronizer(store)
    login = asyncio.create_task(sync.on_identity_changed(OWNER))
    await asyncio.sleep(0)
    notified = []
    sync.subscribe(lambda s: notified.append(s.state))

    sync.close()
    store.reads[0].set_result([_record("1")])
    await login

    assert sync.records == ()
    assert notified == []


@pytest.mark.asyncio
async def test_failing_state_listener_does_not_block_others():
    store = RecordingStore()
    sync, _, _ = _synchronizer(store)
    seen = []

    def broken(_sync):
        raise RuntimeError("render failed")

    sync.subscribe(broken)
    handle = sync.subscribe(lambda s: seen.append(s.state))

    await sync.on_identity_changed(OWNER)
    assert seen == [SyncState.RECONCILING, SyncState.SYNCED]

    handle.unsubscribe()
    await sync.reconcile()
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_start_after_close_does_not_subscribe():
    changes = MemoryChangeStream()
    store = RecordingStore(changes)
    sync, _, _ = _synchronizer(store, identity=OWNER, changes=changes)

    sync.close()
    await sync.start()
    sync.close()

    assert changes.subscriber_count("bookmarks") == 0
    assert store.calls == []


class SlowLookupSession(MemorySessionProvider):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.lookup = None

    async def get_current_identity(self):
        self.lookup = asyncio.get_running_loop().create_future()
        return await self.lookup


@pytest.mark.asyncio
async def test_identity_event_during_start_wins_over_initial_lookup():
    store = RecordingStore()
    store.seed(_record("1"))
    session = SlowLookupSession()
    session.register("ada", "pw", OWNER)
    sync = ViewStateSynchronizer(store, session, MemoryChangeStream())

    starting = asyncio.create_task(sync.start())
    await asyncio.sleep(0)
    assert session.lookup is not None

    await session.sign_in("password", username="ada", password="pw")
    session.lookup.set_result(None)
    await starting

    assert sync.current_identity == OWNER
    assert _ids(sync) == ["1"]
    assert sync.state == SyncState.SYNCED
    sync.close()

"""Local bookmark list kept in step with the record store.

The synchronizer owns the list the presentation layer renders. It re-reads the
whole list from the store on four triggers: the initial identity, identity
changes, change notifications and its own mutations. Deletes are applied
locally before the store confirms them and are rolled back by a re-read when
the store rejects them; adds are never shown until the store has assigned the
record's id.

All methods run on one event loop; the only suspension points are the awaited
store and session calls.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable

from marksync.client.capabilities import ChangeStream, RecordStore, SessionProvider
from marksync.client.errors import (
    StoreReadError,
    StoreWriteError,
    UnauthenticatedError,
    ValidationError,
)
from marksync.client.events import Listeners, Subscription
from marksync.client.records import BookmarkRecord, SessionIdentity

logger = logging.getLogger(__name__)


class SyncState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    SYNCED = "synced"
    RECONCILING = "reconciling"
    ERROR = "error"


class ViewStateSynchronizer:
    def __init__(
        self,
        store: RecordStore,
        session: SessionProvider,
        changes: ChangeStream,
        clear_on_sign_out: bool = False,
        discard_stale: bool = True,
        collection: str = "bookmarks",
    ):
        self.store = store
        self.session = session
        self.changes = changes
        self.clear_on_sign_out = clear_on_sign_out
        self.discard_stale = discard_stale
        self.collection = collection

        self._identity: SessionIdentity | None = None
        self._records: tuple[BookmarkRecord, ...] = ()
        self._state = SyncState.UNAUTHENTICATED
        self.last_error: Exception | None = None

        self._dispatched = 0
        self._latest_seen = 0
        self._in_flight: set[int] = set()

        self._listeners = Listeners("view-state")
        self._subscriptions: list[Subscription] = []
        self._started = False
        self._closed = False
        self._identity_events = 0

    @property
    def records(self) -> tuple[BookmarkRecord, ...]:
        return self._records

    @property
    def current_identity(self) -> SessionIdentity | None:
        return self._identity

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: Callable[["ViewStateSynchronizer"], None]) -> Subscription:
        """Register a presentation-layer callback fired after every state change."""
        return self._listeners.add(listener)

    def _changed(self) -> None:
        if not self._closed:
            self._listeners.emit_sync(self)

    def _set_records(self, records) -> None:
        self._records = tuple(records)
        self._changed()

    def _set_state(self, state: SyncState, error: Exception | None = None) -> None:
        self._state = state
        self.last_error = error
        self._changed()

    async def start(self) -> None:
        if self._started or self._closed:
            return
        self._started = True
        self._subscriptions.append(
            self.session.on_identity_change(self._handle_identity_event)
        )
        self._subscriptions.append(
            self.changes.subscribe(self.collection, self._handle_change_event)
        )
        identity = await self.session.get_current_identity()
        if self._closed or self._identity_events:
            # A pushed identity change already superseded this lookup.
            return
        try:
            await self.on_identity_changed(identity)
        except StoreReadError as exc:
            logger.warning("Initial bookmark load failed: %s", exc)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.unsubscribe()
        logger.debug("Synchronizer closed; released %s subscription(s)", len(subscriptions))

    async def _handle_identity_event(self, identity: SessionIdentity | None) -> None:
        if self._closed:
            return
        self._identity_events += 1
        try:
            await self.on_identity_changed(identity)
        except StoreReadError as exc:
            logger.warning("Reload after identity change failed: %s", exc)

    async def _handle_change_event(self, *_payload) -> None:
        if self._closed:
            return
        logger.debug("Change notification received for %s", self.collection)
        try:
            await self.on_change_notification()
        except StoreReadError as exc:
            logger.warning("Reload after change notification failed: %s", exc)

    async def on_identity_changed(self, identity: SessionIdentity | None) -> None:
        self._identity = identity
        if identity is None:
            # Pending reads for the previous identity must not land.
            self._latest_seen = self._dispatched
            if self.clear_on_sign_out:
                self._records = ()
            self._set_state(SyncState.UNAUTHENTICATED)
            return
        await self.reconcile()

    async def on_change_notification(self) -> None:
        await self.reconcile()

    async def reconcile(self) -> None:
        identity = self._identity
        if identity is None or self._closed:
            return

        self._dispatched += 1
        seq = self._dispatched
        self._in_flight.add(seq)
        self._set_state(SyncState.RECONCILING)
        logger.debug("Reconcile #%s dispatched for %s", seq, identity.id)

        try:
            records = await self.store.list_records(identity.id)
        except StoreReadError as exc:
            self._in_flight.discard(seq)
            if self._accepts(seq, identity):
                logger.warning("Reconcile #%s failed: %s", seq, exc)
                self._set_state(SyncState.ERROR, exc)
            raise
        self._in_flight.discard(seq)

        if not self._accepts(seq, identity):
            logger.debug("Reconcile #%s discarded as stale", seq)
            return

        self._records = tuple(records)
        newer_pending = any(other > seq for other in self._in_flight)
        logger.debug("Reconcile #%s applied %s record(s)", seq, len(self._records))
        self._set_state(SyncState.RECONCILING if newer_pending else SyncState.SYNCED)

    def _accepts(self, seq: int, identity: SessionIdentity) -> bool:
        if self._closed or self._identity is None or self._identity.id != identity.id:
            return False
        if self.discard_stale and seq <= self._latest_seen:
            return False
        self._latest_seen = max(self._latest_seen, seq)
        return True

    async def add_bookmark(self, title: str, target: str) -> BookmarkRecord:
        title = (title or "").strip()
        target = (target or "").strip()
        if not title or not target:
            raise ValidationError("title and link are both required")
        identity = self._identity
        if identity is None:
            raise UnauthenticatedError("no signed-in user")

        try:
            record = await self.store.create_record(title, target, identity.id)
        except StoreWriteError as exc:
            logger.warning("Insert failed: %s", exc)
            raise
        logger.info("Bookmark %s added", record.id)
        await self.reconcile()
        return record

    async def delete_bookmark(self, record_id: str) -> None:
        if self._identity is None:
            raise UnauthenticatedError("no signed-in user")

        self._set_records(r for r in self._records if r.id != record_id)
        try:
            await self.store.delete_record(record_id)
        except StoreWriteError as exc:
            logger.warning("Delete of %s failed, restoring from store: %s", record_id, exc)
            try:
                await self.reconcile()
            except StoreReadError as read_exc:
                logger.warning("Rollback reload after failed delete failed: %s", read_exc)
            raise
        logger.info("Bookmark %s deleted", record_id)

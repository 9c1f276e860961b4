"""In-process capabilities.

Used when no hosted backend is configured and as fixtures in tests.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone

from marksync.client.errors import StoreWriteError, UnauthenticatedError
from marksync.client.events import Listeners, Subscription
from marksync.client.records import BookmarkRecord, SessionIdentity, order_records

logger = logging.getLogger(__name__)


class MemoryChangeStream:
    def __init__(self):
        self._listeners: dict[str, Listeners] = defaultdict(
            lambda: Listeners("change-stream")
        )
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, collection: str, callback) -> Subscription:
        subscription = self._listeners[collection].add(callback)
        subscription.name = f"change-stream:{collection}"
        logger.debug("Subscribed to changes on %s", collection)
        return subscription

    def subscriber_count(self, collection: str) -> int:
        return len(self._listeners[collection]) if collection in self._listeners else 0

    async def publish(self, collection: str) -> None:
        if collection in self._listeners:
            await self._listeners[collection].emit()

    def notify(self, collection: str) -> None:
        """Schedule a publish without waiting for subscribers to run."""
        task = asyncio.get_running_loop().create_task(self.publish(collection))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending))


class MemoryRecordStore:
    def __init__(
        self,
        changes: MemoryChangeStream | None = None,
        collection="bookmarks",
        first_id: int = 1,
    ):
        self._rows: dict[str, BookmarkRecord] = {}
        self._next_id = first_id
        self._changes = changes
        self._collection = collection

    def seed(self, record: BookmarkRecord) -> None:
        self._rows[record.id] = record
        if record.id.isdigit():
            self._next_id = max(self._next_id, int(record.id) + 1)

    async def list_records(self, owner_id: str) -> list[BookmarkRecord]:
        return order_records(
            record for record in self._rows.values() if record.owner_id == owner_id
        )

    async def create_record(
        self, title: str, target: str, owner_id: str
    ) -> BookmarkRecord:
        if not title or not target or not owner_id:
            raise StoreWriteError("title, url and owner are required")
        record = BookmarkRecord(
            id=str(self._next_id),
            title=title,
            target=target,
            owner_id=owner_id,
            created_at=datetime.now(timezone.utc),
        )
        self._next_id += 1
        self._rows[record.id] = record
        self._announce()
        return record

    async def delete_record(self, record_id: str) -> None:
        if self._rows.pop(record_id, None) is not None:
            self._announce()

    def _announce(self) -> None:
        if self._changes is not None:
            self._changes.notify(self._collection)


class MemorySessionProvider:
    def __init__(self, identity: SessionIdentity | None = None, accounts=None):
        self._identity = identity
        self._accounts = dict(accounts or {})
        self._listeners = Listeners("identity")

    def register(self, username: str, password: str, identity: SessionIdentity) -> None:
        self._accounts[username] = (password, identity)

    async def get_current_identity(self) -> SessionIdentity | None:
        return self._identity

    def on_identity_change(self, callback) -> Subscription:
        return self._listeners.add(callback)

    async def sign_in(self, provider: str = "password", **credentials) -> None:
        if provider != "password":
            raise UnauthenticatedError(f"sign-in provider {provider!r} is not supported")
        account = self._accounts.get(credentials.get("username"))
        if account is None or account[0] != credentials.get("password"):
            raise UnauthenticatedError("invalid credentials")
        self._identity = account[1]
        await self._listeners.emit(self._identity)

    async def sign_out(self) -> None:
        self._identity = None
        await self._listeners.emit(None)

"""Interfaces the synchronizer consumes.

Any object with these methods can be injected; the HTTP and in-memory
implementations live in ``marksync.client.http`` and
``marksync.client.memory``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol

from marksync.client.events import Subscription
from marksync.client.records import BookmarkRecord, SessionIdentity

IdentityCallback = Callable[[SessionIdentity | None], Awaitable[None] | None]
ChangeCallback = Callable[[], Awaitable[None] | None]


class RecordStore(Protocol):
    async def list_records(self, owner_id: str) -> Sequence[BookmarkRecord]:
        """Records visible to ``owner_id``, descending by id.

        Raises ``StoreReadError``.
        """

    async def create_record(
        self, title: str, target: str, owner_id: str
    ) -> BookmarkRecord:
        """Raises ``StoreWriteError``."""

    async def delete_record(self, record_id: str) -> None:
        """Raises ``StoreWriteError``. Unknown ids are not an error."""


class SessionProvider(Protocol):
    async def get_current_identity(self) -> SessionIdentity | None: ...

    def on_identity_change(self, callback: IdentityCallback) -> Subscription: ...

    async def sign_in(self, provider: str, **credentials) -> None: ...

    async def sign_out(self) -> None: ...


class ChangeStream(Protocol):
    def subscribe(self, collection: str, callback: ChangeCallback) -> Subscription: ...

"""Capabilities backed by the hosted MarkSync API."""

from __future__ import annotations

import asyncio
import inspect
import logging

import httpx

from marksync.client.errors import (
    StoreError,
    StoreReadError,
    StoreWriteError,
    UnauthenticatedError,
)
from marksync.client.events import Listeners, Subscription
from marksync.client.records import BookmarkRecord, SessionIdentity

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

CHANNEL_CONNECTING = "connecting"
CHANNEL_SUBSCRIBED = "subscribed"
CHANNEL_ERROR = "channel_error"
CHANNEL_CLOSED = "closed"


class ApiClient:
    """Thin wrapper holding the shared ``httpx.AsyncClient`` and bearer token."""

    def __init__(self, http: httpx.AsyncClient, token: str | None = None):
        self.http = http
        self.token = token or None

    def _headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def request(
        self, method: str, path: str, error_cls: type[StoreError], **kwargs
    ) -> dict:
        try:
            response = await self.http.request(
                method, f"{API_PREFIX}{path}", headers=self._headers(), **kwargs
            )
        except httpx.HTTPError as exc:
            raise error_cls(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            try:
                message = response.json().get("error") or response.text
            except ValueError:
                message = response.text
            raise error_cls(message, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            raise error_cls(f"{method} {path} returned invalid JSON") from exc


class HttpRecordStore:
    def __init__(self, api: ApiClient):
        self.api = api

    async def list_records(self, owner_id: str) -> list[BookmarkRecord]:
        payload = await self.api.request("GET", "/bookmarks", StoreReadError)
        records = [BookmarkRecord.from_payload(item) for item in payload["items"]]
        return [record for record in records if record.owner_id == owner_id]

    async def create_record(
        self, title: str, target: str, owner_id: str
    ) -> BookmarkRecord:
        payload = await self.api.request(
            "POST",
            "/bookmarks",
            StoreWriteError,
            json={"title": title, "url": target, "user_id": owner_id},
        )
        return BookmarkRecord.from_payload(payload)

    async def delete_record(self, record_id: str) -> None:
        payload = await self.api.request(
            "DELETE", f"/bookmarks/{record_id}", StoreWriteError
        )
        logger.debug("Delete of %s removed %s row(s)", record_id, len(payload["deleted"]))


class HttpSessionProvider:
    def __init__(self, api: ApiClient):
        self.api = api
        self._listeners = Listeners("identity")

    async def get_current_identity(self) -> SessionIdentity | None:
        if not self.api.token:
            return None
        try:
            payload = await self.api.request("GET", "/auth/session", StoreReadError)
        except StoreReadError as exc:
            if exc.status_code != 401:
                raise
            logger.warning("Stored session token was rejected; signing out locally")
            self.api.token = None
            return None
        return SessionIdentity.from_payload(payload["user"])

    def on_identity_change(self, callback) -> Subscription:
        return self._listeners.add(callback)

    async def sign_in(self, provider: str = "password", **credentials) -> None:
        if provider != "password":
            raise UnauthenticatedError(f"sign-in provider {provider!r} is not supported")
        try:
            payload = await self.api.request(
                "POST",
                "/auth/token",
                StoreWriteError,
                json={
                    "username": credentials.get("username"),
                    "password": credentials.get("password"),
                },
            )
        except StoreWriteError as exc:
            if exc.status_code == 401:
                raise UnauthenticatedError(str(exc)) from exc
            raise
        self.api.token = payload["token"]
        identity = SessionIdentity.from_payload(payload["user"])
        logger.info("Signed in as %s", identity.id)
        await self._listeners.emit(identity)

    async def sign_out(self) -> None:
        if self.api.token:
            try:
                await self.api.request("DELETE", "/auth/session", StoreWriteError)
            except StoreWriteError as exc:
                logger.warning("Token revocation failed during sign-out: %s", exc)
        self.api.token = None
        logger.info("Signed out")
        await self._listeners.emit(None)


class _PollingChannel:
    def __init__(self, api: ApiClient, collection: str, callback, poll_interval: float):
        self.api = api
        self.collection = collection
        self.callback = callback
        self.poll_interval = poll_interval
        self.status = CHANNEL_CONNECTING
        self.cursor: int | None = None
        self.task = asyncio.get_running_loop().create_task(
            self._run(), name=f"changes-{collection}"
        )

    def _set_status(self, status: str, detail=None) -> None:
        if status == self.status:
            return
        self.status = status
        if status == CHANNEL_ERROR:
            logger.warning("Change channel %s error: %s", self.collection, detail)
        else:
            logger.info("Change channel %s %s", self.collection, status)

    async def _poll_once(self) -> tuple[bool, bool]:
        """Returns ``(has_more, changed)``; raises ``StoreReadError``."""
        params = {} if self.cursor is None else {"since": self.cursor}
        payload = await self.api.request("GET", "/changes", StoreReadError, params=params)
        try:
            cursor = payload["cursor"]
            events = payload["events"]
            has_more = bool(payload.get("has_more"))
        except (KeyError, TypeError, AttributeError) as exc:
            raise StoreReadError(f"malformed change feed response: {exc!r}") from exc
        self._set_status(CHANNEL_SUBSCRIBED)
        baseline = self.cursor is None
        self.cursor = cursor
        return has_more, bool(events) and not baseline

    async def _notify(self) -> None:
        try:
            result = self.callback()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Change callback for %s failed", self.collection)

    async def _run(self) -> None:
        while True:
            try:
                has_more, changed = await self._poll_once()
            except StoreReadError as exc:
                self._set_status(CHANNEL_ERROR, exc)
                has_more, changed = False, False
            if changed:
                await self._notify()
            if not has_more:
                await asyncio.sleep(self.poll_interval)

    def close(self) -> None:
        self.task.cancel()
        self._set_status(CHANNEL_CLOSED)


class PollingChangeStream:
    """Change notifications derived from the hosted change-event cursor.

    The first poll only establishes the cursor; every later poll that returns
    events fires the callback once, with no payload.
    """

    collections = {"bookmarks"}

    def __init__(self, api: ApiClient, poll_interval: float = 2.0):
        self.api = api
        self.poll_interval = poll_interval
        self.channels: list[_PollingChannel] = []

    def subscribe(self, collection: str, callback) -> Subscription:
        if collection not in self.collections:
            raise ValueError(f"unknown collection {collection!r}")
        channel = _PollingChannel(self.api, collection, callback, self.poll_interval)
        self.channels.append(channel)

        def release():
            channel.close()
            self.channels.remove(channel)

        return Subscription(release, name=f"change-stream:{collection}")

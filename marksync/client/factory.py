"""Builds the capabilities the synchronizer is injected with.

With a configured backend URL the HTTP implementations are returned; without
one (tests, offline tooling, builds) the in-memory stand-ins are used instead
so callers never need a reachable backend to construct a synchronizer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from marksync.client.capabilities import ChangeStream, RecordStore, SessionProvider
from marksync.client.http import (
    ApiClient,
    HttpRecordStore,
    HttpSessionProvider,
    PollingChangeStream,
)
from marksync.client.memory import (
    MemoryChangeStream,
    MemoryRecordStore,
    MemorySessionProvider,
)
from marksync.client.synchronizer import ViewStateSynchronizer
from marksync.config import ClientConfig

logger = logging.getLogger(__name__)


@dataclass
class Capabilities:
    store: RecordStore
    session: SessionProvider
    changes: ChangeStream
    http: httpx.AsyncClient | None = field(default=None, repr=False)

    @property
    def is_stub(self) -> bool:
        return self.http is None

    async def aclose(self) -> None:
        if self.http is not None:
            await self.http.aclose()
            self.http = None


def build_capabilities(config_object=ClientConfig, transport=None) -> Capabilities:
    base_url = (getattr(config_object, "BASE_URL", "") or "").strip()
    if not base_url:
        logger.warning("MARKSYNC_URL is not set; using in-memory bookmark store")
        changes = MemoryChangeStream()
        return Capabilities(
            store=MemoryRecordStore(changes),
            session=MemorySessionProvider(),
            changes=changes,
        )

    http = httpx.AsyncClient(
        base_url=base_url.rstrip("/"),
        timeout=getattr(config_object, "REQUEST_TIMEOUT", 10.0),
        transport=transport,
    )
    api = ApiClient(http, token=getattr(config_object, "API_TOKEN", None))
    logger.info("Using MarkSync backend at %s", base_url)
    return Capabilities(
        store=HttpRecordStore(api),
        session=HttpSessionProvider(api),
        changes=PollingChangeStream(
            api, poll_interval=getattr(config_object, "CHANGE_POLL_INTERVAL", 2.0)
        ),
        http=http,
    )


def create_synchronizer(
    capabilities: Capabilities, config_object=ClientConfig
) -> ViewStateSynchronizer:
    return ViewStateSynchronizer(
        capabilities.store,
        capabilities.session,
        capabilities.changes,
        clear_on_sign_out=getattr(config_object, "CLEAR_ON_SIGN_OUT", False),
        discard_stale=getattr(config_object, "DISCARD_STALE_RECONCILES", True),
    )

"""Callback registries and the unsubscribe handles they hand out."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class Subscription:
    """Handle returned by every subscribe call.

    ``unsubscribe`` runs the release callback at most once; later calls are
    no-ops.
    """

    def __init__(self, release: Callable[[], None], name: str = "subscription"):
        self._release = release
        self.name = name
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        release, self._release = self._release, None
        release()
        logger.debug("Released %s", self.name)


class Listeners:
    """Ordered set of callbacks; a failing callback does not stop the others.

    Callbacks may be plain functions or coroutine functions. ``emit`` awaits
    coroutine results.
    """

    def __init__(self, name: str):
        self.name = name
        self._callbacks: list[Callable] = []

    def __len__(self) -> int:
        return len(self._callbacks)

    def add(self, callback: Callable) -> Subscription:
        self._callbacks.append(callback)
        return Subscription(lambda: self._discard(callback), name=self.name)

    def _discard(self, callback: Callable) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            logger.warning("Callback already removed from %s", self.name)

    async def emit(self, *args) -> None:
        for callback in list(self._callbacks):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Listener on %s failed", self.name)

    def emit_sync(self, *args) -> None:
        for callback in list(self._callbacks):
            try:
                callback(*args)
            except Exception:
                logger.exception("Listener on %s failed", self.name)

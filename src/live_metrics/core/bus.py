"""Publish/subscribe notifications for appended samples."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Listener(Protocol):
    """Callable protocol for update listeners."""

    def __call__(self, metric_name: str) -> Awaitable[None] | None: ...


class UpdateNotifier:
    """Fan out "new sample appended" events to display surfaces.

    Listeners run synchronously in subscription order. A failing listener is
    logged and skipped so the remaining listeners still run.
    """

    def __init__(self) -> None:
        self._listeners: dict[int, tuple[Listener, str | None]] = {}
        self._ids = itertools.count()
        self._tasks: set[asyncio.Task[None]] = set()

    def subscribe(
        self, listener: Listener, metric: str | None = None
    ) -> Callable[[], None]:
        """Register *listener*, optionally only for *metric*.

        Returns a callable that removes the subscription; calling it more than
        once is harmless.
        """

        token = next(self._ids)
        self._listeners[token] = (listener, metric)

        def unsubscribe() -> None:
            self._listeners.pop(token, None)

        return unsubscribe

    def __len__(self) -> int:
        return len(self._listeners)

    def publish(self, metric_name: str) -> None:
        """Notify every listener interested in *metric_name*."""

        for token in list(self._listeners):
            entry = self._listeners.get(token)
            if entry is None:
                # unsubscribed earlier in this cycle
                continue
            listener, wanted = entry
            if wanted is not None and wanted != metric_name:
                continue
            try:
                result = listener(metric_name)
            except Exception:  # noqa: BLE001
                logger.exception("update listener failed for %s", metric_name)
                continue
            if asyncio.iscoroutine(result):
                self._schedule(result, metric_name)

    def _schedule(self, coro: Coroutine[Any, Any, None], metric_name: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.error("async listener for %s needs a running event loop", metric_name)
            return
        task = loop.create_task(coro)
        self._tasks.add(task)

        def _done(finished: asyncio.Task[None]) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                logger.error(
                    "async update listener failed for %s",
                    metric_name,
                    exc_info=exc,
                )

        task.add_done_callback(_done)


__all__ = ["Listener", "UpdateNotifier"]

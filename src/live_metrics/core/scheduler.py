"""Timer-driven polling with a stop/restart generation guard."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping

from .config import PollConfig
from .models import SchedulerState

logger = logging.getLogger(__name__)

SnapshotConsumer = Callable[[Mapping[str, float]], None]


class SchedulerStateError(RuntimeError):
    """Raised on a lifecycle call that is invalid for the current state."""


class PollScheduler:
    """Periodically acquire snapshots and hand them to a consumer.

    The scheduler lives on the running asyncio loop. Each tick captures the
    current generation; a result is applied only if the generation is
    unchanged when the fetch completes. ``stop()`` bumps the generation and
    cancels the outstanding fetch; anything issued before it that still
    returns is discarded on arrival. Only one fetch is ever
    outstanding: a tick that finds one in flight is skipped, not queued.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[Mapping[str, float]]],
        consumer: SnapshotConsumer,
        name: str = "scheduler",
    ) -> None:
        self._fetch = fetch
        self._consumer = consumer
        self.name = name
        self._state = SchedulerState.IDLE
        self._config: PollConfig | None = None
        self._generation = 0
        self._timer: asyncio.TimerHandle | None = None
        self._in_flight: asyncio.Task[None] | None = None
        self.skipped_ticks = 0
        self.stale_results = 0
        self.applied = 0

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def config(self) -> PollConfig | None:
        return self._config

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    @property
    def is_live(self) -> bool:
        return self._state is SchedulerState.POLLING

    def start(self, config: PollConfig) -> None:
        """Begin polling with *config*.

        Allowed from ``IDLE`` or ``STOPPED``. A disabled config arms the
        scheduler in ``PAUSED`` so that ``resume()`` can enable it later.
        """

        if self._state not in (SchedulerState.IDLE, SchedulerState.STOPPED):
            raise SchedulerStateError(f"{self.name}: cannot start while {self._state.value}")
        self._config = config
        if not config.enabled:
            self._state = SchedulerState.PAUSED
            logger.debug("%s armed paused (generation %d)", self.name, self._generation)
            return
        self._state = SchedulerState.POLLING
        logger.debug(
            "%s polling every %ds (generation %d)",
            self.name,
            config.interval_seconds,
            self._generation,
        )
        self._on_timer()

    def pause(self) -> None:
        """Stop future ticks; an outstanding fetch still completes and applies."""

        if self._state is not SchedulerState.POLLING:
            raise SchedulerStateError(f"{self.name}: cannot pause while {self._state.value}")
        self._cancel_timer()
        self._state = SchedulerState.PAUSED

    def resume(self) -> None:
        if self._state is not SchedulerState.PAUSED:
            raise SchedulerStateError(f"{self.name}: cannot resume while {self._state.value}")
        self._state = SchedulerState.POLLING
        self._on_timer()

    def stop(self) -> None:
        """Cancel the timer and any outstanding fetch. Idempotent."""

        if self._state is SchedulerState.STOPPED:
            return
        self._cancel_timer()
        self._generation += 1
        if self._in_flight is not None:
            # a fetch that returns anyway fails the generation check
            self._in_flight.cancel()
            self._in_flight = None
        self._state = SchedulerState.STOPPED
        logger.debug("%s stopped (generation now %d)", self.name, self._generation)

    def restart(self, config: PollConfig) -> None:
        self.stop()
        self.start(config)

    def tick(self) -> asyncio.Task[None] | None:
        """Run one acquisition now unless a fetch is already outstanding."""

        if self._state is SchedulerState.STOPPED:
            return None
        if self.in_flight:
            self.skipped_ticks += 1
            logger.debug("%s: fetch still outstanding, skipping tick", self.name)
            return None
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._acquire(self._generation))
        self._in_flight = task
        return task

    def _on_timer(self) -> None:
        self._timer = None
        if self._state is not SchedulerState.POLLING or self._config is None:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._config.interval_seconds, self._on_timer)
        self.tick()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _acquire(self, generation: int) -> None:
        try:
            snapshot = await self._fetch()
        except Exception:  # noqa: BLE001
            logger.exception("%s: snapshot fetch raised", self.name)
            return
        finally:
            if self._in_flight is asyncio.current_task():
                self._in_flight = None
        if generation != self._generation:
            self.stale_results += 1
            logger.debug(
                "%s: discarding result from generation %d (current %d)",
                self.name,
                generation,
                self._generation,
            )
            return
        try:
            self._consumer(snapshot)
        except Exception:  # noqa: BLE001
            logger.exception("%s: snapshot consumer failed", self.name)
            return
        self.applied += 1


__all__ = ["PollScheduler", "SchedulerStateError", "SnapshotConsumer"]

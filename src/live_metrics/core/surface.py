"""Monitoring surfaces: the API presentation code talks to."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping

from .aggregate import AggregatorView
from .bus import UpdateNotifier
from .config import Config, PollConfig
from .models import (
    DerivedValue,
    MetricSample,
    SchedulerState,
    SeriesBuffer,
    SeriesPoint,
    metric_spec,
    monotonic_ms,
)
from .scheduler import PollScheduler
from .source import MetricSource, Snapshot

logger = logging.getLogger(__name__)


class MonitoringSurface:
    """One monitored panel (CPU, network, ...) with its own poller and buffers.

    Surfaces never share buffers or refresh settings; several surfaces may
    share one :class:`MetricSource` and one :class:`UpdateNotifier`.
    """

    def __init__(
        self,
        name: str,
        metrics: Iterable[str],
        source: MetricSource,
        notifier: UpdateNotifier,
        poll_config: PollConfig | None = None,
        capacity: int = 15,
        stale_after_failures: int = 3,
        flat_tolerance: float = 0.0,
        clock: Callable[[], int] = monotonic_ms,
    ) -> None:
        specs = [metric_spec(metric) for metric in metrics]
        if not specs:
            raise ValueError(f"surface {name!r} needs at least one metric")
        self.name = name
        self.source = source
        self.notifier = notifier
        self.poll_config = poll_config or PollConfig()
        self.stale_after_failures = stale_after_failures
        self._clock = clock
        self.buffers = {
            spec.name: SeriesBuffer(spec.name, capacity, (spec.minimum, spec.maximum))
            for spec in specs
        }
        self.views = {
            spec.name: AggregatorView.for_metric(spec, flat_tolerance) for spec in specs
        }
        self._sequences = {spec.name: itertools.count(1) for spec in specs}
        self.scheduler = PollScheduler(self._fetch, self.apply_snapshot, name=name)

    @property
    def metrics(self) -> list[str]:
        return list(self.buffers)

    def _fetch(self) -> Awaitable[Snapshot]:
        return self.source.fetch_snapshot(list(self.buffers))

    def _buffer(self, metric: str) -> SeriesBuffer:
        try:
            return self.buffers[metric]
        except KeyError:
            raise KeyError(f"surface {self.name!r} does not track {metric!r}") from None

    def apply_snapshot(self, snapshot: Mapping[str, float]) -> int:
        """Append this surface's metrics from *snapshot*; return how many landed."""

        timestamp = self._clock()
        appended = 0
        for name, buffer in self.buffers.items():
            if name not in snapshot:
                continue
            sample = MetricSample(
                metric_name=name,
                timestamp=timestamp,
                value=float(snapshot[name]),
                sequence=next(self._sequences[name]),
            )
            if buffer.append(sample):
                appended += 1
                self.notifier.publish(name)
        return appended

    # lifecycle

    def start(self) -> None:
        if self.scheduler.state in (SchedulerState.IDLE, SchedulerState.STOPPED):
            self.scheduler.start(self.poll_config)

    def stop(self) -> None:
        self.scheduler.stop()

    def is_live(self) -> bool:
        return self.scheduler.is_live

    def set_interval(self, seconds: int) -> None:
        """Change the refresh interval, restarting the poller if it is running."""

        self.poll_config = PollConfig(
            interval_seconds=seconds, enabled=self.poll_config.enabled
        )
        if self.scheduler.state in (SchedulerState.POLLING, SchedulerState.PAUSED):
            self.scheduler.restart(self.poll_config)
        logger.info("%s: refresh interval set to %ds", self.name, seconds)

    def toggle_auto_refresh(self, enabled: bool) -> None:
        self.poll_config = PollConfig(
            interval_seconds=self.poll_config.interval_seconds, enabled=enabled
        )
        state = self.scheduler.state
        if enabled and state is SchedulerState.PAUSED:
            self.scheduler.resume()
        elif enabled and state in (SchedulerState.IDLE, SchedulerState.STOPPED):
            self.scheduler.start(self.poll_config)
        elif not enabled and state is SchedulerState.POLLING:
            self.scheduler.pause()

    def refresh_now(self) -> asyncio.Task[None] | None:
        """Fetch immediately, outside the regular cadence."""

        return self.scheduler.tick()

    def clear(self) -> None:
        for buffer in self.buffers.values():
            buffer.clear()

    # reads

    def current_value(self, metric: str) -> float | None:
        latest = self._buffer(metric).latest
        return None if latest is None else latest.value

    def series(self, metric: str) -> tuple[SeriesPoint, ...]:
        return self._buffer(metric).points()

    def derive(self, metric: str) -> DerivedValue:
        buffer = self._buffer(metric)
        return self.views[metric].derive(buffer)

    def is_stale(self) -> bool:
        """True once the provider has failed often enough to flag the data.

        Staleness is a property of the provider, not of this surface: the
        failure counter lives on the shared :class:`MetricSource`, so any
        surface's failed fetch counts toward it and any successful fetch
        clears it.
        """

        return self.source.consecutive_failures >= self.stale_after_failures


class Dashboard:
    """Group the configured surfaces around one source and notifier."""

    def __init__(
        self,
        config: Config,
        source: MetricSource | None = None,
        notifier: UpdateNotifier | None = None,
        clock: Callable[[], int] = monotonic_ms,
    ) -> None:
        self.config = config
        self.source = source or MetricSource(config.source)
        self.notifier = notifier or UpdateNotifier()
        poll_config = config.polling.poll_config()
        self.surfaces: dict[str, MonitoringSurface] = {
            name: MonitoringSurface(
                name,
                metrics,
                self.source,
                self.notifier,
                poll_config=poll_config,
                capacity=config.buffers.capacity,
                stale_after_failures=config.polling.stale_after_failures,
                clock=clock,
            )
            for name, metrics in config.surfaces.items()
        }
        self._owners = {
            metric: surface
            for surface in self.surfaces.values()
            for metric in surface.metrics
        }

    def surface(self, name: str) -> MonitoringSurface:
        return self.surfaces[name]

    def surface_for(self, metric: str) -> MonitoringSurface:
        try:
            return self._owners[metric]
        except KeyError:
            raise KeyError(f"no surface tracks {metric!r}") from None

    def start(self) -> None:
        for surface in self.surfaces.values():
            surface.start()

    def stop(self) -> None:
        for surface in self.surfaces.values():
            surface.stop()

    async def close(self) -> None:
        self.stop()
        await self.source.close()

    def current_value(self, metric: str) -> float | None:
        return self.surface_for(metric).current_value(metric)

    def series(self, metric: str) -> tuple[SeriesPoint, ...]:
        return self.surface_for(metric).series(metric)

    def derive(self, metric: str) -> DerivedValue:
        return self.surface_for(metric).derive(metric)

    def is_stale(self) -> bool:
        return self.source.consecutive_failures >= self.config.polling.stale_after_failures


__all__ = ["Dashboard", "MonitoringSurface"]

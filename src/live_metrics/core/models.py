"""Domain models for the live metrics engine."""

from __future__ import annotations

import enum
import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import NamedTuple

logger = logging.getLogger(__name__)


class Trend(str, enum.Enum):
    """Direction of the two most recent samples."""

    UP = "up"
    DOWN = "down"
    FLAT = "flat"
    UNKNOWN = "unknown"


class UsageLevel(str, enum.Enum):
    """Severity bands used to colour usage gauges."""

    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


class SchedulerState(str, enum.Enum):
    """Lifecycle states for a poll scheduler."""

    IDLE = "idle"
    POLLING = "polling"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass(frozen=True, slots=True)
class MetricSpec:
    """Declared range, display scale and fallback parameters for one metric."""

    name: str
    minimum: float
    maximum: float
    scale_max: float
    baseline: float
    delta: float
    unit: str = ""

    def clamp(self, value: float) -> float:
        """Clamp *value* into the metric's valid range."""

        return min(max(value, self.minimum), self.maximum)

    def in_range(self, value: float) -> bool:
        return self.minimum <= value <= self.maximum


METRIC_SCHEMA: dict[str, MetricSpec] = {
    spec.name: spec
    for spec in (
        MetricSpec("cpuPercent", 0.0, 100.0, 100.0, 35.0, 2.0, "%"),
        MetricSpec("memoryPercent", 0.0, 100.0, 100.0, 52.0, 2.0, "%"),
        MetricSpec("diskPercent", 0.0, 100.0, 100.0, 68.0, 1.0, "%"),
        MetricSpec("networkInRate", 0.0, 10_000.0, 10.0, 1.2, 0.2, "MB/s"),
        MetricSpec("networkOutRate", 0.0, 10_000.0, 10.0, 0.8, 0.1, "MB/s"),
        MetricSpec("visitorCount", 0.0, 1_000_000.0, 100.0, 35.0, 25.0, "visitors"),
        MetricSpec("requestRate", 0.0, 1_000_000.0, 500.0, 125.0, 75.0, "req/s"),
        MetricSpec("temperatureC", 0.0, 150.0, 100.0, 48.0, 1.0, "°C"),
        MetricSpec("processCount", 0.0, 100_000.0, 500.0, 160.0, 2.0, "procs"),
        MetricSpec("activeConnections", 0.0, 100_000.0, 500.0, 100.0, 50.0, "conns"),
    )
}


def metric_spec(name: str) -> MetricSpec:
    """Return the schema entry for *name*, raising ``KeyError`` if unknown."""

    try:
        return METRIC_SCHEMA[name]
    except KeyError:
        raise KeyError(f"unknown metric: {name!r}") from None


@dataclass(frozen=True, slots=True)
class MetricSample:
    """One timestamped, sequenced value for a named metric."""

    metric_name: str
    timestamp: int
    value: float
    sequence: int


class SeriesPoint(NamedTuple):
    """Chart-ready point derived from a sample."""

    time: int
    value: float


class SeriesBuffer:
    """Fixed-capacity FIFO time series for one metric.

    Samples are kept in insertion order; once ``capacity`` is reached the
    oldest sample is evicted on every append. Invalid samples are dropped and
    counted in ``dropped`` rather than raised.
    """

    def __init__(
        self,
        metric_name: str,
        capacity: int,
        valid_range: tuple[float, float] | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("buffer capacity must be at least 1")
        self.metric_name = metric_name
        self._samples: deque[MetricSample] = deque(maxlen=capacity)
        self._valid_range = valid_range
        self._snapshot: tuple[MetricSample, ...] | None = ()
        self._points: tuple[SeriesPoint, ...] | None = ()
        self.dropped = 0

    @property
    def capacity(self) -> int:
        return self._samples.maxlen or 0

    def __len__(self) -> int:
        return len(self._samples)

    @property
    def latest(self) -> MetricSample | None:
        return self._samples[-1] if self._samples else None

    def append(self, sample: MetricSample) -> bool:
        """Append *sample*, returning ``False`` when it was rejected."""

        reason = self._rejection_reason(sample)
        if reason is not None:
            self.dropped += 1
            logger.warning(
                "dropping sample for %s (seq %d): %s",
                self.metric_name,
                sample.sequence,
                reason,
            )
            return False
        self._samples.append(sample)
        self._snapshot = None
        self._points = None
        return True

    def _rejection_reason(self, sample: MetricSample) -> str | None:
        if sample.metric_name != self.metric_name:
            return f"metric name {sample.metric_name!r} does not match buffer"
        if not math.isfinite(sample.value):
            return f"non-finite value {sample.value!r}"
        if self._valid_range is not None:
            low, high = self._valid_range
            if not low <= sample.value <= high:
                return f"value {sample.value!r} outside [{low}, {high}]"
        last = self.latest
        if last is not None:
            if sample.sequence <= last.sequence:
                return f"sequence {sample.sequence} not after {last.sequence}"
            if sample.timestamp < last.timestamp:
                return "timestamp went backwards"
        return None

    def snapshot(self) -> tuple[MetricSample, ...]:
        """Return the retained samples, oldest first.

        The same tuple is returned until the next successful append.
        """

        if self._snapshot is None:
            self._snapshot = tuple(self._samples)
        return self._snapshot

    def points(self) -> tuple[SeriesPoint, ...]:
        """Return ``(time, value)`` pairs for chart rendering."""

        if self._points is None:
            self._points = tuple(
                SeriesPoint(s.timestamp, s.value) for s in self.snapshot()
            )
        return self._points

    def clear(self) -> None:
        self._samples.clear()
        self._snapshot = ()
        self._points = ()


@dataclass(frozen=True, slots=True)
class DerivedValue:
    """Display-ready values computed from a series buffer."""

    latest: float | None
    percentage: float
    trend: Trend
    delta: float | None = None
    level: UsageLevel = UsageLevel.OK


def monotonic_ms() -> int:
    """Return the monotonic clock in whole milliseconds."""

    return time.monotonic_ns() // 1_000_000


__all__ = [
    "DerivedValue",
    "METRIC_SCHEMA",
    "MetricSample",
    "MetricSpec",
    "SchedulerState",
    "SeriesBuffer",
    "SeriesPoint",
    "Trend",
    "UsageLevel",
    "metric_spec",
    "monotonic_ms",
]

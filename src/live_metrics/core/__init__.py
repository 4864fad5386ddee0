"""Core engine: sources, buffers, schedulers and surfaces."""

from __future__ import annotations

from .aggregate import AggregatorView
from .bus import UpdateNotifier
from .config import Config, ConfigError, PollConfig, load_config
from .models import (
    METRIC_SCHEMA,
    DerivedValue,
    MetricSample,
    SchedulerState,
    SeriesBuffer,
    Trend,
)
from .scheduler import PollScheduler, SchedulerStateError
from .source import MetricSource, Snapshot, SyntheticGenerator
from .surface import Dashboard, MonitoringSurface

__all__ = [
    "AggregatorView",
    "Config",
    "ConfigError",
    "Dashboard",
    "DerivedValue",
    "METRIC_SCHEMA",
    "MetricSample",
    "MetricSource",
    "MonitoringSurface",
    "PollConfig",
    "PollScheduler",
    "SchedulerState",
    "SchedulerStateError",
    "SeriesBuffer",
    "Snapshot",
    "SyntheticGenerator",
    "Trend",
    "UpdateNotifier",
    "load_config",
]

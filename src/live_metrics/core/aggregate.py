"""Derived display values for series buffers."""

from __future__ import annotations

from .models import DerivedValue, MetricSpec, SeriesBuffer, Trend, UsageLevel

WARNING_PERCENT = 50.0
CRITICAL_PERCENT = 80.0


def usage_level(percentage: float) -> UsageLevel:
    """Map a percentage onto the gauge colour bands."""

    if percentage < WARNING_PERCENT:
        return UsageLevel.OK
    if percentage < CRITICAL_PERCENT:
        return UsageLevel.WARNING
    return UsageLevel.CRITICAL


class AggregatorView:
    """Compute latest value, percentage of scale and trend on demand.

    ``flat_tolerance`` is the absolute change below which two consecutive
    samples are reported as ``FLAT``.
    """

    def __init__(self, scale_max: float, flat_tolerance: float = 0.0) -> None:
        if scale_max <= 0:
            raise ValueError("scale_max must be positive")
        if flat_tolerance < 0:
            raise ValueError("flat_tolerance must not be negative")
        self.scale_max = float(scale_max)
        self.flat_tolerance = float(flat_tolerance)

    @classmethod
    def for_metric(cls, spec: MetricSpec, flat_tolerance: float = 0.0) -> AggregatorView:
        return cls(spec.scale_max, flat_tolerance)

    def percentage(self, value: float | None) -> float:
        if value is None:
            return 0.0
        return min(max(value / self.scale_max * 100.0, 0.0), 100.0)

    def trend(self, previous: float, current: float) -> Trend:
        change = current - previous
        if change > self.flat_tolerance:
            return Trend.UP
        if change < -self.flat_tolerance:
            return Trend.DOWN
        return Trend.FLAT

    def derive(self, buffer: SeriesBuffer) -> DerivedValue:
        samples = buffer.snapshot()
        if not samples:
            return DerivedValue(latest=None, percentage=0.0, trend=Trend.UNKNOWN)
        latest = samples[-1].value
        percentage = self.percentage(latest)
        if len(samples) < 2:
            trend, delta = Trend.UNKNOWN, None
        else:
            previous = samples[-2].value
            trend, delta = self.trend(previous, latest), latest - previous
        return DerivedValue(
            latest=latest,
            percentage=percentage,
            trend=trend,
            delta=delta,
            level=usage_level(percentage),
        )


__all__ = ["AggregatorView", "CRITICAL_PERCENT", "WARNING_PERCENT", "usage_level"]

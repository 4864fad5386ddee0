"""Metric snapshot acquisition with a synthetic fallback."""

from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

import aiohttp
import numpy as np

from .config import SourceConfig
from .models import METRIC_SCHEMA, MetricSpec, metric_spec

logger = logging.getLogger(__name__)

# Shapes served by older backends: {"system": {"cpu": {"usage": 12}}} for the
# monitoring page, {"cpu": 12, "network_in": 300} for the stats endpoint.
_LEGACY_PATHS: dict[str, tuple[tuple[str, ...], ...]] = {
    "cpuPercent": (("cpu", "usage"), ("cpu",), ("cpu_usage",)),
    "memoryPercent": (
        ("memory", "percentage"),
        ("memory", "usage"),
        ("memory",),
        ("memory_usage",),
    ),
    "diskPercent": (
        ("disk", "percentage"),
        ("disk", "usage"),
        ("disk",),
        ("disk_usage",),
    ),
    "networkInRate": (("network", "in"), ("network_in",)),
    "networkOutRate": (("network", "out"), ("network_out",)),
    "visitorCount": (("visitors",),),
    "requestRate": (("requests",),),
    "temperatureC": (("temperature",),),
    "processCount": (("processes", "total"), ("processes",)),
    "activeConnections": (
        ("network", "connections"),
        ("connections",),
        ("active_connections",),
    ),
}


class SnapshotFormatError(ValueError):
    """Raised when a provider payload is not a JSON object."""


class Snapshot(Mapping[str, float]):
    """Values for one acquisition, keyed by metric name."""

    def __init__(
        self,
        values: Mapping[str, float],
        synthesized: Iterable[str] = (),
        provider_timestamp_ms: int | None = None,
    ) -> None:
        self._values = dict(values)
        self.synthesized = frozenset(synthesized)
        self.provider_timestamp_ms = provider_timestamp_ms

    def __getitem__(self, key: str) -> float:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    @property
    def fully_synthetic(self) -> bool:
        return bool(self._values) and self.synthesized >= set(self._values)

    def __repr__(self) -> str:
        return f"Snapshot({self._values!r}, synthesized={sorted(self.synthesized)!r})"


@dataclass
class SyntheticGenerator:
    """Produce plausible bounded values when the provider is unavailable."""

    seed: int | None = None
    rng: np.random.Generator = field(init=False)

    def __post_init__(self) -> None:
        self.rng = np.random.default_rng(self.seed)

    def reset(self, seed: int | None = None) -> None:
        """Reset the RNG with *seed* if provided."""

        self.rng = np.random.default_rng(self.seed if seed is None else seed)
        if seed is not None:
            self.seed = seed

    def value(self, spec: MetricSpec) -> float:
        """Return ``baseline ± delta`` for *spec*, clamped to its range."""

        jitter = self.rng.uniform(-spec.delta, spec.delta)
        return float(np.clip(spec.baseline + jitter, spec.minimum, spec.maximum))

    def snapshot(self, names: Iterable[str]) -> dict[str, float]:
        return {name: self.value(metric_spec(name)) for name in names}


def _coerce(raw: Any) -> float | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        try:
            return float(raw)
        except OverflowError:
            # integers beyond float range; the buffer drops non-finite values
            return math.inf if raw > 0 else -math.inf
    if isinstance(raw, str):
        try:
            return float(raw.strip())
        except ValueError:
            return None
    return None


def _lookup(body: Mapping[str, Any], path: tuple[str, ...]) -> Any:
    node: Any = body
    for key in path:
        if not isinstance(node, Mapping) or key not in node:
            return None
        node = node[key]
    return node


def extract_fields(payload: Any) -> tuple[dict[str, float], int | None]:
    """Pull known metrics out of a provider payload.

    Accepts the bare snapshot object, the ``{"success": ..., "data": {...}}``
    envelope, and the nested legacy layouts. Fields that are missing or not
    numeric are left out. Returns the values and the provider timestamp.
    """

    body = payload
    if isinstance(body, Mapping) and isinstance(body.get("data"), Mapping):
        body = body["data"]
    if not isinstance(body, Mapping):
        raise SnapshotFormatError(
            f"expected a JSON object, got {type(payload).__name__}"
        )
    legacy = body.get("system") if isinstance(body.get("system"), Mapping) else body

    values: dict[str, float] = {}
    for name in METRIC_SCHEMA:
        value = _coerce(body.get(name))
        if value is None:
            for path in _LEGACY_PATHS.get(name, ()):
                value = _coerce(_lookup(legacy, path))
                if value is not None:
                    break
        if value is not None:
            values[name] = value

    stamp = _coerce(body.get("timestampMs"))
    timestamp = int(stamp) if stamp is not None and math.isfinite(stamp) else None
    return values, timestamp


class MetricSource:
    """Fetch metric snapshots from the provider.

    ``fetch_snapshot`` never raises for transport or payload problems: each
    metric that cannot be read is replaced by a synthetic value and the failure
    is recorded for diagnostics.
    """

    def __init__(
        self,
        config: SourceConfig,
        generator: SyntheticGenerator | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.config = config
        self.generator = generator or SyntheticGenerator(seed=config.seed)
        self._session = session
        self._owns_session = session is None
        self.consecutive_failures = 0
        self.total_failures = 0
        self.fallback_counts: Counter[str] = Counter()
        self.last_error: str | None = None

    async def __aenter__(self) -> MetricSource:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        return headers

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(
                headers=self._headers(), timeout=timeout
            )
            self._owns_session = True
        return self._session

    async def _fetch_payload(self) -> Any:
        session = await self._ensure_session()
        async with session.get(self.config.url) as response:
            response.raise_for_status()
            return await response.json(content_type=None)

    async def fetch_snapshot(self, metrics: Iterable[str] | None = None) -> Snapshot:
        """Return one value per requested metric (all known metrics by default)."""

        names = list(METRIC_SCHEMA) if metrics is None else list(metrics)
        specs = [metric_spec(name) for name in names]
        try:
            payload = await self._fetch_payload()
            fields, stamp = extract_fields(payload)
        except Exception as exc:  # noqa: BLE001
            return self._fallback(names, exc)

        self.consecutive_failures = 0
        self.last_error = None
        values: dict[str, float] = {}
        synthesized: list[str] = []
        for spec in specs:
            raw = fields.get(spec.name)
            if raw is None:
                values[spec.name] = self.generator.value(spec)
                synthesized.append(spec.name)
                self.fallback_counts[spec.name] += 1
            elif math.isfinite(raw):
                values[spec.name] = spec.clamp(raw)
            else:
                # left for the buffer to reject
                values[spec.name] = raw
        if synthesized:
            logger.debug("provider omitted %s; using synthetic values", synthesized)
        return Snapshot(values, synthesized, stamp)

    def _fallback(self, names: list[str], exc: Exception) -> Snapshot:
        self.consecutive_failures += 1
        self.total_failures += 1
        self.last_error = f"{type(exc).__name__}: {exc}"
        self.fallback_counts.update(names)
        logger.warning(
            "metrics fetch from %s failed (%d consecutive): %s",
            self.config.url,
            self.consecutive_failures,
            self.last_error,
        )
        return Snapshot(self.generator.snapshot(names), names)

    async def close(self) -> None:
        """Close the HTTP session if this source created it."""

        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None


__all__ = [
    "MetricSource",
    "Snapshot",
    "SnapshotFormatError",
    "SyntheticGenerator",
    "extract_fields",
]

"""Shared fixtures for engine tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import aiohttp
import pytest

from live_metrics.core.config import SourceConfig
from live_metrics.core.source import MetricSource, SyntheticGenerator


class ScriptedSource(MetricSource):
    """Metric source whose payloads come from a script instead of HTTP.

    Each script entry is either a payload to return or an exception to raise.
    Once the script runs out the last entry is repeated.
    """

    def __init__(self, script: list[Any], seed: int = 7) -> None:
        super().__init__(
            SourceConfig(url="http://provider.invalid/stats", seed=seed),
            generator=SyntheticGenerator(seed=seed),
        )
        self.script = list(script)
        self.calls = 0

    async def _fetch_payload(self) -> Any:
        entry = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(entry, BaseException):
            raise entry
        return entry


class PendingFetches:
    """Fetch callable whose results are resolved by the test."""

    def __init__(self) -> None:
        self.pending: list[asyncio.Future[dict[str, float]]] = []

    async def __call__(self) -> dict[str, float]:
        future: asyncio.Future[dict[str, float]] = (
            asyncio.get_running_loop().create_future()
        )
        self.pending.append(future)
        return await future


async def settle(rounds: int = 5) -> None:
    """Let scheduled tasks and callbacks run."""

    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture()
def scripted_source() -> Callable[..., ScriptedSource]:
    return ScriptedSource


@pytest.fixture()
def failing_source() -> ScriptedSource:
    return ScriptedSource([aiohttp.ClientConnectionError("connection refused")])


@pytest.fixture()
def healthy_payload() -> dict[str, Any]:
    return {
        "cpuPercent": 41.5,
        "memoryPercent": 63.0,
        "diskPercent": 70.25,
        "networkInRate": 1.1,
        "networkOutRate": 0.75,
        "visitorCount": 22,
        "requestRate": 180,
        "temperatureC": 47.5,
        "processCount": 158,
        "activeConnections": 95,
        "timestampMs": 1_700_000_000_000,
    }

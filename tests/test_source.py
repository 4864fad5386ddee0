"""Tests for snapshot acquisition and the synthetic fallback."""

from __future__ import annotations

import asyncio
import math
from collections.abc import Callable
from typing import Any

import aiohttp
import pytest
from aiohttp import test_utils, web

from live_metrics.core.config import SourceConfig
from live_metrics.core.models import METRIC_SCHEMA
from live_metrics.core.source import (
    MetricSource,
    SnapshotFormatError,
    SyntheticGenerator,
    extract_fields,
)

from conftest import ScriptedSource


def test_synthetic_deterministic() -> None:
    gen_a = SyntheticGenerator(seed=123)
    gen_b = SyntheticGenerator(seed=123)
    samples_a = [gen_a.snapshot(METRIC_SCHEMA) for _ in range(5)]
    samples_b = [gen_b.snapshot(METRIC_SCHEMA) for _ in range(5)]
    assert samples_a == samples_b


def test_synthetic_values_stay_near_baseline() -> None:
    gen = SyntheticGenerator(seed=321)
    for _ in range(200):
        for name, value in gen.snapshot(METRIC_SCHEMA).items():
            spec = METRIC_SCHEMA[name]
            assert spec.in_range(value)
            assert abs(value - spec.baseline) <= spec.delta + 1e-9


def test_synthetic_reset_replays_sequence() -> None:
    gen = SyntheticGenerator(seed=5)
    first = gen.snapshot(["cpuPercent", "diskPercent"])
    gen.reset()
    assert gen.snapshot(["cpuPercent", "diskPercent"]) == first
    gen.reset(seed=6)
    assert gen.seed == 6


def test_extract_bare_and_envelope(healthy_payload: dict[str, Any]) -> None:
    bare, stamp = extract_fields(healthy_payload)
    wrapped, _ = extract_fields({"success": True, "data": healthy_payload})
    assert bare == wrapped
    assert bare["cpuPercent"] == 41.5
    assert stamp == 1_700_000_000_000


def test_extract_legacy_nested_payload() -> None:
    payload = {
        "system": {
            "cpu": {"usage": 33},
            "memory": {"percentage": 61.5},
            "disk": {"usage": 70},
            "network": {"in": "1.25", "out": 0.9, "connections": 120},
            "processes": {"total": 150, "running": 8},
            "temperature": 46,
        }
    }
    values, stamp = extract_fields(payload)
    assert values == {
        "cpuPercent": 33.0,
        "memoryPercent": 61.5,
        "diskPercent": 70.0,
        "networkInRate": 1.25,
        "networkOutRate": 0.9,
        "temperatureC": 46.0,
        "processCount": 150.0,
        "activeConnections": 120.0,
    }
    assert stamp is None


def test_extract_flat_stats_payload() -> None:
    values, _ = extract_fields(
        {"success": True, "data": {"cpu": 20, "memory": 30, "network_in": 400}}
    )
    assert values == {"cpuPercent": 20.0, "memoryPercent": 30.0, "networkInRate": 400.0}


def test_extract_ignores_non_numeric_fields() -> None:
    values, _ = extract_fields(
        {"cpuPercent": "busy", "memoryPercent": True, "diskPercent": None}
    )
    assert values == {}


@pytest.mark.parametrize("payload", [[1, 2, 3], "ok", 42, None])
def test_extract_rejects_non_objects(payload: Any) -> None:
    with pytest.raises(SnapshotFormatError):
        extract_fields(payload)


def test_five_consecutive_failures(failing_source: ScriptedSource) -> None:
    async def scenario() -> None:
        for expected in range(1, 6):
            snapshot = await failing_source.fetch_snapshot(["cpuPercent", "requestRate"])
            assert snapshot.fully_synthetic
            for name, value in snapshot.items():
                assert METRIC_SCHEMA[name].in_range(value)
            assert failing_source.consecutive_failures == expected
        assert failing_source.fallback_counts["cpuPercent"] == 5
        assert "ClientConnectionError" in (failing_source.last_error or "")

    asyncio.run(scenario())


def test_success_resets_failure_counter(
    scripted_source: Callable[..., ScriptedSource], healthy_payload: dict[str, Any]
) -> None:
    source = scripted_source(
        [asyncio.TimeoutError(), ValueError("bad json"), healthy_payload]
    )

    async def scenario() -> None:
        await source.fetch_snapshot()
        await source.fetch_snapshot()
        assert source.consecutive_failures == 2
        snapshot = await source.fetch_snapshot()
        assert source.consecutive_failures == 0
        assert source.total_failures == 2
        assert snapshot.synthesized == frozenset()
        assert snapshot["memoryPercent"] == 63.0
        assert snapshot.provider_timestamp_ms == 1_700_000_000_000

    asyncio.run(scenario())


def test_missing_field_falls_back_for_that_metric_only(
    scripted_source: Callable[..., ScriptedSource],
) -> None:
    source = scripted_source([{"cpuPercent": 12.0}])
    snapshot = asyncio.run(source.fetch_snapshot(["cpuPercent", "diskPercent"]))
    assert snapshot["cpuPercent"] == 12.0
    assert snapshot.synthesized == {"diskPercent"}
    assert METRIC_SCHEMA["diskPercent"].in_range(snapshot["diskPercent"])
    assert source.consecutive_failures == 0
    assert source.fallback_counts == {"diskPercent": 1}


def test_real_values_clamped_to_range(
    scripted_source: Callable[..., ScriptedSource],
) -> None:
    source = scripted_source([{"cpuPercent": 150.0, "networkInRate": -4}])
    snapshot = asyncio.run(source.fetch_snapshot(["cpuPercent", "networkInRate"]))
    assert snapshot["cpuPercent"] == 100.0
    assert snapshot["networkInRate"] == 0.0


def test_non_finite_values_pass_through(
    scripted_source: Callable[..., ScriptedSource],
) -> None:
    source = scripted_source([{"cpuPercent": "NaN"}])
    snapshot = asyncio.run(source.fetch_snapshot(["cpuPercent"]))
    assert math.isnan(snapshot["cpuPercent"])
    assert snapshot.synthesized == frozenset()


def test_oversized_integer_affects_only_its_metric(
    scripted_source: Callable[..., ScriptedSource],
) -> None:
    source = scripted_source([{"cpuPercent": 10**400, "memoryPercent": 40.0}])
    snapshot = asyncio.run(source.fetch_snapshot(["cpuPercent", "memoryPercent"]))
    assert snapshot["memoryPercent"] == 40.0
    assert math.isinf(snapshot["cpuPercent"])
    assert snapshot.synthesized == frozenset()
    assert source.consecutive_failures == 0
    assert source.last_error is None


def test_extract_oversized_timestamp_ignored() -> None:
    values, stamp = extract_fields({"cpuPercent": -(10**400), "timestampMs": 10**400})
    assert values["cpuPercent"] == -math.inf
    assert stamp is None


def test_fetch_over_http_sends_token(healthy_payload: dict[str, Any]) -> None:
    seen: dict[str, str | None] = {}

    async def handler(request: web.Request) -> web.Response:
        seen["authorization"] = request.headers.get("Authorization")
        return web.json_response({"success": True, "data": healthy_payload})

    async def scenario() -> None:
        app = web.Application()
        app.router.add_get("/stats", handler)
        async with test_utils.TestServer(app) as server:
            config = SourceConfig(url=str(server.make_url("/stats")), token="s3cret")
            async with MetricSource(config) as source:
                snapshot = await source.fetch_snapshot(["cpuPercent", "requestRate"])
        assert dict(snapshot) == {"cpuPercent": 41.5, "requestRate": 180.0}
        assert source.consecutive_failures == 0

    asyncio.run(scenario())
    assert seen["authorization"] == "Bearer s3cret"


@pytest.mark.parametrize(
    "respond",
    [
        lambda: web.Response(status=503, text="maintenance"),
        lambda: web.Response(text="<html>not json</html>", content_type="text/html"),
        lambda: web.json_response([1, 2, 3]),
    ],
)
def test_http_failures_fall_back(respond: Callable[[], web.Response]) -> None:
    async def handler(request: web.Request) -> web.Response:
        return respond()

    async def scenario() -> None:
        app = web.Application()
        app.router.add_get("/stats", handler)
        async with test_utils.TestServer(app) as server:
            config = SourceConfig(url=str(server.make_url("/stats")), seed=1)
            async with MetricSource(config) as source:
                snapshot = await source.fetch_snapshot(["cpuPercent"])
                assert snapshot.fully_synthetic
                assert source.consecutive_failures == 1

    asyncio.run(scenario())


def test_external_session_left_open() -> None:
    async def scenario() -> None:
        async with aiohttp.ClientSession() as session:
            source = MetricSource(SourceConfig(), session=session)
            await source.close()
            assert not session.closed

    asyncio.run(scenario())

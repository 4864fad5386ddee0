"""Command line entry point: run the dashboard engine headless."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path

from .core.config import Config, ConfigError, load_config
from .core.surface import Dashboard
from .log import setup_logging

logger = logging.getLogger(__name__)


def _default_config_path() -> Path:
    """Return the config file shipped at the project root."""

    return Path(__file__).resolve().parent.parent.parent / "config.yaml"


def format_update(dashboard: Dashboard, metric: str) -> str:
    """Render one metric's derived values as a log line."""

    derived = dashboard.derive(metric)
    latest = "n/a" if derived.latest is None else f"{derived.latest:.2f}"
    line = (
        f"{metric}={latest} ({derived.percentage:.0f}%, "
        f"{derived.trend.value}, {derived.level.value})"
    )
    if dashboard.is_stale():
        line += " [stale]"
    return line


async def _launch(config: Config, duration: float | None) -> int:
    loop = asyncio.get_running_loop()
    dashboard = Dashboard(config)
    unsubscribe = dashboard.notifier.subscribe(
        lambda metric: logger.info(format_update(dashboard, metric))
    )

    stop_requested = asyncio.Event()
    for signum in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signum, stop_requested.set)

    dashboard.start()
    logger.info(
        "polling %s every %ds (%d surfaces)",
        config.source.url,
        config.polling.refresh_interval_seconds,
        len(dashboard.surfaces),
    )
    try:
        if duration is None:
            await stop_requested.wait()
        else:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_requested.wait(), timeout=duration)
    finally:
        unsubscribe()
        await dashboard.close()
    failures = dashboard.source.total_failures
    if failures:
        logger.info("finished with %d failed fetches", failures)
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Live metrics polling engine")
    parser.add_argument(
        "--config",
        type=Path,
        default=_default_config_path(),
        help="Path to config.yaml",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until interrupted)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override the configured log level",
    )
    args = parser.parse_args(argv)

    config_path = args.config.expanduser().resolve(strict=False)
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        print(f"Failed to load config: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    setup_logging(args.log_level or config.logging.level, config.logging.file)
    exit_code = asyncio.run(_launch(config, args.duration))
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()

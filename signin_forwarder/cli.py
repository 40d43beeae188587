"""Command line entry point for the sign-in forwarder."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .config import DEFAULT_CONFIG_PATH, ConfigError, Settings, load_settings
from .poller import PipelineContext, Poller, StartupError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="signin-forwarder",
        description="Forward Microsoft sign-in logs, enriched with geo and AbuseIPDB data, to Graylog.",
    )
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help=f"path to the YAML config file (default: {DEFAULT_CONFIG_PATH} when present)",
    )
    parser.add_argument("--log-level", default=None, help="override the configured log level")
    parser.add_argument("--once", action="store_true", help="run a single poll and exit")
    return parser


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - Windows event loops
            pass


async def run(settings: Settings, *, once: bool = False) -> None:
    context = PipelineContext.from_settings(settings)
    try:
        await context.check_connectivity()
        poller = Poller.from_settings(context, settings)
        if once:
            await poller.poll_once()
            return
        stop = asyncio.Event()
        _install_signal_handlers(stop)
        await poller.run_forever(stop)
    finally:
        await context.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    load_dotenv()

    config_path = args.config
    if config_path is None and DEFAULT_CONFIG_PATH.exists():
        config_path = DEFAULT_CONFIG_PATH

    overrides = {"log_level": args.log_level} if args.log_level else {}
    try:
        settings = load_settings(config_path, **overrides)
    except ConfigError as exc:
        configure_logging("ERROR")
        logger.error("%s", exc)
        return 1

    configure_logging(settings.log_level)
    try:
        asyncio.run(run(settings, once=args.once))
    except (StartupError, OSError) as exc:
        logger.error("Startup failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

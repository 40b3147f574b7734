# -*- coding: utf-8 -*-
"""Worldstate bot runner."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import os
import signal
import sys
from typing import List, Optional

from dotenv import load_dotenv

# Load .env early so settings pick it up.
_env_file = os.getenv("DOTENV_FILE")
if _env_file:
    load_dotenv(_env_file)  # set DOTENV_FILE=.env.staging
else:
    load_dotenv()

from worldstate_bot.config import Settings, get_settings  # noqa: E402
from worldstate_bot.engine import Engine  # noqa: E402
from worldstate_bot.errors import ConfigurationError  # noqa: E402
from worldstate_bot.logging_utils import get_logger, setup_logging  # noqa: E402
from worldstate_bot.models import FeedKind  # noqa: E402

log = get_logger("runner")


def _select_feeds(settings: Settings, feeds: Optional[List[str]]) -> Settings:
    """Restrict the enabled feeds to ``feeds`` when given on the command line."""
    if not feeds:
        return settings
    wanted = {FeedKind(f) for f in feeds}
    return dataclasses.replace(
        settings,
        feature_fissures=FeedKind.FISSURES in wanted,
        feature_baro=FeedKind.BARO in wanted,
        feature_arbitration=FeedKind.ARBITRATION in wanted,
    )


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _handler(sig_name: str) -> None:
        log.warning("shutdown_signal_received signal=%s", sig_name)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handler, sig.name)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handler support.
            signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(stop.set))


async def run(settings: Settings, once: bool = False) -> int:
    engine = Engine.from_settings(settings)
    try:
        if once:
            reports = await engine.run_once()
            for kind, report in reports.items():
                log.info(
                    "run_once_result feed=%s report=%s",
                    kind.value,
                    report.to_dict() if report else None,
                )
            return 0 if all(r is not None for r in reports.values()) else 1

        stop = asyncio.Event()
        _install_signal_handlers(stop)
        engine.start()
        log.info("bot_running feeds=%s", ",".join(k.value for k in engine.schedulers))
        await stop.wait()
        return 0
    finally:
        await engine.stop()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point for the worldstate bot.

    ``--once`` runs a single scheduled pass for every enabled feed and exits
    (non-zero if any pass failed); otherwise the schedulers run until SIGINT
    or SIGTERM.
    """
    ap = argparse.ArgumentParser(prog="worldstate-bot")
    ap.add_argument("--once", action="store_true", help="Run a single pass and exit")
    ap.add_argument(
        "--feed",
        action="append",
        choices=[k.value for k in FeedKind],
        help="Only run this feed (repeatable; default: every enabled feed)",
    )
    ap.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = ap.parse_args(argv)

    settings = _select_feeds(get_settings(), args.feed)
    setup_logging(args.log_level, settings=settings)
    try:
        return asyncio.run(run(settings, once=args.once))
    except ConfigurationError as e:
        log.error("configuration_error err=%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())

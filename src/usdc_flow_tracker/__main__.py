"""Process entry point: `python -m usdc_flow_tracker`."""

from __future__ import annotations

import argparse
import asyncio
import logging

from usdc_flow_tracker import __version__
from usdc_flow_tracker.config import ConfigurationError, get_settings
from usdc_flow_tracker.engine import DetectionEngine

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="usdc_flow_tracker", description=__doc__)
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--once", action="store_true", help="run a single detection cycle and exit")
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="create missing tables before starting (SQLite/dev; use alembic in production)",
    )
    return parser.parse_args(argv)


async def _main(args: argparse.Namespace) -> int:
    settings = get_settings()
    logger.info("Configuration: %s", settings.redacted_summary())

    try:
        engine = DetectionEngine.from_settings(settings)
    except ConfigurationError as e:
        logger.error("Refusing to start: %s", e)
        return 2

    if args.init_db:
        await engine.init_schema()

    if args.once or not settings.detection.auto_start:
        try:
            report = await engine.run_full_cycle()
        finally:
            await engine.aclose()
        return 1 if report.users_failed else 0

    await engine.run()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_main(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())

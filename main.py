"""
Main entry point for the page monitor.
Runs one crawl pass followed by an enrichment pass.

Usage:
    python main.py                  # crawl due targets, then annotate
    python main.py --target <id>    # check one target now, then annotate
    python main.py --no-annotate    # crawl only
"""

import asyncio
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from crawler.exceptions import MonitorError
from scheduler.scheduler_service import SchedulerService
from utilities.config import config
from utilities.logger import setup_logging, get_logger


def parse_args(argv):
    """Minimal flag parsing: --target <id>, --no-annotate."""
    target_id = None
    annotate = True
    args = list(argv)
    while args:
        arg = args.pop(0)
        if arg == "--target" and args:
            target_id = args.pop(0)
        elif arg == "--no-annotate":
            annotate = False
        else:
            print(f"Unknown argument: {arg}")
            print("Usage: python main.py [--target <id>] [--no-annotate]")
            sys.exit(1)
    return target_id, annotate


async def main():
    """Run one monitoring pass."""
    target_id, annotate = parse_args(sys.argv[1:])

    # Set up logging
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        debug=config.debug
    )

    logger = get_logger(__name__)
    logger.info("Starting page monitor pass", target_id=target_id, annotate=annotate)

    service = SchedulerService.from_settings(config)
    exit_code = 0

    try:
        await service.connect()

        if target_id:
            check = await service.run_single(target_id)
            logger.info(
                "Target checked",
                target_id=target_id,
                outcome=check.outcome.value,
                changed=check.changed
            )
        else:
            result = await service.run_crawl()
            logger.info(
                "Crawl pass finished",
                processed=result.processed,
                changed=result.changed,
                failed=result.failed,
                skipped=result.skipped,
                duration_seconds=result.duration_seconds
            )
            for error in result.errors:
                logger.error("Crawl error", error=error)

        if annotate:
            annotation = await service.run_annotation()
            logger.info(
                "Annotation pass finished",
                annotated=annotation.annotated,
                fallbacks=annotation.fallbacks,
                failed=annotation.failed
            )

    except MonitorError as e:
        logger.error("Monitor pass failed", error=str(e))
        exit_code = 1

    finally:
        await service.disconnect()

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    asyncio.run(main())

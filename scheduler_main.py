"""
Monitor daemon.

Usage:
    python scheduler_main.py            # daily crawl/annotate/alert cycle, weekly digest
    python scheduler_main.py --test     # same jobs on 2/10 minute intervals
    python scheduler_main.py --once     # one cycle plus a digest, then exit
"""

import asyncio
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

import structlog
from crawler.exceptions import MonitorError
from scheduler.scheduler_service import SchedulerService
from utilities.config import config
from utilities.logger import setup_logging

MODES = {
    None: (False, False),
    "--test": (True, False),
    "--once": (False, True),
}


async def main():
    """Start the daemon in the requested mode."""
    flag = sys.argv[1] if len(sys.argv) > 1 else None
    if flag not in MODES:
        print(f"❌ Unknown argument: {flag}")
        print("Usage: python scheduler_main.py [--test|--once]")
        sys.exit(1)
    test_mode, run_once = MODES[flag]

    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        debug=config.debug
    )
    logger = structlog.get_logger(__name__)
    logger.info(
        "Starting monitor daemon",
        mode=flag or "daemon",
        schedule=f"{config.schedule_hour:02d}:{config.schedule_minute:02d} {config.timezone}"
    )

    service = SchedulerService.from_settings(config)
    try:
        await service.start(test_mode=test_mode, run_once=run_once)
    except MonitorError as e:
        logger.error("Monitor daemon stopped on error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("👋 Interrupted, shutting down")

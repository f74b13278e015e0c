"""
Structured logging for the page monitor.
Configures structlog over stdlib logging and provides a run-scoped logger.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union
import structlog
from structlog.stdlib import LoggerFactory

# Third-party loggers that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler.executors.default")


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[Union[str, Path]] = None,
    debug: bool = False
) -> None:
    """
    Set up structured logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format (json or console)
        log_file: Optional log file path; lines are written as rendered
        debug: Add call-site information to every event
    """
    level = getattr(logging, log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if debug:
        processors.append(structlog.processors.CallsiteParameterAdder())

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        logging.getLogger().addHandler(file_handler)

    structlog.get_logger(__name__).info(
        "Logging configured",
        level=log_level,
        format=log_format,
        file=str(log_file) if log_file else None
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger (usually for ``__name__``)."""
    return structlog.get_logger(name)


class RunLogger:
    """
    Logger for crawl runs and target checks.

    Context bound with ``bind_context`` (run id, component) is attached to
    every event this logger emits.
    """

    def __init__(self, name: str = "monitor"):
        self.logger = structlog.get_logger(name)

    def bind_context(self, **kwargs) -> "RunLogger":
        """Bind context for all later events; returns self for chaining."""
        self.logger = self.logger.bind(**kwargs)
        return self

    def log_run_start(self, eligible: int) -> None:
        self.logger.info("Run started", eligible=eligible)

    def log_run_complete(
        self,
        processed: int,
        changed: int,
        duration_seconds: float,
        failed: int = 0,
        skipped: int = 0
    ) -> None:
        self.logger.info(
            "Run completed",
            processed=processed,
            changed=changed,
            failed=failed,
            skipped=skipped,
            duration_seconds=round(duration_seconds, 3)
        )

    def log_target_checked(self, target_id: str, url: str, outcome: str) -> None:
        self.logger.debug("Target checked", target_id=target_id, url=url, outcome=outcome)

    def log_error(self, error: str, url: Optional[str] = None, target_id: Optional[str] = None) -> None:
        self.logger.error("Target check failed", error=error, url=url, target_id=target_id)

    def log_retry(self, url: str, attempt: int, max_attempts: int, delay: float) -> None:
        self.logger.warning(
            "Retrying request",
            url=url,
            attempt=attempt,
            max_attempts=max_attempts,
            delay_seconds=delay
        )

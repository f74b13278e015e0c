"""
Crawl run orchestration.

Selects targets that are due, checks them one at a time with a pacing delay,
and reports what was attempted. One target failing never aborts the run.
"""

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import structlog

from crawler.database import MonitorStore
from crawler.exceptions import CrawlInProgressError
from crawler.models import MonitoredTarget, utcnow
from scheduler.change_detector import ChangeDetector
from scheduler.models import CheckOutcome, CheckResult, CrawlRunResult, SchedulerConfig
from scheduler.pacing import PacedTaskRunner
from utilities.logger import RunLogger

logger = structlog.get_logger(__name__)


class CrawlScheduler:
    """Drives crawl runs over monitored targets."""

    def __init__(
        self,
        store: MonitorStore,
        detector: ChangeDetector,
        config: SchedulerConfig,
        runner: Optional[PacedTaskRunner] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the scheduler.

        Args:
            store: Target store
            detector: Per-target check cycle
            config: Scheduler configuration
            runner: Paced runner (defaults to one using crawl_delay_seconds)
            clock: Wall clock used for eligibility and run timestamps
        """
        self.store = store
        self.detector = detector
        self.config = config
        self.runner = runner or PacedTaskRunner(config.crawl_delay_seconds)
        self.clock = clock
        self.logger = logger.bind(component="crawl_scheduler")
        self.last_run: Optional[CrawlRunResult] = None
        self._run_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    @property
    def default_interval(self) -> timedelta:
        return timedelta(hours=self.config.check_interval_hours)

    async def select_due_targets(self, now: Optional[datetime] = None) -> List[MonitoredTarget]:
        """Active targets never checked or last checked at least one interval ago."""
        now = now or self.clock()
        targets = await self.store.list_active_targets()
        due = [target for target in targets if target.is_due(now, self.default_interval)]
        self.logger.debug("Selected due targets", active=len(targets), due=len(due))
        return due

    async def run(
        self,
        deadline: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CrawlRunResult:
        """
        Run one crawl pass over all due targets.

        Args:
            deadline: Stop before the next target once the runner clock reaches this value;
                defaults to run_timeout_seconds from now when configured
            cancel_event: Stop before the next target once set

        Raises:
            CrawlInProgressError: another full run is executing in this process
        """
        if self._run_lock.locked():
            raise CrawlInProgressError("A crawl run is already in progress")

        async with self._run_lock:
            if deadline is None:
                deadline = self.runner.deadline_after(self.config.run_timeout_seconds)
            result = await self._run(deadline, cancel_event)
            self.last_run = result
            return result

    async def _run(self, deadline: Optional[float], cancel_event: Optional[asyncio.Event]) -> CrawlRunResult:
        run_id = str(uuid.uuid4())
        started_at = self.clock()
        run_logger = RunLogger("crawl_scheduler").bind_context(run_id=run_id)

        targets = await self.select_due_targets(started_at)
        run_logger.log_run_start(eligible=len(targets))

        report = await self.runner.run(
            targets,
            lambda target: self.detector.check_target(target.id),
            deadline=deadline,
            cancel_event=cancel_event,
        )

        result = CrawlRunResult(run_id=run_id, started_at=started_at, eligible=len(targets))
        for outcome in report.outcomes:
            target = outcome.item
            if outcome.ok:
                check: CheckResult = outcome.value
                result.results.append(check)
                if check.outcome == CheckOutcome.CHANGED:
                    result.changed += 1
                elif check.outcome == CheckOutcome.NEW:
                    result.new += 1
                else:
                    result.unchanged += 1
            else:
                result.failed += 1
                result.errors.append(f"{target.url}: {outcome.error}")
                run_logger.log_error(
                    f"{type(outcome.error).__name__}: {outcome.error}",
                    url=target.url,
                    target_id=target.id
                )

        result.processed = report.attempted
        result.skipped = len(report.skipped)
        result.stopped_early = report.stopped_early
        result.finished_at = self.clock()
        result.duration_seconds = (result.finished_at - started_at).total_seconds()

        run_logger.log_run_complete(
            processed=result.processed,
            changed=result.changed,
            duration_seconds=result.duration_seconds,
            failed=result.failed,
            skipped=result.skipped
        )
        return result

    async def run_single(self, target_id: str) -> CheckResult:
        """
        Check one target immediately, regardless of eligibility or active flag.

        Raises:
            TargetNotFoundError: unknown target
            FetchError: the page could not be retrieved
            PersistenceError: the cycle was aborted
        """
        self.logger.info("Running on-demand check", target_id=target_id)
        return await self.detector.check_target(target_id)

"""
Service wiring and the optional cron trigger.

This module provides:
- Construction of the pipeline components from settings
- Single-pass operations (crawl, annotation, alerts, digest) shared by the CLI and the API
- A daemon mode in which APScheduler cron jobs invoke those same operations
"""

import asyncio
import signal
from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from crawler.database import MongoMonitorStore, MonitorStore
from crawler.exceptions import CrawlInProgressError, MonitorError
from crawler.fetcher import PageFetcher
from crawler.models import utcnow
from enrichment.annotator import ChangeAnnotator
from enrichment.client import GeminiClient
from enrichment.models import AnnotationRunResult
from scheduler.alerting import ChangeAlertManager
from scheduler.change_detector import ChangeDetector
from scheduler.crawl_scheduler import CrawlScheduler
from scheduler.fingerprinting import ContentFingerprinter
from scheduler.models import ChangeDigest, CheckResult, CrawlRunResult, SchedulerConfig
from scheduler.report_generator import DigestGenerator
from utilities.config import MonitorConfig

logger = structlog.get_logger(__name__)


class SchedulerService:
    """Owns the pipeline components and the operations run against them."""

    def __init__(
        self,
        config: SchedulerConfig,
        store: MonitorStore,
        crawl_scheduler: CrawlScheduler,
        annotator: ChangeAnnotator,
        alert_manager: ChangeAlertManager,
        digest_generator: DigestGenerator,
    ):
        """
        Initialize scheduler service.

        Args:
            config: Scheduler configuration (cron settings)
            store: Persistence store
            crawl_scheduler: Crawl run driver
            annotator: AI annotator
            alert_manager: Alert manager
            digest_generator: Digest report generator
        """
        self.config = config
        self.store = store
        self.crawl_scheduler = crawl_scheduler
        self.annotator = annotator
        self.alert_manager = alert_manager
        self.digest_generator = digest_generator
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.logger = logger.bind(component="scheduler_service")
        self._stop_event: Optional[asyncio.Event] = None

    @classmethod
    def from_settings(cls, settings: MonitorConfig, store: Optional[MonitorStore] = None) -> "SchedulerService":
        """Build every component from application settings."""
        scheduler_config = settings.scheduler_config()
        store = store or MongoMonitorStore(settings.mongodb_url, settings.mongodb_database)

        fetcher = PageFetcher(settings.fetch_config())
        detector = ChangeDetector(
            store,
            fetcher,
            ContentFingerprinter(scheduler_config.fingerprint_algorithm),
            scheduler_config,
        )
        annotator_config = settings.annotator_config()

        return cls(
            config=scheduler_config,
            store=store,
            crawl_scheduler=CrawlScheduler(store, detector, scheduler_config),
            annotator=ChangeAnnotator(store, GeminiClient(annotator_config), annotator_config),
            alert_manager=ChangeAlertManager(store, settings.alert_config()),
            digest_generator=DigestGenerator(store, settings.report_config()),
        )

    async def connect(self) -> None:
        await self.store.connect()

    async def disconnect(self) -> None:
        await self.store.disconnect()

    # Single-pass operations

    async def run_crawl(self, cancel_event: Optional[asyncio.Event] = None) -> CrawlRunResult:
        """One crawl pass over due targets."""
        return await self.crawl_scheduler.run(cancel_event=cancel_event)

    async def run_single(self, target_id: str) -> CheckResult:
        """On-demand check of one target."""
        return await self.crawl_scheduler.run_single(target_id)

    async def run_annotation(self, limit: Optional[int] = None) -> AnnotationRunResult:
        """One enrichment pass over changes lacking a summary."""
        return await self.annotator.annotate_pending(limit=limit, cancel_event=self._stop_event)

    async def run_alerts(self) -> int:
        """Alert on annotated significant changes."""
        return await self.alert_manager.process_pending()

    async def run_digest(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        export: bool = True,
    ) -> ChangeDigest:
        """Generate (and optionally export) a digest."""
        digest = await self.digest_generator.generate(since, until)
        if export:
            self.digest_generator.export_json(digest)
            self.digest_generator.export_markdown(digest)
        self.alert_manager.send_digest_summary(digest)
        return digest

    async def run_cycle(self) -> Dict[str, Any]:
        """Crawl, then annotate, then alert."""
        crawl = await self.run_crawl(cancel_event=self._stop_event)
        annotation = await self.run_annotation()
        alerted = await self.run_alerts()
        return {
            "crawl": crawl,
            "annotation": annotation,
            "alerted": alerted,
        }

    def status(self) -> Dict[str, Any]:
        """Current run state and the last completed crawl."""
        last_run = self.crawl_scheduler.last_run
        jobs = []
        if self.scheduler is not None:
            for job in self.scheduler.get_jobs():
                jobs.append({
                    'id': job.id,
                    'name': job.name,
                    'next_run_time': job.next_run_time.isoformat() if job.next_run_time else None,
                    'trigger': str(job.trigger)
                })

        return {
            "running": self.crawl_scheduler.is_running,
            "last_run": last_run.model_dump(mode="json", exclude={"results"}) if last_run else None,
            "jobs": jobs,
        }

    # Daemon mode

    async def start(self, test_mode: bool = False, run_once: bool = False) -> None:
        """
        Start the service.

        Args:
            test_mode: Run jobs on short intervals instead of the daily cron
            run_once: Run one cycle plus a digest and return
        """
        await self.connect()
        try:
            if run_once:
                self.logger.info("Starting scheduler service in RUN ONCE MODE")
                await self._cycle_job()
                await self._digest_job()
                return

            self._stop_event = asyncio.Event()
            self._setup_signal_handlers()
            self.scheduler = AsyncIOScheduler(timezone=self.config.timezone)
            self._setup_scheduler_listeners()

            if test_mode:
                self.logger.info("Starting scheduler service in TEST MODE")
                self._add_test_jobs()
            else:
                self.logger.info("Starting scheduler service")
                self._add_scheduled_jobs()

            self.scheduler.start()
            self.logger.info(
                "Scheduler service started",
                timezone=self.config.timezone,
                schedule_hour=self.config.schedule_hour,
                schedule_minute=self.config.schedule_minute
            )

            await self._stop_event.wait()
        finally:
            self.stop()
            await self.disconnect()

    def stop(self) -> None:
        """Stop the cron trigger and signal running passes to stop at the next boundary."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            self.logger.info("Scheduler service stopped")

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._handle_signal, signum)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                signal.signal(signum, lambda s, f: self._handle_signal(s))

    def _handle_signal(self, signum) -> None:
        self.logger.info(f"Received signal {signum}, shutting down gracefully...")
        self.stop()

    def _setup_scheduler_listeners(self) -> None:
        """Setup scheduler event listeners."""
        def job_executed_listener(event):
            self.logger.info(
                "Job executed successfully",
                job_id=event.job_id,
                duration=event.retval.get('duration', 0) if event.retval else 0
            )

        def job_error_listener(event):
            self.logger.error(
                "Job execution failed",
                job_id=event.job_id,
                error=str(event.exception)
            )

        self.scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)

    def _add_scheduled_jobs(self) -> None:
        """Daily crawl cycle and weekly digest."""
        self.scheduler.add_job(
            func=self._cycle_job,
            trigger=CronTrigger(
                hour=self.config.schedule_hour,
                minute=self.config.schedule_minute,
                timezone=self.config.timezone
            ),
            id='daily_crawl_cycle',
            name='Daily Crawl Cycle',
            max_instances=1,
            replace_existing=True
        )
        self.scheduler.add_job(
            func=self._digest_job,
            trigger=CronTrigger(
                day_of_week='mon',
                hour=self.config.schedule_hour,
                minute=(self.config.schedule_minute + 30) % 60,
                timezone=self.config.timezone
            ),
            id='weekly_digest',
            name='Weekly Change Digest',
            max_instances=1,
            replace_existing=True
        )
        self.logger.info(
            "Added scheduled jobs",
            hour=self.config.schedule_hour,
            minute=self.config.schedule_minute,
            timezone=self.config.timezone
        )

    def _add_test_jobs(self) -> None:
        """Short-interval jobs for trying the daemon locally."""
        self.scheduler.add_job(
            func=self._cycle_job,
            trigger='interval',
            minutes=2,
            id='test_crawl_cycle',
            name='Test Crawl Cycle (2min)',
            max_instances=1,
            replace_existing=True
        )
        self.scheduler.add_job(
            func=self._digest_job,
            trigger='interval',
            minutes=10,
            id='test_digest',
            name='Test Digest (10min)',
            max_instances=1,
            replace_existing=True
        )
        self.logger.info("Added test jobs (2-minute crawl, 10-minute digest)")

    async def _cycle_job(self) -> Dict[str, Any]:
        """Scheduled crawl/annotate/alert cycle."""
        start_time = utcnow()
        job_id = f"crawl_cycle_{start_time.strftime('%Y%m%d_%H%M%S')}"
        self.logger.info("Starting crawl cycle job", job_id=job_id)

        try:
            cycle = await self.run_cycle()
        except CrawlInProgressError:
            self.logger.warning("Crawl cycle skipped, a run is already in progress", job_id=job_id)
            return {'job_id': job_id, 'success': False, 'skipped': True, 'duration': 0}
        except MonitorError as e:
            self.logger.error("Crawl cycle job failed", job_id=job_id, error=str(e))
            return {
                'job_id': job_id,
                'success': False,
                'error': str(e),
                'duration': (utcnow() - start_time).total_seconds()
            }

        crawl: CrawlRunResult = cycle["crawl"]
        annotation: AnnotationRunResult = cycle["annotation"]
        result = {
            'job_id': job_id,
            'success': crawl.failed == 0 and annotation.failed == 0,
            'processed': crawl.processed,
            'changed': crawl.changed,
            'failed': crawl.failed,
            'annotated': annotation.annotated,
            'alerted': cycle["alerted"],
            'duration': (utcnow() - start_time).total_seconds()
        }
        self.logger.info("Crawl cycle job completed", **result)
        return result

    async def _digest_job(self) -> Dict[str, Any]:
        """Scheduled digest generation."""
        start_time = utcnow()
        job_id = f"digest_{start_time.strftime('%Y%m%d_%H%M%S')}"

        try:
            digest = await self.run_digest()
        except MonitorError as e:
            self.logger.error("Digest job failed", job_id=job_id, error=str(e))
            return {'job_id': job_id, 'success': False, 'error': str(e)}

        return {
            'job_id': job_id,
            'success': True,
            'digest_id': digest.digest_id,
            'total_changes': digest.total_changes,
            'duration': (utcnow() - start_time).total_seconds()
        }

"""
Change detection engine for monitored pages.

This module provides:
- Fingerprint comparison (new / unchanged / changed)
- The per-target check cycle: fetch, normalize, snapshot, diff, pointer update
- Compensation so a failed cycle leaves no partial records behind
"""

import asyncio
from datetime import datetime
from typing import Callable, Dict, Optional

import structlog

from crawler.database import MonitorStore
from crawler.exceptions import PersistenceError, TargetNotFoundError
from crawler.fetcher import PageFetcher
from crawler.models import ChangeRecord, MonitoredTarget, Significance, Snapshot, utcnow
from crawler.normalizer import normalize
from scheduler.diffing import PREVIOUS_VERSION_UNAVAILABLE, generate_diff
from scheduler.fingerprinting import ContentFingerprinter
from scheduler.models import CheckOutcome, CheckResult, SchedulerConfig
from utilities.logger import RunLogger

logger = structlog.get_logger(__name__)


def classify_check(stored_fingerprint: Optional[str], new_fingerprint: str) -> CheckOutcome:
    """Compare the stored fingerprint with a fresh one."""
    if stored_fingerprint is None:
        return CheckOutcome.NEW
    if stored_fingerprint == new_fingerprint:
        return CheckOutcome.UNCHANGED
    return CheckOutcome.CHANGED


class ChangeDetector:
    """Runs the check cycle for individual targets."""

    def __init__(
        self,
        store: MonitorStore,
        fetcher: PageFetcher,
        fingerprinter: ContentFingerprinter,
        config: SchedulerConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize change detector.

        Args:
            store: Snapshot/change store
            fetcher: Page fetcher
            fingerprinter: Content fingerprinter
            config: Scheduler configuration (snapshot cap, diff settings)
            clock: Source of check timestamps
        """
        self.store = store
        self.fetcher = fetcher
        self.fingerprinter = fingerprinter
        self.config = config
        self.clock = clock
        self.logger = logger.bind(component="change_detector")
        self.run_logger = RunLogger("change_detector")
        self._target_locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, target_id: str) -> asyncio.Lock:
        lock = self._target_locks.get(target_id)
        if lock is None:
            lock = self._target_locks[target_id] = asyncio.Lock()
        return lock

    async def check_target(self, target_id: str) -> CheckResult:
        """
        Check one target. The same target is never checked concurrently within this process.

        Args:
            target_id: Target to check

        Returns:
            CheckResult describing the outcome

        Raises:
            TargetNotFoundError: unknown target
            FetchError: the page could not be retrieved (nothing was written)
            PersistenceError: the cycle was aborted and its records removed
        """
        if await self.store.get_target(target_id) is None:
            raise TargetNotFoundError(target_id)
        async with self._lock_for(target_id):
            # Re-read inside the lock so the expected fingerprint is current
            target = await self.store.get_target(target_id)
            if target is None:
                raise TargetNotFoundError(target_id)
            return await self._run_cycle(target)

    async def _run_cycle(self, target: MonitoredTarget) -> CheckResult:
        fetched = await self.fetcher.fetch(target.url)
        text = normalize(fetched.body)
        fingerprint = self.fingerprinter.fingerprint(text)
        previous = target.last_fingerprint
        outcome = classify_check(previous, fingerprint)
        checked_at = self.clock()

        if outcome == CheckOutcome.UNCHANGED:
            await self.store.touch_target(target.id, previous, checked_at)
            self.run_logger.log_target_checked(target.id, target.url, outcome.value)
            return CheckResult(
                target_id=target.id,
                url=target.url,
                outcome=outcome,
                fingerprint=fingerprint,
                truncated=fetched.truncated,
                checked_at=checked_at,
            )

        snapshot = Snapshot(
            target_id=target.id,
            fingerprint=fingerprint,
            content=text[:self.config.max_snapshot_chars],
            status_code=fetched.status_code,
            captured_at=checked_at,
        )
        snapshot_written = False
        change: Optional[ChangeRecord] = None

        try:
            await self.store.create_snapshot(snapshot)
            snapshot_written = True

            if outcome == CheckOutcome.CHANGED:
                change = await self._build_change(target, previous, snapshot, checked_at)
                await self.store.create_change(change)

            await self.store.advance_target(target.id, previous, fingerprint, checked_at)

        except PersistenceError as e:
            self.logger.warning(
                "Check cycle aborted, removing partial records",
                target_id=target.id,
                error=str(e)
            )
            await self._compensate(
                snapshot.id if snapshot_written else None,
                change.id if change is not None else None,
            )
            raise

        if change is not None:
            self.logger.info(
                "Change detected",
                target_id=target.id,
                url=target.url,
                change_id=change.id,
                before_snapshot=change.snapshot_before_id
            )
        self.run_logger.log_target_checked(target.id, target.url, outcome.value)

        return CheckResult(
            target_id=target.id,
            url=target.url,
            outcome=outcome,
            fingerprint=fingerprint,
            snapshot_id=snapshot.id,
            change_id=change.id if change is not None else None,
            truncated=fetched.truncated,
            checked_at=checked_at,
        )

    async def _build_change(
        self,
        target: MonitoredTarget,
        previous_fingerprint: str,
        snapshot: Snapshot,
        detected_at: datetime,
    ) -> ChangeRecord:
        """Resolve the prior snapshot (best-effort) and build the change record."""
        before: Optional[Snapshot] = None
        try:
            before = await self.store.find_snapshot(target.id, previous_fingerprint)
        except PersistenceError as e:
            self.logger.warning("Could not resolve previous snapshot", target_id=target.id, error=str(e))

        if before is not None:
            diff_content = generate_diff(
                before.content,
                snapshot.content,
                min_fragment_length=self.config.diff_min_fragment_length,
                max_items=self.config.diff_max_items,
            )
        else:
            diff_content = PREVIOUS_VERSION_UNAVAILABLE

        return ChangeRecord(
            target_id=target.id,
            snapshot_before_id=before.id if before is not None else None,
            snapshot_after_id=snapshot.id,
            significance=Significance.MINOR,
            diff_content=diff_content,
            detected_at=detected_at,
        )

    async def _compensate(self, snapshot_id: Optional[str], change_id: Optional[str]) -> None:
        """Remove records written by an aborted cycle."""
        if change_id is not None:
            try:
                await self.store.delete_change(change_id)
            except PersistenceError as e:
                self.logger.error("Failed to remove change from aborted cycle", change_id=change_id, error=str(e))
        if snapshot_id is not None:
            try:
                await self.store.delete_snapshot(snapshot_id)
            except PersistenceError as e:
                self.logger.error("Failed to remove snapshot from aborted cycle", snapshot_id=snapshot_id, error=str(e))

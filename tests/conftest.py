"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

import pytest

from crawler.exceptions import FetchError, FetchErrorKind, PersistenceError, StaleTargetError
from crawler.models import (
    ChangeRecord, FetchResult, MonitoredTarget, PageCategory, Significance, Snapshot
)
from scheduler.change_detector import ChangeDetector
from scheduler.fingerprinting import ContentFingerprinter
from scheduler.models import SchedulerConfig

ACME_URL = "https://acme.example.com/"


class InMemoryMonitorStore:
    """
    MonitorStore backed by dicts, with the same pointer-update rules as the MongoDB store.

    ``fail_on`` maps a method name to an exception raised on its next call.
    """

    def __init__(self):
        self.targets: Dict[str, MonitoredTarget] = {}
        self.snapshots: Dict[str, Snapshot] = {}
        self.changes: Dict[str, ChangeRecord] = {}
        self.fail_on: Dict[str, Exception] = {}
        self.connected = False

    def _maybe_fail(self, method: str) -> None:
        error = self.fail_on.pop(method, None)
        if error is not None:
            raise error

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    def add_target(self, **fields) -> MonitoredTarget:
        fields.setdefault("name", "Acme")
        fields.setdefault("url", ACME_URL)
        target = MonitoredTarget(**fields)
        self.targets[target.id] = target
        return target

    async def get_target(self, target_id: str) -> Optional[MonitoredTarget]:
        self._maybe_fail("get_target")
        target = self.targets.get(target_id)
        return target.model_copy() if target else None

    async def list_active_targets(self) -> List[MonitoredTarget]:
        self._maybe_fail("list_active_targets")
        return [t.model_copy() for t in self.targets.values() if t.is_active]

    async def list_targets(self) -> List[MonitoredTarget]:
        return [t.model_copy() for t in self.targets.values()]

    async def upsert_target(self, target: MonitoredTarget) -> MonitoredTarget:
        for existing in self.targets.values():
            if existing.url == target.url:
                existing.name = target.name
                existing.category = target.category
                existing.check_frequency = target.check_frequency
                existing.is_active = target.is_active
                return existing.model_copy()
        self.targets[target.id] = target
        return target.model_copy()

    async def set_target_active(self, target_id: str, active: bool) -> bool:
        if target_id not in self.targets:
            return False
        self.targets[target_id].is_active = active
        return True

    def _update_pointer(self, target_id, expected_fingerprint, checked_at, **fields) -> None:
        target = self.targets.get(target_id)
        if (
            target is None
            or target.last_fingerprint != expected_fingerprint
            or (target.last_checked_at is not None and target.last_checked_at > checked_at)
        ):
            raise StaleTargetError(f"Target {target_id} was updated by a concurrent check")
        for key, value in fields.items():
            setattr(target, key, value)

    async def advance_target(self, target_id, expected_fingerprint, fingerprint, checked_at) -> None:
        self._maybe_fail("advance_target")
        self._update_pointer(
            target_id, expected_fingerprint, checked_at,
            last_fingerprint=fingerprint, last_checked_at=checked_at
        )

    async def touch_target(self, target_id, expected_fingerprint, checked_at) -> None:
        self._maybe_fail("touch_target")
        self._update_pointer(target_id, expected_fingerprint, checked_at, last_checked_at=checked_at)

    async def create_snapshot(self, snapshot: Snapshot) -> Snapshot:
        self._maybe_fail("create_snapshot")
        self.snapshots[snapshot.id] = snapshot
        return snapshot

    async def get_snapshot(self, snapshot_id: str) -> Optional[Snapshot]:
        return self.snapshots.get(snapshot_id)

    async def find_snapshot(self, target_id: str, fingerprint: str) -> Optional[Snapshot]:
        self._maybe_fail("find_snapshot")
        matches = [
            s for s in self.snapshots.values()
            if s.target_id == target_id and s.fingerprint == fingerprint
        ]
        return max(matches, key=lambda s: s.captured_at) if matches else None

    async def delete_snapshot(self, snapshot_id: str) -> bool:
        return self.snapshots.pop(snapshot_id, None) is not None

    async def create_change(self, change: ChangeRecord) -> ChangeRecord:
        self._maybe_fail("create_change")
        self.changes[change.id] = change
        return change

    async def get_change(self, change_id: str) -> Optional[ChangeRecord]:
        change = self.changes.get(change_id)
        return change.model_copy() if change else None

    async def delete_change(self, change_id: str) -> bool:
        return self.changes.pop(change_id, None) is not None

    async def update_change_enrichment(
        self, change_id, change_type, significance, ai_summary, ai_analysis, annotated_at
    ) -> bool:
        self._maybe_fail("update_change_enrichment")
        change = self.changes.get(change_id)
        if change is None:
            return False
        change.change_type = change_type
        change.significance = significance
        change.ai_summary = ai_summary
        change.ai_analysis = ai_analysis
        change.annotated_at = annotated_at
        return True

    async def list_unannotated_changes(self, limit: Optional[int] = None) -> List[ChangeRecord]:
        pending = sorted(
            (c for c in self.changes.values() if c.ai_summary is None),
            key=lambda c: c.detected_at
        )
        return [c.model_copy() for c in (pending[:limit] if limit else pending)]

    async def list_alertable_changes(self, significances: Iterable[Significance]) -> List[ChangeRecord]:
        levels = set(significances)
        return [
            c.model_copy() for c in self.changes.values()
            if not c.notified and c.ai_summary is not None and c.significance in levels
        ]

    async def mark_changes_notified(self, change_ids: Iterable[str]) -> int:
        count = 0
        for change_id in change_ids:
            if change_id in self.changes:
                self.changes[change_id].notified = True
                count += 1
        return count

    async def list_changes_between(self, since: datetime, until: datetime) -> List[ChangeRecord]:
        return sorted(
            (c.model_copy() for c in self.changes.values() if since <= c.detected_at < until),
            key=lambda c: c.detected_at
        )


class FakeFetcher:
    """Serves canned bodies per URL; an Exception value is raised instead."""

    def __init__(self, pages: Optional[Dict[str, object]] = None):
        self.pages = dict(pages or {})
        self.calls: List[str] = []

    async def fetch(self, url: str) -> FetchResult:
        self.calls.append(url)
        page = self.pages.get(url)
        if page is None:
            raise FetchError(FetchErrorKind.NON_SUCCESS_STATUS, url, "HTTP 404", status_code=404)
        if isinstance(page, Exception):
            raise page
        return FetchResult(url=url, final_url=url, status_code=200, body=page)


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    """Monotonic clock advanced by FakeSleep."""

    def __init__(self):
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


class FakeSleep:
    """Records requested delays and advances a FakeMonotonic instead of waiting."""

    def __init__(self, monotonic: Optional[FakeMonotonic] = None):
        self.delays: List[float] = []
        self.monotonic = monotonic

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.monotonic is not None:
            self.monotonic.value += seconds


@pytest.fixture
def store():
    """In-memory store."""
    return InMemoryMonitorStore()


@pytest.fixture
def fetcher():
    """Fetcher with no pages registered."""
    return FakeFetcher()


@pytest.fixture
def clock():
    """Controllable wall clock."""
    return FakeClock()


@pytest.fixture
def scheduler_config():
    """Scheduler configuration for testing."""
    return SchedulerConfig(crawl_delay_seconds=2.0)


@pytest.fixture
def detector(store, fetcher, scheduler_config, clock):
    """Change detector wired to the in-memory store and fake fetcher."""
    return ChangeDetector(store, fetcher, ContentFingerprinter("md5"), scheduler_config, clock=clock)


@pytest.fixture
def acme_target(store):
    """A never-checked pricing page."""
    return store.add_target(name="Acme", url=ACME_URL, category=PageCategory.PRICING)


@pytest.fixture
def sample_change(store, acme_target):
    """A stored change between two stored snapshots."""
    before = Snapshot(
        target_id=acme_target.id, fingerprint="a" * 32,
        content="Welcome to Acme. We sell widgets.", status_code=200,
        captured_at=datetime(2024, 1, 1, 12, 0, 0)
    )
    after = Snapshot(
        target_id=acme_target.id, fingerprint="b" * 32,
        content="Welcome to Acme. We sell gadgets now.", status_code=200,
        captured_at=datetime(2024, 1, 2, 12, 0, 0)
    )
    store.snapshots[before.id] = before
    store.snapshots[after.id] = after
    change = ChangeRecord(
        target_id=acme_target.id,
        snapshot_before_id=before.id,
        snapshot_after_id=after.id,
        diff_content="**Added:**\n+ We sell gadgets now\n\n**Removed:**\n- We sell widgets",
        detected_at=datetime(2024, 1, 2, 12, 0, 0),
    )
    store.changes[change.id] = change
    return change


@pytest.fixture
def persistence_failure():
    """Factory for PersistenceError instances."""
    return lambda message="store unavailable": PersistenceError(message)


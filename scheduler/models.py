"""
Models for scheduling, change detection runs, alerting and digests.

This module defines Pydantic models for:
- Scheduler, alert and report configuration
- Per-target check results
- Crawl run results
- Digest report structures
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from crawler.models import ChangeType, Significance, utcnow


class CheckOutcome(str, Enum):
    """Result of comparing a fresh fingerprint with the stored one."""
    NEW = "new"
    UNCHANGED = "unchanged"
    CHANGED = "changed"


class SchedulerConfig(BaseModel):
    """Configuration for crawl runs and change detection."""
    # Eligibility and pacing
    check_interval_hours: float = Field(default=24, gt=0, description="Default interval between checks")
    crawl_delay_seconds: float = Field(default=2.0, ge=0, description="Delay between consecutive targets")
    run_timeout_seconds: Optional[float] = Field(default=None, gt=0, description="Wall-clock budget per run")

    # Snapshots and fingerprints
    max_snapshot_chars: int = Field(default=100_000, gt=0)
    fingerprint_algorithm: str = Field(default="md5")

    # Diffs
    diff_min_fragment_length: int = Field(default=10, ge=0)
    diff_max_items: int = Field(default=10, gt=0)

    # Cron trigger (daemon mode)
    schedule_hour: int = Field(default=2, ge=0, le=23, description="Hour to run the daily crawl (24h format)")
    schedule_minute: int = Field(default=0, ge=0, le=59, description="Minute to run the daily crawl")
    timezone: str = Field(default="UTC", description="Timezone for scheduling")


class AlertConfig(BaseModel):
    """Configuration for alerting system (logging only)."""
    enabled: bool = Field(default=True)
    min_significance: Significance = Field(default=Significance.NOTABLE)

    # Rate limiting
    max_alerts_per_hour: int = Field(default=10, ge=1)


class ReportConfig(BaseModel):
    """Configuration for digest reports."""
    reports_dir: str = Field(default="reports")
    digest_days: int = Field(default=7, ge=1)


class CheckResult(BaseModel):
    """Outcome of one target's check cycle."""
    target_id: str
    url: str
    outcome: CheckOutcome
    fingerprint: str
    snapshot_id: Optional[str] = Field(default=None, description="Snapshot written this cycle")
    change_id: Optional[str] = Field(default=None, description="Change record written this cycle")
    truncated: bool = Field(default=False)
    checked_at: datetime = Field(default_factory=utcnow)

    @property
    def changed(self) -> bool:
        return self.outcome == CheckOutcome.CHANGED


class CrawlRunResult(BaseModel):
    """Result of a crawl run."""
    run_id: str = Field(..., description="Unique run identifier")
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = Field(default=None)
    duration_seconds: float = Field(default=0.0)

    eligible: int = Field(default=0, description="Targets due at run start")
    processed: int = Field(default=0, description="Targets attempted, including failed attempts")
    changed: int = Field(default=0)
    new: int = Field(default=0)
    unchanged: int = Field(default=0)
    failed: int = Field(default=0)
    skipped: int = Field(default=0, description="Targets left for the next run (deadline or cancellation)")
    stopped_early: bool = Field(default=False)

    errors: List[str] = Field(default_factory=list)
    results: List[CheckResult] = Field(default_factory=list)


class DigestEntry(BaseModel):
    """A change worth listing in a digest."""
    change_id: str
    target_id: str
    target_name: str
    url: str
    change_type: Optional[ChangeType] = None
    significance: Significance
    summary: Optional[str] = None
    detected_at: datetime


class ChangeDigest(BaseModel):
    """Aggregated view of changes detected in a time window."""
    digest_id: str = Field(..., description="Unique digest identifier")
    period_start: datetime
    period_end: datetime
    generated_at: datetime = Field(default_factory=utcnow)

    total_changes: int = Field(default=0)
    targets_changed: int = Field(default=0)
    unannotated_changes: int = Field(default=0)
    changes_by_type: Dict[str, int] = Field(default_factory=dict)
    changes_by_significance: Dict[str, int] = Field(default_factory=dict)
    changes_by_target: Dict[str, int] = Field(default_factory=dict)

    highlights: List[DigestEntry] = Field(default_factory=list, description="Notable and major changes")

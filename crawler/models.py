"""
Pydantic models for monitored targets, snapshots and change records.
Implements the persisted schema plus fetcher configuration and results.
"""

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what MongoDB hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    """Generate a record identifier."""
    return str(uuid.uuid4())


class PageCategory(str, Enum):
    """Kind of page being monitored."""
    PRICING = "pricing"
    FEATURES = "features"
    BLOG = "blog"
    HOMEPAGE = "homepage"
    OTHER = "other"


class CheckFrequency(str, Enum):
    """Per-target check cadence overriding the configured default."""
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"

    @property
    def interval(self) -> timedelta:
        return {
            CheckFrequency.HOURLY: timedelta(hours=1),
            CheckFrequency.DAILY: timedelta(days=1),
            CheckFrequency.WEEKLY: timedelta(days=7),
        }[self]


class ChangeType(str, Enum):
    """Classification of a detected change."""
    PRICING = "pricing"
    FEATURES = "features"
    MESSAGING = "messaging"
    DESIGN = "design"
    CONTENT = "content"
    OTHER = "other"


class Significance(str, Enum):
    """Coarse severity of a detected change."""
    MINOR = "minor"
    NOTABLE = "notable"
    MAJOR = "major"

    @property
    def rank(self) -> int:
        return {Significance.MINOR: 1, Significance.NOTABLE: 2, Significance.MAJOR: 3}[self]


class MonitoredTarget(BaseModel):
    """
    A URL to watch. Only last_checked_at and last_fingerprint are
    written by the pipeline.
    """
    id: str = Field(default_factory=new_id, description="Target identifier")
    url: str = Field(..., description="Page URL to monitor")
    name: str = Field(..., description="Display name of the monitored site")
    category: PageCategory = Field(default=PageCategory.OTHER, description="Page category")
    is_active: bool = Field(default=True, description="Whether the target is checked")
    check_frequency: Optional[CheckFrequency] = Field(
        default=None, description="Cadence override; default interval applies when unset"
    )
    last_checked_at: Optional[datetime] = Field(default=None, description="Last successful check")
    last_fingerprint: Optional[str] = Field(default=None, description="Fingerprint at last check")
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        """Only absolute http(s) URLs can be fetched."""
        parsed = urlparse(v.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError('url must be an absolute http(s) URL')
        return v.strip()

    def check_interval(self, default_interval: timedelta) -> timedelta:
        """Interval between checks for this target."""
        if self.check_frequency is not None:
            return self.check_frequency.interval
        return default_interval

    def is_due(self, now: datetime, default_interval: timedelta) -> bool:
        """True when the target is active and never checked or checked too long ago."""
        if not self.is_active:
            return False
        if self.last_checked_at is None:
            return True
        return now - self.last_checked_at >= self.check_interval(default_interval)


class Snapshot(BaseModel):
    """Immutable capture of a target's normalized content."""
    id: str = Field(default_factory=new_id)
    target_id: str = Field(..., description="Owning target")
    fingerprint: str = Field(..., description="Fingerprint of the normalized content")
    content: str = Field(default="", description="Normalized content, size-capped")
    status_code: int = Field(..., description="HTTP status observed")
    captured_at: datetime = Field(default_factory=utcnow)


class ChangeRecord(BaseModel):
    """A detected difference between two snapshots of the same target."""
    id: str = Field(default_factory=new_id)
    target_id: str = Field(..., description="Owning target")
    snapshot_before_id: Optional[str] = Field(
        default=None, description="Prior snapshot; empty only when it could not be resolved"
    )
    snapshot_after_id: str = Field(..., description="Snapshot that introduced the change")
    change_type: Optional[ChangeType] = Field(default=None)
    significance: Significance = Field(default=Significance.MINOR)
    ai_summary: Optional[str] = Field(default=None)
    ai_analysis: Optional[str] = Field(default=None)
    diff_content: Optional[str] = Field(default=None)
    notified: bool = Field(default=False)
    detected_at: datetime = Field(default_factory=utcnow)
    read_at: Optional[datetime] = Field(default=None)
    annotated_at: Optional[datetime] = Field(default=None)

    @property
    def is_annotated(self) -> bool:
        return self.ai_summary is not None


class FetchConfig(BaseModel):
    """Configuration for the page fetcher."""
    timeout: float = Field(default=30.0, gt=0)
    max_content_bytes: int = Field(default=2 * 1024 * 1024, gt=0)
    retry_attempts: int = Field(default=2, ge=0, le=10)
    retry_delay: float = Field(default=1.0, ge=0)
    rate_limit_per_second: float = Field(default=2.0, gt=0)
    headers: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_HEADERS))


class FetchResult(BaseModel):
    """Raw page body and status returned by the fetcher."""
    url: str
    final_url: str
    status_code: int
    body: str
    truncated: bool = False
    fetched_at: datetime = Field(default_factory=utcnow)

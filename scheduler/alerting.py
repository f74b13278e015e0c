"""
Alerting for significant changes.

This module provides:
- Log-based alerts for annotated changes above a significance threshold
- Hourly rate limiting
- Marking alerted changes as notified
"""

from datetime import datetime, timedelta
from typing import Callable, Dict, List

import structlog

from crawler.database import MonitorStore
from crawler.models import ChangeRecord, Significance, utcnow
from scheduler.models import AlertConfig, ChangeDigest

logger = structlog.get_logger(__name__)


class ChangeAlertManager:
    """Emits alerts for notable changes and records that they were sent."""

    def __init__(
        self,
        store: MonitorStore,
        alert_config: AlertConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize alert manager.

        Args:
            store: Change store
            alert_config: Alert configuration
            clock: Source of alert timestamps
        """
        self.store = store
        self.config = alert_config
        self.clock = clock
        self.logger = logger.bind(component="alert_manager")
        self.alert_history: List[datetime] = []

    def qualifying_significances(self) -> List[Significance]:
        """Significance levels at or above the configured minimum."""
        threshold = self.config.min_significance.rank
        return [level for level in Significance if level.rank >= threshold]

    async def process_pending(self) -> int:
        """
        Alert on annotated, un-notified changes at or above the threshold.

        Changes are marked notified only when the alert was actually emitted;
        rate-limited batches stay pending for the next pass.

        Returns:
            Number of changes alerted
        """
        if not self.config.enabled:
            self.logger.debug("Alerting is disabled")
            return 0

        changes = await self.store.list_alertable_changes(self.qualifying_significances())
        if not changes:
            return 0

        if not self._check_rate_limit():
            self.logger.warning("Change alert rate limited", pending=len(changes))
            return 0

        self.logger.warning(
            "Change detection alert",
            message=self._create_log_content(changes),
            changes_count=len(changes),
            change_ids=[change.id for change in changes]
        )
        self._update_alert_history()

        marked = await self.store.mark_changes_notified(change.id for change in changes)
        self.logger.info("Processed change alerts", alerted=len(changes), marked=marked)
        return len(changes)

    def _create_log_content(self, changes: List[ChangeRecord]) -> str:
        """Create log message content."""
        lines = []
        for change in changes:
            change_type = change.change_type.value if change.change_type else "unclassified"
            lines.append(f"{change_type}: {change.ai_summary} (Significance: {change.significance.value})")
        return f"Detected {len(changes)} significant changes: " + "; ".join(lines)

    def _check_rate_limit(self) -> bool:
        """Check if another alert fits in the hourly budget."""
        hour_ago = self.clock() - timedelta(hours=1)
        recent = [sent for sent in self.alert_history if sent > hour_ago]
        return len(recent) < self.config.max_alerts_per_hour

    def _update_alert_history(self) -> None:
        """Record an alert and drop entries older than an hour."""
        now = self.clock()
        hour_ago = now - timedelta(hours=1)
        self.alert_history = [sent for sent in self.alert_history if sent > hour_ago]
        self.alert_history.append(now)

    def send_digest_summary(self, digest: ChangeDigest) -> None:
        """Log a digest summary."""
        by_type = _format_counts(digest.changes_by_type)
        by_significance = _format_counts(digest.changes_by_significance)

        summary_message = (
            f"Change digest {digest.period_start:%Y-%m-%d} - {digest.period_end:%Y-%m-%d}\n"
            f"- Changes detected: {digest.total_changes}\n"
            f"- Targets changed: {digest.targets_changed}\n"
            f"Changes by type:\n{by_type}\n"
            f"Changes by significance:\n{by_significance}"
        )
        self.logger.info(
            "Change digest summary",
            message=summary_message,
            digest_id=digest.digest_id,
            highlights=len(digest.highlights)
        )


def _format_counts(counts: Dict[str, int]) -> str:
    if not counts:
        return "- none"
    return "\n".join(f"- {name.title()}: {count}" for name, count in sorted(counts.items()))

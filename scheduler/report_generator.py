"""
Digest reports over detected changes.

This module provides:
- Aggregation of change records in a time window
- Markdown rendering
- JSON and Markdown export to the reports directory
"""

import json
import uuid
from collections import Counter
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, Optional

import structlog

from crawler.database import MonitorStore
from crawler.models import MonitoredTarget, Significance, utcnow
from scheduler.models import ChangeDigest, DigestEntry, ReportConfig

logger = structlog.get_logger(__name__)


class DigestGenerator:
    """Generator for periodic change digests."""

    def __init__(
        self,
        store: MonitorStore,
        config: ReportConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize digest generator.

        Args:
            store: Change/target store
            config: Report configuration
            clock: Source of the default period end
        """
        self.store = store
        self.config = config
        self.reports_dir = Path(config.reports_dir)
        self.clock = clock
        self.logger = logger.bind(component="digest_generator")

    async def generate(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> ChangeDigest:
        """
        Aggregate changes detected in [since, until).

        Args:
            since: Period start (defaults to digest_days before until)
            until: Period end (defaults to now)

        Returns:
            ChangeDigest instance
        """
        until = until or self.clock()
        since = since or until - timedelta(days=self.config.digest_days)
        digest_id = str(uuid.uuid4())

        self.logger.info("Generating change digest", digest_id=digest_id, since=since, until=until)

        changes = await self.store.list_changes_between(since, until)
        targets: Dict[str, Optional[MonitoredTarget]] = {}
        for change in changes:
            if change.target_id not in targets:
                targets[change.target_id] = await self.store.get_target(change.target_id)

        by_type = Counter(
            change.change_type.value if change.change_type else "unclassified" for change in changes
        )
        by_significance = Counter(change.significance.value for change in changes)
        by_target = Counter(_target_label(targets.get(change.target_id), change.target_id) for change in changes)

        highlights = []
        for change in changes:
            if change.significance.rank < Significance.NOTABLE.rank:
                continue
            target = targets.get(change.target_id)
            highlights.append(DigestEntry(
                change_id=change.id,
                target_id=change.target_id,
                target_name=_target_label(target, change.target_id),
                url=target.url if target else "",
                change_type=change.change_type,
                significance=change.significance,
                summary=change.ai_summary,
                detected_at=change.detected_at,
            ))
        highlights.sort(key=lambda entry: (-entry.significance.rank, entry.detected_at))

        digest = ChangeDigest(
            digest_id=digest_id,
            period_start=since,
            period_end=until,
            generated_at=self.clock(),
            total_changes=len(changes),
            targets_changed=len(targets),
            unannotated_changes=sum(1 for change in changes if not change.is_annotated),
            changes_by_type=dict(by_type),
            changes_by_significance=dict(by_significance),
            changes_by_target=dict(by_target),
            highlights=highlights,
        )

        self.logger.info(
            "Generated change digest",
            digest_id=digest_id,
            total_changes=digest.total_changes,
            highlights=len(highlights)
        )
        return digest

    def render_markdown(self, digest: ChangeDigest) -> str:
        """Render a digest as Markdown."""
        lines = [
            "# Change Digest",
            "",
            f"**Period:** {digest.period_start:%Y-%m-%d} - {digest.period_end:%Y-%m-%d}",
            "",
            f"**Changes detected:** {digest.total_changes}",
            f"**Pages changed:** {digest.targets_changed}",
        ]

        if digest.total_changes == 0:
            lines += ["", "No changes were detected in this period."]
            return "\n".join(lines)

        lines += ["", "## By significance", ""]
        for level in sorted(Significance, key=lambda s: -s.rank):
            count = digest.changes_by_significance.get(level.value, 0)
            if count:
                lines.append(f"- {level.value.title()}: {count}")

        lines += ["", "## By type", ""]
        for change_type, count in sorted(digest.changes_by_type.items(), key=lambda item: (-item[1], item[0])):
            lines.append(f"- {change_type.title()}: {count}")

        if digest.highlights:
            lines += ["", "## Highlights", ""]
            for entry in digest.highlights:
                summary = entry.summary or "Awaiting analysis"
                lines.append(f"- **{entry.target_name}** ({entry.significance.value}): {summary}")

        if digest.unannotated_changes:
            lines += ["", f"_{digest.unannotated_changes} change(s) are still awaiting analysis._"]

        return "\n".join(lines)

    def export_json(self, digest: ChangeDigest) -> Path:
        """Export digest to a JSON file in the reports directory."""
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        filepath = self.reports_dir / f"digest_{digest.period_end:%Y%m%d}.json"

        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(digest.model_dump(mode="json"), f, indent=2, ensure_ascii=False)

        self.logger.info("Exported JSON digest", filepath=str(filepath))
        return filepath

    def export_markdown(self, digest: ChangeDigest) -> Path:
        """Export rendered digest to a Markdown file in the reports directory."""
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        filepath = self.reports_dir / f"digest_{digest.period_end:%Y%m%d}.md"
        filepath.write_text(self.render_markdown(digest), encoding='utf-8')

        self.logger.info("Exported Markdown digest", filepath=str(filepath))
        return filepath


def _target_label(target: Optional[MonitoredTarget], target_id: str) -> str:
    return target.name if target else target_id

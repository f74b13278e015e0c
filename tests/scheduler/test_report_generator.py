"""
Unit tests for digest generation and export.
"""

import json
from datetime import datetime

import pytest

from crawler.models import ChangeRecord, ChangeType, Significance
from scheduler.models import ReportConfig
from scheduler.report_generator import DigestGenerator

UNTIL = datetime(2024, 1, 8, 0, 0, 0)


def add_change(store, target_id, detected_at, significance=Significance.MINOR, change_type=None, summary=None):
    change = ChangeRecord(
        target_id=target_id,
        snapshot_after_id="s",
        significance=significance,
        change_type=change_type,
        ai_summary=summary,
        detected_at=detected_at,
    )
    store.changes[change.id] = change
    return change


class TestDigestGenerator:
    """Test cases for DigestGenerator."""

    @pytest.fixture
    def generator(self, store, tmp_path, clock):
        clock.now = UNTIL
        return DigestGenerator(store, ReportConfig(reports_dir=str(tmp_path / "reports")), clock=clock)

    @pytest.mark.asyncio
    async def test_aggregates_window(self, generator, store, acme_target):
        other = store.add_target(name="Globex", url="https://globex.example.com/")
        major = add_change(
            store, acme_target.id, datetime(2024, 1, 3), Significance.MAJOR, ChangeType.PRICING, "Price doubled"
        )
        notable = add_change(
            store, other.id, datetime(2024, 1, 2), Significance.NOTABLE, ChangeType.FEATURES, "New plan"
        )
        add_change(store, acme_target.id, datetime(2024, 1, 4))
        add_change(store, acme_target.id, datetime(2023, 12, 1), Significance.MAJOR)

        digest = await generator.generate()

        assert digest.period_end == UNTIL
        assert digest.period_start == datetime(2024, 1, 1)
        assert digest.total_changes == 3
        assert digest.targets_changed == 2
        assert digest.unannotated_changes == 1
        assert digest.changes_by_type == {"pricing": 1, "features": 1, "unclassified": 1}
        assert digest.changes_by_significance == {"major": 1, "notable": 1, "minor": 1}
        assert digest.changes_by_target == {"Acme": 2, "Globex": 1}
        assert [entry.change_id for entry in digest.highlights] == [major.id, notable.id]
        assert digest.highlights[0].target_name == "Acme"

    @pytest.mark.asyncio
    async def test_empty_window(self, generator):
        digest = await generator.generate()

        assert digest.total_changes == 0
        assert digest.highlights == []
        assert "No changes were detected in this period." in generator.render_markdown(digest)

    @pytest.mark.asyncio
    async def test_explicit_window(self, generator, store, acme_target):
        add_change(store, acme_target.id, datetime(2024, 1, 3))
        add_change(store, acme_target.id, datetime(2024, 1, 5))

        digest = await generator.generate(since=datetime(2024, 1, 4), until=datetime(2024, 1, 6))
        assert digest.total_changes == 1

    @pytest.mark.asyncio
    async def test_render_markdown(self, generator, store, acme_target):
        add_change(store, acme_target.id, datetime(2024, 1, 3), Significance.MAJOR, ChangeType.PRICING, "Price doubled")
        add_change(store, acme_target.id, datetime(2024, 1, 4))

        markdown = generator.render_markdown(await generator.generate())

        assert markdown.startswith("# Change Digest")
        assert "- Major: 1" in markdown
        assert "- Pricing: 1" in markdown
        assert "**Acme** (major): Price doubled" in markdown
        assert "1 change(s) are still awaiting analysis" in markdown

    @pytest.mark.asyncio
    async def test_exports(self, generator, store, acme_target, tmp_path):
        add_change(store, acme_target.id, datetime(2024, 1, 3), Significance.NOTABLE, ChangeType.CONTENT, "Copy edit")
        digest = await generator.generate()

        json_path = generator.export_json(digest)
        markdown_path = generator.export_markdown(digest)

        assert json_path == tmp_path / "reports" / "digest_20240108.json"
        data = json.loads(json_path.read_text(encoding="utf-8"))
        assert data["total_changes"] == 1
        assert data["highlights"][0]["summary"] == "Copy edit"
        assert markdown_path.read_text(encoding="utf-8").startswith("# Change Digest")

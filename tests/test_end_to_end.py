"""
End-to-end pipeline scenarios against the in-memory store.
Crawl, detect, diff and annotate a single monitored site across several passes.
"""

import httpx
import pytest

from crawler.models import ChangeType, Significance
from enrichment.annotator import ChangeAnnotator
from enrichment.client import GeminiClient
from enrichment.models import AnnotatorConfig
from scheduler.crawl_scheduler import CrawlScheduler
from scheduler.models import SchedulerConfig
from scheduler.pacing import PacedTaskRunner

from conftest import ACME_URL, FakeSleep

WIDGETS = "<html><body><h1>Welcome to Acme.</h1><p>We sell widgets.</p></body></html>"
GADGETS = "<html><body><h1>Welcome to Acme.</h1><p>We sell gadgets now.</p></body></html>"


def unreachable(request):
    raise httpx.ConnectError("AI service unreachable", request=request)


class TestPipeline:
    """Crawl and annotation passes over one target."""

    @pytest.fixture
    def scheduler(self, store, detector, clock):
        config = SchedulerConfig(crawl_delay_seconds=0)
        return CrawlScheduler(store, detector, config, runner=PacedTaskRunner(0, sleep=FakeSleep()), clock=clock)

    @pytest.fixture
    def annotator(self, store, clock):
        config = AnnotatorConfig(api_key="key", delay_seconds=0)
        client = GeminiClient(config, transport=httpx.MockTransport(unreachable))
        return ChangeAnnotator(store, client, config, sleep=FakeSleep(), clock=clock)

    @pytest.mark.asyncio
    async def test_first_crawl_records_baseline(self, scheduler, store, fetcher, acme_target):
        fetcher.pages[ACME_URL] = WIDGETS

        result = await scheduler.run()

        assert result.processed == 1
        assert result.changed == 0
        assert len(store.snapshots) == 1
        assert len(store.changes) == 0

    @pytest.mark.asyncio
    async def test_second_crawl_records_change(self, scheduler, store, fetcher, acme_target, clock):
        fetcher.pages[ACME_URL] = WIDGETS
        await scheduler.run()

        clock.advance(hours=24)
        fetcher.pages[ACME_URL] = GADGETS
        result = await scheduler.run()

        assert result.changed == 1
        assert len(store.snapshots) == 2
        assert len(store.changes) == 1
        change = next(iter(store.changes.values()))
        assert "+ We sell gadgets now" in change.diff_content
        assert "- We sell widgets" in change.diff_content
        assert change.ai_summary is None

    @pytest.mark.asyncio
    async def test_unchanged_crawl_adds_nothing(self, scheduler, store, fetcher, acme_target, clock):
        fetcher.pages[ACME_URL] = WIDGETS
        await scheduler.run()

        clock.advance(hours=24)
        result = await scheduler.run()

        assert result.unchanged == 1
        assert len(store.snapshots) == 1
        assert store.targets[acme_target.id].last_checked_at == clock.now

    @pytest.mark.asyncio
    async def test_unreachable_ai_yields_fallback(self, scheduler, annotator, store, fetcher, acme_target, clock):
        fetcher.pages[ACME_URL] = WIDGETS
        await scheduler.run()
        clock.advance(hours=24)
        fetcher.pages[ACME_URL] = GADGETS
        await scheduler.run()

        result = await annotator.annotate_pending()

        assert result.annotated == 1
        assert result.fallbacks == 1
        change = next(iter(store.changes.values()))
        assert change.change_type == ChangeType.CONTENT
        assert change.significance == Significance.MINOR
        assert change.ai_summary == "Change detected on Acme pricing page"
        assert change.ai_analysis

        # Annotated changes are not picked up again
        again = await annotator.annotate_pending()
        assert again.pending == 0

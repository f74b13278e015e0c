"""
Unit tests for the change annotator.
The text-generation client is an AsyncMock; the store is in-memory.
"""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from crawler.models import ChangeRecord, ChangeType, PageCategory, Significance
from enrichment.annotator import DEFAULT_FALLBACK_ANALYSIS, ChangeAnnotator, fallback_result
from enrichment.client import AnnotationError, GeminiClient
from enrichment.models import AnnotationContext, AnnotatorConfig
from scheduler.diffing import PREVIOUS_VERSION_UNAVAILABLE

from conftest import FakeMonotonic, FakeSleep

VALID = (
    '{"summary": "Acme switched to gadgets", "analysis": "Product focus moved.", '
    '"changeType": "messaging", "significance": "notable"}'
)


def make_context(**overrides):
    fields = {
        "target_name": "Acme",
        "category": PageCategory.PRICING,
        "url": "https://acme.example.com/",
        "diff": "**Added:**\n+ We sell gadgets now",
        "before_excerpt": "Welcome to Acme. We sell widgets.",
        "after_excerpt": "Welcome to Acme. We sell gadgets now.",
    }
    fields.update(overrides)
    return AnnotationContext(**fields)


class TestChangeAnnotator:
    """Test cases for ChangeAnnotator."""

    @pytest.fixture
    def client(self):
        client = AsyncMock(spec=GeminiClient)
        client.generate.return_value = VALID
        return client

    @pytest.fixture
    def sleep(self):
        return FakeSleep(FakeMonotonic())

    @pytest.fixture
    def annotator(self, store, client, clock, sleep):
        config = AnnotatorConfig(api_key="key", delay_seconds=1.0, excerpt_chars=20)
        return ChangeAnnotator(store, client, config, sleep=sleep, clock=clock, monotonic=sleep.monotonic)

    def test_prompt_contains_context(self, annotator):
        prompt = annotator.build_prompt(make_context())

        assert "SITE: Acme" in prompt
        assert "PAGE TYPE: pricing" in prompt
        assert "URL: https://acme.example.com/" in prompt
        assert "+ We sell gadgets now" in prompt
        assert "CONTENT BEFORE (excerpt):\nWelcome to Acme. We " in prompt
        assert '"changeType"' in prompt
        assert "Respond ONLY with the JSON object" in prompt

    def test_prompt_excerpts_are_bounded(self, annotator):
        prompt = annotator.build_prompt(make_context(after_excerpt="x" * 100))
        assert "x" * 20 in prompt
        assert "x" * 21 not in prompt

    def test_prompt_without_previous_content(self, annotator):
        prompt = annotator.build_prompt(make_context(before_excerpt=None))
        assert "CONTENT BEFORE" not in prompt
        assert "CONTENT AFTER (excerpt):" in prompt

    def test_fallback_result(self):
        result = fallback_result(make_context())
        assert result.summary == "Change detected on Acme pricing page"
        assert result.analysis == DEFAULT_FALLBACK_ANALYSIS
        assert result.change_type == ChangeType.CONTENT
        assert result.significance == Significance.MINOR

    def test_fallback_keeps_bounded_raw_text(self):
        result = fallback_result(make_context(), raw_text="  " + "y" * 600)
        assert result.analysis == "y" * 500

    @pytest.mark.asyncio
    async def test_analyze_parsed(self, annotator):
        outcome = await annotator.analyze(make_context())

        assert outcome.is_fallback is False
        assert outcome.result.change_type == ChangeType.MESSAGING
        assert outcome.result.significance == Significance.NOTABLE

    @pytest.mark.asyncio
    async def test_analyze_service_failure_falls_back(self, annotator, client):
        client.generate.side_effect = AnnotationError("unreachable")

        outcome = await annotator.analyze(make_context())

        assert outcome.is_fallback is True
        assert outcome.reason == "unreachable"
        assert outcome.result.change_type == ChangeType.CONTENT
        assert outcome.result.significance == Significance.MINOR

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"candidates": [{"content": "blocked"}]},
        {"candidates": [{"content": {"parts": [{"text": None}]}}]},
    ])
    async def test_analyze_malformed_service_body_falls_back(self, store, clock, sleep, body):
        config = AnnotatorConfig(api_key="key", api_base="https://ai.example.com/v1beta/")
        client = GeminiClient(config, transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)))
        annotator = ChangeAnnotator(store, client, config, sleep=sleep, clock=clock, monotonic=sleep.monotonic)

        outcome = await annotator.analyze(make_context())

        assert outcome.is_fallback is True
        assert outcome.result.summary == "Change detected on Acme pricing page"
        assert outcome.result.change_type == ChangeType.CONTENT

    @pytest.mark.asyncio
    async def test_analyze_unparsable_falls_back_with_text(self, annotator, client):
        client.generate.return_value = "The pricing page now mentions gadgets."

        outcome = await annotator.analyze(make_context())

        assert outcome.is_fallback is True
        assert outcome.result.analysis == "The pricing page now mentions gadgets."

    @pytest.mark.asyncio
    async def test_annotate_change_writes_fields(self, annotator, store, sample_change, clock):
        outcome = await annotator.annotate_change(sample_change.id)

        stored = store.changes[sample_change.id]
        assert outcome.is_fallback is False
        assert stored.ai_summary == "Acme switched to gadgets"
        assert stored.ai_analysis == "Product focus moved."
        assert stored.change_type == ChangeType.MESSAGING
        assert stored.significance == Significance.NOTABLE
        assert stored.annotated_at == clock.now
        assert stored.diff_content == sample_change.diff_content
        assert stored.snapshot_before_id == sample_change.snapshot_before_id

    @pytest.mark.asyncio
    async def test_annotate_change_uses_snapshot_context(self, annotator, client, sample_change):
        await annotator.annotate_change(sample_change.id)

        prompt = client.generate.await_args.args[0]
        assert "SITE: Acme" in prompt
        assert "We sell gadgets now" in prompt

    @pytest.mark.asyncio
    async def test_reannotation_overwrites(self, annotator, store, client, sample_change):
        await annotator.annotate_change(sample_change.id)
        client.generate.return_value = (
            '{"summary": "Second opinion", "analysis": "a", "changeType": "content", "significance": "minor"}'
        )

        await annotator.annotate_change(sample_change.id)

        assert store.changes[sample_change.id].ai_summary == "Second opinion"

    @pytest.mark.asyncio
    async def test_missing_before_snapshot_still_annotates(self, annotator, store, client, acme_target, sample_change):
        store.snapshots.pop(sample_change.snapshot_before_id)

        outcome = await annotator.annotate_change(sample_change.id)

        assert outcome is not None
        assert "CONTENT BEFORE" not in client.generate.await_args.args[0]

    @pytest.mark.asyncio
    async def test_missing_target_skips(self, annotator, store, client, sample_change):
        store.targets.clear()

        assert await annotator.annotate_change(sample_change.id) is None
        client.generate.assert_not_awaited()
        assert store.changes[sample_change.id].ai_summary is None

    @pytest.mark.asyncio
    async def test_unknown_change(self, annotator):
        assert await annotator.annotate_change("missing") is None

    @pytest.mark.asyncio
    async def test_change_without_diff_uses_placeholder(self, annotator, store, client, acme_target, sample_change):
        change = ChangeRecord(target_id=acme_target.id, snapshot_after_id=sample_change.snapshot_after_id)
        store.changes[change.id] = change

        await annotator.annotate_change(change.id)

        assert PREVIOUS_VERSION_UNAVAILABLE in client.generate.await_args.args[0]

    @pytest.mark.asyncio
    async def test_annotate_pending_paces_calls(self, annotator, store, sleep, acme_target, sample_change):
        second = ChangeRecord(
            target_id=acme_target.id,
            snapshot_after_id=sample_change.snapshot_after_id,
            detected_at=sample_change.detected_at.replace(hour=13),
        )
        store.changes[second.id] = second

        result = await annotator.annotate_pending()

        assert result.pending == 2
        assert result.annotated == 2
        assert result.fallbacks == 0
        assert result.failed == 0
        assert sleep.delays == [1.0]
        assert all(change.ai_summary for change in store.changes.values())

    @pytest.mark.asyncio
    async def test_annotate_pending_counts_fallbacks(self, annotator, client, sample_change):
        client.generate.side_effect = AnnotationError("quota exceeded")

        result = await annotator.annotate_pending()

        assert result.annotated == 1
        assert result.fallbacks == 1

    @pytest.mark.asyncio
    async def test_annotate_pending_survives_write_failure(self, annotator, store, sample_change, persistence_failure):
        store.fail_on["update_change_enrichment"] = persistence_failure("write rejected")

        result = await annotator.annotate_pending()

        assert result.failed == 1
        assert "write rejected" in result.errors[0]
        assert store.changes[sample_change.id].ai_summary is None

    @pytest.mark.asyncio
    async def test_annotate_pending_skips_already_annotated(self, annotator, store, client, sample_change):
        await annotator.annotate_change(sample_change.id)
        client.generate.reset_mock()

        result = await annotator.annotate_pending()

        assert result.pending == 0
        client.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_annotate_pending_honors_limit_and_cancel(self, annotator, store, acme_target, sample_change):
        for hour in (13, 14):
            change = ChangeRecord(
                target_id=acme_target.id,
                snapshot_after_id=sample_change.snapshot_after_id,
                detected_at=sample_change.detected_at.replace(hour=hour),
            )
            store.changes[change.id] = change

        limited = await annotator.annotate_pending(limit=1)
        assert limited.pending == 1
        assert store.changes[sample_change.id].ai_summary is not None

        cancel = asyncio.Event()
        cancel.set()
        cancelled = await annotator.annotate_pending(cancel_event=cancel)
        assert cancelled.annotated == 0
        assert cancelled.skipped == 2

"""
AI enrichment of detected changes.

This module provides:
- Prompt construction from change context
- Analysis with a deterministic fallback that never raises
- Single-change and pending-pass annotation
"""

import asyncio
import time
from datetime import datetime
from typing import Awaitable, Callable, Optional

import structlog

from crawler.database import MonitorStore
from crawler.exceptions import PersistenceError
from crawler.models import ChangeRecord, ChangeType, Significance, utcnow
from enrichment.client import AnnotationError, GeminiClient
from enrichment.models import (
    AnalysisOutcome,
    AnalysisResult,
    AnnotationContext,
    AnnotationRunResult,
    AnnotatorConfig,
    FallbackAnalysis,
    ParsedAnalysis,
)
from enrichment.parsing import parse_analysis
from scheduler.diffing import PREVIOUS_VERSION_UNAVAILABLE
from scheduler.pacing import PacedTaskRunner

logger = structlog.get_logger(__name__)

DEFAULT_FALLBACK_ANALYSIS = "Content on the monitored page has been updated. Review the diff for details."
FALLBACK_ANALYSIS_CHARS = 500

PROMPT_TEMPLATE = """You are analyzing a change to a monitored website. Analyze the following change and provide insights.

SITE: {target_name}
PAGE TYPE: {category}
URL: {url}

CHANGES DETECTED:
{diff}
{before_section}
CONTENT AFTER (excerpt):
{after_excerpt}

Respond in the following JSON format:
{{
  "summary": "A brief 1-2 sentence summary of what changed",
  "analysis": "A short analysis (2-3 sentences) of what this change means and any recommended actions",
  "changeType": "one of: pricing, features, messaging, design, content, other",
  "significance": "one of: minor (cosmetic/small changes), notable (worth knowing), major (significant strategic change)"
}}

Respond ONLY with the JSON object, no other text."""


def fallback_result(context: AnnotationContext, raw_text: Optional[str] = None) -> AnalysisResult:
    """Deterministic enrichment used whenever the AI answer is unavailable or unusable."""
    analysis = (raw_text or "").strip()[:FALLBACK_ANALYSIS_CHARS].strip() or DEFAULT_FALLBACK_ANALYSIS
    return AnalysisResult(
        summary=f"Change detected on {context.target_name} {context.category.value} page",
        analysis=analysis,
        change_type=ChangeType.CONTENT,
        significance=Significance.MINOR,
    )


class ChangeAnnotator:
    """Enriches change records with an AI classification and summary."""

    def __init__(
        self,
        store: MonitorStore,
        client: GeminiClient,
        config: AnnotatorConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the annotator.

        Args:
            store: Change/snapshot store
            client: Text-generation client
            config: Annotator configuration
            sleep: Awaitable used between AI calls
            clock: Source of annotated_at timestamps
            monotonic: Clock used for pass deadlines
        """
        self.store = store
        self.client = client
        self.config = config
        self.clock = clock
        self.runner = PacedTaskRunner(config.delay_seconds, sleep=sleep, clock=monotonic)
        self.logger = logger.bind(component="change_annotator")

    def build_prompt(self, context: AnnotationContext) -> str:
        """Render the fixed prompt with bounded excerpts."""
        limit = self.config.excerpt_chars
        before_section = ""
        if context.before_excerpt is not None:
            before_section = f"\nCONTENT BEFORE (excerpt):\n{context.before_excerpt[:limit]}\n"

        return PROMPT_TEMPLATE.format(
            target_name=context.target_name,
            category=context.category.value,
            url=context.url,
            diff=context.diff,
            before_section=before_section,
            after_excerpt=context.after_excerpt[:limit],
        )

    async def analyze(self, context: AnnotationContext) -> AnalysisOutcome:
        """
        Classify and summarize a change. Never raises.

        Returns:
            ParsedAnalysis when the service answered with a usable object,
            otherwise FallbackAnalysis
        """
        try:
            text = await self.client.generate(self.build_prompt(context))
        except AnnotationError as e:
            self.logger.warning("AI analysis unavailable, using fallback", url=context.url, error=str(e))
            return FallbackAnalysis(result=fallback_result(context), reason=str(e))

        result = parse_analysis(text)
        if result is None:
            self.logger.warning("AI response unparsable, using fallback", url=context.url, chars=len(text))
            return FallbackAnalysis(
                result=fallback_result(context, raw_text=text),
                reason="unparsable response",
                raw_text=text,
            )

        return ParsedAnalysis(result=result, raw_text=text)

    async def build_context(self, change: ChangeRecord) -> Optional[AnnotationContext]:
        """Load target and snapshots for a change; None when the target or after snapshot is gone."""
        target = await self.store.get_target(change.target_id)
        after = await self.store.get_snapshot(change.snapshot_after_id)
        if target is None or after is None:
            self.logger.warning(
                "Cannot build annotation context",
                change_id=change.id,
                target_found=target is not None,
                snapshot_found=after is not None
            )
            return None

        before = None
        if change.snapshot_before_id:
            before = await self.store.get_snapshot(change.snapshot_before_id)

        return AnnotationContext(
            target_name=target.name,
            category=target.category,
            url=target.url,
            diff=change.diff_content or PREVIOUS_VERSION_UNAVAILABLE,
            before_excerpt=before.content if before is not None else None,
            after_excerpt=after.content,
        )

    async def annotate_change(self, change_id: str) -> Optional[AnalysisOutcome]:
        """
        Analyze one change and write its enrichment fields (last write wins).

        Returns:
            The outcome written, or None when the change or its context is missing

        Raises:
            PersistenceError: the store could not be read or written
        """
        change = await self.store.get_change(change_id)
        if change is None:
            self.logger.warning("Change not found", change_id=change_id)
            return None

        context = await self.build_context(change)
        if context is None:
            return None

        outcome = await self.analyze(context)
        result = outcome.result
        updated = await self.store.update_change_enrichment(
            change.id,
            change_type=result.change_type,
            significance=result.significance,
            ai_summary=result.summary,
            ai_analysis=result.analysis,
            annotated_at=self.clock(),
        )
        if not updated:
            self.logger.warning("Change removed before enrichment was written", change_id=change.id)
            return None

        self.logger.info(
            "Annotated change",
            change_id=change.id,
            change_type=result.change_type.value,
            significance=result.significance.value,
            fallback=outcome.is_fallback
        )
        return outcome

    async def annotate_pending(
        self,
        limit: Optional[int] = None,
        deadline: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AnnotationRunResult:
        """
        Annotate every change lacking a summary, paced between AI calls.

        Per-change failures are logged and counted; the pass always completes.

        Raises:
            PersistenceError: the pending list itself could not be loaded
        """
        started = self.runner.clock()
        pending = await self.store.list_unannotated_changes(limit=limit)
        result = AnnotationRunResult(pending=len(pending))
        self.logger.info("Starting annotation pass", pending=len(pending))

        report = await self.runner.run(
            pending,
            lambda change: self.annotate_change(change.id),
            deadline=deadline,
            cancel_event=cancel_event,
        )

        for task in report.outcomes:
            if not task.ok:
                result.failed += 1
                result.errors.append(f"{task.item.id}: {task.error}")
                if isinstance(task.error, PersistenceError):
                    self.logger.error("Failed to persist annotation", change_id=task.item.id, error=str(task.error))
                else:
                    self.logger.error(
                        "Unexpected annotation failure",
                        change_id=task.item.id,
                        error=f"{type(task.error).__name__}: {task.error}"
                    )
            elif task.value is None:
                result.skipped += 1
            else:
                result.annotated += 1
                if task.value.is_fallback:
                    result.fallbacks += 1

        result.skipped += len(report.skipped)
        result.duration_seconds = self.runner.clock() - started

        self.logger.info(
            "Annotation pass completed",
            annotated=result.annotated,
            fallbacks=result.fallbacks,
            skipped=result.skipped,
            failed=result.failed,
            duration_seconds=round(result.duration_seconds, 3)
        )
        return result

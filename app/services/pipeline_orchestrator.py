"""Pipeline orchestrator: drives one keyword research run through its stages."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timezone

from app.agents.competitor_analyzer import CompetitorAnalyzerAgent, CompetitorAnalyzerInput
from app.agents.keyword_expander import KeywordExpanderAgent, KeywordExpanderInput
from app.agents.ppc_strategist import PPCStrategistAgent, PPCStrategistInput, StrategistReport
from app.core.exceptions import InvalidStatusTransitionError
from app.integrations.dataforseo import DataForSEOClient, KeywordDataProvider
from app.repositories.pipeline_run_repository import PipelineRunStore
from app.schemas.keyword import (
    KeywordGap,
    PipelineMetadata,
    PipelineResult,
    PipelineSummary,
    ScoredKeyword,
)
from app.schemas.pipeline import STATUS_ORDER, TERMINAL_STATUSES, PipelineJobInput
from app.services.dedup import deduplicate_keywords
from app.services.keyword_tools import ToolCache
from app.services.scoring import rank_keywords

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[], AbstractAsyncContextManager[KeywordDataProvider]]


def can_transition(current: str, requested: str) -> bool:
    """Statuses only move forward; failed is reachable from any non-terminal state."""
    if current in TERMINAL_STATUSES:
        return False
    if requested == "failed":
        return True
    if current not in STATUS_ORDER or requested not in STATUS_ORDER:
        return False
    return STATUS_ORDER.index(requested) > STATUS_ORDER.index(current)


def build_summary(
    keywords: list[ScoredKeyword],
    gaps: list[KeywordGap],
    report: StrategistReport,
) -> PipelineSummary:
    avg_cpc = sum(k.cpc for k in keywords) / len(keywords) if keywords else 0.0
    return PipelineSummary(
        total_keywords_found=len(keywords),
        sweet_spot_count=sum(1 for k in keywords if k.tier == "sweet-spot"),
        high_value_count=sum(1 for k in keywords if k.tier == "high-value"),
        avg_cpc=round(avg_cpc, 2),
        top_keyword=keywords[0].keyword if keywords else "—",
        competitor_gaps=len(gaps),
        market_opportunity=report.market_opportunity,
        recommended_budget=report.recommended_budget,
        top_picks=report.top_keywords,
        next_steps=report.next_steps,
    )


class PipelineOrchestrator:
    """Runs expand -> analyze -> score -> report for one queued run.

    Every status write is a conditional update on the expected current status,
    so only the worker that claimed the run can move it forward.
    """

    def __init__(
        self,
        store: PipelineRunStore,
        *,
        provider_factory: ProviderFactory | None = None,
        expander: KeywordExpanderAgent | None = None,
        analyzer: CompetitorAnalyzerAgent | None = None,
        strategist: PPCStrategistAgent | None = None,
    ) -> None:
        self.store = store
        self.provider_factory: ProviderFactory = provider_factory or DataForSEOClient
        self.expander = expander or KeywordExpanderAgent()
        self.analyzer = analyzer or CompetitorAnalyzerAgent()
        self.strategist = strategist or PPCStrategistAgent()
        self._status = "queued"

    async def execute(self, run_id: str) -> PipelineResult | None:
        """Execute a queued run; returns None when the run was not claimable."""
        run = await self.store.claim(run_id, stage_detail="Expanding seed keywords...")
        if run is None:
            logger.info("Skipping run that is no longer queued", extra={"run_id": run_id})
            return None

        logger.info(
            "Pipeline run started",
            extra={
                "run_id": run_id,
                "country": run.config.target_country,
                "seeds": len(run.config.seed_keywords),
                "competitors": len(run.config.competitors),
                "schedule_key": run.schedule_key,
            },
        )
        self._status = "expanding"
        try:
            result = await self._run_stages(run_id, run.config)
        except Exception as exc:
            await self.fail_run(run_id, str(exc) or type(exc).__name__)
            raise

        logger.info(
            "Pipeline run completed",
            extra={
                "run_id": run_id,
                "keywords": result.summary.total_keywords_found,
                "gaps": result.summary.competitor_gaps,
                "duration_ms": result.metadata.duration,
            },
        )
        return result

    async def fail_run(self, run_id: str, error: str) -> bool:
        """Mark a non-terminal run failed with the error message verbatim."""
        run = await self.store.get(run_id)
        if run is None or run.status in TERMINAL_STATUSES:
            return False
        failed = await self.store.transition(
            run_id,
            from_status=run.status,
            to_status="failed",
            stage_detail=None,
            error=error,
            completed=True,
        )
        if failed:
            logger.warning(
                "Pipeline run failed",
                extra={"run_id": run_id, "status_at_failure": run.status, "error": error},
            )
        return failed

    async def _transition(
        self,
        run_id: str,
        to_status: str,
        *,
        stage_detail: str | None,
        result: PipelineResult | None = None,
    ) -> None:
        current = self._status
        if not can_transition(current, to_status):
            raise InvalidStatusTransitionError(run_id, current, to_status)
        applied = await self.store.transition(
            run_id,
            from_status=current,
            to_status=to_status,
            stage_detail=stage_detail,
            result=result.to_json_dict() if result is not None else None,
            completed=to_status == "completed",
        )
        if not applied:
            raise InvalidStatusTransitionError(run_id, current, to_status)
        self._status = to_status
        logger.info(
            "Pipeline stage transition",
            extra={"run_id": run_id, "from_status": current, "to_status": to_status},
        )

    async def _run_stages(self, run_id: str, job: PipelineJobInput) -> PipelineResult:
        started = time.perf_counter()
        cache = ToolCache()

        async with self.provider_factory() as provider:
            try:
                # Stage 1: expansion
                expander_ctx = self.expander.tool_context(
                    provider, job.target_country, cache=cache, run_id=run_id
                )
                expansion = await self.expander.run(
                    KeywordExpanderInput(seed_keywords=job.seed_keywords, country_code=job.target_country),
                    expander_ctx,
                )
                await self.store.set_stage_detail(
                    run_id,
                    status="expanding",
                    stage_detail=f"Found {len(expansion.all_keywords)} keywords. Analyzing competitors...",
                )

                # Stage 2: competitor gaps
                await self._transition(
                    run_id,
                    "analyzing",
                    stage_detail=f"Analyzing {len(job.competitors)} competitor domains...",
                )
                analyzer_ctx = self.analyzer.tool_context(
                    provider, job.target_country, cache=cache, run_id=run_id
                )
                analysis = await self.analyzer.run(
                    CompetitorAnalyzerInput(competitors=job.competitors, country_code=job.target_country),
                    analyzer_ctx,
                )
                gaps = deduplicate_keywords(analysis.gaps)

                # Stage 3: scoring
                await self._transition(run_id, "scoring", stage_detail="Scoring and ranking keywords...")
                merged = deduplicate_keywords(
                    [*expansion.all_keywords, *(gap.as_raw_keyword() for gap in gaps)]
                )
                keywords = rank_keywords(merged, job.cpc_range)
                logger.info(
                    "Keywords scored",
                    extra={
                        "run_id": run_id,
                        "unique_keywords": len(keywords),
                        "sweet_spot": sum(1 for k in keywords if k.tier == "sweet-spot"),
                        "high_value": sum(1 for k in keywords if k.tier == "high-value"),
                    },
                )

                # Stage 4: report
                await self._transition(run_id, "reporting", stage_detail="Generating strategic report...")
                strategist_ctx = self.strategist.tool_context(
                    provider, job.target_country, cache=cache, run_id=run_id
                )
                report = await self.strategist.run(
                    PPCStrategistInput(
                        country_code=job.target_country,
                        cpc_range=job.cpc_range,
                        keywords=keywords,
                        gaps=gaps,
                        product=job.product,
                    ),
                    strategist_ctx,
                )
            finally:
                # stops provider calls still in flight when the run fails or expires
                await cache.cancel_pending()

        result = PipelineResult(
            keywords=keywords,
            gaps=gaps,
            summary=build_summary(keywords, gaps, report),
            metadata=PipelineMetadata(
                country=job.target_country,
                seed_keywords=job.seed_keywords,
                competitors=job.competitors,
                timestamp=datetime.now(timezone.utc).isoformat(),
                duration=int((time.perf_counter() - started) * 1000),
            ),
        )
        await self._transition(run_id, "completed", stage_detail=None, result=result)
        return result

"""Unit tests for the pipeline orchestrator stage machine."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import pytest

from app.agents.competitor_analyzer import CompetitorAnalyzerAgent
from app.agents.keyword_expander import KeywordExpanderAgent
from app.agents.planner import PlanRequest
from app.agents.ppc_strategist import PPCStrategistAgent
from app.core.exceptions import StageOutputError
from app.repositories.memory import InMemoryPipelineRunStore
from app.schemas.keyword import TIERS
from app.schemas.pipeline import PipelineJobInput
from app.services.pipeline_orchestrator import PipelineOrchestrator, can_transition


class _Provider:
    def __init__(self) -> None:
        self.opened = 0
        self.closed = 0
        self.events: list[str] = []

    async def keywords_for_keywords(self, seeds: list[str], country_code: str) -> list[dict[str, Any]]:
        return [
            {"keyword": "ap automation software", "volume": 1300, "cpc": 4.2, "competition": 0.18, "intent": "transactional"},
            {"keyword": "what is ap automation", "volume": 900, "cpc": 1.1, "competition": 0.05},
        ]

    async def keyword_suggestions(self, keyword: str, country_code: str, limit: int = 500) -> list[dict[str, Any]]:
        return [{"keyword": "AP Automation Software", "volume": 1000, "cpc": 4.0, "competition": 0.2}]

    async def related_keywords(
        self, keyword: str, country_code: str, depth: int = 2, limit: int = 500
    ) -> list[dict[str, Any]]:
        return [{"keyword": "accounts payable automation", "volume": 2400, "cpc": 7.5, "competition": 0.55, "intent": "commercial"}]

    async def search_volume(self, keywords: list[str], country_code: str) -> list[dict[str, Any]]:
        return []

    async def ranked_keywords(self, target: str, country_code: str, limit: int = 1000) -> list[dict[str, Any]]:
        return [
            {"keyword": f"{target} pricing", "volume": 600, "cpc": 5.0, "competition": 0.12, "intent": "transactional", "rank_group": 1},
            {"keyword": "invoice capture", "volume": 350, "cpc": 3.1, "competition": 0.4, "rank_group": 7},
        ]

    async def keywords_for_site(self, target: str, country_code: str) -> list[dict[str, Any]]:
        return []

    async def domain_intersection(
        self,
        target1: str,
        target2: str,
        country_code: str,
        intersections: bool = True,
        limit: int = 1000,
    ) -> list[dict[str, Any]]:
        return []

    async def ad_traffic_by_keywords(self, keywords: list[str], country_code: str, bid: float) -> list[dict[str, Any]]:
        return []


class _Planner:
    def __init__(self, output: Any) -> None:
        self.output = output

    async def plan(self, request: PlanRequest[Any]) -> Any:
        if isinstance(self.output, Exception):
            raise self.output
        return self.output


class _RecordingStore(InMemoryPipelineRunStore):
    def __init__(self) -> None:
        super().__init__()
        self.history: list[tuple[str, str | None]] = []

    async def claim(self, run_id: str, *, stage_detail: str) -> Any:
        claimed = await super().claim(run_id, stage_detail=stage_detail)
        if claimed is not None:
            self.history.append((claimed.status, stage_detail))
        return claimed

    async def set_stage_detail(self, run_id: str, *, status: str, stage_detail: str) -> bool:
        applied = await super().set_stage_detail(run_id, status=status, stage_detail=stage_detail)
        if applied:
            self.history.append((status, stage_detail))
        return applied

    async def transition(self, run_id: str, **kwargs: Any) -> bool:
        applied = await super().transition(run_id, **kwargs)
        if applied:
            self.history.append((kwargs["to_status"], kwargs.get("stage_detail")))
        return applied


REPORT = {
    "top_keywords": [
        {"keyword": "ap automation software", "volume": 1300, "cpc": 4.2, "intent": "transactional", "tier": "sweet-spot", "reason": "Low competition buyer term"}
    ],
    "market_opportunity": "Growing UK mid-market demand",
    "recommended_budget": "2,000/month",
    "next_steps": ["Launch exact-match campaign", "Add competitor pricing landing pages"],
}

JOB = PipelineJobInput.model_validate(
    {
        "seedKeywords": ["ap automation"],
        "targetCountry": "GB",
        "competitors": ["bill.com", "tipalti.com"],
        "cpcRange": {"min": 2, "max": 6},
    }
)


def _orchestrator(
    store: InMemoryPipelineRunStore,
    provider: _Provider,
    *,
    analyzer_output: Any = None,
    strategist_output: Any = None,
    expander_planner: Any = None,
) -> PipelineOrchestrator:
    @asynccontextmanager
    async def provider_factory() -> AsyncIterator[_Provider]:
        provider.opened += 1
        try:
            yield provider
        finally:
            provider.closed += 1
            provider.events.append("closed")

    if analyzer_output is None:
        analyzer_output = {
            "gaps": [
                {"keyword": "bill.com pricing", "volume": 600, "competition": 0.12, "intent": "transactional", "competitor_domain": "bill.com", "gap_type": "low-competition-high-intent"},
                {"keyword": "tipalti.com pricing", "volume": 600, "competition": 0.12, "intent": "transactional", "competitor_domain": "TIPALTI.com", "gap_type": "low-competition-high-intent"},
                {"keyword": "corporate cards", "volume": 8000, "competitor_domain": "ramp.com", "gap_type": "untapped"},
            ],
            "summary": "pricing pages are unprotected",
        }
    return PipelineOrchestrator(
        store,
        provider_factory=provider_factory,
        expander=KeywordExpanderAgent(
            planner=expander_planner or _Planner({"all_keywords": [], "summary": "none"}),
            model_override="test:model",
        ),
        analyzer=CompetitorAnalyzerAgent(planner=_Planner(analyzer_output), model_override="test:model"),
        strategist=PPCStrategistAgent(
            planner=_Planner(REPORT if strategist_output is None else strategist_output),
            model_override="test:model",
        ),
    )


@pytest.mark.asyncio
async def test_end_to_end_run_completes_with_scored_result() -> None:
    store = _RecordingStore()
    provider = _Provider()
    run = await store.create(JOB)

    result = await _orchestrator(store, provider).execute(run.id)

    assert result is not None
    saved = await store.get(run.id)
    assert saved is not None
    assert saved.status == "completed"
    assert saved.stage_detail is None
    assert saved.error is None
    assert saved.completed_at is not None
    assert saved.result == result

    summary = result.summary
    assert summary.total_keywords_found > 0
    assert summary.total_keywords_found == len(result.keywords)
    assert {gap.competitor_domain for gap in result.gaps} == {"bill.com", "tipalti.com"}
    assert result.keywords[0].tier in TIERS
    assert summary.top_keyword == result.keywords[0].keyword
    assert summary.market_opportunity == REPORT["market_opportunity"]
    assert summary.next_steps == REPORT["next_steps"]
    assert summary.competitor_gaps == 2
    assert result.metadata.country == "GB"
    assert result.metadata.competitors == ["bill.com", "tipalti.com"]
    assert provider.opened == provider.closed == 1

    texts = [kw.keyword.casefold() for kw in result.keywords]
    assert len(texts) == len(set(texts))
    assert "bill.com pricing" in texts
    assert [kw.score for kw in result.keywords] == sorted((kw.score for kw in result.keywords), reverse=True)


@pytest.mark.asyncio
async def test_status_moves_forward_through_every_stage() -> None:
    store = _RecordingStore()
    run = await store.create(JOB)

    await _orchestrator(store, _Provider()).execute(run.id)

    assert [status for status, _ in store.history] == [
        "expanding",
        "expanding",
        "analyzing",
        "scoring",
        "reporting",
        "completed",
    ]
    assert store.history[0][1] == "Expanding seed keywords..."
    assert store.history[1][1].startswith("Found ")
    assert store.history[1][1].endswith("keywords. Analyzing competitors...")
    assert store.history[2][1] == "Analyzing 2 competitor domains..."


@pytest.mark.asyncio
async def test_stage_failure_marks_run_failed_without_result() -> None:
    store = InMemoryPipelineRunStore()
    run = await store.create(JOB)
    orchestrator = _orchestrator(
        store,
        _Provider(),
        strategist_output=StageOutputError("ppc_strategist", "request limit exceeded"),
    )

    with pytest.raises(StageOutputError):
        await orchestrator.execute(run.id)

    saved = await store.get(run.id)
    assert saved is not None
    assert saved.status == "failed"
    assert saved.error == "ppc_strategist output validation failed: request limit exceeded"
    assert saved.result is None
    assert saved.completed_at is not None


@pytest.mark.asyncio
async def test_invalid_stage_output_fails_run() -> None:
    store = InMemoryPipelineRunStore()
    run = await store.create(JOB)
    orchestrator = _orchestrator(store, _Provider(), analyzer_output={"gaps": "not a list"})

    with pytest.raises(StageOutputError):
        await orchestrator.execute(run.id)

    saved = await store.get(run.id)
    assert saved is not None
    assert saved.status == "failed"
    assert saved.error is not None and "competitor_analyzer" in saved.error


@pytest.mark.asyncio
async def test_execute_skips_runs_that_are_not_queued() -> None:
    store = InMemoryPipelineRunStore()
    run = await store.create(JOB)
    await store.transition(run.id, from_status="queued", to_status="failed", error="expired", completed=True)

    assert await _orchestrator(store, _Provider()).execute(run.id) is None

    saved = await store.get(run.id)
    assert saved is not None
    assert saved.status == "failed"
    assert saved.error == "expired"


@pytest.mark.asyncio
async def test_fail_run_leaves_terminal_runs_untouched() -> None:
    store = InMemoryPipelineRunStore()
    run = await store.create(JOB)
    orchestrator = _orchestrator(store, _Provider())
    await orchestrator.execute(run.id)

    assert await orchestrator.fail_run(run.id, "late failure") is False

    saved = await store.get(run.id)
    assert saved is not None
    assert saved.status == "completed"
    assert saved.error is None



class _StalledProvider(_Provider):
    async def related_keywords(
        self, keyword: str, country_code: str, depth: int = 2, limit: int = 500
    ) -> list[dict[str, Any]]:
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.events.append("cancelled")
            raise
        self.events.append("finished")
        return []


class _ToolCallingPlanner:
    async def plan(self, request: PlanRequest[Any]) -> Any:
        await request.tool_context.call("labs_related_keywords", {"keyword": "ap automation"})
        return {"all_keywords": [], "summary": "none"}


@pytest.mark.asyncio
async def test_expired_run_cancels_in_flight_tool_calls_before_closing_provider() -> None:
    store = InMemoryPipelineRunStore()
    run = await store.create(JOB)
    provider = _StalledProvider()
    orchestrator = _orchestrator(store, provider, expander_planner=_ToolCallingPlanner())

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(orchestrator.execute(run.id), timeout=0.05)

    assert provider.events == ["cancelled", "closed"]


@pytest.mark.parametrize(
    ("current", "requested", "allowed"),
    [
        ("queued", "expanding", True),
        ("expanding", "analyzing", True),
        ("reporting", "completed", True),
        ("analyzing", "expanding", False),
        ("scoring", "scoring", False),
        ("scoring", "failed", True),
        ("queued", "failed", True),
        ("completed", "failed", False),
        ("failed", "completed", False),
        ("failed", "failed", False),
    ],
)
def test_can_transition(current: str, requested: str, allowed: bool) -> None:
    assert can_transition(current, requested) is allowed

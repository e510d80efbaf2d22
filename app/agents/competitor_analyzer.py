"""Competitor analyzer stage: organic vs paid gaps across competitor domains."""

import asyncio
import logging
from itertools import combinations

from pydantic import BaseModel, Field

from app.agents.base_agent import BaseAgent
from app.config import settings
from app.schemas.keyword import KeywordGap
from app.schemas.tools import (
    CompetitorKeywordsResult,
    DomainIntersectionResult,
    PaidKeywordsResult,
)
from app.services.gaps import candidate_gaps, restrict_to_competitors
from app.services.keyword_tools import ANALYZER_TOOL_NAMES, ToolContext

logger = logging.getLogger(__name__)

PROMPT_CANDIDATE_LIMIT = 60


class CompetitorAnalyzerInput(BaseModel):
    """Input for competitor analyzer agent."""

    competitors: list[str]
    country_code: str
    candidates: list[KeywordGap] = Field(default_factory=list)


class CompetitorAnalysisOutput(BaseModel):
    """Output from competitor analyzer agent."""

    gaps: list[KeywordGap] = Field(description="Classified keyword gaps, best opportunity first")
    summary: str = Field(description="Brief summary of the competitive landscape")


class CompetitorAnalyzerAgent(BaseAgent[CompetitorAnalyzerInput, CompetitorAnalysisOutput]):
    """Find keyword gaps between competitors' organic and paid footprints.

    Organic, paid and pairwise intersection data are prefetched concurrently and
    turned into deterministic candidate gaps before the planner runs; the planner
    reviews and classifies them, and may dig deeper with the same tools.
    """

    stage = "competitor_analyzer"
    tool_names = ANALYZER_TOOL_NAMES
    model_tier = "reasoning"
    default_max_turns = settings.analyzer_max_turns

    @property
    def system_prompt(self) -> str:
        return """You are a competitive intelligence specialist. Your job is to find keyword gaps.

For EACH competitor domain:
1. get_competitor_keywords returns their ORGANIC rankings
2. get_competitor_paid_keywords returns their PAID keywords
3. Compare organic vs paid to find gaps:
   - Keywords they rank for organically but DON'T bid on (organic-only gaps)
   - Keywords with low competition and buyer intent (low-competition-high-intent)
   - Keywords where they rank poorly (position >10) that nobody is targeting (untapped)

Use get_domain_intersection to compare competitors against each other and find keywords where multiple competitors rank but competition is still relatively low.

Candidate gaps computed from this data are provided. Review them, reclassify where the data supports it, and add any gaps you find.
Classify each gap as exactly one of: "organic-only", "low-competition-high-intent", "untapped".
competitorDomain must be one of the listed competitor domains.
Return gaps sorted by opportunity (high volume + low competition + buyer intent)."""

    @property
    def output_type(self) -> type[CompetitorAnalysisOutput]:
        return CompetitorAnalysisOutput

    async def _prepare(
        self,
        input_data: CompetitorAnalyzerInput,
        context: ToolContext,
    ) -> CompetitorAnalyzerInput:
        domains = input_data.competitors
        pairs = list(combinations(domains, 2))

        organic, paid, shared = await asyncio.gather(
            asyncio.gather(*(context.call("get_competitor_keywords", {"domain": d}) for d in domains)),
            asyncio.gather(*(context.call("get_competitor_paid_keywords", {"domain": d}) for d in domains)),
            asyncio.gather(
                *(
                    context.call("get_domain_intersection", {"domain1": a, "domain2": b, "find_unique": False})
                    for a, b in pairs
                )
            ),
        )

        organic_by_domain = {
            result.domain: result.keywords
            for result in organic
            if isinstance(result, CompetitorKeywordsResult)
        }
        paid_by_domain = {
            result.domain: [kw.keyword for kw in result.keywords]
            for result in paid
            if isinstance(result, PaidKeywordsResult)
        }
        shared_by_pair = {
            (result.domain1, result.domain2): result.keywords
            for result in shared
            if isinstance(result, DomainIntersectionResult)
        }

        candidates = restrict_to_competitors(
            candidate_gaps(organic_by_domain, paid_by_domain, shared_by_pair),
            domains,
        )
        logger.info(
            "Competitor data prefetched",
            extra={
                "run_id": context.run_id,
                "competitors": len(domains),
                "pairs": len(pairs),
                "candidate_gaps": len(candidates),
            },
        )
        return input_data.model_copy(update={"candidates": candidates})

    def _build_prompt(self, input_data: CompetitorAnalyzerInput) -> str:
        lines = [
            f"Analyze these competitor domains in the {input_data.country_code} market: "
            f"{', '.join(input_data.competitors)}",
            "",
            "Find keyword gaps, especially keywords they rank for organically but aren't bidding on in paid search.",
            "Focus on keywords with buyer intent (transactional, commercial) and low competition.",
            "",
            f"CANDIDATE GAPS ({len(input_data.candidates)} total, top {PROMPT_CANDIDATE_LIMIT} shown):",
        ]
        for i, gap in enumerate(input_data.candidates[:PROMPT_CANDIDATE_LIMIT], 1):
            lines.append(
                f'{i}. "{gap.keyword}" - vol:{gap.volume}, cpc:{gap.cpc}, comp:{gap.competition}, '
                f"intent:{gap.intent}, gap:{gap.gap_type}, competitor:{gap.competitor_domain}, "
                f"rank:{gap.competitor_rank}, etv:{gap.competitor_etv}"
            )
        if not input_data.candidates:
            lines.append("(none; use the tools to investigate)")
        return "\n".join(lines)

    async def _finalize(
        self,
        input_data: CompetitorAnalyzerInput,
        output: CompetitorAnalysisOutput,
        context: ToolContext,
    ) -> CompetitorAnalysisOutput:
        gaps = restrict_to_competitors(output.gaps, input_data.competitors)
        dropped = len(output.gaps) - len(gaps)
        if dropped:
            logger.info(
                "Dropped gaps outside competitor set or duplicated",
                extra={"run_id": context.run_id, "dropped": dropped},
            )
        return output.model_copy(update={"gaps": gaps})

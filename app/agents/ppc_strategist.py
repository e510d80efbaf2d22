"""PPC strategist stage: turns scored keywords and gaps into a report."""

from pydantic import BaseModel, Field, field_validator

from app.agents.base_agent import BaseAgent
from app.config import settings
from app.schemas.keyword import KeywordGap, ScoredKeyword, TopPick
from app.schemas.pipeline import CpcRange, ProductInfo
from app.services.keyword_tools import STRATEGIST_TOOL_NAMES

MAX_TOP_KEYWORDS = 20
REPORT_KEYWORD_LIMIT = 30
REPORT_GAP_LIMIT = 20


class PPCStrategistInput(BaseModel):
    """Input for PPC strategist agent."""

    country_code: str
    cpc_range: CpcRange
    keywords: list[ScoredKeyword]
    gaps: list[KeywordGap]
    product: ProductInfo | None = None


class StrategistReport(BaseModel):
    """Output from PPC strategist agent."""

    top_keywords: list[TopPick] = Field(
        description=f"Up to {MAX_TOP_KEYWORDS} best opportunities, each with a reason"
    )
    market_opportunity: str = Field(description="Overall market opportunity assessment")
    recommended_budget: str = Field(description="Recommended monthly Google Ads budget with rationale")
    next_steps: list[str] = Field(description="3-5 concrete next steps")

    @field_validator("top_keywords")
    @classmethod
    def _cap_top_keywords(cls, value: list[TopPick]) -> list[TopPick]:
        return value[:MAX_TOP_KEYWORDS]


class PPCStrategistAgent(BaseAgent[PPCStrategistInput, StrategistReport]):
    """Produce the strategic PPC report from scored keywords and gaps."""

    stage = "ppc_strategist"
    tool_names = STRATEGIST_TOOL_NAMES
    model_tier = "reasoning"
    default_max_turns = settings.strategist_max_turns

    @property
    def system_prompt(self) -> str:
        return """You are a senior PPC strategist specializing in B2B SaaS.

You receive a scored keyword list and competitor gaps. Your job is to:
1. Identify the top 20 keywords that are the best opportunities
2. For EACH keyword, explain WHY it's a good target (e.g., "Low competition 0.12, transactional intent, 4.20 CPC - Financial Controllers searching for a solution")
3. Estimate a recommended monthly Google Ads budget based on the keyword CPCs and volumes
4. Assess the overall market opportunity
5. Provide 3-5 concrete next steps

You may call get_ad_traffic_projection (bid in cents) to ground the budget estimate.

Focus on the "sweet spot" - long-tail keywords with:
- Low competition (<0.25)
- Buyer intent (transactional or commercial)
- CPC in the affordable range
- Volume >100/mo"""

    @property
    def output_type(self) -> type[StrategistReport]:
        return StrategistReport

    def _build_prompt(self, input_data: PPCStrategistInput) -> str:
        keyword_lines = [
            f'{i}. "{k.keyword}" - vol:{k.volume}, cpc:{k.cpc}, comp:{k.competition}, '
            f"intent:{k.intent}, tier:{k.tier}, score:{k.score}"
            for i, k in enumerate(input_data.keywords[:REPORT_KEYWORD_LIMIT], 1)
        ]
        gap_lines = [
            f'{i}. "{g.keyword}" - vol:{g.volume}, gap:{g.gap_type}, '
            f"competitor:{g.competitor_domain}, rank:{g.competitor_rank}"
            for i, g in enumerate(input_data.gaps[:REPORT_GAP_LIMIT], 1)
        ]

        sections = [
            f"Here are the scored keyword results for the {input_data.country_code} market.",
            f"Affordable CPC range: {input_data.cpc_range.min}-{input_data.cpc_range.max}",
            "",
            f"TOP {REPORT_KEYWORD_LIMIT} KEYWORDS BY SCORE:",
            "\n".join(keyword_lines) or "(none)",
            "",
            "COMPETITOR GAPS:",
            "\n".join(gap_lines) or "(none)",
        ]
        if input_data.product:
            product = input_data.product
            sections.extend(["", f"PRODUCT: {product.name} - {product.description}"])
            if product.target:
                sections.append(f"TARGET: {product.target}")
            if product.integrations:
                sections.append(f"INTEGRATIONS: {product.integrations}")
        sections.extend(
            [
                "",
                "Produce a strategic PPC report with top keyword picks and budget recommendations.",
            ]
        )
        return "\n".join(sections)

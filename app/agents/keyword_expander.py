"""Keyword expander stage: seeds to a candidate keyword universe."""

import asyncio
import logging

from pydantic import BaseModel, Field

from app.agents.base_agent import BaseAgent
from app.config import settings
from app.schemas.keyword import RawKeyword
from app.schemas.tools import KeywordListResult
from app.services.dedup import deduplicate_keywords
from app.services.keyword_tools import EXPANDER_TOOL_NAMES, EXPANSION_TOOL_NAMES, ToolContext

logger = logging.getLogger(__name__)


class KeywordExpanderInput(BaseModel):
    """Input for keyword expander agent."""

    seed_keywords: list[str]
    country_code: str


class KeywordExpansionOutput(BaseModel):
    """Output from keyword expander agent."""

    all_keywords: list[RawKeyword] = Field(
        description="Every unique keyword found, with its metrics and source tool"
    )
    summary: str = Field(description="Brief summary of what the expansion found")


class KeywordExpanderAgent(BaseAgent[KeywordExpanderInput, KeywordExpansionOutput]):
    """Expand seed keywords with all three expansion tools.

    Any expansion tool the planner skipped is called deterministically after
    planning, so the output always covers Google Ads ideas, SERP suggestions
    and related searches for every seed.
    """

    stage = "keyword_expander"
    tool_names = EXPANDER_TOOL_NAMES
    model_tier = "standard"
    default_max_turns = settings.expander_max_turns

    @property
    def system_prompt(self) -> str:
        return """You are a keyword research specialist. Your job is to expand seed keywords into a comprehensive list.

For EACH seed keyword, you must call ALL THREE expansion tools:
1. expand_keywords - Google Ads keyword suggestions (use all seeds together)
2. labs_keyword_suggestions - SERP-derived suggestions (call per seed)
3. labs_related_keywords - Related SERP queries (call per seed)

Use get_search_volume only to enrich keywords that are missing volume data.

After expansion, deduplicate the results and return ALL unique keywords with their metrics.
Keep each keyword's source as reported by the tool that found it.
Focus on finding long-tail keywords with clear buyer intent.

Return allKeywords and a brief summary."""

    @property
    def output_type(self) -> type[KeywordExpansionOutput]:
        return KeywordExpansionOutput

    def _build_prompt(self, input_data: KeywordExpanderInput) -> str:
        return (
            f"Expand these seed keywords for the {input_data.country_code} market: "
            f"{', '.join(input_data.seed_keywords)}\n\n"
            "Find long-tail variations, related terms, and buyer-intent keywords."
        )

    async def _finalize(
        self,
        input_data: KeywordExpanderInput,
        output: KeywordExpansionOutput,
        context: ToolContext,
    ) -> KeywordExpansionOutput:
        missing = [name for name in EXPANSION_TOOL_NAMES if not context.called(name)]
        backfilled: list[RawKeyword] = []
        if missing:
            logger.info(
                "Backfilling expansion tools the planner skipped",
                extra={"run_id": context.run_id, "tools": missing},
            )
            calls = []
            for name in missing:
                if name == "expand_keywords":
                    calls.append(context.call(name, {"keywords": input_data.seed_keywords}))
                else:
                    calls.extend(context.call(name, {"keyword": seed}) for seed in input_data.seed_keywords)
            for result in await asyncio.gather(*calls):
                if isinstance(result, KeywordListResult):
                    backfilled.extend(result.keywords)

        merged = deduplicate_keywords([*output.all_keywords, *backfilled])
        return output.model_copy(update={"all_keywords": merged})

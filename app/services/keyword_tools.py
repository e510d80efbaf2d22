"""Keyword data tools exposed to stage agents.

Each tool wraps one provider operation behind a typed parameter model. Tools are
idempotent: a ToolContext memoizes results per (tool, params) and lets concurrent
identical calls share one in-flight request. Provider failures never escape a
tool; they are logged and surface as an empty result.
"""

import asyncio
import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar

from pydantic import BaseModel, ValidationError
from pydantic_ai import RunContext, Tool

from app.core.exceptions import ExternalAPIError, ToolNotPermittedError
from app.integrations.dataforseo import KeywordDataProvider
from app.schemas.keyword import RawKeyword
from app.schemas.tools import (
    AdTrafficParams,
    CompetitorKeywordsResult,
    DomainIntersectionParams,
    DomainIntersectionResult,
    DomainParams,
    ExpandKeywordsParams,
    IntersectionKeyword,
    KeywordListResult,
    PaidKeywordsResult,
    RankedKeyword,
    SearchVolumeParams,
    SeedKeywordParams,
    TrafficProjection,
    TrafficProjectionResult,
)

logger = logging.getLogger(__name__)


def _to_models(
    model: type[BaseModel],
    items: Iterable[dict[str, Any]],
    **overrides: Any,
) -> list[Any]:
    """Validate provider rows, skipping rows that cannot be represented."""
    models = []
    for item in items:
        try:
            models.append(model.model_validate({**item, **overrides}))
        except ValidationError:
            logger.debug("Skipping malformed provider row", extra={"keyword": item.get("keyword")})
    return models


class KeywordTool:
    """Base class for a provider-backed tool with a declared parameter schema."""

    name: ClassVar[str]
    description: ClassVar[str]
    params_model: ClassVar[type[BaseModel]]
    result_model: ClassVar[type[BaseModel]]
    limit: ClassVar[int] = 50

    async def execute(self, params: BaseModel, context: "ToolContext") -> BaseModel:
        """Run the tool; provider errors degrade to an empty result."""
        try:
            return await self._fetch(params, context)
        except ExternalAPIError as e:
            logger.warning(
                "Tool call failed, returning empty result",
                extra={
                    "tool": self.name,
                    "stage": context.stage,
                    "run_id": context.run_id,
                    "error": str(e),
                },
            )
            return self.empty_result(params)

    async def _fetch(self, params: BaseModel, context: "ToolContext") -> BaseModel:
        raise NotImplementedError

    def empty_result(self, params: BaseModel) -> BaseModel:
        return self.result_model()


class ExpandKeywordsTool(KeywordTool):
    name = "expand_keywords"
    description = (
        "Expand seed keywords using the Google Ads Keywords-for-Keywords endpoint. "
        "Returns keyword suggestions with volume, CPC, and competition data. "
        "Pass all seeds together (max 20)."
    )
    params_model = ExpandKeywordsParams
    result_model = KeywordListResult

    async def _fetch(self, params: ExpandKeywordsParams, context: "ToolContext") -> KeywordListResult:
        rows = await context.provider.keywords_for_keywords(params.keywords[:20], context.country_code)
        keywords = _to_models(RawKeyword, rows, source="google_ads")
        return KeywordListResult(count=len(keywords), keywords=keywords[: self.limit])


class LabsKeywordSuggestionsTool(KeywordTool):
    name = "labs_keyword_suggestions"
    description = (
        "Get SERP-derived keyword suggestions containing the seed phrase, with volume "
        "and difficulty data. Call once per seed for long-tail discovery."
    )
    params_model = SeedKeywordParams
    result_model = KeywordListResult

    async def _fetch(self, params: SeedKeywordParams, context: "ToolContext") -> KeywordListResult:
        rows = await context.provider.keyword_suggestions(params.keyword, context.country_code, limit=500)
        keywords = _to_models(RawKeyword, rows, source="labs_suggestions")
        return KeywordListResult(count=len(keywords), keywords=keywords[: self.limit])


class LabsRelatedKeywordsTool(KeywordTool):
    name = "labs_related_keywords"
    description = (
        "Get keywords from Google's 'searches related to' data for a seed. "
        "Call once per seed to discover laterally related terms."
    )
    params_model = SeedKeywordParams
    result_model = KeywordListResult
    limit = 40

    async def _fetch(self, params: SeedKeywordParams, context: "ToolContext") -> KeywordListResult:
        rows = await context.provider.related_keywords(
            params.keyword,
            context.country_code,
            depth=2,
            limit=200,
        )
        keywords = _to_models(RawKeyword, rows, source="labs_related")
        return KeywordListResult(count=len(keywords), keywords=keywords[: self.limit])


class SearchVolumeTool(KeywordTool):
    name = "get_search_volume"
    description = (
        "Get Google Ads search volume, CPC, and competition for a batch of keywords "
        "(max 1000). Use this to enrich keywords that lack volume data."
    )
    params_model = SearchVolumeParams
    result_model = KeywordListResult
    limit = 100

    async def _fetch(self, params: SearchVolumeParams, context: "ToolContext") -> KeywordListResult:
        rows = await context.provider.search_volume(params.keywords[:1000], context.country_code)
        keywords = _to_models(RawKeyword, rows, source="search_volume")
        return KeywordListResult(count=len(keywords), keywords=keywords[: self.limit])


class CompetitorKeywordsTool(KeywordTool):
    name = "get_competitor_keywords"
    description = (
        "Get the keywords a competitor domain ranks for organically in Google, with "
        "rank position, estimated traffic value, and metrics."
    )
    params_model = DomainParams
    result_model = CompetitorKeywordsResult

    async def _fetch(self, params: DomainParams, context: "ToolContext") -> CompetitorKeywordsResult:
        domain = params.domain.strip().lower()
        rows = await context.provider.ranked_keywords(domain, context.country_code, limit=1000)
        keywords = _to_models(RankedKeyword, rows, source=f"competitor:{domain}")
        return CompetitorKeywordsResult(domain=domain, count=len(keywords), keywords=keywords[: self.limit])

    def empty_result(self, params: DomainParams) -> CompetitorKeywordsResult:
        return CompetitorKeywordsResult(domain=params.domain.strip().lower())


class CompetitorPaidKeywordsTool(KeywordTool):
    name = "get_competitor_paid_keywords"
    description = (
        "Get keywords a competitor is bidding on in Google Ads. Use alongside organic "
        "keywords to find keywords they rank for organically but do not bid on."
    )
    params_model = DomainParams
    result_model = PaidKeywordsResult

    async def _fetch(self, params: DomainParams, context: "ToolContext") -> PaidKeywordsResult:
        domain = params.domain.strip().lower()
        rows = await context.provider.keywords_for_site(domain, context.country_code)
        keywords = _to_models(RawKeyword, rows, source=f"paid:{domain}")
        return PaidKeywordsResult(domain=domain, count=len(keywords), keywords=keywords[: self.limit])

    def empty_result(self, params: DomainParams) -> PaidKeywordsResult:
        return PaidKeywordsResult(domain=params.domain.strip().lower())


class DomainIntersectionTool(KeywordTool):
    name = "get_domain_intersection"
    description = (
        "Compare two domains to find shared keywords, or with find_unique=true the "
        "keywords unique to domain1."
    )
    params_model = DomainIntersectionParams
    result_model = DomainIntersectionResult

    async def _fetch(
        self,
        params: DomainIntersectionParams,
        context: "ToolContext",
    ) -> DomainIntersectionResult:
        domain1 = params.domain1.strip().lower()
        domain2 = params.domain2.strip().lower()
        rows = await context.provider.domain_intersection(
            domain1,
            domain2,
            context.country_code,
            intersections=not params.find_unique,
            limit=1000,
        )
        keywords = _to_models(IntersectionKeyword, rows, source=f"intersection:{domain1}")
        return DomainIntersectionResult(
            domain1=domain1,
            domain2=domain2,
            type="unique-to-domain1" if params.find_unique else "shared",
            count=len(keywords),
            keywords=keywords[: self.limit],
        )

    def empty_result(self, params: DomainIntersectionParams) -> DomainIntersectionResult:
        return DomainIntersectionResult(
            domain1=params.domain1.strip().lower(),
            domain2=params.domain2.strip().lower(),
            type="unique-to-domain1" if params.find_unique else "shared",
        )


class AdTrafficProjectionTool(KeywordTool):
    name = "get_ad_traffic_projection"
    description = (
        "Get projected ad traffic (impressions, clicks, cost) for keywords at a max CPC "
        "bid given in cents. Use this to estimate budget for the final keyword list."
    )
    params_model = AdTrafficParams
    result_model = TrafficProjectionResult

    async def _fetch(self, params: AdTrafficParams, context: "ToolContext") -> TrafficProjectionResult:
        rows = await context.provider.ad_traffic_by_keywords(
            params.keywords[:1000],
            context.country_code,
            bid=params.bid_cents / 100,
        )
        projections = _to_models(TrafficProjection, rows)
        return TrafficProjectionResult(count=len(projections), projections=projections[: self.limit])


TOOL_REGISTRY: dict[str, KeywordTool] = {
    tool.name: tool
    for tool in (
        ExpandKeywordsTool(),
        LabsKeywordSuggestionsTool(),
        LabsRelatedKeywordsTool(),
        SearchVolumeTool(),
        CompetitorKeywordsTool(),
        CompetitorPaidKeywordsTool(),
        DomainIntersectionTool(),
        AdTrafficProjectionTool(),
    )
}

EXPANSION_TOOL_NAMES = ("expand_keywords", "labs_keyword_suggestions", "labs_related_keywords")
EXPANDER_TOOL_NAMES = (*EXPANSION_TOOL_NAMES, "get_search_volume")
ANALYZER_TOOL_NAMES = (
    "get_competitor_keywords",
    "get_competitor_paid_keywords",
    "get_domain_intersection",
)
STRATEGIST_TOOL_NAMES = ("get_ad_traffic_projection",)


def get_tools(names: Iterable[str]) -> list[KeywordTool]:
    return [TOOL_REGISTRY[name] for name in names]


@dataclass(slots=True)
class ToolCall:
    tool: str
    params: dict[str, Any]
    cached: bool


class ToolCache:
    """Results shared across stages of one run, keyed by tool and canonical params."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], asyncio.Task[BaseModel]] = {}

    @staticmethod
    def key(tool_name: str, params: BaseModel) -> tuple[str, str]:
        return tool_name, json.dumps(params.model_dump(mode="json"), sort_keys=True)

    def get(self, key: tuple[str, str]) -> "asyncio.Task[BaseModel] | None":
        return self._entries.get(key)

    def put(self, key: tuple[str, str], task: "asyncio.Task[BaseModel]") -> None:
        self._entries[key] = task

    def discard(self, key: tuple[str, str]) -> None:
        self._entries.pop(key, None)

    async def cancel_pending(self) -> int:
        """Cancel provider calls still in flight and wait for them to unwind."""
        pending = [task for task in self._entries.values() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._entries = {
            key: task for key, task in self._entries.items() if not task.cancelled()
        }
        return len(pending)


@dataclass
class ToolContext:
    """Per-stage tool access: the run's country, a permitted subset, and a call log."""

    provider: KeywordDataProvider
    country_code: str
    tools: Sequence[KeywordTool]
    stage: str = ""
    run_id: str | None = None
    cache: ToolCache = field(default_factory=ToolCache)
    calls: list[ToolCall] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._permitted = {tool.name: tool for tool in self.tools}

    @property
    def tool_names(self) -> list[str]:
        return list(self._permitted)

    def called(self, tool_name: str) -> bool:
        return any(call.tool == tool_name for call in self.calls)

    async def call(self, tool_name: str, params: BaseModel | dict[str, Any]) -> BaseModel:
        """Invoke a permitted tool, reusing any earlier or in-flight identical call."""
        tool = self._permitted.get(tool_name)
        if tool is None:
            raise ToolNotPermittedError(tool_name)

        if not isinstance(params, tool.params_model):
            params = tool.params_model.model_validate(params)

        key = ToolCache.key(tool_name, params)
        task = self.cache.get(key)
        cached = task is not None
        self.calls.append(ToolCall(tool=tool_name, params=params.model_dump(mode="json"), cached=cached))
        logger.info(
            "Tool call",
            extra={"run_id": self.run_id, "stage": self.stage, "tool": tool_name, "cached": cached},
        )

        if task is None:
            task = asyncio.ensure_future(tool.execute(params, self))
            self.cache.put(key, task)

        try:
            return await asyncio.shield(task)
        except Exception:
            # execute() absorbs provider errors; anything else must not be memoized
            self.cache.discard(key)
            raise

    def as_pydantic_ai_tools(self) -> list[Tool["ToolContext"]]:
        return [to_pydantic_ai_tool(tool) for tool in self.tools]


def to_pydantic_ai_tool(tool: KeywordTool) -> Tool[ToolContext]:
    """Expose a KeywordTool to a pydantic-ai Agent, routed through the run's ToolContext."""
    params_model = tool.params_model

    async def _call(ctx: RunContext[ToolContext], params: params_model) -> dict[str, Any]:
        result = await ctx.deps.call(tool.name, params)
        return result.model_dump(mode="json")

    return Tool(_call, takes_ctx=True, name=tool.name, description=tool.description)

"""Keyword, gap and pipeline result schemas."""

import math
from typing import Literal

from pydantic import ConfigDict, Field, field_validator

from app.schemas.base import CamelModel

Intent = Literal["transactional", "commercial", "informational", "navigational"]
Tier = Literal["sweet-spot", "high-value", "monitor", "low-priority"]
GapType = Literal["organic-only", "low-competition-high-intent", "untapped"]

INTENTS: tuple[str, ...] = ("transactional", "commercial", "informational", "navigational")
TIERS: tuple[str, ...] = ("sweet-spot", "high-value", "monitor", "low-priority")
GAP_TYPES: tuple[str, ...] = ("organic-only", "low-competition-high-intent", "untapped")

DEFAULT_INTENT = "informational"


def normalize_intent(value: object) -> str:
    """Map a free-form intent label onto the known intents."""
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in INTENTS:
            return lowered
    return DEFAULT_INTENT


def _finite_or_zero(value: object) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


class RawKeyword(CamelModel):
    """Keyword metrics as returned by the data provider."""

    model_config = ConfigDict(frozen=True)

    keyword: str = Field(min_length=1)
    volume: int = Field(default=0, ge=0)
    cpc: float = Field(default=0.0, ge=0.0)
    competition: float = Field(default=0.0, ge=0.0, le=1.0)
    difficulty: float = Field(default=0.0, ge=0.0)
    intent: Intent = DEFAULT_INTENT
    source: str = "unknown"

    @field_validator("keyword", mode="before")
    @classmethod
    def _strip_keyword(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("volume", mode="before")
    @classmethod
    def _coerce_volume(cls, value: object) -> int:
        return max(0, int(round(_finite_or_zero(value))))

    @field_validator("cpc", "difficulty", mode="before")
    @classmethod
    def _coerce_non_negative(cls, value: object) -> float:
        return max(0.0, _finite_or_zero(value))

    @field_validator("competition", mode="before")
    @classmethod
    def _clamp_competition(cls, value: object) -> float:
        return min(1.0, max(0.0, _finite_or_zero(value)))

    @field_validator("intent", mode="before")
    @classmethod
    def _coerce_intent(cls, value: object) -> str:
        return normalize_intent(value)


class ScoreBreakdown(CamelModel):
    """Per-component scores, each in [0, 100]."""

    model_config = ConfigDict(frozen=True)

    volume_score: float
    intent_score: float
    competition_score: float
    cpc_affordability_score: float


class ScoredKeyword(RawKeyword):
    """A keyword with its composite score and tier."""

    score: float = Field(ge=0.0, le=100.0)
    score_breakdown: ScoreBreakdown
    tier: Tier


class KeywordGap(RawKeyword):
    """A keyword a competitor ranks for that the target does not cover."""

    source: str = "gap"
    competitor_domain: str
    competitor_rank: int = Field(default=0, ge=0)
    competitor_etv: float = Field(default=0.0, ge=0.0)
    gap_type: GapType

    @field_validator("competitor_domain", mode="before")
    @classmethod
    def _normalize_domain(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("competitor_rank", mode="before")
    @classmethod
    def _coerce_rank(cls, value: object) -> int:
        return max(0, int(_finite_or_zero(value)))

    @field_validator("competitor_etv", mode="before")
    @classmethod
    def _coerce_etv(cls, value: object) -> float:
        return max(0.0, _finite_or_zero(value))

    def as_raw_keyword(self) -> RawKeyword:
        """Project the gap onto a plain keyword attributed to its competitor."""
        return RawKeyword(
            keyword=self.keyword,
            volume=self.volume,
            cpc=self.cpc,
            competition=self.competition,
            difficulty=self.difficulty,
            intent=self.intent,
            source=f"gap:{self.competitor_domain}",
        )


class TopPick(CamelModel):
    """A keyword the strategist recommends bidding on."""

    keyword: str
    volume: int = 0
    cpc: float = 0.0
    competition: float = 0.0
    intent: Intent = DEFAULT_INTENT
    tier: Tier = "monitor"
    reason: str = ""

    @field_validator("intent", mode="before")
    @classmethod
    def _coerce_intent(cls, value: object) -> str:
        return normalize_intent(value)


class PipelineSummary(CamelModel):
    total_keywords_found: int = 0
    sweet_spot_count: int = 0
    high_value_count: int = 0
    avg_cpc: float = 0.0
    top_keyword: str = "—"
    competitor_gaps: int = 0
    market_opportunity: str = ""
    recommended_budget: str = ""
    top_picks: list[TopPick] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)


class PipelineMetadata(CamelModel):
    country: str
    seed_keywords: list[str]
    competitors: list[str]
    timestamp: str
    duration: int = Field(ge=0, description="Wall-clock duration in milliseconds.")


class PipelineResult(CamelModel):
    """Final, write-once output of a completed run."""

    keywords: list[ScoredKeyword]
    gaps: list[KeywordGap]
    summary: PipelineSummary
    metadata: PipelineMetadata

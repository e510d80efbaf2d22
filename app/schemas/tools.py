"""Parameter and result schemas for keyword data tools."""

from typing import Literal

from pydantic import BaseModel, Field

from app.schemas.keyword import RawKeyword

# Tool payloads are exchanged with the LLM as snake_case JSON.


class ExpandKeywordsParams(BaseModel):
    keywords: list[str] = Field(min_length=1, description="Seed keywords to expand (max 20)")


class SeedKeywordParams(BaseModel):
    keyword: str = Field(min_length=1, description="Single seed keyword")


class SearchVolumeParams(BaseModel):
    keywords: list[str] = Field(min_length=1, description="Keywords to get volume for (max 1000)")


class DomainParams(BaseModel):
    domain: str = Field(min_length=1, description="Competitor domain (e.g. bill.com)")


class DomainIntersectionParams(BaseModel):
    domain1: str = Field(min_length=1, description="First domain")
    domain2: str = Field(min_length=1, description="Second domain")
    find_unique: bool = Field(
        default=False,
        description="If true, find keywords unique to domain1 instead of shared keywords",
    )


class AdTrafficParams(BaseModel):
    keywords: list[str] = Field(min_length=1, description="Keywords to project (max 1000)")
    bid_cents: int = Field(gt=0, description="Max CPC bid in cents (e.g. 500 = 5.00)")


class RankedKeyword(RawKeyword):
    """Keyword a domain ranks for organically, with its SERP position."""

    rank_group: int = 0
    url: str = ""
    etv: float = 0.0


class IntersectionKeyword(RawKeyword):
    """Keyword seen in a two-domain comparison."""

    domain1_rank: int = 0
    domain1_url: str = ""
    domain1_etv: float = 0.0
    domain2_rank: int = 0
    domain2_url: str = ""
    domain2_etv: float = 0.0


class TrafficProjection(BaseModel):
    keyword: str
    impressions: float = 0.0
    clicks: float = 0.0
    ctr: float = 0.0
    average_cpc: float = 0.0
    cost: float = 0.0


class KeywordListResult(BaseModel):
    """Truncated keyword list; count is the provider's full result size."""

    count: int = 0
    keywords: list[RawKeyword] = Field(default_factory=list)


class CompetitorKeywordsResult(BaseModel):
    domain: str
    count: int = 0
    keywords: list[RankedKeyword] = Field(default_factory=list)


class PaidKeywordsResult(BaseModel):
    domain: str
    type: Literal["paid"] = "paid"
    count: int = 0
    keywords: list[RawKeyword] = Field(default_factory=list)


class DomainIntersectionResult(BaseModel):
    domain1: str
    domain2: str
    type: Literal["shared", "unique-to-domain1"] = "shared"
    count: int = 0
    keywords: list[IntersectionKeyword] = Field(default_factory=list)


class TrafficProjectionResult(BaseModel):
    count: int = 0
    projections: list[TrafficProjection] = Field(default_factory=list)

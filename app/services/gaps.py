"""Deterministic competitor gap classification.

A gap is a keyword a competitor earns organic traffic for without bidding on it,
or a cheap shared keyword between two competitors.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from app.schemas.keyword import KeywordGap
from app.schemas.tools import IntersectionKeyword, RankedKeyword
from app.services.dedup import deduplicate_keywords, keyword_identity

LOW_COMPETITION_THRESHOLD = 0.30
TOP_RANK = 10
BUYER_INTENTS = frozenset({"transactional", "commercial"})


def classify_gap(keyword: RankedKeyword) -> str:
    """Gap type for an organic keyword the competitor does not bid on."""
    if keyword.competition < LOW_COMPETITION_THRESHOLD and keyword.intent in BUYER_INTENTS:
        return "low-competition-high-intent"
    if 0 < keyword.rank_group <= TOP_RANK:
        return "organic-only"
    return "untapped"


def competitor_gaps(
    domain: str,
    organic: Iterable[RankedKeyword],
    paid: Iterable[str],
) -> list[KeywordGap]:
    """Classify a competitor's organic keywords that are absent from its paid set."""
    paid_keys = {keyword_identity(text) for text in paid}
    gaps: list[KeywordGap] = []
    for item in organic:
        if keyword_identity(item.keyword) in paid_keys:
            continue
        gaps.append(
            KeywordGap(
                keyword=item.keyword,
                volume=item.volume,
                cpc=item.cpc,
                competition=item.competition,
                difficulty=item.difficulty,
                intent=item.intent,
                competitor_domain=domain,
                competitor_rank=item.rank_group,
                competitor_etv=item.etv,
                gap_type=classify_gap(item),
            )
        )
    return gaps


def shared_keyword_gaps(domain1: str, shared: Iterable[IntersectionKeyword]) -> list[KeywordGap]:
    """Low-competition keywords both competitors rank for, attributed to domain1."""
    return [
        KeywordGap(
            keyword=item.keyword,
            volume=item.volume,
            cpc=item.cpc,
            competition=item.competition,
            difficulty=item.difficulty,
            intent=item.intent,
            competitor_domain=domain1,
            competitor_rank=item.domain1_rank,
            competitor_etv=item.domain1_etv,
            gap_type="untapped",
        )
        for item in shared
        if item.competition < LOW_COMPETITION_THRESHOLD
    ]


def opportunity_key(gap: KeywordGap) -> tuple[int, int, float, str]:
    """Buyer intent first, then higher volume, then lower competition."""
    return (
        0 if gap.intent in BUYER_INTENTS else 1,
        -gap.volume,
        gap.competition,
        gap.keyword.casefold(),
    )


def candidate_gaps(
    organic_by_domain: Mapping[str, list[RankedKeyword]],
    paid_by_domain: Mapping[str, list[str]],
    shared_by_pair: Mapping[tuple[str, str], list[IntersectionKeyword]],
) -> list[KeywordGap]:
    """Merge per-competitor and pairwise gaps, one per keyword, best opportunity first."""
    gaps: list[KeywordGap] = []
    for domain, organic in organic_by_domain.items():
        gaps.extend(competitor_gaps(domain, organic, paid_by_domain.get(domain, [])))
    for (domain1, _domain2), shared in shared_by_pair.items():
        gaps.extend(shared_keyword_gaps(domain1, shared))
    return sorted(deduplicate_keywords(gaps), key=opportunity_key)


def restrict_to_competitors(gaps: Iterable[KeywordGap], competitors: Iterable[str]) -> list[KeywordGap]:
    """Drop gaps attributed to domains outside the job's competitor list, then dedupe."""
    allowed = {domain.strip().lower() for domain in competitors}
    return deduplicate_keywords(gap for gap in gaps if gap.competitor_domain in allowed)

"""Keyword scoring: volume x intent x (1/competition) x CPC affordability.

Pure functions; the same keyword and CPC window always yield the same score and tier.
"""

from __future__ import annotations

import math
from collections.abc import Iterable

from app.schemas.keyword import RawKeyword, ScoreBreakdown, ScoredKeyword
from app.schemas.pipeline import CpcRange

INTENT_WEIGHTS: dict[str, float] = {
    "transactional": 1.0,
    "commercial": 0.75,
    "informational": 0.3,
    "navigational": 0.15,
}
DEFAULT_INTENT_WEIGHT = 0.3

BUYER_INTENTS = frozenset({"transactional", "commercial"})

SWEET_SPOT_MAX_COMPETITION = 0.25
HIGH_VALUE_MIN_INTENT_SCORE = 70.0
HIGH_VALUE_MIN_COMPETITION_SCORE = 40.0
MONITOR_MIN_SCORE = 50.0

WEIGHTS = {
    "volume": 0.25,
    "intent": 0.30,
    "competition": 0.25,
    "cpc_affordability": 0.20,
}


def _round2(value: float) -> float:
    """Round half away from zero to two decimals."""
    return math.floor(value * 100 + 0.5) / 100


def _clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def volume_score(volume: int) -> float:
    return _clamp(math.log10(max(volume, 1)) * 25, 0.0, 100.0)


def intent_score(intent: str) -> float:
    return INTENT_WEIGHTS.get(intent, DEFAULT_INTENT_WEIGHT) * 100


def competition_score(competition: float) -> float:
    comp = _clamp(competition, 0.01, 1.0)
    return min(100.0, (1 / comp) * 10)


def cpc_affordability_score(cpc: float, cpc_range: CpcRange) -> float:
    """Score 100 inside the window, tapering below (floor 20) and above (floor 10)."""
    if cpc_range.contains(cpc):
        return 100.0
    if cpc < cpc_range.min:
        return max(20.0, (cpc / cpc_range.min) * 80)
    return max(10.0, 100 - ((cpc - cpc_range.max) / cpc_range.max) * 60)


def assign_tier(
    keyword: RawKeyword,
    cpc_range: CpcRange,
    *,
    volume: float,
    intent: float,
    competition: float,
) -> str:
    """First matching tier wins."""
    if (
        keyword.competition < SWEET_SPOT_MAX_COMPETITION
        and keyword.intent in BUYER_INTENTS
        and cpc_range.contains(keyword.cpc)
    ):
        return "sweet-spot"
    if intent >= HIGH_VALUE_MIN_INTENT_SCORE and competition >= HIGH_VALUE_MIN_COMPETITION_SCORE:
        return "high-value"
    if volume >= MONITOR_MIN_SCORE or intent >= MONITOR_MIN_SCORE:
        return "monitor"
    return "low-priority"


def score_keyword(keyword: RawKeyword, cpc_range: CpcRange) -> ScoredKeyword:
    """Score a keyword against the affordable CPC window."""
    volume = volume_score(keyword.volume)
    intent = intent_score(keyword.intent)
    competition = competition_score(keyword.competition)
    affordability = cpc_affordability_score(keyword.cpc, cpc_range)

    total = (
        volume * WEIGHTS["volume"]
        + intent * WEIGHTS["intent"]
        + competition * WEIGHTS["competition"]
        + affordability * WEIGHTS["cpc_affordability"]
    )
    tier = assign_tier(
        keyword,
        cpc_range,
        volume=volume,
        intent=intent,
        competition=competition,
    )

    return ScoredKeyword(
        **keyword.model_dump(),
        score=_round2(total),
        score_breakdown=ScoreBreakdown(
            volume_score=_round2(volume),
            intent_score=_round2(intent),
            competition_score=_round2(competition),
            cpc_affordability_score=_round2(affordability),
        ),
        tier=tier,
    )


def _rank_key(scored: ScoredKeyword) -> tuple[float, str, str]:
    return (-scored.score, scored.keyword.casefold(), scored.keyword)


def rank_keywords(keywords: Iterable[RawKeyword], cpc_range: CpcRange) -> list[ScoredKeyword]:
    """Score every keyword and sort by score descending.

    Equal scores are ordered by case-folded keyword text, then by the original
    text, so the ranking does not depend on discovery order.
    """
    return sorted((score_keyword(kw, cpc_range) for kw in keywords), key=_rank_key)

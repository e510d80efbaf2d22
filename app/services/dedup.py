"""Keyword deduplication by normalized text."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TypeVar

from app.schemas.keyword import RawKeyword

KeywordT = TypeVar("KeywordT", bound=RawKeyword)


def keyword_identity(keyword: str) -> str:
    """Identity key used to compare keywords case-insensitively."""
    return keyword.strip().casefold()


def deduplicate_keywords(records: Iterable[KeywordT]) -> list[KeywordT]:
    """Keep one record per normalized keyword.

    A later record replaces an earlier one only when its volume is strictly
    higher. Output follows the order in which each keyword was first seen.
    """
    best: dict[str, KeywordT] = {}
    for record in records:
        key = keyword_identity(record.keyword)
        current = best.get(key)
        if current is None or record.volume > current.volume:
            best[key] = record
    return list(best.values())

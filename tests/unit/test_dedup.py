"""Unit tests for keyword deduplication."""

from __future__ import annotations

from app.schemas.keyword import RawKeyword
from app.services.dedup import deduplicate_keywords, keyword_identity


def _kw(keyword: str, volume: int, source: str = "test") -> RawKeyword:
    return RawKeyword(keyword=keyword, volume=volume, source=source)


def test_keyword_identity_ignores_case_and_surrounding_space() -> None:
    assert keyword_identity("  AP Automation ") == keyword_identity("ap automation")


def test_case_variants_collapse_to_highest_volume_record() -> None:
    result = deduplicate_keywords([_kw("X", 10), _kw("x", 50)])

    assert len(result) == 1
    assert result[0].keyword == "x"
    assert result[0].volume == 50


def test_equal_volume_keeps_first_record() -> None:
    result = deduplicate_keywords([_kw("invoice", 30, "a"), _kw("Invoice", 30, "b")])

    assert [(k.keyword, k.source) for k in result] == [("invoice", "a")]


def test_first_seen_order_is_preserved() -> None:
    result = deduplicate_keywords([_kw("b", 1), _kw("a", 1), _kw("B", 9), _kw("c", 1)])

    assert [k.keyword for k in result] == ["B", "a", "c"]


def test_deduplication_is_idempotent() -> None:
    records = [_kw("X", 10), _kw("x", 50), _kw("y", 5), _kw("Y ", 5)]

    once = deduplicate_keywords(records)

    assert deduplicate_keywords(once) == once


def test_empty_input() -> None:
    assert deduplicate_keywords([]) == []

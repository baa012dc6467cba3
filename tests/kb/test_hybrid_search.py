"""
Unit tests for codesearch.kb.local.hybrid_search

The index coordinator is mocked; only score blending, keyword matching and
intent reordering are under test.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from codesearch.kb.local.hybrid_search import (
    HybridSearch,
    has_error_handling,
    keyword_score,
)
from codesearch.kb.local.models import CodeUnit, SearchResult, UnitKind


def _unit(name, kind=UnitKind.METHOD, content="", summary=""):
    return CodeUnit(
        file_path=f"/p/{name}.cs",
        line_start=1,
        line_end=10,
        kind=kind,
        name=name,
        content=content,
        summary=summary,
        unit_id=f"{name}.cs:1-10",
    )


def _result(unit, score):
    return SearchResult(unit_id=unit.unit_id, score=score, unit=unit)


def _index(results, ready=True):
    index = MagicMock()
    index.is_ready = ready
    index.query.return_value = results
    return index


# ---------------------------------------------------------------------------
# Keyword scoring
# ---------------------------------------------------------------------------

class TestKeywordScore:

    def test_all_keywords_in_name(self):
        unit = _unit("PlayerController.MovePlayer")
        assert keyword_score(unit, ["move", "player"]) == pytest.approx(1.0)

    def test_partial_coverage(self):
        unit = _unit("PlayerController.MovePlayer")
        assert keyword_score(unit, ["move", "jump"]) == pytest.approx(0.5)

    def test_field_weights(self):
        unit = _unit("Thing", summary="handles saving", content="File.Write(path)")
        assert keyword_score(unit, ["saving"]) == pytest.approx(0.7)
        assert keyword_score(unit, ["path"]) == pytest.approx(0.4)

    def test_no_keywords(self):
        assert keyword_score(_unit("Thing"), []) == 0.0

    def test_has_error_handling(self):
        assert has_error_handling(_unit("A", content="try { } catch (Exception) { }"))
        assert not has_error_handling(_unit("A", content="x++;"))


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

class TestSearch:

    @pytest.mark.parametrize("top_k, expected", [(3, 6), (10, 20), (15, 20), (30, 30)])
    def test_fetch_count(self, top_k, expected):
        assert HybridSearch.fetch_count(top_k) == expected

    @pytest.mark.parametrize("query, top_k, ready", [
        ("", 5, True),
        ("   ", 5, True),
        ("move", 0, True),
        ("move", 5, False),
    ])
    def test_degenerate_inputs(self, query, top_k, ready):
        index = _index([], ready=ready)
        assert HybridSearch(index).search(query, top_k) == []
        index.query.assert_not_called()

    def test_blends_semantic_and_keyword_scores(self):
        move = _unit("PlayerController.MovePlayer")
        save = _unit("SaveManager.SaveGame")
        index = _index([_result(save, 0.6), _result(move, 0.5)])

        results = HybridSearch(index).search("move player", top_k=5)

        assert [r.unit.name for r in results] == ["PlayerController.MovePlayer",
                                                  "SaveManager.SaveGame"]
        assert results[0].score == pytest.approx(0.7 * 0.5 + 0.3 * 1.0)
        assert results[1].score == pytest.approx(0.7 * 0.6)

    def test_queries_index_with_expanded_text(self):
        index = _index([])
        HybridSearch(index).search("player movement", top_k=3)
        text, fetch = index.query.call_args[0]
        assert text.startswith("player movement transform")
        assert fetch == 6

    def test_truncates_to_top_k(self):
        units = [_unit(f"U{i}") for i in range(5)]
        index = _index([_result(u, 0.5) for u in units])
        assert len(HybridSearch(index).search("anything", top_k=2)) == 2


class TestSearchWithIntent:

    def test_kind_boost_reorders_without_changing_scores(self):
        cls = _unit("Inventory", kind=UnitKind.CLASS)
        method = _unit("Inventory.Add", kind=UnitKind.METHOD)
        index = _index([_result(cls, 0.8), _result(method, 0.65)])

        results = HybridSearch(index).search_with_intent("add item method", top_k=2)

        assert [r.unit.name for r in results] == ["Inventory.Add", "Inventory"]
        assert results[0].score < results[1].score

    def test_debug_prefers_error_handling(self):
        plain = _unit("Loader.Load", content="return data;")
        guarded = _unit("Loader.SafeLoad", content="try { } catch (Exception e) { }")
        index = _index([_result(plain, 0.7), _result(guarded, 0.6)])

        results = HybridSearch(index).search_with_intent("loader crash", top_k=2)

        assert results[0].unit.name == "Loader.SafeLoad"

    def test_general_intent_keeps_order(self):
        a = _unit("Alpha")
        b = _unit("Beta")
        index = _index([_result(a, 0.9), _result(b, 0.1)])
        results = HybridSearch(index).search_with_intent("zzz", top_k=1)
        assert [r.unit.name for r in results] == ["Alpha"]

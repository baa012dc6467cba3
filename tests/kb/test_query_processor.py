"""
Unit tests for codesearch.kb.local.query_processor
"""

from __future__ import annotations

import pytest

from codesearch.kb.local.query_processor import (
    MAX_EXPANSIONS,
    Query,
    QueryIntent,
    QueryProcessor,
)


@pytest.fixture
def qp():
    return QueryProcessor()


class TestKeywords:

    def test_drops_stopwords_and_short_words(self, qp):
        assert qp.extract_keywords("How do I move the player?") == ["move", "player"]

    def test_adds_identifier_sub_words(self, qp):
        assert qp.extract_keywords("Where is MovePlayer defined") == [
            "moveplayer", "defined", "move", "player",
        ]

    def test_blank(self, qp):
        assert qp.extract_keywords("   ") == []


class TestExpansion:

    def test_topic_terms_are_appended_and_capped(self, qp):
        expanded = qp.expand_query("player movement")
        assert expanded == "player movement transform rigidbody velocity position translate"
        assert len(expanded.split()) - 2 == MAX_EXPANSIONS

    def test_terms_already_present_are_skipped(self, qp):
        expanded = qp.expand_query("physics rigidbody")
        assert expanded.split()[:2] == ["physics", "rigidbody"]
        assert expanded.split().count("rigidbody") == 1

    def test_topics_match_whole_word_prefixes(self, qp):
        assert qp.expand_query("build menu") == "build menu"

    def test_component_expansion(self, qp):
        assert qp.expand_query("add component") == "add component monobehaviour"

    def test_no_topic_returns_query_unchanged(self, qp):
        assert qp.expand_query("enemy spawner") == "enemy spawner"


class TestClassification:

    @pytest.mark.parametrize("query, intent", [
        ("null reference crash in player", QueryIntent.DEBUG),
        ("fix the save bug", QueryIntent.DEBUG),
        ("How do I move the player?", QueryIntent.HOW_TO),
        ("how to spawn enemies", QueryIntent.HOW_TO),
        ("explain the save system", QueryIntent.EXPLAIN),
        ("what does SaveGame do", QueryIntent.EXPLAIN),
        ("which class handles input", QueryIntent.FIND_CLASS),
        ("find the jump method", QueryIntent.FIND_METHOD),
        ("player health property", QueryIntent.FIND_PROPERTY),
        ("enemy spawner", QueryIntent.GENERAL),
        ("", QueryIntent.GENERAL),
    ])
    def test_classify(self, qp, query, intent):
        assert qp.classify_query(query) is intent

    def test_debug_wins_over_how_to(self, qp):
        assert qp.classify_query("how do I fix this exception") is QueryIntent.DEBUG


class TestProcess:

    def test_process(self, qp):
        q = qp.process("explain MovePlayer")
        assert isinstance(q, Query)
        assert q.text == "explain MovePlayer"
        assert q.intent is QueryIntent.EXPLAIN
        assert "move" in q.keywords

    def test_optimize_short_query_expands(self, qp):
        assert qp.optimize_for_search("camera") == qp.expand_query("camera")

    def test_optimize_long_query_front_loads_keywords(self, qp):
        query = "player jump height gravity landing animation"
        optimized = qp.optimize_for_search(query)
        assert optimized == "player jump height gravity landing " + query

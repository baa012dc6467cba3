"""
Hybrid search: vector similarity blended with keyword matching.

The semantic score comes from the index coordinator's vector search over
the expanded query; the keyword score rewards units whose name, summary or
body mention the query's keywords.  Final score::

    0.7 * semantic + 0.3 * keyword
"""

from __future__ import annotations

import logging
from typing import Optional

from .models import CodeUnit, SearchResult, UnitKind
from .query_processor import QueryIntent, QueryProcessor

logger = logging.getLogger(__name__)

SEMANTIC_WEIGHT = 0.7
KEYWORD_WEIGHT = 0.3

NAME_MATCH_WEIGHT = 1.0
SUMMARY_MATCH_WEIGHT = 0.7
CONTENT_MATCH_WEIGHT = 0.4

# Overfetch ceiling; raised to top_k when more results are requested.
MAX_FETCH = 20

INTENT_KIND_BOOST = 1.5
ERROR_HANDLING_BOOST = 1.3

_INTENT_KINDS = {
    QueryIntent.FIND_CLASS: UnitKind.CLASS,
    QueryIntent.FIND_METHOD: UnitKind.METHOD,
    QueryIntent.FIND_PROPERTY: UnitKind.PROPERTY,
}

_ERROR_MARKERS = ("catch", "Exception", "Debug.Log")


def keyword_score(unit: CodeUnit, keywords: list[str]) -> float:
    """
    Score in ``[0, 1]`` for how well *unit* matches *keywords*.

    Each keyword counts once, at the weight of the best field it appears
    in (name, then summary, then content).  The result is keyword coverage
    times the average matched weight.
    """
    if not keywords:
        return 0.0

    name = unit.name.lower()
    summary = unit.summary.lower()
    content = unit.content.lower()

    matched = 0
    weight = 0.0
    for keyword in keywords:
        kw = keyword.lower()
        if kw in name:
            weight += NAME_MATCH_WEIGHT
        elif summary and kw in summary:
            weight += SUMMARY_MATCH_WEIGHT
        elif kw in content:
            weight += CONTENT_MATCH_WEIGHT
        else:
            continue
        matched += 1

    if matched == 0:
        return 0.0
    coverage = matched / len(keywords)
    return coverage * (weight / matched)


def has_error_handling(unit: CodeUnit) -> bool:
    return any(marker in unit.content for marker in _ERROR_MARKERS)


class HybridSearch:
    """
    Parameters
    ----------
    index:
        :class:`~codesearch.kb.local.indexer.IndexCoordinator` to query.
    query_processor:
        Optional shared :class:`QueryProcessor`.
    """

    def __init__(self, index, query_processor: Optional[QueryProcessor] = None) -> None:
        self._index = index
        self._qp = query_processor or QueryProcessor()

    @staticmethod
    def fetch_count(top_k: int) -> int:
        """Number of semantic candidates fetched for *top_k* results."""
        return min(top_k * 2, max(MAX_FETCH, top_k))

    def search(self, query: str, top_k: int = 10) -> list[SearchResult]:
        """
        Run a hybrid search.

        Returns
        -------
        list[SearchResult]
            At most *top_k* results sorted by blended score; empty for a
            blank query or an index that is not ready.
        """
        if not query or not query.strip() or top_k <= 0:
            return []
        if not self._index.is_ready:
            logger.warning("Hybrid search skipped: index not ready")
            return []

        expanded = self._qp.expand_query(query)
        keywords = self._qp.extract_keywords(query)
        candidates = self._index.query(expanded, self.fetch_count(top_k))

        blended = [
            r.with_score(SEMANTIC_WEIGHT * r.score + KEYWORD_WEIGHT * keyword_score(r.unit, keywords))
            for r in candidates
        ]
        blended.sort(key=lambda r: r.score, reverse=True)
        logger.debug("Hybrid search for %r: %d candidates, keywords=%s",
                     query, len(candidates), keywords)
        return blended[:top_k]

    def search_with_intent(self, query: str, top_k: int = 10) -> list[SearchResult]:
        """
        Hybrid search reordered by the query's intent.

        Units of the kind the intent targets (or error-handling code for
        DEBUG queries) are ranked as if their score were boosted; the
        reported scores are unchanged.
        """
        intent = self._qp.classify_query(query)
        results = self.search(query, top_k * 2)

        kind = _INTENT_KINDS.get(intent)
        if kind is not None:
            def sort_key(r: SearchResult) -> float:
                return r.score * INTENT_KIND_BOOST if r.unit.kind is kind else r.score
        elif intent is QueryIntent.DEBUG:
            def sort_key(r: SearchResult) -> float:
                return r.score * ERROR_HANDLING_BOOST if has_error_handling(r.unit) else r.score
        else:
            return results[:top_k]

        results.sort(key=sort_key, reverse=True)
        return results[:top_k]

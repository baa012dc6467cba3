"""
Multi-signal re-ranking of search results.

A result's new score is a weighted sum of five signals:

=================  ======  ==============================================
signal             weight  meaning
=================  ======  ==============================================
semantic           0.50    incoming (hybrid) score
keyword density    0.20    share of the unit text covered by keywords
structure match    0.15    unit kind vs. query intent
recency            0.10    source file modification age
quality            0.05    documentation, size and name heuristics
=================  ======  ==============================================

Filtering and de-duplication are separate, composable steps.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .models import CodeUnit, SearchResult, UnitKind
from .query_processor import QueryIntent, QueryProcessor

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86400.0

_ERROR_MARKERS = ("catch", "try", "Exception", "Debug.LogError", "throw")

_INTENT_KINDS = {
    QueryIntent.FIND_CLASS: UnitKind.CLASS,
    QueryIntent.FIND_METHOD: UnitKind.METHOD,
    QueryIntent.FIND_PROPERTY: UnitKind.PROPERTY,
}


@dataclass(frozen=True)
class RerankWeights:
    semantic: float = 0.5
    keyword_density: float = 0.2
    structure_match: float = 0.15
    recency: float = 0.1
    quality: float = 0.05


class Reranker:
    """
    Parameters
    ----------
    weights:
        Signal weights.
    recency_full_days:
        Files modified within this many days get the full recency bonus.
    recency_max_days:
        Age at which the bonus bottoms out at :attr:`RECENCY_FLOOR`.
    clock:
        Returns the current time in epoch seconds.
    query_processor:
        Used for keyword extraction.
    """

    RECENCY_FLOOR = 0.3
    NEUTRAL = 0.5

    def __init__(
        self,
        weights: RerankWeights = RerankWeights(),
        recency_full_days: float = 7,
        recency_max_days: float = 90,
        clock: Callable[[], float] = time.time,
        query_processor: Optional[QueryProcessor] = None,
    ) -> None:
        self.weights = weights
        self.recency_full_days = recency_full_days
        self.recency_max_days = recency_max_days
        self._clock = clock
        self._qp = query_processor or QueryProcessor()

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    def rerank(self, results: list[SearchResult], query: str,
               intent: QueryIntent = QueryIntent.GENERAL) -> list[SearchResult]:
        """Re-score *results* and return them sorted by the new score."""
        if not results:
            return []
        keywords = self._qp.extract_keywords(query)
        w = self.weights
        rescored = []
        for r in results:
            score = (
                w.semantic * r.score
                + w.keyword_density * self.keyword_density(r.unit, keywords)
                + w.structure_match * self.structure_match(r.unit, intent)
                + w.recency * self.recency(r.unit)
                + w.quality * self.quality(r.unit)
            )
            rescored.append(r.with_score(score))
        rescored.sort(key=lambda r: r.score, reverse=True)
        return rescored

    @staticmethod
    def filter_by_relevance(results: list[SearchResult],
                            min_score: float = 0.3) -> list[SearchResult]:
        return [r for r in results if r.score >= min_score]

    @staticmethod
    def deduplicate(results: list[SearchResult]) -> list[SearchResult]:
        """
        Keep the first result per (file name, 10-line bucket of the start
        line).
        """
        seen: set[str] = set()
        unique: list[SearchResult] = []
        for r in results:
            key = f"{os.path.basename(r.unit.file_path)}:{r.unit.line_start // 10}"
            if key in seen:
                continue
            seen.add(key)
            unique.append(r)
        return unique

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    @classmethod
    def keyword_density(cls, unit: CodeUnit, keywords: list[str]) -> float:
        """Keyword character coverage of the unit text; 10 % or more -> 1.0."""
        if not keywords:
            return cls.NEUTRAL
        text = f"{unit.name} {unit.summary} {unit.content}".lower()
        if not text:
            return 0.0
        matched = 0
        for keyword in keywords:
            kw = keyword.lower()
            if kw:
                matched += text.count(kw) * len(kw)
        return min(matched / len(text) * 10.0, 1.0)

    @classmethod
    def structure_match(cls, unit: CodeUnit, intent: QueryIntent) -> float:
        kind = _INTENT_KINDS.get(intent)
        if kind is not None:
            return 1.0 if unit.kind is kind else 0.3
        if intent is QueryIntent.DEBUG:
            return 0.8 if any(m in unit.content for m in _ERROR_MARKERS) else 0.4
        if intent is QueryIntent.HOW_TO:
            return 0.7 if unit.kind is UnitKind.METHOD else 0.5
        if intent is QueryIntent.EXPLAIN:
            return 0.8 if unit.summary else 0.5
        return cls.NEUTRAL

    def recency(self, unit: CodeUnit) -> float:
        """1.0 when recent, decaying linearly to the floor; neutral if unknown."""
        try:
            mtime = os.path.getmtime(unit.file_path)
        except OSError:
            return self.NEUTRAL

        age_days = (self._clock() - mtime) / _SECONDS_PER_DAY
        if age_days <= self.recency_full_days:
            return 1.0
        if age_days >= self.recency_max_days:
            return self.RECENCY_FLOOR
        window = self.recency_max_days - self.recency_full_days
        return 1.0 - (age_days - self.recency_full_days) / window * (1.0 - self.RECENCY_FLOOR)

    @staticmethod
    def quality(unit: CodeUnit) -> float:
        score = 0.0
        if unit.summary:
            score += 0.4
        span = unit.line_end - unit.line_start
        if 5 <= span <= 100:
            score += 0.3
        elif span > 0:
            score += 0.1
        if len(unit.name) > 3:
            score += 0.3
        return min(score, 1.0)

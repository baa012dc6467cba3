"""
Query analysis: keyword extraction, domain expansion and intent
classification.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from .embedder import split_identifier


class QueryIntent(str, Enum):
    FIND_CLASS = "find_class"
    FIND_METHOD = "find_method"
    FIND_PROPERTY = "find_property"
    EXPLAIN = "explain"
    HOW_TO = "how_to"
    DEBUG = "debug"
    GENERAL = "general"


@dataclass
class Query:
    """A query with its derived keywords and intent."""
    text: str
    keywords: list[str] = field(default_factory=list)
    intent: QueryIntent = QueryIntent.GENERAL


# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

# Topic word -> related technical terms appended by expand_query().
TOPIC_EXPANSIONS: dict[str, tuple[str, ...]] = {
    "movement": ("transform", "rigidbody", "velocity", "position", "translate", "move"),
    "input": ("inputsystem", "getkey", "getaxis", "inputaction", "keyboard", "mouse"),
    "physics": ("rigidbody", "collider", "raycast", "trigger", "collision", "force"),
    "animation": ("animator", "animationclip", "mecanim", "transition", "blend"),
    "ui": ("canvas", "button", "text", "image", "panel", "uitoolkit", "visualelement"),
    "audio": ("audiosource", "audioclip", "mixer", "sound", "music"),
    "save": ("playerprefs", "json", "serialize", "persist", "load", "data"),
    "network": ("netcode", "multiplayer", "rpc", "sync", "client", "server"),
    "spawn": ("instantiate", "prefab", "pool", "create", "destroy"),
    "camera": ("cinemachine", "follow", "lookat", "viewport", "projection"),
}

COMPONENT_WORDS: tuple[str, ...] = ("component", "script")
COMPONENT_EXPANSION = "monobehaviour"

MAX_EXPANSIONS = 5

STOPWORDS: frozenset[str] = frozenset({
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "can", "this", "that", "these", "those",
    "i", "you", "he", "she", "it", "we", "they", "what", "which", "who",
    "how", "when", "where", "why", "all", "each", "every", "both", "few",
    "more", "most", "other", "some", "such", "no", "not", "only", "own",
    "same", "so", "than", "too", "very", "just", "about", "into", "through",
    "for", "with", "from", "to", "of", "in", "on", "at", "by",
})

# Single words match as word prefixes ("crash" matches "crashes");
# phrases match anywhere in the lowercased query.
DEBUG_INDICATORS = ("error", "bug", "fix", "null", "exception", "crash", "issue", "debug")
HOW_TO_PHRASES = ("how to", "how do", "implement", "create")
EXPLAIN_PHRASES = ("explain", "what is", "what does", "understand")
CLASS_INDICATORS = ("class", "interface", "struct", "enum", "type")
METHOD_INDICATORS = ("method", "function", "func", "void", "async", "call")
PROPERTY_INDICATORS = ("property", "field", "variable", "get", "set")

_WORD_SPLIT_RE = re.compile(r"[^a-z0-9]+")
_IDENT_RE = re.compile(r"[A-Za-z0-9_]+")


def _words(lowered: str) -> list[str]:
    return [w for w in _WORD_SPLIT_RE.split(lowered) if w]


def _any_prefix(words: list[str], indicators: tuple[str, ...]) -> bool:
    return any(w.startswith(ind) for w in words for ind in indicators)


class QueryProcessor:
    """Stateless query analysis used by hybrid search and retrieval."""

    def extract_keywords(self, query: str) -> list[str]:
        """
        Return the distinct meaningful terms of *query*, lowercased.

        Words shorter than three characters and stopwords are dropped.
        camelCase/PascalCase sub-words of identifiers in the original text
        are appended (``"MovePlayer"`` adds ``"move"`` and ``"player"``).
        """
        if not query or not query.strip():
            return []

        keywords: list[str] = []
        for word in _words(query.lower()):
            if len(word) > 2 and word not in STOPWORDS and word not in keywords:
                keywords.append(word)

        for ident in _IDENT_RE.findall(query):
            for part in split_identifier(ident):
                word = part.lower()
                if len(word) > 2 and word not in STOPWORDS and word not in keywords:
                    keywords.append(word)
        return keywords

    def expand_query(self, query: str) -> str:
        """
        Append related technical terms for topic words found in *query*.

        At most :data:`MAX_EXPANSIONS` new terms are added, and terms that
        already occur in the query are skipped.
        """
        if not query or not query.strip():
            return query

        lowered = query.lower()
        words = _words(lowered)
        expansions: list[str] = []

        for topic, terms in TOPIC_EXPANSIONS.items():
            if not _any_prefix(words, (topic,)):
                continue
            for term in terms:
                if term not in lowered and term not in expansions:
                    expansions.append(term)

        if _any_prefix(words, COMPONENT_WORDS) and COMPONENT_EXPANSION not in expansions \
                and COMPONENT_EXPANSION not in lowered:
            expansions.append(COMPONENT_EXPANSION)

        expansions = expansions[:MAX_EXPANSIONS]
        if not expansions:
            return query
        return f"{query} {' '.join(expansions)}"

    def classify_query(self, query: str) -> QueryIntent:
        """
        Pick the first matching intent in priority order: DEBUG, HOW_TO,
        EXPLAIN, FIND_CLASS, FIND_METHOD, FIND_PROPERTY, else GENERAL.
        """
        if not query or not query.strip():
            return QueryIntent.GENERAL

        lowered = query.lower()
        words = _words(lowered)

        if _any_prefix(words, DEBUG_INDICATORS):
            return QueryIntent.DEBUG
        if any(p in lowered for p in HOW_TO_PHRASES):
            return QueryIntent.HOW_TO
        if any(p in lowered for p in EXPLAIN_PHRASES):
            return QueryIntent.EXPLAIN
        if _any_prefix(words, CLASS_INDICATORS):
            return QueryIntent.FIND_CLASS
        if _any_prefix(words, METHOD_INDICATORS):
            return QueryIntent.FIND_METHOD
        if _any_prefix(words, PROPERTY_INDICATORS):
            return QueryIntent.FIND_PROPERTY
        return QueryIntent.GENERAL

    def optimize_for_search(self, query: str) -> str:
        """
        Expanded query for short queries; for longer ones the first five
        keywords are placed in front of the original text.
        """
        if not query or not query.strip():
            return query
        keywords = self.extract_keywords(query)
        if len(keywords) <= 3:
            return self.expand_query(query)
        return f"{' '.join(keywords[:5])} {query}"

    def process(self, query: str) -> Query:
        """Analyse *query* into a :class:`Query`."""
        return Query(
            text=query,
            keywords=self.extract_keywords(query),
            intent=self.classify_query(query),
        )

"""
Retrieval-augmented answering over the local code index.

Pipeline::

    classify intent -> hybrid search (overfetch) -> rerank -> filter
      -> deduplicate -> top K -> bounded context -> grounded prompt -> LLM

When no inference service is configured or reachable, or generation
fails, the ranked results are returned as a markdown report instead.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Callable, Optional

from ...config import Config
from ...llm.base import InferenceService, LLMError
from .hybrid_search import HybridSearch
from .models import SearchResult, UnitKind, normalize_path
from .query_processor import QueryIntent, QueryProcessor
from .reranker import Reranker

logger = logging.getLogger(__name__)

EMPTY_QUERY_MESSAGE = "Please enter a query."
NOT_READY_MESSAGE = "Index not ready. Please build the index first (codesearch index)."
NO_RESULTS_MESSAGE = "No relevant code found. Try a different query or rebuild the index."
NO_RELEVANT_MESSAGE = "No sufficiently relevant code found. Try rephrasing your query."

# Below this offset a cut at the last newline would keep too little code.
_MIN_LINE_CUT = 200

_INTENT_FOCUS = {
    QueryIntent.DEBUG: "FOCUS: Identify bugs, null reference risks, race conditions, or logic "
                       "errors. Suggest specific fixes with code.",
    QueryIntent.HOW_TO: "FOCUS: Provide step-by-step implementation guidance using patterns "
                        "found in the codebase.",
    QueryIntent.EXPLAIN: "FOCUS: Explain the purpose, flow, and design of the code. Use the "
                         "actual signatures and class names.",
    QueryIntent.FIND_CLASS: "FOCUS: Describe the class structure, its responsibilities, key "
                            "methods, and how it relates to other components.",
    QueryIntent.FIND_METHOD: "FOCUS: Explain what the method does, its parameters, return "
                             "value, and any side effects.",
    QueryIntent.FIND_PROPERTY: "FOCUS: Describe the property's purpose, type, and any "
                               "getter/setter logic.",
}
_DEFAULT_FOCUS = "FOCUS: Provide accurate, specific answers referencing the actual code."

_STRICT_RULES = (
    "STRICT RULES:\n"
    "1. ONLY cite code that appears in the context below - do NOT invent or guess API names\n"
    "2. Reference files and line numbers precisely: `FileName.cs:42`\n"
    "3. Quote method signatures exactly as shown\n"
    "4. If the context is insufficient, clearly state what information is missing\n"
    "5. Be concise - avoid generic programming advice"
)


class RetrievalOrchestrator:
    """
    Parameters
    ----------
    index:
        :class:`~codesearch.kb.local.indexer.IndexCoordinator` to search.
    inference_provider:
        An :class:`~codesearch.llm.base.InferenceService`, or a zero-argument
        callable returning one (or None).  Resolved on every query.
    config:
        Retrieval limits; defaults to the index's config.
    """

    def __init__(self, index, inference_provider=None, config: Optional[Config] = None) -> None:
        self._index = index
        self.config = config or getattr(index, "config", None) or Config()

        if inference_provider is None or isinstance(inference_provider, InferenceService):
            self._get_service: Callable[[], Optional[InferenceService]] = lambda: inference_provider
        else:
            self._get_service = inference_provider

        self._qp = QueryProcessor()
        self._hybrid = HybridSearch(index, self._qp)
        self._reranker = Reranker(
            recency_full_days=self.config.RECENCY_FULL_DAYS,
            recency_max_days=self.config.RECENCY_MAX_DAYS,
            query_processor=self._qp,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def query_with_context(
        self,
        query: str,
        on_text: Optional[Callable[[str], None]] = None,
        cancel_event: Optional[threading.Event] = None,
        top_k: Optional[int] = None,
    ) -> str:
        """
        Answer *query* from the indexed code.

        Streamed model output is relayed to *on_text* as it arrives.  The
        return value is the full answer, a ranked-results report when no
        model is usable, or a short user-facing message when nothing can
        be retrieved.  Never raises for retrieval or inference failures.
        """
        if not query or not query.strip():
            return EMPTY_QUERY_MESSAGE
        if not self._index.is_ready:
            return NOT_READY_MESSAGE

        top_k = top_k or self.config.TOP_K
        intent = self._qp.classify_query(query)
        logger.info("Query intent: %s", intent.name)

        candidates = self._hybrid.search_with_intent(query, top_k * 2)
        if not candidates:
            return NO_RESULTS_MESSAGE

        results = self._refine(candidates, query, intent, top_k)
        if not results:
            return NO_RELEVANT_MESSAGE
        logger.info("Found %d relevant units", len(results))

        service = self._get_service()
        if service is None or not service.is_ready():
            return self.format_report(query, results)

        prompt = self.build_prompt(query, self.build_context(results), intent)
        try:
            return service.start_inference(prompt, on_text, cancel_event)
        except LLMError as e:
            logger.error("Inference failed, returning ranked results: %s", e)
            return self.format_report(query, results)

    def get_context_for_query(self, query: str, top_k: Optional[int] = None) -> str:
        """
        Context block for embedding in another prompt, or ``""`` when the
        index is not ready or nothing relevant is found.
        """
        if not query or not query.strip() or not self._index.is_ready:
            return ""
        results = self.search_only(query, top_k)
        if not results:
            return ""

        logger.debug("Context added: %d units", len(results))
        return (
            "=== RELEVANT CODE FROM PROJECT ===\n"
            f"{self.build_context(results)}\n"
            "=== END OF PROJECT CONTEXT ===\n\n"
        )

    def search_only(self, query: str, top_k: Optional[int] = None) -> list[SearchResult]:
        """
        Ranked, filtered and de-duplicated results without generation.

        *top_k* defaults to ``config.TOP_K``.
        """
        if not query or not query.strip() or not self._index.is_ready:
            return []
        top_k = top_k or self.config.TOP_K
        intent = self._qp.classify_query(query)
        candidates = self._hybrid.search_with_intent(query, top_k * 2)
        return self._refine(candidates, query, intent, top_k)

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------

    def build_context(self, results: list[SearchResult]) -> str:
        """
        Concatenate formatted results up to ``MAX_CONTEXT_CHARS``; the entry
        that crosses the budget is cut and marked rather than dropped.
        """
        budget = self.config.MAX_CONTEXT_CHARS
        parts: list[str] = []
        total = 0
        for r in results:
            entry = self.format_entry(r)
            if total + len(entry) > budget:
                remaining = budget - total
                if remaining > 0:
                    parts.append(entry[:remaining] + "\n[... truncated ...]\n")
                break
            parts.append(entry)
            total += len(entry)
        return "".join(parts)

    def format_entry(self, result: SearchResult) -> str:
        unit = result.unit
        lines = [f"[{unit.kind.value.upper()}] {unit.name} (Relevance: {result.score:.0%})"]
        signature = _signature(unit)
        if signature:
            lines.append(f"Signature: {signature}")
        lines.append(f"Location: {self._display_path(unit.file_path)}:{unit.line_start}-{unit.line_end}")
        if unit.summary:
            lines.append(f"Description: {unit.summary}")
        lines.append("```csharp")
        lines.append(self._clip(unit.content).strip())
        lines.append("```")
        return "\n".join(lines) + "\n\n"

    def build_prompt(self, query: str, context: str, intent: QueryIntent) -> str:
        focus = _INTENT_FOCUS.get(intent, _DEFAULT_FOCUS)
        return (
            "[INST] You are an expert Unity C# code analyst. Your task is to answer "
            "questions using ONLY the retrieved code context below.\n\n"
            f"{_STRICT_RULES}\n\n"
            f"{focus}\n\n"
            "========== RETRIEVED CODE CONTEXT ==========\n"
            f"{context}\n"
            "========== END OF CONTEXT ==========\n\n"
            f"QUESTION: {query}\n\n"
            "Answer accurately using only the code above. Start with the most relevant "
            "information. [/INST]\n"
        )

    def format_report(self, query: str, results: list[SearchResult]) -> str:
        """Markdown listing of *results* for when no model answers."""
        lines = [
            f'## Search Results for: "{query}"',
            "",
            "*(No LLM available for analysis - showing ranked results)*",
            "",
        ]
        for i, r in enumerate(results, 1):
            unit = r.unit
            lines.append(f"### {i}. {unit.name}")
            lines.append(f"**File:** `{self._display_path(unit.file_path)}` "
                         f"(lines {unit.line_start}-{unit.line_end})")
            lines.append(f"**Type:** {unit.kind.value} | **Relevance:** {r.score:.0%}")
            if unit.summary:
                lines.append(f"> {unit.summary}")
            lines.append("")
        return "\n".join(lines) + "\n"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _refine(self, results: list[SearchResult], query: str,
                intent: QueryIntent, top_k: int) -> list[SearchResult]:
        results = self._reranker.rerank(results, query, intent)
        results = Reranker.filter_by_relevance(results, self.config.RELEVANCE_THRESHOLD)
        results = Reranker.deduplicate(results)
        return results[:top_k]

    def _clip(self, content: str) -> str:
        cap = self.config.MAX_UNIT_CHARS
        if len(content) <= cap:
            return content
        cut = content.rfind("\n", 0, cap + 1)
        if cut > _MIN_LINE_CUT:
            return content[:cut] + "\n    // ... (implementation continues)"
        return content[:cap] + "..."

    def _display_path(self, path: str) -> str:
        root = normalize_path(self.config.PROJECT_ROOT).rstrip("/") + "/"
        norm = normalize_path(path)
        if norm.startswith(root):
            return norm[len(root):]
        return os.path.basename(norm)


def _signature(unit) -> str:
    """Declaration line of a class, method or property unit."""
    _, sep, part = unit.unit_id.rpartition("#")
    # Later sub-units start mid-body
    if unit.kind is UnitKind.FILE or (sep and part != "0"):
        return ""
    for line in unit.content.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith(("//", "[")):
            return stripped.rstrip("{").strip()
    return ""

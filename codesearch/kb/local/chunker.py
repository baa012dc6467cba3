"""
Splits oversized code units into token-bounded, overlapping sub-units.

Token counts are approximated as ``len(text) // CHARS_PER_TOKEN``.  Splits
always fall on line boundaries and each sub-unit keeps the absolute line
numbers of the lines it covers.
"""

from __future__ import annotations

import logging

from .models import CodeUnit

logger = logging.getLogger(__name__)

# Approximate: 1 token ≈ 4 characters for code
CHARS_PER_TOKEN = 4

# Safety limit on sub-units produced from a single unit.
MAX_SUB_UNITS = 100


class Chunker:
    """
    Token-budget splitter for :class:`CodeUnit` objects.

    Parameters
    ----------
    max_chunk_tokens:
        Maximum estimated tokens per sub-unit.
    overlap_tokens:
        Estimated tokens repeated at the start of each following sub-unit.
    """

    def __init__(self, max_chunk_tokens: int = 512, overlap_tokens: int = 50) -> None:
        self.max_chunk_tokens = max_chunk_tokens
        self.overlap_tokens = overlap_tokens

    @property
    def max_chars(self) -> int:
        return self.max_chunk_tokens * CHARS_PER_TOKEN

    @property
    def overlap_chars(self) -> int:
        return self.overlap_tokens * CHARS_PER_TOKEN

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """Return the approximate token count of *text*."""
        return len(text) // CHARS_PER_TOKEN

    def split_unit(self, unit: CodeUnit) -> list[CodeUnit]:
        """
        Split *unit* if its content exceeds the token budget.

        Parameters
        ----------
        unit:
            Unit produced by the parser.

        Returns
        -------
        list[CodeUnit]
            ``[unit]`` when it fits; otherwise sub-units named
            ``"<name> (part N)"`` (the first keeps the original name and
            summary) with ids ``"<unit_id>#<index>"``.
        """
        max_chars = self.max_chars
        if len(unit.content) <= max_chars:
            return [unit]

        lines = unit.content.split("\n")
        parts: list[CodeUnit] = []
        start = 0

        while start < len(lines):
            # Take lines while the running length stays within budget
            length = 0
            end = start
            for i in range(start, len(lines)):
                length += len(lines[i]) + 1
                if length > max_chars and i > start:
                    break
                end = i

            index = len(parts)
            parts.append(unit.copy(
                line_start=unit.line_start + start,
                line_end=unit.line_start + end,
                name=unit.name if index == 0 else f"{unit.name} (part {index + 1})",
                content="\n".join(lines[start:end + 1]),
                summary=unit.summary if index == 0 else "",
                unit_id=f"{unit.unit_id}#{index}",
            ))

            if end >= len(lines) - 1:
                break
            if len(parts) >= MAX_SUB_UNITS:
                logger.warning("Sub-unit limit of %d reached for %s", MAX_SUB_UNITS, unit.name)
                break

            next_start = end + 1 - self._overlap_lines(lines, start, end)
            start = next_start if next_start > start else end + 1

        return parts

    def process_units(self, units: list[CodeUnit]) -> list[CodeUnit]:
        """Split every unit in *units*, preserving order."""
        result: list[CodeUnit] = []
        for unit in units:
            result.extend(self.split_unit(unit))
        return result

    def _overlap_lines(self, lines: list[str], start: int, end: int) -> int:
        """Number of trailing lines in ``lines[start:end+1]`` covering the overlap."""
        target = self.overlap_chars
        count = 0
        chars = 0
        i = end
        while i >= start and chars < target:
            chars += len(lines[i]) + 1
            count += 1
            i -= 1
        return max(1, count)

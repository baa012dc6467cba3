"""
Shared data classes for the Local Knowledge Base.

A :class:`CodeUnit` is one indexed span of source text.  It is produced by
the parser, possibly split by the chunker, and stored (denormalized) next to
its embedding in the vector store so results never need to re-read source.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


class UnitKind(str, Enum):
    """Structural kind of a code unit."""

    CLASS = "class"
    METHOD = "method"
    PROPERTY = "property"
    FILE = "file"


def normalize_path(path: str) -> str:
    """Return *path* with every backslash turned into a forward slash."""
    return path.replace("\\", "/")


def make_unit_id(file_path: str, line_start: int, line_end: int,
                 project_root: Optional[str] = None) -> str:
    """
    Build a stable unit id from a file path and a line range.

    The path is made relative to *project_root* when the file lives under it,
    so ids survive moving the whole project.

    Returns
    -------
    str
        ``"<path>:<line_start>-<line_end>"``
    """
    path = normalize_path(file_path)
    if project_root:
        root = normalize_path(os.path.abspath(project_root)).rstrip("/") + "/"
        abs_path = normalize_path(os.path.abspath(file_path))
        if abs_path.startswith(root):
            path = abs_path[len(root):]
    return f"{path}:{line_start}-{line_end}"


@dataclass
class CodeUnit:
    """A structural span of source code extracted for indexing."""

    file_path: str
    line_start: int         # 1-indexed, inclusive
    line_end: int           # 1-indexed, inclusive
    kind: UnitKind
    name: str               # e.g. "PlayerController.Move"
    content: str
    summary: str = ""       # documentation comment, if any
    unit_id: str = ""

    def embedding_text(self) -> str:
        """Text fed to the embedder for this unit."""
        return f"{self.name} {self.summary} {self.content}"

    def line_count(self) -> int:
        return self.line_end - self.line_start + 1

    def copy(self, **changes) -> "CodeUnit":
        return replace(self, **changes)

    def __str__(self) -> str:
        return (f"{self.kind.value}: {self.name} "
                f"({self.file_path}:{self.line_start}-{self.line_end})")


@dataclass
class SearchResult:
    """A scored unit returned by search; never persisted."""

    unit_id: str
    score: float
    unit: CodeUnit

    def with_score(self, score: float) -> "SearchResult":
        return SearchResult(unit_id=self.unit_id, score=score, unit=self.unit)

    def __str__(self) -> str:
        return f"{self.unit.name} (score: {self.score:.3f})"

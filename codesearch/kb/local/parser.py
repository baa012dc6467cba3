"""
Structural parser for C#-style source files.

Extracts classes, methods and properties with pattern matching over the raw
text and resolves each unit's end line with a bounded brace-depth scan.
This is an approximation, not a compiler front end: braces or semicolons
inside string and comment literals can mis-resolve where a span ends.

Every non-empty file yields at least one unit; files without any structural
match become a single ``file`` unit.
"""

from __future__ import annotations

import bisect
import logging
import os
import re
from typing import Optional

from .models import CodeUnit, UnitKind, make_unit_id, normalize_path

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Upper bound on lines scanned when resolving a span's end.
MAX_SCAN_LINES = 2000

# Span used when neither a brace body nor a terminator is found.
FALLBACK_SPAN_LINES = 10

# Words that look like a method name or return type in statement headers
# such as ``else if (x) {`` or ``switch (state) {``.
_CONTROL_WORDS: frozenset[str] = frozenset({
    "if", "for", "foreach", "while", "switch", "catch", "using", "lock",
    "return", "new", "else", "await", "throw", "fixed", "when", "nameof",
    "typeof", "sizeof", "default", "checked", "unchecked", "do", "try",
    "yield", "case", "goto", "class", "struct", "interface", "record", "enum",
})

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_MODIFIERS = (
    r"(?:(?:public|private|protected|internal|static|abstract|sealed|partial|"
    r"virtual|override|async|readonly|unsafe|extern|new)\s+)*"
)

_TYPE = r"[\w<>\[\],.?]+"

_CLASS_RE = re.compile(
    r"^[ \t]*" + _MODIFIERS
    + r"(?:class|struct|interface|enum|record)[ \t]+(?P<name>\w+)",
    re.MULTILINE,
)

_METHOD_RE = re.compile(
    r"^[ \t]*" + _MODIFIERS
    + r"(?:(?P<rtype>" + _TYPE + r"(?:[ \t]*,[ \t]*" + _TYPE + r")*)[ \t]+)?"
    + r"(?P<name>\w+)[ \t]*(?:<[^>\n]*>)?[ \t]*\((?P<params>[^)]*)\)"
    + r"(?:[ \t]*:[ \t]*(?:base|this)[ \t]*\([^)]*\))?"
    + r"\s*(?:\{|=>)",
    re.MULTILINE,
)

_PROPERTY_RE = re.compile(
    r"^[ \t]*" + _MODIFIERS
    + r"(?P<ptype>" + _TYPE + r")[ \t]+(?P<name>\w+)\s*\{\s*"
    + r"(?:(?:public|private|protected|internal)\s+)?(?:get|set|init)\b",
    re.MULTILINE,
)

_SUMMARY_RE = re.compile(r"<summary>\s*(.*?)\s*</summary>", re.DOTALL)
_XML_TAG_RE = re.compile(r"<[^>]+>")
_ATTRIBUTE_LINE_RE = re.compile(r"^\[.*\]$")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _line_offsets(text: str) -> list[int]:
    """Return the character offset at which each line starts."""
    offsets = [0]
    for m in re.finditer("\n", text):
        offsets.append(m.end())
    return offsets


def _split_lines(text: str) -> list[str]:
    lines = text.split("\n")
    if len(lines) > 1 and lines[-1] == "":
        lines.pop()
    return lines


def _find_end_line(lines: list[str], start_idx: int) -> int:
    """
    Resolve the 1-indexed end line of a construct starting at *start_idx*.

    Counts braces until the depth opened first returns to zero.  A ``=>``
    seen before any brace means an expression body, which ends at the next
    ``;``.  Both scans are bounded by :data:`MAX_SCAN_LINES`; when neither
    resolves, a fixed span of :data:`FALLBACK_SPAN_LINES` lines is used.
    """
    depth = 0
    opened = False
    limit = min(len(lines), start_idx + MAX_SCAN_LINES)

    for i in range(start_idx, limit):
        line = lines[i]
        for ch in line:
            if ch == "{":
                depth += 1
                opened = True
            elif ch == "}":
                depth -= 1
                if opened and depth == 0:
                    return i + 1

        if not opened and "=>" in line:
            for j in range(i, limit):
                if ";" in lines[j]:
                    return j + 1
            break

    return min(start_idx + FALLBACK_SPAN_LINES, len(lines))


def _clean_doc_line(line: str) -> str:
    line = line.strip()
    for prefix in ("///", "/**", "*/", "*"):
        if line.startswith(prefix):
            line = line[len(prefix):]
            break
    if line.endswith("*/"):
        line = line[:-2]
    return line.strip()


def _doc_summary(doc_lines: list[str]) -> str:
    """Turn raw documentation comment lines into a one-paragraph summary."""
    cleaned = [_clean_doc_line(l) for l in doc_lines]
    text = "\n".join(cleaned)
    m = _SUMMARY_RE.search(text)
    if m:
        text = m.group(1)
    text = _XML_TAG_RE.sub("", text)
    return " ".join(part for part in text.split() if part)


def _preceding_doc(lines: list[str], start_idx: int) -> str:
    """
    Collect the documentation block immediately above line *start_idx*.

    Attribute lines (``[SerializeField]``) between the comment and the
    declaration are skipped.  Both ``///`` runs and ``/** ... */`` blocks
    are recognised.
    """
    i = start_idx - 1
    while i >= 0 and _ATTRIBUTE_LINE_RE.match(lines[i].strip()):
        i -= 1
    if i < 0:
        return ""

    stripped = lines[i].strip()
    if stripped.startswith("///"):
        end = i
        while i >= 0 and lines[i].strip().startswith("///"):
            i -= 1
        return _doc_summary(lines[i + 1:end + 1])

    if stripped.endswith("*/"):
        end = i
        floor = max(-1, end - MAX_SCAN_LINES)
        while i > floor:
            if lines[i].strip().startswith("/**"):
                return _doc_summary(lines[i:end + 1])
            if lines[i].strip().startswith("/*") and i != end:
                return ""
            i -= 1
    return ""


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class StructuralParser:
    """
    Extracts :class:`CodeUnit` spans from source text.

    Parameters
    ----------
    project_root:
        When given, unit ids use paths relative to this directory.
    """

    def __init__(self, project_root: Optional[str] = None) -> None:
        self._project_root = project_root

    def parse_file(self, file_path: str) -> list[CodeUnit]:
        """
        Read *file_path* and return its code units.

        Raises
        ------
        OSError
            If the file cannot be read.
        """
        with open(file_path, encoding="utf-8", errors="replace") as fh:
            text = fh.read()
        return self.parse_text(text, normalize_path(os.path.abspath(file_path)))

    def parse_text(self, text: str, file_path: str) -> list[CodeUnit]:
        """
        Extract units from *text* as if it were the contents of *file_path*.

        Classes come first, then methods, then properties, each in source
        order.  Method and property names are qualified with the first class
        declared in the text.

        Returns
        -------
        list[CodeUnit]
            Empty only when *text* is empty.
        """
        text = text.replace("\r\n", "\n")
        file_path = normalize_path(file_path)
        lines = _split_lines(text)
        offsets = _line_offsets(text)

        first_class = _CLASS_RE.search(text)
        owner = first_class.group("name") if first_class else ""

        units: list[CodeUnit] = []
        for m in _CLASS_RE.finditer(text):
            units.append(self._make_unit(m, UnitKind.CLASS, "", lines, offsets, file_path))

        for m in _METHOD_RE.finditer(text):
            rtype = (m.group("rtype") or "").strip()
            if m.group("name") in _CONTROL_WORDS or rtype in _CONTROL_WORDS:
                continue
            units.append(self._make_unit(m, UnitKind.METHOD, owner, lines, offsets, file_path))

        for m in _PROPERTY_RE.finditer(text):
            if m.group("ptype") in _CONTROL_WORDS:
                continue
            units.append(self._make_unit(m, UnitKind.PROPERTY, owner, lines, offsets, file_path))

        if not units and text:
            end = len(lines)
            name = os.path.splitext(os.path.basename(file_path))[0]
            units.append(CodeUnit(
                file_path=file_path,
                line_start=1,
                line_end=end,
                kind=UnitKind.FILE,
                name=name,
                content="\n".join(lines),
                unit_id=make_unit_id(file_path, 1, end, self._project_root),
            ))

        logger.debug("Parsed %d units from %s", len(units), file_path)
        return units

    def _make_unit(self, match: re.Match, kind: UnitKind, owner: str,
                   lines: list[str], offsets: list[int], file_path: str) -> CodeUnit:
        # The pattern may begin with blank lines swallowed by the modifier
        # group; anchor the unit on the line holding the name.
        decl_offset = match.start("name")
        start_idx = bisect.bisect_right(offsets, decl_offset) - 1
        start_idx = min(start_idx, len(lines) - 1)
        end = _find_end_line(lines, start_idx)
        start = start_idx + 1

        name = match.group("name")
        if owner and kind is not UnitKind.CLASS:
            name = f"{owner}.{name}"

        return CodeUnit(
            file_path=file_path,
            line_start=start,
            line_end=end,
            kind=kind,
            name=name,
            content="\n".join(lines[start_idx:end]),
            summary=_preceding_doc(lines, start_idx),
            unit_id=make_unit_id(file_path, start, end, self._project_root),
        )

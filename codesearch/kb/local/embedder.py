"""
Text embedders for the Local Knowledge Base.

:class:`Embedder` is the contract the indexer and search layers depend on.
:class:`HashingEmbedder` is the default implementation: a deterministic,
model-free multi-probe feature hash over identifier tokens, so indexing
works fully offline.  A learned embedding model can be substituted behind
the same interface.

Vectors are L2-normalized ``numpy.float32`` arrays; vectors produced with
different dimensions are not comparable.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod

import numpy as np

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMBEDDING_DIM = 384

NUM_PROBES = 8
PROBE_STRIDE = 31
TOKEN_WEIGHT = 0.1

MIN_TOKEN_LEN = 2
MAX_TOKEN_LEN = 50

_NORM_EPSILON = 1e-4

_STOPWORDS: frozenset[str] = frozenset({
    "public", "private", "protected", "internal", "static", "void", "return",
    "class", "struct", "interface", "namespace", "using", "new", "this",
    "if", "else", "for", "foreach", "while", "do", "switch", "case", "break",
    "try", "catch", "finally", "throw", "var", "int", "float", "bool", "string",
    "true", "false", "null", "async", "await", "get", "set", "value",
})

# (dimension, weight, markers); a bonus is added once when any marker occurs
# in the lowercased text.
_STRUCTURAL_MARKERS: tuple[tuple[int, float, tuple[str, ...]], ...] = (
    (0, 0.2, ("void ", "return ")),
    (1, 0.2, ("class ", "struct ")),
    (12, 0.3, ("monobehaviour", "gameobject")),
    (13, 0.3, ("update", "fixedupdate")),
    (14, 0.3, ("start", "awake")),
    (15, 0.3, ("coroutine", "yield")),
    (16, 0.3, ("transform", "vector3")),
    (17, 0.3, ("rigidbody", "physics")),
)

_IDENT_RE = re.compile(r"[A-Za-z0-9_]+")
_CAMEL_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def split_identifier(token: str) -> list[str]:
    """
    Split a camelCase, PascalCase or snake_case identifier into sub-words.

    ``"MovePlayer"`` -> ``["Move", "Player"]``, ``"HTTPServer"`` ->
    ``["HTTP", "Server"]``, ``"max_speed"`` -> ``["max", "speed"]``.
    """
    words: list[str] = []
    for piece in token.split("_"):
        words.extend(_CAMEL_RE.findall(piece))
    return words


def stable_hash(token: str) -> int:
    """Unsigned 32-bit polynomial string hash (seed 17, multiplier 31)."""
    h = 17
    for ch in token:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return h


def _keep(token: str) -> bool:
    return MIN_TOKEN_LEN <= len(token) <= MAX_TOKEN_LEN and token not in _STOPWORDS


def extract_tokens(text: str) -> list[str]:
    """
    Return the lowercase embedding tokens of *text*.

    Sub-words are derived from the original-case identifier before
    lowercasing, so ``PlayerController`` contributes ``playercontroller``,
    ``player`` and ``controller``.
    """
    tokens: list[str] = []
    for ident in _IDENT_RE.findall(text):
        lowered = ident.lower()
        if not _keep(lowered):
            continue
        tokens.append(lowered)
        parts = split_identifier(ident)
        if len(parts) >= 2:
            tokens.extend(p.lower() for p in parts if _keep(p.lower()))
    return tokens


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """
    Cosine similarity of *a* and *b*.

    Returns 0.0 when the shapes differ or either vector has (near) zero
    magnitude; otherwise a value in ``[-1, 1]``.
    """
    a = np.asarray(a, dtype=np.float32)
    b = np.asarray(b, dtype=np.float32)
    if a.shape != b.shape:
        return 0.0
    magnitude = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if magnitude <= _NORM_EPSILON:
        return 0.0
    return float(np.clip(float(np.dot(a, b)) / magnitude, -1.0, 1.0))


# ---------------------------------------------------------------------------
# Embedders
# ---------------------------------------------------------------------------

class Embedder(ABC):
    """Maps text to a fixed-dimension vector."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Length of every vector returned by :meth:`embed`."""

    @abstractmethod
    def embed(self, text: str) -> np.ndarray:
        """Return the embedding of *text* as a 1-D float32 array."""


class HashingEmbedder(Embedder):
    """
    Deterministic feature-hashing embedder.

    Each token scatters a signed contribution of ``TOKEN_WEIGHT`` over
    ``NUM_PROBES`` dimensions chosen from its stable hash, so texts sharing
    identifiers (or identifier sub-words) land close together.  Fixed
    bonuses for structural markers bias similarity toward conventionally
    related code.

    Parameters
    ----------
    dimension:
        Vector length.  Must be larger than the highest marker dimension.
    """

    def __init__(self, dimension: int = EMBEDDING_DIM) -> None:
        if dimension <= max(d for d, _, _ in _STRUCTURAL_MARKERS):
            raise ValueError(f"embedding dimension too small: {dimension}")
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text: str) -> np.ndarray:
        vector = np.zeros(self._dimension, dtype=np.float32)
        if not text:
            return vector

        tokens = extract_tokens(text)
        if not tokens:
            return vector

        for token in tokens:
            h = stable_hash(token)
            for i in range(NUM_PROBES):
                dim = (h + i * PROBE_STRIDE) % self._dimension
                sign = 1.0 if ((h >> i) & 1) == 0 else -1.0
                vector[dim] += sign * TOKEN_WEIGHT

        lowered = text.lower()
        for dim, weight, markers in _STRUCTURAL_MARKERS:
            if any(m in lowered for m in markers):
                vector[dim] += weight

        norm = float(np.linalg.norm(vector))
        if norm > _NORM_EPSILON:
            vector /= norm
        return vector

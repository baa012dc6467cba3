"""
Unit tests for codesearch.kb.local.embedder

Tests identifier splitting, tokenization, cosine similarity and the
deterministic hashing embedder.  No model download is involved.
"""

from __future__ import annotations

import numpy as np
import pytest

from codesearch.kb.local.embedder import (
    HashingEmbedder,
    cosine_similarity,
    extract_tokens,
    split_identifier,
    stable_hash,
)


# ---------------------------------------------------------------------------
# Tokenization
# ---------------------------------------------------------------------------

class TestTokens:

    @pytest.mark.parametrize("ident, expected", [
        ("MovePlayer", ["Move", "Player"]),
        ("movePlayer", ["move", "Player"]),
        ("HTTPServer", ["HTTP", "Server"]),
        ("max_speed", ["max", "speed"]),
        ("Vector3", ["Vector", "3"]),
    ])
    def test_split_identifier(self, ident, expected):
        assert split_identifier(ident) == expected

    def test_extract_tokens_adds_sub_words(self):
        assert extract_tokens("PlayerController") == ["playercontroller", "player", "controller"]

    def test_extract_tokens_drops_stopwords_and_short_tokens(self):
        tokens = extract_tokens("public void x Jump()")
        assert tokens == ["jump"]

    def test_stable_hash_is_fixed(self):
        assert stable_hash("") == 17
        assert stable_hash("a") == 17 * 31 + ord("a")
        assert stable_hash("some_long_identifier") == stable_hash("some_long_identifier")
        assert 0 <= stable_hash("x" * 200) <= 0xFFFFFFFF


# ---------------------------------------------------------------------------
# Cosine similarity
# ---------------------------------------------------------------------------

class TestCosine:

    def test_symmetric_and_bounded(self):
        rng = np.random.default_rng(7)
        a = rng.normal(size=16).astype(np.float32)
        b = rng.normal(size=16).astype(np.float32)
        ab = cosine_similarity(a, b)
        assert ab == pytest.approx(cosine_similarity(b, a))
        assert -1.0 <= ab <= 1.0

    def test_identical_vectors(self):
        v = np.array([1.0, 2.0, 3.0], dtype=np.float32)
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_mismatched_dimensions_are_neutral(self):
        assert cosine_similarity(np.ones(3), np.ones(4)) == 0.0

    def test_zero_vector_is_neutral(self):
        assert cosine_similarity(np.zeros(3), np.ones(3)) == 0.0


# ---------------------------------------------------------------------------
# HashingEmbedder
# ---------------------------------------------------------------------------

class TestHashingEmbedder:

    def test_deterministic_and_normalized(self):
        emb = HashingEmbedder(384)
        v1 = emb.embed("void MovePlayer(Vector3 direction)")
        v2 = HashingEmbedder(384).embed("void MovePlayer(Vector3 direction)")
        assert v1.dtype == np.float32
        assert v1.shape == (384,)
        assert np.array_equal(v1, v2)
        assert float(np.linalg.norm(v1)) == pytest.approx(1.0, abs=1e-5)

    @pytest.mark.parametrize("text", ["", "   ", "if x"])
    def test_empty_or_tokenless_text_gives_zero_vector(self, text):
        v = HashingEmbedder(64).embed(text)
        assert v.shape == (64,)
        assert not v.any()

    def test_shared_identifiers_are_closer(self):
        emb = HashingEmbedder()
        query = emb.embed("move player")
        related = emb.embed("public void MovePlayer(Vector3 direction) { }")
        unrelated = emb.embed("public void SaveGame(string path) { File.WriteAllText(path); }")
        assert cosine_similarity(query, related) > cosine_similarity(query, unrelated)

    def test_structural_marker_is_case_insensitive(self):
        emb = HashingEmbedder(64)
        a = emb.embed("Rigidbody body")
        b = emb.embed("rigidbody body")
        assert a[17] > 0 and b[17] > 0

    def test_dimension_too_small(self):
        with pytest.raises(ValueError):
            HashingEmbedder(16)

"""Tests for cosine similarity and document ranking."""

import random

import pytest

from conftest import make_document
from kbchat.src.core.ranker import SimilarityRanker, cosine_similarity


class TestCosineSimilarity:
    """Test the similarity function itself."""

    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 0.0], [-2.0, 0.0]) == pytest.approx(-1.0)

    def test_does_not_assume_normalised_input(self):
        assert cosine_similarity([3.0, 4.0], [6.0, 8.0]) == pytest.approx(1.0)

    def test_zero_vector_scores_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
        assert cosine_similarity([0.0, 0.0], [0.0, 0.0]) == 0.0

    def test_symmetric(self):
        rng = random.Random(7)
        for _ in range(50):
            a = [rng.uniform(-1, 1) for _ in range(16)]
            b = [rng.uniform(-1, 1) for _ in range(16)]
            assert cosine_similarity(a, b) == cosine_similarity(b, a)

    def test_dimension_mismatch(self):
        with pytest.raises(ValueError, match="Dimension mismatch"):
            cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


class TestSimilarityRanker:
    """Test threshold, ordering, tie-break and truncation rules."""

    LONG = "This document is long enough to be used as grounding text."

    def test_defaults_come_from_settings(self):
        ranker = SimilarityRanker()
        assert ranker.threshold == 0.48
        assert ranker.top_k == 4
        assert ranker.min_content_chars == 30
        assert ranker.embed_char_limit == 1800

    def test_short_documents_never_ranked(self):
        ranker = SimilarityRanker()
        short = make_document("Refund policy: 30 days.")  # 23 chars
        assert len(short.content) < 30

        matches = ranker.rank([1.0, 0.0], [(short, [1.0, 0.0])])

        assert matches == []

    def test_eligible_prefilter(self):
        ranker = SimilarityRanker()
        short = make_document("too short")
        long = make_document(self.LONG)
        exact = make_document("x" * 30)

        assert ranker.eligible([short, long, exact]) == [long, exact]

    def test_threshold_is_strict(self):
        ranker = SimilarityRanker(threshold=1.0)
        doc = make_document(self.LONG)

        assert ranker.rank([1.0, 0.0], [(doc, [1.0, 0.0])]) == []

    def test_below_threshold_dropped(self):
        ranker = SimilarityRanker()
        doc = make_document(self.LONG)

        # cos = 0.4
        assert ranker.rank([1.0, 0.0], [(doc, [0.4, 0.916515138991168])]) == []

    def test_sorted_descending_and_truncated(self):
        ranker = SimilarityRanker()
        rng = random.Random(3)
        candidates = []
        for i in range(12):
            doc = make_document(f"{self.LONG} #{i}", title=f"Doc {i}", minutes_ago=i)
            candidates.append((doc, [1.0, rng.uniform(0.0, 1.0)]))

        matches = ranker.rank([1.0, 0.0], candidates)

        assert 0 < len(matches) <= 4
        for current, following in zip(matches, matches[1:]):
            assert current.similarity >= following.similarity
        assert all(m.similarity > 0.48 for m in matches)

    def test_ties_prefer_most_recent_document(self):
        ranker = SimilarityRanker()
        older = make_document(self.LONG, title="older", minutes_ago=10)
        newer = make_document(self.LONG, title="newer", minutes_ago=1)

        matches = ranker.rank([1.0, 0.0], [(older, [1.0, 0.0]), (newer, [1.0, 0.0])])

        assert [m.document.title for m in matches] == ["newer", "older"]

    def test_empty_candidates(self):
        assert SimilarityRanker().rank([1.0, 0.0], []) == []

    def test_embedding_input_is_capped(self):
        ranker = SimilarityRanker()
        doc = make_document("a" * 5000)

        assert ranker.embedding_input(doc) == "a" * 1800
        assert len(doc.content) == 5000

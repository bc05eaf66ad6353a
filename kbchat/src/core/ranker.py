"""
kbchat - SimilarityRanker
==========================
Ranks stored documents against a question vector.

Rules, in order:
    1. Documents whose ``content`` is shorter than ``MIN_CONTENT_CHARS``
       are never candidates.  ``eligible`` applies this before any
       embedding cost is paid; ``rank`` re-applies it.
    2. Cosine similarity, computed in full even though vectors arrive
       normalised.  The denominator is floored at ``_EPSILON`` so a
       zero-magnitude vector scores 0.
    3. Keep similarities strictly above ``SIMILARITY_THRESHOLD``.
    4. Sort by similarity descending; ties go to the most recently
       created document.
    5. Truncate to ``TOP_K``.

Only the first ``EMBED_CHAR_LIMIT`` characters of a document are
embedded (``embedding_input``).  The context block still uses the
full content.
"""

from __future__ import annotations

import math
from typing import Iterable, Sequence

from kbchat.config.settings import settings
from kbchat.src.core.models import KnowledgeDocument, Match, Vector
from kbchat.src.utils.logger import get_logger

logger = get_logger(__name__)

_EPSILON = 1e-12

Candidate = tuple[KnowledgeDocument, Vector]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine of the angle between *a* and *b*, clamped to [-1, 1].

    Symmetric by construction: every product and sum is evaluated in
    the same order whichever argument comes first.

    Raises
    ------
    ValueError
        If the vectors have different dimensions.
    """
    if len(a) != len(b):
        raise ValueError(f"Dimension mismatch: {len(a)} vs {len(b)}")

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    similarity = dot / max(norm_a * norm_b, _EPSILON)
    return max(min(similarity, 1.0), -1.0)


class SimilarityRanker:
    """
    Threshold + top-K selector over ``(document, vector)`` candidates.

    All parameters default to the matching ``settings`` values.
    """

    __slots__ = ("threshold", "top_k", "min_content_chars", "embed_char_limit")

    def __init__(self, threshold: float | None = None, top_k: int | None = None, min_content_chars: int | None = None, embed_char_limit: int | None = None) -> None:
        self.threshold: float = settings.SIMILARITY_THRESHOLD if threshold is None else threshold
        self.top_k: int = top_k or settings.TOP_K
        self.min_content_chars: int = settings.MIN_CONTENT_CHARS if min_content_chars is None else min_content_chars
        self.embed_char_limit: int = embed_char_limit or settings.EMBED_CHAR_LIMIT


    def is_eligible(self, document: KnowledgeDocument) -> bool:
        return len(document.content or "") >= self.min_content_chars


    def eligible(self, documents: Iterable[KnowledgeDocument]) -> list[KnowledgeDocument]:
        """Cheap pre-filter: drop documents too short to ground an answer."""
        return [doc for doc in documents if self.is_eligible(doc)]


    def embedding_input(self, document: KnowledgeDocument) -> str:
        return document.content[: self.embed_char_limit]


    def rank(self, query: Vector, candidates: Iterable[Candidate]) -> list[Match]:
        """
        Score, filter, order and cut *candidates*.

        Returns
        -------
        list[Match]
            Zero to ``top_k`` matches, similarity descending.  An empty
            list is a normal outcome.
        """
        matches: list[Match] = []
        considered = 0

        for document, vector in candidates:
            if not self.is_eligible(document):
                continue
            considered += 1
            similarity = cosine_similarity(query, vector)
            logger.debug("[RANK] '%s' similarity=%.4f", document.title[:40], similarity)
            if similarity > self.threshold:
                matches.append(Match(document=document, similarity=similarity))

        matches.sort(key=lambda m: (-m.similarity, -m.document.created_at.timestamp()))
        top = matches[: self.top_k]

        logger.info("[RANK] %d candidate(s), %d above %.2f, returning %d.", considered, len(matches), self.threshold, len(top))
        return top

"""
kbchat - RAG Engine
====================
Orchestrates one question through the grounded answering pipeline.

Architecture
------------
``EmbeddingService``      question / document → vector (injected singleton)
``KnowledgeStore``        every stored document, any owner
``SimilarityRanker``      eligibility pre-filter, cosine, threshold, top-K
``ContextAssembler``      ordered, separator-joined context block
``GroundedAnswerGuard``   Gemini call + post-hoc grounding override
``MongoConversationLog``  user turn before retrieval, bot turn after

``RAGManager.handle_question`` flow:
    1. Reject a request with neither text nor image.
    2. Log the user turn.
    3. Image only            → capability-limitation reply.
    4. Embed the question, load documents, drop short ones, reuse cached
       vectors and embed the rest (bounded concurrency, written back).
    5. Rank; no matches      → refusal sentence, no model call.
    6. Assemble context, generate, apply the post-hoc guard.
    7. Any failure in 3–6    → logged, generic error reply.
    8. Log the bot turn and return both turns.

Persistence failures while logging a turn propagate as
``PersistenceError``; they are never hidden behind a bot reply.

Usage:
    from kbchat.src.core.rag_engine import RAGManager
    rag = RAGManager(embedder=EmbeddingService())
    exchange = await rag.handle_question("user-42", "What is the refund policy?")
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum

from kbchat.config.prompt_templates import GENERIC_ERROR_RESPONSE, IMAGE_ONLY_RESPONSE, IMAGE_PLACEHOLDER, REFUSAL_SENTENCE
from kbchat.config.settings import settings
from kbchat.src.core.context import ContextAssembler
from kbchat.src.core.embedder import EmbeddingService
from kbchat.src.core.errors import PersistenceError
from kbchat.src.core.guard import GroundedAnswerGuard
from kbchat.src.core.models import ImageAttachment, KnowledgeDocument, Match, Message, Vector
from kbchat.src.core.ranker import Candidate, SimilarityRanker
from kbchat.src.database.conversation_log import MongoConversationLog
from kbchat.src.database.document_store import KnowledgeStore
from kbchat.src.utils.logger import get_logger

logger = get_logger(__name__)


class AnswerOutcome(str, Enum):
    """Terminal state of one question."""

    ANSWERED = "answered"
    REFUSED = "refused"            # model or post-hoc guard refused
    NO_GROUNDING = "no_grounding"  # ranking found nothing
    IMAGE_ONLY = "image_only"
    ERROR = "error"


@dataclass(frozen=True)
class Exchange:
    user_message: Message
    bot_message: Message
    outcome: AnswerOutcome


class RAGManager:
    """
    Parameters
    ----------
    embedder
        The process-wide ``EmbeddingService``, constructed once at startup.
    knowledge_store, conversation_log, guard, ranker, assembler
        Optional collaborators; defaults are built from ``settings``.
    max_workers
        Upper bound on concurrent document embeddings per question.
    """

    __slots__ = ("_embedder", "_store", "_log", "_guard", "_ranker", "_assembler", "_max_workers")

    def __init__(self, embedder: EmbeddingService, knowledge_store: KnowledgeStore | None = None, conversation_log: MongoConversationLog | None = None, guard: GroundedAnswerGuard | None = None, ranker: SimilarityRanker | None = None, assembler: ContextAssembler | None = None, max_workers: int | None = None) -> None:
        self._embedder = embedder
        self._store = knowledge_store or KnowledgeStore()
        self._log = conversation_log or MongoConversationLog()
        self._guard = guard or GroundedAnswerGuard()
        self._ranker = ranker or SimilarityRanker()
        self._assembler = assembler or ContextAssembler()
        self._max_workers: int = max_workers or settings.MAX_WORKERS


    async def handle_question(self, owner_id: str, question: str | None, image: ImageAttachment | None = None) -> Exchange:
        """
        Answer one question and log both turns.

        Raises
        ------
        ValueError
            If neither a question nor an image is supplied.
        PersistenceError
            If either turn cannot be logged.
        """
        question = (question or "").strip()
        if not question and image is None:
            raise ValueError("Message or image required")

        t_start = time.perf_counter()
        user_message = await self._log.append(owner_id, "user", question or IMAGE_PLACEHOLDER)

        try:
            reply, outcome = await self._resolve_reply(question, image)
        except Exception:
            logger.exception("[RAG] Pipeline failed for owner '%s'.", owner_id)
            reply, outcome = GENERIC_ERROR_RESPONSE, AnswerOutcome.ERROR

        bot_message = await self._log.append(owner_id, "bot", reply)

        logger.info("[RAG] Pipeline total: %.1fms (outcome=%s, %d chars)", (time.perf_counter() - t_start) * 1000, outcome.value, len(reply))
        return Exchange(user_message=user_message, bot_message=bot_message, outcome=outcome)


    async def history(self, owner_id: str) -> list[Message]:
        return await self._log.list_by_owner(owner_id)


    async def _resolve_reply(self, question: str, image: ImageAttachment | None) -> tuple[str, AnswerOutcome]:
        if not question:
            return IMAGE_ONLY_RESPONSE, AnswerOutcome.IMAGE_ONLY

        matches = await self.retrieve(question)
        if not matches:
            logger.info("[RAG] No grounding available — refusing.")
            return REFUSAL_SENTENCE, AnswerOutcome.NO_GROUNDING

        context = self._assembler.assemble(matches)
        reply = await self._guard.answer(question, context, image)
        outcome = AnswerOutcome.REFUSED if reply == REFUSAL_SENTENCE else AnswerOutcome.ANSWERED
        return reply, outcome


    async def retrieve(self, question: str) -> list[Match]:
        """Embed *question* and rank the whole knowledge base against it."""
        t_search = time.perf_counter()

        query_vector = await self._embedder.aembed(question)
        documents = self._ranker.eligible(await self._store.find_all())
        candidates = await self._resolve_vectors(documents, len(query_vector))
        matches = self._ranker.rank(query_vector, candidates)

        logger.info("[RAG] Retrieval: %d eligible → %d match(es) in %.1fms", len(documents), len(matches), (time.perf_counter() - t_search) * 1000)
        return matches


    async def _resolve_vectors(self, documents: list[KnowledgeDocument], dimension: int) -> list[Candidate]:
        """
        Pair each document with its vector, embedding only where needed.

        Cached vectors of the wrong dimension (the model changed) are
        recomputed.  Fresh vectors are written back to the store; a
        failed write only costs a recomputation next time.
        """
        semaphore = asyncio.Semaphore(self._max_workers)

        async def resolve(document: KnowledgeDocument) -> Candidate:
            if document.embedding and len(document.embedding) == dimension:
                return document, document.embedding

            async with semaphore:
                vector: Vector = await self._embedder.aembed(self._ranker.embedding_input(document))

            if document.id is not None:
                try:
                    await self._store.set_embedding(document.id, vector)
                except PersistenceError as exc:
                    logger.warning("[RAG] Could not cache embedding for '%s': %s", document.id, exc)
            return document, vector

        # gather keeps input order, so ranking ties stay deterministic.
        # Every task settles before the first failure is re-raised, so no
        # embedding or cache write outlives the question.
        results = await asyncio.gather(*(resolve(doc) for doc in documents), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)

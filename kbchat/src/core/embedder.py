"""
kbchat - EmbeddingService
==========================
Turns text into fixed-dimension, L2-normalised vectors.

Design decisions:
  • **Explicit service object** — built once at startup and injected
    into ``RAGManager`` / ``IngestionService``; there is no module-level
    model state.
  • **Lazy, single-flight load** — the underlying model is created by a
    factory on the first call.  Concurrent first calls are coalesced with
    a double-checked ``threading.Lock``; later calls read the loaded
    model without locking.
  • **Pluggable backend** — any object exposing ``embed_query`` /
    ``embed_documents`` (the LangChain ``Embeddings`` shape) works.
    ``build_default_embeddings`` picks a local sentence-transformers model
    or ``GoogleGenerativeAIEmbeddings`` from ``settings.EMBEDDING_PROVIDER``.
  • **Timeouts** — ``aembed`` and ``aembed_many`` run the blocking call in a
    worker thread under ``settings.EMBEDDING_TIMEOUT_SECONDS`` and raise
    ``EmbeddingTimeout`` when it is exceeded.  Nothing is retried.

Usage:
    from kbchat.src.core.embedder import EmbeddingService
    embedder = EmbeddingService()
    vector = await embedder.aembed("What is the refund policy?")
"""

from __future__ import annotations

import asyncio
import math
import threading
import time
from typing import Callable, Protocol, runtime_checkable

from kbchat.config.settings import settings
from kbchat.src.core.errors import EmbeddingTimeout, EmbeddingUnavailable
from kbchat.src.utils.logger import get_logger

logger = get_logger(__name__)

Vector = list[float]


@runtime_checkable
class Embeddings(Protocol):
    """Structural type for any LangChain-compatible embedding model."""

    def embed_documents(self, texts: list[str]) -> list[list[float]]: ...

    def embed_query(self, text: str) -> list[float]: ...


class SentenceTransformerEmbeddings:
    """
    Local in-process embedding model (sentence-transformers).

    Mean-pooled and normalised, the same way the MiniLM family is used
    for semantic search.  Loading the weights is the expensive part, so
    the instance is created once by ``EmbeddingService``.
    """

    __slots__ = ("_model",)

    def __init__(self, model_name: str) -> None:
        from sentence_transformers import SentenceTransformer

        self._model = SentenceTransformer(model_name)


    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        vectors = self._model.encode(texts, batch_size=32, show_progress_bar=False, convert_to_numpy=True, normalize_embeddings=True)
        return [v.tolist() for v in vectors]


    def embed_query(self, text: str) -> list[float]:
        return self.embed_documents([text])[0]


def build_default_embeddings() -> Embeddings:
    """Create the embedding backend selected by ``settings.EMBEDDING_PROVIDER``."""
    if settings.EMBEDDING_PROVIDER == "google":
        from langchain_google_genai import GoogleGenerativeAIEmbeddings

        return GoogleGenerativeAIEmbeddings(model=settings.GOOGLE_EMBEDDING_MODEL, google_api_key=settings.GOOGLE_API_KEY.get_secret_value())
    return SentenceTransformerEmbeddings(settings.LOCAL_EMBEDDING_MODEL)


def l2_normalize(vector: list[float]) -> Vector:
    """Scale *vector* to unit length.  A zero vector is returned unchanged."""
    norm = math.sqrt(sum(x * x for x in vector))
    if norm == 0.0:
        return [float(x) for x in vector]
    return [float(x) / norm for x in vector]


class EmbeddingService:
    """
    Process-wide embedding capability with a lazily-loaded model.

    Parameters
    ----------
    factory
        Zero-argument callable returning an ``Embeddings`` object.
        Defaults to ``build_default_embeddings``.
    timeout
        Seconds allowed per ``aembed`` / ``aembed_many`` call.  Defaults to
        ``settings.EMBEDDING_TIMEOUT_SECONDS``.
    """

    __slots__ = ("_factory", "_model", "_lock", "_timeout")

    def __init__(self, factory: Callable[[], Embeddings] | None = None, timeout: float | None = None) -> None:
        self._factory = factory or build_default_embeddings
        self._model: Embeddings | None = None
        self._lock = threading.Lock()
        self._timeout: float = timeout or settings.EMBEDDING_TIMEOUT_SECONDS


    @property
    def is_loaded(self) -> bool:
        return self._model is not None


    def _get_model(self) -> Embeddings:
        model = self._model
        if model is not None:
            return model

        with self._lock:
            if self._model is None:
                t_load = time.perf_counter()
                logger.info("[EMBED] Loading embedding model (provider=%s) …", settings.EMBEDDING_PROVIDER)
                try:
                    self._model = self._factory()
                except Exception as exc:
                    logger.error("[EMBED] Embedding model failed to load: %s", exc)
                    raise EmbeddingUnavailable(f"Embedding model could not be loaded: {exc}") from exc
                logger.info("[EMBED] Embedding model loaded in %.1fms.", (time.perf_counter() - t_load) * 1000)
            return self._model


    def embed(self, text: str) -> Vector:
        """Embed one text.  Raises ``EmbeddingUnavailable`` on any model failure."""
        model = self._get_model()
        try:
            raw = model.embed_query(text)
        except Exception as exc:
            logger.error("[EMBED] Embedding call failed: %s", exc)
            raise EmbeddingUnavailable(f"Embedding call failed: {exc}") from exc
        return l2_normalize(raw)


    def embed_many(self, texts: list[str]) -> list[Vector]:
        """Embed several texts in one backend call."""
        if not texts:
            return []
        model = self._get_model()
        try:
            raw = model.embed_documents(texts)
        except Exception as exc:
            logger.error("[EMBED] Batch embedding of %d texts failed: %s", len(texts), exc)
            raise EmbeddingUnavailable(f"Embedding call failed: {exc}") from exc
        return [l2_normalize(v) for v in raw]


    async def aembed(self, text: str) -> Vector:
        """Embed off the event loop, bounded by the configured timeout."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(self.embed, text), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.error("[EMBED] Embedding timed out after %.1fs.", self._timeout)
            raise EmbeddingTimeout(f"Embedding exceeded {self._timeout:.1f}s") from exc


    async def aembed_many(self, texts: list[str]) -> list[Vector]:
        """Batched ``embed_many`` off the event loop, one timeout for the whole batch."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(self.embed_many, texts), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.error("[EMBED] Batch embedding of %d texts timed out after %.1fs.", len(texts), self._timeout)
            raise EmbeddingTimeout(f"Batch embedding exceeded {self._timeout:.1f}s") from exc


    def __repr__(self) -> str:
        return f"EmbeddingService(provider='{settings.EMBEDDING_PROVIDER}', loaded={self.is_loaded})"

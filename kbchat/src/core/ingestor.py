"""
kbchat - IngestionService
==========================
Turns an administrator upload into a stored ``KnowledgeDocument``:
read → merge → cap → validate → embed → store.

Key design decisions:
    • **Dependency Injection** – receives ``KnowledgeStore`` and
      ``EmbeddingService``; the ranker supplies the eligibility rule and
      the embedding slice so ingestion and answering embed identically.
    • **Embed once** – the document vector is computed here and stored
      with the document.  If the embedding model is unavailable the
      document is still stored and its vector is computed on first read.
    • **Size cap** – content over ``MAX_CONTENT_CHARS`` is cut and marked
      (see ``truncate_content``).
    • **File reading** – ``.txt`` (UTF-8) and ``.pdf`` (``pypdf``).
      Extraction failures surface as ``DocumentParseError``.

Usage:
    from kbchat.src.core.ingestor import IngestionService
    service = IngestionService(store, embedder)
    doc = await service.ingest(owner_id="admin-1", title="Refunds", text="Refunds are issued within 30 days.")
"""

from __future__ import annotations

import time
from pathlib import Path

from kbchat.src.core.embedder import EmbeddingService
from kbchat.src.core.errors import DocumentParseError, EmbeddingTimeout, EmbeddingUnavailable
from kbchat.src.core.models import KnowledgeDocument
from kbchat.src.core.ranker import SimilarityRanker
from kbchat.src.database.document_store import KnowledgeStore
from kbchat.src.utils.logger import get_logger
from kbchat.src.utils.text_utils import clean_text, merge_text, truncate_content

logger = get_logger(__name__)

# Extension → MIME type recorded as ``file_kind``
SUPPORTED_EXTENSIONS: dict[str, str] = {".txt": "text/plain", ".pdf": "application/pdf"}


def read_document_text(filepath: Path) -> str:
    """
    Extract and clean the text of a supported file.

    Raises
    ------
    ValueError
        For an unsupported extension.
    DocumentParseError
        When a PDF cannot be parsed.
    """
    suffix = filepath.suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        raise ValueError(f"Unsupported file type: {filepath.name} (allowed: {', '.join(sorted(SUPPORTED_EXTENSIONS))})")

    if suffix == ".txt":
        return clean_text(filepath.read_text(encoding="utf-8", errors="replace"))

    from pypdf import PdfReader
    from pypdf.errors import PdfReadError

    try:
        reader = PdfReader(str(filepath))
        pages = [page.extract_text() or "" for page in reader.pages]
    except (PdfReadError, ValueError, KeyError) as exc:
        logger.error("[INGEST] PDF parsing failed for %s: %s", filepath.name, exc)
        raise DocumentParseError(f"Could not parse {filepath.name}: {exc}") from exc
    return clean_text("\n\n".join(pages))


class IngestionService:
    """
    Parameters
    ----------
    store
        Where documents are persisted.
    embedder
        The process-wide ``EmbeddingService``.
    ranker
        Supplies ``is_eligible`` and ``embedding_input``.  Defaults to a
        ``SimilarityRanker`` built from settings.
    """

    __slots__ = ("_store", "_embedder", "_ranker")

    def __init__(self, store: KnowledgeStore, embedder: EmbeddingService, ranker: SimilarityRanker | None = None) -> None:
        self._store = store
        self._embedder = embedder
        self._ranker = ranker or SimilarityRanker()


    async def ingest(self, owner_id: str, title: str | None = None, text: str | None = None, extracted_text: str | None = None, file_ref: str | None = None, file_kind: str | None = None) -> KnowledgeDocument:
        """
        Build, embed and persist one document.

        Parameters
        ----------
        owner_id
            The uploading administrator.
        title
            Display title; blank falls back to the default title.
        text
            Typed text, appended after any extracted file text.
        extracted_text
            Text pulled out of the uploaded file.
        file_ref, file_kind
            Pointer to (and MIME type of) the stored binary, if any.

        Raises
        ------
        InvalidDocumentError
            If there is neither content nor a file reference.
        """
        t_start = time.perf_counter()

        content, truncated = truncate_content(merge_text(extracted_text, text))
        if truncated:
            logger.warning("[INGEST] Content of '%s' exceeded the size cap and was truncated.", title)

        document = KnowledgeDocument(title=title, content=content, file_ref=file_ref, file_kind=file_kind, owner_id=owner_id, content_truncated=truncated)
        document.ensure_persistable()

        if self._ranker.is_eligible(document):
            try:
                vector = await self._embedder.aembed(self._ranker.embedding_input(document))
                document = document.model_copy(update={"embedding": vector})
            except (EmbeddingUnavailable, EmbeddingTimeout) as exc:
                logger.warning("[INGEST] Storing '%s' without an embedding (%s); it will be embedded on first read.", document.title, exc)

        stored = await self._store.insert(document)
        logger.info("[INGEST] '%s' ingested in %.1fms.", stored.title, (time.perf_counter() - t_start) * 1000)
        return stored


    async def ingest_file(self, owner_id: str, filepath: Path, title: str | None = None, text: str | None = None) -> KnowledgeDocument:
        """Read *filepath* from disk and ingest it, recording its path as ``file_ref``."""
        extracted = read_document_text(filepath)
        return await self.ingest(owner_id=owner_id, title=title, text=text, extracted_text=extracted, file_ref=filepath.resolve().as_uri(), file_kind=SUPPORTED_EXTENSIONS[filepath.suffix.lower()])


    async def backfill_embeddings(self) -> int:
        """
        Embed every eligible document that has no cached vector, in one
        batched backend call.  Returns the count.
        """
        missing = [doc for doc in self._ranker.eligible(await self._store.find_all()) if not doc.embedding and doc.id is not None]
        if not missing:
            logger.info("[INGEST] Backfilled 0 embedding(s).")
            return 0

        vectors = await self._embedder.aembed_many([self._ranker.embedding_input(doc) for doc in missing])
        for document, vector in zip(missing, vectors):
            await self._store.set_embedding(document.id, vector)

        logger.info("[INGEST] Backfilled %d embedding(s).", len(missing))
        return len(missing)


    async def list_owned(self, owner_id: str, light: bool = False) -> list[KnowledgeDocument]:
        return await self._store.list_by_owner(owner_id, light=light)


    async def delete(self, owner_id: str, document_id: str) -> KnowledgeDocument | None:
        return await self._store.delete_owned(document_id, owner_id)

"""
kbchat - KnowledgeStore
========================
MongoDB persistence for ``KnowledgeDocument`` via ``motor``.

Reads for answering are global (``find_all``); listing and deletion are
scoped to the owning administrator.  Cached embeddings live on the
document itself and are written back by ``set_embedding`` when a vector
had to be computed on read.

Every ``PyMongoError`` is re-raised as ``PersistenceError``.
"""

from __future__ import annotations

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from kbchat.config.settings import settings
from kbchat.src.core.errors import PersistenceError
from kbchat.src.core.models import KnowledgeDocument, Vector
from kbchat.src.database.mongo import get_collection
from kbchat.src.utils.logger import get_logger

logger = get_logger(__name__)

# Listing projection that skips the heavy fields
_LIGHT_PROJECTION = {"content": 0, "embedding": 0}

# Insertion id breaks same-millisecond ties
_NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


def _object_id(document_id: str) -> ObjectId | None:
    try:
        return ObjectId(document_id)
    except (InvalidId, TypeError):
        return None


class KnowledgeStore:
    """
    Parameters
    ----------
    collection
        Optional pre-built motor collection (tests inject a mock).
        Defaults to ``settings.KNOWLEDGE_COLLECTION`` on the shared client.
    """

    __slots__ = ("_collection",)

    def __init__(self, collection: object | None = None) -> None:
        self._collection = collection if collection is not None else get_collection(settings.KNOWLEDGE_COLLECTION)


    async def insert(self, document: KnowledgeDocument) -> KnowledgeDocument:
        """Persist *document* (which must already satisfy ``ensure_persistable``)."""
        document.ensure_persistable()
        try:
            result = await self._collection.insert_one(document.to_mongo())
        except PyMongoError as exc:
            logger.error("Failed to insert document '%s': %s", document.title, exc)
            raise PersistenceError(f"Could not save document: {exc}") from exc

        stored = document.model_copy(update={"id": str(result.inserted_id)})
        logger.info("Stored document '%s' (%s, %d chars, embedded=%s).", stored.title, stored.id, len(stored.content), stored.embedding is not None)
        return stored


    async def find_all(self) -> list[KnowledgeDocument]:
        """Every document of every owner, newest first."""
        try:
            docs = await self._collection.find({}).sort(_NEWEST_FIRST).to_list(length=None)
        except PyMongoError as exc:
            logger.error("Failed to load knowledge base: %s", exc)
            raise PersistenceError(f"Could not load documents: {exc}") from exc
        return [KnowledgeDocument.from_mongo(doc) for doc in docs]


    async def list_by_owner(self, owner_id: str, light: bool = False) -> list[KnowledgeDocument]:
        """Documents created by *owner_id*, newest first.  ``light`` omits content and embedding."""
        projection = _LIGHT_PROJECTION if light else None
        try:
            docs = await self._collection.find({"owner_id": owner_id}, projection).sort(_NEWEST_FIRST).to_list(length=None)
        except PyMongoError as exc:
            logger.error("Failed to list documents for owner '%s': %s", owner_id, exc)
            raise PersistenceError(f"Could not load documents: {exc}") from exc
        return [KnowledgeDocument.from_mongo(doc) for doc in docs]


    async def set_embedding(self, document_id: str, vector: Vector) -> None:
        oid = _object_id(document_id)
        if oid is None:
            logger.warning("Cannot cache embedding for invalid id '%s'.", document_id)
            return
        try:
            await self._collection.update_one({"_id": oid}, {"$set": {"embedding": vector}})
        except PyMongoError as exc:
            raise PersistenceError(f"Could not cache embedding for {document_id}: {exc}") from exc


    async def delete_owned(self, document_id: str, owner_id: str) -> KnowledgeDocument | None:
        """
        Delete *document_id* only if *owner_id* created it.

        Returns
        -------
        KnowledgeDocument | None
            The deleted document, or ``None`` when it does not exist,
            belongs to someone else, or the id is malformed.
        """
        oid = _object_id(document_id)
        if oid is None:
            return None
        try:
            doc = await self._collection.find_one_and_delete({"_id": oid, "owner_id": owner_id}, projection=_LIGHT_PROJECTION)
        except PyMongoError as exc:
            logger.error("Failed to delete document '%s': %s", document_id, exc)
            raise PersistenceError(f"Could not delete document: {exc}") from exc

        if doc is None:
            logger.info("Delete skipped — '%s' not found or not owned by '%s'.", document_id, owner_id)
            return None
        logger.info("Deleted document '%s' for owner '%s'.", document_id, owner_id)
        return KnowledgeDocument.from_mongo(doc)


    async def count(self) -> int:
        """Number of stored documents, any owner."""
        try:
            return await self._collection.count_documents({})
        except PyMongoError as exc:
            logger.error("Failed to count documents: %s", exc)
            raise PersistenceError(f"Could not count documents: {exc}") from exc

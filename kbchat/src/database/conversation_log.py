"""
kbchat - MongoConversationLog
==============================
Append-only chat log backed by MongoDB via ``motor``.

Each turn is its own document, so a turn is never rewritten once it is
stored.  Reads are isolated by ``owner_id`` and ordered by creation
time, with the insertion id breaking same-timestamp ties.

Collection schema (``messages``)::

    {
        "owner_id": str,
        "role": "user" | "bot",
        "content": str,
        "timestamp": datetime
    }
"""

from __future__ import annotations

from datetime import datetime, timezone

from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from kbchat.config.settings import settings
from kbchat.src.core.errors import PersistenceError
from kbchat.src.core.models import Message, Role
from kbchat.src.database.mongo import get_collection
from kbchat.src.utils.logger import get_logger

logger = get_logger(__name__)


class MongoConversationLog:
    """
    Parameters
    ----------
    collection
        Optional pre-built motor collection (tests inject a mock).
        Defaults to ``settings.MESSAGE_COLLECTION`` on the shared client.
    """

    __slots__ = ("_collection",)

    def __init__(self, collection: object | None = None) -> None:
        self._collection = collection if collection is not None else get_collection(settings.MESSAGE_COLLECTION)


    async def append(self, owner_id: str, role: Role, content: str, timestamp: datetime | None = None) -> Message:
        """
        Store one turn and return it with its id.

        Raises
        ------
        PersistenceError
            If MongoDB rejects the write.
        """
        message = Message(owner_id=owner_id, role=role, content=content, timestamp=timestamp or datetime.now(timezone.utc))
        try:
            result = await self._collection.insert_one(message.to_mongo())
        except PyMongoError as exc:
            logger.error("[LOG] Failed to append %s turn for owner '%s': %s", role, owner_id, exc)
            raise PersistenceError(f"Could not save {role} message: {exc}") from exc

        logger.debug("[LOG] Appended %s turn for owner '%s' (%d chars).", role, owner_id, len(content))
        return message.model_copy(update={"id": str(result.inserted_id)})


    async def list_by_owner(self, owner_id: str) -> list[Message]:
        """Return every turn of *owner_id*, oldest first."""
        try:
            cursor = self._collection.find({"owner_id": owner_id}).sort([("timestamp", ASCENDING), ("_id", ASCENDING)])
            docs = await cursor.to_list(length=None)
        except PyMongoError as exc:
            logger.error("[LOG] Failed to load history for owner '%s': %s", owner_id, exc)
            raise PersistenceError(f"Could not load history: {exc}") from exc

        return [Message.from_mongo(doc) for doc in docs]

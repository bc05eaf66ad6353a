"""
Pytest configuration for the kbchat test suite.

Provides:
- required environment values so ``Settings()`` loads without a ``.env``
- in-memory stand-ins for the MongoDB stores and the chat model
- a keyword-count embedding backend with predictable similarities
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("GOOGLE_API_KEY", "test-google-key")
os.environ.setdefault("MONGO_URI", "mongodb://localhost:27017")
os.environ.setdefault("ENV", "dev")

import pytest  # noqa: E402
from langchain_core.messages import AIMessage  # noqa: E402

from kbchat.src.core.embedder import EmbeddingService  # noqa: E402
from kbchat.src.core.errors import PersistenceError  # noqa: E402
from kbchat.src.core.guard import GroundedAnswerGuard  # noqa: E402
from kbchat.src.core.models import KnowledgeDocument, Message  # noqa: E402

VOCABULARY = ["refund", "shipping", "warranty", "password", "invoice"]


class KeywordEmbeddings:
    """One dimension per vocabulary word; value = occurrences in the text."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.queries: list[str] = []
        self.batches: list[list[str]] = []

    def _vector(self, text: str) -> list[float]:
        lowered = text.lower()
        return [float(lowered.count(word)) for word in VOCABULARY]

    def embed_query(self, text: str) -> list[float]:
        if self.delay:
            import time

            time.sleep(self.delay)
        self.queries.append(text)
        return self._vector(text)

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.batches.append(list(texts))
        return [self.embed_query(t) for t in texts]


class InMemoryKnowledgeStore:
    def __init__(self, documents: list[KnowledgeDocument] | None = None) -> None:
        self.documents: list[KnowledgeDocument] = list(documents or [])
        self.cached: dict[str, list[float]] = {}
        self.fail_cache_writes = False

    async def insert(self, document: KnowledgeDocument) -> KnowledgeDocument:
        document.ensure_persistable()
        stored = document.model_copy(update={"id": f"doc-{len(self.documents) + 1}"})
        self.documents.append(stored)
        return stored

    async def find_all(self) -> list[KnowledgeDocument]:
        return sorted(self.documents, key=lambda d: d.created_at, reverse=True)

    async def list_by_owner(self, owner_id: str, light: bool = False) -> list[KnowledgeDocument]:
        return [d for d in await self.find_all() if d.owner_id == owner_id]

    async def set_embedding(self, document_id: str, vector: list[float]) -> None:
        if self.fail_cache_writes:
            raise PersistenceError("cache write rejected")
        self.cached[document_id] = vector

    async def delete_owned(self, document_id: str, owner_id: str) -> KnowledgeDocument | None:
        for doc in self.documents:
            if doc.id == document_id and doc.owner_id == owner_id:
                self.documents.remove(doc)
                return doc
        return None


class InMemoryConversationLog:
    def __init__(self) -> None:
        self.messages: list[Message] = []
        self.fail_appends = False

    async def append(self, owner_id, role, content, timestamp=None) -> Message:
        if self.fail_appends:
            raise PersistenceError("write rejected")
        message = Message(id=f"msg-{len(self.messages) + 1}", owner_id=owner_id, role=role, content=content, timestamp=timestamp or datetime.now(timezone.utc))
        self.messages.append(message)
        return message

    async def list_by_owner(self, owner_id: str) -> list[Message]:
        return [m for m in self.messages if m.owner_id == owner_id]


class FakeChatModel:
    """Records every ``ainvoke`` and answers with a canned reply."""

    def __init__(self, reply: object = "Refunds are issued within 30 days.", delay: float = 0.0) -> None:
        self.reply = reply
        self.delay = delay
        self.calls: list[list] = []

    async def ainvoke(self, messages, **kwargs):
        self.calls.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)
        return AIMessage(content=self.reply)


def make_document(content: str, title: str = "Doc", minutes_ago: int = 0, **kwargs) -> KnowledgeDocument:
    created = datetime(2026, 1, 1, tzinfo=timezone.utc) - timedelta(minutes=minutes_ago)
    return KnowledgeDocument(title=title, content=content, owner_id=kwargs.pop("owner_id", "admin-1"), created_at=created, **kwargs)


@pytest.fixture
def keyword_embeddings():
    return KeywordEmbeddings()


@pytest.fixture
def embedder(keyword_embeddings):
    return EmbeddingService(factory=lambda: keyword_embeddings)


@pytest.fixture
def chat_model():
    return FakeChatModel()


@pytest.fixture
def guard(chat_model):
    return GroundedAnswerGuard(llm=chat_model)


@pytest.fixture
def conversation_log():
    return InMemoryConversationLog()

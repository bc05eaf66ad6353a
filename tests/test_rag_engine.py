"""Tests for the end-to-end question pipeline."""

import asyncio
import time

import pytest

from conftest import FakeChatModel, InMemoryKnowledgeStore, KeywordEmbeddings, make_document
from kbchat.config.prompt_templates import CONTEXT_SEPARATOR, GENERIC_ERROR_RESPONSE, IMAGE_ONLY_RESPONSE, IMAGE_PLACEHOLDER, REFUSAL_SENTENCE
from kbchat.src.core.embedder import EmbeddingService
from kbchat.src.core.errors import PersistenceError
from kbchat.src.core.guard import GroundedAnswerGuard
from kbchat.src.core.models import ImageAttachment
from kbchat.src.core.rag_engine import AnswerOutcome, RAGManager

QUESTION = "What is the refund policy?"
REFUND_DOC = "Refunds are issued within 30 days of purchase for every refund request."
SHIPPING_DOC = "Orders ship from our warehouse within two business days of shipping confirmation."


def build_manager(store, embedder, conversation_log, chat_model=None, **kwargs):
    guard = GroundedAnswerGuard(llm=chat_model or FakeChatModel())
    return RAGManager(embedder=embedder, knowledge_store=store, conversation_log=conversation_log, guard=guard, **kwargs)


class TestHandleQuestion:

    @pytest.mark.asyncio
    async def test_grounded_answer(self, embedder, conversation_log):
        store = InMemoryKnowledgeStore([make_document(REFUND_DOC, id="d1"), make_document(SHIPPING_DOC, id="d2")])
        chat_model = FakeChatModel()
        rag = build_manager(store, embedder, conversation_log, chat_model)

        exchange = await rag.handle_question("user-1", QUESTION)

        assert exchange.outcome is AnswerOutcome.ANSWERED
        assert exchange.bot_message.content == "Refunds are issued within 30 days."
        system_prompt = chat_model.calls[0][0].content
        assert REFUND_DOC in system_prompt
        assert SHIPPING_DOC not in system_prompt

    @pytest.mark.asyncio
    async def test_no_matches_refuses_without_generation(self, embedder, conversation_log):
        store = InMemoryKnowledgeStore([make_document(SHIPPING_DOC, id="d1")])
        chat_model = FakeChatModel()
        rag = build_manager(store, embedder, conversation_log, chat_model)

        exchange = await rag.handle_question("user-1", QUESTION)

        assert exchange.bot_message.content == "I don't have information about that."
        assert exchange.outcome is AnswerOutcome.NO_GROUNDING
        assert chat_model.calls == []

    @pytest.mark.asyncio
    async def test_empty_knowledge_base(self, embedder, conversation_log):
        rag = build_manager(InMemoryKnowledgeStore(), embedder, conversation_log)

        exchange = await rag.handle_question("user-1", QUESTION)

        assert exchange.bot_message.content == REFUSAL_SENTENCE

    @pytest.mark.asyncio
    async def test_guard_override_reported_as_refused(self, embedder, conversation_log):
        long_reply = "Our refund policy lets you return anything at any time for a full refund, no questions asked."
        store = InMemoryKnowledgeStore([make_document(REFUND_DOC, id="d1")])
        rag = build_manager(store, embedder, conversation_log, FakeChatModel(reply=long_reply))

        exchange = await rag.handle_question("user-1", QUESTION)

        assert exchange.bot_message.content == REFUSAL_SENTENCE
        assert exchange.outcome is AnswerOutcome.REFUSED

    @pytest.mark.asyncio
    async def test_image_only_skips_embedding_and_generation(self, keyword_embeddings, embedder, conversation_log):
        chat_model = FakeChatModel()
        rag = build_manager(InMemoryKnowledgeStore([make_document(REFUND_DOC)]), embedder, conversation_log, chat_model)
        image = ImageAttachment(mime_type="image/jpeg", data=b"\xff\xd8")

        exchange = await rag.handle_question("user-1", "", image)

        assert exchange.bot_message.content == IMAGE_ONLY_RESPONSE
        assert exchange.outcome is AnswerOutcome.IMAGE_ONLY
        assert exchange.user_message.content == IMAGE_PLACEHOLDER
        assert embedder.is_loaded is False
        assert keyword_embeddings.queries == []
        assert chat_model.calls == []

    @pytest.mark.asyncio
    async def test_requires_question_or_image(self, embedder, conversation_log):
        rag = build_manager(InMemoryKnowledgeStore(), embedder, conversation_log)

        with pytest.raises(ValueError):
            await rag.handle_question("user-1", "   ")
        assert conversation_log.messages == []

    @pytest.mark.asyncio
    async def test_logs_user_then_bot(self, embedder, conversation_log):
        rag = build_manager(InMemoryKnowledgeStore([make_document(REFUND_DOC)]), embedder, conversation_log)

        exchange = await rag.handle_question("user-1", f"  {QUESTION}  ")

        assert [m.role for m in conversation_log.messages] == ["user", "bot"]
        assert conversation_log.messages[0].content == QUESTION
        assert exchange.user_message == conversation_log.messages[0]
        assert exchange.bot_message == conversation_log.messages[1]

    @pytest.mark.asyncio
    async def test_embedding_failure_becomes_generic_reply(self, conversation_log):
        def broken():
            raise OSError("no model")

        rag = build_manager(InMemoryKnowledgeStore([make_document(REFUND_DOC)]), EmbeddingService(factory=broken), conversation_log)

        exchange = await rag.handle_question("user-1", QUESTION)

        assert exchange.bot_message.content == GENERIC_ERROR_RESPONSE
        assert exchange.outcome is AnswerOutcome.ERROR
        assert [m.role for m in conversation_log.messages] == ["user", "bot"]

    @pytest.mark.asyncio
    async def test_generation_timeout_becomes_generic_reply(self, embedder, conversation_log):
        store = InMemoryKnowledgeStore([make_document(REFUND_DOC)])
        guard = GroundedAnswerGuard(llm=FakeChatModel(delay=1.0), timeout=0.01)
        rag = RAGManager(embedder=embedder, knowledge_store=store, conversation_log=conversation_log, guard=guard)

        exchange = await rag.handle_question("user-1", QUESTION)

        assert exchange.bot_message.content == GENERIC_ERROR_RESPONSE

    @pytest.mark.asyncio
    async def test_log_failure_propagates(self, embedder, conversation_log):
        conversation_log.fail_appends = True
        chat_model = FakeChatModel()
        rag = build_manager(InMemoryKnowledgeStore([make_document(REFUND_DOC)]), embedder, conversation_log, chat_model)

        with pytest.raises(PersistenceError):
            await rag.handle_question("user-1", QUESTION)
        assert embedder.is_loaded is False
        assert chat_model.calls == []

    @pytest.mark.asyncio
    async def test_history(self, embedder, conversation_log):
        rag = build_manager(InMemoryKnowledgeStore(), embedder, conversation_log)

        await rag.handle_question("user-1", QUESTION)
        await rag.handle_question("user-2", "Anything about invoices?")
        history = await rag.history("user-1")

        assert [m.role for m in history] == ["user", "bot"]
        assert all(m.owner_id == "user-1" for m in history)


class TestRetrieve:

    @pytest.mark.asyncio
    async def test_short_documents_never_embedded(self, keyword_embeddings, embedder, conversation_log):
        short = make_document("refund in 30 days", id="short")
        store = InMemoryKnowledgeStore([short, make_document(REFUND_DOC, id="long")])
        rag = build_manager(store, embedder, conversation_log)

        matches = await rag.retrieve(QUESTION)

        assert [m.document.id for m in matches] == ["long"]
        assert "refund in 30 days" not in keyword_embeddings.queries

    @pytest.mark.asyncio
    async def test_cached_embedding_reused(self, keyword_embeddings, embedder, conversation_log):
        cached = make_document(REFUND_DOC, id="cached", embedding=[1.0, 0.0, 0.0, 0.0, 0.0])
        store = InMemoryKnowledgeStore([cached])
        rag = build_manager(store, embedder, conversation_log)

        matches = await rag.retrieve(QUESTION)

        assert len(matches) == 1
        assert keyword_embeddings.queries == [QUESTION]
        assert store.cached == {}

    @pytest.mark.asyncio
    async def test_missing_embedding_computed_and_cached(self, embedder, conversation_log):
        store = InMemoryKnowledgeStore([make_document(REFUND_DOC, id="fresh")])
        rag = build_manager(store, embedder, conversation_log)

        await rag.retrieve(QUESTION)

        assert list(store.cached) == ["fresh"]
        assert len(store.cached["fresh"]) == 5

    @pytest.mark.asyncio
    async def test_wrong_dimension_recomputed(self, keyword_embeddings, embedder, conversation_log):
        stale = make_document(REFUND_DOC, id="stale", embedding=[1.0, 0.0])
        store = InMemoryKnowledgeStore([stale])
        rag = build_manager(store, embedder, conversation_log)

        matches = await rag.retrieve(QUESTION)

        assert len(matches) == 1
        assert REFUND_DOC in keyword_embeddings.queries
        assert "stale" in store.cached

    @pytest.mark.asyncio
    async def test_cache_write_failure_does_not_abort(self, embedder, conversation_log):
        store = InMemoryKnowledgeStore([make_document(REFUND_DOC, id="d1")])
        store.fail_cache_writes = True
        rag = build_manager(store, embedder, conversation_log)

        assert len(await rag.retrieve(QUESTION)) == 1

    @pytest.mark.asyncio
    async def test_only_first_1800_chars_embedded(self, keyword_embeddings, embedder, conversation_log):
        body = "refund " + "x" * 3000
        store = InMemoryKnowledgeStore([make_document(body, id="big")])
        rag = build_manager(store, embedder, conversation_log)

        await rag.retrieve(QUESTION)

        assert keyword_embeddings.queries[1] == body[:1800]

    @pytest.mark.asyncio
    async def test_context_holds_at_most_four_documents(self, embedder, conversation_log):
        docs = [make_document(f"{REFUND_DOC} Variant {i}.", id=f"d{i}", minutes_ago=i) for i in range(7)]
        chat_model = FakeChatModel()
        rag = build_manager(InMemoryKnowledgeStore(docs), embedder, conversation_log, chat_model, max_workers=2)

        await rag.handle_question("user-1", QUESTION)

        system_prompt = chat_model.calls[0][0].content
        assert system_prompt.count(CONTEXT_SEPARATOR) == 3
        # equal similarity: newest documents win
        for i in range(4):
            assert f"Variant {i}." in system_prompt
        for i in range(4, 7):
            assert f"Variant {i}." not in system_prompt

    @pytest.mark.asyncio
    async def test_failed_embedding_waits_for_siblings(self, conversation_log):
        class FlakyEmbeddings(KeywordEmbeddings):
            def embed_query(self, text):
                if text.startswith("BROKEN"):
                    raise RuntimeError("backend rejected input")
                if text.startswith("SLOW"):
                    time.sleep(0.3)
                return super().embed_query(text)

        store = InMemoryKnowledgeStore([
            make_document(f"BROKEN {REFUND_DOC}", id="broken"),
            make_document(f"SLOW {REFUND_DOC}", id="slow"),
        ])
        rag = build_manager(store, EmbeddingService(factory=FlakyEmbeddings), conversation_log)

        exchange = await rag.handle_question("user-1", QUESTION)

        assert exchange.outcome is AnswerOutcome.ERROR
        # the slow sibling finished and cached before the reply was logged
        assert list(store.cached) == ["slow"]
        await asyncio.sleep(0.4)
        assert list(store.cached) == ["slow"]

"""
kbchat - GroundedAnswerGuard
=============================
Wraps the Gemini generation call so answers stay inside the retrieved
context.

Protocol for ``answer(question, context, image)``:
    1. Empty question + image → ``IMAGE_ONLY_RESPONSE`` (no model call).
    2. Empty context          → ``REFUSAL_SENTENCE`` (no model call).
    3. Build the system instruction around the context verbatim and call
       the chat model with fixed sampling parameters under a timeout.
    4. Post-hoc check (``enforce_grounding``): a long reply that is not a
       refusal, for a question whose first 30 characters do not appear in
       the context, is replaced by ``REFUSAL_SENTENCE``.

The post-hoc check is plain substring and length logic on purpose.  Its
thresholds are observable behaviour: changing them means changing the
tests that pin them.
"""

from __future__ import annotations

import asyncio
import base64
import time
from typing import Any, Protocol, runtime_checkable

from kbchat.config.prompt_templates import EMPTY_REPLY_FALLBACK, IMAGE_ONLY_RESPONSE, REFUSAL_MARKER, REFUSAL_SENTENCE, SYSTEM_INSTRUCTION_TEMPLATE
from kbchat.config.settings import settings
from kbchat.src.core.errors import GenerationTimeout
from kbchat.src.core.models import ImageAttachment
from kbchat.src.utils.logger import get_logger

logger = get_logger(__name__)

# ── Post-hoc grounding thresholds ─────────────────────────────────────
_MAX_UNCHECKED_REPLY_CHARS = 80
_QUESTION_PREFIX_CHARS = 30


@runtime_checkable
class ChatModel(Protocol):
    """Anything exposing LangChain's async ``ainvoke(messages)``."""

    async def ainvoke(self, input: Any, **kwargs: Any) -> Any: ...


class GroundedAnswerGuard:
    """
    Grounded answer generation with a content-safety fallback.

    Parameters
    ----------
    llm
        A LangChain chat model.  Defaults to ``ChatGoogleGenerativeAI``
        configured from ``settings``.
    timeout
        Seconds allowed per generation call.  Defaults to
        ``settings.GENERATION_TIMEOUT_SECONDS``.
    """

    __slots__ = ("_llm", "_timeout")

    def __init__(self, llm: ChatModel | None = None, timeout: float | None = None) -> None:
        self._llm = llm or self._init_llm()
        self._timeout: float = timeout or settings.GENERATION_TIMEOUT_SECONDS


    @staticmethod
    def _init_llm() -> ChatModel:
        """Initialise Gemini via LangChain with the fixed sampling parameters."""
        from langchain_google_genai import ChatGoogleGenerativeAI

        llm = ChatGoogleGenerativeAI(model=settings.LLM_MODEL, temperature=settings.LLM_TEMPERATURE, max_output_tokens=settings.LLM_MAX_OUTPUT_TOKENS, top_p=settings.LLM_TOP_P, google_api_key=settings.GOOGLE_API_KEY.get_secret_value())
        logger.info("LLM initialised: %s (temperature=%.2f, top_p=%.2f, max_output_tokens=%d)", settings.LLM_MODEL, settings.LLM_TEMPERATURE, settings.LLM_TOP_P, settings.LLM_MAX_OUTPUT_TOKENS)
        return llm


    @staticmethod
    def build_system_instruction(context: str) -> str:
        return SYSTEM_INSTRUCTION_TEMPLATE.format(context=context)


    async def answer(self, question: str, context: str, image: ImageAttachment | None = None) -> str:
        """
        Produce the final, grounded reply for one question.

        Raises
        ------
        ValueError
            If neither a question nor an image is supplied.
        GenerationTimeout
            If the model does not answer within the timeout.
        """
        question = (question or "").strip()

        if not question:
            if image is None:
                raise ValueError("A question or an image is required.")
            logger.info("[GUARD] Image without question — capability-limitation reply.")
            return IMAGE_ONLY_RESPONSE

        if not context.strip():
            logger.info("[GUARD] Empty context — refusing without a model call.")
            return REFUSAL_SENTENCE

        from langchain_core.messages import HumanMessage, SystemMessage

        messages = [SystemMessage(content=self.build_system_instruction(context)), HumanMessage(content=self._build_parts(question, image))]

        t_llm = time.perf_counter()
        try:
            response = await asyncio.wait_for(self._llm.ainvoke(messages), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.error("[GUARD] Generation timed out after %.1fs.", self._timeout)
            raise GenerationTimeout(f"Generation exceeded {self._timeout:.1f}s") from exc

        reply = self._extract_text(response).strip() or EMPTY_REPLY_FALLBACK
        logger.info("[GUARD] LLM response: %.1fms (%d chars)", (time.perf_counter() - t_llm) * 1000, len(reply))

        return self.enforce_grounding(reply, question, context)


    @staticmethod
    def enforce_grounding(reply: str, question: str, context: str) -> str:
        """
        Replace a likely-ungrounded reply with ``REFUSAL_SENTENCE``.

        The reply is overridden only when all three hold:
            • it does not contain ``REFUSAL_MARKER`` (case-insensitive),
            • it is longer than 80 characters,
            • the context does not contain the first 30 characters of
              the question (case-insensitive).

        Always returns a string; never raises.
        """
        if REFUSAL_MARKER in reply.lower():
            return reply
        if len(reply) <= _MAX_UNCHECKED_REPLY_CHARS:
            return reply
        if question.lower()[:_QUESTION_PREFIX_CHARS] in context.lower():
            return reply

        logger.warning("[GUARD] Reply (%d chars) looks ungrounded — overriding with refusal.", len(reply))
        return REFUSAL_SENTENCE


    @staticmethod
    def _build_parts(question: str, image: ImageAttachment | None) -> str | list[str | dict[str, Any]]:
        """Human message content: the question, plus the image as a data URL."""
        if image is None:
            return question
        encoded = base64.b64encode(image.data).decode("ascii")
        return [{"type": "text", "text": question}, {"type": "image_url", "image_url": f"data:{image.mime_type};base64,{encoded}"}]


    @staticmethod
    def _extract_text(response: object) -> str:
        """Pull plain text out of a LangChain message (string or content parts)."""
        content = getattr(response, "content", response)
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            texts: list[str] = []
            for part in content:
                if isinstance(part, str):
                    texts.append(part)
                elif isinstance(part, dict) and part.get("type") == "text":
                    texts.append(str(part.get("text", "")))
            return "".join(texts)
        return "" if content is None else str(content)

"""
kbchat - Error Taxonomy
========================
Every failure the answering and ingestion pipelines raise on purpose.

Each error carries a ``user_message`` that is safe to show an end user;
the exception text itself is for logs only.  "No grounding available"
is deliberately *not* an error: it is the ``NO_GROUNDING`` outcome of
``RAGManager`` and resolves to the refusal sentence.
"""

from __future__ import annotations


class KBChatError(Exception):
    """Base class for all kbchat errors."""

    user_message: str = "AI error – please try again later."

    def __init__(self, message: str, *, user_message: str | None = None) -> None:
        super().__init__(message)
        if user_message is not None:
            self.user_message = user_message


class EmbeddingUnavailable(KBChatError):
    """The embedding model could not be loaded or called."""


class EmbeddingTimeout(KBChatError):
    """An embedding call exceeded its time limit.  Not retried."""


class GenerationTimeout(KBChatError):
    """The answer-generation call exceeded its time limit.  Not retried."""


class PersistenceError(KBChatError):
    """A MongoDB read or write failed."""

    user_message = "Cannot load or save data right now."


class InvalidDocumentError(KBChatError):
    """A document has neither content nor a file reference."""

    user_message = "Provide either a file or text content."


class DocumentParseError(KBChatError):
    """Text could not be extracted from an uploaded file."""

    user_message = "PDF parsing issue"

"""
kbchat - Prompt Templates & Fixed Replies
==========================================
Centralised prompt management and every user-facing string the
answering pipeline can return on its own.  Keeping them here lets the
wording be reviewed without touching pipeline logic.

Exports
-------
SYSTEM_INSTRUCTION_TEMPLATE, REFUSAL_SENTENCE, REFUSAL_MARKER,
IMAGE_ONLY_RESPONSE, EMPTY_REPLY_FALLBACK, GENERIC_ERROR_RESPONSE,
IMAGE_PLACEHOLDER, CONTEXT_SEPARATOR, TRUNCATION_MARKER, DEFAULT_TITLE.
"""

# ══════════════════════════════════════════════════════════════════════
#  FIXED REPLIES
# ══════════════════════════════════════════════════════════════════════
# Tests and clients compare against these strings verbatim.

REFUSAL_SENTENCE: str = "I don't have information about that."

# A reply containing this (case-insensitive) already counts as a refusal
# and is never overridden by the post-hoc grounding check.
REFUSAL_MARKER: str = "don't have"

IMAGE_ONLY_RESPONSE: str = "I currently only answer text questions based on admin-uploaded knowledge. Please send a text question along with the image."

EMPTY_REPLY_FALLBACK: str = "Sorry, I couldn't generate a response."

GENERIC_ERROR_RESPONSE: str = "Sorry, something went wrong while answering. Please try again later."

# Stored as the user turn when only an image was sent.
IMAGE_PLACEHOLDER: str = "[Image uploaded]"


# ══════════════════════════════════════════════════════════════════════
#  CONTEXT & INGESTION MARKERS
# ══════════════════════════════════════════════════════════════════════

CONTEXT_SEPARATOR: str = "\n\n────────────────────────────\n\n"

TRUNCATION_MARKER: str = "\n\n[Content truncated due to size limit]"

DEFAULT_TITLE: str = "Untitled Document"


# ══════════════════════════════════════════════════════════════════════
#  SYSTEM INSTRUCTION
# ══════════════════════════════════════════════════════════════════════
# ``{context}`` is the only placeholder.  The assembled context is
# substituted verbatim.

SYSTEM_INSTRUCTION_TEMPLATE: str = """You are a helpful assistant that answers questions **only** using the provided knowledge base content.
You must NEVER use general knowledge, internet information, assumptions or common sense that is not explicitly written in the provided context.
If the answer is not clearly supported by the context, or if the question is unrelated, reply **only** with this exact sentence:

"I don't have information about that."

Knowledge base content:
{context}

Now answer the following question based **only** on the text above:"""

"""
kbchat - Text Utilities
========================
Helpers for preparing knowledge-base text before it is stored:
cleaning extracted file text, merging file text with typed text,
capping content size, and normalising titles.

These utilities are consumed primarily by ``IngestionService`` and
should remain stateless and side-effect-free.
"""

from __future__ import annotations

import re
import unicodedata
from pathlib import Path

from kbchat.config.prompt_templates import DEFAULT_TITLE, TRUNCATION_MARKER
from kbchat.config.settings import settings

# Control characters (C0/C1) except \n, \r, \t, plus BOM, zero-width
# characters and soft hyphens that PDF extraction tends to leave behind.
_NON_PRINTABLE_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\ufeff\u200b\u200c\u200d\u200e\u200f\u00ad\u2060\ufffe]")
_TITLE_SEPARATORS_RE = re.compile(r"[_\-]+")


def clean_text(text: str) -> str:
    """
    Sanitise text extracted from an uploaded file.

    Steps:
        1. Unicode NFC normalisation.
        2. Strip non-printable / zero-width characters.
        3. Collapse runs of horizontal whitespace, *preserving* newlines.
        4. Strip every line, collapse 3+ blank lines to 2.

    Args:
        text: Raw text extracted from a source file.

    Returns:
        Cleaned text, stripped of leading/trailing whitespace.
    """
    text = unicodedata.normalize("NFC", text)
    text = _NON_PRINTABLE_RE.sub("", text)
    text = re.sub(r"[^\S\n]+", " ", text)
    text = "\n".join(line.strip() for line in text.splitlines())
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def merge_text(extracted: str | None, extra: str | None) -> str:
    """Join file text and typed text with a blank line; either may be missing."""
    parts = [part.strip() for part in (extracted, extra) if part and part.strip()]
    return "\n\n".join(parts)


def truncate_content(content: str, limit: int | None = None) -> tuple[str, bool]:
    """
    Enforce the content size cap.

    Content longer than *limit* keeps exactly *limit* characters and gets
    ``TRUNCATION_MARKER`` appended.

    Returns:
        ``(content, truncated)``
    """
    limit = limit or settings.MAX_CONTENT_CHARS
    if len(content) <= limit:
        return content, False
    return content[:limit] + TRUNCATION_MARKER, True


def normalize_title(title: str | None, limit: int | None = None) -> str:
    """Strip the title, fall back to ``DEFAULT_TITLE`` and cut to *limit*."""
    limit = limit or settings.MAX_TITLE_CHARS
    cleaned = (title or "").strip()
    return (cleaned or DEFAULT_TITLE)[:limit]


def title_from_filename(filename: str) -> str:
    """
    Derive a display title from a file name.

    Examples::

        "refund_policy.pdf"      → "refund policy"
        "Shipping-Rules-v2.txt"  → "Shipping Rules v2"
    """
    stem = Path(filename).stem
    return _TITLE_SEPARATORS_RE.sub(" ", stem).strip()

"""
kbchat - ContextAssembler
==========================
Builds the single text block the answer is grounded on.
"""

from __future__ import annotations

from typing import Sequence

from kbchat.config.prompt_templates import CONTEXT_SEPARATOR
from kbchat.src.core.models import Match


class ContextAssembler:
    """
    Joins the full, stripped content of each match in ranking order.

    No truncation happens here: content was capped at ingestion time.
    """

    __slots__ = ("separator",)

    def __init__(self, separator: str = CONTEXT_SEPARATOR) -> None:
        self.separator = separator


    def assemble(self, matches: Sequence[Match]) -> str:
        # Zero matches must be answered with a refusal before reaching here
        if not matches:
            raise ValueError("Cannot assemble a context block from zero matches.")
        return self.separator.join(m.document.content.strip() for m in matches)

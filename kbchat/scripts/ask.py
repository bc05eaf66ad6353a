"""
kbchat - Ask Script
====================
Sends one question through ``RAGManager`` and prints the reply, or
prints an owner's conversation log.

Usage:
    python -m kbchat.scripts.ask --owner user-42 "What is the refund policy?"
    python -m kbchat.scripts.ask --owner user-42 --image receipt.png "Is this refundable?"
    python -m kbchat.scripts.ask --owner user-42 --history
"""

from __future__ import annotations

import argparse
import asyncio
import mimetypes
from pathlib import Path


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ask", description="kbchat — ask the knowledge base a question.")
    parser.add_argument("question", nargs="?", default="", help="Question text.")
    parser.add_argument("--owner", required=True, help="Id of the asking user.")
    parser.add_argument("--image", type=Path, default=None, help="Optional image to send with the question.")
    parser.add_argument("--history", action="store_true", default=False, help="Print the conversation log instead of asking.")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> None:
    from kbchat.src.core.embedder import EmbeddingService
    from kbchat.src.core.models import ImageAttachment
    from kbchat.src.core.rag_engine import RAGManager

    rag = RAGManager(embedder=EmbeddingService())

    if args.history:
        for message in await rag.history(args.owner):
            print(f"[{message.timestamp:%Y-%m-%d %H:%M:%S}] {message.role:>4}: {message.content}")
        return

    image = None
    if args.image is not None:
        mime_type = mimetypes.guess_type(args.image.name)[0] or "application/octet-stream"
        image = ImageAttachment(mime_type=mime_type, data=args.image.read_bytes())

    exchange = await rag.handle_question(args.owner, args.question, image)
    print()
    print(exchange.bot_message.content)
    print()


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    if not args.history and not args.question and args.image is None:
        raise SystemExit("ask: a question or --image is required")
    asyncio.run(_run(args))


if __name__ == "__main__":
    main()

"""
kbchat - Knowledge Ingestion Script
====================================
CLI entry point that orchestrates:
    1. Load settings (fail-fast on a missing ``GOOGLE_API_KEY`` / ``MONGO_URI``).
    2. Build the ``EmbeddingService`` and ``KnowledgeStore``.
    3. Ingest every ``.txt`` / ``.pdf`` in the source directory, titled
       after the file name, owned by ``--owner``.
    4. Optionally backfill embeddings for stored documents lacking one.
    5. Print an execution summary.

Flags:
    --owner ID       Owning administrator id (required).
    --source DIR     Directory to ingest (default ``settings.DATA_RAW_DIR``).
    --backfill       After ingesting, embed stored documents that have no vector.
    --backfill-only  Skip ingestion and only backfill.

Usage:
    python -m kbchat.scripts.ingest_docs --owner admin-1
    python -m kbchat.scripts.ingest_docs --owner admin-1 --source ./docs --backfill
    python -m kbchat.scripts.ingest_docs --owner admin-1 --backfill-only
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ingest_docs", description="kbchat — ingest documents into the shared knowledge base.")
    parser.add_argument("--owner", required=True, help="Id of the administrator who owns the ingested documents.")
    parser.add_argument("--source", type=Path, default=None, help="Directory with .txt / .pdf files (default: settings.DATA_RAW_DIR).")
    parser.add_argument("--backfill", action="store_true", default=False, help="Embed stored documents that have no cached vector after ingesting.")
    parser.add_argument("--backfill-only", action="store_true", default=False, help="Only backfill missing embeddings; ingest nothing.")
    return parser.parse_args(argv)


async def _ingest_files(service: object, owner: str, files: list[Path]) -> tuple[int, int]:
    """Ingest *files* one by one; a failing file is logged and skipped.  Returns ``(ingested, failed)``."""
    from kbchat.src.core.errors import KBChatError
    from kbchat.src.utils.logger import get_logger
    from kbchat.src.utils.text_utils import title_from_filename

    logger = get_logger(__name__)
    ingested = failed = 0

    for filepath in files:
        try:
            await service.ingest_file(owner, filepath, title=title_from_filename(filepath.name))  # type: ignore[attr-defined]
            ingested += 1
        except KBChatError as exc:
            logger.error("Failed to ingest %s: %s", filepath.name, exc.user_message)
            failed += 1
        except OSError as exc:
            logger.error("Failed to read %s: %s", filepath.name, exc)
            failed += 1

    return ingested, failed


async def _run(args: argparse.Namespace) -> dict[str, int]:
    from kbchat.config.settings import settings
    from kbchat.src.core.embedder import EmbeddingService
    from kbchat.src.core.ingestor import SUPPORTED_EXTENSIONS, IngestionService
    from kbchat.src.database.document_store import KnowledgeStore
    from kbchat.src.utils.logger import get_logger

    logger = get_logger(__name__)
    store = KnowledgeStore()
    service = IngestionService(store=store, embedder=EmbeddingService())
    summary = {"total_files": 0, "ingested": 0, "failed": 0, "backfilled": 0, "stored_total": 0}

    if not args.backfill_only:
        source = Path(args.source or settings.DATA_RAW_DIR)
        if not source.exists():
            logger.warning("Source directory does not exist: %s", source)
            files: list[Path] = []
        else:
            files = sorted(f for f in source.iterdir() if f.suffix.lower() in SUPPORTED_EXTENSIONS)
        summary["total_files"] = len(files)
        logger.info("Starting ingestion — %d file(s) found in %s", len(files), source)

        summary["ingested"], summary["failed"] = await _ingest_files(service, args.owner, files)

    if args.backfill or args.backfill_only:
        summary["backfilled"] = await service.backfill_embeddings()

    summary["stored_total"] = await store.count()
    return summary


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    t_start = time.perf_counter()

    try:
        from kbchat.config.settings import settings
    except Exception as exc:
        print("\n[FATAL] Configuration error — check your .env file:\n")
        print(f"  {exc}")
        print()
        sys.exit(1)

    _print_header(settings, args)
    summary = asyncio.run(_run(args))
    _print_footer(summary, time.perf_counter() - t_start)


# ── Pretty-print helpers ──────────────────────────────────────────────

def _print_header(settings: object, args: argparse.Namespace) -> None:
    mongo_uri_val = settings.MONGO_URI.get_secret_value()  # type: ignore[attr-defined]
    mongo_masked = mongo_uri_val.split("@")[-1] if "@" in mongo_uri_val else mongo_uri_val

    print()
    print("=" * 60)
    print("  KBCHAT — Knowledge Ingestion")
    print("=" * 60)
    print(f"  Environment  : {settings.ENV}")                                # type: ignore[attr-defined]
    print(f"  Embedding    : {settings.EMBEDDING_PROVIDER}")                 # type: ignore[attr-defined]
    print(f"  MongoDB      : {mongo_masked} (db: {settings.MONGO_DB_NAME})")  # type: ignore[attr-defined]
    print(f"  Source dir   : {args.source or settings.DATA_RAW_DIR}")        # type: ignore[attr-defined]
    print(f"  Owner        : {args.owner}")
    print("=" * 60)
    print()


def _print_footer(summary: dict[str, int], elapsed: float) -> None:
    print()
    print("=" * 60)
    print("  EXECUTION SUMMARY")
    print("-" * 60)
    print(f"  Files scanned        : {summary['total_files']}")
    print(f"  Files ingested       : {summary['ingested']}")
    print(f"  Files failed         : {summary['failed']}")
    print(f"  Embeddings backfilled: {summary['backfilled']}")
    print(f"  Documents stored     : {summary['stored_total']}")
    print(f"  Total elapsed        : {elapsed:>8.2f}s")
    print("=" * 60)
    print()


if __name__ == "__main__":
    main()

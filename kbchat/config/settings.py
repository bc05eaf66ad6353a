"""
kbchat - Centralized Configuration
===================================
Uses ``pydantic-settings`` (``BaseSettings``) to load *all* configuration
from environment variables and the project-level ``.env`` file.

Security
--------
- ``GOOGLE_API_KEY`` is typed as ``SecretStr`` and has **no default value**.
  If the key is missing at startup, Pydantic will raise a ``ValidationError``
  with a clear error message.  The raw value is never exposed in repr,
  logs, or tracebacks.
- ``MONGO_URI`` is also ``SecretStr`` — connection strings contain
  credentials and must never leak into logs.

Retrieval knobs
---------------
``SIMILARITY_THRESHOLD`` and ``TOP_K`` are product configuration.  They
have no derivation of their own; change them only when the product
requirement changes.

Concurrency
-----------
``MAX_WORKERS`` bounds how many stored documents are embedded at the
same time when a question finds documents without a cached vector.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings.

    Every field is loaded from environment variables (or ``.env``).
    Fields *without* a default are **required** — the app will refuse
    to start until they are provided.

    Attributes
    ----------
    GOOGLE_API_KEY : SecretStr
        API key for Google AI Studio (Gemini).  **Required.**
    MONGO_URI : SecretStr
        MongoDB connection string.  **Required.**
    EMBEDDING_PROVIDER : Literal["local", "google"]
        ``local`` loads a sentence-transformers model in-process,
        ``google`` calls the Gemini embedding endpoint.
    LLM_TEMPERATURE, LLM_MAX_OUTPUT_TOKENS, LLM_TOP_P : sampling
        Fixed sampling parameters for grounded answer generation.
    SIMILARITY_THRESHOLD : float
        Minimum cosine similarity (exclusive) for a document to count
        as grounding.
    TOP_K : int
        Maximum number of documents placed in the context block.
    MIN_CONTENT_CHARS : int
        Documents with shorter content are never ranked.
    EMBED_CHAR_LIMIT : int
        Only this many leading characters of a document are embedded.
    MAX_CONTENT_CHARS : int
        Ingestion cap on document content.
    """

    # ── Resolved Absolute Paths ────────────────────────────────────────
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    DATA_RAW_DIR: Path = BASE_DIR / "data" / "raw"

    # ── Environment Mode ───────────────────────────────────────────────
    ENV: Literal["dev", "prod"] = "dev"

    # ── API Keys (REQUIRED — no default) ───────────────────────────────
    GOOGLE_API_KEY: SecretStr

    # ── MongoDB (REQUIRED — no default) ────────────────────────────────
    MONGO_URI: SecretStr
    MONGO_DB_NAME: str = "kbchat"
    KNOWLEDGE_COLLECTION: str = "knowledges"
    MESSAGE_COLLECTION: str = "messages"

    # ── Embedding Model ────────────────────────────────────────────────
    EMBEDDING_PROVIDER: Literal["local", "google"] = "local"
    LOCAL_EMBEDDING_MODEL: str = "sentence-transformers/all-MiniLM-L6-v2"
    GOOGLE_EMBEDDING_MODEL: str = "gemini-embedding-001"
    EMBEDDING_TIMEOUT_SECONDS: float = 30.0

    # ── Generation Model ───────────────────────────────────────────────
    LLM_MODEL: str = "gemini-2.5-flash"
    LLM_TEMPERATURE: float = 0.25
    LLM_MAX_OUTPUT_TOKENS: int = 900
    LLM_TOP_P: float = 0.92
    GENERATION_TIMEOUT_SECONDS: float = 60.0

    # ── Retrieval ──────────────────────────────────────────────────────
    SIMILARITY_THRESHOLD: float = 0.48
    TOP_K: int = 4
    MIN_CONTENT_CHARS: int = 30
    EMBED_CHAR_LIMIT: int = 1800

    # ── Ingestion Limits ───────────────────────────────────────────────
    MAX_CONTENT_CHARS: int = 1_000_000
    MAX_TITLE_CHARS: int = 250

    # ── Concurrency ────────────────────────────────────────────────────
    MAX_WORKERS: int = 4

    # ── Validators ─────────────────────────────────────────────────────

    @field_validator("SIMILARITY_THRESHOLD")
    @classmethod
    def _threshold_range(cls, v: float) -> float:
        if not -1.0 <= v <= 1.0:
            raise ValueError(f"SIMILARITY_THRESHOLD must be within [-1, 1], got {v}")
        return v


    @field_validator("TOP_K", "EMBED_CHAR_LIMIT", "MAX_CONTENT_CHARS", "MAX_TITLE_CHARS", "LLM_MAX_OUTPUT_TOKENS")
    @classmethod
    def _positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be ≥ 1, got {v}")
        return v


    @field_validator("EMBEDDING_TIMEOUT_SECONDS", "GENERATION_TIMEOUT_SECONDS")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"timeout must be > 0 seconds, got {v}")
        return v


    @field_validator("MAX_WORKERS")
    @classmethod
    def _workers_range(cls, v: int) -> int:
        if not 1 <= v <= 16:
            raise ValueError(f"MAX_WORKERS must be 1–16, got {v}")
        return v

    # ── Pydantic Settings Configuration ────────────────────────────────
    model_config = SettingsConfigDict(env_file=Path(__file__).resolve().parent.parent / ".env", env_file_encoding="utf-8", extra="ignore")


# ── Singleton Instance ─────────────────────────────────────────────────
# Import this throughout the project:
#     from kbchat.config.settings import settings
settings = Settings()

"""
kbchat - MongoDB Client
========================
Module-level singleton ``AsyncIOMotorClient`` shared by every store.

The client is created on first use and is ``tz_aware`` so timestamps
read back from MongoDB compare correctly with freshly created ones.
"""

from __future__ import annotations

import motor.motor_asyncio

from kbchat.config.settings import settings
from kbchat.src.utils.logger import get_logger

logger = get_logger(__name__)

_mongo_client: motor.motor_asyncio.AsyncIOMotorClient | None = None


def get_mongo_client() -> motor.motor_asyncio.AsyncIOMotorClient:
    """Return (or create) the module-level async MongoDB client."""
    global _mongo_client
    if _mongo_client is None:
        _mongo_client = motor.motor_asyncio.AsyncIOMotorClient(settings.MONGO_URI.get_secret_value(), tz_aware=True)
        logger.info("MongoDB async client created (singleton).")
    return _mongo_client


def get_collection(name: str) -> motor.motor_asyncio.AsyncIOMotorCollection:
    return get_mongo_client()[settings.MONGO_DB_NAME][name]

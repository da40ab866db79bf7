# assessment_engine/db.py
import asyncio
import logging
from urllib.parse import urlparse
from typing import Optional

import motor.motor_asyncio
from beanie import init_beanie

from .config import settings
from .models.test import Test
from .models.submission import TestSubmission

logger = logging.getLogger(__name__)

DOCUMENT_MODELS = [Test, TestSubmission]

# Globals (one client + one beanie-init flag per process)
_global_client: Optional[motor.motor_asyncio.AsyncIOMotorClient] = None
_beanie_initialized = False
_beanie_lock = asyncio.Lock()


def _database_name() -> str:
    if settings.MONGO_DB_NAME:
        return settings.MONGO_DB_NAME
    parsed = urlparse(settings.MONGO_URI)
    return parsed.path.lstrip("/") or "assessment_engine"


def _make_client() -> motor.motor_asyncio.AsyncIOMotorClient:
    return motor.motor_asyncio.AsyncIOMotorClient(
        settings.MONGO_URI,
        serverSelectionTimeoutMS=3000,
        connectTimeoutMS=3000,
        socketTimeoutMS=10000,
        maxPoolSize=50,
        appname="assessment-engine",
        retryWrites=True,
        retryReads=True,
    )


def get_db_client() -> motor.motor_asyncio.AsyncIOMotorClient:
    """Return the process-wide Motor client, creating it on first use"""
    global _global_client
    if _global_client is None:
        _global_client = _make_client()
    return _global_client


async def init_db(client: Optional[motor.motor_asyncio.AsyncIOMotorClient] = None) -> None:
    """
    Initialize Beanie once per process. Safe to call repeatedly.

    Args:
        client: Optional client to bind to (tests pass a mock client)
    """
    global _beanie_initialized

    if _beanie_initialized and client is None:
        return

    async with _beanie_lock:
        if _beanie_initialized and client is None:
            return

        db = (client or get_db_client()).get_database(_database_name())
        await init_beanie(database=db, document_models=DOCUMENT_MODELS)
        _beanie_initialized = True
        logger.info(f"Beanie initialized on database '{db.name}'")


async def ping() -> float:
    """Round-trip a ping to MongoDB and return the latency in milliseconds"""
    loop = asyncio.get_running_loop()
    started = loop.time()
    await get_db_client().admin.command("ping")
    return round((loop.time() - started) * 1000, 2)


def close_client() -> None:
    """
    Close and drop the process-global client (useful during shutdown/tests).
    """
    global _global_client, _beanie_initialized
    if _global_client is not None:
        _global_client.close()
    _global_client = None
    _beanie_initialized = False

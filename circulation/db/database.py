# circulation/db/database.py
import logging
from typing import Optional

import motor.motor_asyncio
from beanie import init_beanie

from circulation.core.config import DATABASE_NAME, MONGODB_URL, STORAGE_BACKEND
from circulation.repository.base import Repository
from circulation.repository.memory import MemoryRepository
from circulation.repository.mongo import DOCUMENT_MODELS, MongoRepository

logger = logging.getLogger(__name__)

_client: Optional[motor.motor_asyncio.AsyncIOMotorClient] = None


async def init_db(backend: Optional[str] = None) -> Repository:
    """Builds the repository for the configured backend (``memory`` or ``mongo``)."""
    global _client
    backend = (backend or STORAGE_BACKEND).lower()

    if backend == "memory":
        logger.info("Using in-memory repository (state is lost on restart).")
        return MemoryRepository()

    if backend != "mongo":
        raise ValueError(f"Unknown STORAGE_BACKEND '{backend}'. Expected 'memory' or 'mongo'.")
    if not MONGODB_URL:
        logger.critical("FATAL: MONGODB_URL environment variable is not set.")
        raise ValueError("MONGODB_URL environment variable is not set.")

    logger.info("Connecting to MongoDB...")
    _client = motor.motor_asyncio.AsyncIOMotorClient(MONGODB_URL, tz_aware=True)
    database = _client[DATABASE_NAME]
    logger.info(f"Using database: {DATABASE_NAME}")

    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    logger.info("Beanie initialization complete for all models.")
    return MongoRepository(_client)


async def ping_db() -> bool:
    if _client is None:
        return True
    await _client.admin.command("ping")
    return True


def close_db() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
        logger.info("MongoDB connection closed.")

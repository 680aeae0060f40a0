"""
otpauth/db/mongo.py

Purpose: MongoDB connection for the user directory

- One Motor client per process, created at startup
- Bounded retries with exponential backoff on connect
- Timezone-aware datetimes so stored timestamps compare with the injected clock
- Ping-based health check
"""

import asyncio
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from otpauth.core.config import settings
from otpauth.core.logging import get_logger

logger = get_logger(__name__)

IDENTITIES_COLLECTION = "identities"

_client: Optional[AsyncIOMotorClient] = None
_database: Optional[AsyncIOMotorDatabase] = None


def _new_client(url: str) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(
        url,
        maxPoolSize=settings.MONGODB_MAX_POOL_SIZE,
        serverSelectionTimeoutMS=5000,
        connectTimeoutMS=10000,
        retryWrites=True,
        retryReads=True,
        tz_aware=True,
    )


async def connect_to_mongo(url: Optional[str] = None, db_name: Optional[str] = None):
    """
    Connects the process-wide client. Called from the application lifespan
    and the maintenance scripts; a second call is a no-op.

    Raises:
        ConnectionError: every attempt failed
    """
    global _client, _database

    if _client is not None:
        logger.warning("MongoDB client already initialized")
        return

    url = url or settings.MONGODB_URL
    db_name = db_name or settings.MONGODB_DB_NAME
    attempts = settings.MONGODB_CONNECT_RETRIES
    delay = 2

    for attempt in range(1, attempts + 1):
        client = _new_client(url)
        try:
            await client.admin.command("ping")
        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            client.close()
            logger.error(f"MongoDB connect attempt {attempt}/{attempts} failed: {e}")
            if attempt == attempts:
                logger.critical("Giving up on MongoDB")
                raise ConnectionError("Could not establish MongoDB connection") from e
            await asyncio.sleep(delay)
            delay *= 2
            continue

        _client = client
        _database = client[db_name]
        logger.info(f"✅ Connected to MongoDB database '{db_name}'")
        return


async def close_mongo_connection():
    global _client, _database

    if _client is None:
        return

    _client.close()
    _client = None
    _database = None
    logger.info("MongoDB connection closed")


async def check_database_health() -> bool:
    """
    True when the server answers a ping. Never raises; the health endpoint
    reports the result as a degraded check.
    """
    if _client is None:
        logger.error("MongoDB client not initialized")
        return False

    try:
        await _client.admin.command("ping")
    except PyMongoError as e:
        logger.error(f"Database health check failed: {e}")
        return False
    return True


def get_database() -> AsyncIOMotorDatabase:
    """
    Raises:
        RuntimeError: connect_to_mongo() has not run
    """
    if _database is None:
        raise RuntimeError("Database not initialized. Call connect_to_mongo() during startup.")
    return _database


def get_identities_collection() -> AsyncIOMotorCollection:
    """
    The identities collection.

    Fields:
    - identity_id: str (unique, allocated on registration)
    - phone_number: str (unique, canonical E.164)
    - display_name: str
    - deactivated: bool
    - created_at / updated_at / deactivated_at / reactivated_at: datetime
    - profile: dict (email, address and other free-form fields)
    - keywords: list[str] (search prefixes of display_name)
    """
    return get_database()[IDENTITIES_COLLECTION]

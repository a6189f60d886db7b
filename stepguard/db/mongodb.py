import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from stepguard.core.config import settings

logger = logging.getLogger(__name__)


class MongoDB:
    client: Optional[AsyncIOMotorClient] = None


mongodb = MongoDB()


# Return database object
async def get_database() -> AsyncIOMotorDatabase:
    return mongodb.client[settings.MONGO_DB_NAME]


# Connect MongoDB (called on startup)
async def connect_to_mongo():
    mongodb.client = AsyncIOMotorClient(settings.MONGO_URI)
    logger.info("Connected to MongoDB at %s", settings.MONGO_URI)


# Close connection (shutdown)
async def close_mongo_connection():
    if mongodb.client is not None:
        mongodb.client.close()
        logger.info("MongoDB connection closed")


def get_client() -> Optional[AsyncIOMotorClient]:
    """Return raw MongoDB client"""
    return mongodb.client


def with_str_id(doc: Optional[dict]) -> Optional[dict]:
    """Copy of a document with ``_id`` rendered as a string."""
    if doc is None:
        return None
    doc = dict(doc)
    if "_id" in doc:
        doc["_id"] = str(doc["_id"])
    return doc


async def ensure_indexes(db: AsyncIOMotorDatabase):
    """Create the indexes the device trust collections rely on (run at startup)."""
    await db.devices.create_index(
        [("user_id", ASCENDING), ("device_name", ASCENDING), ("browser", ASCENDING), ("os", ASCENDING)],
        unique=True,
    )
    await db.device_sessions.create_index([("user_id", ASCENDING), ("last_active", DESCENDING)])
    await db.device_sessions.create_index("expires_at")
    await db.verification_codes.create_index([("device_session_id", ASCENDING), ("created_at", DESCENDING)])
    await db.backup_codes.create_index([("user_id", ASCENDING), ("used_at", ASCENDING)])
    await db.account_events.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])


class UnitOfWork:
    """
    Groups writes that must land together.

    With transactions enabled every write made through the yielded session
    commits or aborts as one. Without a replica set the yielded session is
    ``None``; callers then pass it through unchanged and undo their own
    earlier writes when a later one fails.
    """

    def __init__(self, client: Any, use_transactions: bool = False):
        self.client = client
        self.use_transactions = use_transactions and client is not None

    @asynccontextmanager
    async def begin(self):
        if not self.use_transactions:
            yield None
            return

        async with await self.client.start_session() as session:
            async with session.start_transaction():
                yield session


def session_kwargs(session) -> dict:
    """Keyword arguments that bind a write to ``session`` when there is one."""
    return {"session": session} if session is not None else {}

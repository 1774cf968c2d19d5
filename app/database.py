import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from app import config

logger = logging.getLogger(__name__)

client = AsyncIOMotorClient(
    config.MONGO_URI,
    serverSelectionTimeoutMS=config.MONGO_TIMEOUT_MS,
    connectTimeoutMS=config.MONGO_TIMEOUT_MS,
    socketTimeoutMS=config.MONGO_TIMEOUT_MS,
    tz_aware=True,
)
db = client[config.MONGO_DB_NAME]

__all__ = ["client", "db", "get_db", "ensure_indexes"]


def get_db() -> AsyncIOMotorDatabase:
    """FastAPI dependency returning the application database."""
    return db


async def ensure_indexes(database: AsyncIOMotorDatabase):
    """Create the indexes the stores rely on for uniqueness and ordering."""
    await database.users.create_index("email", unique=True)

    await database.listings.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    await database.listings.create_index([("created_at", DESCENDING)])

    await database.saved_posts.create_index(
        [("user_id", ASCENDING), ("post_id", ASCENDING)], unique=True
    )

    await database.conversations.create_index("participant_key", unique=True)
    await database.conversations.create_index("participants")

    await database.messages.create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING)])

    await database.otps.create_index("created_at", expireAfterSeconds=config.OTP_TTL_SECONDS)

    logger.info("MongoDB indexes ensured")

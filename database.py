import logging
from motor.motor_asyncio import AsyncIOMotorClient

from config import Settings

logger = logging.getLogger(__name__)


def get_client(settings: Settings) -> AsyncIOMotorClient:
    # Naive UTC datetimes round-trip unchanged, matching the rest of the app
    return AsyncIOMotorClient(settings.mongo_url, tz_aware=False)

def get_database(client: AsyncIOMotorClient, settings: Settings):
    return client[settings.mongo_db]

async def check_connection(client: AsyncIOMotorClient) -> bool:
    try:
        await client.admin.command('ping')
        logger.info("MongoDB connection successful")
        return True
    except Exception:
        logger.exception("MongoDB connection failed")
        raise

async def ensure_indexes(db) -> None:
    """Create the unique indexes the stores rely on for identity."""
    await db.books.create_index("id", unique=True)
    await db.books.create_index("code", unique=True)
    await db.users.create_index("user_id", unique=True)
    await db.users.create_index("email", unique=True)
    await db.users.create_index("reset_token", sparse=True)
    await db.borrow_records.create_index("id", unique=True)
    await db.borrow_records.create_index([("status", 1), ("due_date", 1)])
    await db.borrow_records.create_index("user_id")
    await db.notifications.create_index([("user_id", 1), ("timestamp", -1)])
    await db.reviews.create_index("book_id")

"""
Migration script to backfill copy counts on books created before stock tracking.
Run this script once to migrate existing data

Usage:
    python migration.py
"""

import asyncio
import logging

from config import settings
from database import get_client, get_database
from models import OPEN_STATUSES, BookStatus
from stores import LibraryStore, MongoStore

logger = logging.getLogger(__name__)


async def migrate_books(store: LibraryStore) -> int:
    """Give every legacy book ``quantity``/``available_quantity``/``status``.

    Legacy records are assumed to own a single copy; copies held by open
    borrowings are subtracted from it. Returns the number of books updated.
    """
    logger.info("Starting migration of existing books...")

    books_to_update = [b for b in await store.list_books()
                       if "quantity" not in b or "available_quantity" not in b]
    if not books_to_update:
        logger.info("No books need migration. All books already have copy count fields.")
        return 0

    logger.info("Found %d books to migrate", len(books_to_update))
    for book in books_to_update:
        held = len(await store.list_borrowings(book_id=book["id"], statuses=OPEN_STATUSES))
        quantity = max(1, book.get("quantity", 1), held)
        available = max(0, quantity - held)
        await store.update_book(book["id"], {
            "quantity": quantity,
            "available_quantity": available,
            "status": BookStatus.AVAILABLE.value if available > 0 else BookStatus.BORROWED.value,
            "borrow_count": book.get("borrow_count", held),
            "view_count": book.get("view_count", 0),
        })
        logger.info("Updated book '%s' - Total: %d, Available: %d, Borrowed: %d",
                    book.get("title"), quantity, available, held)

    logger.info("Migration completed successfully!")
    return len(books_to_update)


async def main():
    client = get_client(settings)
    try:
        await migrate_books(MongoStore(get_database(client, settings), client))
    finally:
        client.close()


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level.upper(), format="%(levelname)s %(message)s")
    asyncio.run(main())

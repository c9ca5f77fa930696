import logging
import math
from typing import Optional

from errors import ConflictError, NotFoundError
from models import BookStatus
from stores import LibraryStore

logger = logging.getLogger(__name__)

# Fields an update may touch; stock counts only change through the copy operations
DESCRIPTIVE_FIELDS = ("title", "author", "code", "genre", "publisher", "description",
                      "date_published", "is_ebook")


def _same(value: Optional[str], wanted: str) -> bool:
    return value is not None and value.lower() == wanted.lower()


def _matches(book: dict, search, genre, author, publisher, year, min_rating) -> bool:
    if search:
        needle = search.lower()
        haystack = (book.get("title") or "", book.get("author") or "", book.get("code") or "")
        if not any(needle in value.lower() for value in haystack):
            return False
    # Facet filters are exact, case-insensitive
    if genre and not _same(book.get("genre"), genre):
        return False
    if author and not _same(book.get("author"), author):
        return False
    if publisher and not _same(book.get("publisher"), publisher):
        return False
    if year is not None:
        published = book.get("date_published")
        if published is None or published.year != year:
            return False
    if min_rating is not None and book["average_rating"] < min_rating:
        return False
    return True


class CatalogService:

    def __init__(self, store: LibraryStore):
        self.store = store

    async def get_book(self, book_id: int, count_view: bool = False) -> dict:
        book = await self.store.get_book_by_id(book_id)
        if not book:
            raise NotFoundError("Book not found")
        if count_view:
            await self.store.increment_view_count(book_id)
            book["view_count"] = book.get("view_count", 0) + 1
        return book

    async def add_book(self, fields: dict, quantity: int = 1) -> dict:
        if quantity < 1:
            raise ConflictError("A book needs at least one copy")
        if await self.store.get_book_by_code(fields["code"]):
            raise ConflictError(f"A book with code '{fields['code']}' already exists")

        book = {
            **{key: fields.get(key) for key in DESCRIPTIVE_FIELDS},
            "id": await self.store.next_id("bookid"),
            "quantity": quantity,
            "available_quantity": quantity,
            "status": BookStatus.AVAILABLE.value,
            "borrow_count": 0,
            "view_count": 0,
        }
        book["is_ebook"] = bool(book["is_ebook"])
        await self.store.add_book(book)
        logger.info("Added book %s '%s' with %d copies", book["id"], book["title"], quantity)
        return book

    async def list_books(self, search: Optional[str] = None, genre: Optional[str] = None,
                         author: Optional[str] = None, publisher: Optional[str] = None,
                         year: Optional[int] = None, min_rating: Optional[float] = None,
                         page: int = 1, page_size: int = 20) -> dict:
        page = max(page, 1)
        page_size = max(page_size, 1)

        # Rating stats are attached before filtering so min_rating can use them
        ratings = {}
        for review in await self.store.list_reviews():
            ratings.setdefault(review["book_id"], []).append(review["rating"])
        books = await self.store.list_books()
        for book in books:
            scores = ratings.get(book["id"], [])
            book["review_count"] = len(scores)
            book["average_rating"] = round(sum(scores) / len(scores), 2) if scores else 0.0

        books = [b for b in books if _matches(b, search, genre, author, publisher, year, min_rating)]
        start = (page - 1) * page_size
        return {
            "items": books[start:start + page_size],
            "total": len(books),
            "page": page,
            "page_size": page_size,
            "total_pages": math.ceil(len(books) / page_size),
        }

    async def update_book(self, book_id: int, fields: dict) -> dict:
        fields = {k: v for k, v in fields.items() if k in DESCRIPTIVE_FIELDS and v is not None}
        book = await self.get_book(book_id)
        if "code" in fields and fields["code"] != book["code"]:
            if await self.store.get_book_by_code(fields["code"]):
                raise ConflictError(f"A book with code '{fields['code']}' already exists")
        if not fields:
            return book
        return await self.store.update_book(book_id, fields)

    async def add_copies(self, book_id: int, count: int) -> dict:
        if count < 1:
            raise ConflictError("Number of copies must be positive")
        await self.get_book(book_id)
        book = await self.store.change_copies(book_id, count)
        logger.info("Added %d copies to book %s", count, book_id)
        return book

    async def remove_copies(self, book_id: int, count: int) -> dict:
        if count < 1:
            raise ConflictError("Number of copies must be positive")
        await self.get_book(book_id)
        book = await self.store.change_copies(book_id, -count)
        if book is None:
            raise ConflictError("Only available copies can be removed and at least one copy must remain")
        logger.info("Removed %d copies from book %s", count, book_id)
        return book

    async def delete_book(self, book_id: int) -> None:
        book = await self.get_book(book_id)
        if book["available_quantity"] < book["quantity"]:
            raise ConflictError("Cannot delete a book while copies are borrowed")
        await self.store.delete_book(book_id)
        logger.info("Deleted book %s", book_id)

import logging
from typing import Callable, Optional

from errors import AuthorizationError, ConflictError, NotFoundError
from stores import LibraryStore
from utils.clock import utcnow

logger = logging.getLogger(__name__)


class ReviewService:

    def __init__(self, store: LibraryStore, clock: Callable = utcnow):
        self.store = store
        self.clock = clock

    async def add_review(self, book_id: int, user_id: str, rating: int, comment: Optional[str] = None) -> dict:
        if not 1 <= rating <= 5:
            raise ConflictError("Rating must be between 1 and 5")
        if not await self.store.get_book_by_id(book_id):
            raise NotFoundError("Book not found")
        review = {
            "id": await self.store.next_id("reviewid"),
            "book_id": book_id,
            "user_id": user_id,
            "rating": rating,
            "comment": comment,
            "created_at": self.clock(),
        }
        await self.store.add_review(review)
        logger.info("User %s reviewed book %s (%d/5)", user_id, book_id, rating)
        return review

    async def list_for_book(self, book_id: int) -> list:
        return await self.store.list_reviews(book_id=book_id)

    async def list_for_user(self, user_id: str) -> list:
        return await self.store.list_reviews(user_id=user_id)

    async def average_rating(self, book_id: int) -> dict:
        reviews = await self.store.list_reviews(book_id=book_id)
        average = sum(r["rating"] for r in reviews) / len(reviews) if reviews else 0.0
        return {"book_id": book_id, "average_rating": round(average, 2), "review_count": len(reviews)}

    async def update_review(self, review_id: int, actor_id: Optional[str] = None, actor_is_admin: bool = False,
                            rating: Optional[int] = None, comment: Optional[str] = None) -> dict:
        review = await self.store.get_review(review_id)
        if not review:
            raise NotFoundError("Review not found")
        if actor_id is not None and not actor_is_admin and review["user_id"] != actor_id:
            raise AuthorizationError("Cannot edit someone else's review")
        if rating is not None and not 1 <= rating <= 5:
            raise ConflictError("Rating must be between 1 and 5")

        fields = {"updated_at": self.clock()}
        if rating is not None:
            fields["rating"] = rating
        if comment is not None:
            fields["comment"] = comment
        return await self.store.update_review(review_id, fields)

    async def delete_review(self, review_id: int, actor_id: Optional[str] = None,
                            actor_is_admin: bool = False) -> None:
        review = await self.store.get_review(review_id)
        if not review:
            raise NotFoundError("Review not found")
        if actor_id is not None and not actor_is_admin and review["user_id"] != actor_id:
            raise AuthorizationError("Cannot delete someone else's review")
        await self.store.delete_review(review_id)

"""Borrowing lifecycle: borrow, return, cancel, overdue and delete.

Every transition pairs a status-guarded ledger update with a conditional stock
update on the book, so a record can only release its copy once and a book's
``available_quantity`` always stays within ``0..quantity``.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from errors import AuthorizationError, ConflictError, NotFoundError
from models import OPEN_STATUSES, BorrowingStatus
from services.notifications import NotificationService
from stores import LibraryStore
from utils.clock import utcnow

logger = logging.getLogger(__name__)

ACTIVE = BorrowingStatus.ACTIVE.value
OVERDUE = BorrowingStatus.OVERDUE.value
RETURNED = BorrowingStatus.RETURNED.value
CANCELLED = BorrowingStatus.CANCELLED.value


def _fmt(value: datetime) -> str:
    return value.strftime("%b %d, %Y")


class BorrowingService:

    def __init__(self, store: LibraryStore, notifications: NotificationService,
                 clock: Callable = utcnow, loan_days: int = 14):
        self.store = store
        self.notifications = notifications
        self.clock = clock
        self.loan_days = loan_days

    async def _get(self, borrowing_id: int) -> dict:
        borrowing = await self.store.get_borrowing_by_id(borrowing_id)
        if not borrowing:
            raise NotFoundError("Borrowing not found")
        return borrowing

    @staticmethod
    def _check_actor(borrowing: dict, actor_id: Optional[str], actor_is_admin: bool, action: str):
        if actor_id is None or actor_is_admin:
            return
        if borrowing["user_id"] != actor_id:
            raise AuthorizationError(f"Cannot {action} someone else's borrowing")

    async def _book_label(self, book_id: int) -> tuple:
        book = await self.store.get_book_by_id(book_id)
        if not book:
            return f"#{book_id}", "-"
        return book["title"], book["code"]

    async def _release(self, book_id: int) -> None:
        # Capped at quantity by the store; a miss means the book is gone or already full
        if await self.store.release_copy(book_id) is None:
            logger.warning("Could not release a copy of book %s", book_id)

    # ---------- Transitions ----------
    async def borrow(self, user_id: str, book_id: int, borrow_date: Optional[datetime] = None) -> dict:
        user = await self.store.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        if not user.get("is_active", True):
            raise ConflictError("Inactive accounts cannot borrow books")

        book = await self.store.get_book_by_id(book_id)
        if not book:
            raise NotFoundError("Book not found")

        # Check-and-decrement in one conditional update
        book = await self.store.reserve_copy(book_id)
        if book is None:
            raise ConflictError("No copies of this book are currently available")

        borrow_date = borrow_date or self.clock()
        if borrow_date.tzinfo is not None:
            borrow_date = borrow_date.astimezone(timezone.utc).replace(tzinfo=None)
        try:
            borrowing = {
                "id": await self.store.next_id("borrowid"),
                "user_id": user_id,
                "book_id": book_id,
                "borrow_date": borrow_date,
                "due_date": borrow_date + timedelta(days=self.loan_days),
                "return_date": None,
                "status": ACTIVE,
            }
            await self.store.add_borrowing(borrowing)
        except Exception:
            logger.exception("Recording borrowing of book %s failed, releasing the copy", book_id)
            await self.store.release_copy(book_id)
            await self.store.decrement_borrow_count(book_id)
            raise

        logger.info("User %s borrowed book %s (borrowing %s)", user_id, book_id, borrowing["id"])
        await self.notifications.notify(
            user_id,
            f"Successfully borrowed '{book['title']}' (Code: {book['code']}). "
            f"Due date: {_fmt(borrowing['due_date'])}"
        )
        return borrowing

    async def return_book(self, borrowing_id: int, actor_id: Optional[str] = None,
                          actor_is_admin: bool = False) -> dict:
        borrowing = await self._get(borrowing_id)
        self._check_actor(borrowing, actor_id, actor_is_admin, "return")
        if borrowing["status"] not in OPEN_STATUSES:
            raise ConflictError(f"Borrowing is already {borrowing['status']}")

        now = self.clock()
        updated = await self.store.transition_borrowing(
            borrowing_id, OPEN_STATUSES, {"status": RETURNED, "return_date": now}
        )
        if updated is None:
            # Another request closed it between the read and the update
            raise ConflictError("Borrowing is no longer open")

        await self._release(updated["book_id"])

        title, code = await self._book_label(updated["book_id"])
        if now > updated["due_date"]:
            message = (f"Returned '{title}' (Code: {code}) late. "
                       f"It was due on {_fmt(updated['due_date'])}.")
        else:
            message = f"Successfully returned '{title}' (Code: {code}). Thank you!"
        await self.notifications.notify(updated["user_id"], message)
        logger.info("Borrowing %s returned", borrowing_id)
        return updated

    async def try_mark_overdue(self, borrowing: dict, notify: bool = False) -> Optional[dict]:
        """Move an active, past-due record to overdue.

        Returns the updated record only when this call made the transition,
        None when the record was not active and past due by the time of the update.
        """
        now = self.clock()
        if borrowing["status"] != ACTIVE or not borrowing["due_date"] < now:
            return None
        updated = await self.store.transition_borrowing(borrowing["id"], [ACTIVE], {"status": OVERDUE})
        if updated is None:
            return None

        logger.info("Borrowing %s is overdue", borrowing["id"])
        if notify:
            title, code = await self._book_label(updated["book_id"])
            await self.notifications.notify(
                updated["user_id"],
                f"'{title}' (Code: {code}) is overdue. It was due on {_fmt(updated['due_date'])}. "
                "Please return it as soon as possible."
            )
        return updated

    async def mark_as_overdue(self, borrowing_id: int, notify: bool = False) -> dict:
        borrowing = await self._get(borrowing_id)
        if borrowing["status"] == OVERDUE:
            return borrowing
        if borrowing["status"] != ACTIVE:
            raise ConflictError(f"Cannot mark a {borrowing['status']} borrowing as overdue")
        if not borrowing["due_date"] < self.clock():
            raise ConflictError("Borrowing is not yet due")

        updated = await self.try_mark_overdue(borrowing, notify=notify)
        if updated is None:
            current = await self._get(borrowing_id)
            if current["status"] == OVERDUE:
                return current
            raise ConflictError(f"Cannot mark a {current['status']} borrowing as overdue")
        return updated

    async def cancel_reservation(self, borrowing_id: int, actor_id: Optional[str] = None,
                                 actor_is_admin: bool = False) -> dict:
        borrowing = await self._get(borrowing_id)
        self._check_actor(borrowing, actor_id, actor_is_admin, "cancel")

        now = self.clock()
        if borrowing["borrow_date"].date() < now.date():
            raise ConflictError("Cannot cancel after the borrow date has passed")
        if borrowing["status"] != ACTIVE:
            raise ConflictError(f"Cannot cancel a {borrowing['status']} borrowing")

        updated = await self.store.transition_borrowing(
            borrowing_id, [ACTIVE], {"status": CANCELLED, "return_date": now}
        )
        if updated is None:
            raise ConflictError("Borrowing is no longer active")

        await self._release(updated["book_id"])
        await self.store.decrement_borrow_count(updated["book_id"])

        title, code = await self._book_label(updated["book_id"])
        await self.notifications.notify(
            updated["user_id"], f"Cancelled your reservation of '{title}' (Code: {code})."
        )
        logger.info("Borrowing %s cancelled", borrowing_id)
        return updated

    async def delete_borrowing(self, borrowing_id: int) -> None:
        borrowing = await self._get(borrowing_id)
        if borrowing["status"] in OPEN_STATUSES:
            # Close the record first so a concurrent return cannot release the same copy
            closed = await self.store.transition_borrowing(
                borrowing_id, OPEN_STATUSES, {"status": RETURNED, "return_date": self.clock()}
            )
            if closed is not None:
                await self._release(borrowing["book_id"])
        await self.store.delete_borrowing(borrowing_id)
        logger.info("Borrowing %s deleted", borrowing_id)

    # ---------- Queries ----------
    async def get_borrowing(self, borrowing_id: int, actor_id: Optional[str] = None,
                            actor_is_admin: bool = False) -> dict:
        borrowing = await self._get(borrowing_id)
        self._check_actor(borrowing, actor_id, actor_is_admin, "view")
        return borrowing

    async def list_borrowings(self, user_id: Optional[str] = None, book_id: Optional[int] = None) -> list:
        return await self.store.list_borrowings(user_id=user_id, book_id=book_id)

    async def list_active(self, user_id: Optional[str] = None) -> list:
        return await self.store.list_borrowings(user_id=user_id, statuses=OPEN_STATUSES)

    async def list_overdue(self) -> list:
        return await self.store.list_borrowings(statuses=OPEN_STATUSES, due_before=self.clock())

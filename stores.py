"""Persistence collaborators for the library.

``LibraryStore`` is the interface the services depend on. ``MongoStore`` backs
it with Motor; ``MemoryStore`` keeps everything in process and is used for
local development (``STORAGE_BACKEND=memory``) and the test-suite.

Documents are plain dicts shaped like the Mongo records, without ``_id``.
Stock changes go through ``reserve_copy``/``release_copy``/``change_copies``,
each a single conditional update, and ledger changes go through
``transition_borrowing``, guarded by the expected current status.
"""

import copy
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Optional

from pymongo import ReturnDocument

from models import BookStatus

NO_ID = {"_id": 0}


class LibraryStore(ABC):

    # ---------- Counters ----------
    @abstractmethod
    async def next_id(self, name: str) -> int:
        """Return the next value of the named auto-increment sequence."""

    # ---------- Books ----------
    @abstractmethod
    async def add_book(self, book: dict) -> dict: ...

    @abstractmethod
    async def get_book_by_id(self, book_id: int) -> Optional[dict]: ...

    @abstractmethod
    async def get_book_by_code(self, code: str) -> Optional[dict]: ...

    @abstractmethod
    async def list_books(self) -> list: ...

    @abstractmethod
    async def update_book(self, book_id: int, fields: dict) -> Optional[dict]: ...

    @abstractmethod
    async def delete_book(self, book_id: int) -> bool: ...

    @abstractmethod
    async def reserve_copy(self, book_id: int) -> Optional[dict]:
        """Take one copy if any is available; None when out of stock or missing."""

    @abstractmethod
    async def release_copy(self, book_id: int) -> Optional[dict]:
        """Put one copy back, never beyond ``quantity``; None when already full or missing."""

    @abstractmethod
    async def change_copies(self, book_id: int, delta: int) -> Optional[dict]:
        """Add (delta > 0) or remove (delta < 0) owned copies; removal only from available stock."""

    @abstractmethod
    async def decrement_borrow_count(self, book_id: int) -> None: ...

    @abstractmethod
    async def increment_view_count(self, book_id: int) -> None: ...

    # ---------- Users ----------
    @abstractmethod
    async def add_user(self, user: dict) -> dict: ...

    @abstractmethod
    async def get_user_by_id(self, user_id: str) -> Optional[dict]: ...

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[dict]: ...

    @abstractmethod
    async def list_users(self) -> list: ...

    @abstractmethod
    async def update_user(self, user_id: str, fields: dict) -> Optional[dict]: ...

    @abstractmethod
    async def delete_user(self, user_id: str) -> bool: ...

    @abstractmethod
    async def get_user_by_reset_token(self, token: str, now: datetime) -> Optional[dict]:
        """User holding ``token`` whose expiry is still after ``now``."""

    @abstractmethod
    async def consume_reset_token(self, token: str, now: datetime, fields: dict) -> Optional[dict]:
        """Apply ``fields`` and clear the token in one step, if the token is still valid."""

    async def user_exists(self, user_id: str) -> bool:
        return await self.get_user_by_id(user_id) is not None

    async def email_exists(self, email: str) -> bool:
        return await self.get_user_by_email(email) is not None

    # ---------- Borrowings ----------
    @abstractmethod
    async def add_borrowing(self, borrowing: dict) -> dict: ...

    @abstractmethod
    async def get_borrowing_by_id(self, borrowing_id: int) -> Optional[dict]: ...

    @abstractmethod
    async def list_borrowings(self, user_id: Optional[str] = None, book_id: Optional[int] = None,
                              statuses: Optional[Iterable[str]] = None,
                              due_before: Optional[datetime] = None) -> list: ...

    @abstractmethod
    async def transition_borrowing(self, borrowing_id: int, from_statuses: Iterable[str],
                                   fields: dict) -> Optional[dict]:
        """Update a borrowing only while its status is one of ``from_statuses``."""

    @abstractmethod
    async def delete_borrowing(self, borrowing_id: int) -> bool: ...

    async def get_active_borrowings(self) -> list:
        return await self.list_borrowings(statuses=["active"])

    # ---------- Notifications ----------
    @abstractmethod
    async def add_notification(self, notification: dict) -> dict: ...

    @abstractmethod
    async def get_notification(self, notification_id: int) -> Optional[dict]: ...

    @abstractmethod
    async def list_notifications(self, user_id: Optional[str] = None, unread_only: bool = False) -> list: ...

    @abstractmethod
    async def mark_notification_read(self, notification_id: int) -> Optional[dict]: ...

    @abstractmethod
    async def mark_all_notifications_read(self, user_id: str) -> int: ...

    @abstractmethod
    async def delete_notification(self, notification_id: int) -> bool: ...

    # ---------- Reviews ----------
    @abstractmethod
    async def add_review(self, review: dict) -> dict: ...

    @abstractmethod
    async def get_review(self, review_id: int) -> Optional[dict]: ...

    @abstractmethod
    async def list_reviews(self, book_id: Optional[int] = None, user_id: Optional[str] = None) -> list: ...

    @abstractmethod
    async def update_review(self, review_id: int, fields: dict) -> Optional[dict]: ...

    @abstractmethod
    async def delete_review(self, review_id: int) -> bool: ...

    async def close(self) -> None:
        pass


# Aggregation expression recomputing the derived book status
_STATUS_EXPR = {
    "$cond": [
        {"$gt": ["$available_quantity", 0]},
        BookStatus.AVAILABLE.value,
        BookStatus.BORROWED.value,
    ]
}


class MongoStore(LibraryStore):

    def __init__(self, db, client=None):
        self.db = db
        self.client = client

    async def _find_all(self, collection, query: dict, sort) -> list:
        return [doc async for doc in collection.find(query, NO_ID).sort(sort)]

    # --- Auto Increment Function ---
    async def next_id(self, name: str) -> int:
        counter = await self.db.counters.find_one_and_update(
            {"_id": name},
            {"$inc": {"sequence_value": 1}},
            return_document=ReturnDocument.AFTER,
            upsert=True
        )
        return counter["sequence_value"]

    # ---------- Books ----------
    async def add_book(self, book: dict) -> dict:
        await self.db.books.insert_one(dict(book))
        return book

    async def get_book_by_id(self, book_id: int) -> Optional[dict]:
        return await self.db.books.find_one({"id": book_id}, NO_ID)

    async def get_book_by_code(self, code: str) -> Optional[dict]:
        return await self.db.books.find_one({"code": code}, NO_ID)

    async def list_books(self) -> list:
        return await self._find_all(self.db.books, {}, [("id", 1)])

    async def update_book(self, book_id: int, fields: dict) -> Optional[dict]:
        return await self.db.books.find_one_and_update(
            {"id": book_id},
            {"$set": fields},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER
        )

    async def delete_book(self, book_id: int) -> bool:
        result = await self.db.books.delete_one({"id": book_id})
        return result.deleted_count > 0

    async def reserve_copy(self, book_id: int) -> Optional[dict]:
        return await self.db.books.find_one_and_update(
            {"id": book_id, "available_quantity": {"$gt": 0}},
            [
                {"$set": {
                    "available_quantity": {"$subtract": ["$available_quantity", 1]},
                    "borrow_count": {"$add": [{"$ifNull": ["$borrow_count", 0]}, 1]},
                }},
                {"$set": {"status": _STATUS_EXPR}},
            ],
            projection=NO_ID,
            return_document=ReturnDocument.AFTER
        )

    async def release_copy(self, book_id: int) -> Optional[dict]:
        return await self.db.books.find_one_and_update(
            {"id": book_id, "$expr": {"$lt": ["$available_quantity", "$quantity"]}},
            [
                {"$set": {"available_quantity": {"$add": ["$available_quantity", 1]}}},
                {"$set": {"status": _STATUS_EXPR}},
            ],
            projection=NO_ID,
            return_document=ReturnDocument.AFTER
        )

    async def change_copies(self, book_id: int, delta: int) -> Optional[dict]:
        query = {"id": book_id}
        if delta < 0:
            # Only copies on the shelf can go, and at least one copy must remain
            query["available_quantity"] = {"$gte": -delta}
            query["quantity"] = {"$gte": 1 - delta}
        return await self.db.books.find_one_and_update(
            query,
            [
                {"$set": {
                    "quantity": {"$add": ["$quantity", delta]},
                    "available_quantity": {"$add": ["$available_quantity", delta]},
                }},
                {"$set": {"status": _STATUS_EXPR}},
            ],
            projection=NO_ID,
            return_document=ReturnDocument.AFTER
        )

    async def decrement_borrow_count(self, book_id: int) -> None:
        await self.db.books.update_one(
            {"id": book_id},
            [{"$set": {"borrow_count": {
                "$max": [0, {"$subtract": [{"$ifNull": ["$borrow_count", 0]}, 1]}]
            }}}]
        )

    async def increment_view_count(self, book_id: int) -> None:
        await self.db.books.update_one({"id": book_id}, {"$inc": {"view_count": 1}})

    # ---------- Users ----------
    async def add_user(self, user: dict) -> dict:
        await self.db.users.insert_one(dict(user))
        return user

    async def get_user_by_id(self, user_id: str) -> Optional[dict]:
        return await self.db.users.find_one({"user_id": user_id}, NO_ID)

    async def get_user_by_email(self, email: str) -> Optional[dict]:
        return await self.db.users.find_one({"email": email}, NO_ID)

    async def list_users(self) -> list:
        return await self._find_all(self.db.users, {}, [("user_id", 1)])

    async def update_user(self, user_id: str, fields: dict) -> Optional[dict]:
        return await self.db.users.find_one_and_update(
            {"user_id": user_id},
            {"$set": fields},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER
        )

    async def delete_user(self, user_id: str) -> bool:
        result = await self.db.users.delete_one({"user_id": user_id})
        return result.deleted_count > 0

    async def get_user_by_reset_token(self, token: str, now: datetime) -> Optional[dict]:
        return await self.db.users.find_one(
            {"reset_token": token, "reset_token_expiry": {"$gt": now}}, NO_ID
        )

    async def consume_reset_token(self, token: str, now: datetime, fields: dict) -> Optional[dict]:
        return await self.db.users.find_one_and_update(
            {"reset_token": token, "reset_token_expiry": {"$gt": now}},
            {"$set": {**fields, "reset_token": None, "reset_token_expiry": None}},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER
        )

    # ---------- Borrowings ----------
    async def add_borrowing(self, borrowing: dict) -> dict:
        await self.db.borrow_records.insert_one(dict(borrowing))
        return borrowing

    async def get_borrowing_by_id(self, borrowing_id: int) -> Optional[dict]:
        return await self.db.borrow_records.find_one({"id": borrowing_id}, NO_ID)

    async def list_borrowings(self, user_id=None, book_id=None, statuses=None, due_before=None) -> list:
        query = {}
        if user_id is not None:
            query["user_id"] = user_id
        if book_id is not None:
            query["book_id"] = book_id
        if statuses is not None:
            query["status"] = {"$in": list(statuses)}
        if due_before is not None:
            query["due_date"] = {"$lt": due_before}
        return await self._find_all(self.db.borrow_records, query, [("borrow_date", -1), ("id", -1)])

    async def transition_borrowing(self, borrowing_id: int, from_statuses, fields: dict) -> Optional[dict]:
        return await self.db.borrow_records.find_one_and_update(
            {"id": borrowing_id, "status": {"$in": list(from_statuses)}},
            {"$set": fields},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER
        )

    async def delete_borrowing(self, borrowing_id: int) -> bool:
        result = await self.db.borrow_records.delete_one({"id": borrowing_id})
        return result.deleted_count > 0

    # ---------- Notifications ----------
    async def add_notification(self, notification: dict) -> dict:
        await self.db.notifications.insert_one(dict(notification))
        return notification

    async def get_notification(self, notification_id: int) -> Optional[dict]:
        return await self.db.notifications.find_one({"id": notification_id}, NO_ID)

    async def list_notifications(self, user_id=None, unread_only=False) -> list:
        query = {}
        if user_id is not None:
            query["user_id"] = user_id
        if unread_only:
            query["is_read"] = False
        return await self._find_all(self.db.notifications, query, [("timestamp", -1), ("id", -1)])

    async def mark_notification_read(self, notification_id: int) -> Optional[dict]:
        return await self.db.notifications.find_one_and_update(
            {"id": notification_id},
            {"$set": {"is_read": True}},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER
        )

    async def mark_all_notifications_read(self, user_id: str) -> int:
        result = await self.db.notifications.update_many(
            {"user_id": user_id, "is_read": False}, {"$set": {"is_read": True}}
        )
        return result.modified_count

    async def delete_notification(self, notification_id: int) -> bool:
        result = await self.db.notifications.delete_one({"id": notification_id})
        return result.deleted_count > 0

    # ---------- Reviews ----------
    async def add_review(self, review: dict) -> dict:
        await self.db.reviews.insert_one(dict(review))
        return review

    async def get_review(self, review_id: int) -> Optional[dict]:
        return await self.db.reviews.find_one({"id": review_id}, NO_ID)

    async def list_reviews(self, book_id=None, user_id=None) -> list:
        query = {}
        if book_id is not None:
            query["book_id"] = book_id
        if user_id is not None:
            query["user_id"] = user_id
        return await self._find_all(self.db.reviews, query, [("created_at", -1), ("id", -1)])

    async def update_review(self, review_id: int, fields: dict) -> Optional[dict]:
        return await self.db.reviews.find_one_and_update(
            {"id": review_id},
            {"$set": fields},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER
        )

    async def delete_review(self, review_id: int) -> bool:
        result = await self.db.reviews.delete_one({"id": review_id})
        return result.deleted_count > 0

    async def close(self) -> None:
        if self.client is not None:
            self.client.close()


class MemoryStore(LibraryStore):
    """In-process store.

    No method awaits between reading and writing its state, so every call is
    atomic with respect to other coroutines on the same event loop. Returned
    documents are copies; callers cannot mutate stored state by accident.
    """

    def __init__(self):
        self._counters = {}
        self._books = {}
        self._users = {}
        self._borrowings = {}
        self._notifications = {}
        self._reviews = {}

    @staticmethod
    def _out(doc):
        return copy.deepcopy(doc) if doc is not None else None

    @staticmethod
    def _recompute_status(book: dict) -> None:
        book["status"] = (BookStatus.AVAILABLE.value if book["available_quantity"] > 0
                          else BookStatus.BORROWED.value)

    async def next_id(self, name: str) -> int:
        self._counters[name] = self._counters.get(name, 0) + 1
        return self._counters[name]

    # ---------- Books ----------
    async def add_book(self, book: dict) -> dict:
        self._books[book["id"]] = copy.deepcopy(book)
        return self._out(book)

    async def get_book_by_id(self, book_id: int) -> Optional[dict]:
        return self._out(self._books.get(book_id))

    async def get_book_by_code(self, code: str) -> Optional[dict]:
        for book in self._books.values():
            if book.get("code") == code:
                return self._out(book)
        return None

    async def list_books(self) -> list:
        return [self._out(self._books[key]) for key in sorted(self._books)]

    async def update_book(self, book_id: int, fields: dict) -> Optional[dict]:
        book = self._books.get(book_id)
        if book is None:
            return None
        book.update(copy.deepcopy(fields))
        return self._out(book)

    async def delete_book(self, book_id: int) -> bool:
        return self._books.pop(book_id, None) is not None

    async def reserve_copy(self, book_id: int) -> Optional[dict]:
        book = self._books.get(book_id)
        if book is None or book["available_quantity"] <= 0:
            return None
        book["available_quantity"] -= 1
        book["borrow_count"] = book.get("borrow_count", 0) + 1
        self._recompute_status(book)
        return self._out(book)

    async def release_copy(self, book_id: int) -> Optional[dict]:
        book = self._books.get(book_id)
        if book is None or book["available_quantity"] >= book["quantity"]:
            return None
        book["available_quantity"] += 1
        self._recompute_status(book)
        return self._out(book)

    async def change_copies(self, book_id: int, delta: int) -> Optional[dict]:
        book = self._books.get(book_id)
        if book is None:
            return None
        if delta < 0 and (book["available_quantity"] < -delta or book["quantity"] < 1 - delta):
            return None
        book["quantity"] += delta
        book["available_quantity"] += delta
        self._recompute_status(book)
        return self._out(book)

    async def decrement_borrow_count(self, book_id: int) -> None:
        book = self._books.get(book_id)
        if book is not None:
            book["borrow_count"] = max(0, book.get("borrow_count", 0) - 1)

    async def increment_view_count(self, book_id: int) -> None:
        book = self._books.get(book_id)
        if book is not None:
            book["view_count"] = book.get("view_count", 0) + 1

    # ---------- Users ----------
    async def add_user(self, user: dict) -> dict:
        self._users[user["user_id"]] = copy.deepcopy(user)
        return self._out(user)

    async def get_user_by_id(self, user_id: str) -> Optional[dict]:
        return self._out(self._users.get(user_id))

    async def get_user_by_email(self, email: str) -> Optional[dict]:
        for user in self._users.values():
            if user.get("email") == email:
                return self._out(user)
        return None

    async def list_users(self) -> list:
        return [self._out(self._users[key]) for key in sorted(self._users)]

    async def update_user(self, user_id: str, fields: dict) -> Optional[dict]:
        user = self._users.get(user_id)
        if user is None:
            return None
        user.update(copy.deepcopy(fields))
        return self._out(user)

    async def delete_user(self, user_id: str) -> bool:
        return self._users.pop(user_id, None) is not None

    def _token_holder(self, token: str, now: datetime) -> Optional[dict]:
        for user in self._users.values():
            expiry = user.get("reset_token_expiry")
            if user.get("reset_token") == token and expiry is not None and expiry > now:
                return user
        return None

    async def get_user_by_reset_token(self, token: str, now: datetime) -> Optional[dict]:
        return self._out(self._token_holder(token, now))

    async def consume_reset_token(self, token: str, now: datetime, fields: dict) -> Optional[dict]:
        user = self._token_holder(token, now)
        if user is None:
            return None
        user.update(copy.deepcopy(fields))
        user["reset_token"] = None
        user["reset_token_expiry"] = None
        return self._out(user)

    # ---------- Borrowings ----------
    async def add_borrowing(self, borrowing: dict) -> dict:
        self._borrowings[borrowing["id"]] = copy.deepcopy(borrowing)
        return self._out(borrowing)

    async def get_borrowing_by_id(self, borrowing_id: int) -> Optional[dict]:
        return self._out(self._borrowings.get(borrowing_id))

    async def list_borrowings(self, user_id=None, book_id=None, statuses=None, due_before=None) -> list:
        statuses = set(statuses) if statuses is not None else None
        found = [
            b for b in self._borrowings.values()
            if (user_id is None or b["user_id"] == user_id)
            and (book_id is None or b["book_id"] == book_id)
            and (statuses is None or b["status"] in statuses)
            and (due_before is None or b["due_date"] < due_before)
        ]
        found.sort(key=lambda b: (b["borrow_date"], b["id"]), reverse=True)
        return [self._out(b) for b in found]

    async def transition_borrowing(self, borrowing_id: int, from_statuses, fields: dict) -> Optional[dict]:
        borrowing = self._borrowings.get(borrowing_id)
        if borrowing is None or borrowing["status"] not in set(from_statuses):
            return None
        borrowing.update(copy.deepcopy(fields))
        return self._out(borrowing)

    async def delete_borrowing(self, borrowing_id: int) -> bool:
        return self._borrowings.pop(borrowing_id, None) is not None

    # ---------- Notifications ----------
    async def add_notification(self, notification: dict) -> dict:
        self._notifications[notification["id"]] = copy.deepcopy(notification)
        return self._out(notification)

    async def get_notification(self, notification_id: int) -> Optional[dict]:
        return self._out(self._notifications.get(notification_id))

    async def list_notifications(self, user_id=None, unread_only=False) -> list:
        found = [
            n for n in self._notifications.values()
            if (user_id is None or n["user_id"] == user_id)
            and (not unread_only or not n["is_read"])
        ]
        found.sort(key=lambda n: (n["timestamp"], n["id"]), reverse=True)
        return [self._out(n) for n in found]

    async def mark_notification_read(self, notification_id: int) -> Optional[dict]:
        notification = self._notifications.get(notification_id)
        if notification is None:
            return None
        notification["is_read"] = True
        return self._out(notification)

    async def mark_all_notifications_read(self, user_id: str) -> int:
        count = 0
        for notification in self._notifications.values():
            if notification["user_id"] == user_id and not notification["is_read"]:
                notification["is_read"] = True
                count += 1
        return count

    async def delete_notification(self, notification_id: int) -> bool:
        return self._notifications.pop(notification_id, None) is not None

    # ---------- Reviews ----------
    async def add_review(self, review: dict) -> dict:
        self._reviews[review["id"]] = copy.deepcopy(review)
        return self._out(review)

    async def get_review(self, review_id: int) -> Optional[dict]:
        return self._out(self._reviews.get(review_id))

    async def list_reviews(self, book_id=None, user_id=None) -> list:
        found = [
            r for r in self._reviews.values()
            if (book_id is None or r["book_id"] == book_id)
            and (user_id is None or r["user_id"] == user_id)
        ]
        found.sort(key=lambda r: (r["created_at"], r["id"]), reverse=True)
        return [self._out(r) for r in found]

    async def update_review(self, review_id: int, fields: dict) -> Optional[dict]:
        review = self._reviews.get(review_id)
        if review is None:
            return None
        review.update(copy.deepcopy(fields))
        return self._out(review)

    async def delete_review(self, review_id: int) -> bool:
        return self._reviews.pop(review_id, None) is not None

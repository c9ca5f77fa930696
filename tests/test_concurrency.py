import asyncio

import pytest

from errors import ConflictError, NotFoundError
from stores import MemoryStore
from conftest import Library

pytestmark = pytest.mark.anyio


class InterleavingStore(MemoryStore):
    """MemoryStore that yields to the event loop before each read and each guarded write.

    Concurrent service calls then really interleave between their read and
    their conditional update, the way they do against MongoDB.
    """

    async def get_user_by_id(self, user_id):
        await asyncio.sleep(0)
        return await super().get_user_by_id(user_id)

    async def get_book_by_id(self, book_id):
        await asyncio.sleep(0)
        return await super().get_book_by_id(book_id)

    async def get_borrowing_by_id(self, borrowing_id):
        await asyncio.sleep(0)
        return await super().get_borrowing_by_id(borrowing_id)

    async def reserve_copy(self, book_id):
        await asyncio.sleep(0)
        return await super().reserve_copy(book_id)

    async def release_copy(self, book_id):
        await asyncio.sleep(0)
        return await super().release_copy(book_id)

    async def transition_borrowing(self, borrowing_id, from_statuses, fields):
        await asyncio.sleep(0)
        return await super().transition_borrowing(borrowing_id, from_statuses, fields)


@pytest.fixture
def racy_lib(clock):
    return Library(clock, store=InterleavingStore())


@pytest.fixture(params=["memory", "interleaving"])
def any_lib(request, lib, racy_lib):
    return lib if request.param == "memory" else racy_lib


async def test_last_copy_goes_to_exactly_one_borrower(any_lib):
    for user_id in ("u1", "u2", "u3"):
        await any_lib.member(user_id)
    book = await any_lib.book(quantity=1)

    results = await asyncio.gather(
        *[any_lib.borrowing.borrow(user_id, book["id"]) for user_id in ("u1", "u2", "u3")],
        return_exceptions=True
    )

    borrowed = [r for r in results if isinstance(r, dict)]
    refused = [r for r in results if isinstance(r, ConflictError)]
    assert len(borrowed) == 1
    assert len(refused) == 2
    assert await any_lib.stock(book["id"]) == (0, "borrowed")
    assert len(await any_lib.borrowing.list_active()) == 1
    assert (await any_lib.store.get_book_by_id(book["id"]))["borrow_count"] == 1


async def test_copies_never_exceed_quantity_under_parallel_borrows(any_lib):
    users = [f"u{n}" for n in range(6)]
    for user_id in users:
        await any_lib.member(user_id)
    book = await any_lib.book(quantity=4)

    results = await asyncio.gather(
        *[any_lib.borrowing.borrow(user_id, book["id"]) for user_id in users],
        return_exceptions=True
    )

    assert sum(isinstance(r, dict) for r in results) == 4
    assert sum(isinstance(r, ConflictError) for r in results) == 2
    assert await any_lib.stock(book["id"]) == (0, "borrowed")


async def test_simultaneous_returns_release_one_copy(any_lib):
    await any_lib.member("alice")
    book = await any_lib.book(quantity=1)
    borrowing = await any_lib.borrowing.borrow("alice", book["id"])

    results = await asyncio.gather(
        any_lib.borrowing.return_book(borrowing["id"]),
        any_lib.borrowing.return_book(borrowing["id"]),
        return_exceptions=True
    )

    assert sum(isinstance(r, dict) for r in results) == 1
    assert sum(isinstance(r, ConflictError) for r in results) == 1
    assert await any_lib.stock(book["id"]) == (1, "available")


async def test_return_racing_delete_releases_one_copy(any_lib):
    await any_lib.member("alice")
    book = await any_lib.book(quantity=1)
    borrowing = await any_lib.borrowing.borrow("alice", book["id"])

    results = await asyncio.gather(
        any_lib.borrowing.return_book(borrowing["id"]),
        any_lib.borrowing.delete_borrowing(borrowing["id"]),
        return_exceptions=True
    )

    # Whichever side loses may see the record closed or already gone
    for result in results:
        assert result is None or isinstance(result, (dict, ConflictError, NotFoundError))
    stored = await any_lib.store.get_book_by_id(book["id"])
    assert stored["available_quantity"] == stored["quantity"] == 1
    assert stored["status"] == "available"
    assert await any_lib.store.get_borrowing_by_id(borrowing["id"]) is None


async def test_cancel_racing_return_releases_one_copy(any_lib):
    await any_lib.member("alice")
    book = await any_lib.book(quantity=2)
    borrowing = await any_lib.borrowing.borrow("alice", book["id"])

    results = await asyncio.gather(
        any_lib.borrowing.cancel_reservation(borrowing["id"]),
        any_lib.borrowing.return_book(borrowing["id"]),
        return_exceptions=True
    )

    assert sum(isinstance(r, dict) for r in results) == 1
    assert sum(isinstance(r, ConflictError) for r in results) == 1
    assert await any_lib.stock(book["id"]) == (2, "available")

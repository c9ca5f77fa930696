import pytest

from migration import migrate_books
from stores import MemoryStore

pytestmark = pytest.mark.anyio


async def test_backfills_legacy_books(clock):
    store = MemoryStore()
    await store.add_book({"id": 1, "title": "Old and lent", "author": "A", "code": "L-1"})
    await store.add_book({"id": 2, "title": "Old and shelved", "author": "B", "code": "L-2"})
    await store.add_borrowing({"id": 1, "user_id": "alice", "book_id": 1, "borrow_date": clock.now,
                               "due_date": clock.now, "return_date": None, "status": "active"})
    await store.add_borrowing({"id": 2, "user_id": "bob", "book_id": 2, "borrow_date": clock.now,
                               "due_date": clock.now, "return_date": clock.now, "status": "returned"})

    assert await migrate_books(store) == 2

    lent = await store.get_book_by_id(1)
    shelved = await store.get_book_by_id(2)
    assert (lent["quantity"], lent["available_quantity"], lent["status"]) == (1, 0, "borrowed")
    assert (shelved["quantity"], shelved["available_quantity"], shelved["status"]) == (1, 1, "available")


async def test_second_run_changes_nothing(lib):
    await lib.book(quantity=3)

    assert await migrate_books(lib.store) == 0
    assert (await lib.store.get_book_by_id(1))["quantity"] == 3

import pytest

from errors import AuthorizationError, ConflictError, NotFoundError

pytestmark = pytest.mark.anyio


async def test_average_rating(lib):
    book = await lib.book()
    assert await lib.reviews.average_rating(book["id"]) == {
        "book_id": book["id"], "average_rating": 0.0, "review_count": 0
    }

    await lib.reviews.add_review(book["id"], "alice", 5, "Loved it")
    await lib.reviews.add_review(book["id"], "bob", 4)
    await lib.reviews.add_review(book["id"], "cat", 4)

    summary = await lib.reviews.average_rating(book["id"])
    assert summary["review_count"] == 3
    assert summary["average_rating"] == 4.33


async def test_review_validation(lib):
    book = await lib.book()
    with pytest.raises(NotFoundError):
        await lib.reviews.add_review(999, "alice", 3)
    with pytest.raises(ConflictError):
        await lib.reviews.add_review(book["id"], "alice", 6)
    with pytest.raises(ConflictError):
        await lib.reviews.add_review(book["id"], "alice", 0)


async def test_list_reviews(lib):
    first = await lib.book(code="R-1")
    second = await lib.book(code="R-2")
    await lib.reviews.add_review(first["id"], "alice", 3)
    await lib.reviews.add_review(second["id"], "alice", 2)
    await lib.reviews.add_review(first["id"], "bob", 5)

    assert len(await lib.reviews.list_for_book(first["id"])) == 2
    assert {r["book_id"] for r in await lib.reviews.list_for_user("alice")} == {first["id"], second["id"]}


async def test_delete_review_by_author_or_admin(lib):
    book = await lib.book()
    mine = await lib.reviews.add_review(book["id"], "alice", 3)
    other = await lib.reviews.add_review(book["id"], "bob", 1)

    with pytest.raises(AuthorizationError):
        await lib.reviews.delete_review(other["id"], actor_id="alice")

    await lib.reviews.delete_review(mine["id"], actor_id="alice")
    await lib.reviews.delete_review(other["id"], actor_id="alice", actor_is_admin=True)

    assert await lib.reviews.list_for_book(book["id"]) == []
    with pytest.raises(NotFoundError):
        await lib.reviews.delete_review(mine["id"])


async def test_edit_review(lib, clock):
    book = await lib.book()
    review = await lib.reviews.add_review(book["id"], "alice", 2, "Slow start")
    clock.advance(days=1)

    edited = await lib.reviews.update_review(review["id"], actor_id="alice", rating=4)

    assert edited["rating"] == 4
    assert edited["comment"] == "Slow start"
    assert edited["updated_at"] == clock.now
    assert (await lib.reviews.average_rating(book["id"]))["average_rating"] == 4.0

    with pytest.raises(AuthorizationError):
        await lib.reviews.update_review(review["id"], actor_id="bob", comment="Mine now")
    with pytest.raises(ConflictError):
        await lib.reviews.update_review(review["id"], actor_id="alice", rating=7)
    with pytest.raises(NotFoundError):
        await lib.reviews.update_review(999, actor_id="alice", rating=3)

    moderated = await lib.reviews.update_review(review["id"], actor_id="bob", actor_is_admin=True,
                                                comment="[edited]")
    assert moderated["comment"] == "[edited]"

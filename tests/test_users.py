import pytest

from errors import AuthorizationError, ConflictError, NotFoundError

pytestmark = pytest.mark.anyio


async def test_register_creates_active_member(lib, clock):
    user = await lib.member("alice")

    assert user["role"] == "member"
    assert user["is_active"] is True
    assert user["created_at"] == clock.now
    assert user["password"] != "secret123"


async def test_register_rejects_duplicates(lib):
    await lib.member("alice")

    with pytest.raises(ConflictError, match="User ID"):
        await lib.users.register("alice", "Other", "other@example.com", "secret123")
    with pytest.raises(ConflictError, match="Email"):
        await lib.users.register("alice2", "Other", "alice@example.com", "secret123")


async def test_authenticate_by_user_id_or_email(lib):
    await lib.member("alice", password="pa55word")

    assert (await lib.users.authenticate("alice", "pa55word"))["user_id"] == "alice"
    assert (await lib.users.authenticate("alice@example.com", "pa55word"))["user_id"] == "alice"
    assert await lib.users.authenticate("alice", "wrong") is None
    assert await lib.users.authenticate("nobody", "pa55word") is None


async def test_inactive_user_cannot_log_in(lib):
    await lib.member("alice")
    await lib.users.deactivate("alice")

    with pytest.raises(AuthorizationError):
        await lib.users.authenticate("alice", "secret123")


async def test_activation_transitions(lib):
    await lib.member("alice")

    with pytest.raises(ConflictError):
        await lib.users.activate("alice")
    assert (await lib.users.deactivate("alice"))["is_active"] is False
    with pytest.raises(ConflictError):
        await lib.users.deactivate("alice")
    assert (await lib.users.toggle_activation("alice"))["is_active"] is True
    assert (await lib.users.toggle_activation("alice"))["is_active"] is False
    with pytest.raises(NotFoundError):
        await lib.users.activate("ghost")


async def test_role_changes(lib):
    await lib.member("alice")
    await lib.admin("boss")

    assert (await lib.users.grant_admin("alice", actor_id="boss"))["role"] == "admin"
    with pytest.raises(ConflictError):
        await lib.users.grant_admin("alice", actor_id="boss")
    assert (await lib.users.revoke_admin("alice", actor_id="boss"))["role"] == "member"
    with pytest.raises(ConflictError):
        await lib.users.revoke_admin("alice", actor_id="boss")
    with pytest.raises(ConflictError, match="own role"):
        await lib.users.revoke_admin("boss", actor_id="boss")


async def test_update_profile(lib, clock):
    await lib.member("alice")
    await lib.member("bob")
    clock.advance(minutes=5)

    updated = await lib.users.update_profile("alice", "Alice Liddell", "liddell@example.com")
    assert updated["name"] == "Alice Liddell"
    assert updated["email"] == "liddell@example.com"
    assert updated["updated_at"] == clock.now

    with pytest.raises(ConflictError):
        await lib.users.update_profile("alice", "Alice", "bob@example.com")
    # Keeping one's own email is fine
    await lib.users.update_profile("alice", "Alice", "liddell@example.com")


async def test_change_password(lib):
    await lib.member("alice", password="first-pass")

    with pytest.raises(ConflictError):
        await lib.users.change_password("alice", "wrong-pass", "second-pass")
    await lib.users.change_password("alice", "first-pass", "second-pass")

    assert await lib.users.authenticate("alice", "second-pass") is not None


async def test_delete_user(lib):
    await lib.member("alice")
    await lib.member("bob")
    book = await lib.book()
    borrowing = await lib.borrowing.borrow("alice", book["id"])

    with pytest.raises(ConflictError, match="active borrows"):
        await lib.users.delete_user("alice", actor_id="bob")
    with pytest.raises(ConflictError):
        await lib.users.delete_user("bob", actor_id="bob")

    await lib.borrowing.return_book(borrowing["id"])
    await lib.users.delete_user("alice", actor_id="bob")
    with pytest.raises(NotFoundError):
        await lib.users.get_user("alice")


async def test_ensure_admin_is_idempotent(lib):
    first = await lib.users.ensure_admin("admin", "admin@example.com", "adminpass")
    second = await lib.users.ensure_admin("admin", "admin@example.com", "other")

    assert first["role"] == "admin"
    assert second["user_id"] == "admin"
    assert await lib.users.authenticate("admin", "adminpass") is not None
    assert len(await lib.users.list_users()) == 1


async def test_stats(lib):
    await lib.member("alice")
    await lib.member("bob")
    await lib.member("cat")
    await lib.admin("boss")
    await lib.users.deactivate("cat")
    book = await lib.book(quantity=3)
    await lib.borrowing.borrow("alice", book["id"])
    await lib.borrowing.borrow("alice", book["id"])
    returned = await lib.borrowing.borrow("bob", book["id"])
    await lib.borrowing.return_book(returned["id"])

    assert await lib.users.stats() == {
        "total_users": 4,
        "admin_count": 1,
        "member_count": 3,
        "active_borrowers": 1,
        "inactive_accounts": 1,
    }


async def test_availability_checks(lib):
    await lib.member("alice")

    assert await lib.users.is_user_id_available("alice") is False
    assert await lib.users.is_user_id_available("bob") is True
    assert await lib.users.is_user_id_available("   ") is False
    assert await lib.users.is_email_available("alice@example.com") is False
    assert await lib.users.is_email_available("bob@example.com") is True
    assert await lib.users.is_email_available("") is False

import asyncio
from datetime import timedelta

import pytest

pytestmark = pytest.mark.anyio


async def borrow_days_ago(lib, user_id, book_id, days):
    return await lib.borrowing.borrow(user_id, book_id, borrow_date=lib.clock.now - timedelta(days=days))


async def test_due_yesterday_becomes_overdue_with_one_email(lib):
    await lib.member()
    book = await lib.book(title="Middlemarch")
    borrowing = await borrow_days_ago(lib, "alice", book["id"], 15)

    report = await lib.sweeper.run_once()

    assert (await lib.store.get_borrowing_by_id(borrowing["id"]))["status"] == "overdue"
    assert report.checked == 1
    assert report.marked_overdue == 1
    assert report.overdue_emails == 1
    assert report.failures == 0
    [mail] = lib.emails.sent
    assert mail["to"] == "alice@example.com"
    assert mail["subject"] == "URGENT: Overdue Book"
    assert "Middlemarch" in mail["body"]
    assert "1 day(s) overdue" in mail["body"]


async def test_overdue_email_is_sent_only_once(lib):
    await lib.member()
    book = await lib.book()
    await borrow_days_ago(lib, "alice", book["id"], 15)

    await lib.sweeper.run_once()
    lib.clock.advance(days=1)
    report = await lib.sweeper.run_once()

    assert report.checked == 0
    assert lib.emails.subjects() == ["URGENT: Overdue Book"]


async def test_sweeper_writes_an_overdue_notification(lib):
    await lib.member()
    book = await lib.book()
    await borrow_days_ago(lib, "alice", book["id"], 15)

    await lib.sweeper.run_once()

    messages = [n["message"] for n in await lib.notifications.list_for_user("alice")]
    assert any("overdue" in message for message in messages)


async def test_reminder_for_books_due_soon(lib):
    await lib.member("alice")
    await lib.member("bob")
    await lib.member("cat")
    book = await lib.book(quantity=3)
    due_in_two = await borrow_days_ago(lib, "alice", book["id"], 12)
    await borrow_days_ago(lib, "bob", book["id"], 13)
    await lib.borrowing.borrow("cat", book["id"])

    report = await lib.sweeper.run_once()

    assert report.checked == 3
    assert report.reminder_emails == 2
    assert report.marked_overdue == 0
    assert sorted(mail["to"] for mail in lib.emails.sent) == ["alice@example.com", "bob@example.com"]
    assert set(lib.emails.subjects()) == {"Reminder: Book Due Soon"}
    # Reminders leave the record alone
    assert (await lib.store.get_borrowing_by_id(due_in_two["id"]))["status"] == "active"


async def test_less_than_a_day_left_gets_no_reminder(lib):
    await lib.member()
    book = await lib.book()
    await borrow_days_ago(lib, "alice", book["id"], 13)
    lib.clock.advance(hours=12)

    report = await lib.sweeper.run_once()

    assert report.reminder_emails == 0
    assert lib.emails.sent == []


async def test_email_failure_is_counted_and_sweep_continues(failing_lib):
    lib = failing_lib
    await lib.member("alice")
    await lib.member("bob")
    book = await lib.book(quantity=2)
    first = await borrow_days_ago(lib, "alice", book["id"], 20)
    second = await borrow_days_ago(lib, "bob", book["id"], 16)

    report = await lib.sweeper.run_once()

    assert report.checked == 2
    assert report.marked_overdue == 2
    assert report.overdue_emails == 0
    assert report.failures == 2
    for borrowing in (first, second):
        assert (await lib.store.get_borrowing_by_id(borrowing["id"]))["status"] == "overdue"


async def test_missing_user_is_a_failure_not_a_crash(lib):
    await lib.member("alice")
    await lib.member("bob")
    book = await lib.book(quantity=2)
    await borrow_days_ago(lib, "alice", book["id"], 20)
    await borrow_days_ago(lib, "bob", book["id"], 20)
    await lib.store.delete_user("alice")

    report = await lib.sweeper.run_once()

    assert report.failures == 1
    assert report.overdue_emails == 1
    assert [mail["to"] for mail in lib.emails.sent] == ["bob@example.com"]


async def test_unreachable_owner_keeps_record_active_until_next_cycle(lib):
    alice = await lib.member("alice")
    book = await lib.book()
    borrowing = await borrow_days_ago(lib, "alice", book["id"], 20)
    await lib.store.delete_user("alice")

    first = await lib.sweeper.run_once()

    assert (first.checked, first.marked_overdue, first.failures) == (1, 0, 1)
    assert (await lib.store.get_borrowing_by_id(borrowing["id"]))["status"] == "active"
    messages = [n["message"] for n in await lib.notifications.list_for_user("alice")]
    assert not any("overdue" in message for message in messages)

    await lib.store.add_user(alice)
    second = await lib.sweeper.run_once()

    assert (second.checked, second.marked_overdue, second.overdue_emails) == (1, 1, 1)
    assert lib.emails.subjects() == ["URGENT: Overdue Book"]
    assert (await lib.store.get_borrowing_by_id(borrowing["id"]))["status"] == "overdue"


async def test_owner_without_email_is_not_marked(lib):
    await lib.member("alice")
    book = await lib.book()
    borrowing = await borrow_days_ago(lib, "alice", book["id"], 20)
    await lib.store.update_user("alice", {"email": None})

    report = await lib.sweeper.run_once()

    assert report.failures == 1
    assert report.marked_overdue == 0
    assert (await lib.store.get_borrowing_by_id(borrowing["id"]))["status"] == "active"


async def test_cycle_is_skipped_while_one_is_running(lib):
    await lib.member()
    book = await lib.book()
    await borrow_days_ago(lib, "alice", book["id"], 15)

    async with lib.sweeper._lock:
        assert await lib.sweeper.run_once() is None

    assert lib.emails.sent == []


async def test_start_runs_a_cycle_and_stop_cancels(lib):
    await lib.member()
    book = await lib.book()
    borrowing = await borrow_days_ago(lib, "alice", book["id"], 15)

    lib.sweeper.start()
    await asyncio.sleep(0.05)
    await lib.sweeper.stop()

    assert (await lib.store.get_borrowing_by_id(borrowing["id"]))["status"] == "overdue"
    assert lib.emails.subjects() == ["URGENT: Overdue Book"]
    assert lib.sweeper._task is None

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Callable, Optional

from errors import NotFoundError
from services.borrowing import BorrowingService
from services.email import EmailSender
from stores import LibraryStore
from utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    checked: int = 0
    marked_overdue: int = 0
    overdue_emails: int = 0
    reminder_emails: int = 0
    failures: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


class OverdueSweeper:
    """Periodic scan of active borrowings.

    Past-due records are moved to overdue and their owner is emailed once;
    records due within ``almost_overdue_days`` get a reminder. One record failing
    never stops the rest of the cycle, and a cycle requested while another is
    running is skipped.
    """

    def __init__(self, store: LibraryStore, borrowing: BorrowingService, email_sender: EmailSender,
                 clock: Callable = utcnow, interval_hours: float = 24, almost_overdue_days: int = 2):
        self.store = store
        self.borrowing = borrowing
        self.email_sender = email_sender
        self.clock = clock
        self.interval_seconds = interval_hours * 3600
        self.almost_overdue_days = almost_overdue_days
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    async def _owner(self, borrowing: dict) -> dict:
        user = await self.store.get_user_by_id(borrowing["user_id"])
        if not user:
            raise NotFoundError(f"User {borrowing['user_id']} not found")
        if not user.get("email"):
            raise NotFoundError(f"User {borrowing['user_id']} has no email address")
        return user

    async def _book_title(self, book_id: int) -> str:
        book = await self.store.get_book_by_id(book_id)
        return book["title"] if book else f"Book #{book_id}"

    async def _process(self, borrowing: dict, now, report: SweepReport) -> None:
        if borrowing["due_date"] < now:
            # No owner to reach means the record stays active and is retried next cycle
            user = await self._owner(borrowing)
            updated = await self.borrowing.try_mark_overdue(borrowing, notify=True)
            if updated is None:
                return
            report.marked_overdue += 1
            await self.email_sender.send_overdue_warning(
                user["email"], user["name"], await self._book_title(updated["book_id"]),
                updated["due_date"], (now - updated["due_date"]).days
            )
            report.overdue_emails += 1
            return

        days_until_due = (borrowing["due_date"] - now).days
        if 0 < days_until_due <= self.almost_overdue_days:
            user = await self._owner(borrowing)
            await self.email_sender.send_almost_overdue_warning(
                user["email"], user["name"], await self._book_title(borrowing["book_id"]),
                borrowing["due_date"]
            )
            report.reminder_emails += 1

    async def run_once(self) -> Optional[SweepReport]:
        """Run one cycle; returns None when a cycle is already in progress."""
        if self._lock.locked():
            logger.info("Overdue sweep already running, skipping")
            return None

        async with self._lock:
            report = SweepReport()
            now = self.clock()
            for borrowing in await self.store.get_active_borrowings():
                report.checked += 1
                try:
                    await self._process(borrowing, now, report)
                except Exception:
                    report.failures += 1
                    logger.exception("Overdue sweep failed for borrowing %s", borrowing.get("id"))
            logger.info("Overdue sweep finished: %s", report.as_dict())
            return report

    async def _run_forever(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Overdue sweep cycle crashed")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run_forever())
            logger.info("Overdue sweeper started, interval %.1f hours", self.interval_seconds / 3600)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Overdue sweeper stopped")

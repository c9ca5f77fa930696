from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from config import Settings
from errors import EmailDeliveryError
from main import create_app
from services.borrowing import BorrowingService
from services.catalog import CatalogService
from services.email import EmailSender
from services.notifications import NotificationService
from services.password_reset import PasswordResetService
from services.reviews import ReviewService
from services.sweeper import OverdueSweeper
from services.users import UserService
from stores import MemoryStore

START = datetime(2024, 3, 1, 10, 0, 0)


class FrozenClock:
    """Clock the tests move by hand."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingEmailSender(EmailSender):

    def __init__(self):
        self.sent = []

    async def send(self, to_email, subject, body):
        self.sent.append({"to": to_email, "subject": subject, "body": body})

    def subjects(self):
        return [mail["subject"] for mail in self.sent]


class FailingEmailSender(EmailSender):

    async def send(self, to_email, subject, body):
        raise EmailDeliveryError(f"Could not send email to {to_email}")


class Library:
    """All services wired against one store (MemoryStore unless given) and a frozen clock."""

    def __init__(self, clock: FrozenClock, email_sender: EmailSender = None, store=None):
        self.clock = clock
        self.store = store or MemoryStore()
        self.emails = email_sender or RecordingEmailSender()
        self.notifications = NotificationService(self.store, clock)
        self.borrowing = BorrowingService(self.store, self.notifications, clock, loan_days=14)
        self.users = UserService(self.store, clock)
        self.catalog = CatalogService(self.store)
        self.reviews = ReviewService(self.store, clock)
        self.resets = PasswordResetService(self.store, clock, ttl_minutes=60)
        self.sweeper = OverdueSweeper(self.store, self.borrowing, self.emails, clock,
                                      interval_hours=24, almost_overdue_days=2)

    async def member(self, user_id="alice", password="secret123", email=None):
        return await self.users.register(user_id, user_id.title(), email or f"{user_id}@example.com", password)

    async def admin(self, user_id="librarian", password="secret123"):
        user = await self.member(user_id, password)
        return await self.users.grant_admin(user["user_id"])

    async def book(self, code="B-1", quantity=1, **fields):
        fields = {"title": f"Book {code}", "author": "Jane Author", "code": code, **fields}
        return await self.catalog.add_book(fields, quantity=quantity)

    async def stock(self, book_id):
        book = await self.store.get_book_by_id(book_id)
        return book["available_quantity"], book["status"]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def lib(clock):
    return Library(clock)


@pytest.fixture
def test_settings():
    return Settings(
        storage_backend="memory",
        secret_key="test-secret",
        sweeper_enabled=False,
        default_admin_user_id="admin",
        default_admin_email="admin@example.com",
        default_admin_password="adminpass",
        smtp_host=None,
        api_base_url="http://testserver",
        origins=["*"],
    )


@pytest.fixture
def outbox():
    return RecordingEmailSender()


@pytest.fixture
def client(test_settings, outbox, clock):
    app = create_app(settings=test_settings, store=MemoryStore(), email_sender=outbox, clock=clock)
    # Entering the context runs the lifespan, which creates the admin account
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def failing_lib(clock):
    return Library(clock, email_sender=FailingEmailSender())


@pytest.fixture
def login_as(client):
    def _login(username, password="secret123"):
        response = client.post("/auth/login", data={"username": username, "password": password})
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['access_token']}"}
    return _login


@pytest.fixture
def admin_headers(login_as):
    return login_as("admin", "adminpass")

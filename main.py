import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import auth
from config import Settings, settings as default_settings
from database import check_connection, ensure_indexes, get_client, get_database
from errors import LibraryError
from routers import books, borrow, notifications, reviews, users
from services.borrowing import BorrowingService
from services.catalog import CatalogService
from services.email import EmailSender, build_email_sender
from services.notifications import NotificationService
from services.password_reset import PasswordResetService
from services.reviews import ReviewService
from services.sweeper import OverdueSweeper
from services.users import UserService
from stores import LibraryStore, MemoryStore, MongoStore
from utils.clock import utcnow

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> LibraryStore:
    if settings.storage_backend == "memory":
        logger.info("Using in-memory storage")
        return MemoryStore()
    client = get_client(settings)
    return MongoStore(get_database(client, settings), client)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    store = app.state.store
    if isinstance(store, MongoStore):
        await check_connection(store.client)
        await ensure_indexes(store.db)
    if settings.default_admin_password:
        await app.state.users.ensure_admin(
            settings.default_admin_user_id, settings.default_admin_email, settings.default_admin_password
        )
    if settings.sweeper_enabled:
        app.state.sweeper.start()
    yield
    await app.state.sweeper.stop()
    await store.close()


def create_app(settings: Optional[Settings] = None, store: Optional[LibraryStore] = None,
               email_sender: Optional[EmailSender] = None, clock: Callable = utcnow) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(title="Library Management System", debug=settings.debug, lifespan=lifespan)

    # Wire the services once; routes fetch them through utils.dependencies
    store = store or build_store(settings)
    notification_service = NotificationService(store, clock)
    borrowing_service = BorrowingService(store, notification_service, clock, settings.loan_days)
    email_sender = email_sender or build_email_sender(settings)

    app.state.settings = settings
    app.state.store = store
    app.state.email_sender = email_sender
    app.state.notifications = notification_service
    app.state.borrowing = borrowing_service
    app.state.users = UserService(store, clock)
    app.state.catalog = CatalogService(store)
    app.state.reviews = ReviewService(store, clock)
    app.state.password_reset = PasswordResetService(store, clock, settings.reset_token_ttl_minutes)
    app.state.sweeper = OverdueSweeper(
        store, borrowing_service, email_sender, clock,
        interval_hours=settings.sweep_interval_hours,
        almost_overdue_days=settings.almost_overdue_days,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LibraryError)
    async def library_error_handler(request: Request, exc: LibraryError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    # Routers
    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(books.router)
    app.include_router(borrow.router)
    app.include_router(notifications.router)
    app.include_router(reviews.router)

    @app.get("/health")
    def health():
        return {"status": "ok", "storage": settings.storage_backend}

    @app.get("/config")
    def get_config():
        return {"API_BASE_URL": settings.api_base_url}

    return app


app = create_app()

import logging
import secrets
from datetime import timedelta
from typing import Callable

from errors import InvalidTokenError, NotFoundError
from stores import LibraryStore
from utils.clock import utcnow
from utils.security import hash_password

logger = logging.getLogger(__name__)


class PasswordResetService:
    """Single-use, short-lived reset tokens stored on the user record."""

    def __init__(self, store: LibraryStore, clock: Callable = utcnow, ttl_minutes: int = 60):
        self.store = store
        self.clock = clock
        self.ttl = timedelta(minutes=ttl_minutes)

    async def generate_reset_token(self, email: str) -> tuple:
        """Mint a token for the user with ``email``; returns ``(user, token)``."""
        user = await self.store.get_user_by_email(email)
        if not user:
            raise NotFoundError("No account registered with this email")

        token = secrets.token_urlsafe(32)
        await self.store.update_user(user["user_id"], {
            "reset_token": token,
            "reset_token_expiry": self.clock() + self.ttl,
        })
        logger.info("Issued password reset token for %s", user["user_id"])
        return user, token

    async def validate_token(self, token: str) -> bool:
        if not token:
            return False
        return await self.store.get_user_by_reset_token(token, self.clock()) is not None

    async def reset_password(self, token: str, new_password: str) -> dict:
        now = self.clock()
        user = None
        if token:
            # Hash, password and token clearing land in one conditional update
            user = await self.store.consume_reset_token(
                token, now, {"password": hash_password(new_password), "updated_at": now}
            )
        if user is None:
            raise InvalidTokenError("Invalid or expired reset token")
        logger.info("Password reset for %s", user["user_id"])
        return user

import logging
from typing import Callable, Optional

from errors import AuthorizationError, NotFoundError
from stores import LibraryStore
from utils.clock import utcnow

logger = logging.getLogger(__name__)


class NotificationService:
    """Append-only per-user message log; only the read flag ever changes."""

    def __init__(self, store: LibraryStore, clock: Callable = utcnow):
        self.store = store
        self.clock = clock

    async def notify(self, user_id: str, message: str) -> dict:
        notification = {
            "id": await self.store.next_id("notificationid"),
            "user_id": user_id,
            "message": message,
            "timestamp": self.clock(),
            "is_read": False,
        }
        await self.store.add_notification(notification)
        logger.debug("Notification %s queued for %s", notification["id"], user_id)
        return notification

    async def list_for_user(self, user_id: str, unread_only: bool = False) -> list:
        return await self.store.list_notifications(user_id=user_id, unread_only=unread_only)

    async def recent(self, user_id: str, limit: int = 5) -> list:
        """Newest notifications first, at most ``limit`` of them."""
        return (await self.list_for_user(user_id))[:max(limit, 0)]

    async def list_all(self) -> list:
        return await self.store.list_notifications()

    async def unread_count(self, user_id: str) -> int:
        return len(await self.store.list_notifications(user_id=user_id, unread_only=True))

    async def _get_owned(self, notification_id: int, actor_id: Optional[str], actor_is_admin: bool) -> dict:
        notification = await self.store.get_notification(notification_id)
        if not notification:
            raise NotFoundError("Notification not found")
        if actor_id is not None and not actor_is_admin and notification["user_id"] != actor_id:
            raise AuthorizationError("Cannot access someone else's notification")
        return notification

    async def mark_as_read(self, notification_id: int, actor_id: Optional[str] = None,
                           actor_is_admin: bool = False) -> dict:
        await self._get_owned(notification_id, actor_id, actor_is_admin)
        return await self.store.mark_notification_read(notification_id)

    async def mark_all_as_read(self, user_id: str) -> int:
        return await self.store.mark_all_notifications_read(user_id)

    async def delete(self, notification_id: int) -> None:
        if not await self.store.delete_notification(notification_id):
            raise NotFoundError("Notification not found")

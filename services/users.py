import logging
from typing import Callable, Optional

from errors import AuthorizationError, ConflictError, NotFoundError
from models import OPEN_STATUSES, Role
from stores import LibraryStore
from utils.clock import utcnow
from utils.security import hash_password, verify_password

logger = logging.getLogger(__name__)


class UserService:

    def __init__(self, store: LibraryStore, clock: Callable = utcnow):
        self.store = store
        self.clock = clock

    async def get_user(self, user_id: str) -> dict:
        user = await self.store.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    async def list_users(self) -> list:
        return await self.store.list_users()

    async def _update(self, user_id: str, fields: dict) -> dict:
        fields["updated_at"] = self.clock()
        user = await self.store.update_user(user_id, fields)
        if not user:
            raise NotFoundError("User not found")
        return user

    async def register(self, user_id: str, name: str, email: str, password: str,
                       role: Role = Role.MEMBER) -> dict:
        if await self.store.user_exists(user_id):
            raise ConflictError("User ID already taken")
        if await self.store.email_exists(email):
            raise ConflictError("Email already registered")

        now = self.clock()
        user = {
            "user_id": user_id,
            "name": name,
            "email": email,
            "password": hash_password(password),
            "role": Role(role).value,
            "is_active": True,
            "reset_token": None,
            "reset_token_expiry": None,
            "created_at": now,
            "updated_at": now,
        }
        await self.store.add_user(user)
        logger.info("Registered user %s (%s)", user_id, user["role"])
        return user

    async def authenticate(self, identifier: str, password: str) -> Optional[dict]:
        """Look the user up by user_id or email; None when the credentials do not match."""
        user = await self.store.get_user_by_id(identifier)
        if user is None:
            user = await self.store.get_user_by_email(identifier)
        if not user or not verify_password(password, user["password"]):
            return None
        if not user.get("is_active", True):
            raise AuthorizationError("Account is deactivated")
        return user

    async def is_user_id_available(self, user_id: str) -> bool:
        if not user_id or not user_id.strip():
            return False
        return not await self.store.user_exists(user_id.strip())

    async def is_email_available(self, email: str) -> bool:
        if not email or not email.strip():
            return False
        return not await self.store.email_exists(email.strip())

    async def update_profile(self, user_id: str, name: str, email: str) -> dict:
        owner = await self.store.get_user_by_email(email)
        if owner and owner["user_id"] != user_id:
            raise ConflictError("Email already registered")
        return await self._update(user_id, {"name": name, "email": email})

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> dict:
        user = await self.get_user(user_id)
        if not verify_password(current_password, user["password"]):
            raise ConflictError("Current password is incorrect")
        logger.info("User %s changed their password", user_id)
        return await self._update(user_id, {"password": hash_password(new_password)})

    # ---------- Activation ----------
    async def activate(self, user_id: str) -> dict:
        user = await self.get_user(user_id)
        if user.get("is_active", True):
            raise ConflictError("User is already active")
        return await self._update(user_id, {"is_active": True})

    async def deactivate(self, user_id: str) -> dict:
        user = await self.get_user(user_id)
        if not user.get("is_active", True):
            raise ConflictError("User is already inactive")
        return await self._update(user_id, {"is_active": False})

    async def toggle_activation(self, user_id: str) -> dict:
        user = await self.get_user(user_id)
        return await self._update(user_id, {"is_active": not user.get("is_active", True)})

    # ---------- Roles ----------
    async def change_role(self, user_id: str, role: Role, actor_id: Optional[str] = None) -> dict:
        role = Role(role).value
        if actor_id is not None and actor_id == user_id:
            raise ConflictError("You cannot change your own role")
        user = await self.get_user(user_id)
        if user.get("role", Role.MEMBER.value) == role:
            raise ConflictError(f"User already has role: {role}")
        logger.info("User %s role changed from %s to %s", user_id, user.get("role"), role)
        return await self._update(user_id, {"role": role})

    async def grant_admin(self, user_id: str, actor_id: Optional[str] = None) -> dict:
        return await self.change_role(user_id, Role.ADMIN, actor_id)

    async def revoke_admin(self, user_id: str, actor_id: Optional[str] = None) -> dict:
        return await self.change_role(user_id, Role.MEMBER, actor_id)

    async def delete_user(self, user_id: str, actor_id: Optional[str] = None) -> None:
        await self.get_user(user_id)
        if actor_id is not None and actor_id == user_id:
            raise ConflictError("You cannot delete your own account")
        if await self.store.list_borrowings(user_id=user_id, statuses=OPEN_STATUSES):
            raise ConflictError(
                "Cannot delete user with active borrows. Please ensure all books are returned first."
            )
        await self.store.delete_user(user_id)
        logger.info("Deleted user %s", user_id)

    async def ensure_admin(self, user_id: str, email: str, password: str) -> dict:
        """Create the bootstrap admin account unless it already exists."""
        existing = await self.store.get_user_by_id(user_id)
        if existing:
            return existing
        logger.info("Creating bootstrap admin account %s", user_id)
        return await self.register(user_id, "Administrator", email, password, role=Role.ADMIN)

    async def stats(self) -> dict:
        users = await self.store.list_users()
        open_borrowings = await self.store.list_borrowings(statuses=OPEN_STATUSES)
        admin_count = sum(1 for u in users if u.get("role") == Role.ADMIN.value)
        return {
            "total_users": len(users),
            "admin_count": admin_count,
            "member_count": len(users) - admin_count,
            "active_borrowers": len({b["user_id"] for b in open_borrowings}),
            "inactive_accounts": sum(1 for u in users if not u.get("is_active", True)),
        }

"""
TicketFlow Identity Service

Simple session handling:
- staff and customers log in with username/password
- customers can also use the client portal with their client token
- logout clears the session user

User administration (admin only) issues client tokens. A token is
generated once per user, is unique, and no edit ever rewrites it.
"""

import logging
import secrets
from typing import Any, Dict, Optional
from uuid import UUID

from ..config import Settings, get_settings
from ..errors import PersistenceError
from ..models import User, UserRole
from .permissions import can_manage_users

logger = logging.getLogger(__name__)

CLIENT_TOKEN_ALPHABET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789!@#$%^&*"
)

PROFILE_FIELDS = frozenset({"name", "avatar", "bio", "company_name", "email"})
ADMIN_FIELDS = PROFILE_FIELDS | {"username", "password", "role"}


class IdentityService:
    """Login surface plus user directory writes."""

    def __init__(self, state, store, settings: Optional[Settings] = None):
        self.state = state
        self.store = store
        self.settings = settings or get_settings()

    # =========================================================================
    # Credentials
    # =========================================================================

    def authenticate(self, username: str, password: str) -> Optional[User]:
        """Check a username/password pair without touching the session."""
        for user in self.state.users:
            if user.username == username and user.password == password:
                return user
        logger.info("Login failed for username %r", username)
        return None

    def authenticate_customer(self, client_token: str) -> Optional[User]:
        """Client portal check. Only customer accounts qualify."""
        if not client_token:
            return None
        for user in self.state.users:
            if user.role == UserRole.CUSTOMER and user.client_token == client_token:
                return user
        logger.info("Client portal login failed")
        return None

    # =========================================================================
    # Session
    # In-process only: current_user is shared by everything holding this
    # state, so HTTP callers authenticate per request instead.
    # =========================================================================

    def login(self, username: str, password: str) -> Optional[User]:
        user = self.authenticate(username, password)
        if user is not None:
            self.state.current_user = user
            logger.info("User %s logged in", user.id)
        return user

    def login_as_customer(self, client_token: str) -> Optional[User]:
        user = self.authenticate_customer(client_token)
        if user is not None:
            self.state.current_user = user
            logger.info("Customer %s logged in via client portal", user.id)
        return user

    def logout(self, user: Optional[User] = None) -> None:
        """End the session, or only end it if it belongs to user."""
        current = self.state.current_user
        if current is None:
            return
        if user is None or current.id == user.id:
            self.state.current_user = None
            logger.info("User %s logged out", current.id)

    # =========================================================================
    # Directory
    # =========================================================================

    def generate_client_token(self) -> str:
        """New token not held by any known user."""
        taken = {u.client_token for u in self.state.users if u.client_token}
        while True:
            body = "".join(
                secrets.choice(CLIENT_TOKEN_ALPHABET)
                for _ in range(self.settings.client_token_length)
            )
            token = f"{self.settings.client_token_prefix}{body}"
            if token not in taken:
                return token

    async def add_user(
        self,
        username: str,
        name: str,
        role: UserRole = UserRole.CUSTOMER,
        password: Optional[str] = None,
        email: Optional[str] = None,
        company_name: Optional[str] = None,
        avatar: str = "",
        bio: str = "",
        actor: Optional[User] = None,
    ) -> Optional[User]:
        """Admin creates a user. Every new user gets a client token."""
        actor = actor or self.state.current_user
        if not can_manage_users(actor):
            logger.info("add_user refused: actor is not an admin")
            return None
        if any(u.username == username for u in self.state.users):
            logger.info("add_user refused: username %r already taken", username)
            return None

        user = User(
            username=username,
            password=password,
            name=name,
            email=email,
            role=role,
            avatar=avatar,
            bio=bio,
            company_name=company_name,
            client_token=self.generate_client_token(),
        )
        try:
            await self.store.create_user(user)
        except PersistenceError as e:
            logger.warning("add_user not applied: %s", e)
            return None
        return user

    async def update_profile(
        self,
        user_id: UUID,
        actor: Optional[User] = None,
        **fields: Any,
    ) -> bool:
        """Self-service edit of display fields."""
        actor = actor or self.state.current_user
        if actor is None or actor.id != user_id:
            logger.info("update_profile refused for %s", user_id)
            return False
        return await self._patch_user(user_id, _only(fields, PROFILE_FIELDS))

    async def admin_update_user(
        self,
        user_id: UUID,
        actor: Optional[User] = None,
        **fields: Any,
    ) -> bool:
        """Admin edit. client_token is never among the writable fields."""
        actor = actor or self.state.current_user
        if not can_manage_users(actor):
            logger.info("admin_update_user refused: actor is not an admin")
            return False

        target = self.state.get_user(user_id)
        if target is None:
            return False

        update = _only(fields, ADMIN_FIELDS)
        if "role" in update:
            update["role"] = UserRole(update["role"])
            # Staff seeded without a token need one before becoming customers
            if update["role"] == UserRole.CUSTOMER and not target.client_token:
                update["client_token"] = self.generate_client_token()
        return await self._patch_user(user_id, update)

    async def delete_user(self, user_id: UUID, actor: Optional[User] = None) -> bool:
        """
        Admin removes a user. Tickets and logs keep their denormalized
        names, so history still reads correctly.
        """
        actor = actor or self.state.current_user
        if not can_manage_users(actor):
            logger.info("delete_user refused: actor is not an admin")
            return False
        try:
            await self.store.delete_user(user_id)
        except PersistenceError as e:
            logger.warning("delete_user %s not applied: %s", user_id, e)
            return False
        return True

    async def _patch_user(self, user_id: UUID, update: Dict[str, Any]) -> bool:
        if not update:
            return False
        try:
            await self.store.patch_user(user_id, update)
        except PersistenceError as e:
            logger.warning("User %s update not applied: %s", user_id, e)
            return False
        return True


def _only(fields: Dict[str, Any], allowed: frozenset) -> Dict[str, Any]:
    dropped = set(fields) - allowed
    if dropped:
        logger.debug("Ignoring non-editable user fields %s", sorted(dropped))
    return {k: v for k, v in fields.items() if k in allowed}

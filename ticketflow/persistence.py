"""
TicketFlow Persistence Contract

The engine does not own durability. It talks to a document store that:
- accepts whole-document writes (create / patch / delete)
- re-delivers the full ticket and user collections to subscribers
  after every change

Embedded tasks are always written back as a complete array, never as a
sub-document patch. Concurrent patches resolve last-write-wins per field.
"""

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol
from uuid import UUID

from .errors import PersistenceError
from .models import IMMUTABLE_TICKET_FIELDS, Ticket, User

logger = logging.getLogger(__name__)

TicketListener = Callable[[List[Ticket]], None]
UserListener = Callable[[List[User]], None]
Unsubscribe = Callable[[], None]


class DocumentStore(Protocol):
    """What the engine needs from the persistence collaborator."""

    async def create_ticket(self, ticket: Ticket) -> Ticket: ...

    async def patch_ticket(self, ticket_id: UUID, fields: Mapping[str, Any]) -> None: ...

    async def delete_ticket(self, ticket_id: UUID) -> None: ...

    async def create_user(self, user: User) -> User: ...

    async def patch_user(self, user_id: UUID, fields: Mapping[str, Any]) -> None: ...

    async def delete_user(self, user_id: UUID) -> None: ...

    def subscribe_tickets(self, listener: TicketListener) -> Unsubscribe: ...

    def subscribe_users(self, listener: UserListener) -> Unsubscribe: ...


class InMemoryDocumentStore:
    """
    Dict-backed document store.

    Snapshots are pushed synchronously to every subscriber once a write
    lands. Set online=False to make every write raise PersistenceError.
    """

    def __init__(self):
        self._tickets: Dict[UUID, Ticket] = {}
        self._users: Dict[UUID, User] = {}
        self._ticket_listeners: List[TicketListener] = []
        self._user_listeners: List[UserListener] = []
        self.online = True
        self.writes = 0

    # =========================================================================
    # Tickets
    # =========================================================================

    async def create_ticket(self, ticket: Ticket) -> Ticket:
        self._check_online("create ticket")
        if ticket.id in self._tickets:
            raise PersistenceError(f"Ticket {ticket.id} already exists")
        self._tickets[ticket.id] = ticket.model_copy(deep=True)
        self._commit_tickets()
        return ticket

    async def patch_ticket(self, ticket_id: UUID, fields: Mapping[str, Any]) -> None:
        self._check_online("patch ticket")
        current = self._tickets.get(ticket_id)
        if current is None:
            raise PersistenceError(f"Ticket {ticket_id} does not exist")

        update = {k: v for k, v in fields.items() if k not in IMMUTABLE_TICKET_FIELDS}
        dropped = set(fields) - set(update)
        if dropped:
            logger.debug("Ignoring immutable ticket fields %s", sorted(dropped))

        patched = Ticket.model_validate({**current.model_dump(), **_dump_fields(update)})
        self._tickets[ticket_id] = patched
        self._commit_tickets()

    async def delete_ticket(self, ticket_id: UUID) -> None:
        self._check_online("delete ticket")
        self._tickets.pop(ticket_id, None)
        self._commit_tickets()

    def get_ticket(self, ticket_id: UUID) -> Optional[Ticket]:
        ticket = self._tickets.get(ticket_id)
        return ticket.model_copy(deep=True) if ticket else None

    # =========================================================================
    # Users
    # =========================================================================

    async def create_user(self, user: User) -> User:
        self._check_online("create user")
        self._users[user.id] = user.model_copy(deep=True)
        self._commit_users()
        return user

    async def patch_user(self, user_id: UUID, fields: Mapping[str, Any]) -> None:
        self._check_online("patch user")
        current = self._users.get(user_id)
        if current is None:
            raise PersistenceError(f"User {user_id} does not exist")
        update = {k: v for k, v in fields.items() if k != "id"}
        self._users[user_id] = User.model_validate({**current.model_dump(), **_dump_fields(update)})
        self._commit_users()

    async def delete_user(self, user_id: UUID) -> None:
        self._check_online("delete user")
        self._users.pop(user_id, None)
        self._commit_users()

    def seed_users(self, users: List[User]) -> None:
        """Load users without going through the write path."""
        for user in users:
            self._users[user.id] = user.model_copy(deep=True)
        self._commit_users()

    # =========================================================================
    # Snapshot feed
    # =========================================================================

    def subscribe_tickets(self, listener: TicketListener) -> Unsubscribe:
        self._ticket_listeners.append(listener)
        listener(self._ticket_snapshot())
        return lambda: self._ticket_listeners.remove(listener)

    def subscribe_users(self, listener: UserListener) -> Unsubscribe:
        self._user_listeners.append(listener)
        listener(self._user_snapshot())
        return lambda: self._user_listeners.remove(listener)

    def _ticket_snapshot(self) -> List[Ticket]:
        return [t.model_copy(deep=True) for t in self._tickets.values()]

    def _user_snapshot(self) -> List[User]:
        return [u.model_copy(deep=True) for u in self._users.values()]

    def _commit_tickets(self) -> None:
        self.writes += 1
        for listener in list(self._ticket_listeners):
            listener(self._ticket_snapshot())

    def _commit_users(self) -> None:
        self.writes += 1
        for listener in list(self._user_listeners):
            listener(self._user_snapshot())

    def _check_online(self, action: str) -> None:
        if not self.online:
            raise PersistenceError(f"Store unavailable, cannot {action}")


def _dump_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Turn model values into plain data so the patched document revalidates."""
    dumped = {}
    for key, value in fields.items():
        if hasattr(value, "model_dump"):
            dumped[key] = value.model_dump()
        elif isinstance(value, list):
            dumped[key] = [v.model_dump() if hasattr(v, "model_dump") else v for v in value]
        else:
            dumped[key] = value
    return dumped

"""
TicketFlow Application State

One explicit store object owns the session user, the user directory and
the ticket collection. Everything that needs actor or ticket context gets
this object injected instead of reading globals.

Two layers of ticket state:
- confirmed: the last full snapshot delivered by the document store
- provisional: locally computed results of commands still in flight

Reads for views merge both layers. Workflow preconditions are checked
against confirmed state only. A full snapshot always wins and discards
every provisional projection.
"""

import logging
from typing import Callable, Dict, List, Optional
from uuid import UUID

from .models import Ticket, User

logger = logging.getLogger(__name__)

Listener = Callable[["AppState"], None]


class AppState:
    """Session user + confirmed collections + provisional overlay."""

    def __init__(self):
        self.current_user: Optional[User] = None
        self._users: Dict[UUID, User] = {}
        self._tickets: Dict[UUID, Ticket] = {}
        self._provisional: Dict[UUID, Ticket] = {}
        self._listeners: List[Listener] = []
        self._unsubscribers: List[Callable[[], None]] = []

    # =========================================================================
    # Wiring
    # =========================================================================

    def attach(self, store) -> None:
        """Follow a document store's snapshot feed."""
        self._unsubscribers.append(store.subscribe_users(self.replace_users))
        self._unsubscribers.append(store.subscribe_tickets(self.replace_tickets))

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    # =========================================================================
    # Authoritative snapshots
    # =========================================================================

    def replace_users(self, users: List[User]) -> None:
        self._users = {u.id: u for u in users}
        # Keep the session user in step with renames; drop it if deleted
        if self.current_user is not None:
            self.current_user = self._users.get(self.current_user.id)
        self._notify()

    def replace_tickets(self, tickets: List[Ticket]) -> None:
        if self._provisional:
            logger.debug("Snapshot discards %d provisional ticket(s)", len(self._provisional))
        self._tickets = {t.id: t for t in tickets}
        self._provisional.clear()
        self._notify()

    # =========================================================================
    # Provisional overlay
    # =========================================================================

    def apply_provisional(self, ticket: Ticket) -> None:
        self._provisional[ticket.id] = ticket
        self._notify()

    def discard_provisional(self, ticket_id: UUID) -> None:
        if self._provisional.pop(ticket_id, None) is not None:
            self._notify()

    def has_provisional(self, ticket_id: UUID) -> bool:
        return ticket_id in self._provisional

    # =========================================================================
    # Reads
    # =========================================================================

    @property
    def users(self) -> List[User]:
        return list(self._users.values())

    def get_user(self, user_id: Optional[UUID]) -> Optional[User]:
        if user_id is None:
            return None
        return self._users.get(user_id)

    def confirmed_ticket(self, ticket_id: UUID) -> Optional[Ticket]:
        return self._tickets.get(ticket_id)

    def ticket(self, ticket_id: UUID) -> Optional[Ticket]:
        """Ticket as the user should see it right now."""
        return self._provisional.get(ticket_id) or self._tickets.get(ticket_id)

    @property
    def tickets(self) -> List[Ticket]:
        merged = dict(self._tickets)
        merged.update(self._provisional)
        return list(merged.values())

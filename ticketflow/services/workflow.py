"""
TicketFlow Ticket Workflow

The ticket state machine:

    OPEN --claim/assign--> IN_PROGRESS --submit_resolution--> RESOLVED
    OPEN --reject_new_ticket--> CLOSED
    RESOLVED --accept_resolution--> CLOSED
    RESOLVED --reject_resolution--> IN_PROGRESS
    (any but CLOSED) --cancel--> CLOSED

Every operation follows the same protocol:
1. Read the server-confirmed ticket
2. Re-check existence, status and capability against it
3. Compute the whole next ticket and overlay it provisionally
4. Issue ONE document write
5. Roll back the overlay if the write fails

Business refusals are returned, not raised. A race (two admins claiming
the same ticket) simply finds the precondition gone and refuses.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from ..errors import PersistenceError
from ..models import (
    Attachment,
    Priority,
    RejectionRecord,
    ResolutionRecord,
    Ticket,
    TicketLog,
    TicketStatus,
    TicketType,
    User,
    is_valid_transition,
)
from . import permissions

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    APPLIED = "applied"
    NOT_FOUND = "not_found"  # Ticket or task does not exist (any more)
    DENIED = "denied"        # Capability check failed against current state
    INVALID = "invalid"      # Bad input: blank reason, unknown assignee, ...
    FAILED = "failed"        # Document store rejected the write


@dataclass
class WorkflowResult:
    """What happened to a workflow command."""
    outcome: Outcome
    ticket: Optional[Ticket] = None
    reason: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.outcome == Outcome.APPLIED

    @classmethod
    def ok(cls, ticket: Optional[Ticket]) -> "WorkflowResult":
        return cls(Outcome.APPLIED, ticket=ticket)

    @classmethod
    def refused(
        cls,
        outcome: Outcome,
        reason: str,
        ticket: Optional[Ticket] = None,
    ) -> "WorkflowResult":
        return cls(outcome, ticket=ticket, reason=reason)


class WorkflowBase:
    """Shared read / check / write plumbing for ticket and task commands."""

    def __init__(self, state, store):
        self.state = state
        self.store = store

    def _actor(self, actor: Optional[User]) -> Optional[User]:
        return actor if actor is not None else self.state.current_user

    def _log(self, text: str, actor: User) -> TicketLog:
        return TicketLog(text=text, user_id=actor.id, user_name=actor.name)

    def _refuse(
        self,
        action: str,
        outcome: Outcome,
        reason: str,
        actor: Optional[User] = None,
        ticket: Optional[Ticket] = None,
    ) -> WorkflowResult:
        logger.info(
            "%s refused (%s): %s [actor=%s ticket=%s]",
            action,
            outcome.value,
            reason,
            actor.id if actor else None,
            ticket.id if ticket else None,
        )
        return WorkflowResult.refused(outcome, reason, ticket)

    def _load(self, action: str, ticket_id: UUID, actor: Optional[User]):
        """Return (ticket, None) or (None, refusal)."""
        if actor is None:
            return None, self._refuse(action, Outcome.DENIED, "No user is logged in")
        ticket = self.state.confirmed_ticket(ticket_id)
        if ticket is None:
            return None, self._refuse(action, Outcome.NOT_FOUND, "Ticket not found", actor)
        return ticket, None

    async def _commit(
        self,
        action: str,
        ticket: Ticket,
        update: Dict[str, Any],
        actor: User,
    ) -> WorkflowResult:
        """Apply one whole-document patch, provisionally first."""
        target = update.get("status")
        if target is not None and not is_valid_transition(ticket.status, target):
            return self._refuse(
                action,
                Outcome.DENIED,
                f"Cannot move ticket from {ticket.status.value} to {target.value}",
                actor,
                ticket,
            )

        next_ticket = ticket.model_copy(update=update)
        self.state.apply_provisional(next_ticket)
        try:
            await self.store.patch_ticket(ticket.id, update)
        except PersistenceError as e:
            self.state.discard_provisional(ticket.id)
            logger.warning("%s on ticket %s not applied: %s", action, ticket.id, e)
            return WorkflowResult.refused(Outcome.FAILED, str(e), ticket)

        logger.debug("%s applied to ticket %s by %s", action, ticket.id, actor.id)
        return WorkflowResult.ok(self.state.ticket(ticket.id) or next_ticket)


class TicketWorkflowService(WorkflowBase):
    """
    Ticket-level commands.

    Work vs outcome:
    - Assignee (or admin) drives the ticket to RESOLVED
    - Creator alone accepts, rejects or cancels
    """

    async def create_ticket(
        self,
        title: str,
        description: str = "",
        type: TicketType = TicketType.SELF_INITIATION,
        priority: Priority = Priority.MEDIUM,
        attachments: Optional[List[Attachment]] = None,
        actor: Optional[User] = None,
    ) -> WorkflowResult:
        """
        Open a new ticket. Any logged-in user may do this.

        The ticket starts OPEN, unassigned, with no tasks and a single
        "Ticket created" log entry.
        """
        actor = self._actor(actor)
        if actor is None:
            return self._refuse("create_ticket", Outcome.DENIED, "No user is logged in")
        if not title.strip():
            return self._refuse("create_ticket", Outcome.INVALID, "Title is required", actor)

        ticket = Ticket(
            title=title.strip(),
            description=description,
            type=type,
            priority=priority,
            status=TicketStatus.OPEN,
            created_by_id=actor.id,
            created_by_name=actor.name,
            assigned_to_id=None,
            attachments=list(attachments or []),
            tasks=[],
            logs=[self._log("Ticket created", actor)],
        )

        self.state.apply_provisional(ticket)
        try:
            await self.store.create_ticket(ticket)
        except PersistenceError as e:
            self.state.discard_provisional(ticket.id)
            logger.warning("create_ticket not applied: %s", e)
            return WorkflowResult.refused(Outcome.FAILED, str(e))

        logger.info("Ticket %s created by %s", ticket.id, actor.id)
        return WorkflowResult.ok(self.state.ticket(ticket.id) or ticket)

    async def claim(self, ticket_id: UUID, actor: Optional[User] = None) -> WorkflowResult:
        """Staff member takes an OPEN, unassigned ticket."""
        actor = self._actor(actor)
        ticket, refusal = self._load("claim", ticket_id, actor)
        if refusal:
            return refusal

        if not permissions.can_claim_ticket(actor, ticket):
            return self._refuse(
                "claim", Outcome.DENIED,
                "Only staff can claim an open, unassigned ticket", actor, ticket,
            )

        return await self._commit("claim", ticket, {
            "assigned_to_id": actor.id,
            "status": TicketStatus.IN_PROGRESS,
            "logs": [*ticket.logs, self._log("Ticket claimed", actor)],
        }, actor)

    async def assign(
        self,
        ticket_id: UUID,
        user_id: UUID,
        actor: Optional[User] = None,
    ) -> WorkflowResult:
        """
        Admin (re)assigns an OPEN or IN_PROGRESS ticket to a staff member.

        Also records a log entry so reassignments show up in the audit trail.
        """
        actor = self._actor(actor)
        ticket, refusal = self._load("assign", ticket_id, actor)
        if refusal:
            return refusal

        if not permissions.can_reassign_ticket(actor, ticket):
            return self._refuse(
                "assign", Outcome.DENIED,
                "Only admins can assign open or in-progress tickets", actor, ticket,
            )

        assignee = self.state.get_user(user_id)
        if assignee is None or not assignee.is_staff:
            return self._refuse(
                "assign", Outcome.INVALID,
                "Tickets can only be assigned to developers or admins", actor, ticket,
            )

        return await self._commit("assign", ticket, {
            "assigned_to_id": assignee.id,
            "status": TicketStatus.IN_PROGRESS,
            "logs": [*ticket.logs, self._log(f"Ticket assigned to {assignee.name}", actor)],
        }, actor)

    async def reject_new_ticket(
        self,
        ticket_id: UUID,
        reason: str,
        actor: Optional[User] = None,
    ) -> WorkflowResult:
        """Admin turns down a ticket before anyone starts on it."""
        actor = self._actor(actor)
        ticket, refusal = self._load("reject_new_ticket", ticket_id, actor)
        if refusal:
            return refusal

        if not permissions.can_reject_new_ticket(actor, ticket):
            return self._refuse(
                "reject_new_ticket", Outcome.DENIED,
                "Only admins can reject an open ticket", actor, ticket,
            )
        if not reason.strip():
            return self._refuse(
                "reject_new_ticket", Outcome.INVALID, "A reason is required", actor, ticket,
            )

        return await self._commit("reject_new_ticket", ticket, {
            "status": TicketStatus.CLOSED,
            "rejection": RejectionRecord(reason=reason),
            "logs": [*ticket.logs, self._log(f"New ticket rejected (Reason: {reason})", actor)],
        }, actor)

    async def submit_resolution(
        self,
        ticket_id: UUID,
        note: Optional[str] = None,
        attachments: Optional[List[Attachment]] = None,
        actor: Optional[User] = None,
    ) -> WorkflowResult:
        """
        Assignee (or admin) hands the finished ticket to its creator.

        Requires IN_PROGRESS and every active task completed. A ticket with
        no active tasks is eligible.
        """
        actor = self._actor(actor)
        ticket, refusal = self._load("submit_resolution", ticket_id, actor)
        if refusal:
            return refusal

        if not permissions.can_submit_resolution(actor, ticket):
            return self._refuse(
                "submit_resolution", Outcome.DENIED,
                "Resolution needs the assignee or an admin, an in-progress ticket "
                "and all active tasks completed",
                actor, ticket,
            )

        return await self._commit("submit_resolution", ticket, {
            "status": TicketStatus.RESOLVED,
            "resolution": ResolutionRecord(note=note or None, attachments=list(attachments or [])),
            "logs": [*ticket.logs, self._log("Ticket resolved", actor)],
        }, actor)

    async def accept_resolution(self, ticket_id: UUID, actor: Optional[User] = None) -> WorkflowResult:
        """Creator signs off. Nobody else can, admins included."""
        actor = self._actor(actor)
        ticket, refusal = self._load("accept_resolution", ticket_id, actor)
        if refusal:
            return refusal

        if not permissions.can_accept_resolution(actor, ticket):
            return self._refuse(
                "accept_resolution", Outcome.DENIED,
                "Only the creator can accept a resolved ticket", actor, ticket,
            )

        return await self._commit("accept_resolution", ticket, {
            "status": TicketStatus.CLOSED,
            "logs": [*ticket.logs, self._log("Ticket accepted and closed", actor)],
        }, actor)

    async def reject_resolution(
        self,
        ticket_id: UUID,
        reason: str,
        attachments: Optional[List[Attachment]] = None,
        actor: Optional[User] = None,
    ) -> WorkflowResult:
        """Creator sends the ticket back to IN_PROGRESS with a reason."""
        actor = self._actor(actor)
        ticket, refusal = self._load("reject_resolution", ticket_id, actor)
        if refusal:
            return refusal

        if not permissions.can_reject_resolution(actor, ticket):
            return self._refuse(
                "reject_resolution", Outcome.DENIED,
                "Only the creator can reject a resolved ticket", actor, ticket,
            )
        if not reason.strip():
            return self._refuse(
                "reject_resolution", Outcome.INVALID, "A reason is required", actor, ticket,
            )

        return await self._commit("reject_resolution", ticket, {
            "status": TicketStatus.IN_PROGRESS,
            "rejection": RejectionRecord(reason=reason, attachments=list(attachments or [])),
            "logs": [*ticket.logs, self._log(f"Ticket rejected (Reason: {reason})", actor)],
        }, actor)

    async def cancel(self, ticket_id: UUID, actor: Optional[User] = None) -> WorkflowResult:
        """Creator withdraws a ticket that is not closed yet."""
        actor = self._actor(actor)
        ticket, refusal = self._load("cancel", ticket_id, actor)
        if refusal:
            return refusal

        if not permissions.can_cancel_ticket(actor, ticket):
            return self._refuse(
                "cancel", Outcome.DENIED,
                "Only the creator can cancel a ticket that is not closed", actor, ticket,
            )

        return await self._commit("cancel", ticket, {
            "status": TicketStatus.CLOSED,
            "logs": [*ticket.logs, self._log("Ticket canceled", actor)],
        }, actor)

    async def delete_ticket(self, ticket_id: UUID, actor: Optional[User] = None) -> WorkflowResult:
        """
        Admin hard delete. Lives outside the state machine; logs and tasks
        go with the document.
        """
        actor = self._actor(actor)
        ticket, refusal = self._load("delete_ticket", ticket_id, actor)
        if refusal:
            return refusal

        if not permissions.can_delete_ticket(actor, ticket):
            return self._refuse(
                "delete_ticket", Outcome.DENIED, "Only admins can delete tickets", actor, ticket,
            )

        try:
            await self.store.delete_ticket(ticket.id)
        except PersistenceError as e:
            logger.warning("delete_ticket %s not applied: %s", ticket.id, e)
            return WorkflowResult.refused(Outcome.FAILED, str(e), ticket)

        logger.info("Ticket %s deleted by %s", ticket.id, actor.id)
        return WorkflowResult.ok(None)

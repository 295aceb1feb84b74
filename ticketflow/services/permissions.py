"""
TicketFlow Permission Engine

Stateless answers to "may this user do X to this ticket (and task)?".

Two separations matter most:
- Work vs outcome: the assignee (or an admin) submits a resolution, but
  only the ticket's creator may accept or reject it. No role overrides that.
- Ticket vs task assignee: reviewing a task belongs to the ticket's
  assignee (or an admin), whoever the task itself is assigned to.

Tasks are frozen once the ticket is RESOLVED (waiting on the creator) or
CLOSED (read-only). Rejecting the resolution thaws them.
"""

from enum import Enum
from typing import Optional, Set

from ..models import (
    ApprovalStatus,
    Task,
    Ticket,
    TicketStatus,
    User,
    UserRole,
    has_all_tasks_approved,
)


class Capability(str, Enum):
    VIEW_TICKET = "view_ticket"
    CLAIM_TICKET = "claim_ticket"
    REASSIGN_TICKET = "reassign_ticket"
    REJECT_NEW_TICKET = "reject_new_ticket"
    MANAGE_TASKS = "manage_tasks"
    SUBMIT_RESOLUTION = "submit_resolution"
    ACCEPT_RESOLUTION = "accept_resolution"
    REJECT_RESOLUTION = "reject_resolution"
    CANCEL_TICKET = "cancel_ticket"
    DELETE_TICKET = "delete_ticket"

    # Task-scoped
    CLAIM_TASK = "claim_task"
    ASSIGN_TASK = "assign_task"
    SUBMIT_TASK = "submit_task"
    REVIEW_TASK = "review_task"
    TOGGLE_TASK = "toggle_task"

    # Not tied to a ticket
    MANAGE_USERS = "manage_users"
    VIEW_REPORTS = "view_reports"
    VIEW_TASK_LISTS = "view_task_lists"


def _is_admin(user: Optional[User]) -> bool:
    return user is not None and user.role == UserRole.ADMIN


def _is_staff(user: Optional[User]) -> bool:
    return user is not None and user.role in (UserRole.ADMIN, UserRole.DEVELOPER)


def _is_creator(user: Optional[User], ticket: Ticket) -> bool:
    return user is not None and ticket.created_by_id == user.id


def _is_ticket_assignee(user: Optional[User], ticket: Ticket) -> bool:
    return user is not None and ticket.assigned_to_id == user.id


def _tasks_frozen(ticket: Ticket) -> bool:
    return ticket.status in (TicketStatus.RESOLVED, TicketStatus.CLOSED)


# =============================================================================
# Ticket capabilities
# =============================================================================

def can_view_ticket(user: Optional[User], ticket: Ticket) -> bool:
    if user is None:
        return False
    if user.role == UserRole.CUSTOMER:
        return _is_creator(user, ticket)
    return True


def can_claim_ticket(user: Optional[User], ticket: Ticket) -> bool:
    return (
        ticket.status == TicketStatus.OPEN
        and ticket.assigned_to_id is None
        and _is_staff(user)
    )


def can_reassign_ticket(user: Optional[User], ticket: Ticket) -> bool:
    return _is_admin(user) and ticket.status in (TicketStatus.OPEN, TicketStatus.IN_PROGRESS)


def can_reject_new_ticket(user: Optional[User], ticket: Ticket) -> bool:
    return _is_admin(user) and ticket.status == TicketStatus.OPEN


def can_manage_tasks(user: Optional[User], ticket: Ticket) -> bool:
    if _tasks_frozen(ticket):
        return False
    if _is_admin(user):
        return True
    return (
        user is not None
        and user.role == UserRole.DEVELOPER
        and _is_ticket_assignee(user, ticket)
    )


def can_submit_resolution(user: Optional[User], ticket: Ticket) -> bool:
    return (
        (_is_admin(user) or _is_ticket_assignee(user, ticket))
        and ticket.status == TicketStatus.IN_PROGRESS
        and has_all_tasks_approved(ticket)
    )


def can_accept_resolution(user: Optional[User], ticket: Ticket) -> bool:
    # Creator only. Admins and the assignee never qualify by role.
    return _is_creator(user, ticket) and ticket.status == TicketStatus.RESOLVED


def can_reject_resolution(user: Optional[User], ticket: Ticket) -> bool:
    return _is_creator(user, ticket) and ticket.status == TicketStatus.RESOLVED


def can_cancel_ticket(user: Optional[User], ticket: Ticket) -> bool:
    return _is_creator(user, ticket) and ticket.status != TicketStatus.CLOSED


def can_delete_ticket(user: Optional[User], ticket: Ticket) -> bool:
    return _is_admin(user)


# =============================================================================
# Task capabilities
# =============================================================================

def can_claim_task(user: Optional[User], ticket: Ticket, task: Task) -> bool:
    return (
        not _tasks_frozen(ticket)
        and not task.is_deleted
        and task.assigned_to_id is None
        and not task.is_completed
        and _is_staff(user)
    )


def can_assign_task(user: Optional[User], ticket: Ticket, task: Task) -> bool:
    return _is_admin(user) and not _tasks_frozen(ticket) and not task.is_deleted


def can_submit_task(user: Optional[User], ticket: Ticket, task: Task) -> bool:
    if user is None or _tasks_frozen(ticket) or task.is_deleted:
        return False
    return (
        (task.assigned_to_id == user.id or _is_admin(user))
        and not task.is_completed
        and task.approval_status != ApprovalStatus.PENDING
    )


def can_review_task(user: Optional[User], ticket: Ticket, task: Optional[Task] = None) -> bool:
    """
    Task assignee is irrelevant here; the ticket's assignee reviews.
    Without a task this answers for the ticket as a whole.
    """
    if _tasks_frozen(ticket) or (task is not None and task.is_deleted):
        return False
    if _is_admin(user):
        return True
    return (
        user is not None
        and user.role == UserRole.DEVELOPER
        and _is_ticket_assignee(user, ticket)
    )


def can_toggle_task(user: Optional[User], ticket: Ticket, task: Task) -> bool:
    return can_manage_tasks(user, ticket) and not task.is_deleted


# =============================================================================
# Global capabilities
# =============================================================================

def can_manage_users(user: Optional[User]) -> bool:
    return _is_admin(user)


def can_view_reports(user: Optional[User]) -> bool:
    return _is_staff(user)


def can_view_task_lists(user: Optional[User]) -> bool:
    """Pool, my tasks and task history. Customers never see task cards."""
    return _is_staff(user)


# =============================================================================
# Aggregate
# =============================================================================

def capabilities(
    user: Optional[User],
    ticket: Ticket,
    task: Optional[Task] = None,
) -> Set[Capability]:
    """Everything the user may currently do to the ticket (and task)."""
    checks = {
        Capability.VIEW_TICKET: can_view_ticket,
        Capability.CLAIM_TICKET: can_claim_ticket,
        Capability.REASSIGN_TICKET: can_reassign_ticket,
        Capability.REJECT_NEW_TICKET: can_reject_new_ticket,
        Capability.MANAGE_TASKS: can_manage_tasks,
        Capability.SUBMIT_RESOLUTION: can_submit_resolution,
        Capability.ACCEPT_RESOLUTION: can_accept_resolution,
        Capability.REJECT_RESOLUTION: can_reject_resolution,
        Capability.CANCEL_TICKET: can_cancel_ticket,
        Capability.DELETE_TICKET: can_delete_ticket,
    }
    granted = {cap for cap, check in checks.items() if check(user, ticket)}

    if task is not None:
        task_checks = {
            Capability.CLAIM_TASK: can_claim_task,
            Capability.ASSIGN_TASK: can_assign_task,
            Capability.SUBMIT_TASK: can_submit_task,
            Capability.REVIEW_TASK: can_review_task,
            Capability.TOGGLE_TASK: can_toggle_task,
        }
        granted |= {cap for cap, check in task_checks.items() if check(user, ticket, task)}

    return granted

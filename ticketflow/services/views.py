"""
TicketFlow Views

Role-specific lists recomputed from the full ticket collection on every
read. Nothing here is stored or mutated.

Ordering:
- Ticket lists: newest first (created_at descending)
- Task lists: follow their ticket's order, then task order within it
- Logs: insertion order, which is also causal order
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional
from uuid import UUID

from ..models import (
    CANCELED_MARKER,
    NEW_REJECTION_MARKER,
    ApprovalStatus,
    Task,
    Ticket,
    TicketLog,
    TicketStatus,
    User,
    UserRole,
)
from .permissions import can_review_task, can_view_task_lists, can_view_ticket


@dataclass
class TaskView:
    """A task with the ticket context list views need."""
    task: Task
    ticket_id: UUID
    ticket_title: str
    ticket_assigned_to_id: Optional[UUID] = None


@dataclass
class TaskHistory:
    mine: List[TaskView] = field(default_factory=list)
    all: List[TaskView] = field(default_factory=list)


@dataclass
class StaffReport:
    """Delivered work per staff member."""
    user: User
    closed_tickets: List[Ticket] = field(default_factory=list)
    completed_tasks: List[TaskView] = field(default_factory=list)


def newest_first(tickets: Iterable[Ticket]) -> List[Ticket]:
    return sorted(tickets, key=lambda t: t.created_at, reverse=True)


def _task_rows(tickets: Iterable[Ticket]) -> List[TaskView]:
    rows = []
    for ticket in newest_first(tickets):
        for task in ticket.tasks:
            if task.is_deleted:
                continue
            rows.append(TaskView(
                task=task,
                ticket_id=ticket.id,
                ticket_title=ticket.title,
                ticket_assigned_to_id=ticket.assigned_to_id,
            ))
    return rows


# =============================================================================
# Tickets
# =============================================================================

def visible_tickets(tickets: Iterable[Ticket], user: Optional[User]) -> List[Ticket]:
    """Staff see everything; customers see what they created."""
    return [t for t in newest_first(tickets) if can_view_ticket(user, t)]


def ticket_approvals(tickets: Iterable[Ticket], user: Optional[User]) -> List[Ticket]:
    """Resolved tickets waiting on this user's sign-off as creator."""
    if user is None:
        return []
    return [
        t for t in newest_first(tickets)
        if t.status == TicketStatus.RESOLVED and t.created_by_id == user.id
    ]


def ticket_history(tickets: Iterable[Ticket], user: Optional[User]) -> List[Ticket]:
    if user is None:
        return []
    finished = (TicketStatus.RESOLVED, TicketStatus.CLOSED)
    return [
        t for t in newest_first(tickets)
        if t.status in finished
        and (user.role != UserRole.CUSTOMER or t.created_by_id == user.id)
    ]


def ticket_logs(ticket: Ticket) -> List[TicketLog]:
    """Logs exactly as appended."""
    return list(ticket.logs)


# =============================================================================
# Tasks
# =============================================================================

def task_pool(tickets: Iterable[Ticket]) -> List[TaskView]:
    """Unclaimed, unfinished work."""
    return [
        row for row in _task_rows(tickets)
        if row.task.assigned_to_id is None and not row.task.is_completed
    ]


def my_tasks(tickets: Iterable[Ticket], user: Optional[User]) -> List[TaskView]:
    if user is None:
        return []
    return [
        row for row in _task_rows(tickets)
        if row.task.assigned_to_id == user.id and not row.task.is_completed
    ]


def ongoing_tasks(tickets: Iterable[Ticket]) -> List[TaskView]:
    """Every assigned, unfinished task (admin overview)."""
    return [
        row for row in _task_rows(tickets)
        if row.task.assigned_to_id is not None and not row.task.is_completed
    ]


def task_approvals(tickets: Iterable[Ticket], user: Optional[User]) -> List[TaskView]:
    """
    PENDING submissions this user may review: all of them for admins,
    those on tickets assigned to them for developers, none for customers.
    """
    if user is None or user.role == UserRole.CUSTOMER:
        return []
    tickets = list(tickets)
    reviewable = {t.id for t in tickets if can_review_task(user, t)}
    return [
        row for row in _task_rows(tickets)
        if row.task.approval_status == ApprovalStatus.PENDING
        and row.ticket_id in reviewable
    ]


def task_history(tickets: Iterable[Ticket], user: Optional[User]) -> TaskHistory:
    """Completed work for staff. Customers get an empty history."""
    if not can_view_task_lists(user):
        return TaskHistory()
    completed = [row for row in _task_rows(tickets) if row.task.is_completed]
    mine = [row for row in completed if row.task.assigned_to_id == user.id]
    return TaskHistory(mine=mine, all=completed)


# =============================================================================
# Reports
# =============================================================================

def _delivered(ticket: Ticket) -> bool:
    """Closed through acceptance, not by cancellation or new-ticket rejection."""
    return not any(
        CANCELED_MARKER in log.text or NEW_REJECTION_MARKER in log.text
        for log in ticket.logs
    )


def staff_reports(
    tickets: Iterable[Ticket],
    users: Iterable[User],
    user_id: Optional[UUID] = None,
) -> List[StaffReport]:
    """
    Per staff member: closed tickets they were assigned (excluding canceled
    and rejected-new ones) and completed, non-deleted tasks they own.
    Pass user_id to restrict to one person.
    """
    tickets = list(tickets)
    task_rows = _task_rows(tickets)

    reports = []
    for user in users:
        if not user.is_staff:
            continue
        if user_id is not None and user.id != user_id:
            continue
        reports.append(StaffReport(
            user=user,
            closed_tickets=[
                t for t in newest_first(tickets)
                if t.status == TicketStatus.CLOSED
                and t.assigned_to_id == user.id
                and _delivered(t)
            ],
            completed_tasks=[
                row for row in task_rows
                if row.task.is_completed and row.task.assigned_to_id == user.id
            ],
        ))
    return reports

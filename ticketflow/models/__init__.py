"""
TicketFlow Engine Models

Tickets with embedded tasks, append-only logs, and role-based users.
"""

from .ticket import (
    # Enums
    TicketType,
    TicketStatus,
    Priority,
    ApprovalStatus,

    # Core models
    Ticket,
    Task,
    TicketLog,
    Attachment,

    # Lifecycle records
    TaskSubmission,
    ResolutionRecord,
    RejectionRecord,

    # Rules and predicates
    TRANSITIONS,
    IMMUTABLE_TICKET_FIELDS,
    CANCELED_MARKER,
    NEW_REJECTION_MARKER,
    is_valid_transition,
    active_tasks,
    has_all_tasks_approved,
    progress,
    utcnow,
)
from .user import User, UserRole, STAFF_ROLES

__all__ = [
    "TicketType", "TicketStatus", "Priority", "ApprovalStatus",
    "Ticket", "Task", "TicketLog", "Attachment",
    "TaskSubmission", "ResolutionRecord", "RejectionRecord",
    "TRANSITIONS", "IMMUTABLE_TICKET_FIELDS", "CANCELED_MARKER", "NEW_REJECTION_MARKER",
    "is_valid_transition", "active_tasks", "has_all_tasks_approved", "progress", "utcnow",
    "User", "UserRole", "STAFF_ROLES",
]

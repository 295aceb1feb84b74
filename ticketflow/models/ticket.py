"""
TicketFlow Ticket Model

Creator / assignee split with nested task approval.

Core principles:
1. Ticket = customer request for work
2. Creator is IMMUTABLE and is the only one who approves the outcome
3. Tasks live inside their ticket and are never physically removed
4. Logs are append-only and ordered by insertion
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class TicketType(str, Enum):
    BUG_ISSUE = "BUG_ISSUE"
    FEATURE_REQUEST = "FEATURE_REQUEST"
    SELF_INITIATION = "SELF_INITIATION"


class TicketStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ApprovalStatus(str, Enum):
    NONE = "NONE"          # Never submitted, or reset by toggle
    PENDING = "PENDING"    # Submitted, waiting for review
    APPROVED = "APPROVED"  # Reviewed and accepted, task is complete
    REJECTED = "REJECTED"  # Reviewed and sent back, can be resubmitted


# Legal ticket status moves. CLOSED has no way out.
TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
    TicketStatus.OPEN: frozenset({TicketStatus.IN_PROGRESS, TicketStatus.CLOSED}),
    TicketStatus.IN_PROGRESS: frozenset({
        TicketStatus.IN_PROGRESS,  # admin reassignment
        TicketStatus.RESOLVED,
        TicketStatus.CLOSED,
    }),
    TicketStatus.RESOLVED: frozenset({TicketStatus.IN_PROGRESS, TicketStatus.CLOSED}),
    TicketStatus.CLOSED: frozenset(),
}

# Log markers for tickets closed without the work being delivered
CANCELED_MARKER = "Ticket canceled"
NEW_REJECTION_MARKER = "New ticket rejected"


# =============================================================================
# VALUE RECORDS
# =============================================================================

class Attachment(BaseModel):
    """An uploaded file. Referenced, never mutated."""
    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    name: str
    mime_type: str = "application/octet-stream"
    content_ref: str  # Opaque pointer to the stored bytes


class TicketLog(BaseModel):
    """
    One line in a ticket's activity log.

    user_name is a snapshot taken when the entry was written so the log
    still reads correctly after the user is renamed or deleted.
    """
    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    text: str
    created_at: datetime = Field(default_factory=utcnow)
    user_id: UUID
    user_name: str


class TaskSubmission(BaseModel):
    """Work handed in for review. Only exists once a task was submitted."""
    model_config = ConfigDict(frozen=True)

    note: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)
    submitted_by_id: UUID
    submitted_at: datetime = Field(default_factory=utcnow)


class ResolutionRecord(BaseModel):
    """Set when the ticket reaches RESOLVED. Kept across later rejections."""
    model_config = ConfigDict(frozen=True)

    note: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)


class RejectionRecord(BaseModel):
    """Set by a new-ticket rejection or a rejected resolution."""
    model_config = ConfigDict(frozen=True)

    reason: str
    attachments: List[Attachment] = Field(default_factory=list)


# =============================================================================
# CORE MODELS
# =============================================================================

class Task(BaseModel):
    """
    Sub-unit of work owned by exactly one ticket.

    Invariant: is_completed is True if and only if approval_status is
    APPROVED. Soft-deleted tasks stay in the ticket for log and report
    integrity.
    """
    id: UUID = Field(default_factory=uuid4)

    title: str
    description: str = ""

    is_completed: bool = False
    approval_status: ApprovalStatus = ApprovalStatus.NONE

    assigned_to_id: Optional[UUID] = None
    due_date: Optional[datetime] = None

    submission: Optional[TaskSubmission] = None
    is_deleted: bool = False

    @model_validator(mode="after")
    def _completion_matches_approval(self) -> "Task":
        if self.is_completed != (self.approval_status == ApprovalStatus.APPROVED):
            raise ValueError(
                f"task {self.id}: is_completed={self.is_completed} "
                f"contradicts approval_status={self.approval_status.value}"
            )
        return self

    @property
    def is_active(self) -> bool:
        return not self.is_deleted


class Ticket(BaseModel):
    """
    The top-level unit of work.

    created_by_id / created_by_name are fixed at creation. assigned_to_id
    is set whenever the ticket is IN_PROGRESS or RESOLVED.
    """
    id: UUID = Field(default_factory=uuid4)

    title: str
    description: str = ""
    type: TicketType = TicketType.SELF_INITIATION
    priority: Priority = Priority.MEDIUM
    status: TicketStatus = TicketStatus.OPEN

    # Creator (immutable) and assignee
    created_by_id: UUID
    created_by_name: str
    assigned_to_id: Optional[UUID] = None

    created_at: datetime = Field(default_factory=utcnow)

    # Owned collections
    logs: List[TicketLog] = Field(default_factory=list)
    attachments: List[Attachment] = Field(default_factory=list)
    tasks: List[Task] = Field(default_factory=list)

    # Lifecycle records
    resolution: Optional[ResolutionRecord] = None
    rejection: Optional[RejectionRecord] = None

    @property
    def active_tasks(self) -> List[Task]:
        return active_tasks(self)

    def find_task(self, task_id: UUID) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None


# Fields a generic patch may never rewrite
IMMUTABLE_TICKET_FIELDS = frozenset({"id", "created_by_id", "created_by_name", "created_at"})


# =============================================================================
# PREDICATES
# =============================================================================

def is_valid_transition(current: TicketStatus, target: TicketStatus) -> bool:
    return target in TRANSITIONS[current]


def active_tasks(ticket: Ticket) -> List[Task]:
    return [t for t in ticket.tasks if t.is_active]


def has_all_tasks_approved(ticket: Ticket) -> bool:
    """True when every non-deleted task is complete. Vacuously true for none."""
    return all(t.is_completed for t in active_tasks(ticket))


def progress(ticket: Ticket) -> float:
    """Percentage of active tasks completed, 0 when there are none."""
    active = active_tasks(ticket)
    if not active:
        return 0.0
    done = len([t for t in active if t.is_completed])
    return done / len(active) * 100

"""
TicketFlow Task Workflow

Per-task approval sub-machine, embedded in its ticket:

    NONE --submit--> PENDING --approve--> APPROVED (completed)
                             --reject---> REJECTED (resubmittable)

    toggle: privileged shortcut, flips completion and lands on
            APPROVED or NONE without passing through PENDING

Tasks are never removed from the ticket; delete sets is_deleted. Every
command rewrites the ticket's whole task array in a single write.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import UUID

from ..models import (
    ApprovalStatus,
    Attachment,
    Task,
    TaskSubmission,
    Ticket,
    User,
)
from . import permissions
from .advisor import NullAdvisor, TaskAdvisor
from .workflow import Outcome, WorkflowBase, WorkflowResult

logger = logging.getLogger(__name__)

TaskCheck = Callable[[Optional[User], Ticket, Task], bool]


def _replace_task(ticket: Ticket, task_id: UUID, changes: Dict[str, Any]) -> List[Task]:
    """New task array with one task rewritten (and revalidated)."""
    tasks = []
    for task in ticket.tasks:
        if task.id == task_id:
            task = Task.model_validate({**task.model_dump(), **changes})
        tasks.append(task)
    return tasks


class TaskWorkflowService(WorkflowBase):
    """
    Task-level commands.

    Rules of thumb:
    - Ticket assignee (developer) or any admin manages and reviews tasks
    - Task assignee (or admin) submits work
    - Anyone on staff can pick up an unassigned task
    """

    def __init__(self, state, store, advisor: Optional[TaskAdvisor] = None):
        super().__init__(state, store)
        self.advisor = advisor or NullAdvisor()

    def _load_task(
        self,
        action: str,
        ticket_id: UUID,
        task_id: UUID,
        actor: Optional[User],
    ) -> Tuple[Optional[Ticket], Optional[Task], Optional[WorkflowResult]]:
        ticket, refusal = self._load(action, ticket_id, actor)
        if refusal:
            return None, None, refusal
        task = ticket.find_task(task_id)
        if task is None:
            return None, None, self._refuse(action, Outcome.NOT_FOUND, "Task not found", actor, ticket)
        return ticket, task, None

    async def _task_command(
        self,
        action: str,
        ticket_id: UUID,
        task_id: UUID,
        actor: Optional[User],
        check: TaskCheck,
        denial: str,
        changes: Callable[[Task, User], Dict[str, Any]],
        precondition: Optional[Callable[[Task], bool]] = None,
    ) -> WorkflowResult:
        """Load, check, rewrite one task, commit."""
        actor = self._actor(actor)
        ticket, task, refusal = self._load_task(action, ticket_id, task_id, actor)
        if refusal:
            return refusal

        if not check(actor, ticket, task):
            return self._refuse(action, Outcome.DENIED, denial, actor, ticket)
        if precondition is not None and not precondition(task):
            return self._refuse(
                action, Outcome.DENIED,
                f"Task is {task.approval_status.value}, cannot {action.replace('_', ' ')}",
                actor, ticket,
            )

        tasks = _replace_task(ticket, task.id, changes(task, actor))
        return await self._commit(action, ticket, {"tasks": tasks}, actor)

    # =========================================================================
    # Managing tasks
    # =========================================================================

    async def add_task(
        self,
        ticket_id: UUID,
        title: str,
        description: str = "",
        assigned_to_id: Optional[UUID] = None,
        due_date: Optional[datetime] = None,
        actor: Optional[User] = None,
    ) -> WorkflowResult:
        """Append a task. Needs the ticket's developer assignee or an admin."""
        actor = self._actor(actor)
        ticket, refusal = self._load("add_task", ticket_id, actor)
        if refusal:
            return refusal

        if not permissions.can_manage_tasks(actor, ticket):
            return self._refuse(
                "add_task", Outcome.DENIED,
                "Only an admin or the ticket's developer can add tasks, and only before resolution",
                actor, ticket,
            )
        if not title.strip():
            return self._refuse("add_task", Outcome.INVALID, "Task title is required", actor, ticket)
        if assigned_to_id is not None and not self._is_staff_user(assigned_to_id):
            return self._refuse(
                "add_task", Outcome.INVALID,
                "Tasks can only be assigned to developers or admins", actor, ticket,
            )

        task = Task(
            title=title.strip(),
            description=description,
            assigned_to_id=assigned_to_id,
            due_date=due_date,
        )
        return await self._commit("add_task", ticket, {"tasks": [*ticket.tasks, task]}, actor)

    async def update_task(
        self,
        ticket_id: UUID,
        task_id: UUID,
        title: Optional[str] = None,
        description: Optional[str] = None,
        due_date: Optional[datetime] = None,
        clear_due_date: bool = False,
        actor: Optional[User] = None,
    ) -> WorkflowResult:
        """
        Edit task details. Approval fields are not editable here.

        None leaves a field as it is; pass clear_due_date to drop the due date.
        """
        actor = self._actor(actor)
        changes: Dict[str, Any] = {}
        if title is not None:
            if not title.strip():
                return self._refuse(
                    "update_task", Outcome.INVALID, "Task title is required",
                    actor, self.state.confirmed_ticket(ticket_id),
                )
            changes["title"] = title.strip()
        if description is not None:
            changes["description"] = description
        if clear_due_date:
            changes["due_date"] = None
        elif due_date is not None:
            changes["due_date"] = due_date

        return await self._task_command(
            "update_task", ticket_id, task_id, actor,
            check=lambda user, ticket, task: (
                permissions.can_manage_tasks(user, ticket) and not task.is_deleted
            ),
            denial="Only an admin or the ticket's developer can edit tasks, and only before resolution",
            changes=lambda task, user: changes,
        )

    async def delete_task(
        self,
        ticket_id: UUID,
        task_id: UUID,
        actor: Optional[User] = None,
    ) -> WorkflowResult:
        """Soft delete. The task stays in the array for logs and reports."""
        return await self._task_command(
            "delete_task", ticket_id, task_id, actor,
            check=lambda user, ticket, task: (
                permissions.can_manage_tasks(user, ticket) and not task.is_deleted
            ),
            denial="Only an admin or the ticket's developer can delete tasks, and only before resolution",
            changes=lambda task, user: {"is_deleted": True},
        )

    async def generate_tasks(self, ticket_id: UUID, actor: Optional[User] = None) -> WorkflowResult:
        """
        Ask the advisor for a breakdown and append every suggestion as a
        task with an empty description, in one write.
        """
        actor = self._actor(actor)
        ticket, refusal = self._load("generate_tasks", ticket_id, actor)
        if refusal:
            return refusal

        if not permissions.can_manage_tasks(actor, ticket):
            return self._refuse(
                "generate_tasks", Outcome.DENIED,
                "Only an admin or the ticket's developer can add tasks, and only before resolution",
                actor, ticket,
            )

        try:
            titles = await self.advisor.suggest_tasks(ticket.title, ticket.type, ticket.description)
        except Exception as e:  # advisor failures mean no suggestions
            logger.warning("Advisor raised for ticket %s: %s", ticket.id, e)
            titles = []

        titles = [t.strip() for t in titles if t and t.strip()]
        if not titles:
            return self._refuse(
                "generate_tasks", Outcome.INVALID, "No task suggestions available", actor, ticket,
            )

        new_tasks = [Task(title=title, description="") for title in titles]
        return await self._commit("generate_tasks", ticket, {"tasks": [*ticket.tasks, *new_tasks]}, actor)

    # =========================================================================
    # Assignment
    # =========================================================================

    async def claim_task(
        self,
        ticket_id: UUID,
        task_id: UUID,
        actor: Optional[User] = None,
    ) -> WorkflowResult:
        """Staff member picks an unassigned, unfinished task from the pool."""
        return await self._task_command(
            "claim_task", ticket_id, task_id, actor,
            check=permissions.can_claim_task,
            denial="Only staff can claim an unassigned, unfinished task",
            changes=lambda task, user: {"assigned_to_id": user.id},
        )

    async def assign_task(
        self,
        ticket_id: UUID,
        task_id: UUID,
        user_id: Optional[UUID],
        actor: Optional[User] = None,
    ) -> WorkflowResult:
        """Admin redirects a task to someone else, or unassigns it (None)."""
        if user_id is not None and not self._is_staff_user(user_id):
            return self._refuse(
                "assign_task", Outcome.INVALID,
                "Tasks can only be assigned to developers or admins",
                self._actor(actor), self.state.confirmed_ticket(ticket_id),
            )

        return await self._task_command(
            "assign_task", ticket_id, task_id, actor,
            check=permissions.can_assign_task,
            denial="Only admins can assign tasks",
            changes=lambda task, user: {"assigned_to_id": user_id},
        )

    # =========================================================================
    # Approval sub-machine
    # =========================================================================

    async def submit_task(
        self,
        ticket_id: UUID,
        task_id: UUID,
        note: Optional[str] = None,
        attachments: Optional[List[Attachment]] = None,
        actor: Optional[User] = None,
    ) -> WorkflowResult:
        """Task assignee (or admin) hands work in for review."""
        def changes(task: Task, user: User) -> Dict[str, Any]:
            return {
                "approval_status": ApprovalStatus.PENDING,
                "is_completed": False,
                "submission": TaskSubmission(
                    note=note or None,
                    attachments=list(attachments or []),
                    submitted_by_id=user.id,
                ).model_dump(),
            }

        return await self._task_command(
            "submit_task", ticket_id, task_id, actor,
            check=permissions.can_submit_task,
            denial="Only the task's assignee or an admin can submit unfinished, unsubmitted work",
            changes=changes,
        )

    async def approve_task(
        self,
        ticket_id: UUID,
        task_id: UUID,
        actor: Optional[User] = None,
    ) -> WorkflowResult:
        """Reviewer accepts a PENDING submission; the task is now complete."""
        return await self._task_command(
            "approve_task", ticket_id, task_id, actor,
            check=permissions.can_review_task,
            denial="Only an admin or the ticket's developer can review live tasks before resolution",
            changes=lambda task, user: {
                "is_completed": True,
                "approval_status": ApprovalStatus.APPROVED,
            },
            precondition=lambda task: task.approval_status == ApprovalStatus.PENDING,
        )

    async def reject_task(
        self,
        ticket_id: UUID,
        task_id: UUID,
        actor: Optional[User] = None,
    ) -> WorkflowResult:
        """Reviewer sends a PENDING submission back; it can be resubmitted."""
        return await self._task_command(
            "reject_task", ticket_id, task_id, actor,
            check=permissions.can_review_task,
            denial="Only an admin or the ticket's developer can review live tasks before resolution",
            changes=lambda task, user: {
                "is_completed": False,
                "approval_status": ApprovalStatus.REJECTED,
            },
            precondition=lambda task: task.approval_status == ApprovalStatus.PENDING,
        )

    async def toggle_task(
        self,
        ticket_id: UUID,
        task_id: UUID,
        actor: Optional[User] = None,
    ) -> WorkflowResult:
        """Override: flip completion, skipping review."""
        def changes(task: Task, user: User) -> Dict[str, Any]:
            completed = not task.is_completed
            return {
                "is_completed": completed,
                "approval_status": ApprovalStatus.APPROVED if completed else ApprovalStatus.NONE,
            }

        return await self._task_command(
            "toggle_task", ticket_id, task_id, actor,
            check=permissions.can_toggle_task,
            denial="Only an admin or the ticket's developer can override task completion before resolution",
            changes=changes,
        )

    def _is_staff_user(self, user_id: UUID) -> bool:
        user = self.state.get_user(user_id)
        return user is not None and user.is_staff

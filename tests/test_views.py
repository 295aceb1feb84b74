"""Tests for role-specific projections and staff reports."""

from __future__ import annotations

from datetime import timedelta

import pytest

from ticketflow.models import ApprovalStatus, Task, Ticket, TicketLog, TicketStatus, utcnow
from ticketflow.services import views


def ticket_for(creator, status=TicketStatus.OPEN, assignee=None, tasks=(), age_minutes=0, logs=()):
    return Ticket(
        title=f"{status.value} ticket",
        created_by_id=creator.id,
        created_by_name=creator.name,
        status=status,
        assigned_to_id=assignee.id if assignee else None,
        created_at=utcnow() - timedelta(minutes=age_minutes),
        tasks=list(tasks),
        logs=[TicketLog(text=text, user_id=creator.id, user_name=creator.name) for text in logs],
    )


def done_task(owner, title="done"):
    return Task(
        title=title,
        assigned_to_id=owner.id,
        is_completed=True,
        approval_status=ApprovalStatus.APPROVED,
    )


# =============================================================================
# Ticket lists
# =============================================================================


class TestTicketViews:
    def test_newest_first(self, customer) -> None:
        old = ticket_for(customer, age_minutes=30)
        new = ticket_for(customer, age_minutes=1)
        assert views.newest_first([old, new]) == [new, old]

    def test_customer_sees_own_tickets_only(self, customer, developer) -> None:
        mine = ticket_for(customer)
        theirs = ticket_for(developer)

        assert views.visible_tickets([mine, theirs], customer) == [mine]
        assert len(views.visible_tickets([mine, theirs], developer)) == 2
        assert views.visible_tickets([mine], None) == []

    def test_ticket_approvals_are_creator_scoped(self, customer, developer, admin) -> None:
        resolved = ticket_for(customer, TicketStatus.RESOLVED, developer)

        assert views.ticket_approvals([resolved], customer) == [resolved]
        assert views.ticket_approvals([resolved], admin) == []

    def test_ticket_history(self, customer, developer) -> None:
        open_ = ticket_for(customer)
        closed = ticket_for(customer, TicketStatus.CLOSED, developer)
        foreign = ticket_for(developer, TicketStatus.CLOSED, developer)

        assert views.ticket_history([open_, closed, foreign], customer) == [closed]
        assert set(t.id for t in views.ticket_history([open_, closed, foreign], developer)) == {
            closed.id, foreign.id,
        }

    def test_logs_keep_insertion_order(self, customer) -> None:
        ticket = ticket_for(customer, logs=["Ticket created", "Ticket claimed", "Ticket resolved"])
        assert [log.text for log in views.ticket_logs(ticket)] == [
            "Ticket created", "Ticket claimed", "Ticket resolved",
        ]


# =============================================================================
# Task lists
# =============================================================================


class TestTaskViews:
    def test_pool_holds_unassigned_unfinished(self, customer, developer) -> None:
        free = Task(title="free")
        taken = Task(title="taken", assigned_to_id=developer.id)
        gone = Task(title="gone", is_deleted=True)
        ticket = ticket_for(customer, TicketStatus.IN_PROGRESS, developer, [free, taken, gone])

        pool = views.task_pool([ticket])
        assert [row.task.id for row in pool] == [free.id]
        assert pool[0].ticket_id == ticket.id
        assert pool[0].ticket_title == ticket.title
        assert pool[0].ticket_assigned_to_id == developer.id

    def test_my_tasks_and_ongoing(self, customer, developer, other_developer) -> None:
        mine = Task(title="mine", assigned_to_id=developer.id)
        theirs = Task(title="theirs", assigned_to_id=other_developer.id)
        finished = done_task(developer)
        ticket = ticket_for(customer, TicketStatus.IN_PROGRESS, developer, [mine, theirs, finished])

        assert [r.task.id for r in views.my_tasks([ticket], developer)] == [mine.id]
        assert [r.task.id for r in views.ongoing_tasks([ticket])] == [mine.id, theirs.id]

    def test_task_approvals_follow_ticket_assignee(
        self, customer, developer, other_developer, admin
    ) -> None:
        pending = Task(
            title="review me",
            assigned_to_id=other_developer.id,
            approval_status=ApprovalStatus.PENDING,
        )
        ticket = ticket_for(customer, TicketStatus.IN_PROGRESS, developer, [pending])

        assert len(views.task_approvals([ticket], developer)) == 1
        assert len(views.task_approvals([ticket], admin)) == 1
        assert views.task_approvals([ticket], other_developer) == []
        assert views.task_approvals([ticket], customer) == []

    def test_task_history(self, customer, developer, other_developer) -> None:
        ticket = ticket_for(
            customer, TicketStatus.IN_PROGRESS, developer,
            [done_task(developer, "a"), done_task(other_developer, "b"), Task(title="open")],
        )
        history = views.task_history([ticket], developer)

        assert [r.task.title for r in history.mine] == ["a"]
        assert [r.task.title for r in history.all] == ["a", "b"]

    def test_task_history_is_empty_for_customers(self, customer, developer) -> None:
        ticket = ticket_for(customer, TicketStatus.IN_PROGRESS, developer, [done_task(developer)])
        history = views.task_history([ticket], customer)

        assert history.mine == []
        assert history.all == []


# =============================================================================
# Reports
# =============================================================================


class TestStaffReports:
    def test_excludes_undelivered_and_deleted(self, customer, developer, other_developer, admin) -> None:
        delivered = ticket_for(
            customer, TicketStatus.CLOSED, developer,
            tasks=[done_task(developer, "kept"), done_task(developer, "gone").model_copy(update={"is_deleted": True})],
            logs=["Ticket created", "Ticket accepted and closed"],
        )
        canceled = ticket_for(
            customer, TicketStatus.CLOSED, developer, logs=["Ticket created", "Ticket canceled"],
        )
        rejected = ticket_for(
            customer, TicketStatus.CLOSED, developer,
            logs=["Ticket created", "New ticket rejected (Reason: dup)"],
        )
        users = [customer, developer, other_developer, admin]

        reports = views.staff_reports([delivered, canceled, rejected], users)

        assert [r.user.id for r in reports] == [developer.id, other_developer.id, admin.id]
        dev_report = reports[0]
        assert dev_report.closed_tickets == [delivered]
        assert [r.task.title for r in dev_report.completed_tasks] == ["kept"]
        assert reports[1].closed_tickets == []

    def test_filter_by_user(self, customer, developer, admin) -> None:
        reports = views.staff_reports([], [customer, developer, admin], user_id=admin.id)
        assert [r.user.id for r in reports] == [admin.id]

    @pytest.mark.parametrize("status", [TicketStatus.RESOLVED, TicketStatus.IN_PROGRESS])
    def test_only_closed_tickets_count(self, status, customer, developer) -> None:
        ticket = ticket_for(customer, status, developer)
        reports = views.staff_reports([ticket], [developer])
        assert reports[0].closed_tickets == []

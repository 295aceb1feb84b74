"""Tests for TicketWorkflowService.

Walks the ticket state machine end to end:
- OPEN -> IN_PROGRESS -> RESOLVED -> CLOSED (happy path)
- Rejected resolution returns to IN_PROGRESS and can be resolved again
- New-ticket rejection and cancellation close without delivery
- Races re-check against confirmed state and refuse
- Store failures roll the provisional overlay back
"""

from __future__ import annotations

from uuid import uuid4

import pytest

from ticketflow.models import (
    ApprovalStatus,
    Attachment,
    Priority,
    Task,
    TicketStatus,
    TicketType,
)
from ticketflow.services import Outcome


async def open_ticket(engine, creator, title: str = "Checkout crashes"):
    result = await engine.tickets.create_ticket(
        title, "Stack trace attached", type=TicketType.BUG_ISSUE, priority=Priority.HIGH,
        actor=creator,
    )
    assert result.applied
    return result.ticket


def log_texts(ticket) -> list[str]:
    return [log.text for log in ticket.logs]


# =============================================================================
# Creation
# =============================================================================


class TestCreateTicket:
    @pytest.mark.asyncio
    async def test_new_ticket_defaults(self, engine, customer) -> None:
        ticket = await open_ticket(engine, customer)

        assert ticket.status == TicketStatus.OPEN
        assert ticket.assigned_to_id is None
        assert ticket.created_by_id == customer.id
        assert ticket.created_by_name == customer.name
        assert ticket.tasks == []
        assert log_texts(ticket) == ["Ticket created"]
        assert ticket.logs[0].user_name == customer.name

    @pytest.mark.asyncio
    async def test_ticket_is_persisted(self, engine, store, customer) -> None:
        ticket = await open_ticket(engine, customer)
        assert store.get_ticket(ticket.id) == ticket
        assert engine.state.confirmed_ticket(ticket.id) == ticket

    @pytest.mark.asyncio
    async def test_blank_title_is_invalid(self, engine, customer) -> None:
        result = await engine.tickets.create_ticket("   ", actor=customer)
        assert result.outcome == Outcome.INVALID
        assert engine.state.tickets == []

    @pytest.mark.asyncio
    async def test_requires_login(self, engine) -> None:
        result = await engine.tickets.create_ticket("Anything")
        assert result.outcome == Outcome.DENIED

    @pytest.mark.asyncio
    async def test_session_user_is_default_actor(self, engine, customer) -> None:
        engine.identity.login(customer.username, customer.password)
        result = await engine.tickets.create_ticket("From the session")
        assert result.applied
        assert result.ticket.created_by_id == customer.id

    @pytest.mark.asyncio
    async def test_attachments_are_kept(self, engine, customer) -> None:
        shot = Attachment(name="screen.png", mime_type="image/png", content_ref="blob://1")
        result = await engine.tickets.create_ticket("With file", attachments=[shot], actor=customer)
        assert result.ticket.attachments == [shot]


# =============================================================================
# Happy path
# =============================================================================


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_claim_resolve_accept(self, engine, customer, developer) -> None:
        ticket = await open_ticket(engine, customer)

        claimed = await engine.tickets.claim(ticket.id, actor=developer)
        assert claimed.applied
        assert claimed.ticket.status == TicketStatus.IN_PROGRESS
        assert claimed.ticket.assigned_to_id == developer.id

        resolved = await engine.tickets.submit_resolution(
            ticket.id, "Patched the null check", actor=developer,
        )
        assert resolved.applied
        assert resolved.ticket.status == TicketStatus.RESOLVED
        assert resolved.ticket.resolution.note == "Patched the null check"

        closed = await engine.tickets.accept_resolution(ticket.id, actor=customer)
        assert closed.applied
        assert closed.ticket.status == TicketStatus.CLOSED
        assert log_texts(closed.ticket) == [
            "Ticket created",
            "Ticket claimed",
            "Ticket resolved",
            "Ticket accepted and closed",
        ]

    @pytest.mark.asyncio
    async def test_rejected_resolution_goes_back_to_work(self, engine, customer, developer) -> None:
        ticket = await open_ticket(engine, customer)
        await engine.tickets.claim(ticket.id, actor=developer)
        await engine.tickets.submit_resolution(ticket.id, actor=developer)

        rejected = await engine.tickets.reject_resolution(
            ticket.id, "Still crashes on Safari", actor=customer,
        )
        assert rejected.applied
        assert rejected.ticket.status == TicketStatus.IN_PROGRESS
        assert rejected.ticket.assigned_to_id == developer.id
        assert rejected.ticket.rejection.reason == "Still crashes on Safari"
        assert log_texts(rejected.ticket)[-1] == "Ticket rejected (Reason: Still crashes on Safari)"

        again = await engine.tickets.submit_resolution(ticket.id, actor=developer)
        assert again.ticket.status == TicketStatus.RESOLVED

    @pytest.mark.asyncio
    async def test_resolution_waits_for_tasks(self, engine, customer, developer) -> None:
        ticket = await open_ticket(engine, customer)
        await engine.tickets.claim(ticket.id, actor=developer)
        added = await engine.tasks.add_task(ticket.id, "Write regression test", actor=developer)
        task = added.ticket.tasks[0]

        blocked = await engine.tickets.submit_resolution(ticket.id, actor=developer)
        assert blocked.outcome == Outcome.DENIED

        await engine.tasks.toggle_task(ticket.id, task.id, actor=developer)
        done = await engine.tickets.submit_resolution(ticket.id, actor=developer)
        assert done.applied

    @pytest.mark.asyncio
    async def test_admin_can_resolve_for_assignee(self, engine, customer, developer, admin) -> None:
        ticket = await open_ticket(engine, customer)
        await engine.tickets.claim(ticket.id, actor=developer)

        result = await engine.tickets.submit_resolution(ticket.id, actor=admin)
        assert result.applied

    @pytest.mark.asyncio
    async def test_admin_cannot_accept_for_creator(self, engine, customer, developer, admin) -> None:
        ticket = await open_ticket(engine, customer)
        await engine.tickets.claim(ticket.id, actor=developer)
        await engine.tickets.submit_resolution(ticket.id, actor=developer)

        result = await engine.tickets.accept_resolution(ticket.id, actor=admin)
        assert result.outcome == Outcome.DENIED
        assert engine.state.ticket(ticket.id).status == TicketStatus.RESOLVED


# =============================================================================
# Assignment
# =============================================================================


class TestAssign:
    @pytest.mark.asyncio
    async def test_admin_assigns_open_ticket(self, engine, customer, developer, admin) -> None:
        ticket = await open_ticket(engine, customer)

        result = await engine.tickets.assign(ticket.id, developer.id, actor=admin)
        assert result.applied
        assert result.ticket.status == TicketStatus.IN_PROGRESS
        assert result.ticket.assigned_to_id == developer.id
        assert log_texts(result.ticket)[-1] == f"Ticket assigned to {developer.name}"
        assert result.ticket.logs[-1].user_id == admin.id

    @pytest.mark.asyncio
    async def test_admin_reassigns_in_progress(
        self, engine, customer, developer, other_developer, admin
    ) -> None:
        ticket = await open_ticket(engine, customer)
        await engine.tickets.claim(ticket.id, actor=developer)

        result = await engine.tickets.assign(ticket.id, other_developer.id, actor=admin)
        assert result.applied
        assert result.ticket.assigned_to_id == other_developer.id
        assert result.ticket.status == TicketStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_developer_cannot_assign(self, engine, customer, developer, other_developer) -> None:
        ticket = await open_ticket(engine, customer)
        result = await engine.tickets.assign(ticket.id, other_developer.id, actor=developer)
        assert result.outcome == Outcome.DENIED

    @pytest.mark.asyncio
    async def test_customer_is_not_a_valid_assignee(self, engine, customer, admin) -> None:
        ticket = await open_ticket(engine, customer)
        result = await engine.tickets.assign(ticket.id, customer.id, actor=admin)
        assert result.outcome == Outcome.INVALID

    @pytest.mark.asyncio
    async def test_unknown_assignee(self, engine, customer, admin) -> None:
        ticket = await open_ticket(engine, customer)
        result = await engine.tickets.assign(ticket.id, uuid4(), actor=admin)
        assert result.outcome == Outcome.INVALID


# =============================================================================
# Closing without delivery
# =============================================================================


class TestCloseWithoutDelivery:
    @pytest.mark.asyncio
    async def test_reject_new_ticket(self, engine, customer, admin) -> None:
        ticket = await open_ticket(engine, customer)

        result = await engine.tickets.reject_new_ticket(ticket.id, "Duplicate", actor=admin)
        assert result.applied
        assert result.ticket.status == TicketStatus.CLOSED
        assert result.ticket.rejection.reason == "Duplicate"
        assert log_texts(result.ticket)[-1] == "New ticket rejected (Reason: Duplicate)"

    @pytest.mark.asyncio
    async def test_reject_new_needs_reason(self, engine, customer, admin) -> None:
        ticket = await open_ticket(engine, customer)
        result = await engine.tickets.reject_new_ticket(ticket.id, "  ", actor=admin)
        assert result.outcome == Outcome.INVALID

    @pytest.mark.asyncio
    async def test_reject_new_only_while_open(self, engine, customer, developer, admin) -> None:
        ticket = await open_ticket(engine, customer)
        await engine.tickets.claim(ticket.id, actor=developer)
        result = await engine.tickets.reject_new_ticket(ticket.id, "Too late", actor=admin)
        assert result.outcome == Outcome.DENIED

    @pytest.mark.asyncio
    async def test_creator_cancels(self, engine, customer, developer) -> None:
        ticket = await open_ticket(engine, customer)
        await engine.tickets.claim(ticket.id, actor=developer)

        result = await engine.tickets.cancel(ticket.id, actor=customer)
        assert result.applied
        assert result.ticket.status == TicketStatus.CLOSED
        assert log_texts(result.ticket)[-1] == "Ticket canceled"

    @pytest.mark.asyncio
    async def test_assignee_cannot_cancel(self, engine, customer, developer) -> None:
        ticket = await open_ticket(engine, customer)
        await engine.tickets.claim(ticket.id, actor=developer)
        result = await engine.tickets.cancel(ticket.id, actor=developer)
        assert result.outcome == Outcome.DENIED

    @pytest.mark.asyncio
    async def test_closed_is_terminal(self, engine, customer, admin) -> None:
        ticket = await open_ticket(engine, customer)
        await engine.tickets.cancel(ticket.id, actor=customer)

        assert (await engine.tickets.cancel(ticket.id, actor=customer)).outcome == Outcome.DENIED
        assert (await engine.tickets.claim(ticket.id, actor=admin)).outcome == Outcome.DENIED
        assert (await engine.tickets.assign(ticket.id, admin.id, actor=admin)).outcome == Outcome.DENIED


# =============================================================================
# Deletion
# =============================================================================


class TestDeleteTicket:
    @pytest.mark.asyncio
    async def test_admin_deletes(self, engine, store, customer, admin) -> None:
        ticket = await open_ticket(engine, customer)

        result = await engine.tickets.delete_ticket(ticket.id, actor=admin)
        assert result.applied
        assert result.ticket is None
        assert store.get_ticket(ticket.id) is None
        assert engine.state.ticket(ticket.id) is None

    @pytest.mark.asyncio
    async def test_creator_cannot_delete(self, engine, customer) -> None:
        ticket = await open_ticket(engine, customer)
        result = await engine.tickets.delete_ticket(ticket.id, actor=customer)
        assert result.outcome == Outcome.DENIED

    @pytest.mark.asyncio
    async def test_missing_ticket(self, engine, admin) -> None:
        result = await engine.tickets.delete_ticket(uuid4(), actor=admin)
        assert result.outcome == Outcome.NOT_FOUND


# =============================================================================
# Races and failures
# =============================================================================


class TestConcurrencyAndFailure:
    @pytest.mark.asyncio
    async def test_second_claim_loses(self, engine, customer, developer, other_developer) -> None:
        ticket = await open_ticket(engine, customer)

        first = await engine.tickets.claim(ticket.id, actor=developer)
        second = await engine.tickets.claim(ticket.id, actor=other_developer)

        assert first.applied
        assert second.outcome == Outcome.DENIED
        assert engine.state.ticket(ticket.id).assigned_to_id == developer.id

    @pytest.mark.asyncio
    async def test_action_on_deleted_ticket(self, engine, customer, developer, admin) -> None:
        ticket = await open_ticket(engine, customer)
        await engine.tickets.delete_ticket(ticket.id, actor=admin)

        result = await engine.tickets.claim(ticket.id, actor=developer)
        assert result.outcome == Outcome.NOT_FOUND

    @pytest.mark.asyncio
    async def test_store_failure_rolls_back(self, engine, store, customer, developer) -> None:
        ticket = await open_ticket(engine, customer)
        store.online = False

        result = await engine.tickets.claim(ticket.id, actor=developer)

        assert result.outcome == Outcome.FAILED
        assert not engine.state.has_provisional(ticket.id)
        assert engine.state.ticket(ticket.id).status == TicketStatus.OPEN
        assert store.get_ticket(ticket.id).status == TicketStatus.OPEN

    @pytest.mark.asyncio
    async def test_store_failure_on_create(self, engine, store, customer) -> None:
        store.online = False
        result = await engine.tickets.create_ticket("Offline", actor=customer)
        assert result.outcome == Outcome.FAILED
        assert engine.state.tickets == []

    @pytest.mark.asyncio
    async def test_one_write_per_command(self, engine, store, customer, developer) -> None:
        ticket = await open_ticket(engine, customer)
        before = store.writes
        await engine.tickets.claim(ticket.id, actor=developer)
        assert store.writes == before + 1

    @pytest.mark.asyncio
    async def test_refusal_does_not_write(self, engine, store, customer) -> None:
        ticket = await open_ticket(engine, customer)
        before = store.writes
        await engine.tickets.claim(ticket.id, actor=customer)
        assert store.writes == before

    @pytest.mark.asyncio
    async def test_creator_fields_survive_patches(self, engine, store, customer) -> None:
        ticket = await open_ticket(engine, customer)
        await store.patch_ticket(ticket.id, {"created_by_id": uuid4(), "title": "Renamed"})

        stored = store.get_ticket(ticket.id)
        assert stored.created_by_id == customer.id
        assert stored.title == "Renamed"

    @pytest.mark.asyncio
    async def test_resolution_recheck_sees_new_task(self, engine, customer, developer, admin) -> None:
        ticket = await open_ticket(engine, customer)
        await engine.tickets.claim(ticket.id, actor=developer)
        await engine.tasks.add_task(ticket.id, "Late follow-up", actor=admin)

        result = await engine.tickets.submit_resolution(ticket.id, actor=developer)
        assert result.outcome == Outcome.DENIED

    @pytest.mark.asyncio
    async def test_deleted_pending_task_does_not_block(self, engine, store, customer, developer) -> None:
        ticket = await open_ticket(engine, customer)
        await engine.tickets.claim(ticket.id, actor=developer)
        await store.patch_ticket(ticket.id, {"tasks": [
            Task(title="dropped", approval_status=ApprovalStatus.PENDING, is_deleted=True),
        ]})

        result = await engine.tickets.submit_resolution(ticket.id, actor=developer)
        assert result.applied

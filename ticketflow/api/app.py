"""
TicketFlow API

FastAPI application with:
- Ticket lifecycle (claim, assign, resolve, accept/reject, cancel)
- Task approval workflow
- Role-specific views and staff reports
- Username/password and client-portal login
- User administration and self-service profiles

The API is a thin collaborator: every decision is made by the workflow
and permission services. The acting user is passed as actor_id.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .. import __version__
from ..config import configure_logging
from ..engine import Engine, build_engine
from ..models import Attachment, Priority, Ticket, TicketType, User, UserRole, progress
from ..services import Outcome, WorkflowResult, capabilities, suggest_defaults, views
from ..services.permissions import (
    can_manage_users,
    can_view_reports,
    can_view_task_lists,
    can_view_ticket,
)


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class LoginRequest(BaseModel):
    username: str
    password: str


class PortalLoginRequest(BaseModel):
    client_token: str


class CreateTicketRequest(BaseModel):
    title: str
    description: str = ""
    type: Optional[TicketType] = None  # Advisor/default fills it in
    priority: Optional[Priority] = None
    attachments: List[Attachment] = []


class AssignRequest(BaseModel):
    user_id: UUID


class AssignTaskRequest(BaseModel):
    user_id: Optional[UUID] = None


class ReasonRequest(BaseModel):
    reason: str
    attachments: List[Attachment] = []


class NoteRequest(BaseModel):
    note: Optional[str] = None
    attachments: List[Attachment] = []


class CreateTaskRequest(BaseModel):
    title: str
    description: str = ""
    assigned_to_id: Optional[UUID] = None
    due_date: Optional[datetime] = None


class UpdateTaskRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    clear_due_date: bool = False


class CreateUserRequest(BaseModel):
    username: str
    name: str
    role: UserRole = UserRole.CUSTOMER
    password: Optional[str] = None
    email: Optional[str] = None
    company_name: Optional[str] = None
    avatar: str = ""
    bio: str = ""


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    avatar: Optional[str] = None
    bio: Optional[str] = None
    company_name: Optional[str] = None


class AdminUserUpdateRequest(ProfileUpdateRequest):
    username: Optional[str] = None
    password: Optional[str] = None
    role: Optional[UserRole] = None


# =============================================================================
# APP SETUP
# =============================================================================

def create_app(engine: Optional[Engine] = None) -> FastAPI:
    app = FastAPI(
        title="TicketFlow Engine",
        description="Ticket workflow with creator approval and nested task review",
        version=__version__,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.engine = engine or build_engine()
    configure_logging(app.state.engine.settings)
    app.include_router(_router())
    return app


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def get_actor(actor_id: UUID, engine: Engine = Depends(get_engine)) -> User:
    actor = engine.state.get_user(actor_id)
    if actor is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unknown actor")
    return actor


_STATUS_FOR_OUTCOME = {
    Outcome.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    Outcome.DENIED: status.HTTP_403_FORBIDDEN,
    Outcome.INVALID: status.HTTP_422_UNPROCESSABLE_ENTITY,
    Outcome.FAILED: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _respond(result: WorkflowResult) -> Dict[str, Any]:
    if not result.applied:
        raise HTTPException(_STATUS_FOR_OUTCOME[result.outcome], result.reason)
    if result.ticket is None:
        return {"outcome": result.outcome.value}
    return {"outcome": result.outcome.value, "ticket": result.ticket.model_dump(mode="json")}


def _viewable(engine: Engine, ticket_id: UUID, actor: User) -> Ticket:
    ticket = engine.state.ticket(ticket_id)
    if ticket is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Ticket not found")
    if not can_view_ticket(actor, ticket):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not your ticket")
    return ticket


def _task_row(row: views.TaskView) -> Dict[str, Any]:
    return {
        "task": row.task.model_dump(mode="json"),
        "ticket_id": str(row.ticket_id),
        "ticket_title": row.ticket_title,
        "ticket_assigned_to_id": str(row.ticket_assigned_to_id) if row.ticket_assigned_to_id else None,
    }


def _public_user(user: User) -> Dict[str, Any]:
    return user.model_dump(mode="json", exclude={"password"})


def _require(allowed: bool, detail: str) -> None:
    if not allowed:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail)


def _existing_user(engine: Engine, user_id: UUID) -> User:
    user = engine.state.get_user(user_id)
    if user is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "User not found")
    return user


def _router():
    router = APIRouter()

    # =========================================================================
    # HEALTH CHECK
    # =========================================================================

    @router.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": "ticketflow-engine",
            "version": __version__,
        }

    # =========================================================================
    # AUTH ENDPOINTS
    # =========================================================================

    @router.post("/auth/login")
    async def login(request: LoginRequest, engine: Engine = Depends(get_engine)):
        user = engine.identity.authenticate(request.username, request.password)
        if user is None:
            raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid credentials")
        return _public_user(user)

    @router.post("/auth/portal")
    async def portal_login(request: PortalLoginRequest, engine: Engine = Depends(get_engine)):
        user = engine.identity.authenticate_customer(request.client_token)
        if user is None:
            raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid client token")
        return _public_user(user)

    @router.post("/auth/logout")
    async def logout(actor: User = Depends(get_actor), engine: Engine = Depends(get_engine)):
        """
        Requests are stateless (actor_id); this only ends an in-process
        session held by the same user.
        """
        engine.identity.logout(actor)
        return {"status": "logged_out", "user_id": str(actor.id)}

    # =========================================================================
    # USER ENDPOINTS
    # =========================================================================

    @router.get("/users")
    async def list_users(actor: User = Depends(get_actor), engine: Engine = Depends(get_engine)):
        _require(can_manage_users(actor), "Admins only")
        return [_public_user(u) for u in engine.state.users]

    @router.post("/users", status_code=status.HTTP_201_CREATED)
    async def create_user(
        request: CreateUserRequest,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        """Admin creates a user. The client token is issued here, once."""
        _require(can_manage_users(actor), "Admins only")
        if any(u.username == request.username for u in engine.state.users):
            raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, "Username already taken")

        user = await engine.identity.add_user(**request.model_dump(), actor=actor)
        if user is None:
            raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "User not saved")
        return _public_user(user)

    @router.patch("/users/{user_id}")
    async def update_user(
        user_id: UUID,
        request: AdminUserUpdateRequest,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        _require(can_manage_users(actor), "Admins only")
        _existing_user(engine, user_id)
        fields = request.model_dump(exclude_none=True)
        if not fields:
            raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, "Nothing to update")

        if not await engine.identity.admin_update_user(user_id, actor=actor, **fields):
            raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "User not saved")
        return _public_user(engine.state.get_user(user_id))

    @router.delete("/users/{user_id}")
    async def delete_user(user_id: UUID, actor: User = Depends(get_actor), engine: Engine = Depends(get_engine)):
        _require(can_manage_users(actor), "Admins only")
        _existing_user(engine, user_id)
        if not await engine.identity.delete_user(user_id, actor=actor):
            raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "User not deleted")
        return {"status": "deleted", "user_id": str(user_id)}

    @router.patch("/users/{user_id}/profile")
    async def update_profile(
        user_id: UUID,
        request: ProfileUpdateRequest,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        """Self-service. Role, credentials and client token are not editable here."""
        _require(actor.id == user_id, "You can only edit your own profile")
        fields = request.model_dump(exclude_none=True)
        if not fields:
            raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, "Nothing to update")

        if not await engine.identity.update_profile(user_id, actor=actor, **fields):
            raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Profile not saved")
        return _public_user(engine.state.get_user(user_id))

    # =========================================================================
    # TICKET ENDPOINTS
    # =========================================================================

    @router.post("/tickets", status_code=status.HTTP_201_CREATED)
    async def create_ticket(
        request: CreateTicketRequest,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        """
        Open a ticket. Missing priority/type come from the advisor, or from
        the configured defaults when it has nothing to say.
        """
        priority, ticket_type = request.priority, request.type
        if priority is None or ticket_type is None:
            suggestion = await suggest_defaults(
                engine.advisor, request.title, request.description, engine.settings,
            )
            priority = priority or suggestion.priority
            ticket_type = ticket_type or suggestion.type

        result = await engine.tickets.create_ticket(
            request.title,
            request.description,
            type=ticket_type,
            priority=priority,
            attachments=request.attachments,
            actor=actor,
        )
        return _respond(result)

    @router.get("/tickets")
    async def list_tickets(actor: User = Depends(get_actor), engine: Engine = Depends(get_engine)):
        return [t.model_dump(mode="json") for t in views.visible_tickets(engine.state.tickets, actor)]

    @router.get("/tickets/{ticket_id}")
    async def get_ticket(
        ticket_id: UUID,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        """Ticket plus what the actor may do with it right now."""
        ticket = _viewable(engine, ticket_id, actor)
        return {
            "ticket": ticket.model_dump(mode="json"),
            "progress": progress(ticket),
            "capabilities": sorted(c.value for c in capabilities(actor, ticket)),
        }

    @router.get("/tickets/{ticket_id}/logs")
    async def get_logs(
        ticket_id: UUID,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        ticket = _viewable(engine, ticket_id, actor)
        return [log.model_dump(mode="json") for log in views.ticket_logs(ticket)]

    @router.post("/tickets/{ticket_id}/claim")
    async def claim_ticket(ticket_id: UUID, actor: User = Depends(get_actor), engine: Engine = Depends(get_engine)):
        return _respond(await engine.tickets.claim(ticket_id, actor=actor))

    @router.post("/tickets/{ticket_id}/assign")
    async def assign_ticket(
        ticket_id: UUID,
        request: AssignRequest,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        return _respond(await engine.tickets.assign(ticket_id, request.user_id, actor=actor))

    @router.post("/tickets/{ticket_id}/reject-new")
    async def reject_new_ticket(
        ticket_id: UUID,
        request: ReasonRequest,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        return _respond(await engine.tickets.reject_new_ticket(ticket_id, request.reason, actor=actor))

    @router.post("/tickets/{ticket_id}/resolution")
    async def submit_resolution(
        ticket_id: UUID,
        request: NoteRequest,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        return _respond(await engine.tickets.submit_resolution(
            ticket_id, request.note, request.attachments, actor=actor,
        ))

    @router.post("/tickets/{ticket_id}/resolution/accept")
    async def accept_resolution(ticket_id: UUID, actor: User = Depends(get_actor), engine: Engine = Depends(get_engine)):
        """Creator only. THE sign-off."""
        return _respond(await engine.tickets.accept_resolution(ticket_id, actor=actor))

    @router.post("/tickets/{ticket_id}/resolution/reject")
    async def reject_resolution(
        ticket_id: UUID,
        request: ReasonRequest,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        return _respond(await engine.tickets.reject_resolution(
            ticket_id, request.reason, request.attachments, actor=actor,
        ))

    @router.post("/tickets/{ticket_id}/cancel")
    async def cancel_ticket(ticket_id: UUID, actor: User = Depends(get_actor), engine: Engine = Depends(get_engine)):
        return _respond(await engine.tickets.cancel(ticket_id, actor=actor))

    @router.delete("/tickets/{ticket_id}")
    async def delete_ticket(ticket_id: UUID, actor: User = Depends(get_actor), engine: Engine = Depends(get_engine)):
        return _respond(await engine.tickets.delete_ticket(ticket_id, actor=actor))

    # =========================================================================
    # TASK ENDPOINTS
    # =========================================================================

    @router.post("/tickets/{ticket_id}/tasks", status_code=status.HTTP_201_CREATED)
    async def add_task(
        ticket_id: UUID,
        request: CreateTaskRequest,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        return _respond(await engine.tasks.add_task(
            ticket_id,
            request.title,
            request.description,
            assigned_to_id=request.assigned_to_id,
            due_date=request.due_date,
            actor=actor,
        ))

    @router.post("/tickets/{ticket_id}/tasks/generate", status_code=status.HTTP_201_CREATED)
    async def generate_tasks(ticket_id: UUID, actor: User = Depends(get_actor), engine: Engine = Depends(get_engine)):
        return _respond(await engine.tasks.generate_tasks(ticket_id, actor=actor))

    @router.patch("/tickets/{ticket_id}/tasks/{task_id}")
    async def update_task(
        ticket_id: UUID,
        task_id: UUID,
        request: UpdateTaskRequest,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        return _respond(await engine.tasks.update_task(
            ticket_id, task_id,
            title=request.title,
            description=request.description,
            due_date=request.due_date,
            clear_due_date=request.clear_due_date,
            actor=actor,
        ))

    @router.delete("/tickets/{ticket_id}/tasks/{task_id}")
    async def delete_task(
        ticket_id: UUID,
        task_id: UUID,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        return _respond(await engine.tasks.delete_task(ticket_id, task_id, actor=actor))

    @router.post("/tickets/{ticket_id}/tasks/{task_id}/claim")
    async def claim_task(
        ticket_id: UUID,
        task_id: UUID,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        return _respond(await engine.tasks.claim_task(ticket_id, task_id, actor=actor))

    @router.post("/tickets/{ticket_id}/tasks/{task_id}/assign")
    async def assign_task(
        ticket_id: UUID,
        task_id: UUID,
        request: AssignTaskRequest,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        return _respond(await engine.tasks.assign_task(ticket_id, task_id, request.user_id, actor=actor))

    @router.post("/tickets/{ticket_id}/tasks/{task_id}/submit")
    async def submit_task(
        ticket_id: UUID,
        task_id: UUID,
        request: NoteRequest,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        return _respond(await engine.tasks.submit_task(
            ticket_id, task_id, request.note, request.attachments, actor=actor,
        ))

    @router.post("/tickets/{ticket_id}/tasks/{task_id}/approve")
    async def approve_task(
        ticket_id: UUID,
        task_id: UUID,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        return _respond(await engine.tasks.approve_task(ticket_id, task_id, actor=actor))

    @router.post("/tickets/{ticket_id}/tasks/{task_id}/reject")
    async def reject_task(
        ticket_id: UUID,
        task_id: UUID,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        return _respond(await engine.tasks.reject_task(ticket_id, task_id, actor=actor))

    @router.post("/tickets/{ticket_id}/tasks/{task_id}/toggle")
    async def toggle_task(
        ticket_id: UUID,
        task_id: UUID,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        return _respond(await engine.tasks.toggle_task(ticket_id, task_id, actor=actor))

    # =========================================================================
    # VIEW ENDPOINTS
    # =========================================================================

    @router.get("/views/task-pool")
    async def task_pool(actor: User = Depends(get_actor), engine: Engine = Depends(get_engine)):
        _require(can_view_task_lists(actor), "Staff only")
        return [_task_row(r) for r in views.task_pool(engine.state.tickets)]

    @router.get("/views/my-tasks")
    async def my_tasks(actor: User = Depends(get_actor), engine: Engine = Depends(get_engine)):
        _require(can_view_task_lists(actor), "Staff only")
        return [_task_row(r) for r in views.my_tasks(engine.state.tickets, actor)]

    @router.get("/views/ongoing")
    async def ongoing(actor: User = Depends(get_actor), engine: Engine = Depends(get_engine)):
        _require(actor.is_admin, "Admins only")
        return [_task_row(r) for r in views.ongoing_tasks(engine.state.tickets)]

    @router.get("/views/approvals")
    async def approvals(actor: User = Depends(get_actor), engine: Engine = Depends(get_engine)):
        """Resolved tickets for the creator plus PENDING tasks for reviewers."""
        tickets = engine.state.tickets
        return {
            "tickets": [t.model_dump(mode="json") for t in views.ticket_approvals(tickets, actor)],
            "tasks": [_task_row(r) for r in views.task_approvals(tickets, actor)],
        }

    @router.get("/views/history")
    async def history(actor: User = Depends(get_actor), engine: Engine = Depends(get_engine)):
        tickets = engine.state.tickets
        task_history = views.task_history(tickets, actor)
        return {
            "tickets": [t.model_dump(mode="json") for t in views.ticket_history(tickets, actor)],
            "my_tasks": [_task_row(r) for r in task_history.mine],
            "all_tasks": [_task_row(r) for r in task_history.all],
        }

    @router.get("/reports")
    async def reports(
        user_id: Optional[UUID] = None,
        actor: User = Depends(get_actor),
        engine: Engine = Depends(get_engine),
    ):
        _require(can_view_reports(actor), "Access denied")
        return [
            {
                "user": _public_user(report.user),
                "closed_tickets": [t.model_dump(mode="json") for t in report.closed_tickets],
                "completed_tasks": [_task_row(r) for r in report.completed_tasks],
            }
            for report in views.staff_reports(engine.state.tickets, engine.state.users, user_id)
        ]

    return router


app = create_app()


# =============================================================================
# RUN
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

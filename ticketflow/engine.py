"""
TicketFlow Engine wiring

Builds one state store, attaches it to a document store, and hands the
same pair to every service.
"""

from dataclasses import dataclass
from typing import Optional

from .config import Settings, get_settings
from .persistence import DocumentStore, InMemoryDocumentStore
from .services.advisor import TaskAdvisor, get_advisor
from .services.identity import IdentityService
from .services.tasks import TaskWorkflowService
from .services.workflow import TicketWorkflowService
from .state import AppState


@dataclass
class Engine:
    settings: Settings
    state: AppState
    store: DocumentStore
    advisor: TaskAdvisor
    tickets: TicketWorkflowService
    tasks: TaskWorkflowService
    identity: IdentityService


def build_engine(
    store: Optional[DocumentStore] = None,
    settings: Optional[Settings] = None,
    advisor: Optional[TaskAdvisor] = None,
) -> Engine:
    settings = settings or get_settings()
    store = store if store is not None else InMemoryDocumentStore()
    advisor = advisor or get_advisor(settings)

    state = AppState()
    state.attach(store)

    return Engine(
        settings=settings,
        state=state,
        store=store,
        advisor=advisor,
        tickets=TicketWorkflowService(state, store),
        tasks=TaskWorkflowService(state, store, advisor),
        identity=IdentityService(state, store, settings),
    )

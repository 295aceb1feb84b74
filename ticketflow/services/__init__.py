"""
TicketFlow Engine Services

Permission checks, ticket and task workflows, derived views, identity
and the optional AI advisor.
"""

from .permissions import Capability, capabilities
from .workflow import Outcome, WorkflowResult, TicketWorkflowService
from .tasks import TaskWorkflowService
from .identity import IdentityService
from .advisor import (
    TaskAdvisor,
    NullAdvisor,
    GeminiAdvisor,
    Suggestion,
    FALLBACK_TASKS,
    get_advisor,
    suggest_defaults,
)
from . import views

__all__ = [
    # Permission engine
    "Capability", "capabilities",

    # Workflow engine
    "Outcome", "WorkflowResult", "TicketWorkflowService", "TaskWorkflowService",

    # Identity
    "IdentityService",

    # AI advisory collaborator
    "TaskAdvisor", "NullAdvisor", "GeminiAdvisor", "Suggestion", "FALLBACK_TASKS",
    "get_advisor", "suggest_defaults",

    # Projections
    "views",
]

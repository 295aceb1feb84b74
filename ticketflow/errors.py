"""
TicketFlow exceptions.

Expected business outcomes (not your ticket, wrong status, not found) are
never raised; they come back as refused WorkflowResults. Exceptions are
reserved for collaborator failures.
"""


class TicketFlowError(Exception):
    """Base class for engine errors."""
    pass


class PersistenceError(TicketFlowError):
    """Raised when the document store cannot apply a write."""
    pass


class AdvisorError(TicketFlowError):
    """Raised inside the AI advisor; never escapes it."""
    pass

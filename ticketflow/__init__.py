"""
TicketFlow Engine

Role-based ticket tracker core with:
- Creator/assignee split (only the creator approves the outcome)
- Nested tasks with a submit/review approval sub-machine
- Append-only ticket logs
- Role-specific views (task pool, approvals, history, reports)
"""

__version__ = "0.1.0"

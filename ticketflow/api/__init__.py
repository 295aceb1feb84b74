"""TicketFlow HTTP API."""

from .app import app, create_app, get_engine

__all__ = ["app", "create_app", "get_engine"]

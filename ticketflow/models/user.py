"""
TicketFlow User Model

Three roles share one record type:
- CUSTOMER: opens tickets, approves or rejects their outcome
- DEVELOPER: claims and works tickets and tasks
- ADMIN: everything a developer can do, plus reassignment and overrides

Customers log in through the client portal with their client token
instead of a username/password pair.
"""

from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator


class UserRole(str, Enum):
    CUSTOMER = "CUSTOMER"
    DEVELOPER = "DEVELOPER"
    ADMIN = "ADMIN"


STAFF_ROLES = frozenset({UserRole.DEVELOPER, UserRole.ADMIN})


class User(BaseModel):
    """
    A person who can act on tickets.

    client_token is issued once, when the user is created, and never
    rewritten afterwards. It is mandatory for customers.
    """
    id: UUID = Field(default_factory=uuid4)

    # Credentials are opaque to the engine
    username: str
    password: Optional[str] = None

    name: str
    email: Optional[str] = None
    role: UserRole = UserRole.CUSTOMER

    avatar: str = ""
    bio: str = ""
    company_name: Optional[str] = None

    client_token: Optional[str] = None

    @model_validator(mode="after")
    def _customer_has_token(self) -> "User":
        if self.role == UserRole.CUSTOMER and not self.client_token:
            raise ValueError("customers require a client token")
        return self

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

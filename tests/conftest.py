"""Shared fixtures for TicketFlow engine tests.

Every test gets a fresh in-memory document store seeded with four users:
a customer, two developers and an admin.
"""

from __future__ import annotations

import pytest

from ticketflow.config import Settings
from ticketflow.engine import Engine, build_engine
from ticketflow.models import User, UserRole
from ticketflow.persistence import InMemoryDocumentStore
from ticketflow.services import NullAdvisor


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, advisor_enabled=False)


@pytest.fixture
def customer() -> User:
    return User(
        username="carol",
        password="carol-pw",
        name="Carol Customer",
        role=UserRole.CUSTOMER,
        company_name="Acme",
        client_token="hx-carolcarolcarolcarolcarolcarol0",
    )


@pytest.fixture
def developer() -> User:
    return User(username="dave", password="dave-pw", name="Dave Dev", role=UserRole.DEVELOPER)


@pytest.fixture
def other_developer() -> User:
    return User(username="dana", password="dana-pw", name="Dana Dev", role=UserRole.DEVELOPER)


@pytest.fixture
def admin() -> User:
    return User(username="ada", password="ada-pw", name="Ada Admin", role=UserRole.ADMIN)


@pytest.fixture
def store(customer, developer, other_developer, admin) -> InMemoryDocumentStore:
    store = InMemoryDocumentStore()
    store.seed_users([customer, developer, other_developer, admin])
    return store


@pytest.fixture
def engine(store, settings) -> Engine:
    return build_engine(store=store, settings=settings, advisor=NullAdvisor())

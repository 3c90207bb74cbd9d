"""Shared test fixtures."""

from datetime import datetime, timedelta, timezone

import pytest

from workshop_desk.database.connection import DatabaseConnection
from workshop_desk.database.models import Business, Customer, User
from workshop_desk.database.schema import initialize_database
from workshop_desk.database.repository import Repository


class FakeClock:
    """A controllable UTC clock for repositories under test."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def db_path(tmp_path):
    """Provide a temporary database path."""
    return tmp_path / "test.db"


@pytest.fixture
def db(db_path):
    """Provide an initialized database connection."""
    conn = DatabaseConnection(db_path)
    initialize_database(conn)
    return conn


@pytest.fixture
def repo(db, clock):
    """Provide a repository with an initialized database."""
    return Repository(db, clock=clock)


@pytest.fixture
def business(repo):
    """Id of a first tenant."""
    return repo.create_business(Business(name="Moore Mowers",
                                         email="info@example.com"))


@pytest.fixture
def other_business(repo):
    """Id of a second, unrelated tenant."""
    return repo.create_business(Business(name="Green Blades"))


@pytest.fixture
def staff(repo, business):
    user = User(business_id=business, username="alex",
                full_name="Alex Smith", role="mechanic")
    user.id = repo.create_user(user)
    return user


@pytest.fixture
def customer(repo, business):
    c = Customer(business_id=business, name="Jo Bloggs",
                 email="jo@example.com", phone="07700 900123")
    c.id = repo.create_customer(c)
    return c

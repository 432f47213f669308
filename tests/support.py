"""Shared helpers for tests that need a real (in-memory) database."""

import unittest

from account_service.core.database import SessionLocal, engine
from account_service.models import Base, Role
from account_service.schemas.user import UserCreate, UserUpdate
from account_service.services.accounts import AccountService
from account_service.services.cache import user_cache

STRONG_PASSWORD = "Str0ng!Pass"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def make_user_create(username: str = "alice", **overrides) -> UserCreate:
    fields = {
        "first_name": "Alice",
        "last_name": "Smith",
        "username": username,
        "email": f"{username}@example.com",
        "password": STRONG_PASSWORD,
    }
    fields.update(overrides)
    return UserCreate(**fields)


def create_account(db, username: str = "alice", role: Role = Role.USER, **overrides) -> int:
    """Register an account and, for elevated roles, promote it without a caller check."""
    service = AccountService(db)
    created = service.register(make_user_create(username, **overrides))
    if role != Role.USER:
        service.update_profile(created.id, UserUpdate(role=role))
    return created.id


class DatabaseTestCase(unittest.TestCase):
    """Fresh schema and empty read cache for every test."""

    def setUp(self) -> None:
        Base.metadata.create_all(engine)
        user_cache.clear()
        self.db = SessionLocal()
        self.addCleanup(self._drop_database)

    def _drop_database(self) -> None:
        self.db.close()
        Base.metadata.drop_all(engine)
        user_cache.clear()

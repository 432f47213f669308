"""ORM model for user accounts (credentials, role, status flags, lockout state)."""

from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String

from account_service.models.base import Base, utcnow


class Role(str, Enum):
    ADMIN = "ADMIN"
    MODERATOR = "MODERATOR"
    USER = "USER"
    GUEST = "GUEST"


class User(Base):
    """
    One registered account.

    email is always stored lowercase, so the unique index on it enforces
    case-insensitive uniqueness. version is bumped on every write and used
    for compare-and-swap updates. username_changed_at marks the last rename;
    tokens issued before it (or before created_at) do not belong to this row.
    """

    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_active", "active"),
        Index("ix_users_created_at", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    username = Column(String(50), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=Role.USER.value)
    active = Column(Boolean, nullable=False, default=True)
    email_verified = Column(Boolean, nullable=False, default=False)
    bio = Column(String(500), nullable=True)
    avatar_path = Column(String(500), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    failed_login_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=0)
    username_changed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"User(id={self.id}, username={self.username!r}, email={self.email!r})"

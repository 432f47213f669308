"""SQLAlchemy ORM models."""

from account_service.models.base import Base
from account_service.models.user import Role, User

__all__ = ["Base", "Role", "User"]

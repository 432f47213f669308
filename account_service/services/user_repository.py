"""Account store adapter: named query builders, counts, and versioned writes."""

import logging
from collections.abc import Iterator
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from account_service.core.errors import ConflictError, ConflictingUpdate, DuplicateResourceError
from account_service.models.base import utcnow
from account_service.models.user import Role, User

logger = logging.getLogger(__name__)

SORTABLE_FIELDS: dict[str, Any] = {
    "id": User.id,
    "username": User.username,
    "email": User.email,
    "first_name": User.first_name,
    "last_name": User.last_name,
    "role": User.role,
    "created_at": User.created_at,
    "last_login_at": User.last_login_at,
}
DEFAULT_SORT = ("created_at", "desc")


def _like(term: str) -> str:
    escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


# --- filter builders -------------------------------------------------------


def filter_by_active(query: Query, active: bool) -> Query:
    return query.filter(User.active.is_(active))


def filter_by_role(query: Query, role: Role) -> Query:
    return query.filter(User.role == Role(role).value)


def filter_by_search_term(query: Query, term: str) -> Query:
    """Case-insensitive substring match on username, email, first and last name."""
    pattern = _like(term)
    return query.filter(
        or_(
            func.lower(User.username).like(pattern, escape="\\"),
            func.lower(User.email).like(pattern, escape="\\"),
            func.lower(User.first_name).like(pattern, escape="\\"),
            func.lower(User.last_name).like(pattern, escape="\\"),
        )
    )


def build_user_query(
    session: Session,
    active: bool | None = None,
    role: Role | None = None,
    search: str | None = None,
) -> Query:
    """Combine the independent optional filters (active x role x search)."""
    query = session.query(User)
    if active is not None:
        query = filter_by_active(query, active)
    if role is not None:
        query = filter_by_role(query, role)
    if search is not None and search.strip():
        query = filter_by_search_term(query, search.strip())
    return query


def build_advanced_search_query(
    session: Session,
    first_name: str | None = None,
    last_name: str | None = None,
    email: str | None = None,
) -> Query:
    """Each supplied field must match as a case-insensitive substring."""
    query = session.query(User)
    if first_name:
        query = query.filter(func.lower(User.first_name).like(_like(first_name), escape="\\"))
    if last_name:
        query = query.filter(func.lower(User.last_name).like(_like(last_name), escape="\\"))
    if email:
        query = query.filter(func.lower(User.email).like(_like(email), escape="\\"))
    return query


def apply_sort(query: Query, sort_field: str, direction: str) -> Query:
    column = SORTABLE_FIELDS[sort_field]
    ordered = column.desc() if direction == "desc" else column.asc()
    # id as tiebreaker keeps pages stable.
    return query.order_by(ordered, User.id.asc())


def fetch_page(query: Query, page: int, size: int) -> tuple[list[User], int]:
    total = query.order_by(None).count()
    rows = query.offset(page * size).limit(size).all()
    return rows, total


# --- lookups ---------------------------------------------------------------


def get_by_id(session: Session, user_id: int) -> User | None:
    return session.get(User, user_id)


def get_by_username(session: Session, username: str) -> User | None:
    return session.query(User).filter(User.username == username).first()


def get_by_username_or_email(session: Session, login: str) -> User | None:
    return (
        session.query(User)
        .filter(or_(User.username == login, User.email == login.lower()))
        .first()
    )


def username_exists(session: Session, username: str, exclude_id: int | None = None) -> bool:
    query = session.query(User.id).filter(User.username == username)
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    return query.first() is not None


def email_exists(session: Session, email: str, exclude_id: int | None = None) -> bool:
    query = session.query(User.id).filter(func.lower(User.email) == email.lower())
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    return query.first() is not None


def existing_ids(session: Session, ids: list[int]) -> list[int]:
    if not ids:
        return []
    return [row[0] for row in session.query(User.id).filter(User.id.in_(ids)).all()]


def iter_all(session: Session, batch_size: int = 500) -> Iterator[User]:
    yield from session.query(User).order_by(User.id).yield_per(batch_size)


# --- counts ----------------------------------------------------------------


def count_all(session: Session) -> int:
    return session.query(func.count(User.id)).scalar() or 0


def count_by_active(session: Session, active: bool) -> int:
    return session.query(func.count(User.id)).filter(User.active.is_(active)).scalar() or 0


def count_by_role(session: Session) -> dict[Role, int]:
    counts = {role: 0 for role in Role}
    rows = session.query(User.role, func.count(User.id)).group_by(User.role).all()
    for role_value, count in rows:
        counts[Role(role_value)] = count
    return counts


def count_email_verified(session: Session) -> int:
    return (
        session.query(func.count(User.id)).filter(User.email_verified.is_(True)).scalar() or 0
    )


def count_created_since(session: Session, since: datetime) -> int:
    return session.query(func.count(User.id)).filter(User.created_at >= since).scalar() or 0


# --- writes ----------------------------------------------------------------


def _integrity_error(e: IntegrityError) -> Exception:
    text = str(e.orig).lower() if e.orig is not None else str(e).lower()
    if "unique" not in text and "duplicate" not in text:
        return ConflictError("Data integrity violation")
    if "username" in text:
        return DuplicateResourceError("User with this username already exists")
    if "email" in text:
        return DuplicateResourceError("User with this email already exists")
    return DuplicateResourceError("User already exists")


def insert_user(session: Session, user: User) -> User:
    """Insert and commit; a unique-constraint race surfaces as DuplicateResourceError."""
    session.add(user)
    try:
        session.commit()
    except IntegrityError as e:
        session.rollback()
        logger.warning("Insert rejected by store constraint: %s", e.orig)
        raise _integrity_error(e) from e
    session.refresh(user)
    return user


def update_versioned(
    session: Session,
    user_id: int,
    expected_version: int,
    changes: dict[str, Any],
) -> User:
    """
    Compare-and-swap write: apply changes only if the row still has expected_version.

    Bumps version and updated_at. Zero matched rows means the row changed or
    vanished since it was read; that raises ConflictingUpdate.
    """
    values = dict(changes)
    values["version"] = expected_version + 1
    values["updated_at"] = utcnow()
    stmt = (
        update(User)
        .where(User.id == user_id, User.version == expected_version)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    try:
        result = session.execute(stmt)
        if result.rowcount != 1:
            session.rollback()
            logger.warning(
                "Stale write rejected for user %s (expected version %s)", user_id, expected_version
            )
            raise ConflictingUpdate(
                "User was modified by another request; reload and try again"
            )
        session.commit()
    except IntegrityError as e:
        session.rollback()
        logger.warning("Update rejected by store constraint: %s", e.orig)
        raise _integrity_error(e) from e
    user = session.get(User, user_id, populate_existing=True)
    if user is None:
        raise ConflictingUpdate("User was deleted by another request")
    return user


def delete_by_ids(session: Session, ids: list[int]) -> int:
    if not ids:
        return 0
    result = session.execute(
        delete(User).where(User.id.in_(ids)).execution_options(synchronize_session=False)
    )
    session.commit()
    return result.rowcount or 0


def release_expired_locks(session: Session, now: datetime) -> int:
    """Clear lock state on accounts whose lock window has passed. Idempotent."""
    result = session.execute(
        update(User)
        .where(User.locked_until.is_not(None), User.locked_until <= now)
        .values(
            locked_until=None,
            failed_login_attempts=0,
            version=User.version + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    session.commit()
    return result.rowcount or 0


def avatar_paths(session: Session) -> list[str]:
    rows = session.query(User.avatar_path).filter(User.avatar_path.is_not(None)).all()
    return [row[0] for row in rows]

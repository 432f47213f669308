"""Account lifecycle: registration, profile and password changes, login state, activation, deletion."""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from account_service.core.config import get_settings
from account_service.core.errors import (
    AccountDisabled,
    AccountLocked,
    BadCredentials,
    BusinessRuleViolation,
    ConflictingUpdate,
    DuplicateResourceError,
    InvalidFileError,
    NotFoundError,
    PayloadTooLarge,
    ServiceError,
    ValidationFailed,
)
from account_service.core.security import hash_password, password_policy_violations, verify_password
from account_service.models.base import ensure_utc, utcnow
from account_service.models.user import Role, User
from account_service.schemas.auth import CurrentUser
from account_service.schemas.common import PageMetadata, PageResponse
from account_service.schemas.user import (
    BulkDeleteResult,
    UserCreate,
    UserResponse,
    UserStats,
    UserUpdate,
)
from account_service.services import user_repository as repo
from account_service.services.authorization import Operation, require_permission
from account_service.services.cache import UserCache, user_cache
from account_service.services.export import ExportPayload, export_users, normalize_format
from account_service.services.file_storage import FileStorage, public_file_url
from account_service.services.validation import (
    raise_if_invalid,
    validate_user_create,
    validate_user_update,
)

if TYPE_CHECKING:
    from account_service.core.config import Settings

logger = logging.getLogger(__name__)

RECENT_REGISTRATION_DAYS = 30
MAX_PAGE_SIZE = 100
# Login bookkeeping retries when a concurrent write bumps the version.
LOGIN_STATE_RETRIES = 3
ALLOWED_AVATAR_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})
ELEVATED_ROLES = frozenset({Role.ADMIN, Role.MODERATOR})


def is_locked(locked_until: datetime | None, now: datetime) -> bool:
    locked_until = ensure_utc(locked_until)
    return locked_until is not None and locked_until > now


def next_lock_state(
    failed_attempts: int,
    locked_until: datetime | None,
    now: datetime,
    threshold: int,
    window: timedelta,
) -> tuple[int, datetime | None]:
    """
    Counter and lock deadline after one more failed login.

    An active lock keeps its deadline (further failures only count). Once a
    lock has lapsed the counter starts over. Reaching `threshold` locks the
    account until now + window.
    """
    locked_until = ensure_utc(locked_until)
    if locked_until is not None and locked_until > now:
        return failed_attempts + 1, locked_until
    if locked_until is not None:
        failed_attempts = 0
    attempts = failed_attempts + 1
    if attempts >= threshold:
        return attempts, now + window
    return attempts, None


def token_issued_for(user: User, issued_at: datetime) -> bool:
    """True when a token for the account's username was issued while this row held it."""
    held_since = ensure_utc(user.username_changed_at) or ensure_utc(user.created_at)
    return held_since is None or issued_at >= held_since


def parse_sort(sort: str | None) -> tuple[str, str]:
    """Parse 'field' or 'field,asc|desc'; defaults to created_at descending."""
    if not sort or not sort.strip():
        return repo.DEFAULT_SORT
    field, _, direction = sort.partition(",")
    field = field.strip()
    direction = (direction.strip() or "asc").lower()
    errors: dict[str, list[str]] = {}
    if field not in repo.SORTABLE_FIELDS:
        errors.setdefault("sort", []).append(
            f"Cannot sort by '{field}'. Allowed: {', '.join(sorted(repo.SORTABLE_FIELDS))}"
        )
    if direction not in ("asc", "desc"):
        errors.setdefault("sort", []).append("Sort direction must be 'asc' or 'desc'")
    if errors:
        raise ValidationFailed(errors)
    return field, direction


def _check_paging(page: int, size: int) -> None:
    errors: dict[str, list[str]] = {}
    if page < 0:
        errors["page"] = ["Page must be zero or greater"]
    if not (1 <= size <= MAX_PAGE_SIZE):
        errors["size"] = [f"Size must be between 1 and {MAX_PAGE_SIZE}"]
    if errors:
        raise ValidationFailed(errors)


class AccountService:
    """
    Operations on accounts for one unit of work (one DB session).

    Reads of single accounts go through the shared UserCache; every write
    evicts the affected ids (or clears the cache for bulk changes).
    """

    def __init__(
        self,
        session: Session,
        settings: "Settings | None" = None,
        cache: UserCache | None = None,
        storage: FileStorage | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.cache = cache if cache is not None else user_cache
        self._storage = storage
        self._clock = clock

    @property
    def storage(self) -> FileStorage:
        if self._storage is None:
            self._storage = FileStorage.from_settings(self.settings)
        return self._storage

    # --- mapping -----------------------------------------------------------

    def to_response(self, user: User) -> UserResponse:
        avatar_url = None
        if user.avatar_path:
            avatar_url = public_file_url(
                user.avatar_path,
                self.settings.FILE_PUBLIC_BASE_URL,
                self.settings.API_V1_PREFIX,
            )
        return UserResponse(
            id=user.id,
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=Role(user.role),
            active=user.active,
            email_verified=user.email_verified,
            bio=user.bio,
            avatar_url=avatar_url,
            last_login_at=ensure_utc(user.last_login_at),
            created_at=ensure_utc(user.created_at),
            updated_at=ensure_utc(user.updated_at),
            version=user.version,
        )

    def _get_entity(self, user_id: int) -> User:
        user = repo.get_by_id(self.session, user_id)
        if user is None:
            raise NotFoundError("User", "id", user_id)
        return user

    def _write(self, user: User, changes: dict[str, Any]) -> User:
        updated = repo.update_versioned(self.session, user.id, user.version, changes)
        self.cache.evict(user.id)
        return updated

    def _write_login_state(
        self, user_id: int, compute: Callable[[User], dict[str, Any]]
    ) -> User:
        """Versioned write that re-reads and retries when a concurrent login won the race."""
        attempt = 1
        while True:
            user = self._get_entity(user_id)
            try:
                return self._write(user, compute(user))
            except ConflictingUpdate:
                if attempt >= LOGIN_STATE_RETRIES:
                    raise
                logger.debug("Retrying login-state write for user %s (attempt %d)", user_id, attempt)
                attempt += 1
                self.session.expire_all()

    # --- reads -------------------------------------------------------------

    def get_user(self, user_id: int) -> UserResponse:
        cached = self.cache.get(user_id)
        if cached is not None:
            return cached
        logger.debug("Finding user by id: %s", user_id)
        generation = self.cache.generation(user_id)
        dto = self.to_response(self._get_entity(user_id))
        self.cache.put(dto, generation)
        return dto

    def get_entity(self, user_id: int) -> User:
        return self._get_entity(user_id)

    def get_by_username(self, username: str) -> UserResponse:
        user = repo.get_by_username(self.session, username)
        if user is None:
            raise NotFoundError("User", "username", username)
        return self.to_response(user)

    def list_users(
        self,
        active: bool | None = None,
        role: Role | None = None,
        search: str | None = None,
        page: int = 0,
        size: int = 20,
        sort: str | None = None,
    ) -> PageResponse[UserResponse]:
        logger.debug(
            "Finding users with filters - active: %s, role: %s, search: %s", active, role, search
        )
        _check_paging(page, size)
        sort_field, direction = parse_sort(sort)
        query = repo.build_user_query(self.session, active=active, role=role, search=search)
        return self._page(repo.apply_sort(query, sort_field, direction), page, size)

    def search_users(
        self,
        first_name: str | None = None,
        last_name: str | None = None,
        email: str | None = None,
        page: int = 0,
        size: int = 20,
        sort: str | None = None,
    ) -> PageResponse[UserResponse]:
        logger.debug(
            "Searching users - first_name: %s, last_name: %s, email: %s",
            first_name,
            last_name,
            email,
        )
        _check_paging(page, size)
        sort_field, direction = parse_sort(sort)
        query = repo.build_advanced_search_query(
            self.session, first_name=first_name, last_name=last_name, email=email
        )
        return self._page(repo.apply_sort(query, sort_field, direction), page, size)

    def _page(self, query, page: int, size: int) -> PageResponse[UserResponse]:
        rows, total = repo.fetch_page(query, page, size)
        return PageResponse[UserResponse](
            content=[self.to_response(u) for u in rows],
            metadata=PageMetadata.build(page, size, total),
        )

    def statistics(self) -> UserStats:
        total = repo.count_all(self.session)
        verified = repo.count_email_verified(self.session)
        since = self._clock() - timedelta(days=RECENT_REGISTRATION_DAYS)
        return UserStats(
            total_users=total,
            active_users=repo.count_by_active(self.session, True),
            inactive_users=repo.count_by_active(self.session, False),
            role_distribution=repo.count_by_role(self.session),
            recent_registrations=repo.count_created_since(self.session, since),
            verified_email_percentage=(verified * 100.0 / total) if total > 0 else 0.0,
        )

    # --- registration and profile -----------------------------------------

    def register(self, data: UserCreate, caller: CurrentUser | None = None) -> UserResponse:
        logger.info("Creating new user with username: %s", data.username)
        raise_if_invalid(validate_user_create(data))

        role = data.role or Role.USER
        if role in ELEVATED_ROLES:
            require_permission(
                caller.role if caller else None,
                caller.id if caller else None,
                Operation.ASSIGN_ROLE,
            )

        email = data.email.lower()
        if repo.username_exists(self.session, data.username):
            raise DuplicateResourceError(f"User with username '{data.username}' already exists")
        if repo.email_exists(self.session, email):
            raise DuplicateResourceError(f"User with email '{email}' already exists")

        user = User(
            first_name=data.first_name,
            last_name=data.last_name,
            username=data.username,
            email=email,
            password_hash=hash_password(data.password),
            bio=data.bio,
            role=role.value,
            active=True,
            email_verified=False,
            failed_login_attempts=0,
            version=0,
            created_at=self._clock(),
        )
        user = repo.insert_user(self.session, user)
        logger.info("User created successfully with id: %s", user.id)
        return self.to_response(user)

    def update_profile(
        self,
        user_id: int,
        data: UserUpdate,
        caller: CurrentUser | None = None,
    ) -> UserResponse:
        """
        Apply only the fields present in `data`.

        bio may be cleared by sending null; the other fields ignore nulls.
        Role and active changes need ASSIGN_ROLE / ACTIVATE_USER permission
        when a caller is given.
        """
        logger.info("Updating user with id: %s", user_id)
        raise_if_invalid(validate_user_update(data))
        user = self._get_entity(user_id)
        if data.version is not None and data.version != user.version:
            raise ConflictingUpdate("User was modified by another request; reload and try again")

        supplied = data.model_fields_set
        changes: dict[str, Any] = {}
        if data.username is not None and data.username != user.username:
            if repo.username_exists(self.session, data.username, exclude_id=user.id):
                raise DuplicateResourceError(
                    f"User with username '{data.username}' already exists"
                )
            changes["username"] = data.username
            changes["username_changed_at"] = self._clock()
        if data.email is not None and data.email.lower() != user.email:
            email = data.email.lower()
            if repo.email_exists(self.session, email, exclude_id=user.id):
                raise DuplicateResourceError(f"User with email '{email}' already exists")
            changes["email"] = email
        if data.first_name is not None:
            changes["first_name"] = data.first_name
        if data.last_name is not None:
            changes["last_name"] = data.last_name
        if "bio" in supplied:
            changes["bio"] = data.bio
        if data.role is not None and data.role.value != user.role:
            if caller is not None:
                require_permission(caller.role, caller.id, Operation.ASSIGN_ROLE, user.id)
            changes["role"] = data.role.value
        if data.active is not None and data.active != user.active:
            if caller is not None:
                operation = Operation.ACTIVATE_USER if data.active else Operation.DEACTIVATE_USER
                require_permission(caller.role, caller.id, operation, user.id)
            changes["active"] = data.active
            if data.active:
                changes.update(failed_login_attempts=0, locked_until=None)

        if not changes:
            return self.to_response(user)
        updated = self._write(user, changes)
        logger.info("User updated successfully: %s", user_id)
        return self.to_response(updated)

    def change_password(
        self,
        user_id: int,
        current_password: str,
        new_password: str,
        confirm_password: str,
    ) -> None:
        logger.info("Changing password for user: %s", user_id)
        user = self._get_entity(user_id)
        if not verify_password(current_password or "", user.password_hash):
            logger.warning("Invalid current password for user: %s", user_id)
            raise BusinessRuleViolation(
                "Current password is incorrect", code="INVALID_CURRENT_PASSWORD"
            )
        if new_password != confirm_password:
            raise BusinessRuleViolation("Passwords do not match", code="PASSWORD_MISMATCH")
        violations = password_policy_violations(new_password)
        if violations:
            raise BusinessRuleViolation("; ".join(violations), code="WEAK_PASSWORD")
        self._write(user, {"password_hash": hash_password(new_password)})
        logger.info("Password changed successfully for user: %s", user_id)

    # --- login state -------------------------------------------------------

    def record_failed_login(self, user_id: int) -> User:
        threshold = self.settings.LOCKOUT_THRESHOLD
        window = timedelta(minutes=self.settings.LOCKOUT_MINUTES)

        def compute(user: User) -> dict[str, Any]:
            attempts, locked_until = next_lock_state(
                user.failed_login_attempts,
                user.locked_until,
                self._clock(),
                threshold,
                window,
            )
            return {"failed_login_attempts": attempts, "locked_until": locked_until}

        user = self._write_login_state(user_id, compute)
        if is_locked(user.locked_until, self._clock()):
            logger.warning(
                "User %s locked until %s after %s failed logins",
                user_id,
                ensure_utc(user.locked_until).isoformat(),
                user.failed_login_attempts,
            )
        return user

    def record_successful_login(self, user_id: int) -> User:
        return self._write_login_state(
            user_id,
            lambda user: {
                "last_login_at": self._clock(),
                "failed_login_attempts": 0,
                "locked_until": None,
            },
        )

    def is_account_locked(self, user_id: int) -> bool:
        return is_locked(self._get_entity(user_id).locked_until, self._clock())

    def authenticate(self, login: str, password: str) -> User:
        """Check credentials and update login bookkeeping; returns the account."""
        user = repo.get_by_username_or_email(self.session, login)
        if user is None:
            logger.warning("Login failed: unknown account %r", login)
            raise BadCredentials()
        if is_locked(user.locked_until, self._clock()):
            logger.warning("Login rejected: account %s is locked", user.id)
            raise AccountLocked()
        if not user.active:
            logger.warning("Login rejected: account %s is disabled", user.id)
            raise AccountDisabled()
        if not verify_password(password, user.password_hash):
            logger.warning("Login failed: bad password for account %s", user.id)
            self.record_failed_login(user.id)
            raise BadCredentials()
        user = self.record_successful_login(user.id)
        logger.info("User %s logged in", user.id)
        return user

    def release_expired_locks(self) -> int:
        released = repo.release_expired_locks(self.session, self._clock())
        if released:
            self.cache.clear()
            logger.info("Released %d expired account locks", released)
        return released

    # --- activation --------------------------------------------------------

    def activate(self, user_id: int) -> UserResponse:
        logger.info("Activating user with id: %s", user_id)
        user = self._get_entity(user_id)
        updated = self._write(
            user, {"active": True, "failed_login_attempts": 0, "locked_until": None}
        )
        logger.info("User activated successfully: %s", user_id)
        return self.to_response(updated)

    def deactivate(self, user_id: int) -> UserResponse:
        logger.info("Deactivating user with id: %s", user_id)
        user = self._get_entity(user_id)
        updated = self._write(user, {"active": False})
        logger.info("User deactivated successfully: %s", user_id)
        return self.to_response(updated)

    # --- deletion ----------------------------------------------------------

    def delete(self, user_id: int) -> None:
        logger.info("Deleting user with id: %s", user_id)
        user = self._get_entity(user_id)
        avatar_path = user.avatar_path
        repo.delete_by_ids(self.session, [user_id])
        self.cache.evict(user_id)
        if avatar_path:
            self._discard_file(avatar_path)
        logger.info("User deleted successfully: %s", user_id)

    def bulk_delete(self, ids: list[int]) -> BulkDeleteResult:
        requested = list(dict.fromkeys(ids))
        logger.info("Bulk deleting users: %s", requested)
        existing = set(repo.existing_ids(self.session, requested))
        to_delete = [i for i in requested if i in existing]
        skipped = [i for i in requested if i not in existing]
        if skipped:
            logger.warning("Some IDs not found: %s", skipped)
        repo.delete_by_ids(self.session, to_delete)
        self.cache.clear()
        logger.info("Bulk delete completed. Deleted %d users", len(to_delete))
        return BulkDeleteResult(deleted_ids=to_delete, skipped_ids=skipped)

    # --- avatar ------------------------------------------------------------

    def update_avatar(
        self,
        user_id: int,
        content: bytes,
        content_type: str | None,
        filename: str | None,
    ) -> UserResponse:
        """Store the new avatar, point the account at it, then drop the old file."""
        logger.info("Updating avatar for user: %s", user_id)
        ctype = (content_type or "").split(";")[0].strip().lower()
        if ctype not in ALLOWED_AVATAR_TYPES:
            raise InvalidFileError(
                f"Invalid file type. Allowed types: {', '.join(sorted(ALLOWED_AVATAR_TYPES))}"
            )
        if len(content) > self.settings.AVATAR_MAX_BYTES:
            raise PayloadTooLarge(
                f"File size exceeds maximum allowed size of {self.settings.AVATAR_MAX_BYTES} bytes"
            )
        user = self._get_entity(user_id)
        old_path = user.avatar_path

        stored = self.storage.store(content, ctype, filename, subdirectory=f"avatars/{user_id}")
        try:
            updated = self._write(user, {"avatar_path": stored.path})
        except Exception:
            self._discard_file(stored.path)
            raise

        if old_path and old_path != stored.path:
            self._discard_file(old_path)
        logger.info("Avatar updated successfully for user: %s", user_id)
        return self.to_response(updated)

    def _discard_file(self, path: str) -> None:
        """Best-effort delete; failures are logged, never raised."""
        try:
            self.storage.delete(path)
        except (ServiceError, OSError) as e:
            logger.warning("Could not delete file %s: %s", path, e)

    def referenced_avatar_paths(self) -> frozenset[str]:
        return frozenset(repo.avatar_paths(self.session))

    # --- export ------------------------------------------------------------

    def export(self, export_format: str) -> ExportPayload:
        fmt = normalize_format(export_format)
        logger.info("Exporting users in format: %s", fmt)
        users = [self.to_response(u) for u in repo.iter_all(self.session)]
        return export_users(users, fmt)

"""Role/ownership authorization policy. Pure decision functions, no store access."""

from dataclasses import dataclass
from enum import Enum

from account_service.core.errors import AccessDenied
from account_service.models.user import Role


class Operation(str, Enum):
    LIST_USERS = "list_users"
    SEARCH_USERS = "search_users"
    VIEW_USER = "view_user"
    VIEW_USER_BY_USERNAME = "view_user_by_username"
    REGISTER = "register"
    UPDATE_USER = "update_user"
    DELETE_USER = "delete_user"
    BULK_DELETE = "bulk_delete"
    ACTIVATE_USER = "activate_user"
    DEACTIVATE_USER = "deactivate_user"
    UPLOAD_AVATAR = "upload_avatar"
    CHANGE_PASSWORD = "change_password"
    VIEW_STATISTICS = "view_statistics"
    LIST_ROLES = "list_roles"
    EXPORT_USERS = "export_users"
    ASSIGN_ROLE = "assign_role"


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class Rule:
    roles: frozenset[Role] = frozenset()
    # Caller may act on their own account regardless of role.
    owner: bool = False
    public: bool = False


_ADMIN = frozenset({Role.ADMIN})
_STAFF = frozenset({Role.ADMIN, Role.MODERATOR})

POLICY: dict[Operation, Rule] = {
    Operation.LIST_USERS: Rule(roles=_STAFF),
    Operation.SEARCH_USERS: Rule(roles=_STAFF),
    Operation.VIEW_USER: Rule(roles=_ADMIN, owner=True),
    Operation.VIEW_USER_BY_USERNAME: Rule(public=True),
    Operation.REGISTER: Rule(public=True),
    Operation.UPDATE_USER: Rule(roles=_ADMIN, owner=True),
    Operation.DELETE_USER: Rule(roles=_ADMIN),
    Operation.BULK_DELETE: Rule(roles=_ADMIN),
    Operation.ACTIVATE_USER: Rule(roles=_ADMIN),
    Operation.DEACTIVATE_USER: Rule(roles=_ADMIN, owner=True),
    Operation.UPLOAD_AVATAR: Rule(roles=_ADMIN, owner=True),
    Operation.CHANGE_PASSWORD: Rule(roles=_ADMIN, owner=True),
    Operation.VIEW_STATISTICS: Rule(roles=_ADMIN),
    Operation.LIST_ROLES: Rule(roles=_ADMIN),
    Operation.EXPORT_USERS: Rule(roles=_ADMIN),
    Operation.ASSIGN_ROLE: Rule(roles=_ADMIN),
}


def authorize(
    caller_role: Role | None,
    caller_id: int | None,
    operation: Operation,
    target_id: int | None = None,
) -> Decision:
    """
    Decide whether the caller may perform the operation on target_id.

    caller_role/caller_id are None for anonymous callers, who only pass
    public operations. ADMIN passes everything.
    """
    rule = POLICY[operation]
    if rule.public:
        return Decision.ALLOW
    if caller_role is None:
        return Decision.DENY
    caller_role = Role(caller_role)
    if caller_role is Role.ADMIN or caller_role in rule.roles:
        return Decision.ALLOW
    if rule.owner and caller_id is not None and target_id is not None and caller_id == target_id:
        return Decision.ALLOW
    return Decision.DENY


def require_permission(
    caller_role: Role | None,
    caller_id: int | None,
    operation: Operation,
    target_id: int | None = None,
) -> None:
    """Raise AccessDenied unless authorize() allows the operation."""
    if authorize(caller_role, caller_id, operation, target_id) is Decision.DENY:
        raise AccessDenied()

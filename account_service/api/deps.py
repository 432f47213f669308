"""Request pipeline dependencies: authenticate (bearer token) -> authorize (policy) -> handler."""

import logging
from collections.abc import Callable
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from account_service.core.config import get_settings
from account_service.core.database import get_db
from account_service.core.errors import AuthenticationFailed
from account_service.core.tokens import TokenClaims, TokenService
from account_service.models.user import Role, User
from account_service.schemas.auth import CurrentUser
from account_service.services import user_repository as repo
from account_service.services.accounts import AccountService, token_issued_for
from account_service.services.authorization import Operation, require_permission
from account_service.services.file_storage import FileStorage

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@lru_cache
def get_token_service() -> TokenService:
    return TokenService.from_settings(get_settings())


@lru_cache
def get_file_storage() -> FileStorage:
    return FileStorage.from_settings(get_settings())


def get_account_service(
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[FileStorage, Depends(get_file_storage)],
) -> AccountService:
    return AccountService(db, settings=get_settings(), storage=storage)


def resolve_subject(claims: TokenClaims, db: Session) -> User:
    """
    Map verified claims to the account that currently holds the subject username.

    A username can move to another account after a rename or delete; tokens
    issued before the current holder took it are rejected.
    """
    user = repo.get_by_username(db, claims.subject)
    if user is None:
        raise AuthenticationFailed("User not found")
    if not token_issued_for(user, claims.issued_at):
        logger.warning("Token for %s predates the account holding that username", claims.subject)
        raise AuthenticationFailed("Token is no longer valid for this account")
    return user


def authenticate_token(token: str, tokens: TokenService, db: Session) -> CurrentUser:
    """Verify an access token and resolve its subject to the current account."""
    user = resolve_subject(tokens.verify_claims(token), db)
    return CurrentUser(id=user.id, username=user.username, role=Role(user.role), active=user.active)


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[Session, Depends(get_db)],
    tokens: Annotated[TokenService, Depends(get_token_service)],
) -> CurrentUser:
    """Dependency: require valid Bearer JWT and return the current user. Raises 401 if missing or invalid."""
    if credentials is None:
        raise AuthenticationFailed("Not authenticated")
    return authenticate_token(credentials.credentials, tokens, db)


def get_optional_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[Session, Depends(get_db)],
    tokens: Annotated[TokenService, Depends(get_token_service)],
) -> CurrentUser | None:
    """Like get_current_user, but anonymous requests yield None. A bad token is still a 401."""
    if credentials is None:
        return None
    return authenticate_token(credentials.credentials, tokens, db)


def _target_id(request: Request, param: str | None) -> int | None:
    if param is None:
        return None
    raw = request.path_params.get(param)
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def require(
    operation: Operation, target_param: str | None = "user_id"
) -> Callable[..., CurrentUser]:
    """
    Build a dependency that authenticates the caller and checks the policy for
    `operation`, taking the target account id from the `target_param` path parameter.
    """

    def dependency(
        request: Request,
        current_user: Annotated[CurrentUser, Depends(get_current_user)],
    ) -> CurrentUser:
        require_permission(
            current_user.role,
            current_user.id,
            operation,
            _target_id(request, target_param),
        )
        return current_user

    return dependency

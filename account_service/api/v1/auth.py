"""JWT login, token refresh and the current-user endpoint."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from account_service.api.deps import (
    get_account_service,
    get_current_user,
    get_token_service,
    resolve_subject,
)
from account_service.core.errors import AccountDisabled, AccountLocked
from account_service.core.tokens import TokenService
from account_service.models.user import User
from account_service.schemas.auth import (
    CurrentUser,
    LoginRequest,
    LoginResponse,
    RefreshRequest,
    TokenResponse,
)
from account_service.schemas.user import UserResponse
from account_service.services.accounts import AccountService

logger = logging.getLogger(__name__)

router = APIRouter()


def _token_pair(user: User, tokens: TokenService) -> dict:
    return {
        "access_token": tokens.issue_access_token(user.username),
        "refresh_token": tokens.issue_refresh_token(user.username),
        "token_type": "Bearer",
        "expires_in": tokens.expires_in_seconds(),
    }


@router.post("/login", response_model=LoginResponse)
def login(
    body: LoginRequest,
    service: Annotated[AccountService, Depends(get_account_service)],
    tokens: Annotated[TokenService, Depends(get_token_service)],
) -> LoginResponse:
    """
    Authenticate with username (or email) and password; returns an access/refresh pair.
    Include the access token in the Authorization header as: Bearer <access_token>
    """
    user = service.authenticate(body.username, body.password)
    return LoginResponse(**_token_pair(user, tokens), user=service.to_response(user))


@router.post("/refresh", response_model=TokenResponse)
def refresh(
    body: RefreshRequest,
    service: Annotated[AccountService, Depends(get_account_service)],
    tokens: Annotated[TokenService, Depends(get_token_service)],
) -> TokenResponse:
    """Exchange a valid refresh token for a new token pair."""
    claims = tokens.verify_claims(body.refresh_token, expected_type="refresh")
    user = resolve_subject(claims, service.session)
    if service.is_account_locked(user.id):
        raise AccountLocked()
    if not user.active:
        raise AccountDisabled()
    logger.info("Refreshed tokens for user %s", user.id)
    return TokenResponse(**_token_pair(user, tokens))


@router.get("/me", response_model=UserResponse)
def me(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    service: Annotated[AccountService, Depends(get_account_service)],
) -> UserResponse:
    return service.get_user(current_user.id)

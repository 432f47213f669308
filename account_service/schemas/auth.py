"""Request/response schemas for auth endpoints."""

from pydantic import BaseModel, Field

from account_service.models.user import Role
from account_service.schemas.user import UserResponse


class LoginRequest(BaseModel):
    """Credentials for login."""

    username: str = Field(..., min_length=1, max_length=255, description="Username or email")
    password: str = Field(..., min_length=1, max_length=128, description="Password")


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1, description="JWT refresh token")


class TokenResponse(BaseModel):
    """Token pair returned after login or refresh."""

    access_token: str = Field(..., description="JWT access token")
    refresh_token: str = Field(..., description="JWT refresh token")
    token_type: str = Field(default="Bearer", description="Token type")
    expires_in: int = Field(..., description="Access token lifetime in seconds")


class LoginResponse(TokenResponse):
    user: UserResponse


class CurrentUser(BaseModel):
    """Authenticated caller (id, username, role) for dependency injection."""

    model_config = {"from_attributes": True}

    id: int
    username: str
    role: Role
    active: bool = True

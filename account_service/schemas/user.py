"""Request/response schemas for user account endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field, computed_field

from account_service.models.user import Role


class UserCreate(BaseModel):
    """Registration payload. Field rules are checked by services.validation."""

    first_name: str = Field(..., description="First name (2-100 chars)", examples=["John"])
    last_name: str = Field(..., description="Last name (2-100 chars)", examples=["Doe"])
    username: str = Field(
        ...,
        description="Unique username (3-50 chars: letters, digits, _ and -)",
        examples=["johndoe"],
    )
    email: str = Field(..., description="Email address", examples=["john.doe@example.com"])
    password: str = Field(..., description="Password", examples=["SecurePass123!"])
    bio: str | None = Field(default=None, description="Biography (max 500 chars)")
    role: Role | None = Field(
        default=None,
        description="Role; anything above USER requires an admin caller",
    )


class UserUpdate(BaseModel):
    """Partial update; only supplied (non-null) fields change."""

    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    email: str | None = None
    bio: str | None = None
    role: Role | None = None
    active: bool | None = None
    version: int | None = Field(
        default=None,
        ge=0,
        description="Version the client last read; a stale value is rejected with 409",
    )


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., description="Current password")
    new_password: str = Field(..., description="New password")
    confirm_password: str = Field(..., description="New password confirmation")


class BulkDeleteRequest(BaseModel):
    ids: list[int] = Field(..., min_length=1, max_length=1000, description="User IDs to delete")


class BulkDeleteResult(BaseModel):
    deleted_ids: list[int] = Field(default_factory=list)
    skipped_ids: list[int] = Field(
        default_factory=list,
        description="Requested IDs that did not exist",
    )


class UserResponse(BaseModel):
    """Outward view of an account; the password hash is never included."""

    model_config = {"from_attributes": True}

    id: int
    username: str
    email: str
    first_name: str
    last_name: str
    role: Role
    active: bool
    email_verified: bool
    bio: str | None = None
    avatar_url: str | None = None
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None
    version: int

    @computed_field
    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class UserStats(BaseModel):
    total_users: int
    active_users: int
    inactive_users: int
    role_distribution: dict[Role, int]
    recent_registrations: int = Field(..., description="Registrations in the last 30 days")
    verified_email_percentage: float

"""Pydantic request/response schemas."""

from account_service.schemas.auth import (
    CurrentUser,
    LoginRequest,
    LoginResponse,
    RefreshRequest,
    TokenResponse,
)
from account_service.schemas.common import (
    ApiResponse,
    ErrorDetails,
    ErrorResponse,
    PageMetadata,
    PageResponse,
)
from account_service.schemas.files import FileInfo, StorageStats, StoredFile
from account_service.schemas.health import HealthResponse
from account_service.schemas.user import (
    BulkDeleteRequest,
    BulkDeleteResult,
    ChangePasswordRequest,
    UserCreate,
    UserResponse,
    UserStats,
    UserUpdate,
)

__all__ = [
    "ApiResponse",
    "BulkDeleteRequest",
    "BulkDeleteResult",
    "ChangePasswordRequest",
    "CurrentUser",
    "ErrorDetails",
    "ErrorResponse",
    "FileInfo",
    "HealthResponse",
    "LoginRequest",
    "LoginResponse",
    "PageMetadata",
    "PageResponse",
    "RefreshRequest",
    "StorageStats",
    "StoredFile",
    "TokenResponse",
    "UserCreate",
    "UserResponse",
    "UserStats",
    "UserUpdate",
]

"""Response envelopes and pagination shared by all endpoints."""

from datetime import UTC, datetime
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


def _now() -> datetime:
    return datetime.now(UTC)


class ErrorDetails(BaseModel):
    """Machine-readable part of an error response."""

    code: str = Field(..., description="Stable error code (e.g. RESOURCE_NOT_FOUND).")
    field_errors: dict[str, list[str]] | None = Field(
        default=None,
        description="Validation messages grouped by field name.",
    )
    stack_trace: str | None = Field(
        default=None,
        description="Stack trace; only present when APP_ENV=dev.",
    )


class ErrorResponse(BaseModel):
    """Envelope for every error response."""

    status: Literal["error"] = "error"
    message: str
    error: ErrorDetails
    timestamp: datetime = Field(default_factory=_now)


class ApiResponse(BaseModel, Generic[T]):
    """Envelope for non-resource actions (password change, bulk delete...)."""

    status: Literal["success"] = "success"
    message: str | None = None
    data: T | None = None
    timestamp: datetime = Field(default_factory=_now)


class PageMetadata(BaseModel):
    page: int = Field(..., ge=0, description="Zero-based page number.")
    size: int = Field(..., ge=1, description="Items per page.")
    total_elements: int = Field(..., ge=0)
    total_pages: int = Field(..., ge=0)
    first: bool
    last: bool
    has_next: bool
    has_previous: bool

    @classmethod
    def build(cls, page: int, size: int, total_elements: int) -> "PageMetadata":
        total_pages = (total_elements + size - 1) // size if total_elements else 0
        return cls(
            page=page,
            size=size,
            total_elements=total_elements,
            total_pages=total_pages,
            first=page == 0,
            last=page >= total_pages - 1,
            has_next=page < total_pages - 1,
            has_previous=page > 0,
        )


class PageResponse(BaseModel, Generic[T]):
    content: list[T]
    metadata: PageMetadata


def error_body(
    message: str,
    code: str,
    field_errors: dict[str, list[str]] | None = None,
    stack_trace: str | None = None,
) -> dict[str, Any]:
    """JSON-ready error envelope; optional keys are omitted when empty."""
    return ErrorResponse(
        message=message,
        error=ErrorDetails(code=code, field_errors=field_errors, stack_trace=stack_trace),
    ).model_dump(mode="json", exclude_none=True)

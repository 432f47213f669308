"""Typed failures raised by domain operations and translated once at the HTTP boundary."""

from __future__ import annotations

from enum import Enum


class ServiceError(Exception):
    """Base for every failure the boundary translator knows how to render."""

    status_code = 500
    code = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


class NotFoundError(ServiceError):
    status_code = 404
    code = "RESOURCE_NOT_FOUND"

    def __init__(self, resource: str, field: str, value: object) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} not found with {field}: '{value}'")


class DuplicateResourceError(ServiceError):
    status_code = 409
    code = "DUPLICATE_RESOURCE"


class BusinessRuleViolation(ServiceError):
    """A domain rule rejected the request (wrong password, bad file, unsafe path...)."""

    status_code = 400
    code = "BUSINESS_ERROR"


class InvalidFileError(BusinessRuleViolation):
    code = "INVALID_FILE"


class ValidationFailed(ServiceError):
    """Field-level input errors, grouped by field name."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(
        self,
        field_errors: dict[str, list[str]],
        message: str = "Validation failed",
    ) -> None:
        self.field_errors = field_errors
        super().__init__(message)


class AuthenticationFailed(ServiceError):
    status_code = 401
    code = "AUTHENTICATION_FAILED"


class BadCredentials(AuthenticationFailed):
    code = "BAD_CREDENTIALS"

    def __init__(self, message: str = "Invalid username or password") -> None:
        super().__init__(message)


class AccountLocked(AuthenticationFailed):
    code = "ACCOUNT_LOCKED"

    def __init__(self, message: str = "Account is locked. Please contact support") -> None:
        super().__init__(message)


class AccountDisabled(AuthenticationFailed):
    code = "ACCOUNT_DISABLED"

    def __init__(self, message: str = "Account is disabled. Please contact support") -> None:
        super().__init__(message)


class TokenFailure(str, Enum):
    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"
    UNSUPPORTED = "unsupported"


class TokenVerificationError(AuthenticationFailed):
    """Bearer token rejected; `reason` tells expired tokens apart from tampered ones."""

    code = "INVALID_TOKEN"

    def __init__(self, reason: TokenFailure, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        if reason is TokenFailure.EXPIRED:
            super().__init__("Token has expired", code="TOKEN_EXPIRED")
        else:
            super().__init__("Invalid token")


class AccessDenied(ServiceError):
    status_code = 403
    code = "ACCESS_DENIED"

    def __init__(
        self,
        message: str = "Access denied: You don't have permission to access this resource",
    ) -> None:
        super().__init__(message)


class ConflictError(ServiceError):
    """Storage integrity violation."""

    status_code = 409
    code = "DATA_INTEGRITY_VIOLATION"


class ConflictingUpdate(ConflictError):
    """Write based on a stale version of the row."""

    code = "OPTIMISTIC_LOCK_FAILURE"


class PayloadTooLarge(ServiceError):
    status_code = 413
    code = "FILE_TOO_LARGE"

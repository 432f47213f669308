"""Explicit input validation: each checker returns (field, message) pairs."""

import re

from email_validator import EmailNotValidError, validate_email

from account_service.core.errors import ValidationFailed
from account_service.core.security import password_policy_violations
from account_service.schemas.user import UserCreate, UserUpdate

FieldError = tuple[str, str]

NAME_MIN_LEN = 2
NAME_MAX_LEN = 100
USERNAME_MIN_LEN = 3
USERNAME_MAX_LEN = 50
EMAIL_MAX_LEN = 255
BIO_MAX_LEN = 500

_USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def _check_name(field: str, label: str, value: str | None, required: bool) -> list[FieldError]:
    if value is None:
        return [(field, f"{label} is required")] if required else []
    if not value.strip():
        return [(field, f"{label} must not be blank")]
    if not (NAME_MIN_LEN <= len(value) <= NAME_MAX_LEN):
        return [(field, f"{label} must be between {NAME_MIN_LEN} and {NAME_MAX_LEN} characters")]
    return []


def check_username(value: str | None, required: bool = True) -> list[FieldError]:
    if value is None:
        return [("username", "Username is required")] if required else []
    errors: list[FieldError] = []
    if not (USERNAME_MIN_LEN <= len(value) <= USERNAME_MAX_LEN):
        errors.append(
            (
                "username",
                f"Username must be between {USERNAME_MIN_LEN} and {USERNAME_MAX_LEN} characters",
            )
        )
    if not _USERNAME_PATTERN.match(value):
        errors.append(
            ("username", "Username can only contain letters, numbers, underscore and hyphen")
        )
    return errors


def check_email(value: str | None, required: bool = True) -> list[FieldError]:
    if value is None:
        return [("email", "Email is required")] if required else []
    errors: list[FieldError] = []
    try:
        # Syntax only; no DNS lookups on the request path.
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        errors.append(("email", "Email must be valid"))
    if len(value) > EMAIL_MAX_LEN:
        errors.append(("email", f"Email must not exceed {EMAIL_MAX_LEN} characters"))
    return errors


def check_bio(value: str | None) -> list[FieldError]:
    if value is not None and len(value) > BIO_MAX_LEN:
        return [("bio", f"Bio must not exceed {BIO_MAX_LEN} characters")]
    return []


def check_password(value: str | None, field: str = "password") -> list[FieldError]:
    return [(field, message) for message in password_policy_violations(value)]


def validate_user_create(data: UserCreate) -> list[FieldError]:
    errors: list[FieldError] = []
    errors += _check_name("first_name", "First name", data.first_name, required=True)
    errors += _check_name("last_name", "Last name", data.last_name, required=True)
    errors += check_username(data.username)
    errors += check_email(data.email)
    errors += check_password(data.password)
    errors += check_bio(data.bio)
    return errors


def validate_user_update(data: UserUpdate) -> list[FieldError]:
    errors: list[FieldError] = []
    errors += _check_name("first_name", "First name", data.first_name, required=False)
    errors += _check_name("last_name", "Last name", data.last_name, required=False)
    errors += check_username(data.username, required=False)
    errors += check_email(data.email, required=False)
    errors += check_bio(data.bio)
    return errors


def group_field_errors(errors: list[FieldError]) -> dict[str, list[str]]:
    """Group messages by field, preserving first-seen field order."""
    grouped: dict[str, list[str]] = {}
    for field, message in errors:
        grouped.setdefault(field, []).append(message)
    return grouped


def raise_if_invalid(errors: list[FieldError]) -> None:
    if errors:
        raise ValidationFailed(group_field_errors(errors))

"""Serialize account listings to CSV or JSON for download."""

import csv
import io
from collections.abc import Iterable
from dataclasses import dataclass

from pydantic import TypeAdapter

from account_service.core.errors import BusinessRuleViolation
from account_service.schemas.user import UserResponse

SUPPORTED_FORMATS = ("CSV", "JSON", "EXCEL")

CSV_HEADER = ["ID", "Username", "Email", "First Name", "Last Name", "Role", "Active", "Created At"]

_users_adapter = TypeAdapter(list[UserResponse])


@dataclass(frozen=True)
class ExportPayload:
    content: bytes
    media_type: str
    filename: str


def normalize_format(export_format: str | None) -> str:
    fmt = (export_format or "").strip().upper()
    if fmt not in SUPPORTED_FORMATS:
        raise BusinessRuleViolation(
            f"Unsupported export format: {export_format}", code="UNSUPPORTED_FORMAT"
        )
    return fmt


def to_csv(users: Iterable[UserResponse]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for user in users:
        writer.writerow(
            [
                user.id,
                user.username,
                user.email,
                user.first_name,
                user.last_name,
                user.role.value,
                str(user.active).lower(),
                user.created_at.isoformat(),
            ]
        )
    return buffer.getvalue().encode("utf-8")


def to_json(users: Iterable[UserResponse]) -> bytes:
    return _users_adapter.dump_json(list(users))


def export_users(users: Iterable[UserResponse], export_format: str) -> ExportPayload:
    """
    Render users in the requested format (case-insensitive).

    EXCEL is served as CSV with an Excel-friendly media type; spreadsheet
    applications open it directly.
    """
    fmt = normalize_format(export_format)
    if fmt == "JSON":
        return ExportPayload(to_json(users), "application/json", "users.json")
    if fmt == "EXCEL":
        return ExportPayload(to_csv(users), "application/vnd.ms-excel", "users.csv")
    return ExportPayload(to_csv(users), "text/csv", "users.csv")

"""Unit tests for account export rendering."""

import csv
import io
import json
import unittest
from datetime import UTC, datetime

from account_service.core.errors import BusinessRuleViolation
from account_service.models.user import Role
from account_service.schemas.user import UserResponse
from account_service.services.export import CSV_HEADER, export_users, normalize_format


def _user(user_id: int, username: str, **overrides) -> UserResponse:
    fields = {
        "id": user_id,
        "username": username,
        "email": f"{username}@example.com",
        "first_name": "Test",
        "last_name": "User, Jr.",
        "role": Role.USER,
        "active": True,
        "email_verified": False,
        "created_at": datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC),
        "version": 0,
    }
    fields.update(overrides)
    return UserResponse(**fields)


class TestExportFormats(unittest.TestCase):
    def setUp(self) -> None:
        self.users = [_user(1, "alice", role=Role.ADMIN), _user(2, "bob", active=False)]

    def test_csv(self) -> None:
        payload = export_users(self.users, "CSV")
        self.assertEqual(payload.media_type, "text/csv")
        self.assertEqual(payload.filename, "users.csv")
        rows = list(csv.reader(io.StringIO(payload.content.decode("utf-8"))))
        self.assertEqual(rows[0], CSV_HEADER)
        self.assertEqual(
            rows[1],
            ["1", "alice", "alice@example.com", "Test", "User, Jr.", "ADMIN", "true",
             "2026-01-02T03:04:05+00:00"],
        )
        self.assertEqual(rows[2][6], "false")

    def test_json(self) -> None:
        payload = export_users(self.users, "json")
        self.assertEqual(payload.media_type, "application/json")
        data = json.loads(payload.content)
        self.assertEqual([u["username"] for u in data], ["alice", "bob"])
        self.assertEqual(data[0]["full_name"], "Test User, Jr.")
        self.assertNotIn("password_hash", data[0])

    def test_excel_served_as_csv(self) -> None:
        payload = export_users(self.users, "Excel")
        self.assertEqual(payload.media_type, "application/vnd.ms-excel")
        self.assertTrue(payload.content.decode("utf-8").startswith("ID,Username"))

    def test_empty_export_has_header_only(self) -> None:
        payload = export_users([], "CSV")
        self.assertEqual(payload.content.decode("utf-8").strip(), ",".join(CSV_HEADER))

    def test_unsupported_format(self) -> None:
        for fmt in ("XML", "", None):
            with self.subTest(fmt=fmt):
                with self.assertRaises(BusinessRuleViolation) as ctx:
                    normalize_format(fmt)
                self.assertEqual(ctx.exception.code, "UNSUPPORTED_FORMAT")


if __name__ == "__main__":
    unittest.main()

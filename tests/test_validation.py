"""Unit tests for input validation and field-error grouping."""

import unittest

from account_service.core.errors import ValidationFailed
from account_service.schemas.user import UserCreate, UserUpdate
from account_service.services.validation import (
    check_email,
    check_username,
    group_field_errors,
    raise_if_invalid,
    validate_user_create,
    validate_user_update,
)


def _create(**overrides) -> UserCreate:
    fields = {
        "first_name": "Alice",
        "last_name": "Smith",
        "username": "alice",
        "email": "alice@example.com",
        "password": "Abcdefg1!",
    }
    fields.update(overrides)
    return UserCreate(**fields)


class TestValidateUserCreate(unittest.TestCase):
    def test_valid_payload_has_no_errors(self) -> None:
        self.assertEqual(validate_user_create(_create()), [])

    def test_errors_grouped_by_field(self) -> None:
        errors = validate_user_create(
            _create(first_name="A", username="a!", email="nope", password="abc")
        )
        grouped = group_field_errors(errors)
        self.assertEqual(
            set(grouped), {"first_name", "username", "email", "password"}
        )
        # Username breaks both the length and the character rule.
        self.assertEqual(len(grouped["username"]), 2)
        self.assertGreater(len(grouped["password"]), 1)

    def test_bio_limit(self) -> None:
        grouped = group_field_errors(validate_user_create(_create(bio="x" * 501)))
        self.assertEqual(grouped, {"bio": ["Bio must not exceed 500 characters"]})

    def test_raise_if_invalid_carries_field_errors(self) -> None:
        with self.assertRaises(ValidationFailed) as ctx:
            raise_if_invalid(validate_user_create(_create(last_name=" ")))
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.code, "VALIDATION_ERROR")
        self.assertIn("last_name", ctx.exception.field_errors)

    def test_raise_if_invalid_noop_when_clean(self) -> None:
        raise_if_invalid([])


class TestValidateUserUpdate(unittest.TestCase):
    def test_omitted_fields_not_checked(self) -> None:
        self.assertEqual(validate_user_update(UserUpdate()), [])

    def test_supplied_fields_checked(self) -> None:
        grouped = group_field_errors(validate_user_update(UserUpdate(email="bad", username="x")))
        self.assertEqual(set(grouped), {"email", "username"})


class TestFieldCheckers(unittest.TestCase):
    def test_username_characters(self) -> None:
        self.assertEqual(check_username("john_doe-1"), [])
        self.assertTrue(check_username("john.doe"))

    def test_email_format(self) -> None:
        self.assertEqual(check_email("john.doe@example.com"), [])
        self.assertTrue(check_email("john.doe@example"))
        self.assertTrue(check_email("john doe@example.com"))
        self.assertTrue(check_email("john..doe@example.com"))
        self.assertTrue(check_email(".john@example.com"))
        self.assertTrue(check_email("john@exa_mple.com"))
        self.assertEqual(check_email("o'brien+tag@sub.example.org"), [])


if __name__ == "__main__":
    unittest.main()

"""Password hashing and password policy."""

import bcrypt

# Bcrypt cost (rounds); 12 is a good default for security vs speed.
BCRYPT_ROUNDS = 12

PASSWORD_MIN_LEN = 8
PASSWORD_MAX_LEN = 128
# Only these symbols count toward (and are permitted in) a password.
PASSWORD_SYMBOLS = "@$!%*?&"


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password for storage. Do not store plain passwords."""
    # bcrypt has a 72-byte limit; truncate to avoid errors (validation already limits length).
    pw_bytes = plain_password.encode("utf-8")[:72]
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain_password: str, hashed: str) -> bool:
    """Verify a plain password against a stored hash."""
    pw_bytes = plain_password.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def _is_allowed_char(char: str) -> bool:
    return (char.isascii() and char.isalnum()) or char in PASSWORD_SYMBOLS


def password_policy_violations(password: str | None) -> list[str]:
    """
    Return every rule the password breaks; an empty list means it is acceptable.

    Rules: 8-128 characters; at least one uppercase letter, one lowercase letter,
    one digit and one symbol from PASSWORD_SYMBOLS; no other characters.
    """
    if not password:
        return ["Password is required"]
    violations: list[str] = []
    if not (PASSWORD_MIN_LEN <= len(password) <= PASSWORD_MAX_LEN):
        violations.append(
            f"Password must be between {PASSWORD_MIN_LEN} and {PASSWORD_MAX_LEN} characters"
        )
    if not any(c.isascii() and c.isupper() for c in password):
        violations.append("Password must contain at least one uppercase letter")
    if not any(c.isascii() and c.islower() for c in password):
        violations.append("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in password):
        violations.append("Password must contain at least one number")
    if not any(c in PASSWORD_SYMBOLS for c in password):
        violations.append(
            f"Password must contain at least one special character ({PASSWORD_SYMBOLS})"
        )
    if not all(_is_allowed_char(c) for c in password):
        violations.append(
            f"Password may only contain letters, numbers and {PASSWORD_SYMBOLS}"
        )
    return violations


def is_password_acceptable(password: str | None) -> bool:
    return not password_policy_violations(password)

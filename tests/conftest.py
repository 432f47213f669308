"""
Test configuration: point settings at in-memory SQLite and a temporary storage
root before any account_service module reads them.
"""
import os
import tempfile

os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret-key-with-at-least-32-characters!"
os.environ["FILE_STORAGE_PATH"] = tempfile.mkdtemp(prefix="account-service-tests-")
os.environ["LOG_LEVEL"] = "WARNING"

import account_service.core.security as security  # noqa: E402

# Minimum bcrypt cost keeps hashing fast in tests.
security.BCRYPT_ROUNDS = 4

"""Tests for the failed-login lockout state machine and its persistence."""

import unittest
from datetime import UTC, datetime, timedelta

from account_service.core.config import get_settings
from account_service.core.errors import AccountLocked, BadCredentials
from account_service.models.base import ensure_utc
from account_service.services.accounts import AccountService, is_locked, next_lock_state

from support import STRONG_PASSWORD, DatabaseTestCase, create_account

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)
WINDOW = timedelta(minutes=30)


class TestNextLockState(unittest.TestCase):
    """Pure transition: (attempts, locked_until) after one more failure."""

    def test_counts_below_threshold(self) -> None:
        self.assertEqual(next_lock_state(0, None, NOW, 5, WINDOW), (1, None))
        self.assertEqual(next_lock_state(3, None, NOW, 5, WINDOW), (4, None))

    def test_threshold_locks(self) -> None:
        self.assertEqual(next_lock_state(4, None, NOW, 5, WINDOW), (5, NOW + WINDOW))

    def test_active_lock_not_extended(self) -> None:
        deadline = NOW + timedelta(minutes=10)
        self.assertEqual(next_lock_state(5, deadline, NOW, 5, WINDOW), (6, deadline))

    def test_lapsed_lock_restarts_count(self) -> None:
        lapsed = NOW - timedelta(minutes=1)
        self.assertEqual(next_lock_state(7, lapsed, NOW, 5, WINDOW), (1, None))

    def test_naive_deadline_treated_as_utc(self) -> None:
        naive = (NOW + WINDOW).replace(tzinfo=None)
        attempts, deadline = next_lock_state(5, naive, NOW, 5, WINDOW)
        self.assertEqual((attempts, deadline), (6, NOW + WINDOW))

    def test_is_locked(self) -> None:
        self.assertFalse(is_locked(None, NOW))
        self.assertTrue(is_locked(NOW + WINDOW, NOW))
        self.assertFalse(is_locked(NOW, NOW))


class TestLockoutFlow(DatabaseTestCase):
    """Five failures lock the account; success or activation clears it."""

    def setUp(self) -> None:
        super().setUp()
        self.now = NOW
        self.user_id = create_account(self.db, "bob")
        self.service = AccountService(self.db, clock=lambda: self.now)
        self.threshold = get_settings().LOCKOUT_THRESHOLD

    def _fail(self, times: int):
        user = None
        for _ in range(times):
            user = self.service.record_failed_login(self.user_id)
        return user

    def test_threshold_failures_lock_account(self) -> None:
        user = self._fail(self.threshold)
        self.assertEqual(user.failed_login_attempts, self.threshold)
        self.assertGreater(ensure_utc(user.locked_until), self.now)
        self.assertTrue(self.service.is_account_locked(self.user_id))

    def test_further_failure_does_not_extend_lock(self) -> None:
        locked = ensure_utc(self._fail(self.threshold).locked_until)
        self.now = NOW + timedelta(minutes=5)
        user = self._fail(1)
        self.assertEqual(ensure_utc(user.locked_until), locked)
        self.assertEqual(user.failed_login_attempts, self.threshold + 1)

    def test_successful_login_clears_lock_state(self) -> None:
        self._fail(2)
        user = self.service.record_successful_login(self.user_id)
        self.assertEqual(user.failed_login_attempts, 0)
        self.assertIsNone(user.locked_until)
        self.assertEqual(ensure_utc(user.last_login_at), self.now)

    def test_activate_clears_lock_state(self) -> None:
        self._fail(self.threshold)
        self.service.activate(self.user_id)
        user = self.service.get_entity(self.user_id)
        self.assertEqual(user.failed_login_attempts, 0)
        self.assertIsNone(user.locked_until)

    def test_each_failure_bumps_version(self) -> None:
        before = self.service.get_entity(self.user_id).version
        self._fail(3)
        self.assertEqual(self.service.get_entity(self.user_id).version, before + 3)

    def test_authenticate_locks_then_rejects_correct_password(self) -> None:
        for _ in range(self.threshold):
            with self.assertRaises(BadCredentials):
                self.service.authenticate("bob", "Wrong!Pass1")
        with self.assertRaises(AccountLocked):
            self.service.authenticate("bob", STRONG_PASSWORD)

    def test_lock_lapses_after_window(self) -> None:
        self._fail(self.threshold)
        self.now = NOW + timedelta(minutes=get_settings().LOCKOUT_MINUTES, seconds=1)
        user = self.service.authenticate("bob", STRONG_PASSWORD)
        self.assertEqual(user.failed_login_attempts, 0)
        self.assertIsNone(user.locked_until)

    def test_release_expired_locks(self) -> None:
        self._fail(self.threshold)
        self.assertEqual(self.service.release_expired_locks(), 0)
        self.now = NOW + timedelta(days=1)
        self.assertEqual(self.service.release_expired_locks(), 1)
        self.assertFalse(self.service.is_account_locked(self.user_id))
        self.assertEqual(self.service.release_expired_locks(), 0)


if __name__ == "__main__":
    unittest.main()

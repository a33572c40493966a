"""
Gatekeeper - Account Lockout Guard Tests

Run with: pytest tests/test_lockout.py -v
"""

import asyncio
from datetime import timedelta

import pytest

from backend.auth.lockout import LockoutGuard
from backend.auth.models import User, utcnow
from tests.conftest import make_user, reload_user


def set_lock(session_factory, user, lock_until, attempts):
    with session_factory() as db:
        row = db.get(User, user.id)
        row.lock_until = lock_until
        row.failed_login_attempts = attempts
        db.add(row)
        db.commit()


@pytest.fixture
def user(session_factory):
    return make_user(session_factory, "lockout@test.com")


class TestLockoutGuard:

    async def test_failures_below_threshold_do_not_lock(self, lockout, session_factory, user):
        for _ in range(4):
            await lockout.register_failure(user)

        stored = reload_user(session_factory, user)
        assert stored.failed_login_attempts == 4
        assert stored.lock_until is None
        assert LockoutGuard.is_locked(stored) is False

    async def test_threshold_trips_lock(self, lockout, session_factory, user):
        before = utcnow()
        for _ in range(5):
            await lockout.register_failure(user)

        stored = reload_user(session_factory, user)
        assert stored.failed_login_attempts == 5
        assert LockoutGuard.is_locked(stored) is True
        assert before + timedelta(hours=2) <= stored.lock_until <= utcnow() + timedelta(hours=2)

    async def test_in_memory_user_mirrors_store(self, lockout, user):
        for _ in range(5):
            returned = await lockout.register_failure(user)

        assert returned is user
        assert user.failed_login_attempts == 5
        assert user.is_locked()

    async def test_failures_while_locked_do_not_extend_lock(self, lockout, session_factory, user):
        for _ in range(5):
            await lockout.register_failure(user)
        lock_until = reload_user(session_factory, user).lock_until

        await lockout.register_failure(user)

        stored = reload_user(session_factory, user)
        assert stored.failed_login_attempts == 6
        assert stored.lock_until == lock_until

    async def test_failure_after_expired_lock_restarts_count(self, lockout, session_factory, user):
        set_lock(session_factory, user, utcnow() - timedelta(minutes=1), attempts=5)

        await lockout.register_failure(user)

        stored = reload_user(session_factory, user)
        assert stored.failed_login_attempts == 1
        assert stored.lock_until is None
        assert LockoutGuard.is_locked(stored) is False

    async def test_success_resets(self, lockout, session_factory, user):
        for _ in range(3):
            await lockout.register_failure(user)

        await lockout.register_success(user)

        stored = reload_user(session_factory, user)
        assert stored.failed_login_attempts == 0
        assert stored.lock_until is None

    async def test_concurrent_failures_are_all_counted(self, lockout, session_factory, user):
        await asyncio.gather(*(lockout.register_failure(user) for _ in range(3)))

        assert reload_user(session_factory, user).failed_login_attempts == 3

    def test_lock_expires_with_time(self, user):
        user.lock_until = utcnow() + timedelta(minutes=5)

        assert LockoutGuard.is_locked(user) is True
        assert LockoutGuard.is_locked(user, now=utcnow() + timedelta(minutes=6)) is False

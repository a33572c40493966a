"""
Gatekeeper - Account Lockout Guard

Per-principal failed-login counter with a time-boxed lock.

Rules:
- Failure after an expired lock: attempts reset to 1, lock cleared
- Otherwise attempts += 1; reaching the threshold sets
  lock_until = now + lock_duration (an active lock is never extended)
- Success: attempts reset to 0, lock cleared

Counters are changed with relative SQL UPDATEs inside one transaction
(run in a worker thread), so concurrent failures for the same principal
are never lost.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple
from uuid import UUID

from sqlalchemy import or_, update
from sqlmodel import Session as DBSession

from backend.auth.models import User, utcnow
from backend.logging import get_logger


logger = get_logger(__name__)


DEFAULT_THRESHOLD = 5
DEFAULT_LOCK_DURATION = timedelta(hours=2)


class LockoutGuard:
    """
    Args:
        session_factory: Callable returning a new database session
        threshold: Consecutive failures that trip the lock
        lock_duration: How long a tripped lock lasts
    """

    def __init__(
        self,
        session_factory: Callable[[], DBSession],
        threshold: int = DEFAULT_THRESHOLD,
        lock_duration: timedelta = DEFAULT_LOCK_DURATION,
    ):
        self._session_factory = session_factory
        self.threshold = threshold
        self.lock_duration = lock_duration

    @staticmethod
    def is_locked(user: User, now: Optional[datetime] = None) -> bool:
        return user.is_locked(now)

    def _count_failure(self, user_id: UUID, now: datetime) -> Tuple[User, bool]:
        with self._session_factory() as db:
            reset = db.exec(
                update(User)
                .where(
                    User.id == user_id,
                    User.lock_until.is_not(None),
                    User.lock_until <= now,
                )
                .values(failed_login_attempts=1, lock_until=None)
            )
            if reset.rowcount == 0:
                db.exec(
                    update(User)
                    .where(User.id == user_id)
                    .values(failed_login_attempts=User.failed_login_attempts + 1)
                )

            tripped = db.exec(
                update(User)
                .where(
                    User.id == user_id,
                    User.failed_login_attempts >= self.threshold,
                    or_(User.lock_until.is_(None), User.lock_until <= now),
                )
                .values(lock_until=now + self.lock_duration)
            )
            db.commit()

            return db.get(User, user_id), tripped.rowcount > 0

    async def register_failure(self, user: User) -> User:
        """
        Record a failed password check.

        Returns:
            The principal with its counters refreshed from the store
        """
        fresh, tripped = await asyncio.to_thread(self._count_failure, user.id, utcnow())

        user.failed_login_attempts = fresh.failed_login_attempts
        user.lock_until = fresh.lock_until

        if tripped:
            logger.warning(
                "account.locked",
                user_id=str(user.id),
                attempts=fresh.failed_login_attempts,
                lock_until=fresh.lock_until.isoformat(),
            )
        else:
            logger.info("login.failed_attempt", user_id=str(user.id), attempts=fresh.failed_login_attempts)
        return user

    def _clear(self, user_id: UUID) -> None:
        with self._session_factory() as db:
            db.exec(
                update(User)
                .where(User.id == user_id)
                .values(failed_login_attempts=0, lock_until=None)
            )
            db.commit()

    async def register_success(self, user: User) -> None:
        """Clear failure state after a successful password check."""
        await asyncio.to_thread(self._clear, user.id)

        user.failed_login_attempts = 0
        user.lock_until = None

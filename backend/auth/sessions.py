"""
Gatekeeper - Session Registry

Server-side registry of refresh-token sessions.

Each session binds one device/client to the hash of its current
refresh token. Lifecycle:

    Active -> Rotated (hash swapped in place) -> ... -> Terminated{reason}
    Active -> expired by time (detected at lookup, no explicit transition)

Security:
- Raw refresh tokens are never stored, only their SHA-256 hash
- A principal has at most `max_sessions` active, unexpired sessions;
  the least-recently-active one is evicted to make room
- Rotation is a conditional UPDATE on the old hash, so concurrent
  refreshes with the same token yield at most one success
"""

import asyncio
import weakref
from datetime import datetime
from typing import Callable, Optional, Tuple
from uuid import UUID

from sqlalchemy import update, delete
from sqlmodel import Session as DBSession, select

from backend.auth.models import DeviceType, Session, TerminationReason, utcnow
from backend.auth.tokens import hash_token
from backend.logging import get_logger, short_hash


logger = get_logger(__name__)


# Session configuration
DEFAULT_MAX_SESSIONS = 3


def parse_user_agent(user_agent: Optional[str]) -> Tuple[DeviceType, str]:
    """
    Derive a coarse device class and client name from a User-Agent.

    Returns:
        (device_type, client_name)
    """
    if not user_agent:
        return DeviceType.UNKNOWN, "Unknown"

    lowered = user_agent.lower()
    if "tablet" in lowered or "ipad" in lowered:
        device_type = DeviceType.TABLET
    elif "mobile" in lowered:
        device_type = DeviceType.MOBILE
    else:
        device_type = DeviceType.DESKTOP

    # Edge and Chrome both advertise "Chrome"; Chrome advertises "Safari"
    if "Edg" in user_agent:
        client_name = "Edge"
    elif "Firefox" in user_agent:
        client_name = "Firefox"
    elif "Chrome" in user_agent:
        client_name = "Chrome"
    elif "Safari" in user_agent:
        client_name = "Safari"
    else:
        client_name = "Unknown"

    return device_type, client_name


class SessionRegistry:
    """
    Tracks active refresh-token sessions per principal.

    Args:
        session_factory: Callable returning a new database session
        max_sessions: Concurrent active sessions allowed per principal
    """

    def __init__(
        self,
        session_factory: Callable[[], DBSession],
        max_sessions: int = DEFAULT_MAX_SESSIONS,
    ):
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self._session_factory = session_factory
        self.max_sessions = max_sessions
        self._principal_locks: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, user_id: UUID) -> asyncio.Lock:
        lock = self._principal_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._principal_locks[user_id] = lock
        return lock

    def _insert_with_eviction(self, user_id: UUID, token_hash: str, expires_at: datetime, **meta) -> Session:
        with self._session_factory() as db:
            now = utcnow()
            active = db.exec(
                select(Session)
                .where(
                    Session.user_id == user_id,
                    Session.is_active == True,  # noqa: E712
                    Session.expires_at > now,
                )
                .order_by(Session.last_activity_at, Session.created_at)
            ).all()

            # Normally exactly one; more only if the cap was lowered
            overflow = len(active) - self.max_sessions + 1
            for victim in active[:max(overflow, 0)]:
                victim.is_active = False
                victim.terminated_at = now
                victim.termination_reason = TerminationReason.SESSION_LIMIT
                db.add(victim)
                logger.info(
                    "session.evicted",
                    user_id=str(user_id),
                    session_id=str(victim.session_id),
                    reason=TerminationReason.SESSION_LIMIT.value,
                )

            session = Session(
                user_id=user_id,
                refresh_token_hash=token_hash,
                is_active=True,
                created_at=now,
                last_activity_at=now,
                expires_at=expires_at,
                **meta,
            )
            db.add(session)
            db.commit()
            db.refresh(session)
            return session

    async def create_session(
        self,
        user_id: UUID,
        refresh_token: str,
        expires_at: datetime,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Session:
        """
        Record a new session, evicting the least-recently-active one if
        the principal is at the cap.

        The count/evict/insert sequence runs under a per-principal lock,
        so concurrent logins cannot overshoot the cap.

        Args:
            user_id: Owning principal
            refresh_token: Raw refresh token (only its hash is stored)
            expires_at: Absolute session expiry
            user_agent: Client user-agent for device metadata
            ip_address: Client IP for audit

        Returns:
            Created Session object
        """
        device_type, client_name = parse_user_agent(user_agent)

        async with self._lock_for(user_id):
            session = await asyncio.to_thread(
                self._insert_with_eviction,
                user_id,
                hash_token(refresh_token),
                expires_at,
                user_agent=user_agent[:512] if user_agent else None,
                ip_address=ip_address,
                device_type=device_type,
                client_name=client_name,
            )

        logger.info(
            "session.created",
            user_id=str(user_id),
            session_id=str(session.session_id),
            device_type=device_type.value,
        )
        return session

    def _touch(self, token_hash: str) -> Optional[Session]:
        with self._session_factory() as db:
            now = utcnow()
            session = db.exec(
                select(Session).where(
                    Session.refresh_token_hash == token_hash,
                    Session.is_active == True,  # noqa: E712
                    Session.expires_at > now,
                )
            ).first()

            if not session:
                return None

            session.last_activity_at = now
            db.add(session)
            db.commit()
            db.refresh(session)
            return session

    async def validate_and_touch(self, refresh_token: str) -> Optional[Session]:
        """
        Look up an active, unexpired session by refresh token.

        On a hit, last activity is bumped to now. Expiry is not extended.

        Returns:
            Session if valid, None otherwise
        """
        return await asyncio.to_thread(self._touch, hash_token(refresh_token))

    def _swap_hash(self, old_hash: str, new_hash: str, new_expires_at: datetime) -> Optional[Session]:
        with self._session_factory() as db:
            now = utcnow()
            result = db.exec(
                update(Session)
                .where(
                    Session.refresh_token_hash == old_hash,
                    Session.is_active == True,  # noqa: E712
                    Session.expires_at > now,
                )
                .values(
                    refresh_token_hash=new_hash,
                    expires_at=new_expires_at,
                    last_activity_at=now,
                )
            )
            db.commit()

            if result.rowcount != 1:
                return None

            return db.exec(
                select(Session).where(Session.refresh_token_hash == new_hash)
            ).first()

    async def rotate(
        self,
        old_refresh_token: str,
        new_refresh_token: str,
        new_expires_at: datetime,
    ) -> Optional[Session]:
        """
        Swap the session's refresh-token hash for a new one.

        The swap is a single conditional UPDATE keyed on the old hash, so
        it succeeds at most once per token. A None result means the token
        was already rotated, revoked or expired and the caller must treat
        the refresh as invalid.

        Returns:
            The rotated session, or None
        """
        old_hash = hash_token(old_refresh_token)
        session = await asyncio.to_thread(
            self._swap_hash, old_hash, hash_token(new_refresh_token), new_expires_at
        )

        if session is None:
            logger.warning("session.rotation_rejected", token_hash=short_hash(old_hash))
            return None

        logger.info("session.rotated", session_id=str(session.session_id), user_id=str(session.user_id))
        return session

    def _execute(self, statement) -> int:
        with self._session_factory() as db:
            result = db.exec(statement)
            db.commit()
        return result.rowcount

    async def invalidate(self, refresh_token: str) -> bool:
        """
        Terminate the session holding this refresh token (user logout).

        Returns:
            True if an active session was terminated
        """
        token_hash = hash_token(refresh_token)

        count = await asyncio.to_thread(
            self._execute,
            update(Session)
            .where(
                Session.refresh_token_hash == token_hash,
                Session.is_active == True,  # noqa: E712
            )
            .values(
                is_active=False,
                terminated_at=utcnow(),
                termination_reason=TerminationReason.USER_LOGOUT,
            ),
        )

        terminated = count > 0
        if terminated:
            logger.info("session.terminated", token_hash=short_hash(token_hash), reason="user_logout")
        return terminated

    async def invalidate_all(
        self,
        user_id: UUID,
        reason: TerminationReason = TerminationReason.FORCED_LOGOUT,
    ) -> int:
        """
        Terminate every active session of a principal.

        Use cases:
            - Logout from all devices
            - Password reset
            - Admin forced logout

        Returns:
            Number of sessions terminated
        """
        async with self._lock_for(user_id):
            count = await asyncio.to_thread(
                self._execute,
                update(Session)
                .where(
                    Session.user_id == user_id,
                    Session.is_active == True,  # noqa: E712
                )
                .values(
                    is_active=False,
                    terminated_at=utcnow(),
                    termination_reason=reason,
                ),
            )

        logger.info(
            "session.terminated_all",
            user_id=str(user_id),
            count=count,
            reason=reason.value,
        )
        return count

    def _active_for(self, user_id: UUID) -> list[Session]:
        with self._session_factory() as db:
            return list(db.exec(
                select(Session)
                .where(
                    Session.user_id == user_id,
                    Session.is_active == True,  # noqa: E712
                    Session.expires_at > utcnow(),
                )
                .order_by(Session.last_activity_at.desc())
            ).all())

    async def list_active(self, user_id: UUID) -> list[Session]:
        """
        Active, unexpired sessions of a principal, most recent first.
        """
        return await asyncio.to_thread(self._active_for, user_id)

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """
        Delete session rows past their absolute expiry.

        Should be run periodically (see backend.app lifespan).

        Returns:
            Number of rows deleted
        """
        cutoff = now or utcnow()
        count = await asyncio.to_thread(self._execute, delete(Session).where(Session.expires_at <= cutoff))

        if count:
            logger.info("session.purged", count=count)
        return count

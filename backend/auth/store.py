"""
Gatekeeper - Credential Store

Durable principal records backed by SQLModel.

Lookups by email are case-insensitive (emails are stored lower-cased).
Database round trips and bcrypt run in worker threads; the event loop
never waits on either.
"""

import asyncio
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session as DBSession, select

from backend.auth.models import User, utcnow
from backend.auth.password import hash_password, verify_password
from backend.errors import ConflictError


def normalize_email(email: str) -> str:
    return email.strip().lower()


class CredentialStore:
    """
    Principal persistence.

    Every query runs in a worker thread on its own short-lived session.

    Args:
        session_factory: Callable returning a new database session
    """

    def __init__(self, session_factory: Callable[[], DBSession]):
        self._session_factory = session_factory

    def _first(self, statement) -> Optional[User]:
        with self._session_factory() as db:
            return db.exec(statement).first()

    async def find_by_email(self, email: str, include_deleted: bool = False) -> Optional[User]:
        statement = select(User).where(User.email == normalize_email(email))
        if not include_deleted:
            statement = statement.where(User.is_deleted == False)  # noqa: E712
        return await asyncio.to_thread(self._first, statement)

    async def find_by_id(self, user_id: UUID) -> Optional[User]:
        return await asyncio.to_thread(self._first, select(User).where(User.id == user_id))

    async def find_by_external_id(self, external_id: str) -> Optional[User]:
        return await asyncio.to_thread(self._first, select(User).where(User.external_id == external_id))

    async def find_by_verification_token(self, token_hash: str, now: datetime) -> Optional[User]:
        """Principal holding an unexpired email-verification token hash."""
        return await asyncio.to_thread(
            self._first,
            select(User).where(
                User.email_verification_token_hash == token_hash,
                User.email_verification_expires_at > now,
            ),
        )

    async def find_by_reset_token(self, token_hash: str, now: datetime) -> Optional[User]:
        """Principal holding an unexpired password-reset token hash."""
        return await asyncio.to_thread(
            self._first,
            select(User).where(
                User.password_reset_token_hash == token_hash,
                User.password_reset_expires_at > now,
                User.is_deleted == False,  # noqa: E712
            ),
        )

    def _save(self, user: User) -> User:
        with self._session_factory() as db:
            db.add(user)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise ConflictError("User already exists with this email")
            db.refresh(user)
        return user

    async def save(self, user: User) -> User:
        """
        Insert or update a principal.

        Raises:
            ConflictError: Email or external id already taken
        """
        user.email = normalize_email(user.email)
        return await asyncio.to_thread(self._save, user)

    def _set_last_login(self, user_id: UUID, now: datetime) -> None:
        with self._session_factory() as db:
            db.exec(update(User).where(User.id == user_id).values(last_login_at=now))
            db.commit()

    async def mark_logged_in(self, user: User) -> None:
        now = utcnow()
        await asyncio.to_thread(self._set_last_login, user.id, now)
        user.last_login_at = now

    async def compare_secret(self, plain: str, password_hash: Optional[str]) -> bool:
        """bcrypt comparison; a missing hash never matches."""
        if not password_hash:
            return False
        return await asyncio.to_thread(verify_password, plain, password_hash)

    async def hash_secret(self, plain: str) -> str:
        return await asyncio.to_thread(hash_password, plain)

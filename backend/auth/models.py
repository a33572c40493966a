"""
Gatekeeper - Authentication Database Models

SQLModel-based models for principals and refresh-token sessions.
Tables live in whichever database DATABASE_URL points at.

Security:
- Local passwords are kept only as bcrypt hashes
- Refresh, verification and reset tokens stored as SHA-256 hashes only
- All timestamps are naive UTC
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, String, Boolean, DateTime, Integer, Index, Enum as SQLEnum


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    """Static roles. Every principal has exactly one."""
    ADMIN = "Admin"
    USER = "User"


class DeviceType(str, Enum):
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    UNKNOWN = "unknown"


class TerminationReason(str, Enum):
    """Why a session stopped being active."""
    SESSION_LIMIT = "session_limit"
    USER_LOGOUT = "user_logout"
    FORCED_LOGOUT = "forced_logout"


class User(SQLModel, table=True):
    """
    Principal account.

    Attributes:
        id: Principal id
        email: Login identifier, stored lower-cased (unique, indexed)
        password_hash: bcrypt hash; None for federated-only accounts
        external_id: Federated identity subject (sparse unique)
        role: Admin or User
        is_email_verified: Whether the email address was confirmed
        failed_login_attempts: Consecutive failed password checks
        lock_until: Lock expiry; the account is locked while in the future
        is_deleted: Soft-delete flag; deleted principals cannot authenticate
    """
    __tablename__ = "users"

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Principal id (UUIDv4)"
    )
    email: str = Field(
        sa_column=Column(String(255), unique=True, index=True, nullable=False),
        description="Normalized lowercase email, unique per principal"
    )
    password_hash: Optional[str] = Field(
        default=None,
        sa_column=Column(String(255), nullable=True),
        description="bcrypt hash; NULL for federated-only accounts"
    )
    external_id: Optional[str] = Field(
        default=None,
        sa_column=Column(String(128), unique=True, index=True, nullable=True),
        description="Federated identity subject"
    )
    name: str = Field(
        sa_column=Column(String(100), nullable=False),
        description="Display name"
    )
    avatar_url: Optional[str] = Field(
        default=None,
        sa_column=Column(String(1024), nullable=True),
    )
    role: Role = Field(
        default=Role.USER,
        sa_column=Column(SQLEnum(Role), nullable=False, default=Role.USER, index=True),
        description="Static role granted to the principal"
    )
    is_email_verified: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, default=False),
    )
    email_verification_token_hash: Optional[str] = Field(
        default=None,
        sa_column=Column(String(64), nullable=True, index=True),
    )
    email_verification_expires_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime, nullable=True),
    )
    password_reset_token_hash: Optional[str] = Field(
        default=None,
        sa_column=Column(String(64), nullable=True, index=True),
    )
    password_reset_expires_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime, nullable=True),
    )
    failed_login_attempts: int = Field(
        default=0,
        sa_column=Column(Integer, nullable=False, default=0),
    )
    lock_until: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime, nullable=True),
    )
    last_login_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime, nullable=True),
    )
    is_deleted: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, default=False, index=True),
        description="Soft-delete flag"
    )
    deleted_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime, nullable=True),
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
        description="When the principal registered"
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow),
        description="When the row last changed"
    )

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    def is_locked(self, now: Optional[datetime] = None) -> bool:
        return self.lock_until is not None and self.lock_until > (now or utcnow())


class Session(SQLModel, table=True):
    """
    One authenticated device/client binding.

    Only the SHA-256 hash of the current refresh token is stored.
    Rotation swaps the hash in place, so a rotated-away token no
    longer matches any row.

    Attributes:
        session_id: Stable across rotations of the refresh token
        user_id: Owning principal
        refresh_token_hash: SHA-256 of the current refresh token
        last_activity_at: Last validation/rotation (LRU eviction key)
        expires_at: Absolute expiry; moved forward on rotation only
        is_active: False once terminated
        termination_reason: session_limit, user_logout or forced_logout
    """
    __tablename__ = "sessions"
    __table_args__ = (
        Index("ix_sessions_user_active", "user_id", "is_active"),
    )

    session_id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Session id carried in every token of the chain"
    )
    user_id: UUID = Field(
        foreign_key="users.id",
        nullable=False,
        index=True,
        description="Owning principal"
    )
    refresh_token_hash: str = Field(
        sa_column=Column(String(64), nullable=False, unique=True, index=True),
        description="SHA-256 hash of the current refresh token"
    )
    user_agent: Optional[str] = Field(
        default=None,
        sa_column=Column(String(512), nullable=True),
    )
    ip_address: Optional[str] = Field(
        default=None,
        sa_column=Column(String(45), nullable=True),
    )
    device_type: DeviceType = Field(
        default=DeviceType.UNKNOWN,
        sa_column=Column(SQLEnum(DeviceType), nullable=False, default=DeviceType.UNKNOWN),
    )
    client_name: str = Field(
        default="Unknown",
        sa_column=Column(String(64), nullable=False, default="Unknown"),
    )
    is_active: bool = Field(
        default=True,
        sa_column=Column(Boolean, nullable=False, default=True, index=True),
        description="False once the session has been terminated"
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
    )
    last_activity_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow, index=True),
        description="Last login or rotation; drives LRU eviction"
    )
    expires_at: datetime = Field(
        sa_column=Column(DateTime, nullable=False, index=True),
        description="Absolute expiry, matching the refresh token lifetime"
    )
    terminated_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime, nullable=True),
    )
    termination_reason: Optional[TerminationReason] = Field(
        default=None,
        sa_column=Column(SQLEnum(TerminationReason), nullable=True),
    )

"""
Gatekeeper - Authentication Request/Response Schemas

Pydantic bodies for the /auth endpoints: inbound validation and outbound
serialization, kept apart from the table models.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, validator
import re


EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$")
SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*(),.?\":{}|<>_\-+=\[\]\\/;'`~]")


def check_email(v: str) -> str:
    """Lowercase and loosely validate an email address."""
    v = v.strip()
    if not EMAIL_PATTERN.match(v):
        raise ValueError("Invalid email format")
    return v.lower()


def check_password_strength(v: str) -> str:
    if len(v) < 8:
        raise ValueError("Password must be at least 8 characters")
    if not re.search(r"\d", v):
        raise ValueError("Password must contain at least one digit")
    if not SPECIAL_CHARACTERS.search(v):
        raise ValueError("Password must contain at least one special character")
    return v


# =============================================================================
# Requests
# =============================================================================

class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""
    email: str = Field(..., description="Login email")
    password: str = Field(..., description="Password (8+ chars, a digit and a special character)")
    name: str = Field(..., min_length=2, max_length=100, description="Display name")

    @validator("email")
    def email_format(cls, v):
        return check_email(v)

    @validator("password")
    def password_strength(cls, v):
        return check_password_strength(v)

    @validator("name")
    def name_not_blank(cls, v):
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters")
        return v


class LoginRequest(BaseModel):
    """Credentials for POST /auth/login."""
    email: str = Field(..., description="Login email")
    password: str = Field(..., min_length=1, description="User password")

    @validator("email")
    def email_format(cls, v):
        return check_email(v)


class FederatedSignInRequest(BaseModel):
    """Request body for POST /auth/google."""
    id_token: str = Field(..., min_length=1, description="Identity token from the external provider")


class RefreshRequest(BaseModel):
    """Refresh token presented to POST /auth/refresh."""
    refresh_token: str = Field(..., min_length=1, description="Refresh token")


class LogoutRequest(BaseModel):
    """Optional body for POST /auth/logout."""
    refresh_token: Optional[str] = Field(
        default=None,
        description="Refresh token of the session to end",
    )


class EmailRequest(BaseModel):
    """Request body for resend-verification and forgot-password."""
    email: str

    @validator("email")
    def email_format(cls, v):
        return check_email(v)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /auth/reset-password/{token}."""
    password: str

    @validator("password")
    def password_strength(cls, v):
        return check_password_strength(v)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /auth/change-password."""
    current_password: str = Field(..., min_length=1)
    new_password: str

    @validator("new_password")
    def password_strength(cls, v):
        return check_password_strength(v)


# =============================================================================
# Responses
# =============================================================================

class UserResponse(BaseModel):
    """Public profile of a principal."""
    id: UUID
    email: str
    name: str
    avatar_url: Optional[str] = None
    role: str
    is_email_verified: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    """Fresh access/refresh pair."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Seconds until the access token expires")
    refresh_expires_at: datetime


class AuthResponse(TokenResponse):
    """Response body for register, login, federated sign-in and password reset."""
    user: UserResponse
    session_id: Optional[UUID] = Field(
        default=None,
        description="Absent if the session could not be recorded",
    )


class SessionInfo(BaseModel):
    """One active session as shown to its owner."""
    session_id: UUID
    device_type: str
    client_name: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime

    class Config:
        from_attributes = True


class ActiveSessionsResponse(BaseModel):
    """Active sessions of the caller."""
    sessions: list[SessionInfo]
    total: int


class LogoutResponse(BaseModel):
    """Outcome of logout and logout-all."""
    message: str = Field(default="Logged out")
    sessions_invalidated: int = Field(default=1)


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    """Error envelope returned by every failing endpoint."""
    detail: str
    code: Optional[str] = None
    request_id: Optional[str] = None

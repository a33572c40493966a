"""
Gatekeeper - Authentication Package

Authentication with:
- Short-lived JWT access tokens with a revocation registry
- Rotating refresh tokens bound to server-side sessions (capped per user)
- bcrypt password hashing and account lockout
- Email verification, password reset and federated sign-in
"""

from backend.auth.models import User, Session, Role
from backend.auth.service import AuthService
from backend.auth.dependencies import get_current_user, require_role
from backend.auth.tokens import TokenCodec, TokenPair

__all__ = [
    "User",
    "Session",
    "Role",
    "AuthService",
    "get_current_user",
    "require_role",
    "TokenCodec",
    "TokenPair",
]

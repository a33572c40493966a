"""
Gatekeeper - JWT Token Codec

Creates and verifies signed access and refresh tokens.

Claims:
- sub: Principal ID
- role: Principal role (access tokens only)
- type: "access" or "refresh"
- jti: Random token ID, so two tokens issued in the same second differ
- iat / exp: Issued-at and expiry

Security:
- Access and refresh tokens are signed with distinct secrets, so a
  leaked access key cannot forge refresh tokens
- Short-lived access tokens (15 minutes default)
- Long-lived refresh tokens (30 days default), rotated on every use
"""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from jose import jwt, JWTError, ExpiredSignatureError
from pydantic import BaseModel, Field

from backend.auth.models import utcnow
from backend.config import settings
from backend.errors import (
    InternalError,
    TokenExpiredError,
    TokenMalformedError,
    WrongTokenTypeError,
)


ACCESS = "access"
REFRESH = "refresh"


class TokenPayload(BaseModel):
    """
    Decoded JWT payload.

    Attributes:
        sub: Subject (principal ID)
        role: Principal role, present on access tokens
        type: Token kind
        jti: Unique token ID
        exp: Expiration timestamp
        iat: Issued-at timestamp
    """
    sub: str = Field(..., description="Principal ID")
    role: Optional[str] = Field(None, description="Principal role")
    type: str = Field(..., description="Token type")
    jti: str = Field(..., description="Token ID")
    exp: datetime = Field(..., description="Expiration time")
    iat: datetime = Field(..., description="Issued at time")


class TokenPair(BaseModel):
    """Access/refresh pair returned by every sign-in flow."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Seconds until the access token expires")
    refresh_expires_at: datetime


def hash_token(token: str) -> str:
    """SHA-256 hex digest used wherever a token must be stored or looked up."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenCodec:
    """
    Stateless signer/verifier over configured secrets and TTLs.

    Example:
        >>> codec = TokenCodec("access-secret", "refresh-secret")
        >>> token = codec.issue_access(user_id, "User")
        >>> codec.verify_access(token).sub == str(user_id)
        True
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=30),
    ):
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    @classmethod
    def from_settings(cls) -> "TokenCodec":
        return cls(
            access_secret=settings.JWT_SECRET,
            refresh_secret=settings.JWT_REFRESH_SECRET,
            algorithm=settings.JWT_ALGORITHM,
            access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        )

    @property
    def access_ttl_seconds(self) -> int:
        return int(self.access_ttl.total_seconds())

    def refresh_expiry(self, now: Optional[datetime] = None) -> datetime:
        """Absolute expiry for a refresh token issued now."""
        return (now or utcnow()) + self.refresh_ttl

    def issue_access(self, subject_id: UUID, role: str) -> str:
        """
        Sign an access token.

        Raises:
            InternalError: If the access secret is not configured
        """
        secret = self._require_secret(self.access_secret, "JWT_SECRET")
        claims = {"sub": str(subject_id), "role": role, "type": ACCESS}
        return self._encode(claims, secret, self.access_ttl)

    def issue_refresh(self, subject_id: UUID) -> str:
        """
        Sign a refresh token.

        Raises:
            InternalError: If the refresh secret is not configured
        """
        secret = self._require_secret(self.refresh_secret, "JWT_REFRESH_SECRET")
        claims = {"sub": str(subject_id), "type": REFRESH}
        return self._encode(claims, secret, self.refresh_ttl)

    def verify_access(self, token: str) -> TokenPayload:
        """
        Verify an access token.

        Raises:
            TokenMalformedError: Bad signature or structure
            TokenExpiredError: Past its TTL
            WrongTokenTypeError: Signed correctly but not an access token
        """
        secret = self._require_secret(self.access_secret, "JWT_SECRET")
        return self._decode(token, secret, ACCESS, "Access")

    def verify_refresh(self, token: str) -> TokenPayload:
        """Verify a refresh token. Same failure modes as verify_access."""
        secret = self._require_secret(self.refresh_secret, "JWT_REFRESH_SECRET")
        return self._decode(token, secret, REFRESH, "Refresh")

    def expiry_of(self, token: str) -> datetime:
        """
        Read the exp claim without verifying the signature.

        Only used to size revocation entries. On any decode failure the
        result is now + access TTL, a conservative floor.
        """
        try:
            claims = jwt.get_unverified_claims(token)
            exp = claims.get("exp")
            if exp is not None:
                return datetime.fromtimestamp(int(exp), tz=timezone.utc).replace(tzinfo=None)
        except (JWTError, TypeError, ValueError, OverflowError):
            pass
        return utcnow() + self.access_ttl

    def _encode(self, claims: dict, secret: str, ttl: timedelta) -> str:
        now = utcnow()
        payload = {
            **claims,
            "jti": secrets.token_hex(16),
            "iat": now,
            "exp": now + ttl,
        }
        try:
            return jwt.encode(payload, secret, algorithm=self.algorithm)
        except JWTError as e:
            raise InternalError(f"Failed to sign {claims['type']} token: {e}")

    def _decode(self, token: str, secret: str, expected_type: str, label: str) -> TokenPayload:
        try:
            payload = jwt.decode(token, secret, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise TokenExpiredError(f"{label} token has expired")
        except JWTError:
            raise TokenMalformedError(f"Invalid {label.lower()} token")

        if payload.get("type") != expected_type:
            raise WrongTokenTypeError()

        try:
            return TokenPayload(**payload)
        except ValueError:
            raise TokenMalformedError(f"Invalid {label.lower()} token")

    @staticmethod
    def _require_secret(secret: str, name: str) -> str:
        if not secret:
            raise InternalError(f"{name} not configured")
        return secret

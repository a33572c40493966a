"""
Gatekeeper - Federated Identity Verification

Verifies identity tokens issued by an external provider and returns
the identity they assert.

FirebaseIdentityProvider checks Firebase Authentication ID tokens:
- RS256 signature against Google's published JWKS (cached)
- aud == project id, iss == https://securetoken.google.com/<project id>
- exp/iat, non-empty sub, and an email claim
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from jose import jwt, JWTError
from pydantic import BaseModel

from backend.errors import IdentityVerificationFailedError
from backend.logging import get_logger


logger = get_logger(__name__)


FIREBASE_JWKS_URL = (
    "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
)
JWKS_CACHE_SECONDS = 3600


class ExternalIdentity(BaseModel):
    """Identity asserted by a verified external token."""
    external_id: str
    email: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None


class IdentityProvider(ABC):
    """Collaborator contract for federated sign-in."""

    @abstractmethod
    async def verify(self, id_token: str) -> ExternalIdentity:
        """
        Raises:
            IdentityVerificationFailedError: Token is invalid or unverifiable
        """


class FirebaseIdentityProvider(IdentityProvider):
    """
    Verifies Firebase ID tokens.

    Args:
        project_id: Firebase project id (token audience)
        jwks_url: Override for the signing-key endpoint
        timeout: HTTP timeout for fetching keys
    """

    def __init__(self, project_id: str, jwks_url: str = FIREBASE_JWKS_URL, timeout: float = 10.0):
        self.project_id = project_id
        self.jwks_url = jwks_url
        self.timeout = timeout
        self._jwks: Optional[Dict[str, Any]] = None
        self._jwks_fetched_at = 0.0

    async def _signing_keys(self) -> Dict[str, Any]:
        if self._jwks and time.monotonic() - self._jwks_fetched_at < JWKS_CACHE_SECONDS:
            return self._jwks

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.jwks_url)
                response.raise_for_status()
                self._jwks = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("identity.jwks_fetch_failed", error=str(e))
            raise IdentityVerificationFailedError("Identity provider unavailable")

        self._jwks_fetched_at = time.monotonic()
        return self._jwks

    async def verify(self, id_token: str) -> ExternalIdentity:
        if not self.project_id:
            raise IdentityVerificationFailedError("Federated sign-in is not configured")
        if not id_token:
            raise IdentityVerificationFailedError()

        keys = await self._signing_keys()
        try:
            claims = jwt.decode(
                id_token,
                keys,
                algorithms=["RS256"],
                audience=self.project_id,
                issuer=f"https://securetoken.google.com/{self.project_id}",
                options={"verify_at_hash": False},
            )
        except JWTError as e:
            logger.info("identity.token_rejected", error=str(e))
            raise IdentityVerificationFailedError()

        subject = claims.get("sub")
        email = claims.get("email")
        if not subject or not email:
            raise IdentityVerificationFailedError("Identity token lacks subject or email")

        return ExternalIdentity(
            external_id=subject,
            email=email.lower(),
            name=claims.get("name"),
            avatar_url=claims.get("picture"),
        )

"""
Gatekeeper - Access Token Revocation Registry

Makes logged-out access tokens unusable before their natural expiry.

Only SHA-256 hashes of tokens are kept, each mapped to the token's own
expiry. Entries are dropped by sweep() once that expiry passes, so the
registry holds at most the tokens revoked within one access-token TTL
(provided the sweep period is no longer than the TTL).

Limitations:
- In-process only. Revocation does not propagate to other instances;
  a shared TTL-capable cache can implement the same interface.
"""

from datetime import datetime
from threading import Lock
from typing import Dict, Optional

from backend.auth.models import utcnow
from backend.auth.tokens import hash_token
from backend.logging import get_logger, short_hash


logger = get_logger(__name__)


class TokenBlacklist:
    """In-memory map of revoked token hash -> token expiry."""

    def __init__(self):
        self._entries: Dict[str, datetime] = {}
        self._lock = Lock()

    def revoke(self, token: str, expires_at: datetime) -> None:
        """
        Revoke a token until `expires_at`. Idempotent; a repeated
        revocation never shortens an existing entry.

        Args:
            token: Raw access token
            expires_at: The token's own expiry (naive UTC)
        """
        if not token:
            return

        token_hash = hash_token(token)
        with self._lock:
            current = self._entries.get(token_hash)
            if current is None or expires_at > current:
                self._entries[token_hash] = expires_at

        logger.info(
            "token.revoked",
            token_hash=short_hash(token_hash),
            expires_at=expires_at.isoformat(),
        )

    def is_revoked(self, token: str) -> bool:
        if not token:
            return False
        with self._lock:
            return hash_token(token) in self._entries

    def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Remove every entry whose expiry is at or before `now`.

        Returns:
            Number of entries removed
        """
        cutoff = now or utcnow()
        with self._lock:
            stale = [h for h, exp in self._entries.items() if exp <= cutoff]
            for token_hash in stale:
                del self._entries[token_hash]

        if stale:
            logger.info("token.blacklist.swept", count=len(stale), remaining=len(self))
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

"""
Gatekeeper - Revocation Registry Tests

Run with: pytest tests/test_blacklist.py -v
"""

from datetime import timedelta

from backend.auth.blacklist import TokenBlacklist
from backend.auth.models import utcnow
from backend.auth.tokens import hash_token


class TestTokenBlacklist:
    """Unit tests for the in-memory access-token revocation registry."""

    def test_revoked_token_is_rejected_immediately(self):
        blacklist = TokenBlacklist()

        blacklist.revoke("token-a", utcnow() + timedelta(minutes=15))

        assert blacklist.is_revoked("token-a") is True
        assert blacklist.is_revoked("token-b") is False

    def test_revoke_is_idempotent(self):
        blacklist = TokenBlacklist()
        expires_at = utcnow() + timedelta(minutes=15)

        blacklist.revoke("token-a", expires_at)
        blacklist.revoke("token-a", expires_at)

        assert len(blacklist) == 1

    def test_repeat_revoke_keeps_later_expiry(self):
        blacklist = TokenBlacklist()
        later = utcnow() + timedelta(minutes=15)

        blacklist.revoke("token-a", later)
        blacklist.revoke("token-a", later - timedelta(minutes=10))

        assert blacklist.sweep(later - timedelta(minutes=1)) == 0
        assert blacklist.is_revoked("token-a") is True

    def test_only_hashes_are_stored(self):
        blacklist = TokenBlacklist()
        blacklist.revoke("raw-token-value", utcnow() + timedelta(minutes=1))

        assert "raw-token-value" not in blacklist._entries
        assert hash_token("raw-token-value") in blacklist._entries

    def test_sweep_removes_expired_entries_only(self):
        blacklist = TokenBlacklist()
        now = utcnow()
        blacklist.revoke("expired", now - timedelta(seconds=1))
        blacklist.revoke("boundary", now)
        blacklist.revoke("live", now + timedelta(minutes=10))

        removed = blacklist.sweep(now)

        assert removed == 2
        assert blacklist.is_revoked("expired") is False
        assert blacklist.is_revoked("boundary") is False
        assert blacklist.is_revoked("live") is True

    def test_sweep_past_expiry_empties_registry(self):
        blacklist = TokenBlacklist()
        expires_at = utcnow() + timedelta(minutes=15)
        for i in range(5):
            blacklist.revoke(f"token-{i}", expires_at)

        assert blacklist.sweep(expires_at + timedelta(seconds=1)) == 5
        assert len(blacklist) == 0

    def test_empty_token_ignored(self):
        blacklist = TokenBlacklist()

        blacklist.revoke("", utcnow())

        assert len(blacklist) == 0
        assert blacklist.is_revoked("") is False

    def test_clear(self):
        blacklist = TokenBlacklist()
        blacklist.revoke("token", utcnow() + timedelta(minutes=1))

        blacklist.clear()

        assert blacklist.is_revoked("token") is False

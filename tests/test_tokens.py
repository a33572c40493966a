"""
Gatekeeper - Token Codec Tests

Run with: pytest tests/test_tokens.py -v
"""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from jose import jwt

from backend.auth.models import utcnow
from backend.auth.tokens import TokenCodec, hash_token
from backend.errors import (
    InternalError,
    TokenError,
    TokenExpiredError,
    TokenMalformedError,
    WrongTokenTypeError,
)
from tests.conftest import ACCESS_SECRET, REFRESH_SECRET


# =============================================================================
# ISSUE / VERIFY
# =============================================================================

class TestTokenCodec:
    """Unit tests for access/refresh token signing and verification."""

    def test_access_round_trip(self, codec):
        """Verified claims carry the subject and role that were signed."""
        user_id = uuid4()

        token = codec.issue_access(user_id, "Admin")
        payload = codec.verify_access(token)

        assert payload.sub == str(user_id)
        assert payload.role == "Admin"
        assert payload.type == "access"
        assert len(payload.jti) == 32

    def test_refresh_round_trip(self, codec):
        user_id = uuid4()

        payload = codec.verify_refresh(codec.issue_refresh(user_id))

        assert payload.sub == str(user_id)
        assert payload.role is None
        assert payload.type == "refresh"

    def test_tokens_issued_together_are_distinct(self, codec):
        """Same subject, same second: the jti keeps tokens unique."""
        user_id = uuid4()

        assert codec.issue_refresh(user_id) != codec.issue_refresh(user_id)
        assert codec.issue_access(user_id, "User") != codec.issue_access(user_id, "User")

    def test_access_ttl(self, codec):
        payload = codec.verify_access(codec.issue_access(uuid4(), "User"))

        lifetime = payload.exp - payload.iat
        assert lifetime == timedelta(minutes=15)
        assert codec.access_ttl_seconds == 900

    def test_tampered_token_rejected(self, codec):
        """Changing one character of the signature invalidates the token."""
        token = codec.issue_access(uuid4(), "User")
        header, payload, signature = token.split(".")
        flipped = ("A" if signature[0] != "A" else "B") + signature[1:]

        with pytest.raises(TokenMalformedError):
            codec.verify_access(".".join([header, payload, flipped]))

    def test_garbage_rejected(self, codec):
        with pytest.raises(TokenMalformedError):
            codec.verify_access("invalid.token.here")

    def test_expired_token(self):
        codec = TokenCodec(ACCESS_SECRET, REFRESH_SECRET, access_ttl=timedelta(seconds=-5))
        token = codec.issue_access(uuid4(), "User")

        with pytest.raises(TokenExpiredError):
            codec.verify_access(token)

    def test_refresh_token_rejected_as_access(self):
        """A refresh token signed with the access secret is still the wrong type."""
        codec = TokenCodec(ACCESS_SECRET, ACCESS_SECRET)
        refresh = codec.issue_refresh(uuid4())

        with pytest.raises(WrongTokenTypeError):
            codec.verify_access(refresh)

    def test_distinct_secrets(self, codec):
        """Access tokens do not verify against the refresh secret."""
        access = codec.issue_access(uuid4(), "User")

        with pytest.raises(TokenMalformedError):
            codec.verify_refresh(access)

    def test_codec_errors_share_a_base(self, codec):
        with pytest.raises(TokenError):
            codec.verify_refresh("nope")

    def test_missing_secret_is_internal_error(self):
        codec = TokenCodec("", REFRESH_SECRET)

        with pytest.raises(InternalError, match="JWT_SECRET"):
            codec.issue_access(uuid4(), "User")

        with pytest.raises(InternalError, match="JWT_REFRESH_SECRET"):
            TokenCodec(ACCESS_SECRET, "").issue_refresh(uuid4())


# =============================================================================
# EXPIRY / HASHING
# =============================================================================

class TestTokenExpiry:

    def test_expiry_of_reads_exp_claim(self, codec):
        token = codec.issue_access(uuid4(), "User")
        payload = codec.verify_access(token)

        assert codec.expiry_of(token) == payload.exp.replace(tzinfo=None)

    def test_expiry_of_forged_token_still_decodes(self, codec):
        """Signature is not checked; only the exp claim matters."""
        exp = datetime(2030, 1, 1, 12, 0, 0)
        forged = jwt.encode({"sub": "x", "exp": exp}, "some-other-key", algorithm="HS256")

        assert codec.expiry_of(forged) == exp

    def test_expiry_of_garbage_falls_back_to_access_ttl(self, codec):
        before = utcnow()
        expiry = codec.expiry_of("not-a-token")

        assert before + codec.access_ttl <= expiry <= utcnow() + codec.access_ttl

    def test_refresh_expiry(self, codec):
        now = datetime(2025, 1, 1)

        assert codec.refresh_expiry(now) == now + timedelta(days=30)


class TestHashToken:

    def test_sha256_hex(self):
        digest = hash_token("token")

        assert len(digest) == 64
        assert digest == hash_token("token")
        assert digest != hash_token("token2")

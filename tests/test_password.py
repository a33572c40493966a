"""
Gatekeeper - Password Hashing Tests

Run with: pytest tests/test_password.py -v
"""

import bcrypt
import pytest

from backend.auth.password import hash_password, needs_rehash, verify_password
from backend.auth.schemas import check_password_strength


# =============================================================================
# PASSWORD HASHING TESTS
# =============================================================================

class TestPasswordHashing:
    """Unit tests for bcrypt password utilities."""

    def test_hash_password_creates_bcrypt_hash(self):
        """Password hashing creates valid bcrypt hash."""
        hashed = hash_password("SecurePassword1!")

        assert hashed.startswith("$2b$")
        assert len(hashed) == 60

    def test_verify_password_correct(self):
        password = "SecurePassword1!"
        hashed = hash_password(password)

        assert verify_password(password, hashed) is True

    def test_verify_password_incorrect(self):
        hashed = hash_password("SecurePassword1!")

        assert verify_password("WrongPassword1!", hashed) is False

    def test_verify_password_without_hash(self):
        """Federated-only accounts have no hash and never match."""
        assert verify_password("anything", None) is False
        assert verify_password("anything", "") is False

    def test_verify_password_garbage_hash(self):
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    def test_different_passwords_different_hashes(self):
        """Same password generates different hashes (salted)."""
        password = "SecurePassword1!"
        hash1 = hash_password(password)
        hash2 = hash_password(password)

        assert hash1 != hash2
        assert verify_password(password, hash1) is True
        assert verify_password(password, hash2) is True

    def test_needs_rehash_old_work_factor(self):
        old_hash = bcrypt.hashpw(b"password", bcrypt.gensalt(rounds=10)).decode()

        assert needs_rehash(old_hash, target_work_factor=12) is True

    def test_needs_rehash_current_factor(self):
        current_hash = hash_password("password")

        assert needs_rehash(current_hash) is False


# =============================================================================
# PASSWORD RULES
# =============================================================================

class TestPasswordRules:

    def test_valid_password_accepted(self):
        assert check_password_strength("Passw0rd!") == "Passw0rd!"

    @pytest.mark.parametrize(
        "password, message",
        [
            ("Pa0!", "at least 8 characters"),
            ("Password!", "digit"),
            ("Passw0rdX", "special character"),
        ],
    )
    def test_weak_password_rejected(self, password, message):
        with pytest.raises(ValueError, match=message):
            check_password_strength(password)

"""
Gatekeeper - Password Hashing

bcrypt hashing for stored credentials. The cost comes from
BCRYPT_WORK_FACTOR (12 in production, lowered in tests).

Plaintext passwords are never logged. Hashes carry their own salt and
cost, so a raised work factor is picked up on the next successful login.
"""

from typing import Optional

import bcrypt

from backend.config import settings


def hash_password(password: str, work_factor: Optional[int] = None) -> str:
    """
    Salt and hash a plaintext password.

    Example:
        >>> hash_password("Passw0rd!").startswith("$2b$")
        True
    """
    rounds = work_factor or settings.BCRYPT_WORK_FACTOR
    digest = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return digest.decode("utf-8")


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """
    Constant-time check of a candidate password against a stored hash.

    Accounts without a local password (federated only) never match, and
    neither does a malformed hash.
    """
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def needs_rehash(hashed_password: str, target_work_factor: Optional[int] = None) -> bool:
    """
    True when the stored hash was produced with a cost below the target.

    Hashes look like $2b$12$<salt+digest>; anything unparseable is
    treated as stale.
    """
    target = target_work_factor or settings.BCRYPT_WORK_FACTOR
    try:
        cost = hashed_password.split("$")[2]
        return int(cost) < target
    except (ValueError, IndexError, AttributeError):
        return True

"""
Gatekeeper - Database Seed Script

Creates the initial admin user for development.

Usage:
    python -m scripts.seed_users
    SEED_ADMIN_EMAIL=ops@example.com SEED_ADMIN_PASSWORD='S3cure!pass' python -m scripts.seed_users
"""

import os
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlmodel import Session, select

from backend.config import settings
from backend.auth.database import get_engine, init_db
from backend.auth.models import User, Role
from backend.auth.password import hash_password
from backend.auth.schemas import check_email, check_password_strength
from backend.auth.store import normalize_email


DEFAULT_ADMIN_EMAIL = "admin@gatekeeper.local"
DEFAULT_ADMIN_PASSWORD = "Admin@Gatekeeper2024"


def seed_admin_user(email: str, password: str, name: str = "Administrator") -> bool:
    """
    Create an admin user unless one already exists with this email.

    Returns:
        True if a user was created
    """
    email = normalize_email(check_email(email))
    check_password_strength(password)

    engine = get_engine(settings.DATABASE_URL)
    init_db(engine)

    with Session(engine) as session:
        existing = session.exec(
            select(User).where(User.email == email)
        ).first()

        if existing:
            print(f"User {email} already exists ({existing.role.value}).")
            return False

        admin = User(
            email=email,
            name=name,
            password_hash=hash_password(password),
            role=Role.ADMIN,
            is_email_verified=True,
        )
        session.add(admin)
        session.commit()

    print("Admin user created successfully!")
    print(f"  Email: {email}")
    print(f"  Role: {Role.ADMIN.value}")
    return True


if __name__ == "__main__":
    print("=" * 50)
    print("Gatekeeper - User Seed Script")
    print("=" * 50)

    seed_admin_user(
        os.environ.get("SEED_ADMIN_EMAIL", DEFAULT_ADMIN_EMAIL),
        os.environ.get("SEED_ADMIN_PASSWORD", DEFAULT_ADMIN_PASSWORD),
    )

    print()
    print("Done!")

"""
Gatekeeper - Test Configuration

Pytest fixtures for authentication testing.
Provides test database, collaborators, service, client and user fixtures.
"""

import os

# Settings are read at import time; configure before importing backend
os.environ.setdefault("JWT_SECRET", "test-access-secret-" + "a" * 48)
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-" + "b" * 48)
os.environ.setdefault("BCRYPT_WORK_FACTOR", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "console")

from datetime import timedelta
from typing import Any, Dict, Generator, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel

from backend.app import create_app
from backend.auth.blacklist import TokenBlacklist
from backend.auth.database import get_engine, get_session_factory, init_db
from backend.auth.identity import ExternalIdentity, IdentityProvider
from backend.auth.lockout import LockoutGuard
from backend.auth.mailer import Mailer, MailTemplate
from backend.auth.models import Role, User
from backend.auth.password import hash_password
from backend.auth.service import AuthService
from backend.auth.sessions import SessionRegistry
from backend.auth.store import CredentialStore
from backend.auth.tokens import TokenCodec
from backend.errors import IdentityVerificationFailedError


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite:///:memory:"

ACCESS_SECRET = "unit-access-secret-" + "c" * 48
REFRESH_SECRET = "unit-refresh-secret-" + "d" * 48

DEFAULT_PASSWORD = "Passw0rd!"


# =============================================================================
# COLLABORATOR FAKES
# =============================================================================

class RecordingMailer(Mailer):
    """Keeps every message in memory."""

    def __init__(self):
        self.sent: List[Tuple[str, MailTemplate, Dict[str, Any]]] = []

    async def send(self, recipient: str, template: MailTemplate, params: Dict[str, Any]) -> None:
        self.sent.append((recipient, template, dict(params)))

    def last_token(self, template: MailTemplate, recipient: Optional[str] = None) -> Optional[str]:
        for to, kind, params in reversed(self.sent):
            if kind == template and (recipient is None or to == recipient):
                return params.get("token")
        return None

    def templates_for(self, recipient: str) -> List[MailTemplate]:
        return [kind for to, kind, _ in self.sent if to == recipient]


class FailingMailer(Mailer):
    """Simulates an unreachable SMTP server."""

    async def send(self, recipient: str, template: MailTemplate, params: Dict[str, Any]) -> None:
        raise ConnectionError("SMTP server unavailable")


class StaticIdentityProvider(IdentityProvider):
    """Accepts only the id tokens registered with `add`."""

    def __init__(self):
        self.identities: Dict[str, ExternalIdentity] = {}

    def add(self, id_token: str, external_id: str, email: str, name: Optional[str] = None, avatar_url: Optional[str] = None):
        self.identities[id_token] = ExternalIdentity(
            external_id=external_id,
            email=email,
            name=name,
            avatar_url=avatar_url,
        )

    async def verify(self, id_token: str) -> ExternalIdentity:
        identity = self.identities.get(id_token)
        if identity is None:
            raise IdentityVerificationFailedError()
        return identity


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture(scope="function")
def test_engine():
    """Create a fresh test database engine for each test."""
    engine = get_engine(TEST_DATABASE_URL)
    init_db(engine)

    yield engine

    # Cleanup
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    return get_session_factory(test_engine)


# =============================================================================
# CORE COMPONENTS
# =============================================================================

@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(ACCESS_SECRET, REFRESH_SECRET)


@pytest.fixture
def blacklist() -> TokenBlacklist:
    return TokenBlacklist()


@pytest.fixture
def store(session_factory) -> CredentialStore:
    return CredentialStore(session_factory)


@pytest.fixture
def registry(session_factory) -> SessionRegistry:
    return SessionRegistry(session_factory, max_sessions=3)


@pytest.fixture
def lockout(session_factory) -> LockoutGuard:
    return LockoutGuard(session_factory, threshold=5, lock_duration=timedelta(hours=2))


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def identity_provider() -> StaticIdentityProvider:
    return StaticIdentityProvider()


@pytest.fixture
def service(store, codec, registry, blacklist, lockout, mailer, identity_provider) -> AuthService:
    return AuthService(
        store=store,
        codec=codec,
        sessions=registry,
        blacklist=blacklist,
        lockout=lockout,
        mailer=mailer,
        identity_provider=identity_provider,
    )


# =============================================================================
# HTTP CLIENT
# =============================================================================

@pytest.fixture(scope="function")
def client(test_engine, mailer, identity_provider) -> Generator[TestClient, None, None]:
    """Create a test client with fresh database and fake collaborators."""
    app = create_app(engine=test_engine, mailer=mailer, identity_provider=identity_provider)

    with TestClient(app) as c:
        yield c


# =============================================================================
# USERS
# =============================================================================

def make_user(
    session_factory,
    email: str,
    password: Optional[str] = DEFAULT_PASSWORD,
    role: Role = Role.USER,
    **fields,
) -> User:
    """Insert a user directly into the database."""
    user = User(
        email=email,
        name=fields.pop("name", email.split("@")[0].title()),
        password_hash=hash_password(password) if password else None,
        role=role,
        **fields,
    )
    with session_factory() as db:
        db.add(user)
        db.commit()
        db.refresh(user)
    return user


def reload_user(session_factory, user: User) -> User:
    with session_factory() as db:
        return db.get(User, user.id)


@pytest.fixture(scope="function")
def test_user(session_factory) -> User:
    """Create a regular password user."""
    return make_user(session_factory, "user@test.com", name="Test User")


@pytest.fixture(scope="function")
def test_admin(session_factory) -> User:
    """Create a test admin user."""
    return make_user(session_factory, "admin@test.com", role=Role.ADMIN, name="Test Admin")


def login_user(client: TestClient, email: str, password: str = DEFAULT_PASSWORD, user_agent: Optional[str] = None) -> Optional[dict]:
    """Helper function to login and return the response body."""
    headers = {"User-Agent": user_agent} if user_agent else {}
    response = client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
        headers=headers,
    )
    return response.json() if response.status_code == 200 else None


def auth_headers(access_token: str) -> dict:
    """Create authorization headers for authenticated requests."""
    return {"Authorization": f"Bearer {access_token}"}

"""
Gatekeeper - Authentication Service

Composes the credential store, token codec, session registry,
revocation registry and lockout guard into the auth protocols:

- register / login / federated_sign_in  -> token pair + session
- refresh                               -> rotated token pair
- logout / logout_all / force_logout    -> revocation
- email verification and password reset -> one-time hashed tokens
- change_password

Failure policy:
- Operational failures raise typed AuthError subclasses
- Session bookkeeping on sign-in, outbound mail and logout revocation
  are best effort: failures are logged and never fail the request
- Refresh-rotation races fail closed with InvalidSessionError
"""

import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, Optional
from uuid import UUID

from sqlmodel import Session as DBSession

from backend.auth.blacklist import TokenBlacklist
from backend.auth.identity import FirebaseIdentityProvider, IdentityProvider
from backend.auth.lockout import LockoutGuard
from backend.auth.mailer import Mailer, MailTemplate, build_mailer
from backend.auth.models import Role, Session, TerminationReason, User, utcnow
from backend.auth.password import needs_rehash
from backend.auth.sessions import SessionRegistry
from backend.auth.store import CredentialStore
from backend.auth.tokens import TokenCodec, TokenPair, hash_token
from backend.config import settings
from backend.errors import (
    AccountLockedError,
    AuthenticationRequiredError,
    ConflictError,
    InvalidCredentialsError,
    InvalidSessionError,
    NotFoundError,
    TokenError,
    TokenMalformedError,
    UnsupportedOperationError,
    ValidationFailedError,
)
from backend.logging import get_logger


logger = get_logger(__name__)


# 32 random bytes = 256 bits before hashing
ONE_TIME_TOKEN_BYTES = 32


@dataclass
class ClientInfo:
    """Request metadata recorded on new sessions."""
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass
class AuthResult:
    """Outcome of a sign-in flow."""
    user: User
    tokens: TokenPair
    session: Optional[Session]


def generate_one_time_token() -> str:
    return secrets.token_hex(ONE_TIME_TOKEN_BYTES)


class AuthService:
    """
    Auth orchestrator.

    All collaborators are injected; see `from_settings` for the
    production wiring.
    """

    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        sessions: SessionRegistry,
        blacklist: TokenBlacklist,
        lockout: LockoutGuard,
        mailer: Mailer,
        identity_provider: IdentityProvider,
        email_verification_ttl: timedelta = timedelta(hours=24),
        password_reset_ttl: timedelta = timedelta(hours=1),
    ):
        self.store = store
        self.codec = codec
        self.sessions = sessions
        self.blacklist = blacklist
        self.lockout = lockout
        self.mailer = mailer
        self.identity_provider = identity_provider
        self.email_verification_ttl = email_verification_ttl
        self.password_reset_ttl = password_reset_ttl
        self._dummy_hash: Optional[str] = None

    @classmethod
    def from_settings(
        cls,
        session_factory: Callable[[], DBSession],
        blacklist: Optional[TokenBlacklist] = None,
        mailer: Optional[Mailer] = None,
        identity_provider: Optional[IdentityProvider] = None,
    ) -> "AuthService":
        return cls(
            store=CredentialStore(session_factory),
            codec=TokenCodec.from_settings(),
            sessions=SessionRegistry(session_factory, max_sessions=settings.MAX_SESSIONS_PER_USER),
            blacklist=blacklist if blacklist is not None else TokenBlacklist(),
            lockout=LockoutGuard(
                session_factory,
                threshold=settings.LOCKOUT_THRESHOLD,
                lock_duration=timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES),
            ),
            mailer=mailer or build_mailer(),
            identity_provider=identity_provider or FirebaseIdentityProvider(settings.FIREBASE_PROJECT_ID),
            email_verification_ttl=timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS),
            password_reset_ttl=timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES),
        )

    # ------------------------------------------------------------------
    # Sign-in flows
    # ------------------------------------------------------------------

    async def register(
        self,
        email: str,
        password: str,
        name: str,
        client: Optional[ClientInfo] = None,
    ) -> AuthResult:
        """
        Create a password principal and sign it in.

        Raises:
            ConflictError: Email already registered
        """
        if await self.store.find_by_email(email, include_deleted=True):
            raise ConflictError("User already exists with this email")

        user = User(
            email=email,
            name=name,
            password_hash=await self.store.hash_secret(password),
            role=Role.USER,
        )
        verification_token = self._set_verification_token(user)
        user = await self.store.save(user)
        logger.info("user.registered", user_id=str(user.id))

        await self._notify(user.email, MailTemplate.VERIFY_EMAIL, {"name": user.name, "token": verification_token})
        return await self._start_session(user, client)

    async def login(self, email: str, password: str, client: Optional[ClientInfo] = None) -> AuthResult:
        """
        Password login.

        The password is checked before the lock: a mismatch counts
        towards the lockout threshold, a match on a locked account fails
        with AccountLockedError without touching the counters.

        Raises:
            InvalidCredentialsError: Unknown email or wrong password
            AccountLockedError: Correct password but the account is locked
        """
        user = await self.store.find_by_email(email)

        if user is None:
            # Keep response time comparable to a real password check
            await self.store.compare_secret(password, await self._get_dummy_hash())
            logger.info("login.failed", reason="user_not_found")
            raise InvalidCredentialsError()

        if not user.has_password:
            # Federated-only account: never reaches the lockout guard
            logger.info("login.failed", user_id=str(user.id), reason="no_password")
            raise InvalidCredentialsError()

        if not await self.store.compare_secret(password, user.password_hash):
            await self.lockout.register_failure(user)
            raise InvalidCredentialsError()

        if self.lockout.is_locked(user):
            logger.warning("login.blocked", user_id=str(user.id), reason="account_locked")
            raise AccountLockedError("Account is locked")

        await self.lockout.register_success(user)
        await self.store.mark_logged_in(user)

        if needs_rehash(user.password_hash):
            user.password_hash = await self.store.hash_secret(password)
            user = await self.store.save(user)

        logger.info("login.success", user_id=str(user.id))
        return await self._start_session(user, client)

    async def federated_sign_in(self, id_token: str, client: Optional[ClientInfo] = None) -> AuthResult:
        """
        Sign in with an identity token from the external provider.

        Links by external id, then by email (backfilling the external
        id), else creates a verified principal without a password.

        Raises:
            IdentityVerificationFailedError: Token rejected by the provider
        """
        identity = await self.identity_provider.verify(id_token)

        user = await self.store.find_by_external_id(identity.external_id)
        if user is None:
            user = await self.store.find_by_email(identity.email, include_deleted=True)
            if user is not None and not user.is_deleted:
                user.external_id = identity.external_id
                user.avatar_url = identity.avatar_url or user.avatar_url
                user.is_email_verified = True
                user = await self.store.save(user)
                logger.info("user.identity_linked", user_id=str(user.id))
            elif user is None:
                user = User(
                    email=identity.email,
                    name=identity.name or identity.email.split("@")[0],
                    external_id=identity.external_id,
                    avatar_url=identity.avatar_url,
                    role=Role.USER,
                    is_email_verified=True,
                )
                user = await self.store.save(user)
                logger.info("user.registered", user_id=str(user.id), federated=True)
                await self._notify(user.email, MailTemplate.WELCOME, {"name": user.name})

        if user.is_deleted:
            raise InvalidCredentialsError()
        if self.lockout.is_locked(user):
            raise AccountLockedError("Account is locked")

        await self.store.mark_logged_in(user)
        return await self._start_session(user, client)

    async def refresh(self, refresh_token: str) -> TokenPair:
        """
        Exchange a refresh token for a new access/refresh pair.

        The old refresh token stops working on success. If another
        request rotated the same token first, the freshly signed pair is
        discarded and the call fails.

        Raises:
            InvalidSessionError: Unknown, expired, revoked or already-rotated token
        """
        session = await self.sessions.validate_and_touch(refresh_token)
        if session is None:
            raise InvalidSessionError()

        try:
            claims = self.codec.verify_refresh(refresh_token)
            user_id = UUID(claims.sub)
        except (TokenError, ValueError):
            raise InvalidSessionError()

        if session.user_id != user_id:
            raise InvalidSessionError()

        user = await self.store.find_by_id(user_id)
        if user is None or user.is_deleted:
            raise InvalidSessionError("User not found")

        access_token = self.codec.issue_access(user.id, user.role.value)
        new_refresh_token = self.codec.issue_refresh(user.id)
        refresh_expires_at = self.codec.refresh_expiry()

        rotated = await self.sessions.rotate(refresh_token, new_refresh_token, refresh_expires_at)
        if rotated is None:
            raise InvalidSessionError()

        return TokenPair(
            access_token=access_token,
            refresh_token=new_refresh_token,
            expires_in=self.codec.access_ttl_seconds,
            refresh_expires_at=refresh_expires_at,
        )

    # ------------------------------------------------------------------
    # Authentication and logout
    # ------------------------------------------------------------------

    async def authenticate(self, access_token: Optional[str]) -> User:
        """
        Resolve a bearer access token to its principal.

        Raises:
            AuthenticationRequiredError: Missing or revoked token, unknown or deleted principal
            TokenError: Invalid, expired or wrong-type token
            AccountLockedError: Principal is locked
        """
        if not access_token:
            raise AuthenticationRequiredError()

        if self.blacklist.is_revoked(access_token):
            raise AuthenticationRequiredError("Token has been invalidated. Please login again.")

        claims = self.codec.verify_access(access_token)
        try:
            user_id = UUID(claims.sub)
        except ValueError:
            raise TokenMalformedError()

        user = await self.store.find_by_id(user_id)
        if user is None:
            raise AuthenticationRequiredError("User not found")
        if user.is_deleted:
            raise AuthenticationRequiredError("Account has been deleted")
        if user.is_locked():
            raise AccountLockedError()
        return user

    async def logout(self, access_token: Optional[str] = None, refresh_token: Optional[str] = None) -> int:
        """
        Revoke the access token and end the refresh session.

        Both steps are independent and best effort; either is skipped
        when its token is not supplied.

        Returns:
            Number of sessions terminated (0 or 1)
        """
        if access_token:
            try:
                self.blacklist.revoke(access_token, self.codec.expiry_of(access_token))
            except Exception:
                logger.warning("logout.revoke_failed", exc_info=True)

        if not refresh_token:
            return 0
        try:
            terminated = await self.sessions.invalidate(refresh_token)
        except Exception:
            logger.warning("logout.session_invalidate_failed", exc_info=True)
            return 0
        return 1 if terminated else 0

    async def logout_all(self, user: User) -> int:
        """
        End every session of the principal.

        Outstanding access tokens on other devices stay valid until
        they expire; only refresh sessions are terminated.
        """
        return await self.sessions.invalidate_all(user.id, TerminationReason.FORCED_LOGOUT)

    async def force_logout(self, user_id: UUID) -> int:
        """Admin action: terminate all sessions of another principal."""
        if await self.store.find_by_id(user_id) is None:
            raise NotFoundError("User not found")
        return await self.sessions.invalidate_all(user_id, TerminationReason.FORCED_LOGOUT)

    async def list_sessions(self, user: User) -> list[Session]:
        return await self.sessions.list_active(user.id)

    # ------------------------------------------------------------------
    # Email verification / password management
    # ------------------------------------------------------------------

    async def request_email_verification(self, email: str) -> None:
        """
        Send a fresh verification link.

        Raises:
            NotFoundError: No such principal
            ValidationFailedError: Already verified
        """
        user = await self.store.find_by_email(email)
        if user is None:
            raise NotFoundError("User not found")
        if user.is_email_verified:
            raise ValidationFailedError("Email already verified")

        token = self._set_verification_token(user)
        user = await self.store.save(user)
        await self._notify(user.email, MailTemplate.VERIFY_EMAIL, {"name": user.name, "token": token})

    async def confirm_email_verification(self, token: str) -> User:
        """
        Raises:
            ValidationFailedError: Unknown or expired token
        """
        user = await self.store.find_by_verification_token(hash_token(token), utcnow())
        if user is None:
            raise ValidationFailedError("Invalid or expired token")

        user.is_email_verified = True
        user.email_verification_token_hash = None
        user.email_verification_expires_at = None
        user = await self.store.save(user)
        logger.info("user.email_verified", user_id=str(user.id))
        return user

    async def request_password_reset(self, email: str) -> None:
        """Send a reset link if the account exists. Silent otherwise."""
        user = await self.store.find_by_email(email)
        if user is None:
            logger.info("password_reset.unknown_email")
            return

        token = generate_one_time_token()
        user.password_reset_token_hash = hash_token(token)
        user.password_reset_expires_at = utcnow() + self.password_reset_ttl
        user = await self.store.save(user)
        logger.info("password_reset.requested", user_id=str(user.id))
        await self._notify(user.email, MailTemplate.PASSWORD_RESET, {"name": user.name, "token": token})

    async def confirm_password_reset(
        self,
        token: str,
        new_password: str,
        client: Optional[ClientInfo] = None,
    ) -> AuthResult:
        """
        Set a new password from a reset token.

        Clears lockout state, terminates every existing session and
        signs the principal in on a new one.

        Raises:
            ValidationFailedError: Unknown or expired token
        """
        user = await self.store.find_by_reset_token(hash_token(token), utcnow())
        if user is None:
            raise ValidationFailedError("Invalid or expired token")

        user.password_hash = await self.store.hash_secret(new_password)
        user.password_reset_token_hash = None
        user.password_reset_expires_at = None
        user.failed_login_attempts = 0
        user.lock_until = None
        user = await self.store.save(user)

        await self.sessions.invalidate_all(user.id, TerminationReason.FORCED_LOGOUT)
        logger.info("password_reset.completed", user_id=str(user.id))
        return await self._start_session(user, client)

    async def change_password(self, user: User, current_password: str, new_password: str) -> None:
        """
        Raises:
            UnsupportedOperationError: Federated-only account
            InvalidCredentialsError: Current password does not match
        """
        fresh = await self.store.find_by_id(user.id)
        if fresh is None:
            raise NotFoundError("User not found")
        if not fresh.has_password:
            raise UnsupportedOperationError("Social login user cannot change password")
        if not await self.store.compare_secret(current_password, fresh.password_hash):
            raise InvalidCredentialsError("Incorrect current password")

        fresh.password_hash = await self.store.hash_secret(new_password)
        await self.store.save(fresh)
        logger.info("password.changed", user_id=str(user.id))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _start_session(self, user: User, client: Optional[ClientInfo]) -> AuthResult:
        """Issue a token pair and record the session (best effort)."""
        client = client or ClientInfo()
        access_token = self.codec.issue_access(user.id, user.role.value)
        refresh_token = self.codec.issue_refresh(user.id)
        refresh_expires_at = self.codec.refresh_expiry()

        session = None
        try:
            session = await self.sessions.create_session(
                user_id=user.id,
                refresh_token=refresh_token,
                expires_at=refresh_expires_at,
                user_agent=client.user_agent,
                ip_address=client.ip_address,
            )
        except Exception:
            logger.warning("session.create_failed", user_id=str(user.id), exc_info=True)

        tokens = TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.codec.access_ttl_seconds,
            refresh_expires_at=refresh_expires_at,
        )
        return AuthResult(user=user, tokens=tokens, session=session)

    def _set_verification_token(self, user: User) -> str:
        token = generate_one_time_token()
        user.email_verification_token_hash = hash_token(token)
        user.email_verification_expires_at = utcnow() + self.email_verification_ttl
        return token

    async def _notify(self, recipient: str, template: MailTemplate, params: Dict[str, Any]) -> None:
        try:
            await self.mailer.send(recipient, template, params)
        except Exception:
            logger.warning("mail.send_failed", template=template.value, exc_info=True)

    async def _get_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = await self.store.hash_secret(secrets.token_hex(16))
        return self._dummy_hash

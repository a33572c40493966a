"""
Gatekeeper - Authentication Routes

API endpoints for authentication:
- POST /auth/register                   - Create account and sign in
- POST /auth/login                      - Password login
- POST /auth/google                     - Federated sign-in
- POST /auth/refresh                    - Rotate refresh token
- GET  /auth/verify-email/{token}       - Confirm email address
- POST /auth/resend-verification        - Send a new verification link
- POST /auth/forgot-password            - Request a password reset link
- POST /auth/reset-password/{token}     - Set a new password from a reset link
- GET  /auth/me                         - Current user info
- POST /auth/logout                     - Revoke access token, end session
- POST /auth/logout-all                 - End all sessions
- GET  /auth/sessions                   - List active sessions
- POST /auth/change-password            - Change password
- POST /auth/users/{user_id}/logout-all - Force logout (admin only)
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status

from backend.auth.dependencies import (
    get_auth_service,
    get_bearer_token,
    get_client_info,
    get_current_user,
    require_role,
)
from backend.auth.models import Role, Session, User
from backend.auth.schemas import (
    ActiveSessionsResponse,
    AuthResponse,
    ChangePasswordRequest,
    EmailRequest,
    ErrorResponse,
    FederatedSignInRequest,
    LoginRequest,
    LogoutRequest,
    LogoutResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    SessionInfo,
    TokenResponse,
    UserResponse,
)
from backend.auth.service import AuthResult, AuthService
from backend.auth.tokens import TokenPair
from backend.gateway.rate_limit import auth_rate_limit, password_reset_rate_limit


router = APIRouter(prefix="/auth", tags=["authentication"])


def user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        avatar_url=user.avatar_url,
        role=user.role.value,
        is_email_verified=user.is_email_verified,
        last_login_at=user.last_login_at,
        created_at=user.created_at,
    )


def token_response(tokens: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type=tokens.token_type,
        expires_in=tokens.expires_in,
        refresh_expires_at=tokens.refresh_expires_at,
    )


def auth_response(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        **token_response(result.tokens).model_dump(),
        user=user_response(result.user),
        session_id=result.session.session_id if result.session else None,
    )


def session_info(session: Session) -> SessionInfo:
    return SessionInfo(
        session_id=session.session_id,
        device_type=session.device_type.value,
        client_name=session.client_name,
        ip_address=session.ip_address,
        user_agent=session.user_agent,
        created_at=session.created_at,
        last_activity_at=session.last_activity_at,
        expires_at=session.expires_at,
    )


# =============================================================================
# Sign-in
# =============================================================================

@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
    dependencies=[Depends(auth_rate_limit)],
    summary="Create account and sign in",
)
async def register(
    request: Request,
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
):
    """
    Register a password account.

    A verification link is mailed to the address; the account can sign
    in before it is verified.
    """
    result = await service.register(body.email, body.password, body.name, get_client_info(request))
    return auth_response(result)


@router.post(
    "/login",
    response_model=AuthResponse,
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
    dependencies=[Depends(auth_rate_limit)],
    summary="Authenticate user and create session",
)
async def login(
    request: Request,
    credentials: LoginRequest,
    service: AuthService = Depends(get_auth_service),
):
    """
    Authenticate user with email and password.

    Raises:
        401: Invalid credentials
        403: Account locked after repeated failures
    """
    result = await service.login(credentials.email, credentials.password, get_client_info(request))
    return auth_response(result)


@router.post(
    "/google",
    response_model=AuthResponse,
    responses={401: {"model": ErrorResponse}},
    dependencies=[Depends(auth_rate_limit)],
    summary="Sign in with an external identity token",
)
async def federated_sign_in(
    request: Request,
    body: FederatedSignInRequest,
    service: AuthService = Depends(get_auth_service),
):
    result = await service.federated_sign_in(body.id_token, get_client_info(request))
    return auth_response(result)


@router.post(
    "/refresh",
    response_model=TokenResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Rotate refresh token",
)
async def refresh(
    body: RefreshRequest,
    service: AuthService = Depends(get_auth_service),
):
    """
    Exchange a refresh token for a new token pair.

    The submitted refresh token is single use.
    """
    tokens = await service.refresh(body.refresh_token)
    return token_response(tokens)


# =============================================================================
# Email verification / password reset
# =============================================================================

@router.get(
    "/verify-email/{token}",
    response_model=MessageResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Confirm email address",
)
async def verify_email(
    token: str,
    service: AuthService = Depends(get_auth_service),
):
    await service.confirm_email_verification(token)
    return MessageResponse(message="Email verified successfully")


@router.post(
    "/resend-verification",
    response_model=MessageResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    dependencies=[Depends(auth_rate_limit)],
    summary="Send a new verification link",
)
async def resend_verification(
    body: EmailRequest,
    service: AuthService = Depends(get_auth_service),
):
    await service.request_email_verification(body.email)
    return MessageResponse(message="Verification email sent")


@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    dependencies=[Depends(password_reset_rate_limit)],
    summary="Request a password reset link",
)
async def forgot_password(
    body: EmailRequest,
    service: AuthService = Depends(get_auth_service),
):
    """Always succeeds so callers cannot tell which emails exist."""
    await service.request_password_reset(body.email)
    return MessageResponse(message="If an account exists for this email, a reset link has been sent")


@router.post(
    "/reset-password/{token}",
    response_model=AuthResponse,
    responses={400: {"model": ErrorResponse}},
    dependencies=[Depends(password_reset_rate_limit)],
    summary="Set a new password from a reset link",
)
async def reset_password(
    request: Request,
    token: str,
    body: ResetPasswordRequest,
    service: AuthService = Depends(get_auth_service),
):
    """
    Set a new password.

    Every existing session is terminated and a new one is started.
    """
    result = await service.confirm_password_reset(token, body.password, get_client_info(request))
    return auth_response(result)


# =============================================================================
# Authenticated
# =============================================================================

@router.get(
    "/me",
    response_model=UserResponse,
    summary="Get current user information",
)
async def get_me(user: User = Depends(get_current_user)):
    return user_response(user)


@router.post(
    "/logout",
    response_model=LogoutResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Revoke access token and end session",
)
async def logout(
    body: Optional[LogoutRequest] = None,
    user: User = Depends(get_current_user),
    token: Optional[str] = Depends(get_bearer_token),
    service: AuthService = Depends(get_auth_service),
):
    """
    Log out of the current device.

    The bearer access token is revoked immediately. If the body carries
    the refresh token, its session is terminated as well.
    """
    refresh_token = body.refresh_token if body else None
    invalidated = await service.logout(access_token=token, refresh_token=refresh_token)
    return LogoutResponse(message="Logged out", sessions_invalidated=invalidated)


@router.post(
    "/logout-all",
    response_model=LogoutResponse,
    summary="End all sessions",
)
async def logout_all(
    user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """
    Terminate every session of the current user.

    Access tokens already issued to other devices remain valid until
    they expire.
    """
    count = await service.logout_all(user)
    return LogoutResponse(message="Logged out from all devices", sessions_invalidated=count)


@router.get(
    "/sessions",
    response_model=ActiveSessionsResponse,
    summary="List active sessions",
)
async def list_sessions(
    user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """List active sessions, most recently used first."""
    sessions = await service.list_sessions(user)
    session_list = [session_info(s) for s in sessions]
    return ActiveSessionsResponse(sessions=session_list, total=len(session_list))


@router.post(
    "/change-password",
    response_model=MessageResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    summary="Change password",
)
async def change_password(
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    await service.change_password(user, body.current_password, body.new_password)
    return MessageResponse(message="Password changed successfully")


@router.post(
    "/users/{user_id}/logout-all",
    response_model=LogoutResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Force logout of a user (admin only)",
)
async def force_logout(
    user_id: UUID,
    admin: User = Depends(require_role(Role.ADMIN)),
    service: AuthService = Depends(get_auth_service),
):
    count = await service.force_logout(user_id)
    return LogoutResponse(message="User sessions terminated", sessions_invalidated=count)

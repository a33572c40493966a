"""
Gatekeeper - Security Dependencies

FastAPI dependencies for authentication and authorization.

Usage:
    @router.get("/protected")
    async def protected_route(user: User = Depends(get_current_user)):
        ...

    @router.post("/admin-only")
    async def admin_route(user: User = Depends(require_role(Role.ADMIN))):
        ...

Security:
- Every protected request checks the revocation registry, then the
  access-token signature, expiry and type, then the principal itself
- Role checks are deny-by-default
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from backend.auth.models import Role, User
from backend.auth.service import AuthService, ClientInfo
from backend.errors import ForbiddenError
from backend.logging import bind_request_context


# HTTP Bearer scheme for JWT extraction
security = HTTPBearer(auto_error=False)


def get_auth_service(request: Request) -> AuthService:
    """Auth service built during application startup."""
    return request.app.state.auth_service


def get_client_ip(request: Request) -> str:
    """Extract client IP from request."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def get_user_agent(request: Request) -> Optional[str]:
    """Extract user agent from request."""
    user_agent = request.headers.get("User-Agent")
    return user_agent[:512] if user_agent else None


def get_client_info(request: Request) -> ClientInfo:
    return ClientInfo(user_agent=get_user_agent(request), ip_address=get_client_ip(request))


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[str]:
    return credentials.credentials if credentials else None


async def get_current_user(
    token: Optional[str] = Depends(get_bearer_token),
    service: AuthService = Depends(get_auth_service),
) -> User:
    """
    Validate the bearer access token and return the current principal.

    Raises:
        AuthenticationRequiredError 401: Missing or revoked token, unknown or deleted principal
        TokenError 401: Malformed, expired or wrong-type token
        AccountLockedError 403: Principal is locked
    """
    user = await service.authenticate(token)
    bind_request_context(user_id=str(user.id))
    return user


def require_role(role: Role):
    """
    Dependency factory requiring a specific role.

    Usage:
        @router.post("/admin/users/{user_id}/logout-all")
        async def admin_only(user: User = Depends(require_role(Role.ADMIN))):
            ...
    """
    async def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role != role:
            raise ForbiddenError(f"Requires role: {role.value}")
        return user

    return dependency

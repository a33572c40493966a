"""
Gatekeeper - Error Taxonomy

Typed failures raised by the authentication core.

Operational errors carry a message that is safe to show to the caller.
Non-operational errors (InternalError) are logged in full server-side
and surfaced as an opaque generic message.
"""

from typing import Optional


class AuthError(Exception):
    """Base class for all failures surfaced to API callers."""

    status_code: int = 400
    code: str = "error"
    default_message: str = "Request failed"
    is_operational: bool = True

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailedError(AuthError):
    status_code = 400
    code = "validation_failed"
    default_message = "Validation failed"


class InvalidCredentialsError(AuthError):
    """Bad login. Same message whether the account exists or not."""
    status_code = 401
    code = "invalid_credentials"
    default_message = "Invalid credentials"


class AuthenticationRequiredError(AuthError):
    status_code = 401
    code = "authentication_required"
    default_message = "Not authorized to access this route"


class AccountLockedError(AuthError):
    status_code = 403
    code = "account_locked"
    default_message = "Account is locked due to multiple failed login attempts"


class InvalidSessionError(AuthError):
    """Refresh session not found, expired, or already rotated."""
    status_code = 401
    code = "invalid_session"
    default_message = "Invalid or expired session"


class TokenError(AuthError):
    """Base class for token codec failures."""
    status_code = 401
    code = "invalid_token"
    default_message = "Invalid token"


class TokenMalformedError(TokenError):
    code = "token_malformed"
    default_message = "Invalid token"


class TokenExpiredError(TokenError):
    code = "token_expired"
    default_message = "Token has expired"


class WrongTokenTypeError(TokenError):
    code = "wrong_token_type"
    default_message = "Invalid token type"


class ConflictError(AuthError):
    status_code = 409
    code = "conflict"
    default_message = "Resource conflict"


class NotFoundError(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class IdentityVerificationFailedError(AuthError):
    status_code = 401
    code = "identity_verification_failed"
    default_message = "Identity token could not be verified"


class UnsupportedOperationError(AuthError):
    """Password operation attempted on a federated-only account."""
    status_code = 400
    code = "unsupported_operation"
    default_message = "Operation not supported for this account"


class ForbiddenError(AuthError):
    status_code = 403
    code = "forbidden"
    default_message = "Access forbidden"


class RateLimitedError(AuthError):
    status_code = 429
    code = "rate_limited"
    default_message = "Too many requests, please try again later"


class InternalError(AuthError):
    """Configuration or unexpected failure. Never shown to the caller verbatim."""
    status_code = 500
    code = "internal"
    default_message = "Internal server error"
    is_operational = False

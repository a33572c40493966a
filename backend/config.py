"""
Gatekeeper - Configuration Management

Centralized configuration using Pydantic Settings.
All secrets and connection strings are loaded from environment variables.

Security: No secrets are hardcoded. Use .env for local development.
Generate signing secrets with `python scripts/generate_jwt_secrets.py`.
"""

from pydantic import validator
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        JWT_SECRET: Signing key for access tokens
        JWT_REFRESH_SECRET: Signing key for refresh tokens (must differ)
        MAX_SESSIONS_PER_USER: Concurrent refresh sessions per principal
        LOCKOUT_THRESHOLD: Failed logins before the account is locked
        BLACKLIST_SWEEP_INTERVAL_MINUTES: Revocation registry sweep period
        DATABASE_URL: SQLAlchemy connection string
        ALLOWED_ORIGINS: CORS allowed origins for the frontend
    """

    ENVIRONMENT: str = "development"

    # Token signing
    JWT_SECRET: str = ""  # Must be set via environment
    JWT_REFRESH_SECRET: str = ""  # Must be set via environment
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15  # Short-lived tokens
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30

    # Sessions and lockout
    MAX_SESSIONS_PER_USER: int = 3
    LOCKOUT_THRESHOLD: int = 5
    LOCKOUT_DURATION_MINUTES: int = 120

    # Background maintenance
    BLACKLIST_SWEEP_INTERVAL_MINUTES: int = 15
    SESSION_PURGE_INTERVAL_MINUTES: int = 60
    SHUTDOWN_GRACE_SECONDS: float = 10.0

    # One-time tokens sent by email
    EMAIL_VERIFICATION_EXPIRE_HOURS: int = 24
    PASSWORD_RESET_EXPIRE_MINUTES: int = 60

    # Database (PostgreSQL for production, SQLite for development)
    DATABASE_URL: str = "sqlite:///./gatekeeper.db"
    BCRYPT_WORK_FACTOR: int = 12

    # CORS / links
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]
    FRONTEND_URL: str = "http://localhost:3000"

    # Outbound email (logging mailer is used when SMTP_HOST is empty)
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    EMAIL_FROM: str = "no-reply@example.com"
    EMAIL_FROM_NAME: str = "Gatekeeper"

    # Federated sign-in
    FIREBASE_PROJECT_ID: str = ""

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    AUTH_RATE_LIMIT_PER_MINUTE: int = 10
    PASSWORD_RESET_RATE_LIMIT_PER_HOUR: int = 3

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    @validator("BLACKLIST_SWEEP_INTERVAL_MINUTES")
    def sweep_within_access_ttl(cls, v, values):
        """The registry only stays bounded if it is swept at least once per access TTL."""
        ttl = values.get("ACCESS_TOKEN_EXPIRE_MINUTES", 15)
        if v <= 0 or v > ttl:
            raise ValueError(
                "BLACKLIST_SWEEP_INTERVAL_MINUTES must be between 1 and ACCESS_TOKEN_EXPIRE_MINUTES"
            )
        return v


settings = Settings()

"""
Gatekeeper - FastAPI Application Entrypoint

This module initializes the FastAPI application with:
- CORS and security middleware
- Authentication routes and dependencies
- Error handlers mapping AuthError subclasses to JSON responses
- Database and maintenance-task lifecycle management

Run with: uvicorn backend.app:app
"""

from contextlib import asynccontextmanager
from typing import Optional

import asyncio
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.auth.blacklist import TokenBlacklist
from backend.auth.database import check_connection, get_engine, get_session_factory, init_db
from backend.auth.identity import IdentityProvider
from backend.auth.mailer import Mailer
from backend.auth.routes import router as auth_router
from backend.auth.scheduler import PeriodicTask
from backend.auth.service import AuthService
from backend.config import settings
from backend.errors import AuthError
from backend.gateway.middleware import SecurityMiddleware
from backend.logging import configure_logging, get_logger


logger = get_logger(__name__)

VERSION = "0.1.0"


def _error_body(request: Request, detail: str, code: str) -> dict:
    return {
        "detail": detail,
        "code": code,
        "request_id": getattr(request.state, "request_id", None),
    }


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    if exc.is_operational:
        logger.info("request.rejected", code=exc.code, status_code=exc.status_code)
        detail = exc.message
    else:
        logger.error("request.internal_error", code=exc.code, error=exc.message, exc_info=exc)
        detail = "Something went wrong"

    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, detail, exc.code),
        headers=headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": str(error.get("msg", "")).removeprefix("Value error, "),
        }
        for error in exc.errors()
    ]
    detail = errors[0]["message"] if errors else "Validation failed"
    body = _error_body(request, detail, "validation_failed")
    body["errors"] = errors
    return JSONResponse(status_code=400, content=body)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("request.unhandled_error", error_type=type(exc).__name__, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=_error_body(request, "Something went wrong", "internal"),
    )


def create_app(
    engine=None,
    mailer: Optional[Mailer] = None,
    identity_provider: Optional[IdentityProvider] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        engine: Database engine to use instead of DATABASE_URL (not disposed on shutdown)
        mailer: Mailer override (default: from SMTP settings)
        identity_provider: Federated identity verifier override
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Startup:
            - Configure logging
            - Initialize SQLModel database (Users, Sessions)
            - Build the auth service and start maintenance tasks

        Shutdown:
            - Stop maintenance tasks, waiting up to SHUTDOWN_GRACE_SECONDS
            - Dispose the database engine
        """
        configure_logging(settings.LOG_LEVEL, json_output=settings.LOG_FORMAT == "json")

        db_engine = engine if engine is not None else get_engine(settings.DATABASE_URL)
        init_db(db_engine)
        session_factory = get_session_factory(db_engine)

        service = AuthService.from_settings(
            session_factory,
            blacklist=TokenBlacklist(),
            mailer=mailer,
            identity_provider=identity_provider,
        )

        tasks = [
            PeriodicTask(
                "blacklist-sweep",
                service.blacklist.sweep,
                interval_seconds=settings.BLACKLIST_SWEEP_INTERVAL_MINUTES * 60,
            ),
            PeriodicTask(
                "session-purge",
                service.sessions.purge_expired,
                interval_seconds=settings.SESSION_PURGE_INTERVAL_MINUTES * 60,
            ),
        ]
        for task in tasks:
            task.start()

        app.state.db_engine = db_engine
        app.state.db_session_factory = session_factory
        app.state.blacklist = service.blacklist
        app.state.auth_service = service
        app.state.maintenance_tasks = tasks
        logger.info("app.started", environment=settings.ENVIRONMENT)

        yield

        # Shutdown
        await asyncio.gather(
            *(task.stop(timeout=settings.SHUTDOWN_GRACE_SECONDS) for task in tasks)
        )
        if engine is None:
            db_engine.dispose()
        logger.info("app.stopped")

    app = FastAPI(
        title="Gatekeeper",
        description="User authentication service with rotating refresh sessions",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # CORS - restricted to the configured frontend origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    # Request ID, request logging and security headers
    app.add_middleware(SecurityMiddleware)

    app.include_router(auth_router, prefix="/api/v1")

    @app.get("/health")
    async def health_check(request: Request):
        """
        Health check endpoint.
        Returns service status, database reachability and registry size.
        """
        database_ok = await asyncio.to_thread(check_connection, request.app.state.db_engine)
        return {
            "status": "healthy" if database_ok else "degraded",
            "version": VERSION,
            "services": {
                "database": database_ok,
                "revoked_tokens": len(request.app.state.blacklist),
                "maintenance_tasks": {
                    task.name: task.is_running for task in request.app.state.maintenance_tasks
                },
            },
        }

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "Gatekeeper",
            "version": VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()

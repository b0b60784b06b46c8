"""Invoicer FastAPI application — entry point for the API server."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import get_settings
from invoicer.core.constants import ACCOUNT_INACCESSIBLE_MESSAGE, BACKEND_RETRY_MESSAGE
from invoicer.core.exceptions import (
    AccountDisabled,
    AccountNotFound,
    BackendUnavailable,
    InvalidCredentials,
    InvalidInput,
    NotAuthorized,
    OrphanedCredentialError,
    RecordNotFound,
    SeatLimitExceeded,
)
from invoicer.core.logging import get_logger, setup_logging
from invoicer.data.db import close_engine, get_engine

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup/shutdown lifecycle — initialize DB engine, close on exit."""
    log.info("api_starting")
    await get_engine()
    yield
    await close_engine()
    log.info("api_shutdown")


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": code, "detail": message})


def register_exception_handlers(app: FastAPI) -> None:
    """Map the domain error taxonomy onto HTTP responses."""

    @app.exception_handler(InvalidInput)
    async def _invalid_input(request: Request, exc: InvalidInput) -> JSONResponse:
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "invalid_input", str(exc))

    @app.exception_handler(NotAuthorized)
    async def _not_authorized(request: Request, exc: NotAuthorized) -> JSONResponse:
        return _error(status.HTTP_403_FORBIDDEN, "not_authorized", str(exc))

    @app.exception_handler(SeatLimitExceeded)
    async def _seat_limit(request: Request, exc: SeatLimitExceeded) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, "seat_limit_exceeded", str(exc))

    @app.exception_handler(RecordNotFound)
    async def _record_not_found(request: Request, exc: RecordNotFound) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, "not_found", "User not found")

    # Both cases look identical to the caller.
    @app.exception_handler(AccountNotFound)
    async def _account_not_found(request: Request, exc: AccountNotFound) -> JSONResponse:
        log.info("account_inaccessible", reason="not_found")
        return _error(status.HTTP_401_UNAUTHORIZED, "account_inaccessible", ACCOUNT_INACCESSIBLE_MESSAGE)

    @app.exception_handler(AccountDisabled)
    async def _account_disabled(request: Request, exc: AccountDisabled) -> JSONResponse:
        log.info("account_inaccessible", reason="disabled")
        return _error(status.HTTP_401_UNAUTHORIZED, "account_inaccessible", ACCOUNT_INACCESSIBLE_MESSAGE)

    @app.exception_handler(InvalidCredentials)
    async def _invalid_credentials(request: Request, exc: InvalidCredentials) -> JSONResponse:
        return _error(status.HTTP_401_UNAUTHORIZED, "invalid_credentials", "Incorrect email or password")

    @app.exception_handler(OrphanedCredentialError)
    async def _orphaned(request: Request, exc: OrphanedCredentialError) -> JSONResponse:
        log.error("orphaned_credential_reported", email=exc.email, principal_id=exc.principal_id)
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "backend_unavailable", BACKEND_RETRY_MESSAGE)

    @app.exception_handler(BackendUnavailable)
    async def _backend(request: Request, exc: BackendUnavailable) -> JSONResponse:
        log.error("backend_unavailable", path=request.url.path, error=str(exc), **exc.context)
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "backend_unavailable", BACKEND_RETRY_MESSAGE)


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    settings = get_settings()
    setup_logging(settings.log_level, json_output=settings.invoicer_env == "prod")

    app = FastAPI(
        title="Invoicer API",
        description="Multi-tenant invoicing — accounts and access control",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Register routers
    from invoicer.api.routes.access import router as access_router
    from invoicer.api.routes.auth import router as auth_router
    from invoicer.api.routes.health import router as health_router
    from invoicer.api.routes.users import router as users_router

    app.include_router(health_router, prefix="/api")
    app.include_router(auth_router, prefix="/api")
    app.include_router(users_router, prefix="/api")
    app.include_router(access_router, prefix="/api")

    return app


app = create_app()

"""FastAPI application factory with role-based route mounting."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, Response

from hostly.api.errors import register_error_handlers
from hostly.api.routes import availability, bookings, tasks_holds, webhooks_stripe
from hostly.config import AppRole, Settings
from hostly.infra.db import close_pool, release_store_ownership
from hostly.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from hostly.observability.logging import get_logger, log_fields
from hostly.services.reservation_service import ReservationService

logger = get_logger(__name__)


def create_app(
    role: AppRole | None = None,
    *,
    settings: Settings | None = None,
    service: ReservationService | None = None,
) -> FastAPI:
    """Create FastAPI app with routes based on APP_ROLE.

    Args:
        role: Explicit role override. If None, uses settings.app_role.
        settings: Settings override. If None, reads from the environment.
        service: Pre-built service (tests). If None, built from settings.

    Returns:
        Configured FastAPI application. On startup it rebuilds the interval
        store from storage and starts the Hold Expirer. The process owns its
        interval store, so every role sweeps; the worker role additionally
        mounts the /tasks routes.
    """
    if settings is None:
        settings = Settings.from_env()
    if role is None:
        role = settings.app_role
    if service is None:
        service = ReservationService.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        service.recover()
        service.start()
        logger.info("app started", extra=log_fields(role=role))
        try:
            yield
        finally:
            service.stop()
            if settings.bookings_backend == "postgres":
                close_pool()
                release_store_ownership()

    app = FastAPI(
        title="Hostly Reservations",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.service = service

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        # Get or generate correlation ID
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    register_error_handlers(app)

    @app.get("/health")
    def health() -> dict:
        """Health check endpoint."""
        return {"status": "ok"}

    app.include_router(bookings.router)
    app.include_router(availability.router)
    app.include_router(webhooks_stripe.router)

    # Mount worker routes only for worker role
    if role == "worker":
        app.include_router(tasks_holds.router)

        @app.get("/tasks/health")
        def tasks_health() -> dict:
            """Tasks subsystem health check."""
            return {"status": "ok", "subsystem": "tasks"}

    return app

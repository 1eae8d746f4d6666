"""FastAPI application factory with role-based route mounting."""

from __future__ import annotations

from typing import Literal

from fastapi import FastAPI, Request, Response

from suma.infra.settings import load_settings
from suma.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from suma.services.container import Services, build_services

from .routers import public, worker
from .routes import tasks_whatsapp, webhooks_whatsapp_meta

AppRole = Literal["public", "worker"]


def create_app(role: AppRole | None = None, services: Services | None = None) -> FastAPI:
    """Create FastAPI app with routes based on APP_ROLE.

    Args:
        role: Explicit role override. If None, uses Settings.app_role
              (APP_ROLE env var, default "public").
        services: Prebuilt collaborators. If None, settings are loaded from
              the environment and services built from them.

    Returns:
        Configured FastAPI application.

    Raises:
        ConfigurationError: If required environment variables are missing.
    """
    if services is None:
        services = build_services(load_settings())

    if role is None:
        role = services.settings.app_role

    app = FastAPI(
        title="Suma",
        docs_url=None,
        redoc_url=None,
    )
    app.state.services = services

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        # Broker deliveries carry the ingress correlation id in this header
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    # Mount public routes (always)
    app.include_router(public.router)
    app.include_router(webhooks_whatsapp_meta.router)

    # Mount worker routes only for worker role
    if role == "worker":
        app.include_router(worker.router)
        app.include_router(tasks_whatsapp.router)

    return app

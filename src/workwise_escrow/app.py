"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from workwise_escrow.config import get_settings
from workwise_escrow.core.exceptions import register_exception_handlers
from workwise_escrow.core.lifespan import lifespan
from workwise_escrow.core.middleware import RequestValidationMiddleware
from workwise_escrow.routers import accounts, deposits, health, projects, reconciliation, webhooks


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI instance with all routers registered.
    """
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.service.name} Service",
        version=settings.service.version,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Operations"])
    app.include_router(accounts.router, tags=["Accounts"])
    app.include_router(projects.router, tags=["Projects"])
    app.include_router(deposits.router, tags=["Deposits"])
    app.include_router(webhooks.router, tags=["Webhooks"])
    app.include_router(reconciliation.router, tags=["Operations"])

    app.add_middleware(
        RequestValidationMiddleware,
        max_body_size=settings.request.max_body_size,
    )

    return app

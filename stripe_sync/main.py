"""
Application factory.

    from stripe_sync.main import create_app
    from stripe_sync.features.webhooks.router import HandlerRegistry

    app = create_app(HandlerRegistry({"invoice.paid": grant_access}))
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException

from stripe_sync.core.config import Settings, settings, validate_config
from stripe_sync.core.database import check_connection, create_all_tables
from stripe_sync.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from stripe_sync.core.logging import configure_logging
from stripe_sync.core.middleware.request_id import RequestIdMiddleware
from stripe_sync.api import admin_webhooks, billing, webhooks
from stripe_sync.features.webhooks.router import HandlerRegistry


def create_app(registry: Optional[HandlerRegistry] = None, settings_obj: Optional[Settings] = None) -> FastAPI:
    cfg = settings_obj or settings
    configure_logging(cfg.ENV)
    validate_config(strict=cfg.CONFIG_STRICT, settings_obj=cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = logging.getLogger("stripe_sync")
        logger.info("Starting stripe_sync...")
        create_all_tables()
        try:
            yield
        finally:
            logging.getLogger("stripe_sync").info("Stopping stripe_sync...")

    app = FastAPI(title="stripe_sync", lifespan=lifespan)
    app.state.settings = cfg
    app.state.handler_registry = registry or HandlerRegistry()

    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(webhooks.build_router(cfg.WEBHOOK_PATH))
    app.include_router(billing.router, prefix="/api", tags=["billing"])
    app.include_router(admin_webhooks.router, tags=["admin-webhooks"])

    @app.get("/healthz")
    def healthz():
        return {"ok": True, "database": check_connection()}

    return app

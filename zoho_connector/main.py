"""
FastAPI application entrypoint for the Zoho Creator connector.
"""

from __future__ import annotations

from fastapi import FastAPI

from zoho_connector.api.routes import router as api_router
from zoho_connector.core.config import get_settings
from zoho_connector.core.logging import configure_logging


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Zoho Creator Connector",
        version="0.1.0",
        description="OAuth onboarding, record access and bulk exports for Zoho Creator.",
    )
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]

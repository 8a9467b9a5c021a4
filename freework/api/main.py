"""Mock backend application."""

from typing import Optional

from fastapi import FastAPI

from freework.api.auth import router as auth_router
from freework.config import Settings, get_settings
from freework.services.mock_auth_service import MockAuthService


def create_mock_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build a mock auth server with its own in-memory credential store."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Freework Mock Auth",
        description="In-memory stand-in for the marketplace auth API.",
        version="0.1.0",
    )
    app.state.auth_service = MockAuthService(settings)
    app.include_router(auth_router)
    return app

"""FastAPI application entry point."""

import logging
from typing import Optional

from dotenv import load_dotenv

from fastapi import FastAPI

# Load environment variables from .env file
load_dotenv()

from app import models  # noqa: F401,E402
from app.api.routes import router  # noqa: E402
from app.core.config import settings  # noqa: E402
from app.services.container import ServiceContainer  # noqa: E402

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the app; without `services` the database and service graph are set up on startup."""
    app = FastAPI(title=settings.project_name)
    app.include_router(router, prefix=settings.api_v1_prefix)
    app.state.services = services

    @app.on_event("startup")
    def on_startup() -> None:
        """Initialize database artifacts and services."""
        if app.state.services is not None:
            return
        from app.db.init_db import init_db
        from app.db.session import SessionLocal
        from app.services.container import build_services

        init_db()
        app.state.services = build_services(settings, SessionLocal)
        logger.info("Services initialized")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        if app.state.services is not None:
            await app.state.services.recommendations.drain()

    @app.get("/", tags=["root"])
    async def root() -> dict[str, str]:
        """Basic sanity endpoint."""
        return {"message": "Nerede Yesem API is running"}

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        """Health check endpoint for Docker."""
        return {"status": "healthy"}

    return app


app = create_app()

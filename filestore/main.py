"""
FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI

from filestore.core.config import Settings, settings as default_settings
from filestore.core.container import container
from filestore.api.routes import router as api_router
from filestore.utils.logging import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events."""
    # Startup
    await container.initialize()

    yield

    # Shutdown
    await container.shutdown()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure FastAPI application."""
    settings = settings or default_settings
    configure_logging(level=settings.log_level, fmt=settings.log_format)
    container.configure(settings)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url=None,
    )

    # Routes
    app.include_router(api_router)

    @app.get("/health")
    async def health_check():
        """Quick health check endpoint (for load balancers)."""
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
        }

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("filestore.main:create_app", factory=True)

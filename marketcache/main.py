"""
MarketCache - Main Application Entry Point
"""
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from marketcache import __version__
from marketcache.api.errors import register_exception_handlers
from marketcache.api.v1.router import api_router
from marketcache.config import Settings, settings as default_settings
from marketcache.container import ServiceContainer
from marketcache.utils.logger import setup_logging


def create_application(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    A prebuilt ``container`` is used as-is; otherwise one is built from
    settings when the application starts.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events handler."""
        setup_logging(settings)
        logger.info(f"Starting {settings.APP_NAME} ({settings.APP_ENV})...")

        if getattr(app.state, "container", None) is None:
            app.state.container = ServiceContainer.build(settings)
        await app.state.container.startup()
        logger.info(f"{settings.APP_NAME} started successfully")

        yield

        logger.info(f"Shutting down {settings.APP_NAME}...")
        await app.state.container.shutdown()
        logger.info("Goodbye!")

    app = FastAPI(
        title=settings.APP_NAME,
        description="Rate-governed market data cache and bulk fundamentals backfill",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint for load balancers."""
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": __version__,
        }

    return app


app = create_application()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "marketcache.main:app",
        host="0.0.0.0",
        port=8000,
        reload=default_settings.DEBUG,
    )

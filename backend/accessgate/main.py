"""
Main FastAPI application.

WHY: This is the entry point for the application. It configures middleware,
routes, exception handlers and the lifecycle of the process-wide stores.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from accessgate.core.config import settings
from accessgate.core.exception_handlers import install_exception_handlers
from accessgate.middleware import RequestContextMiddleware, RateLimitMiddleware
from accessgate.api import access, admin, tokens
from accessgate.stores.registry import close_stores, init_stores


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    WHY: Factory pattern allows easier testing with different configurations.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="IP allow-list and verification token service",
        version=settings.VERSION,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    # Register exception handlers
    # WHY: Consistent error responses, no credentials in error bodies
    install_exception_handlers(app)

    # Request context first so every log line of the request can be correlated
    app.add_middleware(RequestContextMiddleware)

    # Per-client limits on the access check and token endpoints
    app.add_middleware(RateLimitMiddleware)

    # Configure CORS
    # WHY: The front-end runs on a different origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["health"])
    async def health_check() -> dict:
        """
        Health check endpoint.

        WHY: Lets load balancers verify the service is running without
        authentication or store access.
        """
        return {
            "status": "healthy",
            "version": settings.VERSION,
            "store_backend": settings.STORE_BACKEND,
        }

    @app.on_event("startup")
    async def startup_event():
        """
        Create the process-wide stores.

        WHY: Stores own connections; they live exactly as long as the app.
        """
        if settings.ACCESS_CHECK_BYPASS:
            logger.warning(
                "ACCESS_CHECK_BYPASS is enabled: every access check will succeed "
                f"(ENVIRONMENT={settings.ENVIRONMENT})"
            )
        await init_stores(settings)

    @app.on_event("shutdown")
    async def shutdown_event():
        await close_stores()

    @app.get("/", tags=["root"])
    async def root() -> dict:
        """Root endpoint with API information."""
        return {
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/api/docs",
        }

    # Register API routers
    app.include_router(access.router, prefix=settings.API_V1_PREFIX)
    app.include_router(tokens.router, prefix=settings.API_V1_PREFIX)
    app.include_router(admin.router, prefix=settings.API_V1_PREFIX)

    return app


# Create app instance
# WHY: Imported by uvicorn ("accessgate.main:app")
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "accessgate.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info" if settings.DEBUG else "warning",
    )

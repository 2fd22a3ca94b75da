"""
FastAPI application factory for the tfgate API server.

Uses lifespan handler for startup/shutdown with async resource management.
"""

import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tfgate.auth.code_codec import init_code_codec
from tfgate.auth.server_secret import init_server_secret
from tfgate.auth.signed_urls import init_url_signer
from tfgate.config import settings
from tfgate.db.session import close_db, init_db
from tfgate.logging_config import configure_logging, get_logger
from tfgate.redis.client import close_redis, init_redis
from tfgate.storage import close_storage, init_storage

from .health import router as health_router

logger = get_logger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan handler for startup and shutdown."""
    # Startup
    configure_logging(
        json_logs=settings.json_logs, log_level=settings.log_level, app_name=settings.app_name
    )
    logger.info("Starting tfgate API server", version=VERSION)

    await init_db()
    await init_redis()
    await init_storage()

    secret = init_server_secret(settings.secret)
    init_code_codec(secret)
    init_url_signer(secret)

    yield

    # Shutdown
    logger.info("Shutting down tfgate API server")
    await close_storage()
    await close_redis()
    await close_db()


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="tfgate API",
        description="Terraform login and configuration upload gateway",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    # CORS middleware
    if settings.cors.allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors.allow_origins,
            allow_credentials=settings.cors.allow_credentials,
            allow_methods=settings.cors.allow_methods,
            allow_headers=settings.cors.allow_headers,
        )

    from tfgate.api.routers.tfe_v2 import TFP_API_VERSION

    # TFE API version header
    @app.middleware("http")
    async def add_tfp_api_version(request: Request, call_next):  # type: ignore[no-untyped-def]
        response = await call_next(request)
        if request.url.path.startswith(settings.api_prefix):
            response.headers["TFP-API-Version"] = TFP_API_VERSION
        return response

    # Request ID middleware
    @app.middleware("http")
    async def add_request_id(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Ensure every request has a request ID for logging correlation."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(request_id=request_id)

        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
        response.headers["X-Request-ID"] = request_id

        return response

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled errors."""
        logger.error("Unhandled exception", exc_info=exc, path=str(request.url.path))
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    # Health endpoints (no prefix)
    app.include_router(health_router)

    # OAuth2 routes (terraform login flow, discovery, motd)
    from tfgate.api.routers.oauth import router as oauth_router

    app.include_router(oauth_router)

    # TFE V2 compatibility routes
    from tfgate.api.routers.tfe_v2 import router as tfe_v2_router

    app.include_router(tfe_v2_router)

    # Configuration version endpoints, plus the signed upload route
    from tfgate.api.routers.config_versions import router as config_versions_router
    from tfgate.api.routers.config_versions import signed_router as config_versions_signed_router

    app.include_router(config_versions_router)
    app.include_router(config_versions_signed_router)

    return app


# Application instance
app = create_application()

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from connection_auth.api.api import api_router
from connection_auth.api.errors import (
    auth_error_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from connection_auth.core.config import Settings, get_settings, validate_settings
from connection_auth.core.errors import AuthError
from connection_auth.core.logger import setup_logging
from connection_auth.services.container import AuthServices, build_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    services: AuthServices = app.state.services
    await services.initialize()
    logger.info(f"{services.settings.APP_NAME} {services.settings.VERSION} started")

    yield

    # Shutdown
    await services.sessions.cleanup_expired_sessions()
    await services.tokens.cleanup_revoked()
    logger.info("Identity service stopped")


def create_app(settings: Optional[Settings] = None, services: Optional[AuthServices] = None) -> FastAPI:
    """
    Build the identity API.

    Raises:
        ConfigurationError: settings the service cannot run with (e.g. bearer
            mode without JWT_SECRET)
    """
    settings = settings or (services.settings if services else get_settings())
    validate_settings(settings)
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        description="Identity and session security for The Connection",
        version=settings.VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.services = services or build_services(settings)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Retry-After"]
    )

    # Add exception handlers
    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include API routes
    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.get("/")
    async def root():
        return {
            "message": settings.APP_NAME,
            "version": settings.VERSION,
            "status": "operational",
            "docs_url": "/docs"
        }

    return app

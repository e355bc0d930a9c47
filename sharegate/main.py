"""sharegate - FastAPI Application Factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sharegate.api import api_router
from sharegate.api.delta_sharing import router as delta_sharing_router
from sharegate.api.health import router as health_router
from sharegate.core import settings, setup_logging
from sharegate.core.logging import get_logger

# Import all models to ensure they're registered with Base for Alembic
from sharegate.models import (  # noqa: F401
    AccessGrant,
    Recipient,
    RecipientToken,
    Share,
    SharedTable,
    ShareSchema,
    SystemConfig,
)
from sharegate.services.proxy import ProtocolProxy
from sharegate.services.service_account import get_service_account_manager
from sharegate.services.table_reader import TableReader

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    setup_logging(
        level=settings.log_level,
        format_type="structured" if not settings.debug else "dev",
    )
    logger.info(
        f"Starting {settings.app_name} v{settings.app_version} "
        f"in {settings.deployment_mode.value} mode"
    )

    for warning in settings.check_security_configuration():
        logger.warning(f"SECURITY: {warning}")

    if settings.is_hybrid:
        # Failure here is not fatal; the token is provisioned on first use
        try:
            manager = get_service_account_manager()
            await manager.ensure_token()
            # Shares are registered out of band; pick up any added since last run
            await manager.sync_grants()
            logger.info("Service account token initialized")
        except Exception:
            logger.exception("Failed to initialize service account token")

    yield

    logger.info("Shutting down...")
    await app.state.proxy.close()


def create_app(
    reader: TableReader | None = None,
    proxy: ProtocolProxy | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        reader: Local table reader used in standalone mode.
        proxy: Prebuilt proxy; overrides ``reader`` when given.
    """
    app = FastAPI(
        title=settings.app_name,
        description="Delta Sharing credential authority and protocol proxy",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    app.state.proxy = proxy or ProtocolProxy(settings.deployment_mode, reader=reader)

    if settings.cors_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins_list,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "Accept"],
            expose_headers=["Delta-Table-Version"],
        )

    app.include_router(health_router)  # Health at root level
    app.include_router(delta_sharing_router)  # Recipient protocol at /delta-sharing
    app.include_router(api_router)  # Admin API at /api

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with API information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "mode": settings.deployment_mode.value,
        }

    return app


# Application instance
app = create_app()

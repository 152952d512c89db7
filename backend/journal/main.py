"""
TradeJournal cTrader Sync - FastAPI Application
Main entry point with proper lifecycle management.

Service Architecture:
    API routes (/api/ctrader)
        ↓
    CTraderSyncService (token refresh → account info → history → positions)
        ↓
    CTraderProtocolSession (Open API WebSocket, one request per session)

    CTraderSyncScheduler (periodic sweep over active connections)
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from journal.api import api_router
from journal.core.config import settings
from journal.core.errors import SyncError
from journal.core.logging import setup_logging
from journal.db.session import DatabaseService
from journal.services.ctrader_sync import create_sync_service
from journal.services.sync_scheduler import CTraderSyncScheduler


# =============================================================================
# Application Lifecycle
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # -------------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------------
    setup_logging()
    logger.info("=" * 60)
    logger.info(f"Starting {settings.PROJECT_NAME}...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug Mode: {settings.DEBUG}")
    logger.info("=" * 60)

    try:
        db_service = DatabaseService()
        is_healthy = await db_service.health_check()
        if is_healthy:
            logger.info("✓ Database connection established")
        else:
            logger.warning("⚠ Database connection failed - sync will fail until it recovers")
    except Exception as e:
        logger.error(f"✗ Database initialization error: {e}")

    if not settings.ctrader.is_configured:
        logger.warning("⚠ cTrader client credentials missing - linking and sync are disabled")

    sync_service = create_sync_service()
    scheduler = CTraderSyncScheduler(sync_service)
    app.state.sync_service = sync_service
    app.state.sync_scheduler = scheduler

    if settings.sync.auto_sync_enabled:
        await scheduler.start()
    else:
        logger.info("Auto-sync loop disabled (trigger via POST /api/ctrader/auto-sync)")

    logger.info("-" * 60)
    logger.info("API ready to accept requests")
    logger.info("-" * 60)

    yield

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------
    logger.info("=" * 60)
    logger.info(f"Shutting down {settings.PROJECT_NAME}...")

    try:
        await scheduler.stop()
    except Exception as e:
        logger.error(f"Error stopping auto-sync: {e}")

    try:
        db_service = DatabaseService()
        await db_service.close()
        logger.info("✓ Database connections closed")
    except Exception as e:
        logger.error(f"Error closing database: {e}")

    logger.info("Shutdown complete")
    logger.info("=" * 60)


# =============================================================================
# Error Handling
# =============================================================================

async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    """Render pipeline errors as {success: false, error, message, details}."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# =============================================================================
# Application Factory
# =============================================================================

def create_application() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """
    application = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.APP_VERSION,
        description="Links trading journal accounts to cTrader and keeps them in sync.",
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(SyncError, sync_error_handler)

    # Include API routes
    application.include_router(api_router, prefix=settings.API_PREFIX)

    @application.get("/health")
    async def health_check():
        """
        Health check endpoint for load balancers and monitoring.
        """
        health_status = {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
        }

        try:
            db_healthy = await DatabaseService().health_check()
            health_status["database"] = "connected" if db_healthy else "disconnected"
        except Exception:
            health_status["database"] = "error"

        scheduler = getattr(application.state, "sync_scheduler", None)
        health_status["auto_sync"] = "running" if scheduler and scheduler.is_running else "stopped"
        health_status["ctrader_configured"] = settings.ctrader.is_configured

        if health_status["database"] != "connected":
            health_status["status"] = "degraded"

        return health_status

    @application.get("/")
    async def root():
        """
        Root endpoint with API information.
        """
        return {
            "message": f"Welcome to {settings.PROJECT_NAME} API",
            "version": settings.APP_VERSION,
            "docs": "/docs" if settings.DEBUG else "Disabled in production",
            "health": "/health",
        }

    return application


# Create application instance
app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "journal.main:app",
        host=settings.api.host,
        port=settings.api.port,
        reload=settings.DEBUG,
    )

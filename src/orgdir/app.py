"""FastAPI application factory and lifespan management."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from orgdir.access import AccessGate, SqliteOrganizations
from orgdir.config import Settings
from orgdir.db import Database
from orgdir.indexing import (
    IndexMaintenance,
    MaintenanceScheduler,
    RebuildScope,
)
from orgdir.middleware.auth import APIKeyMiddleware
from orgdir.middleware.cors import configure_cors
from orgdir.middleware.logging import RequestLoggingMiddleware
from orgdir.routes import health, maintenance, search
from orgdir.search import (
    DegradationController,
    LoggingSearchObserver,
    RankedSearchExecutor,
    SearchAnalytics,
    SearchService,
)

logger = structlog.get_logger()


async def _repair_indexes(index_maintenance: IndexMaintenance) -> None:
    """Rebuild the text indexes when they disagree with the source tables."""
    health = await asyncio.to_thread(index_maintenance.check_integrity)
    if health.healthy:
        return
    logger.warning("fts_startup_rebuild", issues=health.issues)
    health = await asyncio.to_thread(index_maintenance.rebuild, RebuildScope.ALL)
    logger.info("fts_startup_rebuild_complete", healthy=health.healthy)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle events.

    Checks index integrity on startup, repairing the indexes when
    configured to, and runs the maintenance scheduler until shutdown.

    Args:
        app: FastAPI application instance.

    Yields:
        None during application runtime.
    """
    settings: Settings = app.state.settings
    logger.info(
        "api_startup",
        host=settings.host,
        port=settings.port,
        database=settings.database_path,
    )

    index_maintenance: IndexMaintenance = app.state.index_maintenance
    if settings.repair_on_startup:
        await _repair_indexes(index_maintenance)

    scheduler: MaintenanceScheduler | None = None
    if settings.maintenance_interval_seconds > 0:
        scheduler = MaintenanceScheduler(
            index_maintenance, settings.maintenance_interval_seconds
        )
        scheduler.start()
    app.state.maintenance_scheduler = scheduler

    try:
        yield
    finally:
        if scheduler is not None:
            await scheduler.stop()
        logger.info("api_shutdown")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Factory function to create configured FastAPI application.

    Args:
        settings: Configuration instance. Creates default if None.

    Returns:
        Configured FastAPI application.
    """
    if settings is None:
        settings = Settings()

    database = Database(settings.database_path, busy_timeout_ms=settings.busy_timeout_ms)
    database.initialize()

    organizations = SqliteOrganizations(database)
    gate = AccessGate(organizations, organizations)
    search_analytics = SearchAnalytics(database)

    app = FastAPI(
        title="Organization Directory API",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/api/v1/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/api/v1/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.access_gate = gate
    app.state.search_analytics = search_analytics
    app.state.search_service = SearchService(
        database,
        gate,
        DegradationController(
            RankedSearchExecutor(),
            enable_trigram=settings.enable_trigram_fallback,
            enable_substring=settings.enable_substring_fallback,
        ),
        analytics=search_analytics,
        observer=LoggingSearchObserver(),
        slow_query_threshold_ms=settings.slow_query_threshold_ms,
        max_query_length=settings.max_query_length,
    )
    app.state.index_maintenance = IndexMaintenance(database)

    configure_cors(app, settings.cors_origins)
    app.add_middleware(RequestLoggingMiddleware)
    if settings.key:
        app.add_middleware(APIKeyMiddleware, api_key=settings.key)

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(search.router, prefix="/api/v1")
    app.include_router(maintenance.router, prefix="/api/v1")

    return app

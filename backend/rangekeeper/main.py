"""
Rangekeeper - FastAPI Application Factory
Clean Architecture with dependency injection
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from rangekeeper.core.config import Settings, get_settings
from rangekeeper.core.logging import setup_logging
from rangekeeper.infrastructure.orchestrator.services.collaborators import (
    HealthProbe,
    ResourceDeployer,
    ResourceVerifier,
)
from rangekeeper.infrastructure.orchestrator.services.command_deployer import CommandDeployer
from rangekeeper.infrastructure.orchestrator.services.health_intake import HealthIntake
from rangekeeper.infrastructure.orchestrator.services.health_probe import (
    HttpHealthProbe,
    ProbeVerifier,
)
from rangekeeper.infrastructure.orchestrator.services.resource_orchestrator import (
    ResourceOrchestrator,
)
from rangekeeper.infrastructure.persistence import (
    DatabaseResourceStore,
    MemoryResourceStore,
    ResourceStore,
)
from rangekeeper.infrastructure.registry import ResourceRegistry
from rangekeeper.interfaces.api.v1 import api_router
from rangekeeper.interfaces.middleware.error_handler import ErrorHandlerMiddleware

logger = structlog.get_logger(__name__)


def create_store(settings: Settings) -> ResourceStore:
    """Pick the persistence store from settings."""
    if settings.database_url:
        return DatabaseResourceStore(settings.database_url, echo=settings.database_echo)
    return MemoryResourceStore()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown."""
    settings: Settings = app.state.settings

    # Setup structured logging
    setup_logging(settings.log_level, settings.log_format)

    logger.info("Starting Rangekeeper", version=settings.app_version)

    # Registry owns all resource state
    registry = ResourceRegistry(create_store(settings))
    await registry.start()
    app.state.registry = registry

    probe = app.state.probe or HttpHealthProbe(timeout=settings.health_probe_timeout_seconds)
    deployer = app.state.deployer or CommandDeployer()
    verifier = app.state.verifier or ProbeVerifier(probe)

    app.state.orchestrator = ResourceOrchestrator.from_settings(
        registry,
        deployer,
        verifier,
        settings,
    )
    app.state.health_intake = HealthIntake.from_settings(registry, settings, probe=probe)

    logger.info("All services initialized successfully")

    yield

    # Cleanup
    logger.info("Shutting down Rangekeeper")

    app.state.orchestrator.abort()
    await app.state.orchestrator.wait_idle(settings.shutdown_grace_seconds)
    await app.state.health_intake.stop()
    await registry.stop()
    await registry.store.close()

    logger.info("Shutdown complete")


def create_app(
    settings: Settings | None = None,
    deployer: Optional[ResourceDeployer] = None,
    verifier: Optional[ResourceVerifier] = None,
    probe: Optional[HealthProbe] = None,
) -> FastAPI:
    """
    Application factory pattern for FastAPI.

    Args:
        settings: Optional settings override for testing
        deployer: Deployer driver, CommandDeployer by default
        verifier: Verifier, probe-backed by default
        probe: Health probe, HTTP/TCP by default

    Returns:
        Configured FastAPI application instance
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Lifecycle manager for cyber-range resources",
        version=settings.app_version,
        docs_url="/api/docs" if settings.debug else None,
        redoc_url="/api/redoc" if settings.debug else None,
        openapi_url="/api/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    # Store settings and collaborators in app state
    app.state.settings = settings
    app.state.deployer = deployer
    app.state.verifier = verifier
    app.state.probe = probe

    # Error handler
    app.add_middleware(ErrorHandlerMiddleware)

    # CORS (outermost)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
        allow_headers=["*"],
    )

    # Mount Prometheus metrics
    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)

    # Include API routes
    app.include_router(api_router, prefix="/api/v1")

    return app


# Create default application instance
app = create_app()

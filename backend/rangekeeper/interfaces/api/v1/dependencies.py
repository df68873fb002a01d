"""
Rangekeeper - API dependencies
Services are created by the application lifespan and kept on app state.
"""

from fastapi import Request

from rangekeeper.core.config import Settings
from rangekeeper.infrastructure.orchestrator.services.health_intake import HealthIntake
from rangekeeper.infrastructure.orchestrator.services.resource_orchestrator import (
    ResourceOrchestrator,
)
from rangekeeper.infrastructure.registry import ResourceRegistry


async def get_registry(request: Request) -> ResourceRegistry:
    """Get resource registry from app state."""
    return request.app.state.registry


async def get_orchestrator(request: Request) -> ResourceOrchestrator:
    """Get orchestrator from app state."""
    return request.app.state.orchestrator


async def get_health_intake(request: Request) -> HealthIntake:
    """Get health intake from app state."""
    return request.app.state.health_intake


async def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings

"""
Rangekeeper - API v1 Router
Aggregates all API endpoints
"""

from fastapi import APIRouter

from rangekeeper.interfaces.api.v1.health import router as health_router
from rangekeeper.interfaces.api.v1.orchestrator import router as orchestrator_router
from rangekeeper.interfaces.api.v1.resources import router as resources_router

api_router = APIRouter()

# Health check and signal ingestion endpoints
api_router.include_router(
    health_router,
    prefix="/health",
    tags=["Health"],
)

# Resource registry endpoints
api_router.include_router(
    resources_router,
    prefix="/resources",
    tags=["Resources"],
)

# Orchestrator endpoints
api_router.include_router(
    orchestrator_router,
    prefix="/orchestrator",
    tags=["Orchestrator"],
)

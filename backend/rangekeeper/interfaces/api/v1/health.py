"""
Rangekeeper - Health Endpoints
Service liveness and resource health signal ingestion
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from rangekeeper.core.config import Settings
from rangekeeper.infrastructure.orchestrator.models import HealthIntakeResult
from rangekeeper.infrastructure.orchestrator.services.health_intake import HealthIntake
from rangekeeper.infrastructure.orchestrator.services.resource_orchestrator import (
    ResourceOrchestrator,
)
from rangekeeper.infrastructure.registry import ResourceRegistry
from rangekeeper.interfaces.api.v1.dependencies import (
    get_app_settings,
    get_health_intake,
    get_orchestrator,
    get_registry,
)

logger = structlog.get_logger(__name__)

router = APIRouter()


class HealthStatus(BaseModel):
    """Service health response model."""
    status: str
    timestamp: str
    version: str
    checks: Dict[str, Any]


class HealthReportBody(BaseModel):
    """Health signal for one resource."""
    healthy: bool
    detail: Optional[str] = Field(default=None, max_length=2000)


class OverrideBody(BaseModel):
    detail: Optional[str] = Field(default=None, max_length=2000)


def _intake_response(result: HealthIntakeResult) -> JSONResponse:
    # Rejected signals are reported, not raised
    return JSONResponse(
        status_code=200 if result.accepted else 409,
        content=result.to_dict(),
    )


@router.get(
    "",
    response_model=HealthStatus,
    summary="Health Check",
)
async def health_check(
    registry: Annotated[ResourceRegistry, Depends(get_registry)],
    orchestrator: Annotated[ResourceOrchestrator, Depends(get_orchestrator)],
    intake: Annotated[HealthIntake, Depends(get_health_intake)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> HealthStatus:
    checks: Dict[str, Any] = {
        "registry": {
            "running": registry.is_running,
            "resources": len(registry.list()),
        },
        "orchestrator": {"running_executions": orchestrator.running},
        "health_intake": {
            "recovery_policy": intake.policy.name,
            "scheduled_reprobes": len(intake.scheduled_reprobes()),
        },
    }
    return HealthStatus(
        status="healthy" if registry.is_running else "unhealthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=settings.app_version,
        checks=checks,
    )


@router.post(
    "/resources/{resource_id}/active",
    summary="Report Probe Result",
)
async def report_active(
    resource_id: int,
    body: HealthReportBody,
    intake: Annotated[HealthIntake, Depends(get_health_intake)],
) -> JSONResponse:
    return _intake_response(await intake.report_active(resource_id, body.healthy, body.detail))


@router.post(
    "/resources/{resource_id}/passive",
    summary="Report Health Notification",
)
async def report_passive(
    resource_id: int,
    body: HealthReportBody,
    intake: Annotated[HealthIntake, Depends(get_health_intake)],
) -> JSONResponse:
    return _intake_response(await intake.report_passive(resource_id, body.healthy, body.detail))


@router.post(
    "/resources/{resource_id}/recover",
    summary="Manual Recovery Override",
)
async def recover(
    resource_id: int,
    body: OverrideBody,
    intake: Annotated[HealthIntake, Depends(get_health_intake)],
) -> JSONResponse:
    logger.info("Manual recovery requested", resource_id=resource_id)
    return _intake_response(await intake.manual_override(resource_id, body.detail))

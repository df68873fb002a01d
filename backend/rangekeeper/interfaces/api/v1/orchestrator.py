"""
Rangekeeper - Orchestrator API Endpoints

- POST /orchestrator/plan   - Stage plan for the selected forest
- POST /orchestrator/deploy - Deploy the selected forest
- POST /orchestrator/revoke - Revoke the selected forest
- POST /orchestrator/delete - Cascade soft-delete of revoked resources
- POST /orchestrator/abort  - Abort running executions
- GET  /orchestrator/status - Running executions
"""

from typing import Annotated, List, Optional

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from rangekeeper.domain.resources.entities import ResourceStatus
from rangekeeper.infrastructure.orchestrator.models import (
    ExecutionReport,
    OperationType,
    OutcomeType,
)
from rangekeeper.infrastructure.orchestrator.services.resource_orchestrator import (
    ResourceOrchestrator,
)
from rangekeeper.infrastructure.registry import ResourceRegistry
from rangekeeper.interfaces.api.v1.dependencies import get_orchestrator, get_registry

logger = structlog.get_logger(__name__)
router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================

class ForestSelection(BaseModel):
    """Selects the subtrees an operation applies to; all active resources by default."""
    root_ids: Optional[List[int]] = Field(default=None, description="Roots of the selected subtrees")


class ExecutionRequest(ForestSelection):
    timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Per-call timeout for deployer and verifier calls",
    )


class StageResponse(BaseModel):
    index: int
    resource_ids: List[int]
    depth: int
    sequence: int


class PlanResponse(BaseModel):
    reversed: bool
    stages: List[StageResponse]


class OutcomeResponse(BaseModel):
    resource_id: int
    stage: int
    outcome: OutcomeType
    status: Optional[ResourceStatus] = None
    error: Optional[str] = None
    detail: Optional[str] = None
    attempts: int = 0


class ExecutionReportResponse(BaseModel):
    operation: OperationType
    ok: bool
    aborted: bool
    plan: PlanResponse
    outcomes: List[OutcomeResponse]
    started_at: str
    finished_at: Optional[str] = None

    @classmethod
    def from_report(cls, report: ExecutionReport) -> "ExecutionReportResponse":
        return cls(**report.to_dict())


class AbortResponse(BaseModel):
    signalled: int


class OrchestratorStatusResponse(BaseModel):
    running: int


# ============================================================================
# API Endpoints
# ============================================================================

@router.post(
    "/plan",
    response_model=PlanResponse,
    summary="Deployment Plan",
)
async def plan(
    body: ForestSelection,
    registry: Annotated[ResourceRegistry, Depends(get_registry)],
    orchestrator: Annotated[ResourceOrchestrator, Depends(get_orchestrator)],
) -> PlanResponse:
    forest = registry.forest(body.root_ids)
    return PlanResponse(**orchestrator.plan(forest).to_dict())


@router.post(
    "/deploy",
    response_model=ExecutionReportResponse,
    summary="Deploy Resources",
)
async def deploy(
    body: ExecutionRequest,
    registry: Annotated[ResourceRegistry, Depends(get_registry)],
    orchestrator: Annotated[ResourceOrchestrator, Depends(get_orchestrator)],
) -> ExecutionReportResponse:
    forest = registry.forest(body.root_ids)
    logger.info("Deploy requested", root_ids=body.root_ids, resources=len(forest))
    report = await orchestrator.deploy(forest, timeout=body.timeout_seconds)
    return ExecutionReportResponse.from_report(report)


@router.post(
    "/revoke",
    response_model=ExecutionReportResponse,
    summary="Revoke Resources",
)
async def revoke(
    body: ExecutionRequest,
    registry: Annotated[ResourceRegistry, Depends(get_registry)],
    orchestrator: Annotated[ResourceOrchestrator, Depends(get_orchestrator)],
) -> ExecutionReportResponse:
    forest = registry.forest(body.root_ids)
    logger.info("Revoke requested", root_ids=body.root_ids, resources=len(forest))
    report = await orchestrator.revoke(forest, timeout=body.timeout_seconds)
    return ExecutionReportResponse.from_report(report)


@router.post(
    "/delete",
    response_model=ExecutionReportResponse,
    summary="Cascade Delete",
    description="Soft-delete the selected subtrees, children first; resources must be unavailable",
)
async def delete(
    body: ForestSelection,
    registry: Annotated[ResourceRegistry, Depends(get_registry)],
    orchestrator: Annotated[ResourceOrchestrator, Depends(get_orchestrator)],
) -> ExecutionReportResponse:
    forest = registry.forest(body.root_ids)
    report = await orchestrator.delete(forest)
    return ExecutionReportResponse.from_report(report)


@router.post(
    "/abort",
    response_model=AbortResponse,
    summary="Abort Executions",
)
async def abort(
    orchestrator: Annotated[ResourceOrchestrator, Depends(get_orchestrator)],
) -> AbortResponse:
    return AbortResponse(signalled=orchestrator.abort())


@router.get(
    "/status",
    response_model=OrchestratorStatusResponse,
    summary="Orchestrator Status",
)
async def orchestrator_status(
    orchestrator: Annotated[ResourceOrchestrator, Depends(get_orchestrator)],
) -> OrchestratorStatusResponse:
    return OrchestratorStatusResponse(running=orchestrator.running)

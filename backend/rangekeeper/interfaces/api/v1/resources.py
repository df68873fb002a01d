"""
Rangekeeper - Resource API Endpoints

- POST   /resources                          - Register a resource
- GET    /resources                          - List resources
- GET    /resources/{resource_id}            - Get a resource
- POST   /resources/{resource_id}/transitions - Apply a lifecycle trigger
- DELETE /resources/{resource_id}            - Soft-delete an unavailable resource
"""

from typing import Annotated, Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from rangekeeper.domain.resources.entities import (
    Resource,
    ResourceForm,
    ResourceSpec,
    ResourceStatus,
    ResourceType,
)
from rangekeeper.domain.resources.lifecycle import LifecycleTrigger
from rangekeeper.infrastructure.registry import ResourceFilter, ResourceRegistry
from rangekeeper.interfaces.api.v1.dependencies import get_registry

logger = structlog.get_logger(__name__)
router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================

class ResourceCreateBody(BaseModel):
    """Request body for registering a resource."""
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    resource_type: ResourceType = ResourceType.APP
    resource_form: ResourceForm = ResourceForm.SINGLE
    level: int = Field(default=0, ge=0, description="Hierarchy level, 0 = operating system")
    sequence: int = Field(default=0, ge=0, description="Deployment order within the sibling group")
    contains: List[int] = Field(default_factory=list, description="Ids of contained resources")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ResourceResponse(BaseModel):
    """Resource representation."""
    id: int
    name: str
    description: str
    resource_type: ResourceType
    resource_form: ResourceForm
    level: int
    contains: List[int]
    sequence: int
    status: ResourceStatus
    status_trigger: Optional[str] = None
    metadata: Dict[str, Any]
    create_datetime: str
    last_update_datetime: str
    status_changed_at: str
    deleted: bool
    delete_datetime: Optional[str] = None

    @classmethod
    def from_resource(cls, resource: Resource) -> "ResourceResponse":
        return cls(**resource.to_dict())


class ResourceListResponse(BaseModel):
    """Response for listing resources."""
    resources: List[ResourceResponse]
    total: int


class TransitionBody(BaseModel):
    """Lifecycle trigger to apply."""
    trigger: LifecycleTrigger


# ============================================================================
# API Endpoints
# ============================================================================

@router.post(
    "",
    response_model=ResourceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register Resource",
)
async def create_resource(
    body: ResourceCreateBody,
    registry: Annotated[ResourceRegistry, Depends(get_registry)],
) -> ResourceResponse:
    resource = registry.create(ResourceSpec(
        name=body.name,
        description=body.description,
        resource_type=body.resource_type,
        resource_form=body.resource_form,
        level=body.level,
        sequence=body.sequence,
        contains=body.contains,
        metadata=body.metadata,
    ))
    return ResourceResponse.from_resource(resource)


@router.get(
    "",
    response_model=ResourceListResponse,
    summary="List Resources",
)
async def list_resources(
    registry: Annotated[ResourceRegistry, Depends(get_registry)],
    include_deleted: bool = Query(default=False),
    status_filter: Optional[ResourceStatus] = Query(default=None, alias="status"),
    resource_type: Optional[ResourceType] = Query(default=None),
    level: Optional[int] = Query(default=None, ge=0),
) -> ResourceListResponse:
    resources = registry.list(ResourceFilter(
        include_deleted=include_deleted,
        status=status_filter,
        resource_type=resource_type,
        level=level,
    ))
    return ResourceListResponse(
        resources=[ResourceResponse.from_resource(resource) for resource in resources],
        total=len(resources),
    )


@router.get(
    "/{resource_id}",
    response_model=ResourceResponse,
    summary="Get Resource",
)
async def get_resource(
    resource_id: int,
    registry: Annotated[ResourceRegistry, Depends(get_registry)],
) -> ResourceResponse:
    return ResourceResponse.from_resource(registry.get(resource_id))


@router.post(
    "/{resource_id}/transitions",
    response_model=ResourceResponse,
    summary="Apply Lifecycle Trigger",
    description="Apply a lifecycle trigger, e.g. usage_requested once a prepared range is handed out",
)
async def apply_transition(
    resource_id: int,
    body: TransitionBody,
    registry: Annotated[ResourceRegistry, Depends(get_registry)],
) -> ResourceResponse:
    resource = await registry.transition(resource_id, body.trigger)
    logger.info(
        "Manual lifecycle trigger applied",
        resource_id=resource_id,
        trigger=body.trigger.value,
        status=resource.status.value,
    )
    return ResourceResponse.from_resource(resource)


@router.delete(
    "/{resource_id}",
    response_model=ResourceResponse,
    summary="Soft-delete Resource",
)
async def delete_resource(
    resource_id: int,
    registry: Annotated[ResourceRegistry, Depends(get_registry)],
) -> ResourceResponse:
    return ResourceResponse.from_resource(await registry.soft_delete(resource_id))

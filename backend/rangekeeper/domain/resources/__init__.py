"""Resource domain: entities, lifecycle, composition and planning."""

from .composition import Forest, build_forest
from .entities import (
    Resource,
    ResourceForm,
    ResourceSpec,
    ResourceStatus,
    ResourceType,
)
from .lifecycle import LifecycleTrigger, allowed_triggers, next_status
from .planner import Plan, Stage, build_plan

__all__ = [
    "Forest",
    "LifecycleTrigger",
    "Plan",
    "Resource",
    "ResourceForm",
    "ResourceSpec",
    "ResourceStatus",
    "ResourceType",
    "Stage",
    "allowed_triggers",
    "build_forest",
    "build_plan",
    "next_status",
]

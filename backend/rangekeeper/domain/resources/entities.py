"""
Rangekeeper - Resource Domain Entities
Resource types: Operating system images, databases, applications, profilers
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResourceStatus(str, Enum):
    """Resource lifecycle statuses."""
    CREATED = "created"
    DEPLOYED = "deployed"
    PREPARED = "prepared"
    USING = "using"
    EXCEPTION = "exception"
    REVOKING = "revoking"
    UNAVAILABLE = "unavailable"
    DELETED = "deleted"


class ResourceType(str, Enum):
    """Resource type tags."""
    OS = "os"
    DB = "db"
    APP = "app"
    PROFILER = "profiler"


class ResourceForm(str, Enum):
    """Whether a resource contains other resources."""
    SINGLE = "single"
    COMPOSITE = "composite"


@dataclass
class ResourceSpec:
    """Input for registering a new resource."""
    name: str
    resource_type: ResourceType = ResourceType.APP
    resource_form: ResourceForm = ResourceForm.SINGLE
    level: int = 0
    sequence: int = 0
    description: str = ""
    contains: List[int] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Resource:
    """
    A deployable unit (OS image or application).

    Containment is stored as plain child ids in ``contains``; the children
    themselves live independently in the registry.
    """
    id: int
    name: str
    description: str = ""
    resource_type: ResourceType = ResourceType.APP
    resource_form: ResourceForm = ResourceForm.SINGLE
    level: int = 0
    contains: List[int] = field(default_factory=list)
    sequence: int = 0

    status: ResourceStatus = ResourceStatus.CREATED
    # Lifecycle trigger that produced the current status
    status_trigger: Optional[str] = None

    # Driver hints (deploy/revoke commands, health check endpoint, ...)
    metadata: Dict[str, Any] = field(default_factory=dict)

    # Timestamps
    create_datetime: datetime = field(default_factory=utcnow)
    last_update_datetime: datetime = field(default_factory=utcnow)
    status_changed_at: datetime = field(default_factory=utcnow)

    # Soft delete
    deleted: bool = False
    delete_datetime: Optional[datetime] = None

    @property
    def is_composite(self) -> bool:
        return self.resource_form == ResourceForm.COMPOSITE

    def is_active(self) -> bool:
        """Check if the resource shows up in active listings."""
        return not self.deleted

    def copy(self) -> "Resource":
        """Detached snapshot of this record."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert resource to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "resource_type": self.resource_type.value,
            "resource_form": self.resource_form.value,
            "level": self.level,
            "contains": list(self.contains),
            "sequence": self.sequence,
            "status": self.status.value,
            "status_trigger": self.status_trigger,
            "metadata": dict(self.metadata),
            "create_datetime": self.create_datetime.isoformat(),
            "last_update_datetime": self.last_update_datetime.isoformat(),
            "status_changed_at": self.status_changed_at.isoformat(),
            "deleted": self.deleted,
            "delete_datetime": self.delete_datetime.isoformat() if self.delete_datetime else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Resource":
        """Rebuild a resource from its dictionary representation."""
        delete_datetime = data.get("delete_datetime")
        created = datetime.fromisoformat(data["create_datetime"])
        updated = datetime.fromisoformat(data.get("last_update_datetime") or data["create_datetime"])
        changed = data.get("status_changed_at")
        return cls(
            id=int(data["id"]),
            name=data["name"],
            description=data.get("description", ""),
            resource_type=ResourceType(data.get("resource_type", ResourceType.APP.value)),
            resource_form=ResourceForm(data.get("resource_form", ResourceForm.SINGLE.value)),
            level=int(data.get("level", 0)),
            contains=[int(child) for child in data.get("contains", [])],
            sequence=int(data.get("sequence", 0)),
            status=ResourceStatus(data.get("status", ResourceStatus.CREATED.value)),
            status_trigger=data.get("status_trigger"),
            metadata=dict(data.get("metadata") or {}),
            create_datetime=created,
            last_update_datetime=updated,
            status_changed_at=datetime.fromisoformat(changed) if changed else updated,
            deleted=bool(data.get("deleted", False)),
            delete_datetime=datetime.fromisoformat(delete_datetime) if delete_datetime else None,
        )

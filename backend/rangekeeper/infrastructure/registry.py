"""
Resource Registry - Authoritative store of resource records

Handles:
- Identity assignment (monotonic integer ids, never reused)
- Creation-time validation of level, form and containment
- Per-resource exclusive transition locks (fail fast, no queuing)
- Soft deletion
- Loading and saving through a pluggable store at start/stop

Reads return detached snapshots and never suspend, so they always observe a
consistent record; every mutation goes through a claimed resource lock.
"""

import asyncio
import itertools
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional

import structlog

from rangekeeper.core.exceptions import (
    AlreadyDeletedError,
    ConflictError,
    DuplicateIDError,
    InvalidSpecError,
    InvalidTransitionError,
    ResourceNotFoundError,
)
from rangekeeper.core.metrics import RESOURCE_TRANSITIONS
from rangekeeper.domain.resources.composition import Forest, build_forest
from rangekeeper.domain.resources.entities import (
    Resource,
    ResourceForm,
    ResourceSpec,
    ResourceStatus,
    ResourceType,
    utcnow,
)
from rangekeeper.domain.resources.lifecycle import LifecycleTrigger, next_status

from .persistence import MemoryResourceStore, ResourceStore

logger = structlog.get_logger(__name__)

Mutator = Callable[[Resource], Optional[LifecycleTrigger]]


@dataclass
class ResourceFilter:
    """Listing filter."""
    include_deleted: bool = False
    status: Optional[ResourceStatus] = None
    resource_type: Optional[ResourceType] = None
    level: Optional[int] = None

    def matches(self, resource: Resource) -> bool:
        if resource.deleted and not self.include_deleted:
            return False
        if self.status is not None and resource.status != self.status:
            return False
        if self.resource_type is not None and resource.resource_type != self.resource_type:
            return False
        if self.level is not None and resource.level != self.level:
            return False
        return True


class ResourceHandle:
    """
    Exclusive transition right on one resource.

    Granted by ``ResourceRegistry.claim``; only valid inside the claim block.
    """

    def __init__(self, registry: "ResourceRegistry", resource_id: int, operation: str):
        self._registry = registry
        self.resource_id = resource_id
        self.operation = operation
        self._released = False

    @property
    def resource(self) -> Resource:
        """Snapshot of the claimed resource."""
        return self._registry.get(self.resource_id)

    @property
    def status(self) -> ResourceStatus:
        return self._registry._resources[self.resource_id].status

    def apply(self, trigger: LifecycleTrigger, detail: Optional[str] = None) -> Resource:
        """Apply a lifecycle trigger to the claimed resource."""
        if self._released:
            raise RuntimeError(f"claim on resource {self.resource_id} has been released")
        return self._registry._apply(self.resource_id, trigger, detail, self.operation)

    def release(self) -> None:
        self._released = True


class ResourceRegistry:
    """
    Authoritative resource store.

    Passed explicitly to every component that reads or mutates resources.
    """

    def __init__(self, store: Optional[ResourceStore] = None):
        self.store = store or MemoryResourceStore()

        self._resources: Dict[int, Resource] = {}
        self._parent_of: Dict[int, int] = {}
        self._locks: Dict[int, asyncio.Lock] = {}
        self._ids = itertools.count(1)
        self._running = False

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Load persisted resources and resume id assignment after the largest id."""
        if self._running:
            return

        loaded = await self.store.load()
        resources: Dict[int, Resource] = {}
        for resource in loaded:
            if resource.id in resources:
                raise DuplicateIDError("persisted data holds the id twice", resource.id)
            resources[resource.id] = resource

        # Loaded records replace whatever a previous run left in memory
        self._resources = resources
        self._parent_of = {}
        for resource in self._resources.values():
            self._link_children(resource)

        highest = max(self._resources, default=0)
        self._ids = itertools.count(highest + 1)
        self._running = True
        logger.info("Resource registry started", resources=len(self._resources))

    async def stop(self) -> None:
        """Persist every resource record."""
        if not self._running:
            return

        await self.store.save(sorted(self._resources.values(), key=lambda r: r.id))
        self._running = False
        logger.info("Resource registry stopped", resources=len(self._resources))

    # ==========================================================================
    # Reads
    # ==========================================================================

    def get(self, resource_id: int) -> Resource:
        """Get a resource by id, soft-deleted ones included."""
        return self._require(resource_id).copy()

    def list(self, resource_filter: Optional[ResourceFilter] = None) -> List[Resource]:
        """List resources ordered by id; soft-deleted ones only when requested."""
        resource_filter = resource_filter or ResourceFilter()
        return [
            resource.copy()
            for _, resource in sorted(self._resources.items())
            if resource_filter.matches(resource)
        ]

    def parent_of(self, resource_id: int) -> Optional[int]:
        self._require(resource_id)
        return self._parent_of.get(resource_id)

    def forest(self, root_ids: Optional[Iterable[int]] = None) -> Forest:
        """
        Build the composition forest over active resources.

        Args:
            root_ids: Restrict the forest to the subtrees rooted at these ids
        """
        forest = build_forest(self.list(), ignore_missing=True)
        if root_ids is None:
            return forest
        root_ids = list(root_ids)
        for root_id in root_ids:
            resource = self._require(root_id)
            if resource.deleted:
                raise AlreadyDeletedError("resource is deleted", root_id)
        return forest.subforest(root_ids)

    def is_claimed(self, resource_id: int) -> bool:
        lock = self._locks.get(resource_id)
        return lock is not None and lock.locked()

    # ==========================================================================
    # Writes
    # ==========================================================================

    def create(self, spec: ResourceSpec) -> Resource:
        """
        Register a new resource in status CREATED.

        Raises:
            InvalidSpecError: If level, form, sequence or containment are inconsistent
        """
        self._validate_spec(spec)

        resource_id = next(self._ids)
        now = utcnow()
        resource = Resource(
            id=resource_id,
            name=spec.name,
            description=spec.description,
            resource_type=spec.resource_type,
            resource_form=spec.resource_form,
            level=spec.level,
            contains=list(spec.contains),
            sequence=spec.sequence,
            status=ResourceStatus.CREATED,
            metadata=dict(spec.metadata),
            create_datetime=now,
            last_update_datetime=now,
            status_changed_at=now,
        )
        self._resources[resource_id] = resource
        self._link_children(resource)

        logger.info(
            "Resource created",
            resource_id=resource_id,
            name=resource.name,
            resource_type=resource.resource_type.value,
            level=resource.level,
            sequence=resource.sequence,
        )
        return resource.copy()

    @asynccontextmanager
    async def claim(
        self,
        resource_id: int,
        operation: str = "transition",
    ) -> AsyncIterator[ResourceHandle]:
        """
        Claim the exclusive transition right on a resource.

        Raises:
            ResourceNotFoundError: Unknown id
            ConflictError: Another transition on the resource is in flight
        """
        self._require(resource_id)
        lock = self._locks.setdefault(resource_id, asyncio.Lock())
        if lock.locked():
            raise ConflictError(
                f"{operation} rejected: another transition is in flight",
                resource_id,
            )

        await lock.acquire()
        handle = ResourceHandle(self, resource_id, operation)
        try:
            yield handle
        finally:
            handle.release()
            lock.release()

    async def update(self, resource_id: int, mutator: Mutator) -> Resource:
        """
        Apply a transition under the resource's exclusive lock.

        The mutator receives a snapshot and returns the trigger to apply, or
        None to leave the resource untouched.
        """
        async with self.claim(resource_id, operation="update") as handle:
            trigger = mutator(handle.resource)
            if trigger is None:
                return handle.resource
            return handle.apply(trigger)

    async def transition(self, resource_id: int, trigger: LifecycleTrigger) -> Resource:
        """Apply a single lifecycle trigger."""
        return await self.update(resource_id, lambda _resource: trigger)

    async def soft_delete(self, resource_id: int) -> Resource:
        """
        Soft-delete an UNAVAILABLE resource.

        Raises:
            AlreadyDeletedError: Resource already deleted
            InvalidTransitionError: Resource is not UNAVAILABLE
        """
        if self._require(resource_id).deleted:
            raise AlreadyDeletedError("resource is already deleted", resource_id)

        async with self.claim(resource_id, operation="delete") as handle:
            if handle.status != ResourceStatus.UNAVAILABLE:
                raise InvalidTransitionError(
                    f"soft delete requires status 'unavailable', got '{handle.status.value}'",
                    resource_id,
                )
            return handle.apply(LifecycleTrigger.DELETE_REQUESTED)

    # ==========================================================================
    # Internals
    # ==========================================================================

    def _link_children(self, resource: Resource) -> None:
        if resource.deleted:
            return
        for child_id in resource.contains:
            self._parent_of[child_id] = resource.id

    def _unlink_children(self, resource: Resource) -> None:
        """Release the children of a deleted resource for re-containment."""
        for child_id in resource.contains:
            if self._parent_of.get(child_id) == resource.id:
                del self._parent_of[child_id]

    def _require(self, resource_id: int) -> Resource:
        resource = self._resources.get(resource_id)
        if resource is None:
            raise ResourceNotFoundError("resource not found", resource_id)
        return resource

    def _apply(
        self,
        resource_id: int,
        trigger: LifecycleTrigger,
        detail: Optional[str],
        operation: str,
    ) -> Resource:
        """Apply a trigger (caller holds the resource lock)."""
        resource = self._require(resource_id)
        previous = resource.status
        target = next_status(previous, trigger, resource_id)

        now = utcnow()
        resource.status = target
        resource.status_trigger = trigger.value
        resource.last_update_datetime = now
        resource.status_changed_at = now
        if target == ResourceStatus.DELETED:
            resource.deleted = True
            resource.delete_datetime = now
            self._unlink_children(resource)

        RESOURCE_TRANSITIONS.labels(
            from_status=previous.value,
            to_status=target.value,
            trigger=trigger.value,
        ).inc()
        logger.info(
            "Resource transitioned",
            resource_id=resource_id,
            from_status=previous.value,
            to_status=target.value,
            trigger=trigger.value,
            operation=operation,
            detail=detail,
        )
        return resource.copy()

    def _validate_spec(self, spec: ResourceSpec) -> None:
        if not spec.name:
            raise InvalidSpecError("name must not be empty")
        if spec.level < 0:
            raise InvalidSpecError(f"level must be non-negative, got {spec.level}")
        if spec.sequence < 0:
            raise InvalidSpecError(f"sequence must be non-negative, got {spec.sequence}")
        if spec.contains and spec.resource_form != ResourceForm.COMPOSITE:
            raise InvalidSpecError("single-form resource cannot contain children")
        if len(set(spec.contains)) != len(spec.contains):
            raise InvalidSpecError("contained resources must be distinct")

        for child_id in spec.contains:
            child = self._resources.get(child_id)
            if child is None:
                raise InvalidSpecError(f"contained resource {child_id} does not exist")
            if child.deleted:
                raise InvalidSpecError(f"contained resource {child_id} is deleted")
            if child_id in self._parent_of:
                raise InvalidSpecError(
                    f"resource {child_id} is already contained by {self._parent_of[child_id]}"
                )
            if not spec.level < child.level:
                raise InvalidSpecError(
                    f"contained resource {child_id} has level {child.level}, "
                    f"which is not below level {spec.level}"
                )

"""
Collaborator interfaces the orchestrator and health intake call into.

Implementations never touch resource status; they only report what happened.
"""

from abc import ABC, abstractmethod

from rangekeeper.domain.resources.entities import Resource

from ..models import DeployResult, HealthEvent, VerifyResult


class ResourceDeployer(ABC):
    """Provisions and tears down resources (VMs, images, applications)."""

    @abstractmethod
    async def deploy(self, resource: Resource) -> DeployResult:
        """Deploy one resource. Invoked once per attempt."""

    @abstractmethod
    async def revoke(self, resource: Resource) -> DeployResult:
        """Tear one resource down."""


class ResourceVerifier(ABC):
    """Confirms that a deployed resource is ready for use."""

    @abstractmethod
    async def verify(self, resource: Resource) -> VerifyResult:
        ...


class HealthProbe(ABC):
    """Pulls the current health of a resource."""

    @abstractmethod
    async def probe(self, resource: Resource) -> HealthEvent:
        ...

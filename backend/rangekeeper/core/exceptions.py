"""
Rangekeeper - Error Taxonomy

Every error raised by the core is structured: a kind, the resource it concerns
(when there is one) and a human-readable detail.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Machine-readable error kinds."""
    INVALID_SPEC = "invalid_spec"
    DUPLICATE_ID = "duplicate_id"
    NOT_FOUND = "not_found"
    CYCLE_DETECTED = "cycle_detected"
    LEVEL_VIOLATION = "level_violation"
    INVALID_TRANSITION = "invalid_transition"
    CONFLICT = "conflict"
    DEPENDENCY_FAILED = "dependency_failed"
    DEPLOYMENT_FAILED = "deployment_failed"
    VERIFICATION_FAILED = "verification_failed"
    VERIFICATION_TIMEOUT = "verification_timeout"
    STATE_MISMATCH = "state_mismatch"
    ALREADY_DELETED = "already_deleted"


class ResourceError(Exception):
    """Base class for all resource management errors."""

    kind: ErrorKind = ErrorKind.INVALID_SPEC

    def __init__(self, detail: str, resource_id: Optional[int] = None):
        self.detail = detail
        self.resource_id = resource_id
        super().__init__(detail)

    def __str__(self) -> str:
        if self.resource_id is None:
            return f"{self.kind.value}: {self.detail}"
        return f"{self.kind.value} (resource {self.resource_id}): {self.detail}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "resource_id": self.resource_id,
            "detail": self.detail,
        }


class InvalidSpecError(ResourceError, ValueError):
    """Raised when a resource specification is internally inconsistent."""
    kind = ErrorKind.INVALID_SPEC


class DuplicateIDError(ResourceError):
    """Raised when persisted data carries the same id twice."""
    kind = ErrorKind.DUPLICATE_ID


class ResourceNotFoundError(ResourceError, LookupError):
    """Raised when a resource id is unknown to the registry."""
    kind = ErrorKind.NOT_FOUND


class CycleDetectedError(ResourceError):
    """Raised when containment edges form a cycle."""
    kind = ErrorKind.CYCLE_DETECTED


class LevelViolationError(ResourceError):
    """Raised when a containment edge does not descend in level."""
    kind = ErrorKind.LEVEL_VIOLATION


class InvalidTransitionError(ResourceError):
    """Raised when a lifecycle trigger is not legal from the current status."""
    kind = ErrorKind.INVALID_TRANSITION


class ConflictError(ResourceError):
    """Raised when another transition on the same resource is already in flight."""
    kind = ErrorKind.CONFLICT


class DependencyFailedError(ResourceError):
    """Raised for resources skipped because a resource they depend on failed."""
    kind = ErrorKind.DEPENDENCY_FAILED


class DeploymentFailedError(ResourceError):
    """Raised when the deployer collaborator reports failure or times out."""
    kind = ErrorKind.DEPLOYMENT_FAILED


class VerificationFailedError(ResourceError):
    """Raised when the verifier gives a definitive not-ready verdict."""
    kind = ErrorKind.VERIFICATION_FAILED


class VerificationTimeoutError(ResourceError):
    """Raised when verification does not conclude within its timeout."""
    kind = ErrorKind.VERIFICATION_TIMEOUT


class StateMismatchError(ResourceError):
    """Raised when a health signal arrives for a resource not in service."""
    kind = ErrorKind.STATE_MISMATCH


class AlreadyDeletedError(ResourceError):
    """Raised when deleting a resource that is already soft-deleted."""
    kind = ErrorKind.ALREADY_DELETED

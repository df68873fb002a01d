"""
Orchestrator Models - Collaborator results, health events and execution reports
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from rangekeeper.core.exceptions import ErrorKind, ResourceError
from rangekeeper.domain.resources.entities import ResourceStatus, utcnow
from rangekeeper.domain.resources.planner import Plan


# ============================================================================
# Collaborator results
# ============================================================================

@dataclass
class DeployResult:
    """Result of a deployer call (deploy or revoke)."""
    success: bool
    reason: Optional[str] = None
    retryable: bool = False

    @classmethod
    def ok(cls) -> "DeployResult":
        return cls(success=True)

    @classmethod
    def failed(cls, reason: str, retryable: bool = False) -> "DeployResult":
        return cls(success=False, reason=reason, retryable=retryable)


@dataclass
class VerifyResult:
    """
    Result of a verifier call.

    ``pending`` means not ready yet; the orchestrator polls again until the
    verification timeout elapses.
    """
    ready: bool
    detail: Optional[str] = None
    pending: bool = False

    @classmethod
    def ready_now(cls) -> "VerifyResult":
        return cls(ready=True)

    @classmethod
    def not_ready(cls, detail: str, pending: bool = False) -> "VerifyResult":
        return cls(ready=False, detail=detail, pending=pending)


class SignalSource(str, Enum):
    """How a health signal was delivered."""
    ACTIVE = "active"    # probe result pulled by us
    PASSIVE = "passive"  # notification pushed by the resource
    MANUAL = "manual"    # operator override


@dataclass
class HealthEvent:
    """Single internal health event, whatever the delivery mechanism."""
    resource_id: int
    healthy: bool
    detail: Optional[str] = None
    source: SignalSource = SignalSource.ACTIVE
    observed_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "healthy": self.healthy,
            "detail": self.detail,
            "source": self.source.value,
            "observed_at": self.observed_at.isoformat(),
        }


@dataclass
class HealthIntakeResult:
    """Outcome of feeding one health event to the intake."""
    resource_id: int
    transitioned: bool
    previous_status: Optional[ResourceStatus] = None
    status: Optional[ResourceStatus] = None
    message: str = ""
    error: Optional[ResourceError] = None

    @property
    def accepted(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "accepted": self.accepted,
            "transitioned": self.transitioned,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "status": self.status.value if self.status else None,
            "message": self.message,
            "error": self.error.to_dict() if self.error else None,
        }


# ============================================================================
# Execution reports
# ============================================================================

class OperationType(str, Enum):
    DEPLOY = "deploy"
    REVOKE = "revoke"
    DELETE = "delete"


class OutcomeType(str, Enum):
    """Per-resource result of a plan execution."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"          # a dependency failed
    UNCHANGED = "unchanged"      # nothing to do
    NOT_STARTED = "not_started"  # execution aborted first


@dataclass
class ResourceOutcome:
    """What happened to one resource during a plan execution."""
    resource_id: int
    stage: int
    outcome: OutcomeType
    status: Optional[ResourceStatus] = None
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        """Whether dependents may proceed."""
        return self.outcome in (OutcomeType.SUCCEEDED, OutcomeType.UNCHANGED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "stage": self.stage,
            "outcome": self.outcome.value,
            "status": self.status.value if self.status else None,
            "error": self.error.value if self.error else None,
            "detail": self.detail,
            "attempts": self.attempts,
        }


@dataclass
class ExecutionReport:
    """Aggregated result of walking a plan."""
    plan: Plan
    operation: OperationType
    outcomes: Dict[int, ResourceOutcome] = field(default_factory=dict)
    aborted: bool = False
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    def record(self, outcome: ResourceOutcome) -> None:
        self.outcomes[outcome.resource_id] = outcome

    def outcome_of(self, resource_id: int) -> ResourceOutcome:
        return self.outcomes[resource_id]

    def _with(self, outcome: OutcomeType) -> List[int]:
        return sorted(rid for rid, item in self.outcomes.items() if item.outcome == outcome)

    @property
    def succeeded(self) -> List[int]:
        return self._with(OutcomeType.SUCCEEDED)

    @property
    def failed(self) -> List[int]:
        return self._with(OutcomeType.FAILED)

    @property
    def skipped(self) -> List[int]:
        return self._with(OutcomeType.SKIPPED)

    @property
    def not_started(self) -> List[int]:
        return self._with(OutcomeType.NOT_STARTED)

    @property
    def ok(self) -> bool:
        return not self.aborted and all(item.ok for item in self.outcomes.values())

    def finish(self) -> None:
        self.finished_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation.value,
            "ok": self.ok,
            "aborted": self.aborted,
            "plan": self.plan.to_dict(),
            "outcomes": [self.outcomes[rid].to_dict() for rid in sorted(self.outcomes)],
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class DeployReport(ExecutionReport):
    operation: OperationType = OperationType.DEPLOY


@dataclass
class RevokeReport(ExecutionReport):
    operation: OperationType = OperationType.REVOKE


@dataclass
class DeleteReport(ExecutionReport):
    operation: OperationType = OperationType.DELETE

"""
Rangekeeper - Resource Lifecycle State Machine

Transition table:

    CREATED      --deploy_requested-------> DEPLOYED
    CREATED      --deploy_failed----------> EXCEPTION
    DEPLOYED     --verification_succeeded-> PREPARED
    DEPLOYED     --verification_failed----> EXCEPTION
    PREPARED     --usage_requested--------> USING
    PREPARED     --revoke_requested-------> REVOKING
    USING        --anomaly_detected-------> EXCEPTION
    USING        --usage_completed--------> REVOKING
    EXCEPTION    --recovery_confirmed-----> USING
    EXCEPTION    --revoke_requested-------> REVOKING
    REVOKING     --pre_delete_requested---> UNAVAILABLE
    UNAVAILABLE  --delete_requested-------> DELETED

Anything else is an invalid transition. DELETED is terminal and nothing
re-enters CREATED.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from rangekeeper.core.exceptions import InvalidTransitionError

from .entities import ResourceStatus


class LifecycleTrigger(str, Enum):
    """Events that drive a resource through its lifecycle."""
    DEPLOY_REQUESTED = "deploy_requested"
    DEPLOY_FAILED = "deploy_failed"
    VERIFICATION_SUCCEEDED = "verification_succeeded"
    VERIFICATION_FAILED = "verification_failed"
    USAGE_REQUESTED = "usage_requested"
    ANOMALY_DETECTED = "anomaly_detected"
    RECOVERY_CONFIRMED = "recovery_confirmed"
    USAGE_COMPLETED = "usage_completed"
    REVOKE_REQUESTED = "revoke_requested"
    PRE_DELETE_REQUESTED = "pre_delete_requested"
    DELETE_REQUESTED = "delete_requested"


INITIAL_STATUS = ResourceStatus.CREATED
TERMINAL_STATUSES: FrozenSet[ResourceStatus] = frozenset({ResourceStatus.DELETED})

TRANSITIONS: Dict[Tuple[ResourceStatus, LifecycleTrigger], ResourceStatus] = {
    (ResourceStatus.CREATED, LifecycleTrigger.DEPLOY_REQUESTED): ResourceStatus.DEPLOYED,
    (ResourceStatus.CREATED, LifecycleTrigger.DEPLOY_FAILED): ResourceStatus.EXCEPTION,
    (ResourceStatus.DEPLOYED, LifecycleTrigger.VERIFICATION_SUCCEEDED): ResourceStatus.PREPARED,
    (ResourceStatus.DEPLOYED, LifecycleTrigger.VERIFICATION_FAILED): ResourceStatus.EXCEPTION,
    (ResourceStatus.PREPARED, LifecycleTrigger.USAGE_REQUESTED): ResourceStatus.USING,
    (ResourceStatus.PREPARED, LifecycleTrigger.REVOKE_REQUESTED): ResourceStatus.REVOKING,
    (ResourceStatus.USING, LifecycleTrigger.ANOMALY_DETECTED): ResourceStatus.EXCEPTION,
    (ResourceStatus.USING, LifecycleTrigger.USAGE_COMPLETED): ResourceStatus.REVOKING,
    (ResourceStatus.EXCEPTION, LifecycleTrigger.RECOVERY_CONFIRMED): ResourceStatus.USING,
    (ResourceStatus.EXCEPTION, LifecycleTrigger.REVOKE_REQUESTED): ResourceStatus.REVOKING,
    (ResourceStatus.REVOKING, LifecycleTrigger.PRE_DELETE_REQUESTED): ResourceStatus.UNAVAILABLE,
    (ResourceStatus.UNAVAILABLE, LifecycleTrigger.DELETE_REQUESTED): ResourceStatus.DELETED,
}


def next_status(
    current: ResourceStatus,
    trigger: LifecycleTrigger,
    resource_id: Optional[int] = None,
) -> ResourceStatus:
    """
    Resolve the status a trigger leads to.

    Raises:
        InvalidTransitionError: If the trigger is not legal from ``current``
    """
    target = TRANSITIONS.get((current, trigger))
    if target is None:
        raise InvalidTransitionError(
            f"cannot apply '{trigger.value}' to a resource in status '{current.value}'",
            resource_id=resource_id,
        )
    return target


def allowed_triggers(status: ResourceStatus) -> FrozenSet[LifecycleTrigger]:
    """Triggers accepted from the given status."""
    return frozenset(trigger for (source, trigger) in TRANSITIONS if source == status)


def is_terminal(status: ResourceStatus) -> bool:
    return status in TERMINAL_STATUSES

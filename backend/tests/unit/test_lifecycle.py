"""
Unit tests for the resource lifecycle state machine.

Tests:
- Every listed transition succeeds
- Every unlisted (status, trigger) pair is rejected
- DELETED is terminal and nothing re-enters CREATED
"""

import pytest

from rangekeeper.core.exceptions import ErrorKind, InvalidTransitionError
from rangekeeper.domain.resources.entities import ResourceStatus
from rangekeeper.domain.resources.lifecycle import (
    INITIAL_STATUS,
    TRANSITIONS,
    LifecycleTrigger,
    allowed_triggers,
    is_terminal,
    next_status,
)


class TestTransitionTable:
    """Test the happy-path transitions."""

    def test_full_lifecycle(self):
        """Walk a resource from creation to deletion."""
        status = INITIAL_STATUS
        for trigger in (
            LifecycleTrigger.DEPLOY_REQUESTED,
            LifecycleTrigger.VERIFICATION_SUCCEEDED,
            LifecycleTrigger.USAGE_REQUESTED,
            LifecycleTrigger.USAGE_COMPLETED,
            LifecycleTrigger.PRE_DELETE_REQUESTED,
            LifecycleTrigger.DELETE_REQUESTED,
        ):
            status = next_status(status, trigger)

        assert status == ResourceStatus.DELETED

    def test_anomaly_and_recovery(self):
        status = next_status(ResourceStatus.USING, LifecycleTrigger.ANOMALY_DETECTED)
        assert status == ResourceStatus.EXCEPTION

        status = next_status(status, LifecycleTrigger.RECOVERY_CONFIRMED)
        assert status == ResourceStatus.USING

    def test_verification_failure(self):
        status = next_status(ResourceStatus.DEPLOYED, LifecycleTrigger.VERIFICATION_FAILED)
        assert status == ResourceStatus.EXCEPTION

    def test_deploy_failure_enters_exception(self):
        status = next_status(ResourceStatus.CREATED, LifecycleTrigger.DEPLOY_FAILED)
        assert status == ResourceStatus.EXCEPTION

    @pytest.mark.parametrize("source", [ResourceStatus.PREPARED, ResourceStatus.EXCEPTION])
    def test_revoke_requested(self, source):
        assert next_status(source, LifecycleTrigger.REVOKE_REQUESTED) == ResourceStatus.REVOKING


class TestInvalidTransitions:
    """Test that everything outside the table is rejected."""

    @pytest.mark.parametrize("status", list(ResourceStatus))
    def test_unlisted_pairs_rejected(self, status):
        for trigger in LifecycleTrigger:
            if (status, trigger) in TRANSITIONS:
                continue
            with pytest.raises(InvalidTransitionError) as exc_info:
                next_status(status, trigger, resource_id=7)

            assert exc_info.value.kind == ErrorKind.INVALID_TRANSITION
            assert exc_info.value.resource_id == 7

    def test_deleted_is_terminal(self):
        assert is_terminal(ResourceStatus.DELETED)
        assert allowed_triggers(ResourceStatus.DELETED) == frozenset()

    def test_nothing_enters_created(self):
        assert ResourceStatus.CREATED not in TRANSITIONS.values()

    def test_skipping_verification_rejected(self):
        with pytest.raises(InvalidTransitionError):
            next_status(ResourceStatus.CREATED, LifecycleTrigger.USAGE_REQUESTED)

    def test_delete_requires_unavailable(self):
        with pytest.raises(InvalidTransitionError):
            next_status(ResourceStatus.USING, LifecycleTrigger.DELETE_REQUESTED)


class TestAllowedTriggers:
    """Test trigger discovery."""

    def test_using(self):
        assert allowed_triggers(ResourceStatus.USING) == frozenset({
            LifecycleTrigger.ANOMALY_DETECTED,
            LifecycleTrigger.USAGE_COMPLETED,
        })

    def test_non_terminal_statuses_have_exits(self):
        for status in ResourceStatus:
            if is_terminal(status):
                continue
            assert allowed_triggers(status), status

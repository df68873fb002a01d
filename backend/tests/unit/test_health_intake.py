"""
Unit tests for the health intake.

Tests:
- Anomaly handling and idempotence
- Signals for resources outside service
- Automatic recovery cooldown and re-probing
- Manual recovery policy and overrides
"""

import asyncio
from datetime import timedelta

import pytest

from rangekeeper.core.config import Settings
from rangekeeper.core.exceptions import ConflictError, ErrorKind, ResourceNotFoundError
from rangekeeper.domain.resources.entities import ResourceStatus
from rangekeeper.domain.resources.lifecycle import LifecycleTrigger
from rangekeeper.infrastructure.orchestrator.models import HealthEvent, SignalSource
from rangekeeper.infrastructure.orchestrator.services.health_intake import (
    AutoRecovery,
    HealthIntake,
    ManualRecovery,
)

from tests.fixtures.resource_fixtures import app_spec


async def resource_in_use(registry):
    resource = registry.create(app_spec("app", level=0))
    for trigger in (
        LifecycleTrigger.DEPLOY_REQUESTED,
        LifecycleTrigger.VERIFICATION_SUCCEEDED,
        LifecycleTrigger.USAGE_REQUESTED,
    ):
        await registry.transition(resource.id, trigger)
    return resource.id


class TestAnomalies:
    """Test anomaly signals."""

    @pytest.mark.asyncio
    async def test_repeated_anomaly_is_noop(self, registry):
        """Second identical anomaly leaves the resource in EXCEPTION."""
        intake = HealthIntake(registry, AutoRecovery(cooldown_seconds=0))
        resource_id = await resource_in_use(registry)

        first = await intake.report_active(resource_id, healthy=False, detail="http 500")
        second = await intake.report_active(resource_id, healthy=False, detail="http 500")

        assert first.transitioned is True
        assert first.previous_status == ResourceStatus.USING
        assert first.status == ResourceStatus.EXCEPTION
        assert second.transitioned is False
        assert second.accepted is True
        assert second.status == ResourceStatus.EXCEPTION
        assert registry.get(resource_id).status == ResourceStatus.EXCEPTION

    @pytest.mark.asyncio
    async def test_passive_and_active_are_equivalent(self, registry):
        intake = HealthIntake(registry)
        resource_id = await resource_in_use(registry)

        result = await intake.report_passive(resource_id, healthy=False, detail="agent alarm")

        assert result.status == ResourceStatus.EXCEPTION

    @pytest.mark.asyncio
    async def test_healthy_signal_while_using_is_noop(self, registry):
        intake = HealthIntake(registry)
        resource_id = await resource_in_use(registry)

        result = await intake.report_active(resource_id, healthy=True)

        assert result.transitioned is False
        assert result.status == ResourceStatus.USING


class TestStateMismatch:
    """Test signals for resources not in service."""

    @pytest.mark.asyncio
    async def test_signal_for_prepared_resource(self, registry):
        intake = HealthIntake(registry)
        resource = registry.create(app_spec("app", level=0))
        await registry.transition(resource.id, LifecycleTrigger.DEPLOY_REQUESTED)
        await registry.transition(resource.id, LifecycleTrigger.VERIFICATION_SUCCEEDED)

        result = await intake.report_active(resource.id, healthy=False)

        assert result.accepted is False
        assert result.error.kind == ErrorKind.STATE_MISMATCH
        assert result.status == ResourceStatus.PREPARED
        assert registry.get(resource.id).status == ResourceStatus.PREPARED

    @pytest.mark.asyncio
    async def test_manual_override_while_using(self, registry):
        intake = HealthIntake(registry)
        resource_id = await resource_in_use(registry)

        result = await intake.manual_override(resource_id)

        assert result.accepted is False
        assert result.error.kind == ErrorKind.STATE_MISMATCH

    @pytest.mark.asyncio
    async def test_failed_deploy_cannot_be_recovered(self, registry):
        """A resource that never reached service stays in EXCEPTION."""
        intake = HealthIntake(registry, AutoRecovery(cooldown_seconds=0))
        resource = registry.create(app_spec("app", level=0))
        await registry.transition(resource.id, LifecycleTrigger.DEPLOY_FAILED)

        override = await intake.manual_override(resource.id)
        healthy = await intake.report_passive(resource.id, healthy=True)

        assert override.accepted is False
        assert override.error.kind == ErrorKind.STATE_MISMATCH
        assert "deploy_failed" in override.message
        assert healthy.accepted is False
        assert registry.get(resource.id).status == ResourceStatus.EXCEPTION

    @pytest.mark.asyncio
    async def test_failed_verification_cannot_be_recovered(self, registry):
        intake = HealthIntake(registry, ManualRecovery())
        resource = registry.create(app_spec("app", level=0))
        await registry.transition(resource.id, LifecycleTrigger.DEPLOY_REQUESTED)
        await registry.transition(resource.id, LifecycleTrigger.VERIFICATION_FAILED)

        result = await intake.manual_override(resource.id)

        assert result.error.kind == ErrorKind.STATE_MISMATCH
        assert registry.get(resource.id).status == ResourceStatus.EXCEPTION

    @pytest.mark.asyncio
    async def test_unknown_resource_raises(self, registry):
        intake = HealthIntake(registry)

        with pytest.raises(ResourceNotFoundError):
            await intake.report_active(404, healthy=False)

    @pytest.mark.asyncio
    async def test_busy_resource_raises_conflict(self, registry):
        intake = HealthIntake(registry)
        resource_id = await resource_in_use(registry)

        async with registry.claim(resource_id):
            with pytest.raises(ConflictError):
                await intake.report_active(resource_id, healthy=False)


class TestAutoRecovery:
    """Test cooldown-based recovery."""

    @pytest.mark.asyncio
    async def test_recovery_blocked_during_cooldown(self, registry):
        intake = HealthIntake(registry, AutoRecovery(cooldown_seconds=3600))
        resource_id = await resource_in_use(registry)
        await intake.report_active(resource_id, healthy=False)

        result = await intake.report_active(resource_id, healthy=True)

        assert result.transitioned is False
        assert "cooldown" in result.message
        assert registry.get(resource_id).status == ResourceStatus.EXCEPTION

    @pytest.mark.asyncio
    async def test_recovery_after_cooldown(self, registry):
        intake = HealthIntake(registry, AutoRecovery(cooldown_seconds=60))
        resource_id = await resource_in_use(registry)
        await intake.report_active(resource_id, healthy=False)
        entered = registry.get(resource_id).status_changed_at

        result = await intake.ingest(HealthEvent(
            resource_id=resource_id,
            healthy=True,
            observed_at=entered + timedelta(seconds=61),
        ))

        assert result.transitioned is True
        assert result.status == ResourceStatus.USING

    @pytest.mark.asyncio
    async def test_manual_override_bypasses_cooldown(self, registry):
        intake = HealthIntake(registry, AutoRecovery(cooldown_seconds=3600))
        resource_id = await resource_in_use(registry)
        await intake.report_active(resource_id, healthy=False)

        result = await intake.manual_override(resource_id, detail="operator checked")

        assert result.transitioned is True
        assert registry.get(resource_id).status == ResourceStatus.USING

    @pytest.mark.asyncio
    async def test_reprobe_recovers_resource(self, registry, probe):
        intake = HealthIntake(registry, AutoRecovery(cooldown_seconds=0.01), probe=probe)
        resource_id = await resource_in_use(registry)

        await intake.report_active(resource_id, healthy=False)
        assert resource_id in intake.scheduled_reprobes()

        for _ in range(100):
            if registry.get(resource_id).status == ResourceStatus.USING:
                break
            await asyncio.sleep(0.01)

        assert registry.get(resource_id).status == ResourceStatus.USING
        assert probe.calls == [resource_id]
        await intake.stop()

    @pytest.mark.asyncio
    async def test_reprobe_gives_up_after_max_attempts(self, registry, probe):
        probe.healthy = False
        intake = HealthIntake(
            registry,
            AutoRecovery(cooldown_seconds=0.01, max_attempts=2),
            probe=probe,
        )
        resource_id = await resource_in_use(registry)

        await intake.report_active(resource_id, healthy=False)
        for _ in range(100):
            if resource_id not in intake.scheduled_reprobes():
                break
            await asyncio.sleep(0.01)

        assert len(probe.calls) == 2
        assert resource_id not in intake.scheduled_reprobes()
        assert registry.get(resource_id).status == ResourceStatus.EXCEPTION

    @pytest.mark.asyncio
    async def test_stop_cancels_reprobes(self, registry, probe):
        intake = HealthIntake(registry, AutoRecovery(cooldown_seconds=3600), probe=probe)
        resource_id = await resource_in_use(registry)
        await intake.report_active(resource_id, healthy=False)

        await intake.stop()

        assert intake.scheduled_reprobes() == {}
        assert probe.calls == []


class TestManualRecovery:
    """Test manual-only recovery."""

    @pytest.mark.asyncio
    async def test_healthy_signal_ignored(self, registry, probe):
        intake = HealthIntake(registry, ManualRecovery(), probe=probe)
        resource_id = await resource_in_use(registry)
        await intake.report_active(resource_id, healthy=False)

        result = await intake.report_passive(resource_id, healthy=True)

        assert result.transitioned is False
        assert result.message == "awaiting manual override"
        assert intake.scheduled_reprobes() == {}

        override = await intake.manual_override(resource_id)
        assert override.status == ResourceStatus.USING


class TestFromSettings:
    """Test policy selection from settings."""

    @pytest.mark.asyncio
    async def test_manual_mode(self, registry):
        intake = HealthIntake.from_settings(registry, Settings(recovery_mode="manual"))

        assert isinstance(intake.policy, ManualRecovery)

    @pytest.mark.asyncio
    async def test_auto_mode(self, registry):
        intake = HealthIntake.from_settings(
            registry,
            Settings(recovery_mode="auto", recovery_cooldown_seconds=5, max_recovery_attempts=2),
        )

        assert isinstance(intake.policy, AutoRecovery)
        assert intake.policy.cooldown_seconds == 5
        assert intake.policy.max_attempts == 2


class TestHealthEvent:
    def test_to_dict(self):
        event = HealthEvent(resource_id=1, healthy=False, detail="down", source=SignalSource.PASSIVE)

        data = event.to_dict()

        assert data["source"] == "passive"
        assert data["healthy"] is False

"""
Unit tests for the resource orchestrator.

Tests:
- End-to-end deploy and revoke over a composite tree
- Failure isolation (siblings continue, dependents are skipped)
- Deploy retry and verification polling/timeouts
- Abort and cascade delete
"""

import asyncio

import pytest

from rangekeeper.core.exceptions import ErrorKind
from rangekeeper.domain.resources.entities import ResourceStatus
from rangekeeper.domain.resources.lifecycle import LifecycleTrigger
from rangekeeper.infrastructure.orchestrator.models import (
    DeployResult,
    OperationType,
    OutcomeType,
    VerifyResult,
)
from rangekeeper.infrastructure.orchestrator.services.resource_orchestrator import (
    ResourceOrchestrator,
)

from tests.fixtures.resource_fixtures import app_spec, os_spec


def status_of(registry, resource_id):
    return registry.get(resource_id).status


class TestDeploy:
    """Test plan deployment."""

    @pytest.mark.asyncio
    async def test_full_deploy(self, registry, scenario_tree, orchestrator, deployer):
        report = await orchestrator.deploy(registry.forest())

        assert report.operation == OperationType.DEPLOY
        assert report.ok is True
        assert deployer.deploy_calls == ["OS1", "App1", "App2"]
        for resource_id in scenario_tree.values():
            assert status_of(registry, resource_id) == ResourceStatus.PREPARED
            assert report.outcome_of(resource_id).outcome == OutcomeType.SUCCEEDED
        assert report.finished_at is not None

    @pytest.mark.asyncio
    async def test_sibling_failure_is_isolated(self, registry, scenario_tree, orchestrator, deployer):
        deployer.deploy_results["App1"] = [DeployResult.failed("image pull failed")]

        report = await orchestrator.deploy(registry.forest())

        app1 = report.outcome_of(scenario_tree["App1"])
        assert app1.outcome == OutcomeType.FAILED
        assert app1.error == ErrorKind.DEPLOYMENT_FAILED
        assert app1.detail == "image pull failed"
        assert status_of(registry, scenario_tree["App1"]) == ResourceStatus.EXCEPTION

        assert status_of(registry, scenario_tree["App2"]) == ResourceStatus.PREPARED
        assert status_of(registry, scenario_tree["OS1"]) == ResourceStatus.PREPARED
        assert report.ok is False
        assert report.failed == [scenario_tree["App1"]]

    @pytest.mark.asyncio
    async def test_parent_failure_skips_descendants(self, registry, scenario_tree, orchestrator, deployer):
        deployer.deploy_results["OS1"] = [DeployResult.failed("no capacity")]

        report = await orchestrator.deploy(registry.forest())

        assert deployer.deploy_calls == ["OS1"]
        for name in ("App1", "App2"):
            outcome = report.outcome_of(scenario_tree[name])
            assert outcome.outcome == OutcomeType.SKIPPED
            assert outcome.error == ErrorKind.DEPENDENCY_FAILED
            assert status_of(registry, scenario_tree[name]) == ResourceStatus.CREATED

    @pytest.mark.asyncio
    async def test_independent_roots_deploy_concurrently(self, registry, orchestrator, deployer):
        registry.create(app_spec("OS1", sequence=1, level=0))
        registry.create(app_spec("OS2", sequence=1, level=0))
        deployer.delay = 0.05

        report = await orchestrator.deploy(registry.forest())

        assert len(report.plan) == 1
        assert deployer.max_in_flight == 2
        assert report.ok is True

    @pytest.mark.asyncio
    async def test_stage_concurrency_bounded(self, registry, deployer, verifier):
        for index in range(4):
            registry.create(app_spec(f"OS{index}", level=0))
        deployer.delay = 0.02
        orchestrator = ResourceOrchestrator(
            registry,
            deployer,
            verifier,
            verify_poll_interval=0.01,
            retry_wait=0,
            max_concurrency=2,
        )

        await orchestrator.deploy(registry.forest())

        assert deployer.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_already_prepared_is_unchanged(self, registry, scenario_tree, orchestrator, deployer):
        await orchestrator.deploy(registry.forest())
        deployer.deploy_calls.clear()

        report = await orchestrator.deploy(registry.forest())

        assert deployer.deploy_calls == []
        assert all(item.outcome == OutcomeType.UNCHANGED for item in report.outcomes.values())
        assert report.ok is True

    @pytest.mark.asyncio
    async def test_exception_resource_cannot_redeploy(self, registry, orchestrator, deployer):
        resource = registry.create(app_spec("a", level=0))
        deployer.deploy_results["a"] = [DeployResult.failed("boom")]
        await orchestrator.deploy(registry.forest())

        report = await orchestrator.deploy(registry.forest())

        outcome = report.outcome_of(resource.id)
        assert outcome.outcome == OutcomeType.FAILED
        assert outcome.error == ErrorKind.INVALID_TRANSITION

    @pytest.mark.asyncio
    async def test_deployer_exception_is_not_retried(self, registry, orchestrator, deployer):
        resource = registry.create(app_spec("a", level=0))

        async def explode(_resource):
            raise RuntimeError("driver crashed")

        deployer.deploy = explode

        report = await orchestrator.deploy(registry.forest())

        outcome = report.outcome_of(resource.id)
        assert outcome.outcome == OutcomeType.FAILED
        assert outcome.attempts == 1
        assert "RuntimeError" in outcome.detail
        assert status_of(registry, resource.id) == ResourceStatus.EXCEPTION


class TestRetry:
    """Test deploy retry."""

    @pytest.mark.asyncio
    async def test_retryable_failure_then_success(self, registry, orchestrator, deployer):
        resource = registry.create(app_spec("a", level=0))
        deployer.deploy_results["a"] = [
            DeployResult.failed("busy", retryable=True),
            DeployResult.ok(),
        ]

        report = await orchestrator.deploy(registry.forest())

        outcome = report.outcome_of(resource.id)
        assert outcome.outcome == OutcomeType.SUCCEEDED
        assert outcome.attempts == 2
        assert deployer.deploy_calls == ["a", "a"]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, registry, orchestrator, deployer):
        resource = registry.create(app_spec("a", level=0))
        deployer.deploy_results["a"] = [DeployResult.failed("busy", retryable=True)]

        report = await orchestrator.deploy(registry.forest())

        outcome = report.outcome_of(resource.id)
        assert outcome.outcome == OutcomeType.FAILED
        assert outcome.attempts == 3
        assert status_of(registry, resource.id) == ResourceStatus.EXCEPTION

    @pytest.mark.asyncio
    async def test_non_retryable_failure_single_attempt(self, registry, orchestrator, deployer):
        resource = registry.create(app_spec("a", level=0))
        deployer.deploy_results["a"] = [DeployResult.failed("bad image")]

        report = await orchestrator.deploy(registry.forest())

        assert report.outcome_of(resource.id).attempts == 1

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, registry, orchestrator, deployer):
        resource = registry.create(app_spec("a", level=0))
        deployer.delay = 0.2

        report = await orchestrator.deploy(registry.forest(), timeout=0.05)

        outcome = report.outcome_of(resource.id)
        assert outcome.outcome == OutcomeType.FAILED
        assert outcome.attempts == 3
        assert "timed out" in outcome.detail


class TestVerification:
    """Test verification polling."""

    @pytest.mark.asyncio
    async def test_pending_then_ready(self, registry, orchestrator, verifier):
        resource = registry.create(app_spec("a", level=0))
        verifier.results["a"] = [
            VerifyResult.not_ready("booting", pending=True),
            VerifyResult.not_ready("booting", pending=True),
            VerifyResult.ready_now(),
        ]

        report = await orchestrator.deploy(registry.forest())

        assert report.outcome_of(resource.id).outcome == OutcomeType.SUCCEEDED
        assert verifier.calls == ["a", "a", "a"]

    @pytest.mark.asyncio
    async def test_definitive_failure(self, registry, orchestrator, verifier):
        resource = registry.create(app_spec("a", level=0))
        verifier.results["a"] = [VerifyResult.not_ready("port closed")]

        report = await orchestrator.deploy(registry.forest())

        outcome = report.outcome_of(resource.id)
        assert outcome.error == ErrorKind.VERIFICATION_FAILED
        assert outcome.detail == "port closed"
        assert status_of(registry, resource.id) == ResourceStatus.EXCEPTION

    @pytest.mark.asyncio
    async def test_verification_timeout(self, registry, orchestrator, verifier):
        resource = registry.create(app_spec("a", level=0))
        verifier.results["a"] = [VerifyResult.not_ready("booting", pending=True)]

        report = await orchestrator.deploy(registry.forest(), timeout=0.1)

        outcome = report.outcome_of(resource.id)
        assert outcome.outcome == OutcomeType.FAILED
        assert outcome.error == ErrorKind.VERIFICATION_TIMEOUT
        assert status_of(registry, resource.id) == ResourceStatus.EXCEPTION


class TestRevoke:
    """Test plan revocation."""

    @pytest.mark.asyncio
    async def test_children_revoked_before_root(self, registry, scenario_tree, orchestrator, deployer):
        await orchestrator.deploy(registry.forest())

        report = await orchestrator.revoke(registry.forest())

        assert report.operation == OperationType.REVOKE
        assert report.plan.reversed_order is True
        assert [stage.resource_ids for stage in report.plan] == [
            (scenario_tree["App2"],),
            (scenario_tree["App1"],),
            (scenario_tree["OS1"],),
        ]
        assert deployer.revoke_calls == ["App2", "App1", "OS1"]
        for resource_id in scenario_tree.values():
            assert status_of(registry, resource_id) == ResourceStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_revoke_from_using_and_exception(self, registry, scenario_tree, orchestrator):
        await orchestrator.deploy(registry.forest())
        await registry.transition(scenario_tree["App1"], LifecycleTrigger.USAGE_REQUESTED)
        await registry.transition(scenario_tree["App2"], LifecycleTrigger.USAGE_REQUESTED)
        await registry.transition(scenario_tree["App2"], LifecycleTrigger.ANOMALY_DETECTED)

        report = await orchestrator.revoke(registry.forest())

        assert report.ok is True
        for resource_id in scenario_tree.values():
            assert status_of(registry, resource_id) == ResourceStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_teardown_failure_skips_ancestors(self, registry, scenario_tree, orchestrator, deployer):
        await orchestrator.deploy(registry.forest())
        deployer.revoke_results["App2"] = [DeployResult.failed("volume busy")]

        report = await orchestrator.revoke(registry.forest())

        assert report.outcome_of(scenario_tree["App2"]).outcome == OutcomeType.FAILED
        assert status_of(registry, scenario_tree["App2"]) == ResourceStatus.REVOKING
        assert status_of(registry, scenario_tree["App1"]) == ResourceStatus.UNAVAILABLE

        root = report.outcome_of(scenario_tree["OS1"])
        assert root.outcome == OutcomeType.SKIPPED
        assert root.error == ErrorKind.DEPENDENCY_FAILED
        assert status_of(registry, scenario_tree["OS1"]) == ResourceStatus.PREPARED

    @pytest.mark.asyncio
    async def test_revoking_resource_resumes(self, registry, scenario_tree, orchestrator, deployer):
        await orchestrator.deploy(registry.forest())
        deployer.revoke_results["App2"] = [DeployResult.failed("volume busy")]
        await orchestrator.revoke(registry.forest())
        deployer.revoke_results.clear()

        report = await orchestrator.revoke(registry.forest())

        assert report.ok is True
        assert status_of(registry, scenario_tree["OS1"]) == ResourceStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_never_deployed_is_unchanged(self, registry, scenario_tree, orchestrator, deployer):
        report = await orchestrator.revoke(registry.forest())

        assert deployer.revoke_calls == []
        assert all(item.outcome == OutcomeType.UNCHANGED for item in report.outcomes.values())


class TestDelete:
    """Test cascade soft delete."""

    @pytest.mark.asyncio
    async def test_cascade_delete(self, registry, scenario_tree, orchestrator):
        await orchestrator.deploy(registry.forest())
        await orchestrator.revoke(registry.forest())

        report = await orchestrator.delete(registry.forest([scenario_tree["OS1"]]))

        assert report.operation == OperationType.DELETE
        assert report.ok is True
        assert registry.list() == []
        for resource_id in scenario_tree.values():
            assert registry.get(resource_id).deleted is True

    @pytest.mark.asyncio
    async def test_delete_requires_unavailable(self, registry, scenario_tree, orchestrator):
        await orchestrator.deploy(registry.forest())

        report = await orchestrator.delete(registry.forest())

        for name in ("App1", "App2"):
            outcome = report.outcome_of(scenario_tree[name])
            assert outcome.outcome == OutcomeType.FAILED
            assert outcome.error == ErrorKind.INVALID_TRANSITION
        assert report.outcome_of(scenario_tree["OS1"]).outcome == OutcomeType.SKIPPED
        assert registry.get(scenario_tree["OS1"]).deleted is False


class TestAbort:
    """Test operator abort."""

    @pytest.mark.asyncio
    async def test_abort_stops_later_stages(self, registry, scenario_tree, orchestrator, deployer):
        deployer.gate = asyncio.Event()

        task = asyncio.create_task(orchestrator.deploy(registry.forest()))
        await deployer.started.wait()

        assert orchestrator.running == 1
        assert orchestrator.abort() == 1
        deployer.gate.set()
        report = await task

        assert report.aborted is True
        assert report.ok is False
        # In-flight root finishes its transition
        assert status_of(registry, scenario_tree["OS1"]) == ResourceStatus.PREPARED
        assert sorted(report.not_started) == sorted([scenario_tree["App1"], scenario_tree["App2"]])
        assert status_of(registry, scenario_tree["App1"]) == ResourceStatus.CREATED
        assert orchestrator.running == 0

    @pytest.mark.asyncio
    async def test_cancel_waits_for_in_flight(self, registry, scenario_tree, orchestrator, deployer):
        deployer.gate = asyncio.Event()

        task = asyncio.create_task(orchestrator.deploy(registry.forest()))
        await deployer.started.wait()
        task.cancel()
        await asyncio.sleep(0)
        deployer.gate.set()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert status_of(registry, scenario_tree["OS1"]) == ResourceStatus.PREPARED
        assert not registry.is_claimed(scenario_tree["OS1"])
        assert orchestrator.running == 0

    @pytest.mark.asyncio
    async def test_abort_without_runs(self, orchestrator):
        assert orchestrator.abort() == 0

    @pytest.mark.asyncio
    async def test_wait_idle_waits_for_in_flight(self, registry, scenario_tree, orchestrator, deployer):
        deployer.gate = asyncio.Event()

        task = asyncio.create_task(orchestrator.deploy(registry.forest()))
        await deployer.started.wait()
        orchestrator.abort()

        assert await orchestrator.wait_idle(timeout=0.05) is False

        deployer.gate.set()

        assert await orchestrator.wait_idle(timeout=2) is True
        assert orchestrator.running == 0
        assert status_of(registry, scenario_tree["OS1"]) == ResourceStatus.PREPARED
        assert (await task).aborted is True

    @pytest.mark.asyncio
    async def test_wait_idle_without_runs(self, orchestrator):
        assert await orchestrator.wait_idle(timeout=0) is True


class TestPlan:
    """Test plan exposure."""

    @pytest.mark.asyncio
    async def test_two_trees(self, registry, orchestrator):
        a = registry.create(app_spec("a"))
        b = registry.create(app_spec("b"))
        registry.create(os_spec("os1", [a.id], sequence=1))
        registry.create(os_spec("os2", [b.id], sequence=1))

        plan = orchestrator.plan(registry.forest())

        assert len(plan) == 2
        assert plan.stages[0].depth == 0
        assert set(plan.stages[1].resource_ids) == {a.id, b.id}

"""
Resource Orchestrator - Deploy/revoke executor over stage plans

Handles:
- Stage-by-stage plan execution with a completion barrier per stage
- Concurrent deployer calls within a stage (bounded worker count)
- Deploy retry with exponential backoff
- Verification polling with timeout
- Skipping descendants of failed resources (ancestors on revoke)
- Operator abort without leaving resources mid-transition
"""

import asyncio
from typing import Awaitable, Callable, Iterable, List, Optional, Set, Tuple

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from rangekeeper.core.config import Settings
from rangekeeper.core.exceptions import (
    ErrorKind,
    InvalidTransitionError,
    ResourceError,
    VerificationFailedError,
    VerificationTimeoutError,
)
from rangekeeper.core.metrics import ACTIVE_EXECUTIONS, EXECUTION_OUTCOMES
from rangekeeper.domain.resources.composition import Forest
from rangekeeper.domain.resources.entities import Resource, ResourceStatus
from rangekeeper.domain.resources.lifecycle import LifecycleTrigger
from rangekeeper.domain.resources.planner import Plan, Stage, build_plan
from rangekeeper.infrastructure.registry import ResourceRegistry

from ..models import (
    DeleteReport,
    DeployReport,
    DeployResult,
    ExecutionReport,
    OutcomeType,
    ResourceOutcome,
    RevokeReport,
)
from .collaborators import ResourceDeployer, ResourceVerifier

logger = structlog.get_logger(__name__)

Worker = Callable[[int, int, Optional[float]], Awaitable[ResourceOutcome]]


class _RetryableFailure(Exception):
    """Carries a retryable deployer result through tenacity."""

    def __init__(self, result: DeployResult):
        self.result = result
        super().__init__(result.reason)


class ResourceOrchestrator:
    """
    Walks deployment plans against the deployer and verifier collaborators.

    Per-resource failures are recorded in the returned report; only
    structural errors (raised while building the plan) abort an operation.
    """

    def __init__(
        self,
        registry: ResourceRegistry,
        deployer: ResourceDeployer,
        verifier: ResourceVerifier,
        deploy_timeout: float = 300.0,
        verify_timeout: float = 120.0,
        revoke_timeout: float = 300.0,
        verify_poll_interval: float = 5.0,
        max_attempts: int = 3,
        retry_wait: float = 2.0,
        max_concurrency: int = 8,
    ):
        self.registry = registry
        self.deployer = deployer
        self.verifier = verifier

        self.deploy_timeout = deploy_timeout
        self.verify_timeout = verify_timeout
        self.revoke_timeout = revoke_timeout
        self.verify_poll_interval = verify_poll_interval
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait
        self.max_concurrency = max_concurrency

        # One abort flag per running execution
        self._runs: Set[asyncio.Event] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    @classmethod
    def from_settings(
        cls,
        registry: ResourceRegistry,
        deployer: ResourceDeployer,
        verifier: ResourceVerifier,
        settings: Settings,
    ) -> "ResourceOrchestrator":
        return cls(
            registry,
            deployer,
            verifier,
            deploy_timeout=settings.deploy_timeout_seconds,
            verify_timeout=settings.verify_timeout_seconds,
            revoke_timeout=settings.revoke_timeout_seconds,
            verify_poll_interval=settings.verify_poll_interval_seconds,
            max_attempts=settings.deploy_max_attempts,
            retry_wait=settings.deploy_retry_wait_seconds,
            max_concurrency=settings.stage_max_concurrency,
        )

    @property
    def running(self) -> int:
        """Number of plan executions in progress."""
        return len(self._runs)

    def plan(self, forest: Forest) -> Plan:
        return build_plan(forest)

    def abort(self) -> int:
        """
        Request an abort of every running execution.

        Resources not yet started keep their status; in-flight ones finish
        their current transition first.

        Returns:
            Number of executions signalled
        """
        for flag in self._runs:
            flag.set()
        if self._runs:
            logger.warning("Plan execution abort requested", executions=len(self._runs))
        return len(self._runs)

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until no plan execution is running.

        Returns:
            False if executions were still running when ``timeout`` elapsed
        """
        if self._idle.is_set():
            return True
        try:
            await asyncio.wait_for(self._idle.wait(), timeout)
        except asyncio.TimeoutError:
            logger.error("Plan executions did not settle", executions=len(self._runs), timeout=timeout)
            return False
        return True

    # ==========================================================================
    # Operations
    # ==========================================================================

    async def deploy(self, forest: Forest, timeout: Optional[float] = None) -> DeployReport:
        """
        Deploy every resource of the forest, parents before children.

        Args:
            forest: Resources to deploy
            timeout: Per-call timeout overriding the deploy/verify defaults
        """
        plan = build_plan(forest)
        report = DeployReport(plan=plan)

        def depends_on(resource_id: int) -> Iterable[int]:
            parent = forest.parent_of(resource_id)
            return () if parent is None else (parent,)

        await self._execute(plan, report, self._deploy_one, depends_on, timeout)
        return report

    async def revoke(self, forest: Forest, timeout: Optional[float] = None) -> RevokeReport:
        """Revoke every resource of the forest, children before parents."""
        plan = build_plan(forest).reversed()
        report = RevokeReport(plan=plan)
        await self._execute(plan, report, self._revoke_one, forest.children_of, timeout)
        return report

    async def delete(self, forest: Forest) -> DeleteReport:
        """Cascade soft-delete of revoked resources, children before parents."""
        plan = build_plan(forest).reversed()
        report = DeleteReport(plan=plan)
        await self._execute(plan, report, self._delete_one, forest.children_of, None)
        return report

    # ==========================================================================
    # Plan execution
    # ==========================================================================

    async def _execute(
        self,
        plan: Plan,
        report: ExecutionReport,
        worker: Worker,
        depends_on: Callable[[int], Iterable[int]],
        timeout: Optional[float],
    ) -> None:
        abort = asyncio.Event()
        self._runs.add(abort)
        self._idle.clear()
        ACTIVE_EXECUTIONS.inc()

        operation = report.operation.value
        log = logger.bind(operation=operation)
        log.info(
            "Executing plan",
            stages=len(plan),
            resources=len(plan.resource_ids),
        )

        blocked: Set[int] = set()
        try:
            for stage in plan:
                if abort.is_set():
                    break

                runnable: List[int] = []
                for resource_id in stage:
                    failed = [dep for dep in depends_on(resource_id) if dep in blocked]
                    if failed:
                        blocked.add(resource_id)
                        self._record(report, ResourceOutcome(
                            resource_id=resource_id,
                            stage=stage.index,
                            outcome=OutcomeType.SKIPPED,
                            status=self._current_status(resource_id),
                            error=ErrorKind.DEPENDENCY_FAILED,
                            detail=f"depends on failed resource {failed[0]}",
                        ))
                    else:
                        runnable.append(resource_id)

                log.debug("Running stage", stage=stage.index, resources=runnable)
                for outcome in await self._run_stage(stage, runnable, worker, abort, timeout):
                    self._record(report, outcome)
                    if not outcome.ok:
                        blocked.add(outcome.resource_id)
        finally:
            if abort.is_set():
                report.aborted = True
                for resource_id in plan.resource_ids:
                    if resource_id not in report.outcomes:
                        self._record(report, self._not_started(resource_id, plan.stage_of(resource_id)))
            self._runs.discard(abort)
            if not self._runs:
                self._idle.set()
            ACTIVE_EXECUTIONS.dec()
            report.finish()

        log.info(
            "Plan execution finished",
            aborted=report.aborted,
            succeeded=len(report.succeeded),
            failed=len(report.failed),
            skipped=len(report.skipped),
            not_started=len(report.not_started),
        )

    async def _run_stage(
        self,
        stage: Stage,
        resource_ids: List[int],
        worker: Worker,
        abort: asyncio.Event,
        timeout: Optional[float],
    ) -> List[ResourceOutcome]:
        """Run one stage and wait until every member has resolved."""
        if not resource_ids:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def guarded(resource_id: int) -> ResourceOutcome:
            async with semaphore:
                if abort.is_set():
                    return self._not_started(resource_id, stage.index)
                try:
                    return await worker(resource_id, stage.index, timeout)
                except ResourceError as e:
                    logger.warning(
                        "Resource operation failed",
                        resource_id=resource_id,
                        stage=stage.index,
                        error=e.kind.value,
                        detail=e.detail,
                    )
                    return ResourceOutcome(
                        resource_id=resource_id,
                        stage=stage.index,
                        outcome=OutcomeType.FAILED,
                        status=self._current_status(resource_id),
                        error=e.kind,
                        detail=e.detail,
                    )
                except Exception as e:
                    logger.exception(
                        "Unexpected error during resource operation",
                        resource_id=resource_id,
                        stage=stage.index,
                        error=str(e),
                    )
                    return ResourceOutcome(
                        resource_id=resource_id,
                        stage=stage.index,
                        outcome=OutcomeType.FAILED,
                        status=self._current_status(resource_id),
                        error=ErrorKind.DEPLOYMENT_FAILED,
                        detail=f"{type(e).__name__}: {e}",
                    )

        tasks = [
            asyncio.create_task(guarded(resource_id), name=f"stage-{stage.index}-{resource_id}")
            for resource_id in resource_ids
        ]
        try:
            await asyncio.wait(tasks)
        except asyncio.CancelledError:
            # Let in-flight transitions settle before honouring the cancellation
            abort.set()
            await asyncio.wait(tasks)
            raise
        return [task.result() for task in tasks]

    # ==========================================================================
    # Workers
    # ==========================================================================

    async def _deploy_one(
        self,
        resource_id: int,
        stage: int,
        timeout: Optional[float],
    ) -> ResourceOutcome:
        async with self.registry.claim(resource_id, operation="deploy") as handle:
            status = handle.status
            if status in (ResourceStatus.PREPARED, ResourceStatus.USING):
                return ResourceOutcome(
                    resource_id=resource_id,
                    stage=stage,
                    outcome=OutcomeType.UNCHANGED,
                    status=status,
                    detail="already deployed",
                )
            if status != ResourceStatus.CREATED:
                raise InvalidTransitionError(
                    f"cannot deploy a resource in status '{status.value}'",
                    resource_id,
                )

            result, attempts = await self._call_with_retry(
                self.deployer.deploy,
                handle.resource,
                timeout or self.deploy_timeout,
                step="deploy",
            )
            if not result.success:
                final = handle.apply(LifecycleTrigger.DEPLOY_FAILED, result.reason)
                return ResourceOutcome(
                    resource_id=resource_id,
                    stage=stage,
                    outcome=OutcomeType.FAILED,
                    status=final.status,
                    error=ErrorKind.DEPLOYMENT_FAILED,
                    detail=result.reason,
                    attempts=attempts,
                )

            deployed = handle.apply(LifecycleTrigger.DEPLOY_REQUESTED)
            try:
                await self._verify(deployed, timeout or self.verify_timeout)
            except (VerificationFailedError, VerificationTimeoutError) as e:
                final = handle.apply(LifecycleTrigger.VERIFICATION_FAILED, e.detail)
                return ResourceOutcome(
                    resource_id=resource_id,
                    stage=stage,
                    outcome=OutcomeType.FAILED,
                    status=final.status,
                    error=e.kind,
                    detail=e.detail,
                    attempts=attempts,
                )

            final = handle.apply(LifecycleTrigger.VERIFICATION_SUCCEEDED)
            return ResourceOutcome(
                resource_id=resource_id,
                stage=stage,
                outcome=OutcomeType.SUCCEEDED,
                status=final.status,
                attempts=attempts,
            )

    async def _revoke_one(
        self,
        resource_id: int,
        stage: int,
        timeout: Optional[float],
    ) -> ResourceOutcome:
        async with self.registry.claim(resource_id, operation="revoke") as handle:
            status = handle.status
            if status in (
                ResourceStatus.CREATED,
                ResourceStatus.UNAVAILABLE,
                ResourceStatus.DELETED,
            ):
                return ResourceOutcome(
                    resource_id=resource_id,
                    stage=stage,
                    outcome=OutcomeType.UNCHANGED,
                    status=status,
                    detail="nothing to revoke",
                )

            if status == ResourceStatus.USING:
                handle.apply(LifecycleTrigger.USAGE_COMPLETED)
            elif status in (ResourceStatus.PREPARED, ResourceStatus.EXCEPTION):
                handle.apply(LifecycleTrigger.REVOKE_REQUESTED)
            elif status != ResourceStatus.REVOKING:
                raise InvalidTransitionError(
                    f"cannot revoke a resource in status '{status.value}'",
                    resource_id,
                )

            result, attempts = await self._call_with_retry(
                self.deployer.revoke,
                handle.resource,
                timeout or self.revoke_timeout,
                step="revoke",
            )
            if not result.success:
                return ResourceOutcome(
                    resource_id=resource_id,
                    stage=stage,
                    outcome=OutcomeType.FAILED,
                    status=handle.status,
                    error=ErrorKind.DEPLOYMENT_FAILED,
                    detail=result.reason,
                    attempts=attempts,
                )

            final = handle.apply(LifecycleTrigger.PRE_DELETE_REQUESTED)
            return ResourceOutcome(
                resource_id=resource_id,
                stage=stage,
                outcome=OutcomeType.SUCCEEDED,
                status=final.status,
                attempts=attempts,
            )

    async def _delete_one(
        self,
        resource_id: int,
        stage: int,
        timeout: Optional[float],
    ) -> ResourceOutcome:
        if self.registry.get(resource_id).deleted:
            return ResourceOutcome(
                resource_id=resource_id,
                stage=stage,
                outcome=OutcomeType.UNCHANGED,
                status=ResourceStatus.DELETED,
                detail="already deleted",
            )

        final = await self.registry.soft_delete(resource_id)
        return ResourceOutcome(
            resource_id=resource_id,
            stage=stage,
            outcome=OutcomeType.SUCCEEDED,
            status=final.status,
        )

    # ==========================================================================
    # Collaborator calls
    # ==========================================================================

    async def _call_with_retry(
        self,
        call: Callable[[Resource], Awaitable[DeployResult]],
        resource: Resource,
        timeout: float,
        step: str,
    ) -> Tuple[DeployResult, int]:
        """Invoke a deployer call, retrying retryable failures and timeouts."""
        attempts = 0
        result = DeployResult.failed(f"{step} was not attempted")
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(_RetryableFailure),
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.retry_wait, max=60),
                reraise=True,
            ):
                with attempt:
                    attempts += 1
                    result = await self._invoke(call, resource, timeout, step)
                    if not result.success and result.retryable:
                        logger.warning(
                            "Retryable deployer failure",
                            resource_id=resource.id,
                            step=step,
                            attempt=attempts,
                            reason=result.reason,
                        )
                        raise _RetryableFailure(result)
        except _RetryableFailure as e:
            result = e.result
        return result, attempts

    async def _invoke(
        self,
        call: Callable[[Resource], Awaitable[DeployResult]],
        resource: Resource,
        timeout: float,
        step: str,
    ) -> DeployResult:
        try:
            return await asyncio.wait_for(call(resource), timeout=timeout)
        except asyncio.TimeoutError:
            return DeployResult.failed(f"{step} timed out after {timeout}s", retryable=True)
        except Exception as e:
            logger.exception(
                "Deployer call raised",
                resource_id=resource.id,
                step=step,
                error=str(e),
            )
            return DeployResult.failed(f"{step} raised {type(e).__name__}: {e}")

    async def _verify(self, resource: Resource, timeout: float) -> None:
        """
        Poll the verifier until the resource is ready.

        Raises:
            VerificationFailedError: Definitive not-ready verdict
            VerificationTimeoutError: No verdict within ``timeout``
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise VerificationTimeoutError(
                    f"resource not ready within {timeout}s",
                    resource.id,
                )
            try:
                result = await asyncio.wait_for(self.verifier.verify(resource), timeout=remaining)
            except asyncio.TimeoutError:
                raise VerificationTimeoutError(
                    f"verification did not finish within {timeout}s",
                    resource.id,
                ) from None
            except ResourceError:
                raise
            except Exception as e:
                raise VerificationFailedError(
                    f"verifier raised {type(e).__name__}: {e}",
                    resource.id,
                ) from e

            if result.ready:
                return
            if not result.pending:
                raise VerificationFailedError(result.detail or "resource not ready", resource.id)

            logger.debug(
                "Resource not ready yet",
                resource_id=resource.id,
                detail=result.detail,
            )
            await asyncio.sleep(min(self.verify_poll_interval, max(deadline - loop.time(), 0)))

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def _current_status(self, resource_id: int) -> Optional[ResourceStatus]:
        try:
            return self.registry.get(resource_id).status
        except ResourceError:
            return None

    def _not_started(self, resource_id: int, stage: int) -> ResourceOutcome:
        return ResourceOutcome(
            resource_id=resource_id,
            stage=stage,
            outcome=OutcomeType.NOT_STARTED,
            status=self._current_status(resource_id),
            detail="execution aborted before start",
        )

    def _record(self, report: ExecutionReport, outcome: ResourceOutcome) -> None:
        report.record(outcome)
        EXECUTION_OUTCOMES.labels(
            operation=report.operation.value,
            outcome=outcome.outcome.value,
        ).inc()

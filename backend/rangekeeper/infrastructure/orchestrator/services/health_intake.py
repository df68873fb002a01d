"""
Health Intake - Drives EXCEPTION and recovery transitions from health signals

Active probe results, passive notifications and manual overrides are turned
into one HealthEvent and handled by the same transition logic:

- USING + anomaly       -> EXCEPTION
- EXCEPTION + anomaly   -> no-op
- USING + healthy       -> no-op
- EXCEPTION + healthy   -> USING, once the recovery policy agrees

Signals for resources in any other status are rejected with StateMismatch.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import structlog

from rangekeeper.core.config import Settings
from rangekeeper.core.exceptions import ConflictError, StateMismatchError
from rangekeeper.core.metrics import HEALTH_SIGNALS
from rangekeeper.domain.resources.entities import Resource, ResourceStatus
from rangekeeper.domain.resources.lifecycle import LifecycleTrigger
from rangekeeper.infrastructure.registry import ResourceRegistry

from ..models import HealthEvent, HealthIntakeResult, SignalSource
from .collaborators import HealthProbe

logger = structlog.get_logger(__name__)

IN_SERVICE = (ResourceStatus.USING, ResourceStatus.EXCEPTION)


# ============================================================================
# Recovery policies
# ============================================================================

class RecoveryPolicy(ABC):
    """Decides when a healthy signal confirms recovery from EXCEPTION."""

    name: str = "policy"
    max_attempts: int = 0

    @abstractmethod
    def accepts_recovery(self, resource: Resource, observed_at: datetime) -> Tuple[bool, str]:
        """Return whether to recover, and the reason when not."""

    @property
    def reprobe_delay(self) -> Optional[float]:
        """Seconds between automatic re-probes, or None for no re-probing."""
        return None


class AutoRecovery(RecoveryPolicy):
    """Recover on a healthy signal once a cooldown has elapsed since the anomaly."""

    name = "auto"

    def __init__(self, cooldown_seconds: float = 60.0, max_attempts: int = 5):
        self.cooldown_seconds = cooldown_seconds
        self.max_attempts = max_attempts

    def accepts_recovery(self, resource: Resource, observed_at: datetime) -> Tuple[bool, str]:
        elapsed = (observed_at - resource.status_changed_at).total_seconds()
        if elapsed >= self.cooldown_seconds:
            return True, ""
        return False, f"cooldown active ({elapsed:.1f}s of {self.cooldown_seconds}s elapsed)"

    @property
    def reprobe_delay(self) -> Optional[float]:
        return self.cooldown_seconds


class ManualRecovery(RecoveryPolicy):
    """Only an explicit manual override recovers a resource."""

    name = "manual"

    def accepts_recovery(self, resource: Resource, observed_at: datetime) -> Tuple[bool, str]:
        return False, "awaiting manual override"


# ============================================================================
# Intake
# ============================================================================

class HealthIntake:
    """
    Health signal intake.

    Safe to call concurrently and redundantly: repeated identical signals are
    no-ops, and every transition goes through the registry's resource lock.
    """

    def __init__(
        self,
        registry: ResourceRegistry,
        policy: Optional[RecoveryPolicy] = None,
        probe: Optional[HealthProbe] = None,
        probe_timeout: float = 10.0,
    ):
        self.registry = registry
        self.policy = policy or AutoRecovery()
        self.probe = probe
        self.probe_timeout = probe_timeout

        # Track scheduled re-probes
        self._reprobes: Dict[int, asyncio.Task] = {}

    @classmethod
    def from_settings(
        cls,
        registry: ResourceRegistry,
        settings: Settings,
        probe: Optional[HealthProbe] = None,
    ) -> "HealthIntake":
        if settings.recovery_mode == "manual":
            policy: RecoveryPolicy = ManualRecovery()
        else:
            policy = AutoRecovery(
                cooldown_seconds=settings.recovery_cooldown_seconds,
                max_attempts=settings.max_recovery_attempts,
            )
        return cls(
            registry,
            policy=policy,
            probe=probe,
            probe_timeout=settings.health_probe_timeout_seconds,
        )

    async def stop(self) -> None:
        """Cancel scheduled re-probes."""
        tasks = list(self._reprobes.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._reprobes.clear()

    # ==========================================================================
    # Entry points
    # ==========================================================================

    async def report_active(
        self,
        resource_id: int,
        healthy: bool,
        detail: Optional[str] = None,
    ) -> HealthIntakeResult:
        """Ingest a probe result pulled from the resource."""
        return await self.ingest(HealthEvent(
            resource_id=resource_id,
            healthy=healthy,
            detail=detail,
            source=SignalSource.ACTIVE,
        ))

    async def report_passive(
        self,
        resource_id: int,
        healthy: bool,
        detail: Optional[str] = None,
    ) -> HealthIntakeResult:
        """Ingest a notification pushed by the resource."""
        return await self.ingest(HealthEvent(
            resource_id=resource_id,
            healthy=healthy,
            detail=detail,
            source=SignalSource.PASSIVE,
        ))

    async def manual_override(
        self,
        resource_id: int,
        detail: Optional[str] = None,
    ) -> HealthIntakeResult:
        """Operator confirmation that an EXCEPTION resource is healthy again."""
        return await self.ingest(HealthEvent(
            resource_id=resource_id,
            healthy=True,
            detail=detail or "manual override",
            source=SignalSource.MANUAL,
        ))

    async def ingest(self, event: HealthEvent) -> HealthIntakeResult:
        """
        Apply one health event.

        Raises:
            ResourceNotFoundError: Unknown resource
            ConflictError: Another transition on the resource is in flight
        """
        return await self._ingest(event, force_recovery=False)

    def scheduled_reprobes(self) -> Dict[int, Any]:
        return {resource_id: task.get_name() for resource_id, task in self._reprobes.items()}

    # ==========================================================================
    # Transition logic
    # ==========================================================================

    async def _ingest(self, event: HealthEvent, force_recovery: bool) -> HealthIntakeResult:
        HEALTH_SIGNALS.labels(
            source=event.source.value,
            healthy=str(event.healthy).lower(),
        ).inc()

        seen: Dict[str, Any] = {"message": ""}

        def decide(resource: Resource) -> Optional[LifecycleTrigger]:
            seen["previous"] = resource.status

            if resource.status not in IN_SERVICE:
                raise StateMismatchError(
                    f"{event.source.value} health signal ignored for status '{resource.status.value}'",
                    resource.id,
                )

            if not event.healthy:
                if resource.status == ResourceStatus.USING:
                    seen["message"] = "anomaly detected"
                    return LifecycleTrigger.ANOMALY_DETECTED
                seen["message"] = "already in exception"
                return None

            if resource.status == ResourceStatus.USING:
                if event.source == SignalSource.MANUAL:
                    raise StateMismatchError(
                        "manual override only applies to resources in exception",
                        resource.id,
                    )
                seen["message"] = "already healthy"
                return None

            # Only a resource that was in service can be returned to service
            if resource.status_trigger != LifecycleTrigger.ANOMALY_DETECTED.value:
                raise StateMismatchError(
                    f"resource entered exception via '{resource.status_trigger}'; "
                    "it must be revoked and redeployed",
                    resource.id,
                )

            if event.source == SignalSource.MANUAL or force_recovery:
                seen["message"] = "recovery confirmed"
                return LifecycleTrigger.RECOVERY_CONFIRMED

            accepted, reason = self.policy.accepts_recovery(resource, event.observed_at)
            if accepted:
                seen["message"] = "recovery confirmed"
                return LifecycleTrigger.RECOVERY_CONFIRMED
            seen["message"] = reason
            return None

        try:
            resource = await self.registry.update(event.resource_id, decide)
        except StateMismatchError as e:
            logger.warning(
                "Health signal rejected",
                resource_id=event.resource_id,
                source=event.source.value,
                healthy=event.healthy,
                detail=e.detail,
            )
            previous = seen.get("previous")
            return HealthIntakeResult(
                resource_id=event.resource_id,
                transitioned=False,
                previous_status=previous,
                status=previous,
                message=e.detail,
                error=e,
            )

        previous = seen["previous"]
        transitioned = resource.status != previous
        logger.info(
            "Health signal processed",
            resource_id=resource.id,
            source=event.source.value,
            healthy=event.healthy,
            previous_status=previous.value,
            status=resource.status.value,
            transitioned=transitioned,
            message=seen["message"],
            detail=event.detail,
        )

        if transitioned:
            if resource.status == ResourceStatus.EXCEPTION:
                self._schedule_reprobe(resource.id)
            else:
                self._cancel_reprobe(resource.id)

        return HealthIntakeResult(
            resource_id=resource.id,
            transitioned=transitioned,
            previous_status=previous,
            status=resource.status,
            message=seen["message"],
        )

    # ==========================================================================
    # Automatic re-probing
    # ==========================================================================

    def _schedule_reprobe(self, resource_id: int) -> None:
        delay = self.policy.reprobe_delay
        if self.probe is None or delay is None:
            return

        self._cancel_reprobe(resource_id)
        self._reprobes[resource_id] = asyncio.create_task(
            self._reprobe_loop(resource_id, delay),
            name=f"reprobe-{resource_id}",
        )

    def _cancel_reprobe(self, resource_id: int) -> None:
        task = self._reprobes.get(resource_id)
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        del self._reprobes[resource_id]

    async def _reprobe_loop(self, resource_id: int, delay: float) -> None:
        """Re-probe an EXCEPTION resource until it recovers or attempts run out."""
        attempts = 0
        try:
            while attempts < self.policy.max_attempts:
                await asyncio.sleep(delay)

                resource = self.registry.get(resource_id)
                if resource.status != ResourceStatus.EXCEPTION:
                    return

                attempts += 1
                event = await self._probe(resource)
                if not event.healthy:
                    logger.info(
                        "Re-probe still unhealthy",
                        resource_id=resource_id,
                        attempt=attempts,
                        detail=event.detail,
                    )
                    continue

                try:
                    result = await self._ingest(event, force_recovery=True)
                except ConflictError:
                    logger.info("Re-probe recovery deferred, resource busy", resource_id=resource_id)
                    continue
                if result.transitioned or result.error is not None:
                    return

            logger.error(
                "Automatic recovery exhausted, awaiting manual override",
                resource_id=resource_id,
                attempts=attempts,
            )

        except asyncio.CancelledError:
            logger.debug("Re-probe loop cancelled", resource_id=resource_id)
        except Exception as e:
            logger.exception("Re-probe loop error", resource_id=resource_id, error=str(e))
        finally:
            if self._reprobes.get(resource_id) is asyncio.current_task():
                del self._reprobes[resource_id]

    async def _probe(self, resource: Resource) -> HealthEvent:
        try:
            return await asyncio.wait_for(self.probe.probe(resource), timeout=self.probe_timeout)
        except asyncio.TimeoutError:
            return HealthEvent(
                resource_id=resource.id,
                healthy=False,
                detail=f"probe timed out after {self.probe_timeout}s",
            )
        except Exception as e:
            logger.warning("Health probe raised", resource_id=resource.id, error=str(e))
            return HealthEvent(resource_id=resource.id, healthy=False, detail=str(e))

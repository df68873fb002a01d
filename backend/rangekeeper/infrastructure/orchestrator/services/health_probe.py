"""
Health Probe - Pull-based health checks for deployed resources

Features:
- HTTP health checks
- TCP port checks
- Verification backed by a probe
"""

import asyncio
from typing import Optional

import aiohttp
import structlog

from rangekeeper.domain.resources.entities import Resource

from ..models import HealthEvent, SignalSource, VerifyResult
from .collaborators import HealthProbe, ResourceVerifier

logger = structlog.get_logger(__name__)


class HttpHealthProbe(HealthProbe):
    """
    Probe driven by resource metadata.

    Metadata keys: health_check_type ("http" | "tcp"), health_check_url,
    health_check_status, health_check_host, health_check_port.
    A resource without probe settings reports healthy.
    """

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    async def probe(self, resource: Resource) -> HealthEvent:
        check_type = resource.metadata.get("health_check_type", "http")

        if check_type == "http":
            healthy, detail = await self._check_http(resource)
        elif check_type == "tcp":
            healthy, detail = await self._check_tcp(resource)
        else:
            healthy, detail = False, f"unknown health check type '{check_type}'"

        return HealthEvent(
            resource_id=resource.id,
            healthy=healthy,
            detail=detail,
            source=SignalSource.ACTIVE,
        )

    async def _check_http(self, resource: Resource) -> tuple[bool, Optional[str]]:
        """Perform HTTP health check."""
        url = resource.metadata.get("health_check_url")
        if not url:
            return True, None  # No URL to check

        expected_status = int(resource.metadata.get("health_check_status", 200))

        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as response:
                    if response.status == expected_status:
                        return True, None
                    return False, f"{url} answered {response.status}, expected {expected_status}"

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(
                "HTTP health check failed",
                resource_id=resource.id,
                url=url,
                error=str(e),
            )
            return False, f"{url} unreachable: {e!r}"

    async def _check_tcp(self, resource: Resource) -> tuple[bool, Optional[str]]:
        """Perform TCP port health check."""
        host = resource.metadata.get("health_check_host")
        port = int(resource.metadata.get("health_check_port", 80))

        if not host:
            return True, None  # No host to check

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=self.timeout,
            )
            writer.close()
            await writer.wait_closed()
            return True, None

        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(
                "TCP health check failed",
                resource_id=resource.id,
                host=host,
                port=port,
                error=str(e),
            )
            return False, f"{host}:{port} unreachable: {e!r}"


class ProbeVerifier(ResourceVerifier):
    """A resource is ready once its health probe succeeds; until then it is pending."""

    def __init__(self, probe: HealthProbe):
        self.probe = probe

    async def verify(self, resource: Resource) -> VerifyResult:
        event = await self.probe.probe(resource)
        if event.healthy:
            return VerifyResult.ready_now()
        return VerifyResult.not_ready(event.detail or "health probe failed", pending=True)

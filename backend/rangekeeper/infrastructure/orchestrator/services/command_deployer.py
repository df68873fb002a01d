"""
Command Deployer - Runs provisioning commands declared on the resource

Resource metadata keys:
- deploy_command: argv list run to deploy the resource
- revoke_command: argv list run to tear it down
- command_cwd: optional working directory

The resource id, name and level are exported to the command environment as
RANGEKEEPER_RESOURCE_ID / _NAME / _LEVEL. A resource without a command is
treated as already provisioned by other means.
"""

import asyncio
import os
import subprocess
from typing import List, Optional

import structlog

from rangekeeper.domain.resources.entities import Resource

from ..models import DeployResult
from .collaborators import ResourceDeployer

logger = structlog.get_logger(__name__)

# Exit codes that signal a transient failure worth retrying
RETRYABLE_EXIT_CODES = frozenset({75})  # EX_TEMPFAIL


class CommandDeployer(ResourceDeployer):
    """Deployer driving external provisioning commands."""

    def __init__(self, default_timeout: Optional[float] = None):
        self.default_timeout = default_timeout

    async def deploy(self, resource: Resource) -> DeployResult:
        return await self._run_step(resource, "deploy_command")

    async def revoke(self, resource: Resource) -> DeployResult:
        return await self._run_step(resource, "revoke_command")

    async def _run_step(self, resource: Resource, key: str) -> DeployResult:
        command = resource.metadata.get(key)
        if not command:
            logger.debug("No command configured", resource_id=resource.id, step=key)
            return DeployResult.ok()

        if isinstance(command, str):
            command = command.split()

        result = await self._run_command(
            resource,
            [str(part) for part in command],
            cwd=resource.metadata.get("command_cwd"),
        )
        if result.returncode == 0:
            return DeployResult.ok()

        reason = (result.stderr or result.stdout or "").strip()[-500:]
        return DeployResult.failed(
            f"{command[0]} exited with {result.returncode}: {reason}",
            retryable=result.returncode in RETRYABLE_EXIT_CODES,
        )

    async def _run_command(
        self,
        resource: Resource,
        cmd: List[str],
        cwd: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        """Run a provisioning command."""
        logger.debug(
            "Running provisioning command",
            resource_id=resource.id,
            command=" ".join(cmd),
            cwd=cwd,
        )

        env = dict(os.environ)
        env.update({
            "RANGEKEEPER_RESOURCE_ID": str(resource.id),
            "RANGEKEEPER_RESOURCE_NAME": resource.name,
            "RANGEKEEPER_RESOURCE_LEVEL": str(resource.level),
        })

        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=cwd,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self.default_timeout,
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise
        except asyncio.CancelledError:
            process.kill()
            raise

        return subprocess.CompletedProcess(
            args=cmd,
            returncode=process.returncode,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )

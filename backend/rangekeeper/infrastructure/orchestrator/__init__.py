"""
Rangekeeper - Resource Orchestrator

Lifecycle management for range resources:
- Stage plans derived from the composition forest
- Deploy / revoke / cascade delete executors
- Health intake with pluggable recovery
- Command-driven deployer and HTTP/TCP health probe
"""

from .services.command_deployer import CommandDeployer
from .services.health_intake import HealthIntake
from .services.health_probe import HttpHealthProbe, ProbeVerifier
from .services.resource_orchestrator import ResourceOrchestrator

__all__ = [
    "CommandDeployer",
    "HealthIntake",
    "HttpHealthProbe",
    "ProbeVerifier",
    "ResourceOrchestrator",
]

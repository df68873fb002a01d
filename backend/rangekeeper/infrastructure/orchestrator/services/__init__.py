"""Orchestrator services."""

from .collaborators import HealthProbe, ResourceDeployer, ResourceVerifier
from .command_deployer import CommandDeployer
from .health_intake import AutoRecovery, HealthIntake, ManualRecovery, RecoveryPolicy
from .health_probe import HttpHealthProbe, ProbeVerifier
from .resource_orchestrator import ResourceOrchestrator

__all__ = [
    "AutoRecovery",
    "CommandDeployer",
    "HealthIntake",
    "HealthProbe",
    "HttpHealthProbe",
    "ManualRecovery",
    "ProbeVerifier",
    "RecoveryPolicy",
    "ResourceDeployer",
    "ResourceOrchestrator",
    "ResourceVerifier",
]

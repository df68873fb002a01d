"""
Pytest configuration and shared fixtures.
"""

import pytest
import sys
from pathlib import Path

# Add backend to path
backend_path = Path(__file__).parent.parent
sys.path.insert(0, str(backend_path))

# Import fixtures
from tests.fixtures.resource_fixtures import (
    registry,
    scenario_tree,
    deployer,
    verifier,
    probe,
    orchestrator,
)

__all__ = [
    "registry",
    "scenario_tree",
    "deployer",
    "verifier",
    "probe",
    "orchestrator",
]


def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )

"""
Test configuration and fixtures for pytest.

Fixtures include: runtime declarations, a mocked control plane client and
a fake clock for readiness polling.
"""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest


def pytest_configure(config):
    """
    Pytest hook called before test collection.
    Sets up test environment variables and registers custom markers.
    """
    # Set test environment variables BEFORE any package imports
    os.environ["PVN_ORG_SLUG"] = "test-org"
    os.environ["PVN_API_TOKEN"] = "test-api-token"
    os.environ["LOG_LEVEL"] = "DEBUG"

    # Import and clear settings cache after env vars are set
    from runtimelink.config import get_settings
    get_settings.cache_clear()

    # Register custom markers
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "kubernetes: mark test as requiring the kubernetes client")


@pytest.fixture
def declaration():
    """A minimal valid runtime declaration."""
    from runtimelink.models import ClusterConnection, Label, RuntimeDeclaration

    return RuntimeDeclaration(
        name="my-cluster",
        connection=ClusterConnection(host="https://10.0.0.1:6443", token="secret-token"),
        agent_env={"LOG_LEVEL": "debug"},
        labels=[Label(label="env", value="staging")],
    )


@pytest.fixture
def mock_control_plane():
    """Mocked ControlPlaneClient with every call succeeding."""
    from runtimelink.models import AgentBootstrapParams, LinkResult, RuntimeRecord

    control_plane = Mock()
    control_plane.link_runtime = AsyncMock(return_value=LinkResult(
        runtime_id="rt-123",
        bootstrap=AgentBootstrapParams(
            image="prodvana/agent:latest",
            args=["--agent"],
            env={"PVN_API_URL": "https://api.test-org.prodvana.io"},
        ),
    ))
    control_plane.get_runtime = AsyncMock(return_value=RuntimeRecord(
        id="rt-123",
        name="my-cluster",
        type="K8S",
    ))
    control_plane.configure_runtime_labels = AsyncMock()
    control_plane.remove_runtime = AsyncMock()
    control_plane.link_external_runtime = AsyncMock()
    control_plane.get_runtime_status = AsyncMock()
    return control_plane


class FakeClock:
    """Monotonic and wall clock that only moves when sleep is awaited."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)):
        self.elapsed = 0.0
        self.start = start
        self.sleeps = []

    def monotonic(self) -> float:
        return self.elapsed

    def now(self) -> datetime:
        return self.start + timedelta(seconds=self.elapsed)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.elapsed += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()

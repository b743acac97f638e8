"""Shared pytest fixtures for the sandbox client tests."""

import pytest

from fakes import API_BASE_URL, FakeBackend, FakeContainer
from fermion_sandbox.config import SandboxConfig


@pytest.fixture
def config():
    """Config with short timings and health pings pushed out of the way."""
    return SandboxConfig(
        api_key="test-key",
        api_base_url=API_BASE_URL,
        provisioning_timeout=1.0,
        poll_interval=0.01,
        request_timeout=1.0,
        container_ready_timeout=1.0,
        health_ping_initial_delay=60.0,
        health_ping_interval=60.0,
        reconnect_delay=0.01,
    )


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def container():
    return FakeContainer()

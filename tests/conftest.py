"""
Global pytest configuration and fixtures for test isolation.

Every test starts with an empty default registry, a fresh metrics collector,
no tracing manager, no run ID and uncached settings.
"""

import pytest

from toolflow.config.container import get_container
from toolflow.config.settings import (
    FlowConfig,
    ObservabilityConfig,
    ServiceConfig,
    Settings,
    get_settings,
)
from toolflow.core.outputs import OutputRegistry, reset_registry
from toolflow.observability.logging import clear_run_id
from toolflow.observability.metrics import reset_metrics
from toolflow.observability.tracing import reset_tracing


def reset_all_global_state():
    reset_registry()
    reset_metrics()
    reset_tracing()
    clear_run_id()
    get_settings.cache_clear()
    get_container.cache_clear()


@pytest.fixture(autouse=True)
def test_isolation():
    """Per-test isolation to ensure clean state for each test."""
    reset_all_global_state()
    yield
    reset_all_global_state()


@pytest.fixture
def settings():
    """Settings that never touch the network or the environment defaults."""
    return Settings(
        service=ServiceConfig(
            api_key="test-key",
            base_url="https://api.test/v1",
            default_model="gpt-4.1",
            default_temperature=0.2,
            default_max_tokens=500,
            max_retries=1,
        ),
        flow=FlowConfig(default_max_retries=3),
        observability=ObservabilityConfig(enable_tracing=False, enable_metrics=True),
    )


@pytest.fixture
def registry():
    """An isolated output registry."""
    return OutputRegistry()

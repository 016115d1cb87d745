"""
Tests for settings and the dependency injection container.
"""

import httpx
import pytest
from pydantic import ValidationError

from toolflow.config.container import Container, create_flow, get_container, setup_container
from toolflow.config.settings import (
    FlowConfig,
    ObservabilityConfig,
    ServiceConfig,
    Settings,
    get_settings,
)
from toolflow.core.flow import ToolFlow
from toolflow.core.outputs import ToolOutput, get_registry
from toolflow.core.steps import ToolCallStep
from toolflow.services.mock import MockToolService
from toolflow.services.openai import OpenAIToolService


class TestSettings:
    """Test defaults, validation and environment overrides."""

    def test_defaults(self):
        settings = Settings()

        assert settings.service.default_model == "gpt-4.1"
        assert settings.service.base_url == "https://api.openai.com/v1"
        assert settings.flow.default_max_retries == 3
        assert settings.flow.issue_scope == "final"
        assert settings.flow.step_timeout is None
        assert settings.observability.enable_metrics

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("TOOLFLOW_SERVICE__DEFAULT_MODEL", "gpt-5-mini")
        monkeypatch.setenv("TOOLFLOW_FLOW__DEFAULT_MAX_RETRIES", "1")
        monkeypatch.setenv("TOOLFLOW_FLOW__ISSUE_SCOPE", "all")

        settings = Settings()

        assert settings.service.default_model == "gpt-5-mini"
        assert settings.flow.default_max_retries == 1
        assert settings.flow.issue_scope == "all"

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_base_url_is_normalized(self):
        assert ServiceConfig(base_url="http://localhost:8080/v1/").base_url == "http://localhost:8080/v1"

        with pytest.raises(ValidationError):
            ServiceConfig(base_url="localhost:8080")

    def test_log_level_is_uppercased(self):
        assert ObservabilityConfig(log_level="debug").log_level == "DEBUG"

        with pytest.raises(ValidationError):
            ObservabilityConfig(log_level="chatty")

    def test_invalid_values(self):
        with pytest.raises(ValidationError):
            FlowConfig(issue_scope="some")
        with pytest.raises(ValidationError):
            FlowConfig(default_max_retries=-1)
        with pytest.raises(ValidationError):
            ServiceConfig(max_retries=0)


class TestContainer:
    """Test service resolution and cleanup."""

    def test_factory_builds_once(self, settings):
        container = Container(settings)
        built = []
        container.register_factory("thing", lambda c: built.append(1) or object())

        first = container.get("thing")

        assert container.get("thing") is first
        assert built == [1]
        assert container.has("thing")
        assert container.get("missing", "fallback") == "fallback"

    def test_reregistering_factory_drops_instance(self, settings):
        container = Container(settings)
        container.register_factory("thing", lambda c: "old")
        container.get("thing")

        container.register_factory("thing", lambda c: "new")

        assert container.get("thing") == "new"

    def test_singleton_wins(self, settings):
        container = Container(settings)
        container.register_factory("thing", lambda c: "built")
        container.register_singleton("thing", "given")

        assert container.get("thing") == "given"

    @pytest.mark.asyncio
    async def test_async_resources_are_exited(self, settings):
        container = Container(settings)
        service = MockToolService()
        container.register_singleton("tool_service", service)

        async with container.lifespan():
            assert await container.get_async("tool_service") is service

        assert service.closed

    @pytest.mark.asyncio
    async def test_default_wiring(self, settings):
        container = setup_container(settings)

        service = container.get("tool_service")
        client = container.get("http_client")

        assert isinstance(service, OpenAIToolService)
        assert isinstance(client, httpx.AsyncClient)
        assert service.config.base_url == "https://api.test/v1"
        assert container.get("registry") is get_registry()

        await container.cleanup()
        assert client.is_closed

    def test_create_flow(self, settings):
        container = setup_container(settings)
        container.register_singleton("tool_service", MockToolService())
        get_registry().register("draft", ToolOutput)

        flow = create_flow(container, [ToolCallStep("draft")], name="drafting")

        assert isinstance(flow, ToolFlow)
        assert flow.name == "drafting"
        assert flow.settings is settings
        assert flow.registry is get_registry()
        flow.validate()

    def test_get_container_is_cached(self):
        assert get_container() is get_container()

"""
Dependency injection container for the HTTP client, registry and tool service.
"""

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any

from ..observability.logging import get_logger
from .settings import Settings, get_settings

logger = get_logger(__name__)


class Container:
    """Dependency injection container with async lifecycle management."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._services: dict[str, Any] = {}
        self._factories: dict[str, Any] = {}
        self._singletons: dict[str, Any] = {}
        self._async_resources: dict[str, Any] = {}

    def register_factory(self, name: str, factory: Any) -> None:
        """Register a factory called with the container on first use."""
        self._factories[name] = factory
        self._services.pop(name, None)

    def register_singleton(self, name: str, instance: Any) -> None:
        self._singletons[name] = instance

    def has(self, name: str) -> bool:
        return name in self._singletons or name in self._services or name in self._factories

    def get(self, name: str, default: Any = None) -> Any:
        """Get a service by name, building it from its factory once."""
        # Registered instances win over factories
        if name in self._singletons:
            return self._singletons[name]

        # Already built
        if name in self._services:
            return self._services[name]

        # Build once from the factory and cache
        if name in self._factories:
            instance = self._factories[name](self)
            self._services[name] = instance
            return instance

        return default

    async def get_async(self, name: str, default: Any = None) -> Any:
        """Get a service, entering it first if it is an async context manager."""
        if name in self._async_resources:
            return self._async_resources[name]

        service = self.get(name, default)

        # Async context managers are entered once and kept for cleanup
        if hasattr(service, "__aenter__"):
            async_service = await service.__aenter__()
            self._async_resources[name] = async_service
            return async_service

        return service

    async def cleanup(self) -> None:
        """Exit every async resource, most recently entered first."""
        for name, resource in reversed(list(self._async_resources.items())):
            if hasattr(resource, "__aexit__"):
                try:
                    await resource.__aexit__(None, None, None)
                except Exception as e:
                    logger.error(f"Error cleaning up {name}: {e}")

        self._async_resources.clear()

        # Factory-built clients such as httpx.AsyncClient
        for name, service in list(self._services.items()):
            if hasattr(service, "aclose"):
                try:
                    await service.aclose()
                except Exception as e:
                    logger.error(f"Error closing {name}: {e}")
        self._services.clear()

    @asynccontextmanager
    async def lifespan(self):
        try:
            yield self
        finally:
            await self.cleanup()


def setup_container(settings: Settings | None = None) -> Container:
    """Container with the default http_client, registry and tool_service factories."""
    container = Container(settings)

    # Core service factories
    def _http_client_factory(c: Container):
        import httpx

        return httpx.AsyncClient(
            timeout=httpx.Timeout(c.settings.service.timeout),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
        )

    def _registry_factory(c: Container):
        from ..core.outputs import get_registry

        return get_registry()

    def _tool_service_factory(c: Container):
        from ..services.openai import OpenAIToolService

        return OpenAIToolService(c.settings.service, http_client=c.get("http_client"))

    # Register factories
    container.register_factory("http_client", _http_client_factory)
    container.register_factory("registry", _registry_factory)
    container.register_factory("tool_service", _tool_service_factory)

    return container


def create_flow(container: Container, steps, *, name: str = "toolflow"):
    """Build a ToolFlow wired to the container's service, registry and settings."""
    from ..core.flow import ToolFlow

    return ToolFlow(
        steps,
        container.get("tool_service"),
        registry=container.get("registry"),
        settings=container.settings,
        name=name,
    )


@lru_cache
def get_container() -> Container:
    """Get cached container instance."""
    return setup_container()

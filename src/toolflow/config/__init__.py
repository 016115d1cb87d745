"""Configuration management with dependency injection and validation."""

from .container import Container, create_flow, get_container, setup_container
from .settings import FlowConfig, ObservabilityConfig, ServiceConfig, Settings, get_settings

__all__ = [
    "Settings",
    "ServiceConfig",
    "FlowConfig",
    "ObservabilityConfig",
    "get_settings",
    "Container",
    "create_flow",
    "get_container",
    "setup_container",
]

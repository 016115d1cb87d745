"""Tool service implementations."""

from .base import ToolCallResponse, ToolService, ToolServiceProtocol
from .local import LocalToolService
from .mock import MockCall, MockToolService
from .openai import OpenAIToolService

__all__ = [
    "ToolCallResponse",
    "ToolService",
    "ToolServiceProtocol",
    "LocalToolService",
    "MockCall",
    "MockToolService",
    "OpenAIToolService",
]

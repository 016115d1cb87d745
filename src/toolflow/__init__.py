"""
toolflow - ordered tool-call pipelines with audits, retries and typed outputs.

Each step is one call to a tool service that returns schema-constrained data.
The engine turns that data into a registered output type, runs the step's
audits, retries failed steps with their issues forwarded, and collects every
attempt into a single result.

Quick Start:
    >>> from toolflow import StepConfig, ToolCallStep, ToolFlow, ToolOutput, get_registry
    >>> from toolflow.services import MockToolService
    >>>
    >>> class Summary(ToolOutput):
    ...     text: str
    >>>
    >>> get_registry().register("summarize", Summary)
    >>> flow = ToolFlow(
    ...     [ToolCallStep("summarize", config=StepConfig(max_retries=2))],
    ...     MockToolService({"summarize": {"text": "short"}}),
    ... )
    >>> result = await flow.run({"document": "..."})
    >>> result.passed, result.final_state["text"]
    (True, 'short')

Configuration:
    - TOOLFLOW_SERVICE__API_KEY=sk-... (bearer token for the model API)
    - TOOLFLOW_SERVICE__DEFAULT_MODEL=gpt-4.1
    - TOOLFLOW_FLOW__DEFAULT_MAX_RETRIES=3
    - TOOLFLOW_FLOW__ISSUE_SCOPE=final
    - TOOLFLOW_OBSERVABILITY__LOG_LEVEL=INFO
"""

__version__ = "0.1.0"

from .config.settings import Settings, get_settings
from .core import (
    AuditFunction,
    FunctionAudit,
    Issue,
    IssueSeverity,
    OutputRegistry,
    StepConfig,
    StepDefinition,
    ToolCallStep,
    ToolFlow,
    ToolFlowResult,
    ToolOutput,
    TypedToolResult,
    get_registry,
)

__all__ = [
    "AuditFunction",
    "FunctionAudit",
    "Issue",
    "IssueSeverity",
    "OutputRegistry",
    "StepConfig",
    "StepDefinition",
    "ToolCallStep",
    "ToolFlow",
    "ToolFlowResult",
    "ToolOutput",
    "TypedToolResult",
    "get_registry",
    "Settings",
    "get_settings",
]

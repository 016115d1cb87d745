"""
Core flow engine: typed outputs, audits, step policy and the executor.
"""

from .audit import AuditFunction, FunctionAudit
from .errors import (
    CheckExecutionError,
    ConfigurationError,
    InvalidTransitionError,
    RegistrationError,
    ToolflowError,
    TransportError,
    TypeMismatchError,
)
from .flow import ToolFlow
from .flow_result import StepOutcome, ToolFlowResult
from .history import AttemptHistory
from .issues import Issue, IssueSeverity
from .outputs import OutputRegistry, StepDefinition, StepInput, ToolOutput, get_registry
from .results import TokenUsage, ToolResult, TypedToolResult
from .state_machine import StepExecution, StepState
from .step_config import StepConfig, StepEvaluation
from .steps import ToolCallStep

__all__ = [
    "AuditFunction",
    "FunctionAudit",
    "CheckExecutionError",
    "ConfigurationError",
    "InvalidTransitionError",
    "RegistrationError",
    "ToolflowError",
    "TransportError",
    "TypeMismatchError",
    "ToolFlow",
    "StepOutcome",
    "ToolFlowResult",
    "AttemptHistory",
    "Issue",
    "IssueSeverity",
    "OutputRegistry",
    "StepDefinition",
    "StepInput",
    "ToolOutput",
    "get_registry",
    "TokenUsage",
    "ToolResult",
    "TypedToolResult",
    "StepExecution",
    "StepState",
    "StepConfig",
    "StepEvaluation",
    "ToolCallStep",
]

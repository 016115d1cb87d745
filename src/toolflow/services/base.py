"""
Tool service boundary: the only place a flow talks to the outside world.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from ..core.outputs import StepInput
from ..core.results import TokenUsage, ToolResult

if TYPE_CHECKING:
    from ..core.steps import ToolCallStep


@dataclass(frozen=True)
class ToolCallResponse:
    """Structured payload returned by one tool call, with its token usage."""

    output: dict[str, Any]
    usage: TokenUsage = field(default_factory=TokenUsage)

    @classmethod
    def from_map(cls, data: dict[str, Any]) -> "ToolCallResponse":
        return cls(output=dict(data.get("output") or {}), usage=TokenUsage.from_map(data.get("usage")))


class ToolServiceProtocol(Protocol):
    async def execute(
        self,
        step: "ToolCallStep",
        step_input: StepInput,
        *,
        previous_results: Sequence[ToolResult] = (),
        current_step_retries: Sequence[ToolResult] = (),
    ) -> ToolCallResponse:
        ...


class ToolService(ABC):
    """
    Base class for tool services.

    execute() may raise; the engine turns any exception into a critical issue
    on the attempt and retries. Services signal their own failures with
    TransportError.
    """

    @abstractmethod
    async def execute(
        self,
        step: "ToolCallStep",
        step_input: StepInput,
        *,
        previous_results: Sequence[ToolResult] = (),
        current_step_retries: Sequence[ToolResult] = (),
    ) -> ToolCallResponse:
        """Run one tool call for a step attempt."""
        ...

    async def close(self) -> None:
        """Release any resources held by the service."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

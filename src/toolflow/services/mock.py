"""
In-memory tool service for tests and demos.
"""

import asyncio
from collections import defaultdict
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..core.errors import TransportError
from ..core.outputs import StepInput
from ..core.results import TokenUsage, ToolResult
from ..observability.logging import get_logger
from .base import ToolCallResponse, ToolService

logger = get_logger(__name__)

# A canned response: a payload, an exception to raise, or a callable producing either
MockResponse = dict[str, Any] | BaseException | Callable[[Any, StepInput], dict[str, Any]]


@dataclass(frozen=True)
class MockCall:
    """One recorded call to the mock service."""

    step_name: str
    step_input: StepInput
    previous_results: tuple[ToolResult, ...] = field(default_factory=tuple)
    current_step_retries: tuple[ToolResult, ...] = field(default_factory=tuple)

    @property
    def round(self) -> int:
        return self.step_input.round


class MockToolService(ToolService):
    """
    Returns canned responses per step name.

    A step maps to a single response or a sequence consumed one per call,
    with the last entry repeating once the sequence is exhausted. Exceptions
    in the sequence are raised instead of returned.
    """

    def __init__(
        self,
        responses: dict[str, MockResponse | Sequence[MockResponse]] | None = None,
        *,
        default_response: dict[str, Any] | None = None,
        usage: TokenUsage | None = None,
        delay: float = 0.0,
    ):
        self.responses = dict(responses or {})
        self.default_response = default_response
        self.usage = usage or TokenUsage.zero()
        self.delay = delay
        self.calls: list[MockCall] = []
        self._positions: dict[str, int] = defaultdict(int)
        self.closed = False

    def calls_for(self, step_name: str) -> list[MockCall]:
        return [c for c in self.calls if c.step_name == step_name]

    def reset(self) -> None:
        self.calls.clear()
        self._positions.clear()

    def _next_response(self, step_name: str) -> MockResponse:
        configured = self.responses.get(step_name)
        if configured is None:
            if self.default_response is None:
                raise TransportError(f"No mock response configured for step '{step_name}'")
            return self.default_response

        if isinstance(configured, (dict, BaseException)) or callable(configured):
            return configured

        sequence = list(configured)
        if not sequence:
            raise TransportError(f"Empty mock response sequence for step '{step_name}'")
        position = self._positions[step_name]
        self._positions[step_name] = position + 1
        return sequence[min(position, len(sequence) - 1)]

    async def execute(
        self,
        step,
        step_input: StepInput,
        *,
        previous_results: Sequence[ToolResult] = (),
        current_step_retries: Sequence[ToolResult] = (),
    ) -> ToolCallResponse:
        self.calls.append(
            MockCall(
                step_name=step.name,
                step_input=step_input,
                previous_results=tuple(previous_results),
                current_step_retries=tuple(current_step_retries),
            )
        )
        if self.delay:
            await asyncio.sleep(self.delay)

        response = self._next_response(step.name)
        if isinstance(response, BaseException):
            logger.debug(f"Mock raising {type(response).__name__} for step '{step.name}'")
            raise response
        if callable(response):
            response = response(step, step_input)

        return ToolCallResponse(output=dict(response), usage=self.usage)

    async def close(self) -> None:
        self.closed = True

"""
Local compute functions behind the tool service interface.

Deterministic steps (formatting, arithmetic, lookups) do not need a model
call. A LocalToolService maps step names to plain functions so those steps
still get registry typing, audits and retries, at zero token cost.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from ..core.errors import TransportError
from ..core.outputs import StepInput
from ..core.results import TokenUsage, ToolResult
from ..observability.logging import get_logger
from .base import ToolCallResponse, ToolService

logger = get_logger(__name__)

ComputeFunction = Callable[[dict[str, Any]], dict[str, Any] | Awaitable[dict[str, Any]]]


class LocalToolService(ToolService):
    """Dispatches steps to registered sync or async compute functions."""

    def __init__(
        self,
        functions: dict[str, ComputeFunction] | None = None,
        *,
        fallback: ToolService | None = None,
    ):
        self._functions: dict[str, ComputeFunction] = dict(functions or {})
        self.fallback = fallback

    def register(self, step_name: str, function: ComputeFunction) -> None:
        self._functions[step_name] = function

    def step(self, step_name: str):
        """Decorator form of register()."""

        def decorator(function: ComputeFunction) -> ComputeFunction:
            self.register(step_name, function)
            return function

        return decorator

    def has_function(self, step_name: str) -> bool:
        return step_name in self._functions

    async def execute(
        self,
        step,
        step_input: StepInput,
        *,
        previous_results: Sequence[ToolResult] = (),
        current_step_retries: Sequence[ToolResult] = (),
    ) -> ToolCallResponse:
        function = self._functions.get(step.name)
        if function is None:
            if self.fallback is not None:
                return await self.fallback.execute(
                    step,
                    step_input,
                    previous_results=previous_results,
                    current_step_retries=current_step_retries,
                )
            raise TransportError(f"No local function registered for step '{step.name}'")

        logger.debug(f"Running local step '{step.name}'", round=step_input.round)
        if inspect.iscoroutinefunction(function):
            output = await function(step_input.clean_data())
        else:
            output = function(step_input.clean_data())
            if inspect.isawaitable(output):
                output = await output

        if not isinstance(output, dict):
            raise TransportError(
                f"Local step '{step.name}' returned {type(output).__name__}, expected dict"
            )
        # Yield to the loop so long local chains stay cooperative
        await asyncio.sleep(0)
        return ToolCallResponse(output=output, usage=TokenUsage.zero())

    async def close(self) -> None:
        if self.fallback is not None:
            await self.fallback.close()

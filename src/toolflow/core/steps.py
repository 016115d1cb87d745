"""
Tool-call steps: what the engine runs, one tool service call per attempt.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .outputs import ROUND_KEY, OutputRegistry, StepDefinition, ToolOutput, get_registry
from .results import TypedToolResult
from .step_config import StepConfig

InputBuilder = Callable[[list[TypedToolResult]], dict[str, Any]]


def previous_output_builder(previous: list[TypedToolResult]) -> dict[str, Any]:
    """Default input builder: the last result's output fields."""
    if not previous:
        return {}
    data = previous[-1].output.to_map()
    data.pop(ROUND_KEY, None)
    return data


@dataclass(frozen=True)
class ToolCallStep:
    """
    One step of a flow.

    The input builder receives the final result of every earlier slot, the
    initial input first, and returns the data sent to the tool service.
    Params are passed through to the service untouched (temperature, tool
    choice hints and the like).
    """

    name: str
    model: str | None = None
    definition: StepDefinition | None = None
    input_builder: InputBuilder | None = None
    config: StepConfig = field(default_factory=StepConfig)
    params: dict[str, Any] = field(default_factory=dict)
    guidance: str | None = None
    description: str | None = None
    output_schema: dict[str, Any] | None = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("Step name must not be empty")
        if self.definition is not None and self.definition.step_name != self.name:
            raise ValueError(
                f"Step name '{self.name}' does not match definition "
                f"'{self.definition.step_name}'"
            )

    @classmethod
    def from_definition(
        cls,
        definition: StepDefinition,
        *,
        registry: OutputRegistry | None = None,
        model: str | None = None,
        input_builder: InputBuilder | None = None,
        config: StepConfig | None = None,
        params: dict[str, Any] | None = None,
        guidance: str | None = None,
        description: str | None = None,
    ) -> "ToolCallStep":
        """Build a step from a definition, registering its output type."""
        (registry or get_registry()).register_definition(definition)
        return cls(
            name=definition.step_name,
            model=model or definition.default_model,
            definition=definition,
            input_builder=input_builder,
            config=config or StepConfig(),
            params=dict(params or {}),
            guidance=guidance or definition.guidance,
            description=description,
        )

    @property
    def output_type(self) -> type[ToolOutput] | None:
        return self.definition.output_type if self.definition is not None else None

    @property
    def schema(self) -> dict[str, Any]:
        """Output schema handed to the tool service."""
        if self.output_schema is not None:
            return self.output_schema
        if self.definition is not None:
            return self.definition.output_schema
        return {"type": "object", "properties": {}}

    def build_input(self, previous: list[TypedToolResult]) -> dict[str, Any]:
        builder = self.input_builder or previous_output_builder
        data = dict(builder(list(previous)))
        data.pop(ROUND_KEY, None)
        return data

    def __str__(self) -> str:
        return f"ToolCallStep(name={self.name}, model={self.model})"

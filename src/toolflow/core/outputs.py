"""
Typed step outputs, step inputs and the output registry.

Every step name maps to exactly one constructor that turns a raw structured
payload into a concrete ToolOutput subclass. The registry is what lets steps
with different output shapes share one ordered pipeline: the engine tags each
result with the registered type instead of guessing a shape from the data.
"""

import inspect
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from ..observability.logging import get_logger
from .errors import RegistrationError, TypeMismatchError

logger = get_logger(__name__)

ROUND_KEY = "_round"


class ToolOutput(BaseModel):
    """
    Immutable output of one step attempt.

    The base class accepts arbitrary fields so it can hold the initial input
    and error attempts. Subclasses declare their own domain fields.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    round: int = Field(0, ge=0)

    @classmethod
    def from_map(cls, data: dict[str, Any], round: int = 0) -> "ToolOutput":
        payload = {k: v for k, v in data.items() if k != ROUND_KEY}
        payload["round"] = round
        return cls.model_validate(payload)

    def to_map(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", exclude={"round"})
        return {ROUND_KEY: self.round, **data}


T = TypeVar("T", bound=ToolOutput)

OutputConstructor = Callable[[dict[str, Any], int], ToolOutput]


class StepInput(BaseModel):
    """Input handed to the tool service for one attempt."""

    model_config = ConfigDict(frozen=True)

    round: int = Field(0, ge=0)
    data: dict[str, Any] = Field(default_factory=dict)
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None

    def to_map(self) -> dict[str, Any]:
        result = {
            ROUND_KEY: self.round,
            "_model": self.model,
            "_temperature": self.temperature,
            "_max_tokens": self.max_tokens,
        }
        result.update(self.data)
        return result

    @classmethod
    def from_map(cls, data: dict[str, Any]) -> "StepInput":
        payload = dict(data)
        return cls(
            round=int(payload.pop(ROUND_KEY, 0) or 0),
            model=payload.pop("_model", None),
            temperature=payload.pop("_temperature", None),
            max_tokens=payload.pop("_max_tokens", None),
            data=payload,
        )

    def clean_data(self) -> dict[str, Any]:
        """Input data without internal keys, as sent to a model."""
        return {k: v for k, v in self.data.items() if not k.startswith("_")}


class StepDefinition(ABC, Generic[T]):
    """Declarative description of a step and the output it produces."""

    #: Default model identifier, passed through to the tool service.
    default_model: str | None = None

    #: Optional free-text guidance template for the tool service.
    guidance: str | None = None

    @property
    @abstractmethod
    def step_name(self) -> str:
        ...

    @property
    @abstractmethod
    def output_type(self) -> type[T]:
        ...

    def from_map(self, data: dict[str, Any], round: int) -> T:
        return self.output_type.from_map(data, round)

    @property
    def output_schema(self) -> dict[str, Any]:
        """JSON schema of the output model, without engine-owned fields."""
        schema = self.output_type.model_json_schema()
        properties = dict(schema.get("properties", {}))
        properties.pop("round", None)
        schema["properties"] = properties
        schema["required"] = [r for r in schema.get("required", []) if r != "round"]
        return schema


def _infer_output_type(constructor: Callable[..., Any]) -> type[ToolOutput] | None:
    if inspect.isclass(constructor) and issubclass(constructor, ToolOutput):
        return constructor
    owner = getattr(constructor, "__self__", None)
    if inspect.isclass(owner) and issubclass(owner, ToolOutput):
        return owner
    return None


class OutputRegistry:
    """Maps step names to typed output constructors."""

    def __init__(self):
        self._constructors: dict[str, OutputConstructor] = {}
        self._types: dict[str, type[ToolOutput]] = {}

    def register(
        self,
        step_name: str,
        constructor: OutputConstructor | type[ToolOutput],
        output_type: type[ToolOutput] | None = None,
    ) -> None:
        """Register a constructor; a later registration for the same name wins."""
        resolved_type = output_type or _infer_output_type(constructor)
        if resolved_type is None:
            raise ValueError(
                f"Cannot infer output type for step '{step_name}'; pass output_type explicitly"
            )

        if inspect.isclass(constructor):
            cls = constructor

            def constructor(data: dict[str, Any], round: int) -> ToolOutput:
                return cls.from_map(data, round)

        if step_name in self._constructors:
            logger.debug(f"Replacing output registration for step '{step_name}'")

        self._constructors[step_name] = constructor
        self._types[step_name] = resolved_type

    def register_definition(self, definition: StepDefinition) -> None:
        self.register(definition.step_name, definition.from_map, definition.output_type)

    def unregister(self, step_name: str) -> None:
        self._constructors.pop(step_name, None)
        self._types.pop(step_name, None)

    def is_registered(self, step_name: str) -> bool:
        return step_name in self._constructors

    @property
    def registered_steps(self) -> list[str]:
        return list(self._constructors)

    def type_of(self, step_name: str) -> type[ToolOutput]:
        try:
            return self._types[step_name]
        except KeyError:
            raise RegistrationError(step_name, self.registered_steps) from None

    def create(self, step_name: str, data: dict[str, Any], round: int = 0) -> ToolOutput:
        """Construct the typed output registered for a step."""
        constructor = self._constructors.get(step_name)
        if constructor is None:
            raise RegistrationError(step_name, self.registered_steps)

        output = constructor(data, round)
        expected = self._types[step_name]
        if type(output) is not expected:
            raise TypeMismatchError(expected, type(output), step_name)
        return output

    def clear(self) -> None:
        self._constructors.clear()
        self._types.clear()


# Process-wide default registry
_registry: OutputRegistry | None = None


def get_registry() -> OutputRegistry:
    """Get the default output registry."""
    global _registry
    if _registry is None:
        _registry = OutputRegistry()
    return _registry


def reset_registry() -> None:
    """Drop every registration from the default registry."""
    global _registry
    _registry = None

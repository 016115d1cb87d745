"""
Step results and the heterogeneous typed-result wrapper.

A pipeline mixes steps whose outputs have different shapes. ToolResult is the
shape-specific view; TypedToolResult erases the shape for storage but keeps an
explicit type tag, so the original shape can be recovered safely.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Any, Generic, TypeVar

from .errors import TypeMismatchError
from .issues import Issue, IssueSeverity, issues_at_or_above
from .outputs import StepInput, ToolOutput

T = TypeVar("T", bound=ToolOutput)


@dataclass(frozen=True)
class TokenUsage:
    """Token counters reported by the tool service for one attempt."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def zero(cls) -> "TokenUsage":
        return cls()

    @classmethod
    def from_map(cls, data: dict[str, Any] | None) -> "TokenUsage":
        data = data or {}
        prompt = int(data.get("prompt_tokens") or 0)
        completion = int(data.get("completion_tokens") or 0)
        total = data.get("total_tokens")
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=int(total) if total is not None else prompt + completion,
        )

    def to_map(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        if not isinstance(other, TokenUsage):
            return NotImplemented
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    @classmethod
    def sum(cls, usages: Iterable["TokenUsage"]) -> "TokenUsage":
        total = cls.zero()
        for usage in usages:
            total = total + usage
        return total


@dataclass(frozen=True)
class ToolResult(Generic[T]):
    """Output of one step attempt, viewed with its concrete output type."""

    step_name: str
    input: StepInput
    output: T
    issues: tuple[Issue, ...] = field(default_factory=tuple)

    def __post_init__(self):
        # Accept any iterable but store an immutable tuple
        object.__setattr__(self, "issues", tuple(self.issues))

    @property
    def has_issues(self) -> bool:
        return bool(self.issues)

    def issues_with_severity(self, severity: IssueSeverity) -> list[Issue]:
        return [issue for issue in self.issues if issue.severity == severity]

    def issues_at_or_above(self, minimum: IssueSeverity) -> list[Issue]:
        return issues_at_or_above(self.issues, minimum)

    def with_issues(self, issues: Iterable[Issue]) -> "ToolResult[T]":
        return replace(self, issues=tuple(issues))

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_name": self.step_name,
            "input": self.input.to_map(),
            "output": self.output.to_map(),
            "issues": [issue.to_dict() for issue in self.issues],
        }


@dataclass(frozen=True)
class TypedToolResult:
    """
    Type-erased result that remembers the runtime type of its output.

    Construction checks that the tag matches the held output; recovery through
    as_typed() never downcasts silently.
    """

    result: ToolResult[ToolOutput]
    output_type: type[ToolOutput]
    token_usage: TokenUsage = field(default_factory=TokenUsage)

    def __post_init__(self):
        actual = type(self.result.output)
        if actual is not self.output_type:
            raise TypeMismatchError(self.output_type, actual, self.result.step_name)

    @classmethod
    def wrap(
        cls,
        output: ToolOutput,
        input: StepInput,
        issues: Iterable[Issue],
        output_type: type[ToolOutput],
        *,
        step_name: str,
        token_usage: TokenUsage | None = None,
    ) -> "TypedToolResult":
        return cls(
            result=ToolResult(step_name=step_name, input=input, output=output, issues=tuple(issues)),
            output_type=output_type,
            token_usage=token_usage or TokenUsage.zero(),
        )

    @property
    def step_name(self) -> str:
        return self.result.step_name

    @property
    def input(self) -> StepInput:
        return self.result.input

    @property
    def output(self) -> ToolOutput:
        return self.result.output

    @property
    def issues(self) -> tuple[Issue, ...]:
        return self.result.issues

    @property
    def round(self) -> int:
        return self.result.output.round

    @property
    def has_issues(self) -> bool:
        return self.result.has_issues

    def has_output_type(self, expected: type[ToolOutput]) -> bool:
        return self.output_type is expected

    def as_typed(self, expected: type[T]) -> ToolResult[T]:
        """Recover a freshly built result with the expected output type."""
        if not self.has_output_type(expected):
            raise TypeMismatchError(expected, self.output_type, self.step_name)
        return ToolResult(
            step_name=self.result.step_name,
            input=self.result.input,
            output=self.result.output,
            issues=self.result.issues,
        )

    def issues_with_severity(self, severity: IssueSeverity) -> list[Issue]:
        return self.result.issues_with_severity(severity)

    def issues_at_or_above(self, minimum: IssueSeverity) -> list[Issue]:
        return self.result.issues_at_or_above(minimum)

    def with_issues(self, issues: Iterable[Issue]) -> "TypedToolResult":
        return replace(self, result=self.result.with_issues(issues))

    def to_dict(self) -> dict[str, Any]:
        data = self.result.to_dict()
        data["output_type"] = self.output_type.__name__
        data["token_usage"] = self.token_usage.to_map()
        return data

    def __str__(self) -> str:
        return (
            f"TypedToolResult(step={self.step_name}, output_type={self.output_type.__name__}, "
            f"issues={len(self.issues)}, tokens={self.token_usage.total_tokens})"
        )

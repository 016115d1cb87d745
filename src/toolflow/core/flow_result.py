"""
Aggregate returned by a flow run.
"""

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Literal

from .issues import Issue, IssueSeverity, count_by_severity
from .outputs import ToolOutput
from .results import TokenUsage, TypedToolResult
from .state_machine import StepState

IssueScope = Literal["final", "all"]


@dataclass(frozen=True)
class StepOutcome:
    """How one step ended: its state, every attempt and the final one."""

    step_index: int
    step_name: str
    state: StepState
    attempts: tuple[TypedToolResult, ...]
    failure_reason: str | None = None
    duration: float = 0.0

    @property
    def passed(self) -> bool:
        return self.state == StepState.PASSED

    @property
    def final(self) -> TypedToolResult:
        return self.attempts[-1]

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def usage(self) -> TokenUsage:
        return self.final.token_usage

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_index": self.step_index,
            "step_name": self.step_name,
            "state": self.state.value,
            "passed": self.passed,
            "attempts": self.attempt_count,
            "failure_reason": self.failure_reason,
            "duration": self.duration,
            "usage": self.usage.to_map(),
        }


@dataclass(frozen=True)
class ToolFlowResult:
    """
    Everything a run produced.

    results[0] is the initial input; results[i] is the final attempt of step
    i - 1. attempts uses the same indexing but holds every attempt. Steps
    after a halt are absent from both.
    """

    results: tuple[TypedToolResult, ...]
    attempts: tuple[tuple[TypedToolResult, ...], ...]
    final_state: Mapping[str, Any]
    step_outcomes: tuple[StepOutcome, ...] = ()
    halted: bool = False
    issue_scope: IssueScope = "final"
    run_id: str | None = None
    created_at: float = field(default_factory=time.time)

    def __post_init__(self):
        if self.issue_scope not in ("final", "all"):
            raise ValueError(f"issue_scope must be 'final' or 'all', got {self.issue_scope!r}")
        object.__setattr__(self, "results", tuple(self.results))
        object.__setattr__(self, "attempts", tuple(tuple(a) for a in self.attempts))
        object.__setattr__(self, "step_outcomes", tuple(self.step_outcomes))
        if not isinstance(self.final_state, MappingProxyType):
            object.__setattr__(self, "final_state", MappingProxyType(dict(self.final_state)))

    @property
    def passed(self) -> bool:
        """True when no step halted the run and every step that ran passed."""
        return not self.halted and all(o.passed for o in self.step_outcomes)

    @property
    def final_issues(self) -> list[Issue]:
        """Issues of each step's final attempt."""
        issues: list[Issue] = []
        for result in self.results[1:]:
            issues.extend(result.issues)
        return issues

    @property
    def all_issues(self) -> list[Issue]:
        """Issues of every attempt of every step."""
        issues: list[Issue] = []
        for slot in self.attempts[1:]:
            for attempt in slot:
                issues.extend(attempt.issues)
        return issues

    @property
    def issues(self) -> list[Issue]:
        return self.all_issues if self.issue_scope == "all" else self.final_issues

    def issues_at_or_above(self, minimum: IssueSeverity) -> list[Issue]:
        return [i for i in self.issues if i.severity.is_at_least(minimum)]

    @property
    def issue_counts(self) -> dict[str, int]:
        return count_by_severity(self.issues)

    @property
    def usage_by_step(self) -> dict[int, TokenUsage]:
        """Final-attempt usage keyed by 0-based step index."""
        return {o.step_index: o.usage for o in self.step_outcomes}

    @property
    def total_usage(self) -> TokenUsage:
        return TokenUsage.sum(self.usage_by_step.values())

    @property
    def final_result(self) -> TypedToolResult:
        return self.results[-1]

    @property
    def failed_steps(self) -> list[StepOutcome]:
        return [o for o in self.step_outcomes if not o.passed]

    def results_for(self, step_name: str) -> list[TypedToolResult]:
        """Final results of every step with this name, in order."""
        return [r for r in self.results[1:] if r.step_name == step_name]

    def results_of_type(self, output_type: type[ToolOutput]) -> list[TypedToolResult]:
        return [r for r in self.results[1:] if r.has_output_type(output_type)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "passed": self.passed,
            "halted": self.halted,
            "issue_scope": self.issue_scope,
            "results": [r.to_dict() for r in self.results],
            "steps": [o.to_dict() for o in self.step_outcomes],
            "issues": [i.to_dict() for i in self.issues],
            "issue_counts": self.issue_counts,
            "total_usage": self.total_usage.to_map(),
            "final_state": dict(self.final_state),
        }

    def __str__(self) -> str:
        return (
            f"ToolFlowResult(steps={len(self.step_outcomes)}, passed={self.passed}, "
            f"halted={self.halted}, issues={len(self.issues)}, "
            f"tokens={self.total_usage.total_tokens})"
        )

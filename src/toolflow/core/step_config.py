"""
Per-step policy: audits, retry budget, pass/fail evaluation and forwarding.

Forwarding decides which earlier attempts a step gets to see. References in
include_results_in_toolcall are either a 0-based step index or a step name;
only steps that ran before the current one can be referenced. Every forwarded
attempt is filtered down to its issues at or above issues_severity_filter, and
an attempt with no such issue is not forwarded at all.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..observability.logging import get_logger
from .audit import AuditFunction, check_error_issue
from .errors import CheckExecutionError
from .history import AttemptHistory
from .issues import Issue, IssueSeverity
from .outputs import ROUND_KEY
from .results import ToolResult, TypedToolResult

logger = get_logger(__name__)

StepReference = int | str

# Audit name reported when a step-level predicate or reason callback raises
STEP_CRITERIA_NAME = "step_criteria"


def filter_attempts_by_severity(
    attempts: list[TypedToolResult] | tuple[TypedToolResult, ...],
    minimum: IssueSeverity,
) -> list[ToolResult]:
    """Copies of the attempts that carry at least one issue at or above minimum."""
    filtered: list[ToolResult] = []
    for attempt in attempts:
        matching = attempt.issues_at_or_above(minimum)
        if matching:
            filtered.append(attempt.result.with_issues(matching))
    return filtered


@dataclass(frozen=True)
class StepEvaluation:
    """Pass/fail decision for one attempt, with issues for callbacks that raised."""

    passed: bool
    reason: str | None = None
    errors: tuple[Issue, ...] = ()


@dataclass(frozen=True)
class StepConfig:
    """Declarative policy for one step."""

    audits: list[AuditFunction] = field(default_factory=list)
    max_retries: int | None = None
    custom_pass_criteria: Callable[[list[Issue]], bool] | None = None
    custom_failure_reason: Callable[[list[Issue]], str] | None = None
    stop_on_failure: bool = True
    issues_severity_filter: IssueSeverity = IssueSeverity.HIGH
    include_results_in_toolcall: list[StepReference] = field(default_factory=list)
    include_outputs_from: list[StepReference] = field(default_factory=list)
    input_sanitizer: Callable[[dict[str, Any]], dict[str, Any]] | None = None
    output_sanitizer: Callable[[dict[str, Any]], dict[str, Any]] | None = None
    timeout: float | None = None
    max_tokens: int | None = None

    def __post_init__(self):
        if self.max_retries is not None and self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        for ref in [*self.include_results_in_toolcall, *self.include_outputs_from]:
            if isinstance(ref, bool) or not isinstance(ref, (int, str)):
                raise TypeError(f"Step reference must be an int index or a step name, got {ref!r}")
            if isinstance(ref, int) and ref < 0:
                raise ValueError(f"Step index reference must be >= 0, got {ref}")

        names = [audit.name for audit in self.audits]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            # Issues are grouped by audit name, so names must be unique within a step
            raise ValueError(f"Duplicate audit names in step config: {duplicates}")

    @property
    def has_audits(self) -> bool:
        return bool(self.audits)

    def effective_max_retries(self, default: int) -> int:
        return self.max_retries if self.max_retries is not None else default

    def passed_criteria(self, issues: list[Issue]) -> bool:
        """Evaluate the step; each audit only judges the issues it produced."""
        return self.evaluate(issues).passed

    def failure_reason(self, issues: list[Issue]) -> str:
        evaluation = self.evaluate(issues)
        if not evaluation.passed:
            return evaluation.reason
        return self._failure_reason(list(issues), [], [])

    def evaluate(self, issues: list[Issue] | tuple[Issue, ...]) -> StepEvaluation:
        """
        Decide pass/fail for one attempt.

        A predicate or reason callback that raises fails the attempt and is
        reported as a critical issue in StepEvaluation.errors instead of
        propagating.
        """
        issues = list(issues)
        errors: list[Issue] = []

        if self.custom_pass_criteria is not None:
            try:
                if self.custom_pass_criteria(list(issues)):
                    return StepEvaluation(passed=True)
            except Exception as e:
                errors.append(_criteria_error(STEP_CRITERIA_NAME, e))

        reasons = [error.description for error in errors]
        for audit in self.audits:
            own = _issues_from(audit, issues)
            try:
                if audit.passed_criteria(own):
                    continue
                reasons.append(f"{audit.name}: {audit.failure_reason(own)}")
            except Exception as e:
                error = _criteria_error(audit.name, e)
                errors.append(error)
                reasons.append(f"{audit.name}: {error.description}")

        if self.custom_pass_criteria is None and not reasons:
            return StepEvaluation(passed=True)

        reason = self._failure_reason(issues, reasons, errors)
        return StepEvaluation(False, reason, tuple(errors))

    def _failure_reason(self, issues: list[Issue], reasons: list[str], errors: list[Issue]) -> str:
        if self.custom_failure_reason is not None:
            try:
                return self.custom_failure_reason(list(issues))
            except Exception as e:
                error = _criteria_error(STEP_CRITERIA_NAME, e)
                errors.append(error)
                reasons = [*reasons, error.description]
        return "; ".join(reasons) if reasons else "Step criteria not met"

    def sanitize_input(self, raw_input: dict[str, Any]) -> dict[str, Any]:
        if self.input_sanitizer is None:
            return raw_input
        return self.input_sanitizer(raw_input)

    def sanitize_output(self, raw_output: dict[str, Any]) -> dict[str, Any]:
        if self.output_sanitizer is None:
            return raw_output
        return self.output_sanitizer(raw_output)

    def resolve_references(
        self,
        references: list[StepReference],
        history: AttemptHistory,
        current_step_index: int,
    ) -> list[int]:
        """Map step references to indices of steps that ran before the current one."""
        resolved: list[int] = []
        prior = [i for i in history.step_indices if i < current_step_index]

        for ref in references:
            if isinstance(ref, int):
                index = ref if ref in prior else None
            else:
                matches = [i for i in prior if history.step_name(i) == ref]
                index = matches[-1] if matches else None

            if index is None:
                logger.debug(
                    f"Step reference {ref!r} does not match an earlier step",
                    step_index=current_step_index,
                )
            elif index not in resolved:
                resolved.append(index)
        return resolved

    def forwarded_previous_results(
        self, history: AttemptHistory, current_step_index: int
    ) -> list[ToolResult]:
        """Final attempts of referenced earlier steps, severity-filtered."""
        indices = self.resolve_references(
            self.include_results_in_toolcall, history, current_step_index
        )
        finals = [history.final(i) for i in indices]
        return filter_attempts_by_severity(
            [f for f in finals if f is not None], self.issues_severity_filter
        )

    def forwarded_retries(self, history: AttemptHistory, current_step_index: int) -> list[ToolResult]:
        """Earlier attempts of the current step, severity-filtered."""
        return filter_attempts_by_severity(
            history.attempts(current_step_index), self.issues_severity_filter
        )

    def merged_outputs(self, history: AttemptHistory, current_step_index: int) -> dict[str, Any]:
        """Outputs of referenced earlier steps, keyed as '<step_name>_<field>'."""
        merged: dict[str, Any] = {}
        indices = self.resolve_references(self.include_outputs_from, history, current_step_index)
        for index in indices:
            final = history.final(index)
            if final is None:
                continue
            for key, value in final.output.to_map().items():
                if key == ROUND_KEY:
                    continue
                merged[f"{final.step_name}_{key}"] = value
        return merged

    def to_dict(self) -> dict[str, Any]:
        """Serializable summary; callables and audits are reported by presence only."""
        return {
            "audits": [audit.name for audit in self.audits],
            "max_retries": self.max_retries,
            "stop_on_failure": self.stop_on_failure,
            "issues_severity_filter": self.issues_severity_filter.value,
            "include_results_in_toolcall": list(self.include_results_in_toolcall),
            "include_outputs_from": list(self.include_outputs_from),
            "has_custom_pass_criteria": self.custom_pass_criteria is not None,
            "has_input_sanitizer": self.input_sanitizer is not None,
            "has_output_sanitizer": self.output_sanitizer is not None,
            "timeout": self.timeout,
            "max_tokens": self.max_tokens,
        }


def _issues_from(audit: AuditFunction, issues: list[Issue]) -> list[Issue]:
    return [issue for issue in issues if issue.audit_name == audit.name]


def _criteria_error(name: str, cause: Exception) -> Issue:
    error = CheckExecutionError(name, cause)
    logger.warning(f"{error}", audit=name)
    return check_error_issue(error)

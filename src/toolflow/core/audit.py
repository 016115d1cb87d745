"""
Audit functions: pluggable checks that inspect a step output and emit Issues.

An audit declares the output type it expects through its generic parameter:

    class PaletteSizeAudit(AuditFunction[PaletteOutput]):
        name = "palette_size"

        def run(self, output: PaletteOutput) -> list[Issue]:
            ...

The engine never hands an audit a differently shaped output. A type mismatch
or an exception inside run() becomes a single critical Issue, so one broken
audit cannot crash a run.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Generic, TypeVar, get_args, get_origin

from ..observability.logging import get_logger
from .errors import CheckExecutionError, TypeMismatchError
from .issues import Issue, IssueSeverity
from .outputs import ToolOutput
from .results import TypedToolResult

logger = get_logger(__name__)

T = TypeVar("T", bound=ToolOutput)


class AuditFunction(ABC, Generic[T]):
    """Base class for audits over one output type."""

    #: Groups issues per audit when a step evaluates pass/fail. Defaults to the class name.
    name: str = "AuditFunction"

    #: Output type this audit expects. ToolOutput means any output.
    output_type: type[ToolOutput] = ToolOutput

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if "name" not in cls.__dict__:
            cls.name = cls.__name__
        if "output_type" in cls.__dict__:
            return
        for base in getattr(cls, "__orig_bases__", ()):
            if get_origin(base) is AuditFunction:
                args = get_args(base)
                if args and isinstance(args[0], type) and issubclass(args[0], ToolOutput):
                    cls.output_type = args[0]
                break

    @abstractmethod
    def run(self, output: T) -> list[Issue]:
        """Inspect an output and return the issues found."""
        ...

    def passed_criteria(self, issues: list[Issue]) -> bool:
        """Pass unless a critical issue was found."""
        return not any(issue.severity == IssueSeverity.CRITICAL for issue in issues)

    def failure_reason(self, issues: list[Issue]) -> str:
        critical = [i for i in issues if i.severity == IssueSeverity.CRITICAL]
        if critical:
            return "Critical issues found: " + ", ".join(i.description for i in critical)
        return "Custom criteria not met"

    def execute(self, output: T) -> list[Issue]:
        """Run the audit, wrapping any failure in CheckExecutionError."""
        try:
            issues = list(self.run(output))
        except Exception as e:
            raise CheckExecutionError(self.name, e) from e

        for item in issues:
            if not isinstance(item, Issue):
                raise CheckExecutionError(
                    self.name, TypeError(f"run() returned {type(item).__name__}, expected Issue")
                )
        return issues

    def run_checked(self, result: TypedToolResult) -> list[Issue]:
        """Run against a type-erased result, reporting problems as Issues."""
        if self.output_type is ToolOutput:
            output = result.output
        else:
            try:
                output = result.as_typed(self.output_type).output
            except TypeMismatchError:
                return [self._type_mismatch_issue(result)]

        try:
            return self.execute(output)
        except CheckExecutionError as e:
            logger.warning(f"{e}", audit=self.name, step=result.step_name)
            return [
                check_error_issue(
                    e,
                    round=result.input.round,
                    step_name=result.step_name,
                    actual_output_type=result.output_type.__name__,
                )
            ]

    def _type_mismatch_issue(self, result: TypedToolResult) -> Issue:
        expected = self.output_type.__name__
        actual = result.output_type.__name__
        return Issue(
            id=f"audit_type_mismatch_{self.name}",
            severity=IssueSeverity.CRITICAL,
            description=f"Audit {self.name} expects output type {expected}, but received {actual}",
            context={
                "audit_name": self.name,
                "expected_type": expected,
                "actual_type": actual,
                "step_name": result.step_name,
            },
            suggestions=[
                f"Ensure the step produces output of type {expected}",
                f"Register the correct output type for step {result.step_name}",
                "Declare the audit over ToolOutput if it should accept any output",
            ],
            # The attempt round lives on the input; the output may not be stamped yet
            round=result.input.round,
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, output_type={self.output_type.__name__})"


def check_error_issue(error: CheckExecutionError, round: int = 0, **context: Any) -> Issue:
    """Critical issue for an audit (or a step predicate) that raised."""
    return Issue(
        id=f"audit_execution_error_{error.audit_name}",
        severity=IssueSeverity.CRITICAL,
        description=str(error),
        context={
            "audit_name": error.audit_name,
            "error": str(error.cause),
            "error_type": type(error.cause).__name__,
            **context,
        },
        suggestions=[
            "Check the audit implementation",
            "Verify the step output structure matches the audit's expectations",
        ],
        round=round,
        related_data={"audit_name": error.audit_name},
    )


class FunctionAudit(AuditFunction[ToolOutput]):
    """Audit assembled from plain callables."""

    def __init__(
        self,
        name: str,
        check: Callable[[Any], list[Issue]],
        *,
        output_type: type[ToolOutput] = ToolOutput,
        passed: Callable[[list[Issue]], bool] | None = None,
        reason: Callable[[list[Issue]], str] | None = None,
    ):
        self.name = name
        self.output_type = output_type
        self._check = check
        self._passed = passed
        self._reason = reason

    def run(self, output: ToolOutput) -> list[Issue]:
        return self._check(output)

    def passed_criteria(self, issues: list[Issue]) -> bool:
        if self._passed is not None:
            return self._passed(issues)
        return super().passed_criteria(issues)

    def failure_reason(self, issues: list[Issue]) -> str:
        if self._reason is not None:
            return self._reason(issues)
        return super().failure_reason(issues)

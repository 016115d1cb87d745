"""
Flow engine: runs steps in order with audits, retries and forwarding.

For every step the engine builds an input from the final results of earlier
steps, calls the tool service, constructs the registered output type, runs
the step's audits and decides between pass, retry and terminal failure.
Anything that goes wrong inside an attempt (transport errors, timeouts,
input builder or payload decoding failures) becomes a critical issue on that
attempt. Configuration defects propagate.
"""

import asyncio
import time
import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from typing import TYPE_CHECKING, Any

from ..config.settings import Settings, get_settings
from ..observability.logging import get_logger, get_run_id, set_run_id
from ..observability.metrics import get_metrics_collector
from ..observability.tracing import add_span_attributes, add_span_event, trace_span
from .errors import ConfigurationError
from .flow_result import StepOutcome, ToolFlowResult
from .history import AttemptHistory
from .issues import Issue, IssueSeverity
from .outputs import ROUND_KEY, OutputRegistry, StepInput, ToolOutput, get_registry
from .results import TokenUsage, TypedToolResult
from .state_machine import StepExecution, StepState
from .steps import ToolCallStep

if TYPE_CHECKING:
    from ..services.base import ToolServiceProtocol

logger = get_logger(__name__)

INITIAL_INPUT_NAME = "initial_input"


class _AttemptFailed(Exception):
    """Internal: an attempt failed before producing a typed output."""

    def __init__(self, cause: BaseException, step_input: StepInput | None):
        self.cause = cause
        self.step_input = step_input
        super().__init__(str(cause))


class ToolFlow:
    """
    Ordered, single-threaded execution of tool-call steps.

    A ToolFlow can be reused for many runs, one at a time. Each run starts
    with an empty attempt history and a state seeded from the run input.
    """

    def __init__(
        self,
        steps: Sequence[ToolCallStep],
        service: "ToolServiceProtocol",
        *,
        registry: OutputRegistry | None = None,
        settings: Settings | None = None,
        name: str = "toolflow",
    ):
        if not steps:
            raise ValueError("A flow needs at least one step")
        self.name = name
        self.steps = list(steps)
        self.service = service
        self.registry = registry or get_registry()
        self.settings = settings or get_settings()
        self._running = False
        self._last_result: ToolFlowResult | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_result(self) -> ToolFlowResult | None:
        """Aggregate of the most recent completed run."""
        return self._last_result

    def validate(self) -> None:
        """Check that every step has a registered output type."""
        for step in self.steps:
            self.registry.type_of(step.name)

    @trace_span("flow.run")
    async def run(self, input: dict[str, Any]) -> ToolFlowResult:
        """Execute every step and return the aggregate."""
        async for _ in self._iterate(input):
            pass
        add_span_attributes(passed=self._last_result.passed, halted=self._last_result.halted)
        return self._last_result

    async def stream(self, input: dict[str, Any]) -> AsyncIterator[StepOutcome]:
        """Execute the flow, yielding each step's outcome as it finishes."""
        async with aclosing(self._iterate(input)) as outcomes:
            async for outcome in outcomes:
                yield outcome

    async def _iterate(self, input: dict[str, Any]) -> AsyncIterator[StepOutcome]:
        if self._running:
            raise RuntimeError(f"Flow '{self.name}' is already running")
        self.validate()

        self._running = True
        previous_run_id = get_run_id()
        run_id = uuid.uuid4().hex[:12]
        set_run_id(run_id)
        started = time.perf_counter()
        try:
            history = AttemptHistory(self._initial_result(input))
            state: dict[str, Any] = dict(input)
            outcomes: list[StepOutcome] = []
            halted = False

            logger.info(f"Starting flow '{self.name}'", steps=len(self.steps))

            for index, step in enumerate(self.steps):
                outcome = await self._run_step(index, step, history)
                outcomes.append(outcome)
                self._merge_into_state(state, index, outcome.final)

                # Yield before the stop check so streams see the failing step
                yield outcome

                if not outcome.passed and step.config.stop_on_failure:
                    logger.warning(
                        f"Step {index + 1} '{step.name}' failed after {outcome.attempt_count} "
                        "attempts, stopping flow",
                        reason=outcome.failure_reason,
                    )
                    halted = True
                    break

            state["token_usage"] = self._aggregate_usage(outcomes)
            result = ToolFlowResult(
                results=history.final_results(),
                attempts=history.as_slots(),
                final_state=state,
                step_outcomes=outcomes,
                halted=halted,
                issue_scope=self.settings.flow.issue_scope,
                run_id=run_id,
            )
            self._last_result = result

            duration = time.perf_counter() - started
            if self.settings.observability.enable_metrics:
                get_metrics_collector().record_run(duration, result.passed, halted)
            logger.timed(
                f"Flow '{self.name}' finished",
                duration * 1000,
                passed=result.passed,
                halted=halted,
                tokens=result.total_usage.total_tokens,
            )
        finally:
            self._running = False
            set_run_id(previous_run_id)

    def _initial_result(self, input: dict[str, Any]) -> TypedToolResult:
        service = self.settings.service
        step_input = StepInput(
            round=0,
            data=dict(input),
            model=service.default_model,
            temperature=service.default_temperature,
            max_tokens=service.default_max_tokens,
        )
        output = ToolOutput.from_map(input, round=0)
        return TypedToolResult.wrap(
            output, step_input, (), ToolOutput, step_name=INITIAL_INPUT_NAME
        )

    async def _run_step(
        self, index: int, step: ToolCallStep, history: AttemptHistory
    ) -> StepOutcome:
        config = step.config
        execution = StepExecution(
            index, step.name, config.effective_max_retries(self.settings.flow.default_max_retries)
        )
        history.open_step(index, step.name)
        metrics = get_metrics_collector() if self.settings.observability.enable_metrics else None
        step_started = time.perf_counter()

        while True:
            round = execution.begin_attempt()
            attempt_started = time.perf_counter()
            logger.debug(
                f"Executing step {index + 1} '{step.name}'",
                round=round,
                max_attempts=execution.max_attempts,
            )

            try:
                step_input, response = await self._execute_attempt(step, index, round, history)
                execution.begin_checking()
                attempt = self._check_attempt(step, index, round, step_input, response)
            except _AttemptFailed as failure:
                # Error attempts still pass through checking before they resolve
                if execution.state == StepState.EXECUTING:
                    execution.begin_checking()
                attempt = self._error_attempt(step, index, round, failure)
                passed = False
                reason = attempt.issues[0].description
                logger.warning(
                    f"Step {index + 1} '{step.name}' attempt {round + 1} errored",
                    error=str(failure.cause),
                    error_type=type(failure.cause).__name__,
                )
            else:
                evaluation = config.evaluate(attempt.issues)
                # Predicates that raised are reported on the attempt itself
                if evaluation.errors:
                    stamped = [e.stamped(round, step_index=index) for e in evaluation.errors]
                    attempt = attempt.with_issues([*attempt.issues, *stamped])
                passed = evaluation.passed
                reason = evaluation.reason

            history.record(index, attempt)
            if metrics is not None:
                metrics.record_attempt(step.name, time.perf_counter() - attempt_started, passed)
                for issue in attempt.issues:
                    metrics.record_issue(step.name, issue.severity.value)
                metrics.record_tokens(
                    step.name, attempt.token_usage.prompt_tokens, attempt.token_usage.completion_tokens
                )

            new_state = execution.resolve(passed, reason)
            if new_state == StepState.RETRY:
                logger.info(
                    f"Step {index + 1} '{step.name}' attempt {round + 1} failed. {reason}. Retrying",
                    round=round,
                )
                if metrics is not None:
                    metrics.record_retry(step.name)
                add_span_event("step.retry", {"step": step.name, "round": round})
                continue

            if new_state == StepState.FAILED_TERMINAL:
                if metrics is not None:
                    metrics.record_failure(step.name)
                logger.warning(
                    f"Step {index + 1} '{step.name}' exhausted {execution.max_attempts} attempts",
                    reason=reason,
                )
            break

        return StepOutcome(
            step_index=index,
            step_name=step.name,
            state=execution.state,
            attempts=history.attempts(index),
            failure_reason=execution.failure_reason,
            duration=time.perf_counter() - step_started,
        )

    def _build_input(
        self, step: ToolCallStep, index: int, round: int, history: AttemptHistory
    ) -> StepInput:
        config = step.config
        service = self.settings.service

        # Builders only see final results of earlier steps
        data = step.build_input(history.final_results(before=index))
        data.update(config.merged_outputs(history, index))

        step_input = StepInput(
            round=round,
            data=data,
            model=step.model or service.default_model,
            temperature=step.params.get("temperature", service.default_temperature),
            max_tokens=config.max_tokens or service.default_max_tokens,
        )
        if config.input_sanitizer is not None:
            sanitized = config.sanitize_input(step_input.to_map())
            # Sanitizers cannot change the attempt round
            sanitized[ROUND_KEY] = round
            step_input = StepInput.from_map(sanitized)
        return step_input

    async def _execute_attempt(
        self, step: ToolCallStep, index: int, round: int, history: AttemptHistory
    ) -> tuple[StepInput, Any]:
        step_input = None
        try:
            step_input = self._build_input(step, index, round, history)
            previous_results = step.config.forwarded_previous_results(history, index)
            current_step_retries = step.config.forwarded_retries(history, index)
            response = await self._call_service(
                step, step_input, previous_results, current_step_retries
            )
        except ConfigurationError:
            raise
        except Exception as e:
            raise _AttemptFailed(e, step_input) from e
        return step_input, response

    @trace_span("flow.tool_call")
    async def _call_service(self, step, step_input, previous_results, current_step_retries):
        add_span_attributes(step=step.name, round=step_input.round)
        call = self.service.execute(
            step,
            step_input,
            previous_results=previous_results,
            current_step_retries=current_step_retries,
        )
        timeout = step.config.timeout or self.settings.flow.step_timeout
        if timeout is not None:
            return await asyncio.wait_for(call, timeout)
        return await call

    def _check_attempt(
        self, step: ToolCallStep, index: int, round: int, step_input: StepInput, response: Any
    ) -> TypedToolResult:
        try:
            payload = step.config.sanitize_output(dict(response.output))
            output = self.registry.create(step.name, payload, round)
            usage = response.usage if isinstance(response.usage, TokenUsage) else TokenUsage.from_map(response.usage)
        except ConfigurationError:
            raise
        except Exception as e:
            raise _AttemptFailed(e, step_input) from e

        result = TypedToolResult.wrap(
            output,
            step_input,
            (),
            self.registry.type_of(step.name),
            step_name=step.name,
            token_usage=usage,
        )
        return self._run_audits(step, index, round, result)

    def _run_audits(
        self, step: ToolCallStep, index: int, round: int, result: TypedToolResult
    ) -> TypedToolResult:
        issues: list[Issue] = []
        for audit in step.config.audits:
            for issue in audit.run_checked(result):
                issues.append(issue.stamped(round, step_index=index, audit_name=audit.name))
        if not issues:
            return result
        logger.debug(
            f"Audits reported {len(issues)} issues for step '{step.name}'",
            round=round,
        )
        return result.with_issues(issues)

    def _error_attempt(
        self, step: ToolCallStep, index: int, round: int, failure: _AttemptFailed
    ) -> TypedToolResult:
        service = self.settings.service
        step_input = failure.step_input or StepInput(
            round=round,
            model=step.model or service.default_model,
            temperature=service.default_temperature,
            max_tokens=step.config.max_tokens or service.default_max_tokens,
        )
        cause = failure.cause
        message = str(cause) or type(cause).__name__
        issue = Issue(
            id=f"error_{step.name}_{index + 1}_attempt_{round + 1}",
            severity=IssueSeverity.CRITICAL,
            description=f"Tool execution failed: {message}",
            context={
                "step": index + 1,
                "attempt": round + 1,
                "step_name": step.name,
                "model": step_input.model,
                "error_type": type(cause).__name__,
            },
            suggestions=["Check tool configuration and input parameters"],
            round=round,
            related_data={"step_index": index},
        )
        output = ToolOutput(round=round, error=message)
        return TypedToolResult.wrap(output, step_input, [issue], ToolOutput, step_name=step.name)

    @staticmethod
    def _merge_into_state(state: dict[str, Any], index: int, final: TypedToolResult) -> None:
        state[f"step_{index}_result"] = final.to_dict()
        state[f"step_{index}_usage"] = final.token_usage.to_map()
        fields = final.output.to_map()
        # Internal
        fields.pop(ROUND_KEY, None)
        state.update(fields)

    @staticmethod
    def _aggregate_usage(outcomes: list[StepOutcome]) -> dict[str, int]:
        total = TokenUsage.sum(o.usage for o in outcomes)
        return {
            "total_prompt_tokens": total.prompt_tokens,
            "total_completion_tokens": total.completion_tokens,
            "total_tokens": total.total_tokens,
        }

"""
Tests for the flow result aggregate.
"""

import pytest

from toolflow.core.flow_result import StepOutcome, ToolFlowResult
from toolflow.core.issues import Issue, IssueSeverity
from toolflow.core.outputs import StepInput, ToolOutput
from toolflow.core.results import TokenUsage, TypedToolResult
from toolflow.core.state_machine import StepState


class SummaryOutput(ToolOutput):
    summary: str


def make_attempt(step_name, round, issues=(), usage=None, output_type=SummaryOutput):
    if output_type is SummaryOutput:
        output = SummaryOutput(summary=f"{step_name} round {round}", round=round)
    else:
        output = ToolOutput(round=round)
    return TypedToolResult.wrap(
        output,
        StepInput(round=round),
        issues,
        output_type,
        step_name=step_name,
        token_usage=usage,
    )


def issue(id, severity, round=0):
    return Issue(id=id, severity=severity, description=id, round=round)


@pytest.fixture
def initial():
    return TypedToolResult.wrap(
        ToolOutput(topic="bees"), StepInput(), (), ToolOutput, step_name="initial_input"
    )


@pytest.fixture
def flow_result(initial):
    first = [
        make_attempt("summarize", 0, [issue("vague", IssueSeverity.CRITICAL)], TokenUsage(10, 5, 15)),
        make_attempt("summarize", 1, [issue("wordy", IssueSeverity.LOW, 1)], TokenUsage(20, 10, 30)),
    ]
    second = [make_attempt("polish", 0, [issue("typo", IssueSeverity.MEDIUM)], TokenUsage(1, 2, 3))]
    outcomes = [
        StepOutcome(0, "summarize", StepState.PASSED, tuple(first)),
        StepOutcome(1, "polish", StepState.PASSED, tuple(second)),
    ]
    return ToolFlowResult(
        results=[initial, first[-1], second[-1]],
        attempts=[[initial], first, second],
        final_state={"topic": "bees"},
        step_outcomes=outcomes,
        run_id="abc123",
    )


class TestStepOutcome:
    """Test per-step outcome accessors."""

    def test_final_and_usage(self):
        attempts = (
            make_attempt("summarize", 0, usage=TokenUsage(1, 1, 2)),
            make_attempt("summarize", 1, usage=TokenUsage(4, 4, 8)),
        )
        outcome = StepOutcome(0, "summarize", StepState.FAILED_TERMINAL, attempts, "too short")

        assert not outcome.passed
        assert outcome.final is attempts[-1]
        assert outcome.attempt_count == 2
        assert outcome.usage == TokenUsage(4, 4, 8)
        data = outcome.to_dict()
        assert data["state"] == "failed_terminal"
        assert data["failure_reason"] == "too short"
        assert data["usage"]["total_tokens"] == 8


class TestToolFlowResult:
    """Test issue views, usage and lookups on the aggregate."""

    def test_passed(self, flow_result):
        assert flow_result.passed
        assert flow_result.failed_steps == []

    def test_halted_is_not_passed(self, initial):
        attempt = make_attempt("summarize", 0)
        result = ToolFlowResult(
            results=[initial, attempt],
            attempts=[[initial], [attempt]],
            final_state={},
            step_outcomes=[StepOutcome(0, "summarize", StepState.FAILED_TERMINAL, (attempt,))],
            halted=True,
        )

        assert not result.passed
        assert [o.step_name for o in result.failed_steps] == ["summarize"]

    def test_final_issues_only_from_final_attempts(self, flow_result):
        assert [i.id for i in flow_result.final_issues] == ["wordy", "typo"]
        assert flow_result.issues == flow_result.final_issues

    def test_all_issues(self, flow_result):
        assert [i.id for i in flow_result.all_issues] == ["vague", "wordy", "typo"]

    def test_issue_scope_all(self, initial):
        attempts = [
            make_attempt("summarize", 0, [issue("vague", IssueSeverity.CRITICAL)]),
            make_attempt("summarize", 1),
        ]
        result = ToolFlowResult(
            results=[initial, attempts[-1]],
            attempts=[[initial], attempts],
            final_state={},
            issue_scope="all",
        )

        assert [i.id for i in result.issues] == ["vague"]
        assert result.issue_counts["critical"] == 1

    def test_invalid_issue_scope(self, initial):
        with pytest.raises(ValueError, match="issue_scope"):
            ToolFlowResult(results=[initial], attempts=[[initial]], final_state={}, issue_scope="some")

    def test_issues_at_or_above(self, flow_result):
        assert [i.id for i in flow_result.issues_at_or_above(IssueSeverity.MEDIUM)] == ["typo"]

    def test_usage(self, flow_result):
        assert flow_result.usage_by_step == {0: TokenUsage(20, 10, 30), 1: TokenUsage(1, 2, 3)}
        assert flow_result.total_usage == TokenUsage(21, 12, 33)

    def test_lookups(self, flow_result):
        assert flow_result.final_result.step_name == "polish"
        assert [r.round for r in flow_result.results_for("summarize")] == [1]
        assert len(flow_result.results_of_type(SummaryOutput)) == 2
        assert flow_result.results_of_type(ToolOutput) == []

    def test_final_state_is_read_only(self, flow_result):
        with pytest.raises(TypeError):
            flow_result.final_state["topic"] = "wasps"

    def test_to_dict(self, flow_result):
        data = flow_result.to_dict()

        assert data["run_id"] == "abc123"
        assert data["passed"] is True
        assert len(data["results"]) == 3
        assert [s["step_name"] for s in data["steps"]] == ["summarize", "polish"]
        assert data["total_usage"]["total_tokens"] == 33
        assert data["final_state"] == {"topic": "bees"}
        assert "passed=True" in str(flow_result)

"""
Tests for token usage, ToolResult and the TypedToolResult wrapper.
"""

import pytest

from toolflow.core.errors import TypeMismatchError
from toolflow.core.issues import Issue, IssueSeverity
from toolflow.core.outputs import StepInput, ToolOutput
from toolflow.core.results import TokenUsage, ToolResult, TypedToolResult


class DraftOutput(ToolOutput):
    text: str


class ReviewOutput(ToolOutput):
    approved: bool


def issue(severity: IssueSeverity) -> Issue:
    return Issue(id=f"{severity.value}_issue", severity=severity, description="found")


def draft_result(issues=(), usage: TokenUsage | None = None) -> TypedToolResult:
    return TypedToolResult.wrap(
        DraftOutput(text="hello", round=1),
        StepInput(round=1, data={"topic": "x"}),
        issues,
        DraftOutput,
        step_name="draft",
        token_usage=usage,
    )


class TestTokenUsage:
    """Test token usage arithmetic."""

    def test_from_map_defaults_total(self):
        usage = TokenUsage.from_map({"prompt_tokens": 10, "completion_tokens": 5})

        assert usage == TokenUsage(10, 5, 15)

    def test_from_map_keeps_reported_total(self):
        usage = TokenUsage.from_map({"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 20})

        assert usage.total_tokens == 20

    def test_from_none_is_zero(self):
        assert TokenUsage.from_map(None) == TokenUsage.zero()

    def test_sum(self):
        usages = [TokenUsage(100, 50, 150), TokenUsage(100, 50, 150)]

        assert TokenUsage.sum(usages) == TokenUsage(200, 100, 300)
        assert TokenUsage.sum([]) == TokenUsage.zero()

    def test_to_map(self):
        assert TokenUsage(1, 2, 3).to_map() == {
            "prompt_tokens": 1,
            "completion_tokens": 2,
            "total_tokens": 3,
        }


class TestToolResult:
    """Test the shape-specific result view."""

    def test_issues_stored_as_tuple(self):
        result = ToolResult(
            step_name="draft",
            input=StepInput(),
            output=DraftOutput(text="x"),
            issues=[issue(IssueSeverity.LOW)],
        )

        assert isinstance(result.issues, tuple)
        assert result.has_issues

    def test_with_issues_leaves_original_untouched(self):
        result = ToolResult("draft", StepInput(), DraftOutput(text="x"), (issue(IssueSeverity.LOW),))

        updated = result.with_issues([])

        assert updated is not result
        assert not updated.has_issues
        assert len(result.issues) == 1


class TestTypedToolResult:
    """Test construction checks and safe type recovery."""

    def test_wrap_sets_tag_and_usage(self):
        result = draft_result(usage=TokenUsage(3, 4, 7))

        assert result.output_type is DraftOutput
        assert result.has_output_type(DraftOutput)
        assert result.token_usage.total_tokens == 7
        assert result.round == 1
        assert result.step_name == "draft"

    def test_default_usage_is_zero(self):
        assert draft_result().token_usage == TokenUsage.zero()

    def test_construction_rejects_wrong_tag(self):
        with pytest.raises(TypeMismatchError):
            TypedToolResult.wrap(
                DraftOutput(text="x"), StepInput(), (), ReviewOutput, step_name="draft"
            )

    def test_tag_must_be_exact_type(self):
        with pytest.raises(TypeMismatchError):
            TypedToolResult.wrap(DraftOutput(text="x"), StepInput(), (), ToolOutput, step_name="draft")

    def test_as_typed_returns_fresh_result(self):
        wrapped = draft_result([issue(IssueSeverity.HIGH)])

        typed = wrapped.as_typed(DraftOutput)

        assert isinstance(typed, ToolResult)
        assert typed is not wrapped.result
        assert typed.output.text == "hello"
        assert typed.issues == wrapped.issues

    def test_as_typed_wrong_type_names_both(self):
        wrapped = draft_result()

        with pytest.raises(TypeMismatchError) as exc_info:
            wrapped.as_typed(ReviewOutput)

        message = str(exc_info.value)
        assert "DraftOutput" in message
        assert "ReviewOutput" in message

    def test_issue_filters(self):
        wrapped = draft_result([issue(s) for s in IssueSeverity])

        assert [i.severity for i in wrapped.issues_with_severity(IssueSeverity.HIGH)] == [
            IssueSeverity.HIGH
        ]
        assert len(wrapped.issues_at_or_above(IssueSeverity.MEDIUM)) == 3
        assert len(wrapped.issues) == 4

    def test_with_issues_keeps_tag_and_usage(self):
        wrapped = draft_result(usage=TokenUsage(1, 1, 2))

        updated = wrapped.with_issues([issue(IssueSeverity.LOW)])

        assert updated.output_type is DraftOutput
        assert updated.token_usage == TokenUsage(1, 1, 2)
        assert len(updated.issues) == 1
        assert not wrapped.has_issues

    def test_to_dict(self):
        data = draft_result([issue(IssueSeverity.LOW)], TokenUsage(1, 2, 3)).to_dict()

        assert data["step_name"] == "draft"
        assert data["output_type"] == "DraftOutput"
        assert data["output"]["text"] == "hello"
        assert data["input"]["topic"] == "x"
        assert data["issues"][0]["id"] == "low_issue"
        assert data["token_usage"]["total_tokens"] == 3

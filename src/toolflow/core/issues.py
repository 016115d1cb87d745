"""
Issue and severity model.

Issues are strict but extensible: the base fields are required, subclasses may
add their own, and serialization never strips fields. Unknown fields read back
from a serialized issue are kept as extras so they survive a round-trip.
"""

from collections.abc import Iterable
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

_SEVERITY_RANK = {"low": 0, "medium": 1, "high": 2, "critical": 3}


class IssueSeverity(str, Enum):
    """Ordered issue severity: LOW < MEDIUM < HIGH < CRITICAL."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self.value]

    @classmethod
    def parse(cls, value: "str | IssueSeverity") -> "IssueSeverity":
        """Parse a severity name case-insensitively."""
        if isinstance(value, IssueSeverity):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Invalid severity: {value}") from None

    def is_at_least(self, minimum: "IssueSeverity") -> bool:
        return self.rank >= minimum.rank

    # str comparison would order alphabetically
    def __lt__(self, other):
        if isinstance(other, IssueSeverity):
            return self.rank < other.rank
        return NotImplemented

    def __le__(self, other):
        if isinstance(other, IssueSeverity):
            return self.rank <= other.rank
        return NotImplemented

    def __gt__(self, other):
        if isinstance(other, IssueSeverity):
            return self.rank > other.rank
        return NotImplemented

    def __ge__(self, other):
        if isinstance(other, IssueSeverity):
            return self.rank >= other.rank
        return NotImplemented

    def __str__(self) -> str:
        return self.value


class Issue(BaseModel):
    """A finding produced by an audit or synthesized by the engine."""

    model_config = ConfigDict(frozen=True, extra="allow")

    id: str
    severity: IssueSeverity
    description: str
    context: dict[str, Any] = Field(default_factory=dict)
    suggestions: list[str] = Field(default_factory=list)
    round: int = Field(0, ge=0)
    related_data: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Issue":
        return cls.model_validate(data)

    def to_dict(self) -> dict[str, Any]:
        """Serialize every field, including subclass and extra fields."""
        return self.model_dump(mode="json")

    def stamped(self, round: int, **related: Any) -> "Issue":
        """Return a copy carrying the attempt round and engine metadata."""
        merged = {**(self.related_data or {}), **related}
        return self.model_copy(update={"round": round, "related_data": merged})

    @property
    def audit_name(self) -> str | None:
        if self.related_data:
            return self.related_data.get("audit_name")
        return None

    def __str__(self) -> str:
        return f"Issue(id={self.id}, severity={self.severity}, description={self.description})"


def issues_at_or_above(issues: Iterable[Issue], minimum: IssueSeverity) -> list[Issue]:
    """Filter issues to those at or above a minimum severity."""
    return [issue for issue in issues if issue.severity.is_at_least(minimum)]


def count_by_severity(issues: Iterable[Issue]) -> dict[str, int]:
    counts = dict.fromkeys((s.value for s in IssueSeverity), 0)
    for issue in issues:
        counts[issue.severity.value] += 1
    return counts

"""
Append-only store of every attempt made during one flow run.
"""

from .results import TypedToolResult


class AttemptHistory:
    """
    Attempts keyed by 0-based step index, in execution order.

    The initial input pseudo-result is kept apart from step attempts. The last
    attempt of a step is its final attempt: the one forwarded to later steps
    and reported in the flow result.
    """

    def __init__(self, initial: TypedToolResult):
        self.initial = initial
        self._attempts: dict[int, list[TypedToolResult]] = {}
        self._step_names: dict[int, str] = {}

    def open_step(self, step_index: int, step_name: str) -> None:
        if step_index in self._attempts:
            raise ValueError(f"Step {step_index} already has recorded attempts")
        self._attempts[step_index] = []
        self._step_names[step_index] = step_name

    def record(self, step_index: int, result: TypedToolResult) -> None:
        if step_index not in self._attempts:
            raise KeyError(f"Step {step_index} was never opened")
        self._attempts[step_index].append(result)

    def attempts(self, step_index: int) -> tuple[TypedToolResult, ...]:
        return tuple(self._attempts.get(step_index, ()))

    def final(self, step_index: int) -> TypedToolResult | None:
        attempts = self._attempts.get(step_index)
        return attempts[-1] if attempts else None

    def step_name(self, step_index: int) -> str | None:
        return self._step_names.get(step_index)

    @property
    def step_indices(self) -> list[int]:
        return sorted(self._attempts)

    def final_results(self, before: int | None = None) -> list[TypedToolResult]:
        """Initial input followed by the final attempt of every step that ran.

        With before set, only steps whose index is lower are included.
        """
        finals = [self.initial]
        for index in self.step_indices:
            if before is not None and index >= before:
                break
            final = self.final(index)
            if final is not None:
                finals.append(final)
        return finals

    def as_slots(self) -> list[list[TypedToolResult]]:
        """All attempts per slot; slot 0 is the initial input."""
        slots = [[self.initial]]
        slots.extend(list(self._attempts[index]) for index in self.step_indices)
        return slots

    def __len__(self) -> int:
        return sum(len(a) for a in self._attempts.values())
